"""Independently scheduled collection tasks."""
from enum import Enum
from typing import Callable, Dict, List, Optional
import logging
import threading
import time

from devops_exporter.aggregator import HashedAggregator
from devops_exporter.cache import MetricsCache
from devops_exporter.errors import AggregationError, FetchError
from devops_exporter.models import Project
from devops_exporter.producers import Filters, Producer
from devops_exporter.series import TaskSnapshot

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PUBLISHING = "publishing"
    FAILED_KEEP_STALE = "failed_keep_stale"


class CollectionTask:
    """
    One named producer run on its own interval.

    Each cycle runs the producer against fresh aggregators and, on success,
    replaces the published snapshot with a single reference assignment.
    Readers only ever see a complete TaskSnapshot. A failed cycle leaves
    the previous snapshot in place and records the error; the loop keeps
    running. Cycles of one task never overlap.
    """

    def __init__(
        self,
        name: str,
        interval_s: float,
        producer: Producer,
        projects: Callable[[], List[Project]] = list,
        filters: Filters = Filters(),
        cache: Optional[MetricsCache] = None,
        cache_ttl_s: float = 0.0,
        self_metrics=None,
        clock: Callable[[], float] = time.time,
    ):
        self.name = name
        self.interval_s = interval_s
        self.producer = producer
        self.projects = projects
        self.filters = filters
        self.cache = cache
        self.cache_ttl_s = cache_ttl_s
        self.self_metrics = self_metrics
        self.clock = clock

        self.state = TaskState.IDLE
        self.last_error: Optional[Exception] = None
        self.last_success: Optional[float] = None
        self.last_duration: Optional[float] = None
        self.cycles = 0
        self.failures = 0

        self._snapshot = TaskSnapshot(task=name)
        self._cycle_lock = threading.Lock()
        self._wake = threading.Event()

    @property
    def enabled(self) -> bool:
        return self.interval_s > 0

    @property
    def snapshot(self) -> TaskSnapshot:
        """The currently published snapshot."""
        return self._snapshot

    def cache_key(self, family_name: str) -> str:
        return f"{self.name}:{family_name}"

    def _use_cache(self) -> bool:
        return self.cache is not None and self.cache_ttl_s > 0

    def _new_aggregators(self) -> Dict[str, HashedAggregator]:
        cache = self.cache if self._use_cache() else None
        return {
            family.name: HashedAggregator(family.label_names, cache=cache)
            for family in self.producer.families
        }

    def _load_cached(self, aggregators: Dict[str, HashedAggregator]) -> bool:
        if not self._use_cache() or not aggregators:
            return False
        return all(agg.load_from_cache(self.cache_key(name)) for name, agg in aggregators.items())

    def _publish(self, aggregators: Dict[str, HashedAggregator], source: str):
        self.state = TaskState.PUBLISHING
        snapshot = TaskSnapshot(
            task=self.name,
            families={name: tuple(agg.snapshot()) for name, agg in aggregators.items()},
            created_at=self.clock(),
            source=source,
        )
        self._snapshot = snapshot
        self.last_error = None
        self.last_success = snapshot.created_at

        if source == "fetch" and self._use_cache():
            purged = self.cache.purge_expired()
            if purged:
                logger.debug(f"collector[{self.name}]: purged {purged} expired cache entries")
            for name, agg in aggregators.items():
                agg.store_to_cache(self.cache_key(name), self.cache_ttl_s)

    def _fail(self, error: Exception):
        self.state = TaskState.FAILED_KEEP_STALE
        self.last_error = error
        self.failures += 1
        if self.self_metrics:
            self.self_metrics.record_error(self.name)

    def run_cycle(self) -> bool:
        """Run one collection cycle.

        Returns False if a cycle of this task is already running; the tick is
        dropped rather than queued.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug(f"collector[{self.name}]: cycle already running, tick skipped")
            return False

        cycle_start = time.monotonic()
        try:
            self.state = TaskState.FETCHING
            aggregators = self._new_aggregators()

            if self._load_cached(aggregators):
                self._publish(aggregators, source="cache")
                logger.debug(f"collector[{self.name}]: served from cache")
            else:
                for agg in aggregators.values():
                    agg.reset()
                try:
                    self.producer.produce(self.projects(), aggregators, self.filters)
                except FetchError as e:
                    self._fail(e)
                    if e.transient:
                        logger.warning(f"collector[{self.name}]: fetch failed, keeping previous metrics: {e}")
                    else:
                        logger.error(f"collector[{self.name}]: fetch failed, keeping previous metrics: {e}")
                except AggregationError as e:
                    self._fail(e)
                    logger.error(f"collector[{self.name}]: aggregation error: {e}")
                except Exception as e:
                    self._fail(e)
                    logger.error(f"collector[{self.name}]: unexpected error: {e}", exc_info=True)
                else:
                    self._publish(aggregators, source="fetch")

            self.last_duration = time.monotonic() - cycle_start
            self.cycles += 1
            if self.self_metrics:
                self.self_metrics.record_cycle(self.name, self.last_duration, self._snapshot.row_count())
                if self.last_error is None:
                    self.self_metrics.set_last_success(self.name, self.last_success)

            if self.last_error is None:
                logger.debug(
                    f"collector[{self.name}]: published {self._snapshot.row_count()} rows "
                    f"in {self.last_duration:.3f}s"
                )
            return True
        finally:
            self.state = TaskState.IDLE
            self._cycle_lock.release()

    def trigger(self):
        """Wake the timer loop for an immediate cycle."""
        self._wake.set()

    def run(self, stop_event: threading.Event):
        """Timer loop. Returns when ``stop_event`` is set."""
        logger.info(f"collector[{self.name}]: starting (interval {self.interval_s}s)")

        while not stop_event.is_set():
            tick_start = time.monotonic()
            self.run_cycle()
            self._wake.clear()
            if stop_event.is_set():
                break

            tick_duration = time.monotonic() - tick_start
            sleep_time = max(0.0, self.interval_s - tick_duration)
            if sleep_time == 0:
                logger.warning(
                    f"collector[{self.name}]: cycle took {tick_duration:.3f}s, "
                    f"longer than interval {self.interval_s}s"
                )

            self._wake.wait(sleep_time)
            self._wake.clear()

        logger.info(f"collector[{self.name}]: stopped")
