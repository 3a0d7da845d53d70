"""Scheduler owning all collection tasks."""
from typing import Dict, Iterable, List, Tuple
import logging
import threading

from devops_exporter.series import MetricFamily, MetricRow
from devops_exporter.task import CollectionTask

logger = logging.getLogger(__name__)


class Scheduler:
    """Starts one timer thread per enabled task and merges their snapshots."""

    def __init__(self, tasks: Iterable[CollectionTask] = ()):
        self.tasks: Dict[str, CollectionTask] = {}
        self.threads: Dict[str, threading.Thread] = {}
        self.stop_event = threading.Event()
        for task in tasks:
            self.add_task(task)

    def add_task(self, task: CollectionTask):
        if task.name in self.tasks:
            raise ValueError(f"Duplicate collector name: {task.name}")
        self.tasks[task.name] = task

    def enabled_tasks(self) -> List[CollectionTask]:
        return [task for task in self.tasks.values() if task.enabled]

    def start(self):
        """Start the timer loop of every enabled task."""
        for task in self.tasks.values():
            if not task.enabled:
                logger.info(f"collector[{task.name}]: disabled")
                continue
            if task.name in self.threads:
                continue

            thread = threading.Thread(
                target=task.run,
                args=(self.stop_event,),
                name=f"collector-{task.name}",
                daemon=True,
            )
            self.threads[task.name] = thread
            thread.start()

        logger.info(f"Started {len(self.threads)} of {len(self.tasks)} collectors")

    def stop(self, timeout: float = 5.0):
        """Signal all loops to stop and wait briefly for them.

        In-flight cycles are not interrupted; threads still running after
        ``timeout`` are abandoned (they are daemons).
        """
        logger.info("Stopping collectors")
        self.stop_event.set()
        for task in self.tasks.values():
            task.trigger()
        for thread in self.threads.values():
            thread.join(timeout)

    def families(self) -> List[MetricFamily]:
        """Metric families declared by enabled tasks, in task order."""
        return [family for task in self.enabled_tasks() for family in task.producer.families]

    def export(self) -> List[Tuple[MetricFamily, List[MetricRow]]]:
        """Concatenate the published rows of all enabled tasks.

        Each task's snapshot reference is read once, so every family of a task
        comes from the same cycle.
        """
        merged = []
        for task in self.enabled_tasks():
            snapshot = task.snapshot
            for family in task.producer.families:
                merged.append((family, list(snapshot.families.get(family.name, ()))))
        return merged

    def status(self) -> Dict[str, dict]:
        result = {}
        for name, task in self.tasks.items():
            snapshot = task.snapshot
            result[name] = {
                "enabled": task.enabled,
                "interval_s": task.interval_s,
                "state": task.state.value,
                "last_error": str(task.last_error) if task.last_error else None,
                "last_success": task.last_success,
                "last_duration_s": task.last_duration,
                "rows": snapshot.row_count(),
                "source": snapshot.source,
                "cycles": task.cycles,
                "failures": task.failures,
            }
        return result
