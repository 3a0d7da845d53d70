"""Deduplicating metric aggregator keyed by label content hash."""
from typing import Dict, Iterable, List, Optional
import threading

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

from devops_exporter.cache import MetricsCache
from devops_exporter.errors import AggregationError
from devops_exporter.series import MetricFamily, MetricRow, label_digest, normalize_labels


class HashedAggregator:
    """
    Accumulates metric rows, merging rows whose label sets are equal.

    Label sets from different producers have different dimensions, so rows
    are keyed by a digest of their canonical serialization instead of a
    typed key. All operations are serialized by one lock so fetch workers
    of the same cycle may record concurrently.
    """

    def __init__(self, label_names: Optional[Iterable[str]] = None, cache: Optional[MetricsCache] = None):
        self.label_names = frozenset(label_names) if label_names is not None else None
        self.cache = cache
        self._rows: Dict[str, MetricRow] = {}
        self._lock = threading.Lock()

    def reset(self):
        """Drop all rows."""
        with self._lock:
            self._rows = {}

    def record(self, labels: Dict[str, str]):
        """Count one occurrence of ``labels`` (counter semantics)."""
        labels = self._prepare(labels)
        key = label_digest(labels)
        with self._lock:
            row = self._rows.get(key)
            if row is not None:
                row.value += 1
            else:
                self._rows[key] = MetricRow(labels, 1.0)

    def record_value(self, labels: Dict[str, str], value: float):
        """Set the value for ``labels`` (gauge semantics)."""
        labels = self._prepare(labels)
        key = label_digest(labels)
        with self._lock:
            row = self._rows.get(key)
            if row is not None:
                row.value = float(value)
            else:
                self._rows[key] = MetricRow(labels, float(value))

    def snapshot(self) -> List[MetricRow]:
        """Return a copy of the current rows."""
        with self._lock:
            return [row.copy() for row in self._rows.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)

    def load_from_cache(self, key: str) -> bool:
        """Replace the contents with the cached rows for ``key``.

        Returns False and leaves the aggregator empty when no cache is set or
        the entry is missing or expired.
        """
        self.reset()
        if self.cache is None:
            return False

        rows = self.cache.get(key)
        if rows is None:
            return False

        with self._lock:
            self._rows = {label_digest(row.labels): row for row in rows}
        return True

    def store_to_cache(self, key: str, ttl_s: float):
        """Store the current rows under ``key`` for ``ttl_s`` seconds."""
        if self.cache is None:
            return
        self.cache.set(key, self.snapshot(), ttl_s)

    def export(self, family: MetricFamily):
        """Build a prometheus_client metric family from the current rows."""
        return export_rows(family, self.snapshot())

    def _prepare(self, labels: Dict[str, str]) -> Dict[str, str]:
        labels = normalize_labels(labels)
        if self.label_names is not None:
            unknown = set(labels) - self.label_names
            if unknown:
                raise AggregationError(f"Undeclared labels: {sorted(unknown)}")
        return labels


def export_rows(family: MetricFamily, rows: Iterable[MetricRow]):
    """Translate rows into one ``add_metric`` call each on a metric family."""
    label_names = list(family.label_names)
    if family.kind == "counter":
        metric = CounterMetricFamily(family.name, family.help, labels=label_names)
    else:
        metric = GaugeMetricFamily(family.name, family.help, labels=label_names)

    for row in rows:
        metric.add_metric([row.labels.get(name, "") for name in label_names], row.value)
    return metric
