"""Prometheus pull exporter using prometheus_client."""
from typing import Dict, List, Optional, Tuple
import logging

from prometheus_client import (
    Counter, Gauge, Histogram,
    CollectorRegistry, start_http_server
)

from devops_exporter.aggregator import export_rows
from devops_exporter.config import ServerConfig

logger = logging.getLogger(__name__)


def parse_bind_address(bind: str) -> Tuple[str, int]:
    """Split ``host:port`` (host optional, e.g. ``:8080``) into its parts."""
    host, sep, port = bind.rpartition(":")
    if not sep or not port.isdigit():
        raise ValueError(f"Invalid bind address: {bind!r}")
    host = host.strip("[]") or "0.0.0.0"
    return host, int(port)


class SnapshotCollector:
    """Custom collector rendering the scheduler's merged snapshot on each scrape."""

    def __init__(self, scheduler):
        self.scheduler = scheduler

    def describe(self):
        # Avoid a collect() call at registration time.
        return []

    def collect(self):
        families: Dict[str, object] = {}
        rows_by_family: Dict[str, List] = {}
        for family, rows in self.scheduler.export():
            if family.name not in families:
                families[family.name] = family
                rows_by_family[family.name] = []
            rows_by_family[family.name].extend(rows)

        for name, family in families.items():
            yield export_rows(family, rows_by_family[name])


class PrometheusExporter:
    """Manages the metrics registry and HTTP server."""

    def __init__(self, config: ServerConfig, scheduler, registry: Optional[CollectorRegistry] = None):
        self.config = config
        # Use a custom registry to avoid exporting default Python/process metrics
        self.registry = registry or CollectorRegistry()
        self.collector = SnapshotCollector(scheduler)
        self.registry.register(self.collector)

    def start(self):
        """Start Prometheus HTTP server."""
        host, port = parse_bind_address(self.config.bind)
        try:
            start_http_server(port, addr=host, registry=self.registry)
            logger.info(f"Prometheus exporter listening on {host}:{port}/metrics")
        except Exception as e:
            logger.error(f"Failed to start Prometheus HTTP server: {e}")
            raise


class SelfMetrics:
    """Self-monitoring metrics for the collectors."""

    def __init__(self, registry=None, prefix="azure_devops_exporter_"):
        if registry is None:
            registry = CollectorRegistry()

        self.collector_duration_seconds = Histogram(
            f"{prefix}collector_duration_seconds",
            "Duration of each collection cycle in seconds",
            ["collector"],
            buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
            registry=registry
        )

        self.collector_errors_total = Counter(
            f"{prefix}collector_errors_total",
            "Total number of failed collection cycles",
            ["collector"],
            registry=registry
        )

        self.collector_rows = Gauge(
            f"{prefix}collector_rows",
            "Number of rows currently published by the collector",
            ["collector"],
            registry=registry
        )

        self.collector_last_success = Gauge(
            f"{prefix}collector_last_success_timestamp",
            "Unix time of the last successful collection cycle",
            ["collector"],
            registry=registry
        )

    def record_cycle(self, collector: str, duration: float, rows: int):
        """Record a finished cycle."""
        self.collector_duration_seconds.labels(collector=collector).observe(duration)
        self.collector_rows.labels(collector=collector).set(rows)

    def record_error(self, collector: str):
        """Record a failed cycle."""
        self.collector_errors_total.labels(collector=collector).inc()

    def set_last_success(self, collector: str, timestamp: float):
        """Set the time of the last successful cycle."""
        self.collector_last_success.labels(collector=collector).set(timestamp)
