"""OpenTelemetry push exporter using OTLP."""
from typing import Dict, List
import logging

from opentelemetry import metrics
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.sdk.resources import Resource

from devops_exporter.config import OTELExporterConfig
from devops_exporter.series import MetricFamily

logger = logging.getLogger(__name__)


class OTELExporter:
    """
    Pushes the scheduler's merged snapshot over OTLP.

    One observable instrument is registered per metric family; its callback
    reads the currently published rows at export time, so the push path sees
    the same data as a Prometheus scrape.
    """

    def __init__(self, config: OTELExporterConfig, scheduler, meter_provider: MeterProvider = None):
        self.config = config
        self.scheduler = scheduler

        # Store instrument objects
        self.instruments: Dict[str, object] = {}

        if meter_provider is None:
            meter_provider = self._create_meter_provider()
        self.meter_provider = meter_provider
        self.meter = meter_provider.get_meter(__name__)

        for family in scheduler.families():
            self.register_family(family)

    def _create_meter_provider(self) -> MeterProvider:
        """Initialize OpenTelemetry SDK."""
        resource_attrs = {"service.name": "azure-devops-exporter"}
        resource_attrs.update(self.config.resource)
        resource = Resource.create(resource_attrs)

        exporter = OTLPMetricExporter(
            endpoint=self.config.endpoint,
            insecure=self.config.insecure,
            headers=tuple(self.config.headers.items()) if self.config.headers else None
        )

        reader = PeriodicExportingMetricReader(
            exporter,
            export_interval_millis=self.config.export_interval_s * 1000
        )

        provider = MeterProvider(resource=resource, metric_readers=[reader])
        metrics.set_meter_provider(provider)

        logger.info(f"OTEL exporter initialized, pushing to {self.config.endpoint}")
        return provider

    def register_family(self, family: MetricFamily):
        """Register an observable instrument for a metric family."""
        if family.name in self.instruments:
            return
        otel_name = f"{self.config.prefix}{family.name}"

        if family.kind == "counter":
            instrument = self.meter.create_observable_counter(
                name=otel_name,
                callbacks=[self._callback(family.name)],
                description=family.help,
                unit="1"
            )
        else:
            instrument = self.meter.create_observable_gauge(
                name=otel_name,
                callbacks=[self._callback(family.name)],
                description=family.help,
                unit="1"
            )
        self.instruments[family.name] = instrument
        logger.info(f"Registered OTEL instrument: {otel_name} with labels {list(family.label_names)}")

    def _callback(self, family_name: str):
        def callback(options):
            return self.observations(family_name)
        return callback

    def observations(self, family_name: str) -> List[metrics.Observation]:
        """Current rows of a family as OTEL observations."""
        result = []
        for family, rows in self.scheduler.export():
            if family.name != family_name:
                continue
            for row in rows:
                result.append(metrics.Observation(row.value, attributes=dict(row.labels)))
        return result

    def shutdown(self):
        """Shutdown OTEL exporter."""
        self.meter_provider.shutdown()
        logger.info("OTEL exporter shutdown complete")
