"""Tests for the OTLP push exporter using an in-memory reader."""
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from devops_exporter.config import OTELExporterConfig
from devops_exporter.otel_exporter import OTELExporter
from devops_exporter.models import PullRequest
from devops_exporter.producers import GeneralProducer, PullRequestProducer
from devops_exporter.scheduler import Scheduler
from devops_exporter.task import CollectionTask


def collected_points(reader):
    points = {}
    data = reader.get_metrics_data()
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                points[metric.name] = [(dict(p.attributes), p.value) for p in metric.data.data_points]
    return points


def test_observable_instruments_follow_snapshot(client):
    client.pull_requests = {"1": [PullRequest(id=1, title="a", status="active", repository_id="r")]}
    general = CollectionTask("general", 60, GeneralProducer(client))
    prs = CollectionTask("pullrequest", 60, PullRequestProducer(client), projects=lambda: client.projects)
    scheduler = Scheduler([general, prs])

    reader = InMemoryMetricReader()
    provider = MeterProvider(metric_readers=[reader])
    exporter = OTELExporter(OTELExporterConfig(enabled=True, prefix="otel_"), scheduler, meter_provider=provider)
    assert set(exporter.instruments) == {f.name for f in scheduler.families()}

    general.run_cycle()
    prs.run_cycle()

    points = collected_points(reader)
    assert points["otel_azure_devops_project_info"] == [
        ({"project_id": "1", "project": "P", "state": "wellFormed"}, 1.0)
    ]
    assert points["otel_azure_devops_pullrequest_count"] == [({"project": "P", "status": "active"}, 1.0)]

    exporter.shutdown()


def test_observations_empty_before_first_cycle(client):
    scheduler = Scheduler([CollectionTask("general", 60, GeneralProducer(client))])
    provider = MeterProvider(metric_readers=[InMemoryMetricReader()])
    exporter = OTELExporter(OTELExporterConfig(enabled=True), scheduler, meter_provider=provider)

    assert exporter.observations("azure_devops_project_info") == []
    exporter.shutdown()
