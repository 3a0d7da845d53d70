"""Exporter engine: builds collectors from configuration and runs them."""
from typing import Dict, Optional, Type
import logging
import time

from prometheus_client import CollectorRegistry

from devops_exporter.cache import MetricsCache
from devops_exporter.client import AzureDevOpsClient
from devops_exporter.config import Config, TASK_NAMES
from devops_exporter.producers import (
    AgentPoolProducer,
    BuildProducer,
    Filters,
    GeneralProducer,
    LatestBuildProducer,
    ProjectCatalog,
    ProjectProducer,
    Producer,
    PullRequestProducer,
    ReleaseProducer,
)
from devops_exporter.prom_exporter import PrometheusExporter, SelfMetrics
from devops_exporter.scheduler import Scheduler
from devops_exporter.task import CollectionTask

logger = logging.getLogger(__name__)

PRODUCERS: Dict[str, Type[Producer]] = {
    "general": GeneralProducer,
    "project": ProjectProducer,
    "pullrequest": PullRequestProducer,
    "build": BuildProducer,
    "latest_build": LatestBuildProducer,
    "release": ReleaseProducer,
    "agentpool": AgentPoolProducer,
}


class ExporterEngine:
    """Main engine that wires the API client, collectors and exporters."""

    def __init__(self, config: Config, client: Optional[AzureDevOpsClient] = None, registry=None):
        self.config = config
        self.start_time = time.time()
        self.client = client or self._create_client()
        self.catalog = ProjectCatalog()
        self.cache = MetricsCache() if config.cache.ttl > 0 else None

        self.registry = registry or CollectorRegistry()
        self.self_metrics = SelfMetrics(registry=self.registry)

        self.scheduler = Scheduler(self._create_tasks())
        self.prom_exporter = PrometheusExporter(config.server, self.scheduler, registry=self.registry)

        self.otel_exporter = None
        if config.exporters.otel.enabled:
            from devops_exporter.otel_exporter import OTELExporter
            self.otel_exporter = OTELExporter(config.exporters.otel, self.scheduler)

        logger.info("Exporter engine initialized")

    def _create_client(self) -> AzureDevOpsClient:
        azure = self.config.azure_devops
        return AzureDevOpsClient(
            organisation=azure.organisation,
            access_token=azure.access_token,
            api_url=azure.api_url,
            release_api_url=azure.release_api_url,
            api_version=azure.api_version,
            timeout_s=azure.timeout_s,
        )

    def _create_producer(self, name: str) -> Producer:
        max_workers = self.config.azure_devops.max_workers
        if name == "general":
            return GeneralProducer(self.client, max_workers, catalog=self.catalog)
        if name == "build":
            return BuildProducer(self.client, max_workers, lookback_s=self.config.azure_devops.build_lookback)
        return PRODUCERS[name](self.client, max_workers)

    def _create_tasks(self):
        filters = Filters(agent_pool_ids=tuple(self.config.azure_devops.agent_pool_ids))
        tasks = []
        for name in TASK_NAMES:
            interval = self.config.scrape.interval_for(name)
            tasks.append(
                CollectionTask(
                    name=name,
                    interval_s=interval,
                    producer=self._create_producer(name),
                    projects=self.catalog.get,
                    filters=filters,
                    cache=self.cache,
                    cache_ttl_s=self.config.cache.ttl,
                    self_metrics=self.self_metrics,
                )
            )
            logger.info(f"collector[{name}]: interval {interval}s")
        return tasks

    def load_projects(self):
        """Fetch the project list used by per-project collectors.

        Raises FetchError; the exporter cannot start without it.
        """
        projects = self.client.list_projects()
        self.catalog.update(projects)
        logger.info(f"Found {len(projects)} projects in organisation {self.config.azure_devops.organisation}")
        return projects

    def start(self, serve_metrics: bool = True):
        """Load projects, start the collectors and the metrics endpoint."""
        self.load_projects()
        self.scheduler.start()
        if serve_metrics:
            self.prom_exporter.start()

    def stop(self):
        """Stop the exporter engine."""
        logger.info("Stopping exporter engine")
        self.scheduler.stop()

        # Shutdown exporters
        if self.otel_exporter:
            self.otel_exporter.shutdown()
