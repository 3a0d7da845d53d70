"""Producers: fetch Azure DevOps data and reduce it into metric rows."""
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple
import logging
import threading

from devops_exporter.aggregator import HashedAggregator
from devops_exporter.models import Project
from devops_exporter.series import MetricFamily

logger = logging.getLogger(__name__)

BUILD_RESULT_CODES = {
    "succeeded": 1,
    "partiallySucceeded": 2,
    "failed": 3,
    "canceled": 4,
}

RELEASE_STATUS_CODES = {
    "succeeded": 1,
    "partiallySucceeded": 2,
    "rejected": 3,
    "canceled": 4,
    "inProgress": 5,
    "queued": 6,
    "scheduled": 7,
    "notStarted": 8,
}


def bool_label(value: bool) -> str:
    return "true" if value else "false"


@dataclass(frozen=True)
class Filters:
    """Per-collection filters. An empty pool id list means all pools."""
    agent_pool_ids: Tuple[int, ...] = ()


class ProjectCatalog:
    """Thread-safe holder of the currently known projects."""

    def __init__(self, projects: Iterable[Project] = ()):
        self._projects = tuple(projects)
        self._lock = threading.Lock()

    def get(self) -> List[Project]:
        with self._lock:
            return list(self._projects)

    def update(self, projects: Iterable[Project]):
        with self._lock:
            self._projects = tuple(projects)


class Producer(ABC):
    """
    Base class for producers.

    A producer declares its metric families and, on each cycle, writes rows
    into one aggregator per family. Raising FetchError fails the cycle.
    """

    families: Tuple[MetricFamily, ...] = ()

    def __init__(self, client, max_workers: int = 4):
        self.client = client
        self.max_workers = max_workers

    @abstractmethod
    def produce(self, projects: List[Project], aggregators: Dict[str, HashedAggregator], filters: Filters):
        """Fetch data and record it into ``aggregators`` (keyed by family name)."""
        pass

    def for_each_project(self, projects: List[Project], func: Callable[[Project], None]):
        """Run ``func`` for every project on a worker pool.

        The first exception raised by a worker propagates after all workers
        finish.
        """
        if not projects:
            return
        workers = max(1, min(self.max_workers, len(projects)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(func, project) for project in projects]
        for future in futures:
            future.result()


class GeneralProducer(Producer):
    """One informational row per project."""

    families = (
        MetricFamily(
            "azure_devops_project_info",
            "Azure DevOps project",
            ("project_id", "project", "state"),
        ),
    )

    def __init__(self, client, max_workers: int = 4, catalog: Optional[ProjectCatalog] = None):
        super().__init__(client, max_workers)
        self.catalog = catalog

    def produce(self, projects, aggregators, filters):
        projects = self.client.list_projects()
        logger.debug(f"Listed {len(projects)} projects")
        if self.catalog is not None:
            self.catalog.update(projects)

        info = aggregators["azure_devops_project_info"]
        for project in projects:
            info.record_value(
                {"project_id": project.id, "project": project.name, "state": project.state},
                1,
            )


class ProjectProducer(Producer):
    """Repositories of every project."""

    families = (
        MetricFamily(
            "azure_devops_repository_info",
            "Azure DevOps git repository",
            ("project", "repository_id", "repository"),
        ),
        MetricFamily(
            "azure_devops_repository_size_bytes",
            "Azure DevOps git repository size in bytes",
            ("project", "repository_id"),
        ),
    )

    def produce(self, projects, aggregators, filters):
        info = aggregators["azure_devops_repository_info"]
        size = aggregators["azure_devops_repository_size_bytes"]

        def collect(project: Project):
            for repo in self.client.list_repositories(project.id):
                info.record_value(
                    {"project": project.name, "repository_id": repo.id, "repository": repo.name},
                    1,
                )
                size.record_value({"project": project.name, "repository_id": repo.id}, repo.size)

        self.for_each_project(projects, collect)


class PullRequestProducer(Producer):
    """Active pull requests of every project."""

    families = (
        MetricFamily(
            "azure_devops_pullrequest_info",
            "Azure DevOps pull request",
            ("project", "repository_id", "pullrequest_id", "title", "status", "creator", "is_draft"),
        ),
        MetricFamily(
            "azure_devops_pullrequest_created_timestamp",
            "Creation time of the pull request",
            ("project", "pullrequest_id"),
        ),
        MetricFamily(
            "azure_devops_pullrequest_count",
            "Number of pull requests by status",
            ("project", "status"),
        ),
    )

    def produce(self, projects, aggregators, filters):
        info = aggregators["azure_devops_pullrequest_info"]
        created = aggregators["azure_devops_pullrequest_created_timestamp"]
        total = aggregators["azure_devops_pullrequest_count"]

        def collect(project: Project):
            for pr in self.client.list_pull_requests(project.id):
                pr_id = str(pr.id)
                info.record_value(
                    {
                        "project": project.name,
                        "repository_id": pr.repository_id,
                        "pullrequest_id": pr_id,
                        "title": pr.title,
                        "status": pr.status,
                        "creator": pr.creator,
                        "is_draft": bool_label(pr.is_draft),
                    },
                    1,
                )
                if pr.created is not None:
                    created.record_value({"project": project.name, "pullrequest_id": pr_id}, pr.created.timestamp())
                total.record({"project": project.name, "status": pr.status})

        self.for_each_project(projects, collect)


class BuildProducer(Producer):
    """Builds of every project within a lookback window."""

    families = (
        MetricFamily(
            "azure_devops_build_info",
            "Azure DevOps build",
            ("project", "build_id", "definition", "status", "result", "reason"),
        ),
        MetricFamily(
            "azure_devops_build_duration_seconds",
            "Build run time in seconds",
            ("project", "build_id", "definition"),
        ),
        MetricFamily(
            "azure_devops_build_queue_seconds",
            "Time the build spent queued in seconds",
            ("project", "build_id", "definition"),
        ),
        MetricFamily(
            "azure_devops_build_result_count",
            "Number of builds by definition and result",
            ("project", "definition", "result"),
        ),
    )

    def __init__(self, client, max_workers: int = 4, lookback_s: float = 86400.0):
        super().__init__(client, max_workers)
        self.lookback_s = lookback_s

    def produce(self, projects, aggregators, filters):
        info = aggregators["azure_devops_build_info"]
        duration = aggregators["azure_devops_build_duration_seconds"]
        queue = aggregators["azure_devops_build_queue_seconds"]
        results = aggregators["azure_devops_build_result_count"]
        min_time = datetime.now(timezone.utc) - timedelta(seconds=self.lookback_s)

        def collect(project: Project):
            for build in self.client.list_builds(project.id, min_time):
                build_id = str(build.id)
                info.record_value(
                    {
                        "project": project.name,
                        "build_id": build_id,
                        "definition": build.definition,
                        "status": build.status,
                        "result": build.result,
                        "reason": build.reason,
                    },
                    1,
                )
                labels = {"project": project.name, "build_id": build_id, "definition": build.definition}
                if build.duration_seconds() is not None:
                    duration.record_value(labels, build.duration_seconds())
                if build.queue_seconds() is not None:
                    queue.record_value(labels, build.queue_seconds())
                if build.result:
                    results.record({"project": project.name, "definition": build.definition, "result": build.result})

        self.for_each_project(projects, collect)


class LatestBuildProducer(Producer):
    """Most recent build of each definition."""

    families = (
        MetricFamily(
            "azure_devops_build_latest_info",
            "Latest build of a definition",
            ("project", "definition", "build_id", "result"),
        ),
        MetricFamily(
            "azure_devops_build_latest_status",
            "Result of the latest build (0=none, 1=succeeded, 2=partiallySucceeded, 3=failed, 4=canceled)",
            ("project", "definition"),
        ),
        MetricFamily(
            "azure_devops_build_latest_finished_timestamp",
            "Finish time of the latest build",
            ("project", "definition"),
        ),
    )

    def produce(self, projects, aggregators, filters):
        info = aggregators["azure_devops_build_latest_info"]
        status = aggregators["azure_devops_build_latest_status"]
        finished = aggregators["azure_devops_build_latest_finished_timestamp"]

        def collect(project: Project):
            for build in self.client.list_latest_builds(project.id):
                labels = {"project": project.name, "definition": build.definition}
                info.record_value(dict(labels, build_id=str(build.id), result=build.result), 1)
                status.record_value(labels, BUILD_RESULT_CODES.get(build.result, 0))
                if build.finished is not None:
                    finished.record_value(labels, build.finished.timestamp())

        self.for_each_project(projects, collect)


class ReleaseProducer(Producer):
    """Recent releases and the status of their environments."""

    families = (
        MetricFamily(
            "azure_devops_release_info",
            "Azure DevOps release",
            ("project", "release_id", "release", "definition"),
        ),
        MetricFamily(
            "azure_devops_release_environment_status",
            "Release environment status (0=unknown, 1=succeeded, 2=partiallySucceeded, 3=rejected, "
            "4=canceled, 5=inProgress, 6=queued, 7=scheduled, 8=notStarted)",
            ("project", "release_id", "environment"),
        ),
    )

    def produce(self, projects, aggregators, filters):
        info = aggregators["azure_devops_release_info"]
        env_status = aggregators["azure_devops_release_environment_status"]

        def collect(project: Project):
            for release in self.client.list_releases(project.id):
                release_id = str(release.id)
                info.record_value(
                    {
                        "project": project.name,
                        "release_id": release_id,
                        "release": release.name,
                        "definition": release.definition,
                    },
                    1,
                )
                for env in release.environments:
                    env_status.record_value(
                        {"project": project.name, "release_id": release_id, "environment": env.name},
                        RELEASE_STATUS_CODES.get(env.status, 0),
                    )

        self.for_each_project(projects, collect)


class AgentPoolProducer(Producer):
    """Agent pools of the organisation and their agents."""

    families = (
        MetricFamily(
            "azure_devops_agentpool_info",
            "Azure DevOps agent pool",
            ("pool_id", "pool", "is_hosted"),
        ),
        MetricFamily(
            "azure_devops_agentpool_size",
            "Number of agents in the pool",
            ("pool_id",),
        ),
        MetricFamily(
            "azure_devops_agentpool_agent_info",
            "Agent of an agent pool",
            ("pool_id", "agent_id", "agent", "version", "status", "enabled"),
        ),
        MetricFamily(
            "azure_devops_agentpool_agent_busy",
            "1 if the agent is running a job",
            ("pool_id", "agent_id"),
        ),
    )

    def produce(self, projects, aggregators, filters):
        info = aggregators["azure_devops_agentpool_info"]
        size = aggregators["azure_devops_agentpool_size"]
        agent_info = aggregators["azure_devops_agentpool_agent_info"]
        busy = aggregators["azure_devops_agentpool_agent_busy"]

        pools = self.client.list_agent_pools()
        if filters.agent_pool_ids:
            wanted = set(filters.agent_pool_ids)
            pools = [pool for pool in pools if pool.id in wanted]
            logger.debug(f"Agent pool filter {sorted(wanted)} kept {len(pools)} pools")

        for pool in pools:
            pool_id = str(pool.id)
            info.record_value({"pool_id": pool_id, "pool": pool.name, "is_hosted": bool_label(pool.is_hosted)}, 1)
            size.record_value({"pool_id": pool_id}, pool.size)

            for agent in self.client.list_agents(pool.id):
                agent_id = str(agent.id)
                agent_info.record_value(
                    {
                        "pool_id": pool_id,
                        "agent_id": agent_id,
                        "agent": agent.name,
                        "version": agent.version,
                        "status": agent.status,
                        "enabled": bool_label(agent.enabled),
                    },
                    1,
                )
                busy.record_value({"pool_id": pool_id, "agent_id": agent_id}, 1 if agent.busy else 0)
