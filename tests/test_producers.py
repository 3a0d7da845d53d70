"""Tests for the producer variants against a fake API client."""
from datetime import datetime, timezone

import pytest

from devops_exporter.aggregator import HashedAggregator
from devops_exporter.errors import FetchError
from devops_exporter.models import Build, Project, PullRequest, Release, ReleaseEnvironment, Repository
from devops_exporter.producers import (
    AgentPoolProducer,
    BuildProducer,
    Filters,
    GeneralProducer,
    LatestBuildProducer,
    ProjectCatalog,
    ProjectProducer,
    PullRequestProducer,
    ReleaseProducer,
)


def run(producer, projects=(), filters=Filters()):
    aggregators = {f.name: HashedAggregator(f.label_names) for f in producer.families}
    producer.produce(list(projects), aggregators, filters)
    return {name: agg.snapshot() for name, agg in aggregators.items()}


def test_general_one_row_per_project(client):
    catalog = ProjectCatalog()
    rows = run(GeneralProducer(client, catalog=catalog))

    info = rows["azure_devops_project_info"]
    assert len(info) == 1
    assert info[0].labels["project"] == "P"
    assert info[0].labels["project_id"] == "1"
    assert info[0].value == 1
    assert [p.name for p in catalog.get()] == ["P"]


def test_zero_records_is_empty_success(client):
    client.projects = []
    rows = run(GeneralProducer(client))
    assert rows == {"azure_devops_project_info": []}

    rows = run(BuildProducer(client), projects=[Project("1", "P")])
    assert all(r == [] for r in rows.values())


def test_project_repositories(client):
    client.repositories = {"1": [Repository(id="r1", name="repo", project_id="1", size=2048)]}
    rows = run(ProjectProducer(client), client.projects)

    assert rows["azure_devops_repository_info"][0].labels == {
        "project": "P", "repository_id": "r1", "repository": "repo"
    }
    assert rows["azure_devops_repository_size_bytes"][0].value == 2048


def test_pull_request_count_by_status(client):
    created = datetime(2024, 1, 2, tzinfo=timezone.utc)
    client.pull_requests = {
        "1": [
            PullRequest(id=1, title="a", status="active", repository_id="r1", created=created),
            PullRequest(id=2, title="b", status="active", repository_id="r1", is_draft=True),
        ]
    }
    rows = run(PullRequestProducer(client), client.projects)

    totals = rows["azure_devops_pullrequest_count"]
    assert len(totals) == 1
    assert totals[0].labels == {"project": "P", "status": "active"}
    assert totals[0].value == 2

    info = {r.labels["pullrequest_id"]: r for r in rows["azure_devops_pullrequest_info"]}
    assert info["2"].labels["is_draft"] == "true"
    assert rows["azure_devops_pullrequest_created_timestamp"][0].value == created.timestamp()


def test_builds_durations_and_results(client):
    queued = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    started = datetime(2024, 1, 1, 12, 0, 30, tzinfo=timezone.utc)
    finished = datetime(2024, 1, 1, 12, 5, 30, tzinfo=timezone.utc)
    client.builds = {
        "1": [
            Build(id=10, definition="ci", status="completed", result="succeeded",
                  queued=queued, started=started, finished=finished),
            Build(id=11, definition="ci", status="completed", result="succeeded"),
            Build(id=12, definition="ci", status="inProgress", result=""),
        ]
    }
    rows = run(BuildProducer(client), client.projects)

    assert len(rows["azure_devops_build_info"]) == 3
    assert rows["azure_devops_build_duration_seconds"][0].value == 300
    assert rows["azure_devops_build_queue_seconds"][0].value == 30
    results = rows["azure_devops_build_result_count"]
    assert len(results) == 1
    assert results[0].value == 2


def test_latest_build_status_enum(client):
    client.latest_builds = {
        "1": [
            Build(id=1, definition="ci", result="failed"),
            Build(id=2, definition="nightly", result="weird"),
        ]
    }
    rows = run(LatestBuildProducer(client), client.projects)

    status = {r.labels["definition"]: r.value for r in rows["azure_devops_build_latest_status"]}
    assert status == {"ci": 3, "nightly": 0}


def test_release_environment_status(client):
    client.releases = {
        "1": [
            Release(id=5, name="Release-5", definition="deploy", environments=[
                ReleaseEnvironment("dev", "succeeded"),
                ReleaseEnvironment("prod", "inProgress"),
            ])
        ]
    }
    rows = run(ReleaseProducer(client), client.projects)

    envs = {r.labels["environment"]: r.value for r in rows["azure_devops_release_environment_status"]}
    assert envs == {"dev": 1, "prod": 5}


def test_agent_pool_empty_filter_returns_all(pool_client):
    rows = run(AgentPoolProducer(pool_client))
    pool_ids = sorted(r.labels["pool_id"] for r in rows["azure_devops_agentpool_info"])
    assert pool_ids == ["5", "6", "7"]


def test_agent_pool_filter_keeps_listed_ids(pool_client):
    rows = run(AgentPoolProducer(pool_client), filters=Filters(agent_pool_ids=(7,)))

    assert [r.labels["pool_id"] for r in rows["azure_devops_agentpool_info"]] == ["7"]
    assert [r.labels["pool_id"] for r in rows["azure_devops_agentpool_size"]] == ["7"]
    agents = rows["azure_devops_agentpool_agent_info"]
    assert len(agents) == 1
    assert agents[0].labels["agent"] == "agent-70"
    assert rows["azure_devops_agentpool_agent_busy"][0].value == 1
    assert pool_client.calls.count("list_agents") == 1


def test_worker_failure_fails_the_cycle(client):
    client.projects = [Project(str(i), f"P{i}") for i in range(5)]
    client.fail = FetchError("boom")
    with pytest.raises(FetchError):
        run(ProjectProducer(client, max_workers=3), client.projects)
