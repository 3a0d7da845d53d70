"""Shared fixtures: an in-memory stand-in for the Azure DevOps client."""
import pytest

from devops_exporter.errors import FetchError
from devops_exporter.models import Agent, AgentPool, Project


class FakeClient:
    """Returns canned records; ``fail`` makes every call raise FetchError."""

    def __init__(self):
        self.projects = []
        self.repositories = {}
        self.pull_requests = {}
        self.builds = {}
        self.latest_builds = {}
        self.releases = {}
        self.pools = []
        self.agents = {}
        self.fail = None
        self.calls = []

    def _call(self, name, value):
        self.calls.append(name)
        if self.fail is not None:
            raise self.fail
        return list(value)

    def list_projects(self):
        return self._call("list_projects", self.projects)

    def list_repositories(self, project_id):
        return self._call("list_repositories", self.repositories.get(project_id, []))

    def list_pull_requests(self, project_id):
        return self._call("list_pull_requests", self.pull_requests.get(project_id, []))

    def list_builds(self, project_id, min_time=None):
        return self._call("list_builds", self.builds.get(project_id, []))

    def list_latest_builds(self, project_id):
        return self._call("list_latest_builds", self.latest_builds.get(project_id, []))

    def list_releases(self, project_id):
        return self._call("list_releases", self.releases.get(project_id, []))

    def list_agent_pools(self):
        return self._call("list_agent_pools", self.pools)

    def list_agents(self, pool_id):
        return self._call("list_agents", self.agents.get(pool_id, []))


@pytest.fixture
def client():
    fake = FakeClient()
    fake.projects = [Project(id="1", name="P", state="wellFormed")]
    return fake


@pytest.fixture
def pool_client():
    fake = FakeClient()
    fake.pools = [AgentPool(id=pool_id, name=f"pool-{pool_id}", size=pool_id) for pool_id in (5, 6, 7)]
    fake.agents = {7: [Agent(id=70, name="agent-70", version="3.220.0", status="online", busy=True)]}
    return fake


@pytest.fixture
def fetch_error():
    return FetchError("HTTP 503 from upstream", status_code=503, transient=True)
