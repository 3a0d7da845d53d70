"""Azure DevOps REST API client using requests."""
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import base64
import logging

import requests

from devops_exporter.errors import FetchError
from devops_exporter.models import Agent, AgentPool, Build, Project, PullRequest, Release, Repository

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class AzureDevOpsClient:
    """
    Thin client for the Azure DevOps REST endpoints the collectors need.

    Authenticates with a personal access token (Basic auth, empty user).
    Every call is bounded by ``timeout_s``. Failures of any kind surface as
    FetchError.
    """

    def __init__(
        self,
        organisation: str,
        access_token: str,
        api_url: str = "https://dev.azure.com",
        release_api_url: str = "https://vsrm.dev.azure.com",
        api_version: str = "5.1",
        timeout_s: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        if not organisation or not access_token:
            raise ValueError("organisation and access_token are required")

        self.organisation = organisation
        self.api_url = f"{api_url.rstrip('/')}/{organisation}"
        self.release_api_url = f"{release_api_url.rstrip('/')}/{organisation}"
        self.api_version = api_version
        self.timeout_s = timeout_s

        self.session = session or requests.Session()
        self.session.headers.update(self._build_auth_header(access_token))

    @staticmethod
    def _build_auth_header(access_token: str) -> Dict[str, str]:
        credentials = base64.b64encode(f":{access_token}".encode()).decode()
        return {
            "Authorization": f"Basic {credentials}",
            "Accept": "application/json",
        }

    def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        query = {"api-version": self.api_version}
        if params:
            query.update({k: v for k, v in params.items() if v is not None})

        logger.debug(f"GET {url}")
        try:
            response = self.session.get(url, params=query, timeout=self.timeout_s)
        except requests.Timeout as e:
            raise FetchError(f"Timeout after {self.timeout_s}s: {url}") from e
        except requests.RequestException as e:
            raise FetchError(f"Request failed: {url}: {e}") from e

        if response.status_code >= 400:
            raise FetchError(
                f"HTTP {response.status_code} from {url}",
                status_code=response.status_code,
                transient=response.status_code in TRANSIENT_STATUS_CODES,
            )

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(f"Malformed JSON from {url}: {e}", status_code=response.status_code) from e

    def _list(self, url: str, parse: Callable[[Dict[str, Any]], Any], params: Optional[Dict[str, Any]] = None) -> List[Any]:
        payload = self._get(url, params)
        try:
            return [parse(item) for item in payload.get("value", [])]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise FetchError(f"Malformed response from {url}: {e!r}", transient=False) from e

    def list_projects(self) -> List[Project]:
        return self._list(f"{self.api_url}/_apis/projects", Project.from_api, {"$top": 1000})

    def list_repositories(self, project_id: str) -> List[Repository]:
        return self._list(f"{self.api_url}/{project_id}/_apis/git/repositories", Repository.from_api)

    def list_pull_requests(self, project_id: str, status: str = "active") -> List[PullRequest]:
        return self._list(
            f"{self.api_url}/{project_id}/_apis/git/pullrequests",
            PullRequest.from_api,
            {"searchCriteria.status": status, "$top": 1000},
        )

    def list_builds(self, project_id: str, min_time: Optional[datetime] = None) -> List[Build]:
        return self._list(
            f"{self.api_url}/{project_id}/_apis/build/builds",
            Build.from_api,
            {"minTime": min_time.isoformat() if min_time else None, "$top": 1000},
        )

    def list_latest_builds(self, project_id: str) -> List[Build]:
        return self._list(
            f"{self.api_url}/{project_id}/_apis/build/builds",
            Build.from_api,
            {"maxBuildsPerDefinition": 1, "queryOrder": "finishTimeDescending"},
        )

    def list_releases(self, project_id: str) -> List[Release]:
        return self._list(
            f"{self.release_api_url}/{project_id}/_apis/release/releases",
            Release.from_api,
            {"$expand": "environments", "$top": 100},
        )

    def list_agent_pools(self) -> List[AgentPool]:
        return self._list(f"{self.api_url}/_apis/distributedtask/pools", AgentPool.from_api)

    def list_agents(self, pool_id: int) -> List[Agent]:
        return self._list(
            f"{self.api_url}/_apis/distributedtask/pools/{pool_id}/agents",
            Agent.from_api,
            {"includeAssignedRequest": "true"},
        )
