"""Typed records for Azure DevOps API responses."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp as returned by the API."""
    if not value:
        return None
    value = value.replace("Z", "+00:00")
    # The API sends up to seven fractional digits; datetime accepts six.
    if "." in value:
        head, _, tail = value.partition(".")
        digits = ""
        rest = ""
        for i, ch in enumerate(tail):
            if not ch.isdigit():
                rest = tail[i:]
                break
            digits += ch
        value = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    return datetime.fromisoformat(value)


@dataclass
class Project:
    id: str
    name: str
    state: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Project":
        return cls(id=data["id"], name=data["name"], state=data.get("state", ""))


@dataclass
class Repository:
    id: str
    name: str
    project_id: str
    size: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Repository":
        return cls(
            id=data["id"],
            name=data["name"],
            project_id=(data.get("project") or {}).get("id", ""),
            size=int(data.get("size") or 0),
        )


@dataclass
class PullRequest:
    id: int
    title: str
    status: str
    repository_id: str
    creator: str = ""
    is_draft: bool = False
    created: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "PullRequest":
        return cls(
            id=int(data["pullRequestId"]),
            title=data.get("title", ""),
            status=data.get("status", ""),
            repository_id=(data.get("repository") or {}).get("id", ""),
            creator=(data.get("createdBy") or {}).get("displayName", ""),
            is_draft=bool(data.get("isDraft", False)),
            created=parse_timestamp(data.get("creationDate")),
        )


@dataclass
class Build:
    id: int
    definition: str
    status: str = ""
    result: str = ""
    reason: str = ""
    queued: Optional[datetime] = None
    started: Optional[datetime] = None
    finished: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Build":
        return cls(
            id=int(data["id"]),
            definition=(data.get("definition") or {}).get("name", ""),
            status=data.get("status", ""),
            result=data.get("result", ""),
            reason=data.get("reason", ""),
            queued=parse_timestamp(data.get("queueTime")),
            started=parse_timestamp(data.get("startTime")),
            finished=parse_timestamp(data.get("finishTime")),
        )

    def queue_seconds(self) -> Optional[float]:
        if self.queued and self.started:
            return (self.started - self.queued).total_seconds()
        return None

    def duration_seconds(self) -> Optional[float]:
        if self.started and self.finished:
            return (self.finished - self.started).total_seconds()
        return None


@dataclass
class ReleaseEnvironment:
    name: str
    status: str


@dataclass
class Release:
    id: int
    name: str
    definition: str
    environments: List[ReleaseEnvironment] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Release":
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            definition=(data.get("releaseDefinition") or {}).get("name", ""),
            environments=[
                ReleaseEnvironment(name=env.get("name", ""), status=env.get("status", ""))
                for env in data.get("environments") or []
            ],
        )


@dataclass
class AgentPool:
    id: int
    name: str
    is_hosted: bool = False
    size: int = 0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "AgentPool":
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            is_hosted=bool(data.get("isHosted", False)),
            size=int(data.get("size") or 0),
        )


@dataclass
class Agent:
    id: int
    name: str
    version: str = ""
    status: str = ""
    enabled: bool = True
    busy: bool = False

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Agent":
        return cls(
            id=int(data["id"]),
            name=data.get("name", ""),
            version=data.get("version", ""),
            status=data.get("status", ""),
            enabled=bool(data.get("enabled", True)),
            busy=data.get("assignedRequest") is not None,
        )
