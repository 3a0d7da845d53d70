"""Configuration models using Pydantic for validation."""
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
import os
import re

from devops_exporter.errors import ConfigError

TASK_NAMES = ("general", "project", "pullrequest", "build", "latest_build", "release", "agentpool")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")


def parse_duration(value: Any) -> float:
    """Parse ``15s``, ``1m30s``, ``2h`` or a plain number of seconds."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if not isinstance(value, str):
        raise ValueError(f"Invalid duration: {value!r}")

    text = value.strip()
    sign = 1.0
    if text.startswith("-"):
        sign, text = -1.0, text[1:]
    try:
        return sign * float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text) or not text:
        raise ValueError(f"Invalid duration: {value!r}")
    return sign * total


class AzureDevOpsConfig(BaseModel):
    """Azure DevOps connection settings."""
    organisation: str = ""
    access_token: str = ""
    api_url: str = "https://dev.azure.com"
    release_api_url: str = "https://vsrm.dev.azure.com"
    api_version: str = "5.1"
    timeout_s: float = 30.0
    agent_pool_ids: List[int] = Field(default_factory=list)  # empty = all pools
    build_lookback: float = 86400.0
    max_workers: int = 4

    @field_validator("timeout_s", "build_lookback", mode="before")
    @classmethod
    def validate_duration(cls, v):
        return parse_duration(v)

    @field_validator("agent_pool_ids", mode="before")
    @classmethod
    def validate_pool_ids(cls, v):
        if isinstance(v, str):
            return [int(part) for part in v.split()]
        return v


class ScrapeConfig(BaseModel):
    """Scrape intervals in seconds. Absent or non-positive per-task values use ``default``."""
    default: float = 900.0
    general: Optional[float] = 15.0
    project: Optional[float] = None
    pullrequest: Optional[float] = None
    build: Optional[float] = None
    latest_build: Optional[float] = 30.0
    release: Optional[float] = None
    agentpool: Optional[float] = 30.0
    disabled: List[str] = Field(default_factory=list)

    @field_validator(*(("default",) + TASK_NAMES), mode="before")
    @classmethod
    def validate_duration(cls, v):
        if v is None:
            return None
        return parse_duration(v)

    @field_validator("disabled")
    @classmethod
    def validate_disabled(cls, v):
        unknown = [name for name in v if name not in TASK_NAMES]
        if unknown:
            raise ValueError(f"Unknown collectors in disabled list: {unknown}")
        return v

    def interval_for(self, task_name: str) -> float:
        """Resolve the interval of a task; 0 means the task is disabled."""
        if task_name in self.disabled:
            return 0.0
        value = getattr(self, task_name)
        if value is None or value <= 0:
            return self.default
        return value


class CacheConfig(BaseModel):
    """Shared metrics cache. A ttl of 0 disables it."""
    ttl: float = 0.0

    @field_validator("ttl", mode="before")
    @classmethod
    def validate_duration(cls, v):
        return parse_duration(v)


class ServerConfig(BaseModel):
    """HTTP listeners."""
    bind: str = ":8080"
    control_api_port: int = 8081  # 0 disables the control API


class OTELExporterConfig(BaseModel):
    """OpenTelemetry push exporter configuration."""
    enabled: bool = False
    endpoint: str = "localhost:4317"
    insecure: bool = True
    prefix: str = ""
    export_interval_s: int = 60
    headers: Dict[str, str] = Field(default_factory=dict)
    resource: Dict[str, str] = Field(default_factory=dict)


class ExportersConfig(BaseModel):
    """Configuration for push exporters."""
    otel: OTELExporterConfig = Field(default_factory=OTELExporterConfig)


class GlobalConfig(BaseModel):
    """Global configuration settings."""
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "text"


class Config(BaseModel):
    """Root configuration model."""
    model_config = ConfigDict(populate_by_name=True)

    global_: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    azure_devops: AzureDevOpsConfig = Field(default_factory=AzureDevOpsConfig)
    scrape: ScrapeConfig = Field(default_factory=ScrapeConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    exporters: ExportersConfig = Field(default_factory=ExportersConfig)

    @model_validator(mode='after')
    def validate_credentials(self):
        """Organisation and access token are required."""
        missing = []
        if not self.azure_devops.organisation:
            missing.append("organisation")
        if not self.azure_devops.access_token:
            missing.append("access_token")
        if missing:
            raise ValueError(f"Missing required Azure DevOps settings: {', '.join(missing)}")
        return self


# environment variable -> path in the raw config
ENV_OVERRIDES: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("AZURE_DEVOPS_ORGANISATION", ("azure_devops", "organisation")),
    ("AZURE_DEVOPS_ACCESS_TOKEN", ("azure_devops", "access_token")),
    ("AZURE_DEVOPS_FILTER_AGENTPOOL", ("azure_devops", "agent_pool_ids")),
    ("SCRAPE_TIME", ("scrape", "default")),
    ("SCRAPE_TIME_GENERAL", ("scrape", "general")),
    ("SCRAPE_TIME_PROJECT", ("scrape", "project")),
    ("SCRAPE_TIME_PULLREQUEST", ("scrape", "pullrequest")),
    ("SCRAPE_TIME_BUILD", ("scrape", "build")),
    ("SCRAPE_TIME_RELEASE", ("scrape", "release")),
    ("SCRAPE_TIME_LATEST_BUILD", ("scrape", "latest_build")),
    ("SCRAPE_TIME_AGENTPOOL", ("scrape", "agentpool")),
    ("SERVER_BIND", ("server", "bind")),
    ("CACHE_TTL", ("cache", "ttl")),
    ("LOG_LEVEL", ("global", "log_level")),
    ("OTEL_ENDPOINT", ("exporters", "otel", "endpoint")),
)


def _set_path(raw: Dict[str, Any], path: Tuple[str, ...], value: Any):
    node = raw
    for key in path[:-1]:
        if not isinstance(node.get(key), dict):
            node[key] = {}
        node = node[key]
    node[path[-1]] = value


def load_config(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Dict[Tuple[str, ...], Any]] = None,
) -> Config:
    """Load and validate configuration.

    Precedence, lowest first: model defaults, YAML file, environment,
    ``overrides`` (command-line flags keyed by config path).
    """
    import yaml

    environ = os.environ if environ is None else environ
    raw_config: Dict[str, Any] = {}

    if config_path:
        if not os.path.exists(config_path):
            raise ConfigError(f"Configuration file not found: {config_path}")
        with open(config_path, 'r') as f:
            try:
                raw_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}")
        if not isinstance(raw_config, dict):
            raise ConfigError(f"Configuration file must contain a mapping: {config_path}")

    # Apply environment variable overrides
    for env_name, path in ENV_OVERRIDES:
        if env_value := environ.get(env_name):
            _set_path(raw_config, path, env_value)

    for path, value in (overrides or {}).items():
        if value is not None:
            _set_path(raw_config, path, value)

    try:
        return Config(**raw_config)
    except (ValidationError, ValueError) as e:
        raise ConfigError(f"Configuration validation failed: {e}")
