"""Shared domain models for rdsconnect."""

import getpass
import os
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional

from rdsconnect import constants
from rdsconnect.errors import ConnectError


class EndpointRole(str, Enum):
    WRITER = "Writer"
    READER = "Reader"


class Classification(str, Enum):
    WRITER = "WRITER"
    READER = "READER"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ClusterRecord:
    cluster_id: str
    region: str


@dataclass(frozen=True)
class EndpointRecord:
    cluster_id: str
    role: EndpointRole
    address: str


@dataclass(frozen=True)
class InstanceRecord:
    cluster_id: str
    instance_id: str
    address: str
    instance_class: str


@dataclass
class ClusterTopology:
    """One cluster together with the endpoints and instances it owns."""

    cluster: ClusterRecord
    endpoints: List[EndpointRecord] = field(default_factory=list)
    instances: List[InstanceRecord] = field(default_factory=list)

    @property
    def cluster_id(self) -> str:
        return self.cluster.cluster_id

    @property
    def region(self) -> str:
        return self.cluster.region

    def endpoint(self, role: EndpointRole) -> Optional[EndpointRecord]:
        for endpoint in self.endpoints:
            if endpoint.role == role:
                return endpoint
        return None


@dataclass
class DiscoveryResult:
    topologies: List[ClusterTopology]
    failed_regions: Dict[str, str] = field(default_factory=dict)

    @property
    def instance_count(self) -> int:
        return sum(len(topology.instances) for topology in self.topologies)


@dataclass(frozen=True)
class Target:
    """A resolved connection target: a cluster endpoint or a member instance."""

    cluster_id: str
    region: str
    address: str
    kind: str
    name: str

    @property
    def label(self) -> str:
        if self.kind == "endpoint":
            return f"{self.name} endpoint"
        return f"instance {self.name}"


@dataclass(frozen=True)
class Credential:
    host: str
    username: str
    token: str
    issued_at: int
    identity_context: str
    region: str


@dataclass
class ProvisionResult:
    credential: Credential
    target: Target
    classification: Classification
    daemon_pid: Optional[int] = None

    @property
    def requires_warning(self) -> bool:
        return self.classification == Classification.WRITER


def _expand(path: str) -> str:
    return os.path.abspath(os.path.expanduser(path))


def _default_username() -> str:
    return os.environ.get(constants.DB_USERNAME_ENV_VAR) or getpass.getuser()


@dataclass(frozen=True)
class Settings:
    """Resolved runtime configuration shared by every service."""

    regions: List[str] = field(default_factory=lambda: list(constants.DEFAULT_REGIONS))
    db_username: str = field(default_factory=_default_username)
    db_port: int = constants.DEFAULT_DB_PORT
    engines: List[str] = field(default_factory=lambda: list(constants.DEFAULT_ENGINES))
    state_dir: str = field(default_factory=lambda: _expand(constants.DEFAULT_STATE_DIR))
    credential_file: str = field(
        default_factory=lambda: _expand(constants.DEFAULT_CREDENTIAL_FILE)
    )
    token_lifetime_minutes: int = constants.TOKEN_LIFETIME_MINUTES
    safety_margin_minutes: int = constants.SAFETY_MARGIN_MINUTES
    retry_backoff_seconds: float = constants.RETRY_BACKOFF_SECONDS
    region_timeout_seconds: float = constants.REGION_TIMEOUT_SECONDS
    api_connect_timeout: int = constants.API_CONNECT_TIMEOUT
    api_read_timeout: int = constants.API_READ_TIMEOUT
    api_max_retries: int = constants.API_MAX_RETRIES
    classifier_timeout_seconds: int = constants.CLASSIFIER_TIMEOUT_SECONDS
    ssl_ca: Optional[str] = None
    default_cluster: str = constants.DEFAULT_CLUSTER
    monitor_role: bool = False

    def __post_init__(self):
        if not self.regions:
            raise ConnectError("At least one region must be configured.")
        if self.safety_margin_minutes >= self.token_lifetime_minutes:
            raise ConnectError("safety_margin_minutes must be smaller than token_lifetime_minutes.")

    @classmethod
    def from_mapping(cls, values: Dict[str, Any]) -> "Settings":
        known = {item.name for item in fields(cls)}
        kwargs = {key: value for key, value in values.items() if key in known and value is not None}
        for key in ("state_dir", "credential_file", "ssl_ca"):
            if kwargs.get(key):
                kwargs[key] = _expand(str(kwargs[key]))
        for key in ("regions", "engines"):
            if key in kwargs and isinstance(kwargs[key], str):
                kwargs[key] = [item.strip() for item in kwargs[key].split(",") if item.strip()]
        return cls(**kwargs)

    @property
    def refresh_interval_seconds(self) -> int:
        return (self.token_lifetime_minutes - self.safety_margin_minutes) * 60

    @property
    def token_lifetime_seconds(self) -> int:
        return self.token_lifetime_minutes * 60

    def cache_file(self, identity_context: str) -> str:
        safe_name = identity_context.replace(os.sep, "_")
        return os.path.join(self.state_dir, f"{constants.CACHE_FILE_PREFIX}{safe_name}")

    @property
    def daemon_lock_file(self) -> str:
        return os.path.join(self.state_dir, constants.DAEMON_LOCK_FILE)

    @property
    def daemon_status_file(self) -> str:
        return os.path.join(self.state_dir, constants.DAEMON_STATUS_FILE)

    @property
    def daemon_log_file(self) -> str:
        return os.path.join(self.state_dir, constants.DAEMON_LOG_FILE)
