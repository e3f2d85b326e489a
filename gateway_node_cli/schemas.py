from enum import Enum
from fractions import Fraction
from pydantic import BaseModel, Field, computed_field
from typing import Optional, List


# Compared as a Fraction so that exactly 80% running passes
HEALTH_THRESHOLD = Fraction(4, 5)


class ChangeStrategy(str, Enum):
    """How uncommitted changes in the node checkout are handled before an update."""
    PRESERVE = "preserve"
    ARCHIVE = "archive"
    DISCARD = "discard"
    ABORT = "abort"


class ErrorKind(str, Enum):
    PRECONDITION = "precondition"
    ABORTED = "aborted"
    RECONCILIATION = "reconciliation"
    TIMEOUT = "timeout"
    TOOL_NOT_FOUND = "tool_not_found"
    PERMISSION_DENIED = "permission_denied"
    GENERIC = "generic"
    VERIFICATION_SHORTFALL = "verification_shortfall"
    ALREADY_RUNNING = "already_running"


class UpdateStage(str, Enum):
    """States of the update pipeline, in the order they are entered."""
    START = "start"
    VERSION_CHECK = "version_check"
    SHORT_CIRCUIT = "short_circuit"
    RECONCILE = "reconcile"
    VC_PULL = "vc_pull"
    IMAGE_REFRESH = "image_refresh"
    TEARDOWN = "teardown"
    PRUNE = "prune"
    BRING_UP = "bring_up"
    VERIFY = "verify"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    ABORTED = "aborted"
    FAILED = "failed"


DEFAULT_INFO_URLS = [
    "http://envoy:3000/ar-io/info",
    "http://core:4000/ar-io/info",
    "http://localhost:3000/ar-io/info",
    "http://localhost:4000/ar-io/info",
]


class AppConfig(BaseModel):
    node_path: str = "~/ar-io-node"
    project_name: str = "ar-io-node"
    compose_file: str = "docker-compose.yaml"
    compose_command: List[str] = Field(default_factory=lambda: ["docker", "compose"])
    git_remote: str = "origin"
    canonical_branch: str = "main"
    release_repository: str = "ar-io/ar-io-node"
    info_urls: List[str] = Field(default_factory=lambda: list(DEFAULT_INFO_URLS))
    request_timeout: float = Field(default=5.0, description="Per-endpoint timeout for version lookups (seconds)")
    build_timeout: int = Field(default=1800, description="Ceiling for building images from source (seconds)")
    pull_timeout: int = 900
    git_timeout: int = 120
    verify_delay: float = Field(default=5.0, description="Pause after bring-up before sampling service state (seconds)")
    default_change_strategy: ChangeStrategy = ChangeStrategy.PRESERVE


class VersionFacts(BaseModel):
    deployed: Optional[str] = None
    local: Optional[str] = None
    latest: Optional[str] = None


class VersionComparison(BaseModel):
    update_needed: bool
    reason: str


class VersionCheck(BaseModel):
    facts: VersionFacts = Field(default_factory=VersionFacts)
    comparison: VersionComparison
    skipped: bool = False


class ReconcileResult(BaseModel):
    success: bool
    message: str
    archive_ref: Optional[str] = None
    change_set: List[str] = Field(default_factory=list)


class ImageRefreshResult(BaseModel):
    log: str = ""
    built_from_source: bool = False
    images_updated: bool = False


class ServiceState(BaseModel):
    name: str
    state: str
    status: Optional[str] = None


class ServiceHealthSnapshot(BaseModel):
    running_count: int
    total_count: int
    services: List[ServiceState] = Field(default_factory=list)

    @computed_field
    @property
    def health_fraction(self) -> float:
        if self.total_count <= 0:
            return 0.0
        return self.running_count / self.total_count

    @computed_field
    @property
    def is_healthy(self) -> bool:
        return self.running_count > 0 and self.running_count >= HEALTH_THRESHOLD * self.total_count


class UpdateOptions(BaseModel):
    perform_prune: bool = False
    force_update: bool = False
    # None defers to AppConfig.default_change_strategy
    handle_changes: Optional[ChangeStrategy] = None


class UpdateResult(BaseModel):
    success: bool
    message: str
    stage: UpdateStage
    failed_stage: Optional[UpdateStage] = None
    steps: List[str] = Field(default_factory=list)
    version_check: Optional[VersionCheck] = None
    health: Optional[ServiceHealthSnapshot] = None
    repository_updated: bool = False
    images_updated: bool = False
    built_from_source: bool = False
    archive_ref: Optional[str] = None
    change_set: List[str] = Field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    details: Optional[str] = None
