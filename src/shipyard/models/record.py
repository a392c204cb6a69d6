"""Deployment record and status models.

A ``DeploymentRecord`` is an immutable snapshot. Every mutation produces a
new snapshot via ``model_copy`` which the record store swaps in atomically,
so concurrent readers always observe a consistent record.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from shipyard.lib.errors import ErrorKind
from shipyard.models.plan import DeploymentPlan
from shipyard.models.profile import ProjectProfile


class LifecycleState(str, Enum):
    """Deployment lifecycle states in forward order."""

    REQUESTED = "requested"
    PLAN_RESOLVED = "plan_resolved"
    NETWORK_PROVISIONED = "network_provisioned"
    INSTANCE_REQUESTED = "instance_requested"
    INSTANCE_RUNNING = "instance_running"
    BOOTSTRAPPING = "bootstrapping"
    READY = "ready"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Return True for READY and FAILED."""
        return self in (LifecycleState.READY, LifecycleState.FAILED)


FORWARD_ORDER: tuple[LifecycleState, ...] = (
    LifecycleState.REQUESTED,
    LifecycleState.PLAN_RESOLVED,
    LifecycleState.NETWORK_PROVISIONED,
    LifecycleState.INSTANCE_REQUESTED,
    LifecycleState.INSTANCE_RUNNING,
    LifecycleState.BOOTSTRAPPING,
    LifecycleState.READY,
)

# Progress reached on entering each state
STATE_PROGRESS: dict[LifecycleState, int] = {
    LifecycleState.REQUESTED: 0,
    LifecycleState.PLAN_RESOLVED: 10,
    LifecycleState.NETWORK_PROVISIONED: 15,
    LifecycleState.INSTANCE_REQUESTED: 18,
    LifecycleState.INSTANCE_RUNNING: 20,
    LifecycleState.BOOTSTRAPPING: 20,
    LifecycleState.READY: 100,
}


def can_transition(current: LifecycleState, target: LifecycleState) -> bool:
    """Return True if a record may move from ``current`` to ``target``.

    Transitions only move forward. FAILED is reachable from any
    non-terminal state. Terminal states never change.
    """
    if current.is_terminal:
        return False
    if target == LifecycleState.FAILED:
        return True
    return FORWARD_ORDER.index(target) > FORWARD_ORDER.index(current)


class ProgressMode(str, Enum):
    """How a status snapshot derived its progress."""

    RECORDED = "recorded"
    INSTRUMENTED = "instrumented"
    DEGRADED = "degraded"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LogEntry(BaseModel):
    """A timestamped line in a deployment's log."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    timestamp: datetime = Field(default_factory=_utcnow)
    message: str
    state: LifecycleState | None = None

    def render(self) -> str:
        """Format the entry as a single log line."""
        return f"{self.timestamp.isoformat()} {self.message}"


class ResourceRefs(BaseModel):
    """References to cloud resources created for a deployment."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    region: str | None = None
    image_id: str | None = None
    network_rule_id: str | None = None
    instance_id: str | None = None
    instance_size: str | None = None
    public_address: str | None = None


class ErrorInfo(BaseModel):
    """Terminal error attached to a failed deployment."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: ErrorKind
    message: str
    remediation: tuple[str, ...] = Field(default_factory=tuple)


class DeploymentRecord(BaseModel):
    """Per-deployment phase, progress, logs and resources.

    Attributes:
        deployment_id: Unique id, equal to the originating request id
        repository_url: Repository being deployed
        branch: Branch being deployed
        state: Current lifecycle state
        progress: Monotonic progress 0-100
        reported_progress: Highest progress any status poll has reported
        health_confirmed: Whether a health check through the proxy succeeded
        logs: Append-only timestamped log entries
        resources: Cloud resource references
        error: Terminal error, when failed
        plan: Resolved deployment plan
        profile: Detected project profile
        started_at: When the deployment was requested
        updated_at: Last mutation time
        finished_at: When a terminal state was reached
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    deployment_id: str
    repository_url: str
    branch: str = "main"
    state: LifecycleState = LifecycleState.REQUESTED
    progress: int = Field(default=0, ge=0, le=100)
    reported_progress: int = Field(default=0, ge=0, le=100)
    health_confirmed: bool = False
    logs: tuple[LogEntry, ...] = Field(default_factory=tuple)
    resources: ResourceRefs = Field(default_factory=ResourceRefs)
    error: ErrorInfo | None = None
    plan: DeploymentPlan | None = None
    profile: ProjectProfile | None = None
    started_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None


class DeploymentStore(BaseModel):
    """Top-level record container persisted by the JSON record store."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="1.0", description="State file version")
    deployments: dict[str, DeploymentRecord] = Field(
        default_factory=dict, description="Records keyed by deployment id"
    )


class StatusSnapshot(BaseModel):
    """Answer to a status poll. Always returned, never raised."""

    model_config = ConfigDict(extra="forbid")

    deployment_id: str
    found: bool = True
    phase: LifecycleState | None = None
    progress: int = Field(default=0, ge=0, le=100)
    progress_mode: ProgressMode = ProgressMode.RECORDED
    message: str = ""
    logs: list[str] = Field(default_factory=list)
    resources: ResourceRefs = Field(default_factory=ResourceRefs)
    urls: list[str] = Field(default_factory=list)
    error: ErrorInfo | None = None
    application_ready: bool = False
    elapsed_seconds: float = 0.0


class DeploymentSummary(BaseModel):
    """One line of a deployment listing."""

    model_config = ConfigDict(extra="forbid")

    deployment_id: str
    repository_url: str
    branch: str = "main"
    phase: LifecycleState
    progress: int = Field(default=0, ge=0, le=100)
    public_address: str | None = None
    started_at: datetime
