"""Pydantic models for shipyard deployments."""

from shipyard.models.plan import (
    Architecture,
    DeploymentPlan,
    PlannedService,
    PlanSource,
    PlanStep,
)
from shipyard.models.profile import (
    Language,
    ProjectFlavor,
    ProjectProfile,
    RepositorySnapshot,
)
from shipyard.models.record import (
    DeploymentRecord,
    ErrorInfo,
    LifecycleState,
    LogEntry,
    ProgressMode,
    ResourceRefs,
    StatusSnapshot,
)
from shipyard.models.request import CloudCredentials, DeploymentRequest

__all__ = [
    "Architecture",
    "CloudCredentials",
    "DeploymentPlan",
    "DeploymentRecord",
    "DeploymentRequest",
    "ErrorInfo",
    "Language",
    "LifecycleState",
    "LogEntry",
    "PlanSource",
    "PlanStep",
    "PlannedService",
    "ProgressMode",
    "ProjectFlavor",
    "ProjectProfile",
    "RepositorySnapshot",
    "ResourceRefs",
    "StatusSnapshot",
]
