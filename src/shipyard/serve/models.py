"""Request and response models for the deployment HTTP API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from shipyard.models.plan import DeploymentPlan
from shipyard.models.record import DeploymentSummary
from shipyard.models.request import CloudCredentials


class StartDeploymentBody(BaseModel):
    """Body of ``POST /deployments``.

    When ``credentials`` is omitted the server falls back to the standard
    AWS environment variables of its own process.
    """

    model_config = ConfigDict(extra="forbid")

    repository_url: str = Field(..., description="owner/name or GitHub URL")
    branch: str = Field(default="main")
    intent: str = Field(default="")
    region: str | None = Field(default=None, description="Overrides the region")
    plan: DeploymentPlan | None = Field(default=None)
    app_port: int | None = Field(default=None, ge=1, le=65535)
    credentials: CloudCredentials | None = Field(default=None)


class StartDeploymentResponse(BaseModel):
    """Accepted deployment."""

    deployment_id: str
    status_url: str


class HealthResponse(BaseModel):
    """Service health."""

    status: str
    version: str
    active_deployments: int = 0
    uptime_seconds: float = 0.0


class DeploymentListResponse(BaseModel):
    """Stored deployments, newest first."""

    deployments: list[DeploymentSummary] = Field(default_factory=list)
    total: int = 0
