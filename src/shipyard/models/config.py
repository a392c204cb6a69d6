"""Pydantic models for shipyard settings.

Settings are loaded by ``shipyard.config.loader`` from an optional YAML file
and ``SHIPYARD_*`` environment variables.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shipyard.config.defaults import (
    DEFAULT_INSTANCE_LADDER,
    DEFAULT_INSTANCE_WAIT,
    DEFAULT_READINESS_WAIT,
)


class ProvisioningSettings(BaseModel):
    """Cloud provisioning settings.

    Attributes:
        provider: Cloud provider name
        instance_ladder: Candidate instance sizes in order of preference
        instance_wait_attempts: Max describe calls while waiting for running
        instance_wait_interval: Seconds between describe calls
        connect_timeout: Cloud API connect timeout in seconds
        read_timeout: Cloud API read timeout in seconds
        key_name: Optional key pair name for administrative access
    """

    model_config = ConfigDict(extra="forbid")

    provider: str = Field(default="aws", description="Cloud provider")
    instance_ladder: list[str] = Field(
        default_factory=lambda: list(DEFAULT_INSTANCE_LADDER),
        min_length=1,
        description="Candidate instance sizes in order of preference",
    )
    instance_wait_attempts: int = Field(
        default=int(DEFAULT_INSTANCE_WAIT["max_attempts"]), ge=1
    )
    instance_wait_interval: float = Field(
        default=DEFAULT_INSTANCE_WAIT["interval_seconds"], ge=0
    )
    connect_timeout: float = Field(default=10.0, gt=0)
    read_timeout: float = Field(default=60.0, gt=0)
    key_name: str | None = Field(default=None)

    @field_validator("instance_ladder")
    @classmethod
    def validate_unique_sizes(cls, v: list[str]) -> list[str]:
        """Reject duplicate sizes in the ladder."""
        if len(set(v)) != len(v):
            raise ValueError(f"Instance ladder contains duplicates: {v}")
        return v


class PlannerSettings(BaseModel):
    """AI plan generation settings."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True, description="Call the AI planner")
    model_id: str = Field(
        default="anthropic.claude-3-sonnet-20240229-v1:0",
        description="Bedrock model identifier",
    )
    region: str = Field(default="us-east-1", description="Bedrock region")
    max_tokens: int = Field(default=4000, ge=1)
    timeout_seconds: float = Field(default=60.0, gt=0)


class ReadinessSettings(BaseModel):
    """Application readiness wait after the instance is running."""

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(
        default=int(DEFAULT_READINESS_WAIT["max_attempts"]), ge=1
    )
    interval_seconds: float = Field(
        default=DEFAULT_READINESS_WAIT["interval_seconds"], ge=0
    )


class TrackerSettings(BaseModel):
    """Status tracker HTTP probe settings."""

    model_config = ConfigDict(extra="forbid")

    probe_timeout: float = Field(default=5.0, gt=0)
    instrumented: bool = Field(
        default=True, description="Read breadcrumbs from running instances"
    )


class RepositorySettings(BaseModel):
    """Source repository API settings."""

    model_config = ConfigDict(extra="forbid")

    api_url: str = Field(default="https://api.github.com")
    token: str | None = Field(default=None, description="API token")
    timeout: float = Field(default=15.0, gt=0)


class ShipyardSettings(BaseModel):
    """Top-level shipyard settings."""

    model_config = ConfigDict(extra="forbid")

    state_path: Path = Field(
        default=Path(".shipyard") / "deployments.json",
        description="Durable record store location",
    )
    provisioning: ProvisioningSettings = Field(default_factory=ProvisioningSettings)
    planner: PlannerSettings = Field(default_factory=PlannerSettings)
    readiness: ReadinessSettings = Field(default_factory=ReadinessSettings)
    tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    repository: RepositorySettings = Field(default_factory=RepositorySettings)
