"""Pydantic models for deployment requests."""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from shipyard.models.plan import DeploymentPlan

# owner/name, https://github.com/owner/name(.git) or git@github.com:owner/name.git
REPOSITORY_URL_PATTERN = re.compile(
    r"^(?:(?:https?://)?(?:www\.)?github\.com/|git@github\.com:)?"
    r"(?P<owner>[A-Za-z0-9][A-Za-z0-9-]*)/(?P<name>[A-Za-z0-9._-]+?)(?:\.git)?/?$"
)
BRANCH_PATTERN = re.compile(r"^[A-Za-z0-9._/-]+$")


def generate_deployment_id() -> str:
    """Generate a globally unique deployment identifier."""
    return f"deploy-{uuid.uuid4().hex}"


class CloudCredentials(BaseModel):
    """Reference to the caller's cloud credentials.

    Attributes:
        access_key_id: Access key identifier
        secret_access_key: Secret access key (never logged)
        session_token: Optional session token for temporary credentials
        region: Target cloud region
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    access_key_id: str = Field(default="", description="Access key identifier")
    secret_access_key: SecretStr = Field(
        default=SecretStr(""), description="Secret access key"
    )
    session_token: SecretStr | None = Field(
        default=None, description="Session token for temporary credentials"
    )
    region: str = Field(default="", description="Target cloud region")

    @property
    def is_complete(self) -> bool:
        """Return True when key id, secret and region are all present."""
        return bool(
            self.access_key_id
            and self.secret_access_key.get_secret_value()
            and self.region
        )


class DeploymentRequest(BaseModel):
    """Immutable input for a single deployment.

    Attributes:
        request_id: Globally unique id, also used as the deployment id
        repository_url: Source repository reference
        branch: Branch to deploy
        intent: Natural-language deployment intent
        plan: Optional pre-approved deployment plan
        credentials: Cloud credential reference
        app_port: Port the application listens on inside the instance
        created_at: Request creation timestamp
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    request_id: str = Field(
        default_factory=generate_deployment_id,
        description="Globally unique request and deployment id",
    )
    repository_url: str = Field(..., description="Source repository reference")
    branch: str = Field(default="main", description="Branch to deploy")
    intent: str = Field(default="", description="Natural-language intent")
    plan: DeploymentPlan | None = Field(
        default=None, description="Pre-approved deployment plan"
    )
    credentials: CloudCredentials = Field(
        default_factory=CloudCredentials, description="Cloud credentials"
    )
    app_port: int | None = Field(
        default=None, ge=1, le=65535, description="Override application port"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Request creation timestamp",
    )

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        """Validate the branch name is safe to embed in a shell script."""
        if not BRANCH_PATTERN.match(v):
            raise ValueError(
                f"Invalid branch name: {v}. "
                "Must contain only letters, numbers, '.', '_', '/', '-'"
            )
        return v

    @property
    def region(self) -> str:
        """Return the target region from the credentials."""
        return self.credentials.region
