"""Pydantic models for cloud provisioning results."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class InstanceDescription(BaseModel):
    """Result of a describe-instance call.

    Attributes:
        instance_id: Cloud instance identifier
        state: Provider lifecycle state (e.g., "pending", "running")
        public_address: Public IPv4 address, once assigned
    """

    model_config = ConfigDict(extra="forbid")

    instance_id: str = Field(..., description="Cloud instance identifier")
    state: str = Field(..., description="Provider lifecycle state")
    public_address: str | None = Field(
        default=None, description="Public IPv4 address"
    )

    @property
    def is_running(self) -> bool:
        """Return True when running with a public address."""
        return self.state == "running" and bool(self.public_address)


class ProvisionResult(BaseModel):
    """Result of a successful provisioning run.

    Attributes:
        instance_id: Created instance identifier
        public_address: Public IPv4 address of the running instance
        instance_size: Instance size that was accepted by the provider
        network_rule_id: Network ingress rule identifier
        image_id: Machine image used for the instance
    """

    model_config = ConfigDict(extra="forbid")

    instance_id: str = Field(..., description="Created instance identifier")
    public_address: str = Field(..., description="Public IPv4 address")
    instance_size: str = Field(..., description="Accepted instance size")
    network_rule_id: str = Field(..., description="Network ingress rule id")
    image_id: str = Field(..., description="Machine image id")
