"""Pydantic models for deployment plans."""

from __future__ import annotations

from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Architecture(str, Enum):
    """Architecture labels produced by the heuristic planner."""

    STATIC = "static"
    SERVERLESS = "serverless"
    INSTANCE = "instance-based"


class PlanSource(str, Enum):
    """Where a deployment plan came from."""

    AI = "ai"
    HEURISTIC = "heuristic"
    PROVIDED = "provided"


class PlannedService(BaseModel):
    """A cloud service that is part of a deployment plan."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = Field(..., description="Service name")
    type: str = Field(..., description="Cloud service type")
    purpose: str = Field(default="", description="What the service does")
    estimated_cost: str = Field(
        default="",
        validation_alias=AliasChoices("estimated_cost", "estimatedCost"),
        description="Cost estimate for the service",
    )


class PlanStep(BaseModel):
    """An ordered step of a deployment plan."""

    model_config = ConfigDict(extra="ignore")

    step: int = Field(..., ge=1, description="1-based step number")
    action: str = Field(..., description="Short action name")
    description: str = Field(default="", description="Step description")
    resources: list[str] = Field(
        default_factory=list, description="Resources touched by the step"
    )


class DeploymentPlan(BaseModel):
    """Structured deployment plan.

    The architecture label, service list and step list are required; an AI
    response missing any of them does not validate.

    Attributes:
        architecture: Architecture label
        services: Ordered list of planned services
        steps: Ordered list of plan steps
        estimated_monthly_cost: Aggregate monthly cost estimate
        deployment_time: Deployment time estimate
        requirements: Requirements the caller must satisfy
        recommendations: Recommendations for the deployment
        source: Where the plan came from
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    architecture: str = Field(..., min_length=1, description="Architecture label")
    services: list[PlannedService] = Field(
        ..., min_length=1, description="Ordered planned services"
    )
    steps: list[PlanStep] = Field(..., min_length=1, description="Ordered steps")
    estimated_monthly_cost: str = Field(
        default="unknown",
        validation_alias=AliasChoices(
            "estimated_monthly_cost", "estimatedMonthlyCost"
        ),
        description="Aggregate monthly cost estimate",
    )
    deployment_time: str = Field(
        default="unknown",
        validation_alias=AliasChoices("deployment_time", "deploymentTime"),
        description="Deployment time estimate",
    )
    requirements: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    source: PlanSource = Field(default=PlanSource.AI, description="Plan origin")
