"""Deployment plan resolution.

Plans come from one of three places, in order:
1. A pre-approved plan attached to the request
2. An AI plan generator (AWS Bedrock by default)
3. A deterministic heuristic derived from the project profile

``PlanResolver.resolve`` never raises. Every AI failure is logged and
replaced by the heuristic plan.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Protocol

from pydantic import ValidationError

from shipyard.config.loader import field_errors
from shipyard.lib.errors import CloudSDKNotInstalledError, PlanGenerationError
from shipyard.lib.logging_config import get_logger
from shipyard.models.config import PlannerSettings
from shipyard.models.plan import (
    Architecture,
    DeploymentPlan,
    PlannedService,
    PlanSource,
    PlanStep,
)
from shipyard.models.profile import Language, ProjectFlavor, ProjectProfile
from shipyard.models.request import CloudCredentials, DeploymentRequest

logger = get_logger(__name__)

BEDROCK_ANTHROPIC_VERSION = "bedrock-2023-05-31"

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

# Intent phrases that ask for elastic scaling
SCALING_KEYWORDS = ("serverless", "scale", "scaling", "scalable", "autoscal", "lambda")

COST_BUCKETS: dict[Architecture, str] = {
    Architecture.STATIC: "$5-25",
    Architecture.SERVERLESS: "$15-60",
    Architecture.INSTANCE: "$10-50",
}

ARCHITECTURE_SERVICES: dict[Architecture, list[dict[str, str]]] = {
    Architecture.STATIC: [
        {
            "name": "Static Website",
            "type": "S3 + CloudFront",
            "purpose": "Host the built site behind a global CDN",
            "estimated_cost": "$5-25/month",
        },
    ],
    Architecture.SERVERLESS: [
        {
            "name": "Application Functions",
            "type": "Lambda + API Gateway",
            "purpose": "Run server-rendered pages and API routes on demand",
            "estimated_cost": "$10-40/month",
        },
        {
            "name": "Static Assets",
            "type": "S3 + CloudFront",
            "purpose": "Serve static assets from the CDN edge",
            "estimated_cost": "$5-20/month",
        },
    ],
    Architecture.INSTANCE: [
        {
            "name": "Application Server",
            "type": "EC2",
            "purpose": "Run the application under systemd behind nginx",
            "estimated_cost": "$8-40/month",
        },
        {
            "name": "Network Access",
            "type": "EC2 Security Group",
            "purpose": "Allow SSH, HTTP, HTTPS and the application port",
            "estimated_cost": "$0/month",
        },
    ],
}

ARCHITECTURE_RECOMMENDATIONS: dict[Architecture, list[str]] = {
    Architecture.STATIC: [
        "Enable CloudFront compression and long cache lifetimes for assets",
        "Add a custom domain with an ACM certificate",
    ],
    Architecture.SERVERLESS: [
        "Set reserved concurrency to bound cost under traffic spikes",
        "Keep cold starts low by trimming the server bundle",
    ],
    Architecture.INSTANCE: [
        "Set up monitoring with CloudWatch",
        "Attach an Elastic IP so the address survives restarts",
        "Restrict SSH access to known addresses",
    ],
}

BASE_REQUIREMENTS = [
    "AWS account with EC2 access",
    "GitHub repository access",
]


def _requirements_for(profile: ProjectProfile) -> list[str]:
    requirements = list(BASE_REQUIREMENTS)
    if profile.framework == "Next.js":
        requirements += ["Node.js 18+ runtime", "Next.js environment variables"]
    elif profile.language == Language.NODE:
        requirements.append("Node.js 18+ runtime")
    elif profile.language == Language.PYTHON:
        requirements += ["Python 3.10+ runtime", "requirements.txt file"]
    if profile.flavor == ProjectFlavor.BUNDLER_SPA:
        requirements.append(f"Build output in '{profile.output_dir}'")
    return requirements


def _recommendations_for(
    architecture: Architecture, profile: ProjectProfile, intent: str
) -> list[str]:
    recommendations = list(ARCHITECTURE_RECOMMENDATIONS[architecture])
    if "express" in profile.dependencies:
        recommendations.append(
            "Consider API Gateway + Lambda for better scalability"
        )
    if profile.framework == "Next.js":
        recommendations.append("Enable Next.js image optimization with CloudFront")
    if "production" in intent.lower():
        recommendations.append("Set up a CI/CD pipeline for production deployments")
        recommendations.append("Configure monitoring and alerting with CloudWatch")
    return recommendations


def _steps_for(profile: ProjectProfile) -> list[PlanStep]:
    steps: list[dict[str, Any]] = [
        {
            "action": "Repository Analysis",
            "description": f"Analyze {profile.framework} project structure",
            "resources": ["GitHub API"],
        },
        {
            "action": "Infrastructure Setup",
            "description": "Create the security group and instance",
            "resources": ["Security Group", "EC2 Instance"],
        },
    ]
    if profile.build_command:
        steps.append(
            {
                "action": "Application Build",
                "description": f"Run '{profile.build_command}' on the instance",
                "resources": ["EC2 Instance"],
            }
        )
    steps.append(
        {
            "action": "Application Deployment",
            "description": f"Start {profile.framework} under systemd behind nginx",
            "resources": ["systemd", "nginx"],
        }
    )
    return [PlanStep(step=index, **step) for index, step in enumerate(steps, start=1)]


def classify_architecture(profile: ProjectProfile, intent: str) -> Architecture:
    """Pick the fallback architecture label for a profile and intent.

    Static sites win first, then server-rendered frameworks whose intent
    asks for scaling, then a plain instance.
    """
    if profile.has_static_assets and not profile.has_database:
        return Architecture.STATIC
    lowered = intent.lower()
    if profile.flavor == ProjectFlavor.SERVER_RENDERED and any(
        keyword in lowered for keyword in SCALING_KEYWORDS
    ):
        return Architecture.SERVERLESS
    return Architecture.INSTANCE


def build_fallback_plan(profile: ProjectProfile, intent: str = "") -> DeploymentPlan:
    """Derive a deterministic plan from the profile alone."""
    architecture = classify_architecture(profile, intent)
    return DeploymentPlan(
        architecture=architecture.value,
        services=[
            PlannedService(**service)
            for service in ARCHITECTURE_SERVICES[architecture]
        ],
        steps=_steps_for(profile),
        estimated_monthly_cost=COST_BUCKETS[architecture],
        deployment_time="10-20 minutes",
        requirements=_requirements_for(profile),
        recommendations=_recommendations_for(architecture, profile, intent),
        source=PlanSource.HEURISTIC,
    )


def parse_plan_response(text: str) -> DeploymentPlan:
    """Extract and validate a plan from a model response.

    The JSON object may be wrapped in prose and may nest the plan under
    ``deploymentPlan``.

    Raises:
        PlanGenerationError: If no valid plan can be extracted
    """
    match = _JSON_OBJECT.search(text or "")
    if match is None:
        raise PlanGenerationError("No JSON object found in planner response")

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise PlanGenerationError(f"Planner response is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise PlanGenerationError("Planner response is not a JSON object")
    payload = data.get("deploymentPlan", data)
    if not isinstance(payload, dict):
        raise PlanGenerationError("'deploymentPlan' is not a JSON object")

    try:
        plan = DeploymentPlan.model_validate(payload)
    except ValidationError as exc:
        raise PlanGenerationError(
            "Planner response failed validation: "
            + "; ".join(field_errors(exc))
        ) from exc
    return plan.model_copy(update={"source": PlanSource.AI})


def build_plan_prompt(profile: ProjectProfile, intent: str) -> str:
    """Build the planning prompt sent to the AI generator."""
    profile_json = json.dumps(profile.model_dump(mode="json"), indent=2)
    return f"""You are an expert AWS cloud architect. Create a deployment plan for
the project described below.

## Project Profile
```json
{profile_json}
```

## User Requirements
{intent or "No specific requirements given."}

## Response Format
Respond with a single JSON object:

{{
  "deploymentPlan": {{
    "architecture": "short architecture label",
    "services": [
      {{"name": "...", "type": "AWS service", "purpose": "...",
        "estimated_cost": "$X/month"}}
    ],
    "steps": [
      {{"step": 1, "action": "...", "description": "...", "resources": ["..."]}}
    ],
    "estimated_monthly_cost": "$X - $Y",
    "deployment_time": "X minutes",
    "requirements": ["..."],
    "recommendations": ["..."]
  }}
}}
"""


class PlanGenerator(Protocol):
    """External AI collaborator returning a raw plan response."""

    async def generate(
        self,
        *,
        profile: ProjectProfile,
        intent: str,
        credentials: CloudCredentials,
    ) -> str:
        """Return the model's raw text response."""
        ...


class BedrockPlanGenerator:
    """Plan generator backed by an Anthropic model on AWS Bedrock."""

    def __init__(self, settings: PlannerSettings | None = None) -> None:
        """Initialize the generator.

        Raises:
            CloudSDKNotInstalledError: If boto3 is not installed
        """
        try:
            import boto3
        except ImportError as exc:
            raise CloudSDKNotInstalledError(provider="aws", sdk_name="boto3") from exc

        self._boto3 = boto3
        self._settings = settings or PlannerSettings()

    def _invoke(self, prompt: str, credentials: CloudCredentials) -> str:
        session_token = credentials.session_token
        client = self._boto3.client(
            "bedrock-runtime",
            region_name=self._settings.region,
            aws_access_key_id=credentials.access_key_id or None,
            aws_secret_access_key=(
                credentials.secret_access_key.get_secret_value() or None
            ),
            aws_session_token=(
                session_token.get_secret_value() if session_token else None
            ),
        )
        response = client.invoke_model(
            modelId=self._settings.model_id,
            contentType="application/json",
            accept="application/json",
            body=json.dumps(
                {
                    "anthropic_version": BEDROCK_ANTHROPIC_VERSION,
                    "max_tokens": self._settings.max_tokens,
                    "messages": [{"role": "user", "content": prompt}],
                }
            ),
        )
        body: dict[str, Any] = json.loads(response["body"].read())
        try:
            return str(body["content"][0]["text"])
        except (KeyError, IndexError, TypeError) as exc:
            raise PlanGenerationError(
                f"Unexpected Bedrock response shape: {exc}"
            ) from exc

    async def generate(
        self,
        *,
        profile: ProjectProfile,
        intent: str,
        credentials: CloudCredentials,
    ) -> str:
        """Invoke the model in a worker thread."""
        prompt = build_plan_prompt(profile, intent)
        return await asyncio.to_thread(self._invoke, prompt, credentials)


class PlanResolver:
    """Resolve exactly one plan per request, never failing."""

    def __init__(
        self,
        generator: PlanGenerator | None = None,
        settings: PlannerSettings | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            generator: AI plan generator; None disables the AI path
            settings: Planner settings (timeout, enabled flag)
        """
        self._generator = generator
        self._settings = settings or PlannerSettings()

    async def _generate(
        self,
        generator: PlanGenerator,
        request: DeploymentRequest,
        profile: ProjectProfile,
    ) -> DeploymentPlan:
        """Run the AI generator, converting any failure to PlanGenerationError."""
        try:
            text = await asyncio.wait_for(
                generator.generate(
                    profile=profile,
                    intent=request.intent,
                    credentials=request.credentials,
                ),
                timeout=self._settings.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise PlanGenerationError(
                f"Planner did not respond within {self._settings.timeout_seconds}s"
            ) from exc
        except PlanGenerationError:
            raise
        except Exception as exc:
            raise PlanGenerationError(f"Planner call failed: {exc}") from exc
        return parse_plan_response(text)

    async def resolve(
        self, request: DeploymentRequest, profile: ProjectProfile
    ) -> DeploymentPlan:
        """Return the plan for a request.

        Args:
            request: Deployment request (intent, optional pre-approved plan)
            profile: Detected project profile

        Returns:
            A schema-valid DeploymentPlan
        """
        if request.plan is not None:
            logger.info(f"Using pre-approved plan for {request.request_id}")
            return request.plan.model_copy(update={"source": PlanSource.PROVIDED})

        if self._generator is not None and self._settings.enabled:
            try:
                plan = await self._generate(self._generator, request, profile)
            except PlanGenerationError as exc:
                logger.warning(f"{exc}; using heuristic plan")
            else:
                logger.info(
                    f"AI plan for {request.request_id}: {plan.architecture}"
                )
                return plan

        plan = build_fallback_plan(profile, request.intent)
        logger.info(f"Heuristic plan for {request.request_id}: {plan.architecture}")
        return plan
