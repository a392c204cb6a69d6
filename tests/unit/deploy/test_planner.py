"""Unit tests for plan resolution."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from shipyard.deploy.planner import (
    PlanResolver,
    build_fallback_plan,
    build_plan_prompt,
    classify_architecture,
    parse_plan_response,
)
from shipyard.lib.errors import PlanGenerationError
from shipyard.models.config import PlannerSettings
from shipyard.models.plan import Architecture, DeploymentPlan, PlanSource
from shipyard.models.profile import Language, ProjectFlavor, ProjectProfile
from shipyard.models.request import DeploymentRequest

VALID_PLAN = {
    "architecture": "Containerized Node.js on EC2",
    "services": [
        {
            "name": "App Server",
            "type": "EC2",
            "purpose": "Run the app",
            "estimatedCost": "$10/month",
        }
    ],
    "steps": [{"step": 1, "action": "Provision", "description": "Create EC2"}],
    "estimatedMonthlyCost": "$10-20",
    "deploymentTime": "15 minutes",
}


def _server_profile(**overrides: object) -> ProjectProfile:
    fields: dict[str, object] = {
        "language": Language.NODE,
        "framework": "Express.js",
        "flavor": ProjectFlavor.SERVER_FRAMEWORK,
        "start_command": "npm start",
        "dependencies": ("express",),
    }
    fields.update(overrides)
    return ProjectProfile(**fields)


def _request(**overrides: object) -> DeploymentRequest:
    fields: dict[str, object] = {"repository_url": "acme/blog", "intent": ""}
    fields.update(overrides)
    return DeploymentRequest(**fields)


class TestClassifyArchitecture:
    """Tests for the fallback architecture heuristic."""

    def test_plain_server_is_instance_based(self) -> None:
        """No static assets and no scaling intent means an instance."""
        assert classify_architecture(_server_profile(), "") == Architecture.INSTANCE

    def test_static_assets_without_database(self) -> None:
        """Static assets without a database signal a static site."""
        profile = _server_profile(has_static_assets=True)

        assert classify_architecture(profile, "") == Architecture.STATIC

    def test_static_assets_with_database_is_instance(self) -> None:
        """A database dependency rules out the static label."""
        profile = _server_profile(has_static_assets=True, has_database=True)

        assert classify_architecture(profile, "") == Architecture.INSTANCE

    def test_ssr_with_scaling_intent_is_serverless(self) -> None:
        """Server-rendered projects asking for scale are serverless."""
        profile = _server_profile(
            framework="Next.js", flavor=ProjectFlavor.SERVER_RENDERED
        )

        assert (
            classify_architecture(profile, "Needs to scale for launch day")
            == Architecture.SERVERLESS
        )


class TestFallbackPlan:
    """Tests for build_fallback_plan."""

    def test_plan_is_schema_valid(self) -> None:
        """The heuristic plan always has services, steps and a cost."""
        plan = build_fallback_plan(_server_profile())

        assert plan.architecture == "instance-based"
        assert plan.services
        assert plan.steps
        assert plan.estimated_monthly_cost == "$10-50"
        assert plan.source == PlanSource.HEURISTIC
        assert [step.step for step in plan.steps] == list(
            range(1, len(plan.steps) + 1)
        )

    def test_production_intent_adds_recommendations(self) -> None:
        """Production intent adds CI/CD and monitoring advice."""
        plan = build_fallback_plan(_server_profile(), "production launch")

        assert any("CI/CD" in rec for rec in plan.recommendations)
        assert any("alerting" in rec for rec in plan.recommendations)

    def test_build_step_only_with_build_command(self) -> None:
        """A build step is planned only when the profile needs a build."""
        without = build_fallback_plan(_server_profile())
        with_build = build_fallback_plan(_server_profile(build_command="npm run build"))

        assert "Application Build" not in [step.action for step in without.steps]
        assert "Application Build" in [step.action for step in with_build.steps]

    def test_prompt_embeds_profile_and_intent(self) -> None:
        """The planning prompt carries the profile JSON and the intent."""
        prompt = build_plan_prompt(_server_profile(), "low cost please")

        assert '"framework": "Express.js"' in prompt
        assert "low cost please" in prompt


class TestParsePlanResponse:
    """Tests for parse_plan_response."""

    def test_parses_nested_plan_in_prose(self) -> None:
        """JSON wrapped in prose and nested under deploymentPlan is accepted."""
        text = "Here is the plan:\n" + json.dumps({"deploymentPlan": VALID_PLAN})

        plan = parse_plan_response(text)

        assert plan.architecture == "Containerized Node.js on EC2"
        assert plan.services[0].estimated_cost == "$10/month"
        assert plan.estimated_monthly_cost == "$10-20"
        assert plan.source == PlanSource.AI

    def test_missing_services_rejected(self) -> None:
        """A plan without its service list does not validate."""
        payload = {key: value for key, value in VALID_PLAN.items() if key != "services"}

        with pytest.raises(PlanGenerationError, match="services"):
            parse_plan_response(json.dumps(payload))

    @pytest.mark.parametrize("text", ["", "no json here", "{not: valid}"])
    def test_invalid_text_rejected(self, text: str) -> None:
        """Responses without a valid JSON object are rejected."""
        with pytest.raises(PlanGenerationError):
            parse_plan_response(text)


class TestPlanResolver:
    """Tests for PlanResolver.resolve."""

    @pytest.mark.asyncio
    async def test_unreachable_generator_falls_back(self) -> None:
        """A generator that cannot be reached yields the heuristic plan."""
        generator = AsyncMock()
        generator.generate.side_effect = ConnectionError("no route to host")
        resolver = PlanResolver(generator)

        plan = await resolver.resolve(_request(), _server_profile())

        assert plan.source == PlanSource.HEURISTIC
        assert plan.architecture == "instance-based"
        assert plan.estimated_monthly_cost

    @pytest.mark.asyncio
    async def test_missing_services_falls_back(self) -> None:
        """A response missing the service list is discarded."""
        payload = {key: value for key, value in VALID_PLAN.items() if key != "services"}
        generator = AsyncMock()
        generator.generate.return_value = json.dumps(payload)
        resolver = PlanResolver(generator)

        plan = await resolver.resolve(_request(), _server_profile())

        assert plan.source == PlanSource.HEURISTIC
        assert plan.services

    @pytest.mark.asyncio
    async def test_valid_ai_plan_used(self) -> None:
        """A valid AI response is returned as-is."""
        generator = AsyncMock()
        generator.generate.return_value = json.dumps(VALID_PLAN)
        resolver = PlanResolver(generator)

        plan = await resolver.resolve(_request(intent="cheap"), _server_profile())

        assert plan.source == PlanSource.AI
        assert plan.architecture == "Containerized Node.js on EC2"
        kwargs = generator.generate.call_args.kwargs
        assert kwargs["intent"] == "cheap"

    @pytest.mark.asyncio
    async def test_slow_generator_times_out(self) -> None:
        """A generator exceeding the timeout is abandoned."""

        async def slow(**_: object) -> str:
            await asyncio.sleep(5)
            return json.dumps(VALID_PLAN)

        generator = AsyncMock()
        generator.generate.side_effect = slow
        resolver = PlanResolver(generator, PlannerSettings(timeout_seconds=0.01))

        plan = await resolver.resolve(_request(), _server_profile())

        assert plan.source == PlanSource.HEURISTIC

    @pytest.mark.asyncio
    async def test_provided_plan_wins(self) -> None:
        """A pre-approved plan is used without calling the generator."""
        generator = AsyncMock()
        provided = DeploymentPlan.model_validate(VALID_PLAN)
        resolver = PlanResolver(generator)

        plan = await resolver.resolve(_request(plan=provided), _server_profile())

        assert plan.source == PlanSource.PROVIDED
        assert plan.architecture == provided.architecture
        generator.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_disabled_planner_skips_generator(self) -> None:
        """Disabling the planner goes straight to the heuristic."""
        generator = AsyncMock()
        resolver = PlanResolver(generator, PlannerSettings(enabled=False))

        plan = await resolver.resolve(_request(), _server_profile())

        assert plan.source == PlanSource.HEURISTIC
        generator.generate.assert_not_called()
