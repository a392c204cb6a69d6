"""Unit tests for the deployment API server."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from shipyard.lib.errors import DuplicateDeploymentError
from shipyard.models.record import DeploymentSummary, LifecycleState, StatusSnapshot
from shipyard.models.request import DeploymentRequest
from shipyard.serve.server import create_app


@pytest.fixture
def coordinator() -> MagicMock:
    """A coordinator whose start returns the request id."""
    mock = MagicMock()

    async def start(request: DeploymentRequest) -> str:
        return request.request_id

    mock.start = AsyncMock(side_effect=start)
    return mock


@pytest.fixture
def tracker() -> MagicMock:
    """A tracker returning a bootstrapping snapshot."""
    mock = MagicMock()
    mock.get_status = AsyncMock(
        return_value=StatusSnapshot(
            deployment_id="d-1",
            phase=LifecycleState.BOOTSTRAPPING,
            progress=60,
        )
    )
    return mock


@pytest.fixture
def client(coordinator: MagicMock, tracker: MagicMock) -> TestClient:
    """Test client for the deployment API."""
    return TestClient(create_app(coordinator, tracker))


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client: TestClient) -> None:
        """The service reports healthy."""
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestStartDeployment:
    """Tests for POST /deployments."""

    def test_start_with_body_credentials(
        self, client: TestClient, coordinator: MagicMock
    ) -> None:
        """Body credentials and region are passed to the coordinator."""
        response = client.post(
            "/deployments",
            json={
                "repository_url": "acme/blog",
                "branch": "main",
                "intent": "demo",
                "region": "eu-west-1",
                "credentials": {
                    "access_key_id": "AKIATEST",
                    "secret_access_key": "secret",
                    "region": "us-east-1",
                },
            },
        )

        assert response.status_code == 202
        body = response.json()
        assert body["status_url"] == f"/deployments/{body['deployment_id']}"
        request: DeploymentRequest = coordinator.start.call_args.args[0]
        assert request.region == "eu-west-1"
        assert request.credentials.access_key_id == "AKIATEST"
        assert request.intent == "demo"

    def test_env_credentials_when_omitted(
        self,
        client: TestClient,
        coordinator: MagicMock,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Without body credentials the server environment is used."""
        monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIAENV")
        monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "envsecret")
        monkeypatch.setenv("AWS_REGION", "us-west-2")

        response = client.post("/deployments", json={"repository_url": "acme/blog"})

        assert response.status_code == 202
        request: DeploymentRequest = coordinator.start.call_args.args[0]
        assert request.credentials.access_key_id == "AKIAENV"
        assert request.region == "us-west-2"

    def test_invalid_branch_rejected(self, client: TestClient) -> None:
        """Unsafe branch names are rejected with 422."""
        response = client.post(
            "/deployments",
            json={"repository_url": "acme/blog", "branch": "main; reboot"},
        )

        assert response.status_code == 422
        assert response.json()["detail"][0].startswith("branch: ")

    def test_duplicate_is_conflict(
        self, client: TestClient, coordinator: MagicMock
    ) -> None:
        """A duplicate id maps to 409."""
        coordinator.start.side_effect = DuplicateDeploymentError("d-1")

        response = client.post("/deployments", json={"repository_url": "acme/blog"})

        assert response.status_code == 409


class TestGetDeployment:
    """Tests for GET /deployments/{id}."""

    def test_returns_snapshot(self, client: TestClient, tracker: MagicMock) -> None:
        """The tracker snapshot is returned as JSON."""
        response = client.get("/deployments/d-1")

        assert response.status_code == 200
        body = response.json()
        assert body["phase"] == "bootstrapping"
        assert body["progress"] == 60
        tracker.get_status.assert_awaited_once_with("d-1")

    def test_never_errors(self, client: TestClient, tracker: MagicMock) -> None:
        """Tracker failures still answer 200 with a message."""
        tracker.get_status.side_effect = RuntimeError("state file locked")

        response = client.get("/deployments/d-1")

        assert response.status_code == 200
        assert "temporarily unavailable" in response.json()["message"]


class TestListDeployments:
    """Tests for GET /deployments."""

    def test_lists_summaries(self, client: TestClient, tracker: MagicMock) -> None:
        """Tracker summaries are returned with a total."""
        tracker.list_deployments.return_value = [
            DeploymentSummary(
                deployment_id="d-2",
                repository_url="acme/blog",
                phase=LifecycleState.READY,
                progress=100,
                public_address="203.0.113.9",
                started_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
            ),
            DeploymentSummary(
                deployment_id="d-1",
                repository_url="acme/shop",
                phase=LifecycleState.FAILED,
                progress=40,
                started_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            ),
        ]

        response = client.get("/deployments")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert [d["deployment_id"] for d in body["deployments"]] == ["d-2", "d-1"]
        assert body["deployments"][0]["phase"] == "ready"

    def test_empty_store(self, client: TestClient, tracker: MagicMock) -> None:
        """No deployments is an empty list, not an error."""
        tracker.list_deployments.return_value = []

        response = client.get("/deployments")

        assert response.json() == {"deployments": [], "total": 0}
