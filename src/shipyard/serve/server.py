"""Deployment API server.

Provides the FastAPI application factory exposing the coordinator and the
status tracker over HTTP.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from shipyard import __version__
from shipyard.config.loader import field_errors, load_credentials
from shipyard.deploy.coordinator import DeploymentCoordinator
from shipyard.deploy.tracker import StatusTracker
from shipyard.lib.errors import DuplicateDeploymentError
from shipyard.lib.logging_config import get_logger
from shipyard.models.record import StatusSnapshot
from shipyard.models.request import CloudCredentials, DeploymentRequest
from shipyard.serve.models import (
    DeploymentListResponse,
    HealthResponse,
    StartDeploymentBody,
    StartDeploymentResponse,
)

logger = get_logger(__name__)


class DeploymentServer:
    """HTTP server wrapping a deployment coordinator and status tracker.

    Attributes:
        coordinator: Starts deployments
        tracker: Answers status polls
        cors_origins: Allowed CORS origins
    """

    def __init__(
        self,
        coordinator: DeploymentCoordinator,
        tracker: StatusTracker,
        cors_origins: list[str] | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.tracker = tracker
        self.cors_origins = cors_origins or ["*"]
        self._start_time = datetime.now(timezone.utc)
        self._started: set[str] = set()

    @property
    def uptime_seconds(self) -> float:
        """Return server uptime in seconds."""
        delta = datetime.now(timezone.utc) - self._start_time
        return delta.total_seconds()

    def create_app(self) -> FastAPI:
        """Create and configure the FastAPI application.

        Returns:
            Configured FastAPI application instance.
        """
        app = FastAPI(
            title="shipyard",
            description="Deploy repositories to cloud instances",
            version=__version__,
        )
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._register_health_endpoints(app)
        self._register_deployment_endpoints(app)

        logger.info("FastAPI app created for the deployment API")
        return app

    def _register_health_endpoints(self, app: FastAPI) -> None:
        @app.get("/health", response_model=HealthResponse, tags=["Health"])
        async def health() -> HealthResponse:
            """Basic health check endpoint."""
            return HealthResponse(
                status="healthy",
                version=__version__,
                active_deployments=len(self._started),
                uptime_seconds=self.uptime_seconds,
            )

    def _register_deployment_endpoints(self, app: FastAPI) -> None:
        @app.post(
            "/deployments",
            response_model=StartDeploymentResponse,
            status_code=status.HTTP_202_ACCEPTED,
            tags=["Deployments"],
        )
        async def start_deployment(
            body: StartDeploymentBody,
        ) -> StartDeploymentResponse:
            """Start a deployment and return its id immediately."""
            request = self._build_request(body)
            try:
                deployment_id = await self.coordinator.start(request)
            except DuplicateDeploymentError as exc:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT, detail=str(exc)
                ) from exc

            self._started.add(deployment_id)
            return StartDeploymentResponse(
                deployment_id=deployment_id,
                status_url=f"/deployments/{deployment_id}",
            )

        @app.get(
            "/deployments",
            response_model=DeploymentListResponse,
            tags=["Deployments"],
        )
        async def list_deployments() -> DeploymentListResponse:
            """List stored deployments, newest first."""
            deployments = self.tracker.list_deployments()
            return DeploymentListResponse(
                deployments=deployments, total=len(deployments)
            )

        @app.get(
            "/deployments/{deployment_id}",
            response_model=StatusSnapshot,
            tags=["Deployments"],
        )
        async def get_deployment(deployment_id: str) -> StatusSnapshot:
            """Return the status of a deployment; unknown ids are not errors."""
            try:
                return await self.tracker.get_status(deployment_id)
            except Exception as exc:
                logger.exception(f"Status lookup for {deployment_id} failed")
                return StatusSnapshot(
                    deployment_id=deployment_id,
                    message=f"Status temporarily unavailable: {exc}",
                )

    @staticmethod
    def _build_request(body: StartDeploymentBody) -> DeploymentRequest:
        credentials: CloudCredentials = body.credentials or load_credentials()
        if body.region:
            credentials = credentials.model_copy(update={"region": body.region})
        try:
            return DeploymentRequest(
                repository_url=body.repository_url,
                branch=body.branch,
                intent=body.intent,
                plan=body.plan,
                app_port=body.app_port,
                credentials=credentials,
            )
        except ValidationError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=field_errors(exc),
            ) from exc


def create_app(
    coordinator: DeploymentCoordinator,
    tracker: StatusTracker,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Build the deployment API application."""
    return DeploymentServer(coordinator, tracker, cors_origins).create_app()
