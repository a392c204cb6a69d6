"""Deployment coordinator.

Drives one deployment through its lifecycle as an independent asyncio task:

    requested -> plan_resolved -> network_provisioned -> instance_requested
    -> instance_running -> bootstrapping -> ready

Any failure moves the record to ``failed`` with a remediation list. Cloud
resources already created are left in place and stay referenced by the
record; there is no automatic rollback.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from shipyard.config.defaults import (
    DEPLOYMENT_LOG_PATH,
    RESERVED_PORTS,
    resolve_region_image,
)
from shipyard.deploy.bootstrap import (
    BREADCRUMB_PROGRESS,
    BootstrapPhase,
    generate_bootstrap_script,
)
from shipyard.deploy.planner import PlanResolver
from shipyard.deploy.profiler import profile_repository
from shipyard.deploy.provisioner import Provisioner
from shipyard.deploy.remediation import remediation_for
from shipyard.deploy.repository import RepositorySource, parse_repository_reference
from shipyard.deploy.store import RecordStore
from shipyard.deploy.tracker import InstanceProbe
from shipyard.lib.errors import (
    BootstrapFailedError,
    BootstrapTimeoutError,
    DeploymentError,
    DeploymentNotFoundError,
    ErrorKind,
    InputValidationError,
    InvalidTransitionError,
    ProvisioningError,
)
from shipyard.lib.logging_config import get_logger
from shipyard.models.config import ReadinessSettings
from shipyard.models.record import (
    STATE_PROGRESS,
    DeploymentRecord,
    ErrorInfo,
    LifecycleState,
    LogEntry,
    can_transition,
)
from shipyard.models.request import CloudCredentials, DeploymentRequest

logger = get_logger(__name__)

ProvisionerFactory = Callable[[CloudCredentials], Provisioner]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_app_port(app_port: int | None) -> None:
    """Reject application ports the instance reserves for SSH and nginx.

    Raises:
        InputValidationError: If the port is 22, 80 or 443
    """
    if app_port in RESERVED_PORTS:
        raise InputValidationError(
            "app_port",
            f"Port {app_port} is used by SSH or nginx on the instance; "
            "choose another application port",
        )


def validate_request(request: DeploymentRequest) -> tuple[str, str]:
    """Check a request before any cloud call.

    Returns:
        (owner, name) of the repository

    Raises:
        InputValidationError: For missing credentials, an unsupported region,
            an application port taken by SSH or nginx, or a malformed
            repository reference
    """
    if not request.credentials.is_complete:
        raise InputValidationError(
            "credentials",
            "Access key id, secret access key and region are required",
        )
    if resolve_region_image(request.region) is None:
        raise InputValidationError(
            "region", f"Region '{request.region}' is not supported"
        )
    check_app_port(request.app_port)
    return parse_repository_reference(request.repository_url)


class DeploymentCoordinator:
    """Starts deployments and records their progress."""

    def __init__(
        self,
        store: RecordStore,
        repository_source: RepositorySource,
        resolver: PlanResolver,
        provisioner_factory: ProvisionerFactory,
        probe: InstanceProbe | None = None,
        readiness: ReadinessSettings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Record store shared with the status tracker
            repository_source: Source of repository snapshots
            resolver: Plan resolver
            provisioner_factory: Builds a provisioner for the caller's credentials
            probe: Instance probe used for the readiness wait
            readiness: Readiness wait bounds
            sleep: Async sleep used between readiness checks
        """
        self._store = store
        self._repository_source = repository_source
        self._resolver = resolver
        self._provisioner_factory = provisioner_factory
        self._probe = probe or InstanceProbe()
        self._readiness = readiness or ReadinessSettings()
        self._sleep = sleep
        self._tasks: dict[str, asyncio.Task[None]] = {}

    async def start(self, request: DeploymentRequest) -> str:
        """Create the record and launch the deployment task.

        Returns immediately; progress is read through the status tracker.

        Returns:
            The deployment id (equal to ``request.request_id``)

        Raises:
            DuplicateDeploymentError: If the store already holds the id
        """
        deployment_id = request.request_id
        self._store.create(
            DeploymentRecord(
                deployment_id=deployment_id,
                repository_url=request.repository_url,
                branch=request.branch,
                started_at=request.created_at,
                updated_at=_utcnow(),
                logs=(
                    LogEntry(
                        message=f"Deployment requested for {request.repository_url}"
                        f" ({request.branch})",
                        state=LifecycleState.REQUESTED,
                    ),
                ),
            )
        )
        task = asyncio.create_task(
            self._run(request), name=f"shipyard-{deployment_id}"
        )
        self._tasks[deployment_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(deployment_id, None))
        logger.info(f"Started deployment {deployment_id}")
        return deployment_id

    async def wait(self, deployment_id: str) -> DeploymentRecord:
        """Wait for a deployment task to finish and return its final record.

        Raises:
            DeploymentNotFoundError: If the id is unknown
        """
        task = self._tasks.get(deployment_id)
        if task is not None:
            await asyncio.shield(task)
        record = self._store.get(deployment_id)
        if record is None:
            raise DeploymentNotFoundError(deployment_id)
        return record

    async def _run(self, request: DeploymentRequest) -> None:
        deployment_id = request.request_id
        try:
            await self._execute(request)
        except DeploymentError as exc:
            logger.error(f"Deployment {deployment_id} failed: {exc}")
            self._fail(deployment_id, exc)
        except Exception as exc:
            logger.exception(f"Deployment {deployment_id} failed unexpectedly")
            self._fail(deployment_id, exc)

    async def _execute(self, request: DeploymentRequest) -> None:
        deployment_id = request.request_id
        owner, name = validate_request(request)

        snapshot = await self._repository_source.fetch(owner, name, request.branch)
        profile = profile_repository(snapshot, app_port=request.app_port)
        self._store.update(
            deployment_id,
            lambda record: self._with_log(
                record.model_copy(update={"profile": profile}),
                f"Detected {profile.framework} project "
                f"({profile.flavor.value}, port {profile.port})",
            ),
        )

        plan = await self._resolver.resolve(request, profile)
        self._transition(
            deployment_id,
            LifecycleState.PLAN_RESOLVED,
            f"Plan resolved: {plan.architecture} ({plan.source.value}), "
            f"estimated {plan.estimated_monthly_cost}/month",
            plan=plan,
        )

        script = generate_bootstrap_script(
            request.repository_url, request.branch, profile
        )
        provisioner = self._provisioner_factory(request.credentials)

        def on_phase(state: LifecycleState, fields: dict[str, str], message: str) -> None:
            self._transition(deployment_id, state, message, resources=fields)

        result = await asyncio.to_thread(
            provisioner.provision,
            deployment_id,
            request.region,
            script,
            app_port=profile.port,
            on_phase=on_phase,
        )

        self._transition(
            deployment_id,
            LifecycleState.BOOTSTRAPPING,
            "Bootstrap script running on the instance",
        )
        await self._wait_for_application(deployment_id, result.public_address)
        self._transition(
            deployment_id,
            LifecycleState.READY,
            f"Application is live at http://{result.public_address}",
        )

    async def _wait_for_application(self, deployment_id: str, address: str) -> None:
        """Poll health and breadcrumb until ready, failed or out of attempts."""
        max_attempts = self._readiness.max_attempts
        interval = self._readiness.interval_seconds
        last_phase: BootstrapPhase | None = None

        for attempt in range(1, max_attempts + 1):
            if await self._probe.check_health(address):
                return

            phase = await self._probe.read_breadcrumb(address)
            if phase == BootstrapPhase.FAILED:
                raise BootstrapFailedError(
                    f"Bootstrap on {address} reported a failure; "
                    f"see {DEPLOYMENT_LOG_PATH}"
                )
            if phase is not None and phase != last_phase:
                last_phase = phase
                progress = BREADCRUMB_PROGRESS[phase]
                self._store.update(
                    deployment_id,
                    lambda record: self._with_log(
                        record.model_copy(
                            update={"progress": max(record.progress, progress)}
                        ),
                        f"Bootstrap phase: {phase.value}",
                    ),
                )

            if attempt < max_attempts:
                await self._sleep(interval)

        raise BootstrapTimeoutError(
            f"Application at {address} did not become healthy after "
            f"{max_attempts} checks",
            waited_seconds=max_attempts * interval,
        )

    @staticmethod
    def _with_log(
        record: DeploymentRecord,
        message: str,
        state: LifecycleState | None = None,
    ) -> DeploymentRecord:
        now = _utcnow()
        entry = LogEntry(timestamp=now, message=message, state=state)
        return record.model_copy(
            update={"logs": record.logs + (entry,), "updated_at": now}
        )

    def _transition(
        self,
        deployment_id: str,
        target: LifecycleState,
        message: str,
        *,
        resources: dict[str, str] | None = None,
        **fields: Any,
    ) -> DeploymentRecord:
        """Move a record forward, appending a log line."""

        def apply(record: DeploymentRecord) -> DeploymentRecord:
            if not can_transition(record.state, target):
                raise InvalidTransitionError(
                    deployment_id, record.state.value, target.value
                )
            update: dict[str, Any] = dict(fields)
            update["state"] = target
            update["progress"] = max(record.progress, STATE_PROGRESS[target])
            if resources:
                update["resources"] = record.resources.model_copy(update=resources)
            if target.is_terminal:
                update["finished_at"] = _utcnow()
            return self._with_log(record.model_copy(update=update), message, target)

        updated = self._store.update(deployment_id, apply)
        logger.info(f"[{deployment_id}] {target.value}: {message}")
        return updated

    def _fail(self, deployment_id: str, exc: BaseException) -> None:
        """Move a record to FAILED, keeping every resource reference."""
        if isinstance(exc, DeploymentError):
            kind, message = exc.kind, exc.message
        else:
            kind, message = ErrorKind.INTERNAL, str(exc) or type(exc).__name__
        created: dict[str, str] = {}
        if isinstance(exc, ProvisioningError) and exc.network_rule_id:
            created["network_rule_id"] = exc.network_rule_id

        def apply(record: DeploymentRecord) -> DeploymentRecord:
            if record.state.is_terminal:
                return record
            error = ErrorInfo(
                kind=kind,
                message=message,
                remediation=remediation_for(exc, record.resources.public_address),
            )
            failed = record.model_copy(
                update={
                    "state": LifecycleState.FAILED,
                    "error": error,
                    "finished_at": _utcnow(),
                    "resources": record.resources.model_copy(update=created),
                }
            )
            return self._with_log(
                failed, f"Deployment failed: {message}", LifecycleState.FAILED
            )

        self._store.update(deployment_id, apply)

