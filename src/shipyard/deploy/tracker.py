"""Deployment status tracking.

The tracker answers status polls from the record store and, once an
instance has a public address, from the instance itself:

- recorded: progress comes from the record's lifecycle state
- instrumented: progress comes from the bootstrap breadcrumb served over HTTP
- degraded: progress is estimated from elapsed time against a fixed profile

Reported progress never decreases for a deployment, and only reaches 100
after a successful health check.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

import httpx

from shipyard.config.defaults import (
    BREADCRUMB_HTTP_PATH,
    EXPECTED_DURATION_PROFILE,
    HEALTH_CHECK_PATH,
    UNCONFIRMED_PROGRESS_CEILING,
)
from shipyard.deploy.bootstrap import BREADCRUMB_PROGRESS, BootstrapPhase
from shipyard.deploy.store import RecordStore
from shipyard.lib.logging_config import get_logger
from shipyard.models.config import TrackerSettings
from shipyard.models.record import (
    DeploymentRecord,
    DeploymentSummary,
    LifecycleState,
    ProgressMode,
    StatusSnapshot,
)

logger = get_logger(__name__)

# States in which the instance may answer HTTP probes
_PROBE_STATES = frozenset(
    {LifecycleState.INSTANCE_RUNNING, LifecycleState.BOOTSTRAPPING}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InstanceProbe:
    """HTTP probe for the breadcrumb and health paths of an instance."""

    def __init__(
        self,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    async def _get(self, address: str, path: str) -> httpx.Response | None:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                return await client.get(f"http://{address}{path}")
        except httpx.HTTPError as exc:
            logger.debug(f"Probe {address}{path} failed: {exc}")
            return None

    async def read_breadcrumb(self, address: str) -> BootstrapPhase | None:
        """Return the instance's current bootstrap phase, if readable."""
        response = await self._get(address, BREADCRUMB_HTTP_PATH)
        if response is None or response.status_code != 200:
            return None
        value = response.text.strip()
        try:
            return BootstrapPhase(value)
        except ValueError:
            logger.debug(f"Unrecognized breadcrumb '{value}' from {address}")
            return None

    async def check_health(self, address: str) -> bool:
        """Return True if the application answers the health path without error.

        The proxy forwards the health path to the application, so a down
        application shows up as a 502 from nginx.
        """
        response = await self._get(address, HEALTH_CHECK_PATH)
        return response is not None and response.status_code < 400


def estimate_progress(elapsed_seconds: float) -> tuple[int, str]:
    """Return (progress, message) from the expected-duration profile."""
    minutes = max(elapsed_seconds, 0.0) / 60.0
    progress, message = EXPECTED_DURATION_PROFILE[0][1:]
    for threshold, step_progress, step_message in EXPECTED_DURATION_PROFILE:
        if minutes >= threshold:
            progress, message = step_progress, step_message
    return progress, message


def deployment_urls(record: DeploymentRecord) -> list[str]:
    """Return the public URLs of a deployment, once it has an address."""
    address = record.resources.public_address
    if not address:
        return []
    urls = [f"http://{address}"]
    if record.profile is not None:
        urls.append(f"http://{address}:{record.profile.port}")
    return urls


class StatusTracker:
    """Answers status polls.

    The only writes it makes are the reported-progress floor and the health
    confirmation, both kept on the record so every tracker sharing a store
    reports the same non-decreasing progress.
    """

    def __init__(
        self,
        store: RecordStore,
        probe: InstanceProbe | None = None,
        settings: TrackerSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the tracker.

        Args:
            store: Record store to read from
            probe: Instance probe; None disables HTTP probing
            settings: Tracker settings
            clock: Wall clock used for elapsed time
        """
        self._store = store
        self._probe = probe
        self._settings = settings or TrackerSettings()
        self._clock = clock

    def _observe(
        self, record: DeploymentRecord, progress: int, healthy: bool
    ) -> None:
        """Raise the record's reported floor and keep any health confirmation."""
        if progress <= record.reported_progress and (
            record.health_confirmed or not healthy
        ):
            return

        def apply(current: DeploymentRecord) -> DeploymentRecord:
            return current.model_copy(
                update={
                    "reported_progress": max(current.reported_progress, progress),
                    "health_confirmed": current.health_confirmed or healthy,
                }
            )

        self._store.update(record.deployment_id, apply)

    def list_deployments(self) -> list[DeploymentSummary]:
        """Summarize every stored deployment, newest first.

        Progress is the recorded value or the reported floor, whichever is
        higher; instances are not polled.
        """
        summaries = []
        for deployment_id in self._store.list_ids():
            record = self._store.get(deployment_id)
            if record is None:
                continue
            progress = max(record.progress, record.reported_progress)
            if record.state == LifecycleState.READY:
                progress = 100
            summaries.append(
                DeploymentSummary(
                    deployment_id=deployment_id,
                    repository_url=record.repository_url,
                    branch=record.branch,
                    phase=record.state,
                    progress=progress,
                    public_address=record.resources.public_address,
                    started_at=record.started_at,
                )
            )
        summaries.sort(key=lambda summary: summary.started_at, reverse=True)
        return summaries

    async def get_status(self, deployment_id: str) -> StatusSnapshot:
        """Return the current status of a deployment.

        Unknown ids return a snapshot with ``found=False``.
        """
        record = self._store.get(deployment_id)
        if record is None:
            return StatusSnapshot(
                deployment_id=deployment_id,
                found=False,
                message=f"Deployment '{deployment_id}' not found",
            )

        elapsed = (self._clock() - record.started_at).total_seconds()
        snapshot = StatusSnapshot(
            deployment_id=deployment_id,
            phase=record.state,
            logs=[entry.render() for entry in record.logs],
            resources=record.resources,
            urls=deployment_urls(record),
            error=record.error,
            elapsed_seconds=max(elapsed, 0.0),
            message=record.logs[-1].message if record.logs else "",
        )

        if record.state == LifecycleState.READY:
            return snapshot.model_copy(
                update={"progress": 100, "application_ready": True}
            )

        address = record.resources.public_address
        if record.state not in _PROBE_STATES or not address:
            return snapshot.model_copy(
                update={
                    "progress": max(record.progress, record.reported_progress),
                    "application_ready": record.health_confirmed,
                }
            )

        return await self._probe_status(record, address, snapshot)

    async def _probe_status(
        self, record: DeploymentRecord, address: str, snapshot: StatusSnapshot
    ) -> StatusSnapshot:
        """Derive progress for a bootstrapping instance."""
        mode = ProgressMode.DEGRADED
        breadcrumb: BootstrapPhase | None = None

        if self._probe is not None and self._settings.instrumented:
            breadcrumb = await self._probe.read_breadcrumb(address)

        if breadcrumb == BootstrapPhase.FAILED:
            mode = ProgressMode.INSTRUMENTED
            candidate = record.progress
            message = "Bootstrap reported a failure on the instance"
        elif breadcrumb is not None:
            mode = ProgressMode.INSTRUMENTED
            candidate = BREADCRUMB_PROGRESS[breadcrumb]
            message = f"Bootstrap phase: {breadcrumb.value}"
        else:
            candidate, message = estimate_progress(snapshot.elapsed_seconds)

        healthy = False
        if self._probe is not None and breadcrumb != BootstrapPhase.FAILED:
            healthy = await self._probe.check_health(address)
        confirmed = healthy or record.health_confirmed
        if healthy:
            candidate = 100
            message = "Application is responding"
        elif not confirmed:
            candidate = min(candidate, UNCONFIRMED_PROGRESS_CEILING)

        progress = max(candidate, record.progress, record.reported_progress)
        self._observe(record, progress, healthy)
        return snapshot.model_copy(
            update={
                "progress": progress,
                "progress_mode": mode,
                "message": message,
                "application_ready": confirmed,
            }
        )
