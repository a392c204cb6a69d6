"""Unit tests for the status tracker."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

from shipyard.deploy.bootstrap import BootstrapPhase
from shipyard.deploy.store import InMemoryRecordStore, JsonFileRecordStore
from shipyard.deploy.tracker import InstanceProbe, StatusTracker, estimate_progress
from shipyard.models.config import TrackerSettings
from shipyard.models.profile import ProjectProfile
from shipyard.models.record import (
    DeploymentRecord,
    LifecycleState,
    ProgressMode,
    ResourceRefs,
    StatusSnapshot,
)

STARTED = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
ADDRESS = "203.0.113.20"


class FakeProbe(InstanceProbe):
    """Probe returning scripted breadcrumb and health answers."""

    def __init__(self) -> None:
        super().__init__()
        self.breadcrumb: BootstrapPhase | None = None
        self.healthy = False
        self.health_checks = 0

    async def read_breadcrumb(self, address: str) -> BootstrapPhase | None:
        return self.breadcrumb

    async def check_health(self, address: str) -> bool:
        self.health_checks += 1
        return self.healthy


class Clock:
    """Settable wall clock."""

    def __init__(self) -> None:
        self.now = STARTED

    def __call__(self) -> datetime:
        return self.now

    def advance_to_minute(self, minute: float) -> None:
        self.now = STARTED + timedelta(minutes=minute)


def _bootstrapping_store(**overrides: object) -> InMemoryRecordStore:
    fields: dict[str, object] = {
        "deployment_id": "d-1",
        "repository_url": "acme/blog",
        "state": LifecycleState.BOOTSTRAPPING,
        "progress": 20,
        "started_at": STARTED,
        "resources": ResourceRefs(instance_id="i-1", public_address=ADDRESS),
        "profile": ProjectProfile(port=3000),
    }
    fields.update(overrides)
    store = InMemoryRecordStore()
    store.create(DeploymentRecord(**fields))
    return store


class TestEstimateProgress:
    """Tests for the expected-duration profile."""

    def test_profile_steps(self) -> None:
        """Progress follows the per-minute profile."""
        values = [estimate_progress(minute * 60)[0] for minute in range(6)]

        assert values == [20, 40, 60, 80, 100, 100]

    def test_negative_elapsed_clamped(self) -> None:
        """Clock skew never yields less than the first step."""
        assert estimate_progress(-30)[0] == 20


class TestStatusTracker:
    """Tests for StatusTracker.get_status."""

    @pytest.mark.asyncio
    async def test_unknown_id_is_not_found(self) -> None:
        """Unknown ids return a snapshot instead of raising."""
        tracker = StatusTracker(InMemoryRecordStore())

        snapshot = await tracker.get_status("missing")

        assert snapshot.found is False
        assert snapshot.progress == 0

    @pytest.mark.asyncio
    async def test_degraded_progress_monotonic_and_capped(self) -> None:
        """Degraded progress never decreases and stays below 100 without health."""
        probe = FakeProbe()
        clock = Clock()
        tracker = StatusTracker(_bootstrapping_store(), probe=probe, clock=clock)

        observed = []
        for minute in range(6):
            clock.advance_to_minute(minute)
            snapshot = await tracker.get_status("d-1")
            assert snapshot.progress_mode == ProgressMode.DEGRADED
            assert snapshot.application_ready is False
            observed.append(snapshot.progress)

        assert observed == sorted(observed)
        assert observed == [20, 40, 60, 80, 95, 95]

        probe.healthy = True
        snapshot = await tracker.get_status("d-1")
        assert snapshot.progress == 100
        assert snapshot.application_ready is True

    @pytest.mark.asyncio
    async def test_progress_never_decreases_after_clock_rewind(self) -> None:
        """A later poll with an earlier clock keeps the high-water mark."""
        probe = FakeProbe()
        clock = Clock()
        tracker = StatusTracker(_bootstrapping_store(), probe=probe, clock=clock)

        clock.advance_to_minute(3)
        first = await tracker.get_status("d-1")
        clock.advance_to_minute(0)
        second = await tracker.get_status("d-1")

        assert second.progress >= first.progress

    @pytest.mark.asyncio
    async def test_fresh_trackers_share_the_reported_floor(
        self, tmp_path: Path
    ) -> None:
        """Separate trackers over one state file never report less progress."""
        state_path = tmp_path / "deployments.json"
        seed = JsonFileRecordStore(state_path)
        seed.create(
            DeploymentRecord(
                deployment_id="d-1",
                repository_url="acme/blog",
                state=LifecycleState.BOOTSTRAPPING,
                progress=20,
                started_at=STARTED,
                resources=ResourceRefs(instance_id="i-1", public_address=ADDRESS),
            )
        )
        clock = Clock()
        clock.advance_to_minute(4)

        async def poll(
            breadcrumb: BootstrapPhase | None, healthy: bool
        ) -> StatusSnapshot:
            probe = FakeProbe()
            probe.breadcrumb = breadcrumb
            probe.healthy = healthy
            tracker = StatusTracker(
                JsonFileRecordStore(state_path), probe=probe, clock=clock
            )
            return await tracker.get_status("d-1")

        snapshots = [
            await poll(None, False),
            await poll(BootstrapPhase.CLONING, False),
            await poll(BootstrapPhase.COMPLETED, True),
            await poll(BootstrapPhase.COMPLETED, False),
        ]

        assert [s.progress for s in snapshots] == [95, 95, 100, 100]
        assert [s.application_ready for s in snapshots] == [False, False, True, True]
        stored = JsonFileRecordStore(state_path).get("d-1")
        assert stored is not None
        assert stored.reported_progress == 100
        assert stored.health_confirmed is True

    @pytest.mark.asyncio
    async def test_reported_floor_survives_terminal_states(self) -> None:
        """A failed record keeps the highest progress already reported."""
        probe = FakeProbe()
        probe.breadcrumb = BootstrapPhase.BUILDING
        store = _bootstrapping_store()
        tracker = StatusTracker(store, probe=probe, clock=Clock())
        await tracker.get_status("d-1")

        store.update(
            "d-1",
            lambda record: record.model_copy(update={"state": LifecycleState.FAILED}),
        )
        snapshot = await tracker.get_status("d-1")

        assert snapshot.progress == 60
        assert snapshot.progress_mode == ProgressMode.RECORDED

    @pytest.mark.asyncio
    async def test_instrumented_progress_from_breadcrumb(self) -> None:
        """A readable breadcrumb drives progress."""
        probe = FakeProbe()
        probe.breadcrumb = BootstrapPhase.BUILDING
        tracker = StatusTracker(_bootstrapping_store(), probe=probe, clock=Clock())

        snapshot = await tracker.get_status("d-1")

        assert snapshot.progress_mode == ProgressMode.INSTRUMENTED
        assert snapshot.progress == 60
        assert "building" in snapshot.message

    @pytest.mark.asyncio
    async def test_failed_breadcrumb_skips_health(self) -> None:
        """A failed bootstrap is reported without a health check."""
        probe = FakeProbe()
        probe.breadcrumb = BootstrapPhase.FAILED
        tracker = StatusTracker(_bootstrapping_store(), probe=probe, clock=Clock())

        snapshot = await tracker.get_status("d-1")

        assert probe.health_checks == 0
        assert snapshot.application_ready is False
        assert "failure" in snapshot.message

    @pytest.mark.asyncio
    async def test_instrumentation_can_be_disabled(self) -> None:
        """With instrumentation off, breadcrumbs are ignored."""
        probe = FakeProbe()
        probe.breadcrumb = BootstrapPhase.BUILDING
        tracker = StatusTracker(
            _bootstrapping_store(),
            probe=probe,
            settings=TrackerSettings(instrumented=False),
            clock=Clock(),
        )

        snapshot = await tracker.get_status("d-1")

        assert snapshot.progress_mode == ProgressMode.DEGRADED

    @pytest.mark.asyncio
    async def test_recorded_mode_before_address(self) -> None:
        """Records without an address report their own progress."""
        store = _bootstrapping_store(
            state=LifecycleState.PLAN_RESOLVED,
            progress=10,
            resources=ResourceRefs(),
        )
        probe = FakeProbe()
        tracker = StatusTracker(store, probe=probe, clock=Clock())

        snapshot = await tracker.get_status("d-1")

        assert snapshot.progress_mode == ProgressMode.RECORDED
        assert snapshot.progress == 10
        assert snapshot.urls == []
        assert probe.health_checks == 0

    @pytest.mark.asyncio
    async def test_ready_record(self) -> None:
        """Ready records report 100 and their URLs."""
        store = _bootstrapping_store(state=LifecycleState.READY, progress=100)
        tracker = StatusTracker(store, clock=Clock())

        snapshot = await tracker.get_status("d-1")

        assert snapshot.progress == 100
        assert snapshot.application_ready is True
        assert snapshot.urls == [f"http://{ADDRESS}", f"http://{ADDRESS}:3000"]


class TestListDeployments:
    """Tests for StatusTracker.list_deployments."""

    def test_newest_first_with_reported_floor(self) -> None:
        """Summaries are ordered by start time and never show less than reported."""
        store = _bootstrapping_store(reported_progress=80)
        store.create(
            DeploymentRecord(
                deployment_id="d-2",
                repository_url="acme/shop",
                state=LifecycleState.READY,
                progress=90,
                started_at=STARTED + timedelta(hours=1),
            )
        )
        tracker = StatusTracker(store, probe=FakeProbe(), clock=Clock())

        summaries = tracker.list_deployments()

        assert [s.deployment_id for s in summaries] == ["d-2", "d-1"]
        assert [s.progress for s in summaries] == [100, 80]
        assert summaries[1].public_address == ADDRESS
        assert summaries[1].phase == LifecycleState.BOOTSTRAPPING

    def test_empty_store(self) -> None:
        """An empty store lists nothing."""
        assert StatusTracker(InMemoryRecordStore()).list_deployments() == []


class TestInstanceProbe:
    """Tests for the HTTP probe."""

    @pytest.mark.asyncio
    async def test_reads_breadcrumb(self) -> None:
        """The breadcrumb path is parsed into a phase."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/deployment-status"
            return httpx.Response(200, text="installing_dependencies\n")

        probe = InstanceProbe(transport=httpx.MockTransport(handler))

        assert await probe.read_breadcrumb(ADDRESS) == BootstrapPhase.DEPENDENCIES

    @pytest.mark.asyncio
    async def test_unknown_breadcrumb_is_none(self) -> None:
        """Unrecognized breadcrumb text is ignored."""
        probe = InstanceProbe(
            transport=httpx.MockTransport(lambda _: httpx.Response(200, text="??"))
        )

        assert await probe.read_breadcrumb(ADDRESS) is None

    @pytest.mark.asyncio
    async def test_health_requires_non_error_status(self) -> None:
        """Proxy errors and missing routes do not count as healthy."""
        ok = InstanceProbe(
            transport=httpx.MockTransport(lambda _: httpx.Response(200, text="healthy"))
        )
        bad = InstanceProbe(
            transport=httpx.MockTransport(lambda _: httpx.Response(502))
        )

        missing = InstanceProbe(
            transport=httpx.MockTransport(lambda _: httpx.Response(404))
        )

        assert await ok.check_health(ADDRESS) is True
        assert await bad.check_health(ADDRESS) is False
        assert await missing.check_health(ADDRESS) is False

    @pytest.mark.asyncio
    async def test_connection_errors_are_swallowed(self) -> None:
        """Unreachable instances read as no breadcrumb and unhealthy."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        probe = InstanceProbe(transport=httpx.MockTransport(handler))

        assert await probe.read_breadcrumb(ADDRESS) is None
        assert await probe.check_health(ADDRESS) is False
