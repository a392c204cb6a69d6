"""Deployment record stores.

Records are immutable snapshots. ``update`` applies a function to the
current snapshot and swaps the result in under a lock, so concurrent
pollers only ever observe whole records.
"""

from __future__ import annotations

import fcntl
import json
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError

from shipyard.lib.errors import (
    DeploymentError,
    DeploymentNotFoundError,
    DuplicateDeploymentError,
)
from shipyard.lib.logging_config import get_logger
from shipyard.models.record import DeploymentRecord, DeploymentStore

logger = get_logger(__name__)

STATE_VERSION = "1.0"

RecordUpdate = Callable[[DeploymentRecord], DeploymentRecord]


class RecordStore(ABC):
    """Abstract base class for deployment record stores."""

    @abstractmethod
    def create(self, record: DeploymentRecord) -> DeploymentRecord:
        """Insert a new record.

        Raises:
            DuplicateDeploymentError: If the id already exists
        """

    @abstractmethod
    def get(self, deployment_id: str) -> DeploymentRecord | None:
        """Return the current snapshot for an id, or None."""

    @abstractmethod
    def update(self, deployment_id: str, fn: RecordUpdate) -> DeploymentRecord:
        """Atomically replace a record with ``fn(current)``.

        Raises:
            DeploymentNotFoundError: If the id is unknown
        """

    @abstractmethod
    def list_ids(self) -> list[str]:
        """Return all known deployment ids."""


class InMemoryRecordStore(RecordStore):
    """Process-local record store."""

    def __init__(self) -> None:
        self._records: dict[str, DeploymentRecord] = {}
        self._lock = threading.Lock()

    @contextmanager
    def _locked(self, write: bool) -> Iterator[None]:
        """Hold the store lock around one operation."""
        with self._lock:
            yield

    def create(self, record: DeploymentRecord) -> DeploymentRecord:
        with self._locked(write=True):
            if record.deployment_id in self._records:
                raise DuplicateDeploymentError(record.deployment_id)
            self._records[record.deployment_id] = record
            self._persist()
        return record

    def get(self, deployment_id: str) -> DeploymentRecord | None:
        with self._locked(write=False):
            return self._records.get(deployment_id)

    def update(self, deployment_id: str, fn: RecordUpdate) -> DeploymentRecord:
        with self._locked(write=True):
            current = self._records.get(deployment_id)
            if current is None:
                raise DeploymentNotFoundError(deployment_id)
            updated = fn(current)
            self._records[deployment_id] = updated
            self._persist()
        return updated

    def list_ids(self) -> list[str]:
        with self._locked(write=False):
            return sorted(self._records)

    def _persist(self) -> None:
        """Hook called with the lock held after every mutation."""


def load_store(state_path: Path) -> DeploymentStore:
    """Load persisted records from disk."""
    if not state_path.exists():
        return DeploymentStore(version=STATE_VERSION)

    try:
        content = state_path.read_text(encoding="utf-8")
        if not content.strip():
            return DeploymentStore(version=STATE_VERSION)
    except OSError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Failed to read deployment records at {state_path}: {exc}",
        ) from exc

    try:
        return DeploymentStore.model_validate_json(content)
    except ValidationError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Invalid deployment record format in {state_path}: {exc}",
        ) from exc


def save_store(state_path: Path, store: DeploymentStore) -> None:
    """Persist records to disk, replacing the file atomically."""
    try:
        state_path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(store.model_dump(mode="json"), indent=2, sort_keys=True)
        tmp_path = state_path.with_suffix(state_path.suffix + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(state_path)
    except OSError as exc:
        raise DeploymentError(
            operation="state",
            message=f"Failed to write deployment records to {state_path}: {exc}",
        ) from exc


class JsonFileRecordStore(InMemoryRecordStore):
    """Record store persisted to a JSON file shared between processes.

    Every operation re-reads the file under an advisory lock on a sidecar
    ``.lock`` file, so CLI runs, the API server and status polls sharing one
    state path see each other's records instead of overwriting them.
    """

    def __init__(self, state_path: Path) -> None:
        """Open the store at ``state_path``.

        Raises:
            DeploymentError: If the file exists but cannot be read or parsed
        """
        super().__init__()
        self._state_path = state_path
        self._lock_path = state_path.with_suffix(state_path.suffix + ".lock")
        with self._locked(write=False):
            logger.debug(
                f"Loaded {len(self._records)} deployment records from {state_path}"
            )

    @contextmanager
    def _locked(self, write: bool) -> Iterator[None]:
        """Lock the state file and reload it before the operation runs."""
        with self._lock:
            try:
                self._lock_path.parent.mkdir(parents=True, exist_ok=True)
                handle = self._lock_path.open("a")
            except OSError as exc:
                raise DeploymentError(
                    operation="state",
                    message=f"Failed to open lock file {self._lock_path}: {exc}",
                ) from exc
            with handle:
                fcntl.flock(handle, fcntl.LOCK_EX if write else fcntl.LOCK_SH)
                try:
                    self._records = dict(load_store(self._state_path).deployments)
                    yield
                finally:
                    fcntl.flock(handle, fcntl.LOCK_UN)

    def _persist(self) -> None:
        save_store(
            self._state_path,
            DeploymentStore(version=STATE_VERSION, deployments=dict(self._records)),
        )
