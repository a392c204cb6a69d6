"""Source repository access.

Fetches repository metadata, the root listing and a bounded set of manifest
files from the GitHub REST API. Any fetch failure degrades to an empty
snapshot so profiling and planning can still proceed.
"""

from __future__ import annotations

import base64
import binascii
from typing import Any, Protocol

import httpx

from shipyard.deploy.profiler import MANIFEST_FILES
from shipyard.lib.errors import InputValidationError
from shipyard.lib.logging_config import get_logger
from shipyard.models.config import RepositorySettings
from shipyard.models.profile import RepositorySnapshot
from shipyard.models.request import REPOSITORY_URL_PATTERN

logger = get_logger(__name__)


def parse_repository_reference(repository_url: str) -> tuple[str, str]:
    """Split a repository reference into (owner, name).

    Accepts ``owner/name``, ``https://github.com/owner/name(.git)`` and
    ``git@github.com:owner/name.git``.

    Raises:
        InputValidationError: If the reference is malformed
    """
    match = REPOSITORY_URL_PATTERN.match(repository_url.strip())
    if match is None:
        raise InputValidationError(
            "repository_url",
            f"'{repository_url}' is not a GitHub repository reference "
            "(expected owner/name or https://github.com/owner/name)",
        )
    return match.group("owner"), match.group("name")


def clone_url(repository_url: str) -> str:
    """Return the HTTPS clone URL for a repository reference."""
    owner, name = parse_repository_reference(repository_url)
    return f"https://github.com/{owner}/{name}.git"


class RepositorySource(Protocol):
    """Anything that can produce a repository snapshot."""

    async def fetch(self, owner: str, name: str, branch: str) -> RepositorySnapshot:
        """Return metadata and manifest files for a repository branch."""
        ...


class GitHubRepositorySource:
    """Repository source backed by the GitHub REST API."""

    def __init__(
        self,
        settings: RepositorySettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the source.

        Args:
            settings: API URL, token and timeout
            transport: Optional httpx transport (used by tests)
        """
        self._settings = settings or RepositorySettings()
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "shipyard",
        }
        if self._settings.token:
            headers["Authorization"] = f"Bearer {self._settings.token}"
        return headers

    async def fetch(self, owner: str, name: str, branch: str) -> RepositorySnapshot:
        """Fetch a repository snapshot, degrading to an empty one on failure."""
        async with httpx.AsyncClient(
            base_url=self._settings.api_url.rstrip("/"),
            headers=self._headers(),
            timeout=self._settings.timeout,
            transport=self._transport,
        ) as client:
            try:
                return await self._fetch(client, owner, name, branch)
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning(
                    f"Could not fetch {owner}/{name}@{branch}, "
                    f"continuing without repository data: {exc}"
                )
                return RepositorySnapshot(owner=owner, name=name)

    async def _fetch(
        self, client: httpx.AsyncClient, owner: str, name: str, branch: str
    ) -> RepositorySnapshot:
        repo_response = await client.get(f"/repos/{owner}/{name}")
        repo_response.raise_for_status()
        metadata: dict[str, Any] = repo_response.json()
        if not isinstance(metadata, dict):
            metadata = {}

        contents_response = await client.get(
            f"/repos/{owner}/{name}/contents", params={"ref": branch}
        )
        contents_response.raise_for_status()
        listing = contents_response.json()
        if not isinstance(listing, list):
            listing = []
        file_names = [
            entry["name"]
            for entry in listing
            if isinstance(entry, dict) and "name" in entry
        ]

        files: dict[str, str] = {}
        for file_name in MANIFEST_FILES:
            if file_name not in file_names:
                continue
            content = await self._fetch_file(client, owner, name, branch, file_name)
            if content is not None:
                files[file_name] = content

        logger.debug(
            f"Fetched {owner}/{name}@{branch}: {len(file_names)} entries, "
            f"{len(files)} manifest files"
        )
        return RepositorySnapshot(
            owner=owner,
            name=name,
            language=metadata.get("language"),
            description=metadata.get("description"),
            file_names=file_names,
            files=files,
        )

    async def _fetch_file(
        self,
        client: httpx.AsyncClient,
        owner: str,
        name: str,
        branch: str,
        path: str,
    ) -> str | None:
        """Fetch and decode a single file, returning None when unavailable."""
        response = await client.get(
            f"/repos/{owner}/{name}/contents/{path}", params={"ref": branch}
        )
        if response.status_code != 200:
            logger.debug(f"Skipping {path}: HTTP {response.status_code}")
            return None

        payload = response.json()
        encoded = payload.get("content") if isinstance(payload, dict) else None
        if not encoded:
            return None
        try:
            return base64.b64decode(encoded).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as exc:
            logger.debug(f"Skipping {path}: cannot decode content ({exc})")
            return None
