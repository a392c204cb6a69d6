"""Pydantic models for repository snapshots and project profiles."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from shipyard.config.defaults import DEFAULT_APP_PORT


class ProjectFlavor(str, Enum):
    """How a project is built and served, in detection priority order."""

    BUNDLER_SPA = "bundler_spa"
    SERVER_RENDERED = "server_rendered"
    SERVER_FRAMEWORK = "server_framework"
    UNRECOGNIZED = "unrecognized"


class Language(str, Enum):
    """Languages the bootstrap script can provision a runtime for."""

    NODE = "node"
    PYTHON = "python"
    GO = "go"
    RUST = "rust"
    PHP = "php"
    UNKNOWN = "unknown"


class RepositorySnapshot(BaseModel):
    """Repository metadata plus a bounded set of manifest files.

    Attributes:
        owner: Repository owner
        name: Repository name
        language: Primary language reported by the source host
        description: Repository description
        file_names: Names of entries at the repository root
        files: Contents of fetched manifest files keyed by name
    """

    model_config = ConfigDict(extra="forbid")

    owner: str = Field(default="", description="Repository owner")
    name: str = Field(default="", description="Repository name")
    language: str | None = Field(default=None, description="Primary language")
    description: str | None = Field(default=None, description="Description")
    file_names: list[str] = Field(
        default_factory=list, description="Root directory entries"
    )
    files: dict[str, str] = Field(
        default_factory=dict, description="Manifest file contents by name"
    )


class ProjectProfile(BaseModel):
    """Derived classification of a repository.

    Attributes:
        language: Detected language
        framework: Detected framework label (e.g., "Next.js")
        flavor: Build-and-serve flavor
        package_manager: Package manager (npm, yarn, pnpm, pip, ...)
        build_command: Build command, if the project needs one
        start_command: Production start command
        dev_command: Development-mode start command used as build fallback
        port: Port the application listens on
        output_dir: Bundler output directory for single-page apps
        entry_file: Detected entry file for projects without a start script
        has_dockerfile: Whether a container definition exists
        has_static_assets: Whether static asset directories exist
        has_database: Whether a database dependency was detected
        has_build_script: Whether the manifest declares a build script
        has_start_script: Whether the manifest declares a start script
        dependencies: Declared dependency names
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    language: Language = Field(default=Language.UNKNOWN)
    framework: str = Field(default="Unknown")
    flavor: ProjectFlavor = Field(default=ProjectFlavor.UNRECOGNIZED)
    package_manager: str = Field(default="unknown")
    build_command: str | None = Field(default=None)
    start_command: str | None = Field(default=None)
    dev_command: str | None = Field(default=None)
    port: int = Field(default=DEFAULT_APP_PORT, ge=1, le=65535)
    output_dir: str = Field(default="dist")
    entry_file: str | None = Field(default=None)
    has_dockerfile: bool = Field(default=False)
    has_static_assets: bool = Field(default=False)
    has_database: bool = Field(default=False)
    has_build_script: bool = Field(default=False)
    has_start_script: bool = Field(default=False)
    dependencies: tuple[str, ...] = Field(default_factory=tuple)
