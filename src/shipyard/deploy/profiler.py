"""Project profiling from repository manifest files.

Classifies a repository's language, framework, build/start commands and
listening port from the bounded set of manifest files fetched by the
repository source.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

from shipyard.config.defaults import DEFAULT_APP_PORT, RESERVED_PORTS
from shipyard.lib.logging_config import get_logger
from shipyard.models.profile import (
    Language,
    ProjectFlavor,
    ProjectProfile,
    RepositorySnapshot,
)

logger = get_logger(__name__)

# Bounded set of manifest/config files fetched from the repository root
MANIFEST_FILES: tuple[str, ...] = (
    "package.json",
    "requirements.txt",
    "pyproject.toml",
    "Dockerfile",
    "dockerfile",
    ".env.example",
    "composer.json",
    "Cargo.toml",
    "go.mod",
    "index.js",
    "app.js",
    "server.js",
    "main.js",
    "app.py",
    "main.py",
    "manage.py",
    "next.config.js",
    "next.config.mjs",
    "next.config.ts",
    "vite.config.js",
    "vite.config.ts",
)

# Bundlers that produce a static single-page app
SPA_BUNDLER_PACKAGES = (
    "vite",
    "react-scripts",
    "@vue/cli-service",
    "@angular/cli",
    "parcel",
)
SPA_CONFIG_FILES = ("vite.config.js", "vite.config.ts")

# Frameworks that render on the server
SSR_FRAMEWORKS: dict[str, str] = {
    "next": "Next.js",
    "nuxt": "Nuxt",
    "@remix-run/node": "Remix",
    "@sveltejs/kit": "SvelteKit",
}

NODE_SERVER_FRAMEWORKS: dict[str, str] = {
    "express": "Express.js",
    "fastify": "Fastify",
    "koa": "Koa",
    "@nestjs/core": "NestJS",
    "@hapi/hapi": "hapi",
}

PYTHON_SERVER_FRAMEWORKS: dict[str, tuple[str, int]] = {
    "fastapi": ("FastAPI", 8000),
    "flask": ("Flask", 5000),
    "django": ("Django", 8000),
}

DATABASE_PACKAGES = frozenset(
    {
        "mongodb",
        "mongoose",
        "mysql",
        "mysql2",
        "pg",
        "sequelize",
        "typeorm",
        "prisma",
        "@prisma/client",
        "knex",
        "sqlite3",
        "redis",
        "ioredis",
        "psycopg2",
        "psycopg2-binary",
        "psycopg",
        "pymongo",
        "sqlalchemy",
        "mysqlclient",
        "asyncpg",
    }
)

STATIC_ASSET_ENTRIES = frozenset(
    {"public", "static", "assets", "dist", "build", "index.html"}
)

NODE_ENTRY_FILES = ("index.js", "app.js", "server.js", "main.js")
PYTHON_ENTRY_FILES = ("app.py", "main.py", "manage.py")

_REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")

# Where a repository declares its listening port, in order of preference
_PORT_DECLARATIONS: tuple[tuple[str, re.Pattern[str]], ...] = (
    (".env.example", re.compile(r"^\s*(?:export\s+)?PORT\s*=\s*[\"']?(\d+)", re.M)),
    ("Dockerfile", re.compile(r"^\s*EXPOSE\s+(\d+)", re.M | re.I)),
    ("dockerfile", re.compile(r"^\s*EXPOSE\s+(\d+)", re.M | re.I)),
)


def _parse_package_json(content: str | None) -> dict[str, Any] | None:
    """Parse package.json content, returning None when absent or invalid."""
    if not content:
        return None
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        logger.warning(f"Failed to parse package.json: {exc}")
        return None
    return data if isinstance(data, dict) else None


def _parse_requirements(content: str | None) -> list[str]:
    """Extract lowercase distribution names from a requirements file."""
    if not content:
        return []
    names: list[str] = []
    for line in content.splitlines():
        line = line.split("#", 1)[0].strip()
        if not line or line.startswith("-"):
            continue
        match = _REQUIREMENT_NAME.match(line)
        if match:
            names.append(match.group(1).lower())
    return names


def declared_port(files: Mapping[str, str]) -> int | None:
    """Return the port declared in .env.example or a Dockerfile EXPOSE line.

    Ports reserved for SSH and nginx on the instance are skipped.
    """
    for file_name, pattern in _PORT_DECLARATIONS:
        for match in pattern.finditer(files.get(file_name) or ""):
            port = int(match.group(1))
            if 0 < port <= 65535 and port not in RESERVED_PORTS:
                return port
    return None


def _detect_package_manager(file_names: set[str]) -> str:
    if "yarn.lock" in file_names:
        return "yarn"
    if "pnpm-lock.yaml" in file_names:
        return "pnpm"
    return "npm"


def _first_present(candidates: tuple[str, ...], file_names: set[str]) -> str | None:
    for candidate in candidates:
        if candidate in file_names:
            return candidate
    return None


def _profile_node(
    package_json: dict[str, Any],
    file_names: set[str],
    base: dict[str, Any],
    port: int | None = None,
) -> dict[str, Any]:
    """Classify a Node.js project from its package.json."""
    runtime_deps = dict(package_json.get("dependencies") or {})
    all_deps = {**runtime_deps, **(package_json.get("devDependencies") or {})}
    scripts = package_json.get("scripts") or {}
    pm = _detect_package_manager(file_names)
    port = port or DEFAULT_APP_PORT

    profile = dict(base)
    profile.update(
        language=Language.NODE,
        package_manager=pm,
        dependencies=tuple(sorted(runtime_deps)),
        has_build_script="build" in scripts,
        has_start_script="start" in scripts,
        has_database=any(dep in DATABASE_PACKAGES for dep in all_deps),
        dev_command=f"{pm} run dev" if "dev" in scripts else None,
        entry_file=_first_present(NODE_ENTRY_FILES, file_names),
    )

    is_spa = any(dep in all_deps for dep in SPA_BUNDLER_PACKAGES) or any(
        name in file_names for name in SPA_CONFIG_FILES
    )
    ssr = next((label for dep, label in SSR_FRAMEWORKS.items() if dep in all_deps), None)
    server = next(
        (label for dep, label in NODE_SERVER_FRAMEWORKS.items() if dep in all_deps),
        None,
    )

    if is_spa:
        output_dir = "build" if "react-scripts" in all_deps else "dist"
        if "react" in all_deps:
            framework = "React"
        elif "vue" in all_deps:
            framework = "Vue.js"
        elif "@angular/core" in all_deps:
            framework = "Angular"
        else:
            framework = "Vite"
        profile.update(
            framework=framework,
            flavor=ProjectFlavor.BUNDLER_SPA,
            build_command=f"{pm} run build",
            start_command=f"serve -s {output_dir} -l {port}",
            output_dir=output_dir,
            port=port,
        )
        if profile["dev_command"] is None and "start" in scripts:
            profile["dev_command"] = f"{pm} run start"
    elif ssr:
        profile.update(
            framework=ssr,
            flavor=ProjectFlavor.SERVER_RENDERED,
            build_command=f"{pm} run build",
            start_command=f"{pm} run start" if "start" in scripts else None,
            port=port,
        )
    elif server:
        profile.update(
            framework=server,
            flavor=ProjectFlavor.SERVER_FRAMEWORK,
            build_command=f"{pm} run build" if "build" in scripts else None,
            start_command=f"{pm} start" if "start" in scripts else None,
            port=port,
        )
    else:
        profile.update(
            framework="Node.js",
            flavor=ProjectFlavor.UNRECOGNIZED,
            build_command=f"{pm} run build" if "build" in scripts else None,
            start_command=f"{pm} start" if "start" in scripts else None,
            port=port,
        )

    if profile["start_command"] is None and profile["entry_file"]:
        profile["start_command"] = f"node {profile['entry_file']}"
    return profile


def _profile_python(
    requirements: list[str],
    file_names: set[str],
    base: dict[str, Any],
    port: int | None = None,
) -> dict[str, Any]:
    """Classify a Python project from its requirements."""
    entry = _first_present(PYTHON_ENTRY_FILES, file_names)
    profile = dict(base)
    profile.update(
        language=Language.PYTHON,
        package_manager="pip",
        dependencies=tuple(sorted(set(requirements))),
        has_database=any(dep in DATABASE_PACKAGES for dep in requirements),
        entry_file=entry,
    )

    framework = next(
        (key for key in PYTHON_SERVER_FRAMEWORKS if key in requirements), None
    )
    if framework is None:
        profile.update(
            framework="Python",
            flavor=ProjectFlavor.UNRECOGNIZED,
            start_command=f"python3 {entry}" if entry else None,
            port=port or 8000,
        )
        return profile

    label, default_port = PYTHON_SERVER_FRAMEWORKS[framework]
    port = port or default_port
    if framework == "django":
        start = f"python3 manage.py runserver 0.0.0.0:{port}"
    elif framework == "fastapi":
        module = (entry or "main.py").removesuffix(".py")
        start = f"python3 -m uvicorn {module}:app --host 0.0.0.0 --port {port}"
    else:
        module = (entry or "app.py").removesuffix(".py")
        start = f"python3 -m flask --app {module} run --host 0.0.0.0 --port {port}"

    profile.update(
        framework=label,
        flavor=ProjectFlavor.SERVER_FRAMEWORK,
        start_command=start,
        port=port,
    )
    return profile


def profile_repository(
    snapshot: RepositorySnapshot, app_port: int | None = None
) -> ProjectProfile:
    """Classify a repository snapshot into a project profile.

    Detection order follows the manifest found: package.json, then Python
    requirements, then PHP, Rust and Go manifests. The host-reported
    language is used when no manifest is present.

    Args:
        snapshot: Repository metadata and manifest files
        app_port: Port override. When omitted, a port declared in
            .env.example or a Dockerfile is used, then the framework default

    Returns:
        ProjectProfile describing how to build and run the project
    """
    port = app_port or declared_port(snapshot.files)
    if port and not app_port:
        logger.debug(f"Using port {port} declared by {snapshot.owner}/{snapshot.name}")
    file_names = set(snapshot.file_names) | set(snapshot.files)
    lowered = {name.lower() for name in file_names}
    language_hint = (snapshot.language or "").lower()

    base: dict[str, Any] = {
        "has_dockerfile": "dockerfile" in lowered,
        "has_static_assets": bool(lowered & STATIC_ASSET_ENTRIES),
    }

    package_json = _parse_package_json(snapshot.files.get("package.json"))
    if package_json is not None:
        fields = _profile_node(package_json, file_names, base, port)
    elif (
        "requirements.txt" in file_names
        or "pyproject.toml" in file_names
        or language_hint == "python"
    ):
        fields = _profile_python(
            _parse_requirements(snapshot.files.get("requirements.txt")),
            file_names,
            base,
            port,
        )
    elif "composer.json" in file_names or language_hint == "php":
        fields = dict(
            base,
            language=Language.PHP,
            framework="PHP",
            flavor=ProjectFlavor.SERVER_FRAMEWORK,
            package_manager="composer",
            start_command=f"php -S 0.0.0.0:{port or 8000}",
            port=port or 8000,
        )
    elif "Cargo.toml" in file_names or language_hint == "rust":
        fields = dict(
            base,
            language=Language.RUST,
            framework="Rust",
            flavor=ProjectFlavor.SERVER_FRAMEWORK,
            package_manager="cargo",
            build_command="cargo build --release",
            start_command="cargo run --release",
            port=port or 8080,
        )
    elif "go.mod" in file_names or language_hint == "go":
        fields = dict(
            base,
            language=Language.GO,
            framework="Go",
            flavor=ProjectFlavor.SERVER_FRAMEWORK,
            package_manager="go",
            build_command="go build -o server .",
            start_command="./server",
            port=port or 8080,
        )
    else:
        fields = dict(base)
        if port:
            fields["port"] = port

    profile = ProjectProfile(**fields)
    logger.info(
        f"Profiled {snapshot.owner}/{snapshot.name}: {profile.framework} "
        f"({profile.flavor.value}, port {profile.port})"
    )
    return profile
