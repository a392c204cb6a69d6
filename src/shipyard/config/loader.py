"""Settings loader for shipyard.

Settings are resolved with the following precedence (highest first):
1. ``SHIPYARD_*`` environment variables
2. YAML settings file (``shipyard.yaml`` or an explicit path)
3. Model defaults
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import SecretStr
from pydantic import ValidationError as PydanticValidationError

from shipyard.lib.errors import ConfigError
from shipyard.models.config import ShipyardSettings
from shipyard.models.request import CloudCredentials

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = "shipyard.yaml"

# Environment variable to (section, field) mapping
ENV_VAR_MAP: dict[str, tuple[str | None, str]] = {
    "SHIPYARD_STATE_PATH": (None, "state_path"),
    "SHIPYARD_INSTANCE_LADDER": ("provisioning", "instance_ladder"),
    "SHIPYARD_INSTANCE_WAIT_ATTEMPTS": ("provisioning", "instance_wait_attempts"),
    "SHIPYARD_INSTANCE_WAIT_INTERVAL": ("provisioning", "instance_wait_interval"),
    "SHIPYARD_KEY_NAME": ("provisioning", "key_name"),
    "SHIPYARD_PLANNER_ENABLED": ("planner", "enabled"),
    "SHIPYARD_PLANNER_MODEL_ID": ("planner", "model_id"),
    "SHIPYARD_PLANNER_REGION": ("planner", "region"),
    "SHIPYARD_PLANNER_TIMEOUT": ("planner", "timeout_seconds"),
    "SHIPYARD_READINESS_ATTEMPTS": ("readiness", "max_attempts"),
    "SHIPYARD_READINESS_INTERVAL": ("readiness", "interval_seconds"),
    "SHIPYARD_PROBE_TIMEOUT": ("tracker", "probe_timeout"),
    "SHIPYARD_INSTRUMENTED": ("tracker", "instrumented"),
    "GITHUB_TOKEN": ("repository", "token"),
    "SHIPYARD_GITHUB_API_URL": ("repository", "api_url"),
}

_BOOL_FIELDS = {"enabled", "instrumented"}
_LIST_FIELDS = {"instance_ladder"}


def _parse_env_value(field_name: str, value: str) -> Any:
    """Parse an environment variable value into the field's shape.

    Numbers are left as strings for pydantic to coerce.
    """
    if field_name in _BOOL_FIELDS:
        return value.lower() in ("true", "1", "yes", "on")
    if field_name in _LIST_FIELDS:
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


def field_errors(exc: PydanticValidationError) -> list[str]:
    """Render validation errors as ``dotted.path: message`` lines.

    Messages raised by our own validators lose pydantic's ``Value error,``
    prefix, so settings errors, rejected planner output and API 422 replies
    all read the same way. Repeated lines are reported once.
    """
    lines: list[str] = []
    for error in exc.errors():
        path = ".".join(str(part) for part in error.get("loc", ())) or "<root>"
        message = str(error.get("msg", "invalid value")).removeprefix("Value error, ")
        line = f"{path}: {message}"
        if line not in lines:
            lines.append(line)
    return lines


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> None:
    """Deep merge override dict into base dict (in-place)."""
    for key, override_value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(override_value, dict)
        ):
            _deep_merge(base[key], override_value)
        else:
            base[key] = override_value


def _read_settings_file(path: Path) -> dict[str, Any]:
    """Read a YAML settings file into a dict.

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    try:
        content = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError("settings_file", f"Cannot read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError("settings_file", f"Invalid YAML in {path}: {exc}") from exc

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigError(
            "settings_file", f"Expected a mapping at the top of {path}"
        )
    return content


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect settings overrides from environment variables."""
    overrides: dict[str, Any] = {}
    for env_name, (section, field_name) in ENV_VAR_MAP.items():
        if env_name not in env:
            continue
        value = _parse_env_value(field_name, env[env_name])
        if section is None:
            overrides[field_name] = value
        else:
            overrides.setdefault(section, {})[field_name] = value
    return overrides


def load_settings(
    path: Path | None = None, env: Mapping[str, str] | None = None
) -> ShipyardSettings:
    """Load shipyard settings.

    Args:
        path: Explicit settings file. When omitted, ``shipyard.yaml`` in the
            working directory is used if present.
        env: Environment mapping. When omitted, ``.env`` is loaded and
            ``os.environ`` is used.

    Returns:
        Validated settings

    Raises:
        ConfigError: If the file is missing, unreadable or invalid
    """
    if env is None:
        load_dotenv()
        env = os.environ

    data: dict[str, Any] = {}
    if path is not None:
        if not path.exists():
            raise ConfigError("settings_file", f"Settings file not found: {path}")
        data = _read_settings_file(path)
    elif Path(DEFAULT_SETTINGS_FILE).exists():
        logger.debug(f"Loading settings from {DEFAULT_SETTINGS_FILE}")
        data = _read_settings_file(Path(DEFAULT_SETTINGS_FILE))

    _deep_merge(data, _env_overrides(env))

    try:
        return ShipyardSettings.model_validate(data)
    except PydanticValidationError as exc:
        messages = field_errors(exc)
        raise ConfigError("settings", "; ".join(messages)) from exc


def load_credentials(
    env: Mapping[str, str] | None = None, region: str | None = None
) -> CloudCredentials:
    """Build a cloud credential reference from standard AWS variables.

    Missing values are left empty; the coordinator rejects incomplete
    credentials before any cloud call.
    """
    if env is None:
        env = os.environ

    session_token = env.get("AWS_SESSION_TOKEN")
    return CloudCredentials(
        access_key_id=env.get("AWS_ACCESS_KEY_ID", ""),
        secret_access_key=SecretStr(env.get("AWS_SECRET_ACCESS_KEY", "")),
        session_token=SecretStr(session_token) if session_token else None,
        region=region
        or env.get("AWS_REGION")
        or env.get("AWS_DEFAULT_REGION", ""),
    )
