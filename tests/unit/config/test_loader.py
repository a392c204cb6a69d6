"""Unit tests for the settings loader."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import BaseModel, ValidationError, field_validator

from shipyard.config.loader import field_errors, load_credentials, load_settings
from shipyard.lib.errors import ConfigError


class TestLoadSettings:
    """Tests for load_settings precedence and validation."""

    def test_defaults_without_file_or_env(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Model defaults apply when nothing is configured."""
        monkeypatch.chdir(tmp_path)

        settings = load_settings(env={})

        assert settings.provisioning.instance_ladder == [
            "t2.micro",
            "t3.micro",
            "t2.nano",
        ]
        assert settings.readiness.max_attempts == 40
        assert settings.planner.enabled is True

    def test_yaml_file_values(self, tmp_path: Path) -> None:
        """Values from an explicit YAML file are applied."""
        path = tmp_path / "shipyard.yaml"
        path.write_text(
            "provisioning:\n"
            "  instance_ladder: [t3.small, t3.medium]\n"
            "readiness:\n"
            "  max_attempts: 5\n",
            encoding="utf-8",
        )

        settings = load_settings(path, env={})

        assert settings.provisioning.instance_ladder == ["t3.small", "t3.medium"]
        assert settings.readiness.max_attempts == 5

    def test_env_overrides_file(self, tmp_path: Path) -> None:
        """SHIPYARD_* variables take precedence over the file."""
        path = tmp_path / "shipyard.yaml"
        path.write_text("planner:\n  enabled: true\n", encoding="utf-8")

        settings = load_settings(
            path,
            env={
                "SHIPYARD_PLANNER_ENABLED": "false",
                "SHIPYARD_INSTANCE_LADDER": "t3.nano, t3.micro",
                "GITHUB_TOKEN": "ghp_test",
            },
        )

        assert settings.planner.enabled is False
        assert settings.provisioning.instance_ladder == ["t3.nano", "t3.micro"]
        assert settings.repository.token == "ghp_test"

    def test_missing_explicit_file_raises(self, tmp_path: Path) -> None:
        """An explicit path that does not exist is a configuration error."""
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "missing.yaml", env={})

    def test_invalid_yaml_raises(self, tmp_path: Path) -> None:
        """Malformed YAML is reported as a configuration error."""
        path = tmp_path / "shipyard.yaml"
        path.write_text("provisioning: [unclosed", encoding="utf-8")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_settings(path, env={})

    def test_invalid_values_are_flattened(self, tmp_path: Path) -> None:
        """Validation errors name the offending field."""
        path = tmp_path / "shipyard.yaml"
        path.write_text(
            "provisioning:\n  instance_ladder: [t2.micro, t2.micro]\n",
            encoding="utf-8",
        )

        with pytest.raises(ConfigError) as exc_info:
            load_settings(path, env={})

        assert "provisioning.instance_ladder" in exc_info.value.message


class _Section(BaseModel):
    name: str
    size: int

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if " " in v:
            raise ValueError("Name must not contain spaces")
        return v


class _Settings(BaseModel):
    sections: list[_Section]


class TestFieldErrors:
    """Tests for rendering pydantic errors."""

    def test_paths_are_dotted_and_prefix_stripped(self) -> None:
        """Each error reads as path: message without pydantic's prefix."""
        with pytest.raises(ValidationError) as exc_info:
            _Settings.model_validate(
                {"sections": [{"name": "a b", "size": 1}, {"name": "c"}]}
            )

        lines = field_errors(exc_info.value)

        assert "sections.0.name: Name must not contain spaces" in lines
        assert any(line.startswith("sections.1.size: ") for line in lines)
        assert not any("Value error" in line for line in lines)


class TestLoadCredentials:
    """Tests for load_credentials."""

    def test_reads_standard_variables(self) -> None:
        """Standard AWS variables populate the credential reference."""
        credentials = load_credentials(
            env={
                "AWS_ACCESS_KEY_ID": "AKIATEST",
                "AWS_SECRET_ACCESS_KEY": "secret",
                "AWS_SESSION_TOKEN": "token",
                "AWS_DEFAULT_REGION": "eu-west-1",
            }
        )

        assert credentials.access_key_id == "AKIATEST"
        assert credentials.secret_access_key.get_secret_value() == "secret"
        assert credentials.session_token is not None
        assert credentials.region == "eu-west-1"
        assert credentials.is_complete

    def test_region_argument_wins(self) -> None:
        """An explicit region overrides the environment."""
        credentials = load_credentials(
            env={"AWS_REGION": "us-east-1"}, region="us-west-2"
        )

        assert credentials.region == "us-west-2"

    def test_missing_values_are_incomplete(self) -> None:
        """Empty environments produce incomplete credentials, not errors."""
        credentials = load_credentials(env={})

        assert not credentials.is_complete

    def test_secret_values_are_not_rendered(self) -> None:
        """Secret values never appear when credentials are rendered."""
        credentials = load_credentials(
            env={
                "AWS_ACCESS_KEY_ID": "AKIATEST",
                "AWS_SECRET_ACCESS_KEY": "wJalrXUtnFEMIK7MDENGbPxRfiCYEXAMPLEKEY",
                "AWS_SESSION_TOKEN": "FwoGZXIvYXdzEXAMPLETOKEN",
                "AWS_REGION": "us-east-1",
            }
        )

        for rendered in (
            repr(credentials),
            str(credentials),
            credentials.model_dump_json(),
        ):
            assert "wJalrXUtnFEMIK7MDENGbPxRfiCYEXAMPLEKEY" not in rendered
            assert "FwoGZXIvYXdzEXAMPLETOKEN" not in rendered
