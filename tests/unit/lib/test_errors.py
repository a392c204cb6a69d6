"""Unit tests for the shipyard exception hierarchy."""

from __future__ import annotations

import pytest

from shipyard.lib.errors import (
    BootstrapFailedError,
    BootstrapTimeoutError,
    CloudSDKNotInstalledError,
    ConfigError,
    DeploymentError,
    ErrorKind,
    InputValidationError,
    InvalidTransitionError,
    LadderExhaustedError,
    PlanGenerationError,
    ProvisioningError,
    ProvisioningFailure,
    ShipyardError,
)


class TestErrorHierarchy:
    """Tests for exception inheritance and attributes."""

    @pytest.mark.parametrize(
        "error",
        [
            ConfigError("field", "bad"),
            InputValidationError("region", "unsupported"),
            ProvisioningError("denied"),
            BootstrapTimeoutError("slow", waited_seconds=10.0),
            PlanGenerationError("bad json"),
            CloudSDKNotInstalledError("aws", "boto3"),
            InvalidTransitionError("d-1", "ready", "requested"),
        ],
    )
    def test_all_errors_are_shipyard_errors(self, error: Exception) -> None:
        """Every custom exception derives from ShipyardError."""
        assert isinstance(error, ShipyardError)

    def test_config_error_formats_field(self) -> None:
        """ConfigError keeps the field and message."""
        error = ConfigError("planner.region", "must not be empty")

        assert error.field == "planner.region"
        assert error.message == "must not be empty"
        assert "planner.region" in str(error)

    def test_input_validation_error_kind(self) -> None:
        """Input validation errors carry their own kind and field."""
        error = InputValidationError("credentials", "missing")

        assert isinstance(error, DeploymentError)
        assert error.kind == ErrorKind.INPUT_VALIDATION
        assert error.field == "credentials"
        assert error.operation == "validate"
        assert error.message == "credentials: missing"

    def test_provisioning_error_defaults_to_other(self) -> None:
        """An unclassified provisioning error has reason OTHER."""
        error = ProvisioningError("boom")

        assert error.kind == ErrorKind.PROVISIONING
        assert error.reason == ProvisioningFailure.OTHER
        assert error.code is None

    def test_ladder_exhausted_summarizes_attempts(self) -> None:
        """The aggregated ladder error lists every candidate."""
        error = LadderExhaustedError(
            [("t2.micro", "no capacity"), ("t3.micro", "limit exceeded")]
        )

        assert error.reason == ProvisioningFailure.CAPACITY
        assert "t2.micro: no capacity" in error.message
        assert "t3.micro: limit exceeded" in error.message
        assert len(error.attempts) == 2

    def test_bootstrap_errors_have_distinct_kinds(self) -> None:
        """Timeouts and reported failures are separate kinds."""
        assert (
            BootstrapTimeoutError("x", waited_seconds=1).kind
            == ErrorKind.BOOTSTRAP_TIMEOUT
        )
        assert BootstrapFailedError("x").kind == ErrorKind.BOOTSTRAP_FAILED

    def test_sdk_error_mentions_extra(self) -> None:
        """The missing SDK error tells the user which extra to install."""
        error = CloudSDKNotInstalledError("aws", "boto3")

        assert "pip install 'shipyard[aws]'" in str(error)
