"""Custom exception hierarchy for shipyard configuration and deployments."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Machine-readable error kinds attached to failed deployment records."""

    INPUT_VALIDATION = "input_validation"
    PROVISIONING = "provisioning"
    BOOTSTRAP_TIMEOUT = "bootstrap_timeout"
    BOOTSTRAP_FAILED = "bootstrap_failed"
    PLAN_GENERATION = "plan_generation"
    INTERNAL = "internal"


class ProvisioningFailure(str, Enum):
    """Classification of a failed cloud create call."""

    CAPACITY = "capacity"
    PERMISSION = "permission"
    OTHER = "other"


class ShipyardError(Exception):
    """Base exception for all shipyard errors.

    All shipyard-specific exceptions inherit from this class, enabling
    centralized exception handling at the CLI and server boundaries.
    """

    pass


class ConfigError(ShipyardError):
    """Exception raised for configuration errors.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class DeploymentError(ShipyardError):
    """Exception raised when a deployment operation fails.

    Attributes:
        operation: The operation that failed (e.g. "provision", "plan")
        message: Human-readable error message
        kind: Machine-readable error kind recorded on the deployment
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, operation: str, message: str) -> None:
        """Create a deployment error for an operation."""
        self.operation = operation
        self.message = message
        super().__init__(f"Deployment {operation} failed: {message}")


class InputValidationError(DeploymentError):
    """Raised for bad input before any cloud call is made.

    Covers missing credentials, unsupported regions and malformed
    repository references. Never retried.
    """

    kind = ErrorKind.INPUT_VALIDATION

    def __init__(self, field: str, message: str) -> None:
        """Create a validation error for a request field."""
        self.field = field
        super().__init__(operation="validate", message=f"{field}: {message}")


class ProvisioningError(DeploymentError):
    """Raised when the cloud provider rejects a resource create call.

    Attributes:
        reason: Whether the failure was capacity, permission or other
        code: Provider error code, when one was returned
        network_rule_id: Network rule created before the failing call, if any
    """

    kind = ErrorKind.PROVISIONING

    def __init__(
        self,
        message: str,
        *,
        reason: ProvisioningFailure = ProvisioningFailure.OTHER,
        code: str | None = None,
        network_rule_id: str | None = None,
    ) -> None:
        """Create a provisioning error with its classification."""
        self.reason = reason
        self.code = code
        self.network_rule_id = network_rule_id
        super().__init__(operation="provision", message=message)


class LadderExhaustedError(ProvisioningError):
    """Raised when every candidate instance size failed on capacity.

    Attributes:
        attempts: Ordered (instance size, error message) pairs
    """

    def __init__(self, attempts: list[tuple[str, str]]) -> None:
        """Create an aggregated error from per-candidate failures."""
        self.attempts = attempts
        summary = "; ".join(f"{size}: {error}" for size, error in attempts)
        super().__init__(
            f"No candidate instance size could be created ({summary})",
            reason=ProvisioningFailure.CAPACITY,
        )


class BootstrapTimeoutError(DeploymentError):
    """Raised when an instance or application is not reachable in time."""

    kind = ErrorKind.BOOTSTRAP_TIMEOUT

    def __init__(self, message: str, *, waited_seconds: float) -> None:
        """Create a timeout error recording how long we waited."""
        self.waited_seconds = waited_seconds
        super().__init__(operation="bootstrap", message=message)


class BootstrapFailedError(DeploymentError):
    """Raised when the instance reports a failed bootstrap breadcrumb."""

    kind = ErrorKind.BOOTSTRAP_FAILED

    def __init__(self, message: str) -> None:
        """Create a bootstrap failure error."""
        super().__init__(operation="bootstrap", message=message)


class PlanGenerationError(DeploymentError):
    """Raised by plan generation; always recovered by the fallback planner."""

    kind = ErrorKind.PLAN_GENERATION

    def __init__(self, message: str) -> None:
        """Create a plan generation error."""
        super().__init__(operation="plan", message=message)


class CloudSDKNotInstalledError(ShipyardError):
    """Raised when an optional cloud SDK is not installed."""

    def __init__(self, provider: str, sdk_name: str) -> None:
        """Create an error pointing at the missing SDK package."""
        self.provider = provider
        self.sdk_name = sdk_name
        super().__init__(
            f"The {provider} integration requires '{sdk_name}'.\n"
            f"Install it with: pip install 'shipyard[{provider}]'"
        )


class InvalidTransitionError(ShipyardError):
    """Raised when a lifecycle transition would move a record backwards."""

    def __init__(self, deployment_id: str, current: str, target: str) -> None:
        """Create an error describing the rejected transition."""
        self.deployment_id = deployment_id
        self.current = current
        self.target = target
        super().__init__(
            f"Deployment '{deployment_id}' cannot move from '{current}' "
            f"to '{target}'"
        )


class DuplicateDeploymentError(ShipyardError):
    """Raised when a deployment id is created or started twice."""

    def __init__(self, deployment_id: str) -> None:
        """Create an error for the duplicated id."""
        self.deployment_id = deployment_id
        super().__init__(f"Deployment '{deployment_id}' already exists")


class DeploymentNotFoundError(ShipyardError):
    """Raised by record stores when an id is unknown."""

    def __init__(self, deployment_id: str) -> None:
        """Create an error for the missing id."""
        self.deployment_id = deployment_id
        super().__init__(f"Deployment '{deployment_id}' not found")
