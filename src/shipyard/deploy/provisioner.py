"""Cloud resource provisioning with a capacity-aware instance ladder.

Order of operations:
1. Resolve the region's machine image (fails before any cloud call)
2. Create the network ingress rule
3. Create the instance, walking the size ladder on capacity errors only
4. Wait until the instance is running with a public address
"""

from __future__ import annotations

import time
from collections.abc import Callable

from shipyard.config.defaults import (
    ADMIN_PORT,
    DEFAULT_APP_PORT,
    HTTP_PORT,
    HTTPS_PORT,
    PRODUCT_TAG,
    SOURCE_TAG,
    resolve_region_image,
)
from shipyard.deploy.compute import ComputeClient
from shipyard.lib.errors import (
    BootstrapTimeoutError,
    InputValidationError,
    LadderExhaustedError,
    ProvisioningError,
    ProvisioningFailure,
)
from shipyard.lib.logging_config import get_logger
from shipyard.models.config import ProvisioningSettings
from shipyard.models.provision import InstanceDescription, ProvisionResult
from shipyard.models.record import LifecycleState

logger = get_logger(__name__)

# (state reached, resource fields to record, log message)
PhaseCallback = Callable[[LifecycleState, dict[str, str], str], None]

# Describe errors that only mean the new instance is not visible yet
_NOT_YET_VISIBLE_CODES = frozenset({"InvalidInstanceID.NotFound"})


def is_capacity_error(exc: BaseException) -> bool:
    """Return True if a create failure should move to the next ladder size."""
    return (
        isinstance(exc, ProvisioningError)
        and exc.reason == ProvisioningFailure.CAPACITY
    )


def required_ports(app_port: int = DEFAULT_APP_PORT) -> list[int]:
    """Return the exact set of TCP ports a deployment opens, sorted."""
    return sorted({ADMIN_PORT, HTTP_PORT, HTTPS_PORT, app_port})


def deployment_tags(deployment_id: str) -> dict[str, str]:
    """Return the tags applied to every resource of a deployment."""
    return {
        "Name": f"{PRODUCT_TAG}-{deployment_id}",
        "DeploymentId": deployment_id,
        "CreatedBy": PRODUCT_TAG,
        "Source": SOURCE_TAG,
    }


class Provisioner:
    """Creates the network rule and instance for one deployment."""

    def __init__(
        self,
        client: ComputeClient,
        settings: ProvisioningSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the provisioner.

        Args:
            client: Cloud compute client
            settings: Instance ladder and wait bounds
            sleep: Sleep function used between describe calls
        """
        self._client = client
        self._settings = settings or ProvisioningSettings()
        self._sleep = sleep

    def provision(
        self,
        deployment_id: str,
        region: str,
        bootstrap_script: str,
        *,
        app_port: int = DEFAULT_APP_PORT,
        on_phase: PhaseCallback | None = None,
    ) -> ProvisionResult:
        """Provision compute for a deployment.

        Args:
            deployment_id: Deployment id used for tagging and naming
            region: Target cloud region
            bootstrap_script: Script installed as instance user data
            app_port: Application port to open alongside 22/80/443
            on_phase: Called as each provisioning phase completes

        Returns:
            ProvisionResult for the running instance

        Raises:
            InputValidationError: If the region has no registered image
            ProvisioningError: If a create call fails for a non-capacity reason
            LadderExhaustedError: If every ladder size failed on capacity
            BootstrapTimeoutError: If the instance is not running in time
        """

        def notify(state: LifecycleState, fields: dict[str, str], message: str) -> None:
            logger.info(f"[{deployment_id}] {message}")
            if on_phase is not None:
                on_phase(state, fields, message)

        image_id = resolve_region_image(region)
        if image_id is None:
            raise InputValidationError(
                "region", f"Region '{region}' is not supported"
            )

        tags = deployment_tags(deployment_id)
        ports = required_ports(app_port)
        rule_id = self._client.create_network_rule(
            name=f"{PRODUCT_TAG}-{deployment_id}",
            description=f"Ingress for {PRODUCT_TAG} deployment {deployment_id}",
            ports=ports,
            tags=tags,
        )
        notify(
            LifecycleState.NETWORK_PROVISIONED,
            {"region": region, "image_id": image_id, "network_rule_id": rule_id},
            f"Security group {rule_id} created (ports {', '.join(map(str, ports))})",
        )

        instance_id, instance_size = self._create_instance(
            image_id=image_id,
            network_rule_id=rule_id,
            user_data=bootstrap_script,
            tags=tags,
        )
        notify(
            LifecycleState.INSTANCE_REQUESTED,
            {"instance_id": instance_id, "instance_size": instance_size},
            f"Instance {instance_id} ({instance_size}) launched",
        )

        description = self._wait_until_running(instance_id)
        public_address = description.public_address or ""
        notify(
            LifecycleState.INSTANCE_RUNNING,
            {"public_address": public_address},
            f"Instance is running at {public_address}",
        )

        return ProvisionResult(
            instance_id=instance_id,
            public_address=public_address,
            instance_size=instance_size,
            network_rule_id=rule_id,
            image_id=image_id,
        )

    def _create_instance(
        self,
        *,
        image_id: str,
        network_rule_id: str,
        user_data: str,
        tags: dict[str, str],
    ) -> tuple[str, str]:
        """Walk the instance ladder, stopping at the first success."""
        attempts: list[tuple[str, str]] = []
        for instance_size in self._settings.instance_ladder:
            try:
                instance_id = self._client.create_instance(
                    image_id=image_id,
                    instance_size=instance_size,
                    network_rule_id=network_rule_id,
                    user_data=user_data,
                    tags=tags,
                    key_name=self._settings.key_name,
                )
            except ProvisioningError as exc:
                if not is_capacity_error(exc):
                    raise
                logger.warning(
                    f"{instance_size} unavailable ({exc.code}), trying next size"
                )
                attempts.append((instance_size, exc.message))
                continue
            return instance_id, instance_size

        raise LadderExhaustedError(attempts)

    def _wait_until_running(self, instance_id: str) -> InstanceDescription:
        """Poll until running with a public address, within the wait bound."""
        max_attempts = self._settings.instance_wait_attempts
        interval = self._settings.instance_wait_interval

        for attempt in range(1, max_attempts + 1):
            try:
                description = self._client.describe_instance(instance_id)
            except ProvisioningError as exc:
                if exc.code not in _NOT_YET_VISIBLE_CODES:
                    raise
                logger.debug(f"{instance_id} not visible yet (attempt {attempt})")
            else:
                if description.is_running:
                    return description
                logger.debug(
                    f"{instance_id} is {description.state} (attempt {attempt})"
                )
            if attempt < max_attempts:
                self._sleep(interval)

        waited = max_attempts * interval
        raise BootstrapTimeoutError(
            f"Instance {instance_id} was not running with a public address "
            f"after {max_attempts} checks",
            waited_seconds=waited,
        )
