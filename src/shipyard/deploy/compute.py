"""Cloud compute clients.

``ComputeClient`` is the narrow surface the provisioner needs: create a
network ingress rule, create an instance and describe an instance. Create
calls are never retried by the client; failures are raised as
``ProvisioningError`` with a capacity/permission/other classification.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from shipyard.lib.errors import (
    CloudSDKNotInstalledError,
    ConfigError,
    ProvisioningError,
    ProvisioningFailure,
)
from shipyard.lib.logging_config import get_logger
from shipyard.models.config import ProvisioningSettings
from shipyard.models.provision import InstanceDescription
from shipyard.models.request import CloudCredentials

logger = get_logger(__name__)

# Provider codes meaning "this size is unavailable here, try another"
CAPACITY_ERROR_CODES = frozenset(
    {
        "InsufficientInstanceCapacity",
        "InsufficientCapacity",
        "InstanceLimitExceeded",
        "VcpuLimitExceeded",
        "Unsupported",
        "InvalidParameterCombination",
    }
)

PERMISSION_ERROR_CODES = frozenset(
    {
        "UnauthorizedOperation",
        "AuthFailure",
        "AccessDenied",
        "AccessDeniedException",
        "InvalidClientTokenId",
        "SignatureDoesNotMatch",
        "UnrecognizedClientException",
        "OptInRequired",
    }
)


def classify_error_code(code: str | None) -> ProvisioningFailure:
    """Map a provider error code to a failure classification."""
    if code in CAPACITY_ERROR_CODES:
        return ProvisioningFailure.CAPACITY
    if code in PERMISSION_ERROR_CODES:
        return ProvisioningFailure.PERMISSION
    return ProvisioningFailure.OTHER


class ComputeClient(ABC):
    """Abstract base class for cloud compute clients."""

    @abstractmethod
    def create_network_rule(
        self,
        *,
        name: str,
        description: str,
        ports: Iterable[int],
        tags: Mapping[str, str],
    ) -> str:
        """Create an ingress rule opening exactly the given TCP ports.

        Args:
            name: Rule name
            description: Human-readable description
            ports: TCP ports to open to the world
            tags: Tags applied to the rule

        Returns:
            Network rule identifier

        Raises:
            ProvisioningError: If the provider rejects the call
        """

    @abstractmethod
    def create_instance(
        self,
        *,
        image_id: str,
        instance_size: str,
        network_rule_id: str,
        user_data: str,
        tags: Mapping[str, str],
        key_name: str | None = None,
    ) -> str:
        """Create a single compute instance.

        Args:
            image_id: Machine image identifier
            instance_size: Instance size (e.g., "t2.micro")
            network_rule_id: Ingress rule to attach
            user_data: Bootstrap script run on first boot
            tags: Tags applied to the instance
            key_name: Optional key pair for administrative access

        Returns:
            Instance identifier

        Raises:
            ProvisioningError: If the provider rejects the call
        """

    @abstractmethod
    def describe_instance(self, instance_id: str) -> InstanceDescription:
        """Return the current state and public address of an instance.

        Raises:
            ProvisioningError: If the describe call fails
        """


def _tag_list(tags: Mapping[str, str]) -> list[dict[str, str]]:
    return [{"Key": key, "Value": value} for key, value in tags.items()]


class Ec2ComputeClient(ComputeClient):
    """Compute client backed by AWS EC2."""

    def __init__(
        self,
        credentials: CloudCredentials,
        settings: ProvisioningSettings | None = None,
        client: Any | None = None,
    ) -> None:
        """Initialize the EC2 client.

        Args:
            credentials: Caller's AWS credentials and region
            settings: Provisioning settings (timeouts)
            client: Pre-built boto3 EC2 client (used by tests)

        Raises:
            CloudSDKNotInstalledError: If boto3 is not installed
        """
        try:
            import boto3
            from botocore.config import Config
            from botocore.exceptions import BotoCoreError, ClientError
        except ImportError as exc:
            raise CloudSDKNotInstalledError(provider="aws", sdk_name="boto3") from exc

        self._settings = settings or ProvisioningSettings()
        self._ClientError: type[ClientError] = ClientError
        self._BotoCoreError: type[BotoCoreError] = BotoCoreError

        if client is None:
            session_token = credentials.session_token
            client = boto3.client(
                "ec2",
                region_name=credentials.region,
                aws_access_key_id=credentials.access_key_id,
                aws_secret_access_key=credentials.secret_access_key.get_secret_value(),
                aws_session_token=(
                    session_token.get_secret_value() if session_token else None
                ),
                config=Config(
                    connect_timeout=self._settings.connect_timeout,
                    read_timeout=self._settings.read_timeout,
                    retries={"total_max_attempts": 1},
                ),
            )
        self._client = client

    def _translate(self, exc: Exception, action: str) -> ProvisioningError:
        """Translate a botocore exception into a classified ProvisioningError."""
        if isinstance(exc, self._ClientError):
            error = exc.response.get("Error", {})
            code = error.get("Code")
            message = error.get("Message") or str(exc)
            return ProvisioningError(
                f"{action} failed ({code}): {message}",
                reason=classify_error_code(code),
                code=code,
            )
        return ProvisioningError(f"{action} failed: {exc}")

    def create_network_rule(
        self,
        *,
        name: str,
        description: str,
        ports: Iterable[int],
        tags: Mapping[str, str],
    ) -> str:
        """Create a security group and authorize the given ports.

        If authorizing fails, the raised error carries the id of the group
        that was already created.
        """
        try:
            result = self._client.create_security_group(
                GroupName=name,
                Description=description,
                TagSpecifications=[
                    {"ResourceType": "security-group", "Tags": _tag_list(tags)}
                ],
            )
        except (self._ClientError, self._BotoCoreError) as exc:
            raise self._translate(exc, "Security group creation") from exc

        group_id = result["GroupId"]
        try:
            self._client.authorize_security_group_ingress(
                GroupId=group_id,
                IpPermissions=[
                    {
                        "IpProtocol": "tcp",
                        "FromPort": port,
                        "ToPort": port,
                        "IpRanges": [{"CidrIp": "0.0.0.0/0"}],
                    }
                    for port in ports
                ],
            )
        except (self._ClientError, self._BotoCoreError) as exc:
            error = self._translate(exc, f"Ingress authorization for {group_id}")
            error.network_rule_id = group_id
            raise error from exc

        logger.debug(f"Created security group {group_id} ({name})")
        return group_id

    def create_instance(
        self,
        *,
        image_id: str,
        instance_size: str,
        network_rule_id: str,
        user_data: str,
        tags: Mapping[str, str],
        key_name: str | None = None,
    ) -> str:
        """Run a single EC2 instance."""
        params: dict[str, Any] = {
            "ImageId": image_id,
            "InstanceType": instance_size,
            "MinCount": 1,
            "MaxCount": 1,
            "SecurityGroupIds": [network_rule_id],
            "UserData": user_data,
            "TagSpecifications": [
                {"ResourceType": "instance", "Tags": _tag_list(tags)}
            ],
        }
        if key_name:
            params["KeyName"] = key_name

        try:
            result = self._client.run_instances(**params)
        except (self._ClientError, self._BotoCoreError) as exc:
            raise self._translate(exc, f"Instance creation ({instance_size})") from exc

        instance_id = result["Instances"][0]["InstanceId"]
        logger.debug(f"Created {instance_size} instance {instance_id}")
        return instance_id

    def describe_instance(self, instance_id: str) -> InstanceDescription:
        """Describe a single EC2 instance."""
        try:
            result = self._client.describe_instances(InstanceIds=[instance_id])
        except (self._ClientError, self._BotoCoreError) as exc:
            raise self._translate(exc, "Instance describe") from exc

        reservations = result.get("Reservations") or []
        instances = reservations[0].get("Instances", []) if reservations else []
        if not instances:
            return InstanceDescription(instance_id=instance_id, state="unknown")

        instance = instances[0]
        return InstanceDescription(
            instance_id=instance_id,
            state=instance.get("State", {}).get("Name", "unknown"),
            public_address=instance.get("PublicIpAddress"),
        )


def create_compute_client(
    credentials: CloudCredentials, settings: ProvisioningSettings
) -> ComputeClient:
    """Create the compute client for the configured provider.

    Raises:
        ConfigError: If the provider is not supported
        CloudSDKNotInstalledError: If the provider SDK is missing
    """
    if settings.provider == "aws":
        return Ec2ComputeClient(credentials, settings)
    raise ConfigError(
        "provisioning.provider",
        f"Unsupported provider '{settings.provider}'. Supported: aws",
    )
