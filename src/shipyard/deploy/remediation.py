"""Remediation hints attached to failed deployments."""

from __future__ import annotations

from shipyard.config.defaults import (
    ADMIN_USER,
    APP_LOG_DIR,
    BREADCRUMB_PATH,
    DEPLOYMENT_LOG_PATH,
    REGION_IMAGES,
    USER_DATA_LOG_PATH,
)
from shipyard.lib.errors import (
    DeploymentError,
    ErrorKind,
    ProvisioningError,
    ProvisioningFailure,
)

PERMISSION_HINTS: tuple[str, ...] = (
    "Check the AWS credentials and their IAM permissions",
    "Required actions: ec2:CreateSecurityGroup, "
    "ec2:AuthorizeSecurityGroupIngress, ec2:RunInstances, "
    "ec2:DescribeInstances, ec2:CreateTags",
)

CAPACITY_HINTS: tuple[str, ...] = (
    "No candidate instance size was available in this region",
    "Try another region or check your account's instance limits",
    "Check free tier eligibility for t2.micro/t3.micro in this region",
)


def _bootstrap_hints(public_address: str | None) -> tuple[str, ...]:
    host = public_address or "<instance-ip>"
    return (
        f"Connect to the instance: ssh -i <key.pem> {ADMIN_USER}@{host}",
        f"Check the bootstrap output: sudo tail -n 100 {USER_DATA_LOG_PATH}",
        f"Check the last phase reached: cat {BREADCRUMB_PATH}",
        f"Check the deployment log: sudo tail -n 100 {DEPLOYMENT_LOG_PATH}",
        f"Check application logs in {APP_LOG_DIR}/",
        "Check the application service: sudo systemctl status app",
        "Check the reverse proxy: sudo systemctl status nginx",
    )


REMEDIATION_HINTS: dict[ErrorKind, tuple[str, ...]] = {
    ErrorKind.INPUT_VALIDATION: (
        "Provide AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY and AWS_REGION",
        f"Supported regions: {', '.join(sorted(REGION_IMAGES))}",
        "Use a repository reference like owner/name or "
        "https://github.com/owner/name",
    ),
    ErrorKind.PROVISIONING: (
        "Check the AWS console for partially created resources "
        "tagged with this DeploymentId",
    ),
    ErrorKind.PLAN_GENERATION: (
        "Plan generation failures are recovered with a heuristic plan",
    ),
    ErrorKind.INTERNAL: (
        "Re-run with --verbose and report the log output",
    ),
}


def remediation_for(
    error: BaseException, public_address: str | None = None
) -> tuple[str, ...]:
    """Return remediation hints for a deployment failure.

    Args:
        error: The exception that failed the deployment
        public_address: Instance address, when one was assigned

    Returns:
        Ordered hint lines
    """
    kind = error.kind if isinstance(error, DeploymentError) else ErrorKind.INTERNAL

    if kind in (ErrorKind.BOOTSTRAP_TIMEOUT, ErrorKind.BOOTSTRAP_FAILED):
        return _bootstrap_hints(public_address)

    hints = REMEDIATION_HINTS.get(kind, ())
    if isinstance(error, ProvisioningError):
        if error.reason == ProvisioningFailure.PERMISSION:
            return PERMISSION_HINTS + hints
        if error.reason == ProvisioningFailure.CAPACITY:
            return CAPACITY_HINTS + hints
    return hints
