"""Default configuration tables for shipyard."""

import logging

logger = logging.getLogger(__name__)


# Tag marker applied to every cloud resource we create
PRODUCT_TAG = "shipyard"
SOURCE_TAG = "GitHub Repository Deployment"

# Region-specific Ubuntu 22.04 LTS images (amd64, hvm, ebs)
REGION_IMAGES: dict[str, str] = {
    "us-east-1": "ami-0c7217cdde317cfec",
    "us-east-2": "ami-0b614a5d911a1a4b4",
    "us-west-1": "ami-0ce2cb35386fc22e9",
    "us-west-2": "ami-0892d3c7ee96c0bf7",
    "eu-west-1": "ami-0905a3c97561e0b69",
    "eu-west-2": "ami-0eb260c4d5475b901",
    "eu-west-3": "ami-08ca3fed11864d6bb",
    "eu-central-1": "ami-0fa03365cde71e0ab",
    "ap-south-1": "ami-0f5ee92e2d63afc18",
    "ap-southeast-1": "ami-0df7a207adb9748c7",
    "ap-southeast-2": "ami-0310483fb2b488153",
    "ap-northeast-1": "ami-0d52744d6551d851e",
}

# Candidate instance sizes in order of preference (all free tier eligible)
DEFAULT_INSTANCE_LADDER: tuple[str, ...] = ("t2.micro", "t3.micro", "t2.nano")

# Ports the network rule may open; the application port is added per request
ADMIN_PORT = 22
HTTP_PORT = 80
HTTPS_PORT = 443
DEFAULT_APP_PORT = 3000

# Ports taken by SSH and nginx on the instance; never valid application ports
RESERVED_PORTS = frozenset({ADMIN_PORT, HTTP_PORT, HTTPS_PORT})

# Instance running wait: 30 attempts at 10s = 5 minutes
DEFAULT_INSTANCE_WAIT: dict[str, float] = {
    "max_attempts": 30,
    "interval_seconds": 10.0,
}

# Application readiness wait: 40 attempts at 30s = 20 minutes
DEFAULT_READINESS_WAIT: dict[str, float] = {
    "max_attempts": 40,
    "interval_seconds": 30.0,
}

# On-instance check that the started service answers: 60 attempts at 5s
APP_VERIFY_ATTEMPTS = 60
APP_VERIFY_INTERVAL = 5

# Well-known paths written by the bootstrap script on the instance
APP_DIR = "/opt/app"
APP_LOG_DIR = "/var/log/app"
BREADCRUMB_PATH = f"{APP_LOG_DIR}/deployment-status.txt"
DEPLOYMENT_LOG_PATH = f"{APP_LOG_DIR}/deployment.log"
USER_DATA_LOG_PATH = "/var/log/user-data.log"
ADMIN_USER = "ubuntu"

# HTTP paths published by the reverse proxy
HEALTH_CHECK_PATH = "/health"
BREADCRUMB_HTTP_PATH = "/deployment-status"
LOGS_HTTP_PATH = "/deployment-logs"

# Expected bootstrap duration profile used for time-estimated progress.
# Each entry: (elapsed minutes threshold, progress, message)
EXPECTED_DURATION_PROFILE: tuple[tuple[float, int, str], ...] = (
    (0.0, 20, "Instance launched, installing system packages"),
    (1.0, 40, "Cloning repository and installing dependencies"),
    (2.0, 60, "Building application"),
    (3.0, 80, "Starting application service"),
    (4.0, 100, "Configuring reverse proxy"),
)

# Ceiling for any progress value not backed by a successful health check
UNCONFIRMED_PROGRESS_CEILING = 95


def resolve_region_image(region: str) -> str | None:
    """Return the machine image for a region, or None if unsupported.

    Args:
        region: Cloud region name (e.g., "us-east-1")

    Returns:
        Image identifier or None
    """
    image = REGION_IMAGES.get(region)
    if image is None:
        logger.debug(
            f"No image registered for region '{region}'. "
            f"Supported: {', '.join(sorted(REGION_IMAGES))}"
        )
    return image
