"""Logging configuration for shipyard.

All modules obtain loggers through ``get_logger`` so the package shares a
single ``shipyard`` logger hierarchy configured by ``setup_logging``.
"""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Third-party loggers that are chatty at INFO level
NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore")

_ROOT_LOGGER_NAME = "shipyard"


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure the shipyard logger hierarchy.

    Args:
        verbose: Emit DEBUG records
        quiet: Only emit WARNING and above (takes precedence over verbose)
    """
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    root = logging.getLogger(_ROOT_LOGGER_NAME)
    root.setLevel(level)

    # Replace handlers so repeated calls (CLI re-entry, tests) do not duplicate
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)
    root.propagate = False

    third_party_level = logging.DEBUG if verbose else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(third_party_level)


def get_logger(name: str) -> logging.Logger:
    """Return a logger namespaced under the shipyard hierarchy."""
    if name == _ROOT_LOGGER_NAME or name.startswith(f"{_ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_LOGGER_NAME}.{name}")
