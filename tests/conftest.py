"""Pytest configuration and shared fixtures for shipyard tests."""

import os
import shutil
import tempfile
from collections.abc import Generator
from pathlib import Path

import pytest

AWS_ENV_VARS = (
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "AWS_REGION",
    "AWS_DEFAULT_REGION",
)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test file operations.

    Yields:
        Path to temporary directory

    Cleanup:
        Automatically removes directory after test
    """
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def isolated_env() -> Generator[dict[str, str], None, None]:
    """Provide isolated environment variables for testing.

    Removes AWS and SHIPYARD_* variables for the duration of the test and
    restores the original environment afterwards.

    Yields:
        Dictionary of original environment variables
    """
    original_env = os.environ.copy()
    for name in list(os.environ):
        if name in AWS_ENV_VARS or name.startswith("SHIPYARD_"):
            del os.environ[name]
    yield original_env
    os.environ.clear()
    os.environ.update(original_env)
