"""Test configuration."""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

project_dir = Path(__file__).parent.parent

env_test_file = project_dir / ".env.test"
if env_test_file.exists():
    load_dotenv(env_test_file, override=True)

os.environ["TESTING"] = "true"

from castflow.core.logging import configure_logging  # noqa: E402

pytest_plugins = ["tests.fixtures.services"]


@pytest.fixture(autouse=True, scope="session")
def setup_logging() -> None:
    """Use console logging for tests."""
    configure_logging(testing=True)


@pytest.fixture(scope="session")
def project_root() -> Path:
    return project_dir
