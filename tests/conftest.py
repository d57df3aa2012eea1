"""Test configuration."""

import os
from typing import List

from pytest import Config

from dealbridge.core.logging import configure_logging

# Keep the host environment from leaking into Settings() in tests
for _name in ("MINER_ID", "CLIENT_WALLET", "LOTUS_API_TOKEN", "PROVIDER_POLICIES"):
    os.environ.pop(_name, None)

pytest_plugins: List[str] = [
    "tests.fixtures.pipeline",
    "tests.fixtures.api",
]


def pytest_configure(config: Config) -> None:
    """Configure pytest.

    Args:
        config: Pytest configuration object
    """
    # Configure logging for test environment
    configure_logging(testing=True)
    config.addinivalue_line("markers", "integration: mark test as an integration test")
