import os

import pytest

# Test configuration - allow override via environment variables
TEST_HOST = os.environ.get("REMOTE_PRINT_TEST_HOST", "127.0.0.1")
TEST_PORT = int(os.environ.get("REMOTE_PRINT_TEST_PORT", "0"))


@pytest.fixture
def loopback_host():
    return TEST_HOST


@pytest.fixture
def loopback_port():
    """UDP port for loopback servers; 0 picks a free one."""
    return TEST_PORT


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "integration: runs a real QUIC server on the loopback interface"
    )
