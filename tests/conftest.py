from datetime import timedelta

import pytest
from argon2 import PasswordHasher

from remote_print.config import ServerConfig
from remote_print.credentials import CredentialStore
from remote_print.print_dispatcher import PrintDispatcher
from remote_print.session_registry import SessionRegistry
from tests.mocks import PASSWORD, FakeClock


@pytest.fixture
def fast_hasher():
    """Argon2 hasher with minimal cost so tests stay quick."""
    return PasswordHasher(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def credentials(fast_hasher):
    """Fixture providing a CredentialStore for PASSWORD."""
    return CredentialStore.from_password(PASSWORD, fast_hasher)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(credentials, clock):
    """Fixture providing a SessionRegistry driven by the fake clock."""
    return SessionRegistry(credentials, ttl=timedelta(hours=4), clock=clock)


@pytest.fixture
def dispatcher(tmp_path):
    """Fixture providing a PrintDispatcher spooling into tmp_path."""
    spool = tmp_path / "spool"
    spool.mkdir()
    return PrintDispatcher(temp_dir=spool)


@pytest.fixture
def server_config(tmp_path):
    return ServerConfig(
        host="127.0.0.1",
        port=4433,
        data_dir=tmp_path / "data",
        temp_dir=tmp_path / "spool",
        header_timeout=1.0,
    )
