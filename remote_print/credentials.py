"""
Credential store holding the single shared password hash.

The comparison is delegated entirely to argon2-cffi; nothing here inspects
the candidate password beyond handing it to the hasher.
"""

import asyncio
import getpass
import logging
import os
from pathlib import Path
from typing import Callable, Optional, Union

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from .config import load_settings, save_settings
from .exceptions import ConfigurationError, CredentialError

logger = logging.getLogger(__name__)

# Argon2id cost parameters (memory_cost in KiB)
TIME_COST = 3
MEMORY_COST = 1 << 16
PARALLELISM = 1

PasswordPrompt = Callable[[], str]


def default_hasher() -> PasswordHasher:
    return PasswordHasher(
        time_cost=TIME_COST, memory_cost=MEMORY_COST, parallelism=PARALLELISM
    )


def prompt_for_password() -> str:
    """Ask for a new password twice on the terminal."""
    print("A password is needed for clients to connect")
    while True:
        password = getpass.getpass("Please enter a password: ")
        confirm = getpass.getpass("Confirm Password: ")
        if not password:
            print("Password must not be empty")
        elif password != confirm:
            print("Passwords do not match")
        else:
            return password


class CredentialStore:
    """Holds one Argon2 password hash and verifies candidates against it."""

    def __init__(self, password_hash: str, hasher: Optional[PasswordHasher] = None):
        self._hash = password_hash
        self._hasher = hasher or default_hasher()

    @property
    def password_hash(self) -> str:
        return self._hash

    @classmethod
    def from_password(
        cls, password: Union[str, bytes], hasher: Optional[PasswordHasher] = None
    ) -> "CredentialStore":
        """Hash a new password and return a store for it."""
        hasher = hasher or default_hasher()
        return cls(hasher.hash(password), hasher)

    @classmethod
    def load_or_create(
        cls,
        settings_path: Path,
        prompt: Optional[PasswordPrompt] = None,
        hasher: Optional[PasswordHasher] = None,
    ) -> "CredentialStore":
        """
        Load the hash from the settings file, creating it on first run.

        On first run the password comes from ``REMOTE_PRINT_PASSWORD`` when
        set, otherwise from ``prompt`` (an interactive prompt by default).
        Deleting the settings file resets the password.

        Raises:
            ConfigurationError: If the settings file is unreadable or has no hash
        """
        settings = load_settings(settings_path)
        if settings is not None:
            password_hash = settings.get("hash")
            if not isinstance(password_hash, str) or not password_hash:
                raise ConfigurationError(
                    "Settings file has no password hash",
                    context={"path": str(settings_path)},
                )
            return cls(password_hash, hasher)

        logger.info("No stored password hash, creating one")
        password = os.environ.get("REMOTE_PRINT_PASSWORD") or (
            prompt or prompt_for_password
        )()
        store = cls.from_password(password, hasher)
        del password
        try:
            save_settings(settings_path, {"hash": store.password_hash})
        except OSError as e:
            logger.error(f"Failed to save settings: {e} (saving disabled)")
        return store

    def verify(self, candidate: Union[str, bytes]) -> bool:
        """
        Check a candidate password against the stored hash.

        Returns:
            True on match, False on mismatch

        Raises:
            CredentialError: If the stored hash cannot be used
        """
        try:
            return bool(self._hasher.verify(self._hash, candidate))
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError) as e:
            raise CredentialError(
                "Stored password hash is invalid", original_exception=e
            ) from e

    async def verify_async(self, candidate: Union[str, bytes]) -> bool:
        """Run :meth:`verify` in a worker thread so the event loop keeps serving."""
        return await asyncio.to_thread(self.verify, candidate)
