"""
In-memory registry of authenticated sessions.

Sessions are deliberately volatile and last a few hours at most. Every read
and write goes through a single asyncio.Lock so a session created on one
stream is immediately visible to a validator running on another.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Optional, Union

from .config import SESSION_TTL
from .credentials import CredentialStore
from .exceptions import ExpiredSessionError, InvalidCredentialError, UnknownSessionError
from .utils.logging_utils import log_session_action, log_session_error

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Session:
    """A server-issued, time-limited authorization token."""

    id: uuid.UUID
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class SessionStatus(Enum):
    """Outcome of a session lookup."""

    VALID = "VALID"
    EXPIRED = "EXPIRED"
    UNKNOWN = "UNKNOWN"


class SessionRegistry:
    """
    Table of active sessions keyed by id.

    Expired entries are not removed by :meth:`validate`, so a dead session
    keeps reporting EXPIRED; :meth:`purge_expired` drops them and is run
    periodically by the server.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        ttl: timedelta = SESSION_TTL,
        clock: Clock = utc_now,
    ):
        """
        Initialize the registry.

        Args:
            credentials: Store used to verify passwords
            ttl: Lifetime of each issued session
            clock: Source of timezone-aware "now" (injectable for tests)
        """
        self.credentials = credentials
        self.ttl = ttl
        self._clock = clock
        self._sessions: Dict[uuid.UUID, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    async def authenticate(self, candidate: Union[str, bytes]) -> Session:
        """
        Verify a password and issue a fresh session.

        Returns:
            The newly inserted session

        Raises:
            InvalidCredentialError: If the password does not match
        """
        if not await self.credentials.verify_async(candidate):
            error = InvalidCredentialError()
            log_session_error(logger, "authenticate", error)
            raise error

        async with self._lock:
            # Ids come from os.urandom, never from client input
            session_id = uuid.uuid4()
            while session_id in self._sessions:
                session_id = uuid.uuid4()
            session = Session(id=session_id, expires_at=self._clock() + self.ttl)
            self._sessions[session_id] = session

        log_session_action(
            logger, "created", f"expires {session.expires_at.isoformat()}"
        )
        return session

    async def validate(self, session_id: uuid.UUID) -> SessionStatus:
        """Look up a session id and report whether it can be used now."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return SessionStatus.UNKNOWN
            if session.is_expired(self._clock()):
                return SessionStatus.EXPIRED
            return SessionStatus.VALID

    async def require_valid(self, session_id: Optional[uuid.UUID]) -> None:
        """
        Raise unless the session id refers to a live session.

        Raises:
            UnknownSessionError: If the id is missing or was never issued
            ExpiredSessionError: If the session's TTL has elapsed
        """
        if session_id is None:
            raise UnknownSessionError("Missing session, please authenticate first")
        status = await self.validate(session_id)
        if status is SessionStatus.UNKNOWN:
            raise UnknownSessionError()
        if status is SessionStatus.EXPIRED:
            raise ExpiredSessionError()

    async def get(self, session_id: uuid.UUID) -> Optional[Session]:
        async with self._lock:
            return self._sessions.get(session_id)

    async def purge_expired(self) -> int:
        """Remove dead sessions and return how many were dropped."""
        async with self._lock:
            now = self._clock()
            expired = [sid for sid, s in self._sessions.items() if s.is_expired(now)]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            log_session_action(logger, "purged", f"{len(expired)} expired")
        return len(expired)
