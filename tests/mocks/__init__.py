"""
Reusable test doubles for remote_print tests.

Provides stand-ins for the clock, the QUIC stream writer and the external
print commands so the request pipeline can be exercised without a network
or a print system.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

PASSWORD = "correct horse battery staple"


class FakeClock:
    """Manually advanced clock for session expiry tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


class FakeWriter:
    """Collects what a StreamRouter writes to its stream."""

    def __init__(self, stream_id: int = 0, fail: bool = False):
        self.stream_id = stream_id
        self.fail = fail
        self.data = bytearray()
        self.eof = False
        self.drain = AsyncMock()

    def write(self, data: bytes) -> None:
        if self.fail:
            raise ConnectionResetError("stream reset by peer")
        self.data.extend(data)

    def write_eof(self) -> None:
        self.eof = True

    def get_extra_info(self, name, default=None):
        if name == "stream_id":
            return self.stream_id
        return default


class FakePrintCommand:
    """
    Stand-in for asyncio.create_subprocess_exec.

    Records every print invocation together with the spooled file content
    as seen after ``delay`` seconds (None if the file was gone by then).
    """

    def __init__(
        self,
        returncode: int = 0,
        stderr: bytes = b"",
        lpstat_output: bytes = b"",
        lpstat_error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.returncode = returncode
        self.stderr = stderr
        self.lpstat_output = lpstat_output
        self.lpstat_error = lpstat_error
        self.delay = delay
        self.print_calls: List[Tuple[Tuple[str, ...], Optional[bytes]]] = []
        self.list_calls = 0

    async def __call__(self, *args, **kwargs):
        process = MagicMock()
        if args[0] == "lpstat":
            self.list_calls += 1
            if self.lpstat_error is not None:
                raise self.lpstat_error
            process.returncode = 0
            process.communicate = AsyncMock(return_value=(self.lpstat_output, b""))
            return process
        process.returncode = self.returncode

        async def communicate():
            await asyncio.sleep(self.delay)
            content = Path(args[1]).read_bytes() if Path(args[1]).exists() else None
            self.print_calls.append((args, content))
            return b"", self.stderr

        process.communicate = communicate
        return process


def make_reader(data: bytes = b"", eof: bool = True) -> asyncio.StreamReader:
    """Build a StreamReader pre-loaded with ``data`` (call inside a running loop)."""
    reader = asyncio.StreamReader()
    if data:
        reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader
