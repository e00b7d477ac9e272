"""
StreamRouter: the request state machine run for every bidirectional stream.

AWAITING_HEADERS -> AUTHENTICATING -------------------> RESPONDED -> CLOSED
                 -> AUTHORIZING -> PRINTING ----------> RESPONDED -> CLOSED
Any failure short-circuits to RESPONDED with an error payload; the send side
is always half-closed once the response has been written.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

from ..config import ServerConfig
from ..exceptions import AuthenticationError, InvalidRequestError, RemotePrintError
from ..print_dispatcher import PrintDispatcher
from ..session_registry import SessionRegistry
from ..utils.logging_utils import log_debug_operation, log_request_error, log_request_event
from .codec import (
    Request,
    RequestKind,
    decode_request,
    encode_auth_success,
    encode_failure,
    encode_print_success,
)

logger = logging.getLogger(__name__)


class RouterState(Enum):
    """States of one request stream."""

    AWAITING_HEADERS = "AWAITING_HEADERS"
    AUTHENTICATING = "AUTHENTICATING"
    AUTHORIZING = "AUTHORIZING"
    PRINTING = "PRINTING"
    RESPONDED = "RESPONDED"
    CLOSED = "CLOSED"


class StreamRouter:
    """
    Handles exactly one request on one stream.

    Decodes the header block, dispatches to the session registry or the
    print dispatcher, and writes a single response. Every failure is turned
    into a response on the same stream; nothing propagates to the connection.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        registry: SessionRegistry,
        dispatcher: PrintDispatcher,
        config: Optional[ServerConfig] = None,
        stream_id: Optional[int] = None,
    ):
        self.reader = reader
        self.writer = writer
        self.registry = registry
        self.dispatcher = dispatcher
        self.config = config or ServerConfig()
        self.stream_id = stream_id
        self.state = RouterState.AWAITING_HEADERS
        self.request: Optional[Request] = None

    def _set_state(self, new_state: RouterState, reason: str = "") -> None:
        log_debug_operation(
            logger,
            f"Stream {self.stream_id} {self.state.value} -> {new_state.value}",
            reason or None,
        )
        self.state = new_state

    async def run(self) -> bytes:
        """
        Process the request and write the response.

        Returns:
            The response bytes that were sent (or attempted)
        """
        try:
            response = await self._process()
        except RemotePrintError as e:
            log_request_error(logger, self.stream_id, e)
            response = encode_failure(e)
        except Exception as e:
            logger.error(
                f"[REQUEST {self.stream_id}] Unexpected error: {e}", exc_info=True
            )
            response = encode_failure(e)

        self._set_state(RouterState.RESPONDED)
        await self._respond(response)
        return response

    async def _process(self) -> bytes:
        try:
            self.request = await asyncio.wait_for(
                decode_request(self.reader, self.config.max_header_lines),
                timeout=self.config.header_timeout,
            )
        except asyncio.TimeoutError as e:
            raise InvalidRequestError(
                "Timed out waiting for request headers", original_exception=e
            ) from e

        request = self.request
        log_request_event(
            logger, request.kind.value, self.stream_id, request.target or ""
        )
        if request.kind is RequestKind.AUTHENTICATE:
            return await self._authenticate(request)
        return await self._print(request)

    async def _authenticate(self, request: Request) -> bytes:
        self._set_state(RouterState.AUTHENTICATING)
        password = await self._read_password(request.body)
        session = await self.registry.authenticate(password)
        del password
        return encode_auth_success(session)

    async def _read_password(self, body: asyncio.StreamReader) -> bytes:
        limit = self.config.max_password_bytes
        data = bytearray()
        while True:
            chunk = await body.read(limit + 1 - len(data))
            if not chunk:
                break
            data.extend(chunk)
            if len(data) > limit:
                raise InvalidRequestError("Password too long")
        return bytes(data)

    async def _print(self, request: Request) -> bytes:
        self._set_state(RouterState.AUTHORIZING)
        try:
            await self.registry.require_valid(request.session_id)
        except AuthenticationError:
            # Rejected bodies are read and dropped, never persisted
            discarded = await self._discard_body(request.body)
            log_debug_operation(logger, "Discarded unauthorized body", f"{discarded} bytes")
            raise

        self._set_state(RouterState.PRINTING, f"extension={request.extension!r}")
        await self.dispatcher.print_job(request.body, request.extension)
        return encode_print_success()

    async def _discard_body(self, body: asyncio.StreamReader) -> int:
        total = 0
        while True:
            chunk = await body.read(self.dispatcher.chunk_size)
            if not chunk:
                return total
            total += len(chunk)

    async def _respond(self, response: bytes) -> None:
        try:
            self.writer.write(response)
            await self.writer.drain()
            self.writer.write_eof()
        except Exception as e:
            logger.warning(
                f"[REQUEST {self.stream_id}] Failed to send response: {e}"
            )
        finally:
            self._set_state(RouterState.CLOSED)
