"""
QUIC listener and per-connection supervision for the print server.

PrintServer binds the endpoint and creates one ConnectionSupervisor per
accepted connection. Each supervisor runs one StreamRouter task per
bidirectional stream and cancels the ones still running when its
connection goes away.
"""

import asyncio
import functools
import logging
from typing import Optional, Set

from aioquic.asyncio import QuicConnectionProtocol, serve
from aioquic.asyncio.server import QuicServer
from aioquic.quic.configuration import QuicConfiguration
from aioquic.quic.events import (
    ConnectionTerminated,
    HandshakeCompleted,
    QuicEvent,
    StreamDataReceived,
)

from .config import ServerConfig
from .exceptions import TransportError
from .print_dispatcher import PrintDispatcher
from .protocol.router import StreamRouter
from .session_registry import SessionRegistry
from .utils.logging_utils import log_connection_event

logger = logging.getLogger(__name__)

# Application error code sent with STOP_SENDING on streams we do not read
STREAM_IGNORED = 0


def is_unidirectional(stream_id: int) -> bool:
    return bool(stream_id & 0x2)


class ConnectionSupervisor(QuicConnectionProtocol):
    """Owns one QUIC connection and the request tasks running on it."""

    def __init__(
        self,
        *args,
        registry: SessionRegistry,
        dispatcher: PrintDispatcher,
        config: ServerConfig,
        **kwargs,
    ):
        kwargs["stream_handler"] = self._handle_stream
        super().__init__(*args, **kwargs)
        self.registry = registry
        self.dispatcher = dispatcher
        self.config = config
        self.label = self._quic.host_cid.hex()[:8]
        self._requests: Set["asyncio.Task[bytes]"] = set()
        self._ignored_streams: Set[int] = set()

    @property
    def active_requests(self) -> int:
        return len(self._requests)

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        super().connection_made(transport)
        log_connection_event(logger, "incoming", self.label)

    def quic_event_received(self, event: QuicEvent) -> None:
        if (
            isinstance(event, StreamDataReceived)
            and event.stream_id in self._ignored_streams
        ):
            if event.end_stream:
                self._ignored_streams.discard(event.stream_id)
            return

        if isinstance(event, HandshakeCompleted):
            log_connection_event(
                logger,
                "established",
                self.label,
                f"protocol={event.alpn_protocol or '<none>'}",
            )
        elif isinstance(event, ConnectionTerminated):
            self._on_terminated(event)
        super().quic_event_received(event)
        if isinstance(event, StreamDataReceived) and event.end_stream:
            self._ignored_streams.discard(event.stream_id)

    def _on_terminated(self, event: ConnectionTerminated) -> None:
        if event.error_code == 0:
            log_connection_event(logger, "closed", self.label, event.reason_phrase)
        else:
            logger.error(
                f"[CONNECTION {self.label}] failed: error_code={event.error_code} "
                f"reason={event.reason_phrase!r}"
            )
        pending = [task for task in self._requests if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.warning(
                f"[CONNECTION {self.label}] abandoned {len(pending)} in-flight request(s)"
            )

    def _handle_stream(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        stream_id = writer.get_extra_info("stream_id")
        if stream_id is not None and is_unidirectional(stream_id):
            logger.warning(
                f"[CONNECTION {self.label}] ignoring unidirectional stream {stream_id}"
            )
            self._ignore_stream(stream_id)
            return
        router = StreamRouter(
            reader,
            writer,
            registry=self.registry,
            dispatcher=self.dispatcher,
            config=self.config,
            stream_id=stream_id,
        )
        task = asyncio.ensure_future(router.run())
        self._requests.add(task)
        task.add_done_callback(self._request_done)

    def _ignore_stream(self, stream_id: int) -> None:
        # Later data for the stream is dropped before it reaches a reader
        self._stream_readers.pop(stream_id, None)
        self._ignored_streams.add(stream_id)
        self._quic.stop_stream(stream_id, STREAM_IGNORED)

    def _request_done(self, task: "asyncio.Task[bytes]") -> None:
        self._requests.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[CONNECTION {self.label}] request task failed: {error}")


class PrintServer:
    """
    Listener for the print service.

    Binds the QUIC endpoint, hands every connection to a ConnectionSupervisor
    and periodically purges expired sessions.
    """

    def __init__(
        self,
        config: ServerConfig,
        quic_configuration: QuicConfiguration,
        registry: SessionRegistry,
        dispatcher: Optional[PrintDispatcher] = None,
    ):
        """
        Initialize the server.

        Args:
            config: Server configuration
            quic_configuration: QUIC/TLS configuration holding the certificate
            registry: Session registry shared by every connection
            dispatcher: Print dispatcher (built from ``config`` when None)
        """
        self.config = config
        self.quic_configuration = quic_configuration
        self.registry = registry
        self.dispatcher = dispatcher or PrintDispatcher(
            printer=config.printer,
            print_command=config.print_command,
            list_printers_command=config.list_printers_command,
            temp_dir=config.temp_dir,
        )
        self._server: Optional[QuicServer] = None
        self._sweep_task: Optional["asyncio.Task[None]"] = None
        self._closed = asyncio.Event()

    @property
    def is_serving(self) -> bool:
        return self._server is not None

    def _create_protocol(self) -> functools.partial:
        return functools.partial(
            ConnectionSupervisor,
            registry=self.registry,
            dispatcher=self.dispatcher,
            config=self.config,
        )

    async def start(self) -> None:
        """
        Bind the endpoint and start accepting connections.

        Raises:
            RuntimeError: If the server is already started
            TransportError: If the endpoint cannot be bound
        """
        if self._server is not None:
            raise RuntimeError("Print server already started")
        try:
            self._server = await serve(
                self.config.host,
                self.config.port,
                configuration=self.quic_configuration,
                create_protocol=self._create_protocol(),
                retry=True,
            )
        except OSError as e:
            raise TransportError(
                f"Failed to bind {self.config.host}:{self.config.port}: {e}",
                original_exception=e,
            ) from e
        self._closed.clear()
        self._sweep_task = asyncio.ensure_future(self._sweep_loop())
        log_connection_event(
            logger, f"listening on {self.config.host}:{self.config.port}"
        )

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            await self.registry.purge_expired()

    async def serve_forever(self) -> None:
        """Start (if needed) and run until :meth:`close` is called."""
        if self._server is None:
            await self.start()
        await self._closed.wait()

    def close(self) -> None:
        """Stop accepting connections and close existing ones."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            self._sweep_task = None
        if self._server is not None:
            self._server.close()
            self._server = None
            log_connection_event(logger, "server closed")
        self._closed.set()
