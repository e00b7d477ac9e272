"""
Client side of the print protocol.

PrintClient opens one QUIC connection per exchange and one bidirectional
stream per request, mirroring what a desktop front end needs: authenticate,
then upload a file with the returned session.
"""

import argparse
import asyncio
import getpass
import logging
import sys
from contextlib import AsyncExitStack
from pathlib import Path
from typing import List, Optional, Union

from aioquic.asyncio.client import connect

from .config import DEFAULT_PORT, default_data_dir, parse_listen_address
from .exceptions import RemotePrintError, TransportError
from .protocol.codec import (
    PRINT_DONE,
    encode_auth_request,
    encode_print_request,
    parse_auth_response,
)
from .protocol.tls import CERT_FILENAME, client_configuration
from .session_registry import Session, utc_now

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class PrintClient:
    """Authenticates against a print server and uploads files to it."""

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        server_name: Optional[str] = None,
        cafile: Optional[Path] = None,
        verify: bool = True,
        timeout: float = 5.0,
    ):
        """
        Initialize the client.

        Args:
            host: Server host name or address
            port: Server UDP port
            server_name: Name used for certificate verification (host when None)
            cafile: Extra trust anchor; the locally cached server certificate
                is used when None and it exists
            verify: Whether to verify the server certificate
            timeout: Seconds allowed for establishing the connection
        """
        self.host = host
        self.port = port
        self.server_name = server_name or host
        if cafile is None:
            cached = default_data_dir() / CERT_FILENAME
            cafile = cached if cached.exists() else None
        self.cafile = cafile
        self.verify = verify
        self.timeout = timeout
        self.session: Optional[Session] = None

    async def _exchange(self, header: bytes, body_path: Optional[Path] = None) -> bytes:
        configuration = client_configuration(
            server_name=self.server_name, cafile=self.cafile, verify=self.verify
        )
        logger.info(f"Connecting to {self.server_name} at {self.host}:{self.port}")
        try:
            async with AsyncExitStack() as stack:
                # connect() waits out the whole idle timeout on a dead port
                connection = await asyncio.wait_for(
                    stack.enter_async_context(
                        connect(self.host, self.port, configuration=configuration)
                    ),
                    timeout=self.timeout,
                )
                reader, writer = await connection.create_stream()
                writer.write(header)
                if body_path is not None:
                    with body_path.open("rb") as file:
                        while True:
                            chunk = file.read(CHUNK_SIZE)
                            if not chunk:
                                break
                            writer.write(chunk)
                            await writer.drain()
                writer.write_eof()
                return await reader.read()
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Timed out connecting to {self.host}:{self.port}",
                context={"host": self.host, "timeout": self.timeout},
                original_exception=e,
            ) from e
        except (ConnectionError, OSError) as e:
            raise TransportError(
                f"Failed to connect: {e}", context={"host": self.host}
            ) from e

    async def authenticate(self, password: Union[str, bytes]) -> Session:
        """
        Exchange the shared password for a session.

        Raises:
            AuthenticationError: If the server rejected the password
            TransportError: If the server cannot be reached
        """
        response = await asyncio.wait_for(
            self._exchange(encode_auth_request(password)), timeout=self.timeout * 2
        )
        self.session = parse_auth_response(response)
        logger.info("Successfully verified session")
        return self.session

    async def send_file(self, path: Path, session: Optional[Session] = None) -> str:
        """
        Upload one file for printing.

        Returns:
            The server's response text (``done`` on success)

        Raises:
            RemotePrintError: If there is no session or the server reports a failure
        """
        session = session or self.session
        if session is None:
            raise RemotePrintError("No session, authenticate first")
        path = Path(path)
        header = encode_print_request(
            path.name,
            path.suffix.lstrip("."),
            session.id,
            content_length=path.stat().st_size,
        )
        response = (await self._exchange(header, path)).decode(
            "utf-8", errors="replace"
        )
        if response.encode("utf-8") != PRINT_DONE:
            raise RemotePrintError(response.strip())
        return response

    async def print_file(self, path: Path, password: Union[str, bytes]) -> str:
        """Upload a file, authenticating first if there is no live session."""
        if self.session is None or self.session.is_expired(utc_now()):
            await self.authenticate(password)
        return await self.send_file(path)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point: ``remote-print upload HOST[:PORT] --file FILE``."""
    from . import setup_logging

    parser = argparse.ArgumentParser(description="remote_print - upload a file to a remote printer")
    subparsers = parser.add_subparsers(dest="command", required=True)
    upload = subparsers.add_parser("upload", help="Upload to remote printer")
    upload.add_argument("server", help="Server address, host or host:port")
    upload.add_argument("-f", "--file", required=True, type=Path, help="The file to send")
    upload.add_argument("--server-name", "--host", dest="server_name", help="Override hostname used for certificate verification")
    upload.add_argument("--ca", type=Path, help="Custom certificate authority to trust")
    upload.add_argument("--insecure", action="store_true", help="Skip certificate verification")
    args = parser.parse_args(argv)

    setup_logging("WARNING")

    try:
        if ":" in args.server:
            host, port = parse_listen_address(args.server)
        else:
            host, port = args.server, DEFAULT_PORT
        client = PrintClient(
            host, port, server_name=args.server_name, cafile=args.ca, verify=not args.insecure
        )
        password = getpass.getpass("Please enter a password: ")
        response = asyncio.run(client.print_file(args.file, password))
    except asyncio.TimeoutError:
        print("ERROR: Timed out waiting for the server", file=sys.stderr)
        return 1
    except RemotePrintError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    print(response)
    return 0


if __name__ == "__main__":
    sys.exit(main())
