"""
remote_print package init.
Exports the print server, its collaborators and the client.
"""

import argparse
import asyncio
import datetime
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .client import PrintClient
from .config import ServerConfig, parse_listen_address
from .credentials import CredentialStore
from .exceptions import RemotePrintError
from .print_dispatcher import PrintDispatcher
from .protocol.tls import load_tls_material, server_configuration
from .server import ConnectionSupervisor, PrintServer
from .session_registry import Session, SessionRegistry, SessionStatus

__version__ = "0.1.22"


class JSONFormatter(logging.Formatter):
    """JSON formatter with request correlation fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.datetime.now().isoformat(),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        connection = getattr(record, "connection", None)
        if connection:
            log_entry["connection"] = connection

        stream_id = getattr(record, "stream_id", None)
        if stream_id is not None:
            log_entry["stream_id"] = stream_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """
    Setup basic logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    use_json = os.environ.get("REMOTE_PRINT_LOG_JSON", "false").lower() == "true"
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))
    for handler in root.handlers[:]:
        root.removeHandler(handler)
    if use_json:
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
        root.addHandler(handler)
    else:
        logging.basicConfig(
            level=getattr(logging, level.upper()),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


async def run_server(config: ServerConfig) -> None:
    """Load credentials and TLS material, then serve until cancelled."""
    credentials = CredentialStore.load_or_create(config.settings_path)
    chain, key = load_tls_material(config.cert_path, config.key_path, config.data_dir)
    logging.getLogger(__name__).debug("Certificate and key parsed successfully")

    registry = SessionRegistry(credentials, ttl=config.session_ttl)
    server = PrintServer(
        config,
        server_configuration(chain, key, idle_timeout=config.idle_timeout),
        registry,
    )
    await server.start()
    print(f"Listening on {config.host}:{config.port}", file=sys.stderr)
    try:
        await server.serve_forever()
    finally:
        server.close()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the print server."""
    parser = argparse.ArgumentParser(description="remote_print - print server over QUIC + TLS")
    parser.add_argument("-k", "--key", type=Path, help="TLS private key (PEM, or DER with .der suffix)")
    parser.add_argument("-c", "--cert", type=Path, help="TLS certificate chain (PEM, or DER with .der suffix)")
    parser.add_argument("-l", "--listen", help="Address to listen on (default 0.0.0.0:4433)")
    parser.add_argument("-p", "--printer", help="Printer to use; if not set, uses default")
    parser.add_argument("--data-dir", type=Path, help="Directory for settings and certificate cache")
    parser.add_argument(
        "--log-level",
        default="INFO",
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default INFO)",
    )
    args = parser.parse_args(argv)

    if (args.key is None) != (args.cert is None):
        parser.error("--key and --cert must be given together")

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    try:
        host, port = (
            parse_listen_address(args.listen) if args.listen else (None, None)
        )
        config = ServerConfig.from_env(
            host=host,
            port=port,
            printer=args.printer,
            cert_path=args.cert,
            key_path=args.key,
            data_dir=args.data_dir,
        )
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except RemotePrintError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())


__all__ = [
    "ConnectionSupervisor",
    "CredentialStore",
    "PrintClient",
    "PrintDispatcher",
    "PrintServer",
    "ServerConfig",
    "Session",
    "SessionRegistry",
    "SessionStatus",
    "setup_logging",
]
