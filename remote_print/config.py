"""
Server configuration for remote_print.

Defaults can be overridden through ``REMOTE_PRINT_*`` environment variables
and then by explicit keyword arguments (the CLI passes its flags that way).
"""

import json
import logging
import os
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 4433
ALPN_PROTOCOL = "hq-29"
SETTINGS_FILENAME = "server_settings.json"
SESSION_TTL = timedelta(hours=4)


def default_data_dir() -> Path:
    """Return the directory holding settings and the cached certificate."""
    override = os.environ.get("REMOTE_PRINT_DATA_DIR")
    if override:
        return Path(override).expanduser()
    xdg = os.environ.get("XDG_DATA_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".local" / "share"
    return base / "remote_print"


def parse_listen_address(value: str) -> Tuple[str, int]:
    """
    Split ``host:port`` (or ``[v6]:port``) into its parts.

    Raises:
        ConfigurationError: If the port is missing or not a number
    """
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise ConfigurationError(
            f"Listen address must be host:port, got {value!r}",
            context={"listen": value},
        )
    host = host.strip("[]")
    try:
        port_number = int(port)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid port in listen address {value!r}", original_exception=e
        ) from e
    if not 0 <= port_number <= 65535:
        raise ConfigurationError(f"Port out of range in listen address {value!r}")
    return host, port_number


class ServerConfig:
    """Configuration for the print server and its request pipeline."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        printer: Optional[str] = None,
        cert_path: Optional[Path] = None,
        key_path: Optional[Path] = None,
        data_dir: Optional[Path] = None,
        session_ttl: timedelta = SESSION_TTL,
        sweep_interval: float = 300.0,
        header_timeout: float = 30.0,
        max_header_lines: int = 16,
        max_password_bytes: int = 4096,
        print_command: str = "lpr",
        list_printers_command: Sequence[str] = ("lpstat", "-p"),
        temp_dir: Optional[Path] = None,
        idle_timeout: float = 60.0,
    ):
        """
        Initialize server configuration.

        Args:
            host: Address to listen on
            port: UDP port to listen on
            printer: Printer to use; system default when None
            cert_path: TLS certificate chain (PEM, or DER with a .der suffix)
            key_path: TLS private key (PEM, or DER with a .der suffix)
            data_dir: Directory for settings and the self-signed certificate
            session_ttl: Lifetime of an issued session
            sweep_interval: Seconds between purges of expired sessions
            header_timeout: Seconds a stream may take to send its header block
            max_header_lines: Header lines accepted before the blank line
            max_password_bytes: Largest accepted authenticate body
            print_command: Executable used to submit jobs
            list_printers_command: Command used to enumerate printers
            temp_dir: Directory for temporary print files (system default when None)
            idle_timeout: QUIC idle timeout in seconds
        """
        if (cert_path is None) != (key_path is None):
            raise ConfigurationError(
                "Both a certificate and a private key must be given, or neither"
            )
        self.host = host
        self.port = port
        self.printer = printer
        self.cert_path = Path(cert_path) if cert_path is not None else None
        self.key_path = Path(key_path) if key_path is not None else None
        self.data_dir = Path(data_dir) if data_dir is not None else default_data_dir()
        self.session_ttl = session_ttl
        self.sweep_interval = sweep_interval
        self.header_timeout = header_timeout
        self.max_header_lines = max_header_lines
        self.max_password_bytes = max_password_bytes
        self.print_command = print_command
        self.list_printers_command = tuple(list_printers_command)
        self.temp_dir = Path(temp_dir) if temp_dir is not None else None
        self.idle_timeout = idle_timeout

    @property
    def settings_path(self) -> Path:
        return self.data_dir / SETTINGS_FILENAME

    @classmethod
    def from_env(cls, **overrides: Any) -> "ServerConfig":
        """
        Build a configuration from ``REMOTE_PRINT_*`` variables.

        Keyword arguments whose value is not None win over the environment.
        """
        values: Dict[str, Any] = {}
        listen = os.environ.get("REMOTE_PRINT_LISTEN")
        if listen:
            values["host"], values["port"] = parse_listen_address(listen)
        printer = os.environ.get("REMOTE_PRINT_PRINTER")
        if printer:
            values["printer"] = printer
        data_dir = os.environ.get("REMOTE_PRINT_DATA_DIR")
        if data_dir:
            values["data_dir"] = Path(data_dir).expanduser()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def __repr__(self) -> str:
        return (
            f"ServerConfig(host={self.host!r}, port={self.port}, "
            f"printer={self.printer!r}, data_dir={str(self.data_dir)!r})"
        )


def load_settings(path: Path) -> Optional[Dict[str, Any]]:
    """
    Read the persisted server settings.

    Returns:
        The settings mapping, or None when the file does not exist

    Raises:
        ConfigurationError: If the file exists but cannot be read or parsed
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.info(f"Settings not found at {path}")
        return None
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read settings: {e}", context={"path": str(path)}
        ) from e
    try:
        settings = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"Settings file is not valid JSON: {e}", context={"path": str(path)}
        ) from e
    if not isinstance(settings, dict):
        raise ConfigurationError(
            "Settings file must contain a JSON object", context={"path": str(path)}
        )
    return settings


def save_settings(path: Path, settings: Dict[str, Any]) -> None:
    """Write the server settings, creating the data directory if needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings), encoding="utf-8")
    try:
        os.chmod(path, 0o600)
    except OSError as e:  # pragma: no cover - platform dependent
        logger.debug(f"Could not restrict settings permissions: {e}")
    logger.info(f"Settings saved to {path}")
