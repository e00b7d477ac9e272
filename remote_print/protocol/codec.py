"""
Line-oriented request codec.

A request is a short header block terminated by a blank line, followed by
the body as the rest of the stream::

    POST report.pdf\\r\\n
    Extension: "pdf"\\r\\n
    Session: 1b4e28ba-2fa1-11d2-883f-0016d3cca427\\r\\n
    \\r\\n
    <raw body bytes>

The body is never buffered here; the decoded Request keeps the reader so
the handler can stream it.
"""

import asyncio
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import PurePath
from typing import Dict, Optional, Union

from ..exceptions import AuthenticationError, InvalidRequestError, RemotePrintError
from ..session_registry import Session

logger = logging.getLogger(__name__)

MAX_HEADER_LINES = 16
MAX_EXTENSION_LENGTH = 16
PRINT_DONE = b"done"
AUTH_SUCCESS = "success"
FAILURE_PREFIX = "Failed to process request"

_EXTENSION_CHARS = re.compile(r"[^A-Za-z0-9]")
_UNSAFE_HEADER_CHARS = re.compile(r"[\"\r\n]")


class RequestKind(Enum):
    """The two operations a stream can carry."""

    PRINT = "PRINT"
    AUTHENTICATE = "AUTHENTICATE"


@dataclass
class Request:
    """A decoded request header block plus the reader positioned at the body."""

    kind: RequestKind
    body: asyncio.StreamReader
    target: str = ""
    extension: str = ""
    session_id: Optional[uuid.UUID] = None
    headers: Dict[str, str] = field(default_factory=dict)


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def sanitize_extension(value: str) -> str:
    """Reduce a client supplied extension to something safe in a file name."""
    return _EXTENSION_CHARS.sub("", _unquote(value).lstrip("."))[:MAX_EXTENSION_LENGTH]


def parse_request_line(line: str) -> RequestKind:
    """
    Decide the request kind from the first header line.

    Raises:
        InvalidRequestError: If the line is neither a print nor an auth request
    """
    if line.startswith("POST"):
        return RequestKind.PRINT
    if line.startswith("GET") and "auth" in line:
        return RequestKind.AUTHENTICATE
    raise InvalidRequestError(context={"request_line": line})


def parse_session_id(value: str) -> uuid.UUID:
    try:
        return uuid.UUID(_unquote(value))
    except ValueError as e:
        raise InvalidRequestError(
            "Malformed session identifier", original_exception=e
        ) from e


async def _read_header_line(reader: asyncio.StreamReader) -> str:
    try:
        raw = await reader.readline()
    except ValueError as e:
        # StreamReader raises ValueError when a line exceeds its limit
        raise InvalidRequestError("Header line too long", original_exception=e) from e
    if not raw:
        raise InvalidRequestError("Request ended before the end of the headers")
    try:
        return raw.decode("utf-8").rstrip("\r\n")
    except UnicodeDecodeError as e:
        raise InvalidRequestError(
            "Request headers are not valid UTF-8", original_exception=e
        ) from e


async def decode_request(
    reader: asyncio.StreamReader, max_header_lines: int = MAX_HEADER_LINES
) -> Request:
    """
    Read and parse the header block of one request.

    Args:
        reader: Stream positioned at the start of the request
        max_header_lines: Lines accepted (request line included) before the
            blank line must appear

    Returns:
        Request whose ``body`` continues from the first byte after the headers

    Raises:
        InvalidRequestError: On an unknown request line, a malformed header,
            a missing terminator or too many header lines
    """
    lines = []
    while True:
        line = await _read_header_line(reader)
        if not line.strip():
            break
        if len(lines) >= max_header_lines:
            raise InvalidRequestError(
                f"Too many header lines (limit {max_header_lines})"
            )
        lines.append(line)

    if not lines:
        raise InvalidRequestError("Empty request")

    request_line = lines[0].strip()
    kind = parse_request_line(request_line)
    _, _, target = request_line.partition(" ")
    request = Request(kind=kind, body=reader, target=_unquote(target))

    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if not sep:
            logger.debug(f"Ignoring header line without a colon: {line!r}")
            continue
        name = name.strip()
        request.headers[name] = value.strip()
        lowered = name.lower()
        if lowered == "extension":
            request.extension = sanitize_extension(value)
        elif lowered == "session":
            request.session_id = parse_session_id(value)

    if not request.extension and request.target:
        request.extension = sanitize_extension(PurePath(request.target).suffix)

    return request


def encode_print_success() -> bytes:
    return PRINT_DONE


def encode_auth_success(session: Session) -> bytes:
    return f"{AUTH_SUCCESS}&{session.id}&{session.expires_at.isoformat()}".encode(
        "utf-8"
    )


def encode_failure(error: Union[RemotePrintError, Exception]) -> bytes:
    message = error.message if isinstance(error, RemotePrintError) else str(error)
    return f"{FAILURE_PREFIX}: {message}\n".encode("utf-8")


# Client side


def encode_auth_request(password: Union[str, bytes]) -> bytes:
    if isinstance(password, str):
        password = password.encode("utf-8")
    return b"GET authenticate\r\n\r\n" + password


def encode_print_request(
    filename: str,
    extension: str,
    session_id: uuid.UUID,
    content_length: Optional[int] = None,
) -> bytes:
    """
    Build the header block of a print request (the body follows it).

    Raises:
        InvalidRequestError: If the file name or extension holds a double
            quote or a line break
    """
    for name, value in (("filename", filename), ("extension", extension)):
        if _UNSAFE_HEADER_CHARS.search(value):
            raise InvalidRequestError(
                f"Cannot send {name} {value!r}: quotes and line breaks are not allowed",
                context={name: value},
            )
    headers = [f'POST "{filename}"']
    if content_length is not None:
        headers.append(f"Content-Length: {content_length}")
    headers.append(f'Extension: "{extension}"')
    headers.append(f"Session: {session_id}")
    return ("\r\n".join(headers) + "\r\n\r\n").encode("utf-8")


def parse_auth_response(data: bytes) -> Session:
    """
    Turn an authenticate response back into a Session.

    Raises:
        AuthenticationError: If the server refused, or the reply is malformed
    """
    text = data.decode("utf-8", errors="replace").strip()
    parts = text.split("&")
    if parts[0] != AUTH_SUCCESS:
        raise AuthenticationError(text or "Empty response from server")
    if len(parts) != 3:
        raise AuthenticationError(f"Malformed authentication response: {text!r}")
    try:
        return Session(id=uuid.UUID(parts[1]), expires_at=datetime.fromisoformat(parts[2]))
    except ValueError as e:
        raise AuthenticationError(
            f"Malformed authentication response: {text!r}", original_exception=e
        ) from e
