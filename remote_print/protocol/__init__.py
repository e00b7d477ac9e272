"""Wire protocol: request codec, per-stream router and TLS configuration."""

from .codec import Request, RequestKind, decode_request, parse_auth_response
from .router import RouterState, StreamRouter

__all__ = [
    "Request",
    "RequestKind",
    "decode_request",
    "parse_auth_response",
    "RouterState",
    "StreamRouter",
]
