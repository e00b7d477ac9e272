"""Exceptions for remote_print with contextual information."""

from typing import Any, Dict, List, Optional


class RemotePrintError(Exception):
    """Base error for remote_print with contextual information."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
    ):
        """
        Initialize a remote_print error.

        Args:
            message: Human-readable error message (sent to clients as-is)
            context: Optional context information (path, printer, session_id, etc.)
            original_exception: Original exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception

    def __str__(self) -> str:
        """Get string representation with context."""
        base_msg = super().__str__()
        if self.context:
            context_items = []
            for key, value in self.context.items():
                if isinstance(value, str) and len(value) > 50:
                    value = value[:47] + "..."
                context_items.append(f"{key}={value}")
            context_str = ", ".join(context_items)
            return f"{base_msg} (Context: {context_str})"
        return base_msg

    def __repr__(self) -> str:
        base_repr = super().__repr__()
        if self.context:
            return f"{base_repr} (context={self.context!r})"
        return base_repr

    def add_context(self, key: str, value: Any) -> None:
        """
        Add context information to the exception.

        Args:
            key: Context key
            value: Context value
        """
        self.context[key] = value

    def get_context(self, key: str, default: Any = None) -> Any:
        """Get context information from the exception."""
        return self.context.get(key, default)


class ConfigurationError(RemotePrintError):
    """Settings or TLS material could not be loaded at startup."""

    pass


class TransportError(RemotePrintError):
    """QUIC endpoint could not be bound or reached."""

    pass


class InvalidRequestError(RemotePrintError):
    """Malformed request headers; fatal to one request stream only."""

    def __init__(
        self,
        message: str = "Invalid Request",
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
    ):
        super().__init__(message, context, original_exception)


class AuthenticationError(RemotePrintError):
    """Base class for authentication and authorization failures."""

    pass


class InvalidCredentialError(AuthenticationError):
    """The supplied password does not match the stored hash."""

    def __init__(self, message: str = "Invalid Password"):
        super().__init__(message)


class UnknownSessionError(AuthenticationError):
    """Print request without a session, or with an id the registry never issued."""

    def __init__(self, message: str = "Invalid or missing session"):
        super().__init__(message)


class ExpiredSessionError(AuthenticationError):
    """Print request with a session whose TTL has elapsed."""

    def __init__(self, message: str = "Session expired, please authenticate again"):
        super().__init__(message)


class CredentialError(RemotePrintError):
    """The stored credential hash is unusable."""

    pass


class PrintError(RemotePrintError):
    """Base class for print job failures."""

    pass


class PrintIOError(PrintError):
    """The request body could not be written to the temporary file."""

    pass


class PrinterFailureError(PrintError):
    """The external print command failed."""

    def __init__(
        self,
        stderr: str,
        available_printers: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = stderr.strip() or "Print command failed"
        if available_printers:
            message = (
                f"{message}\nPlease specify a printer or set a default printer. "
                f"Available printers: {', '.join(available_printers)}"
            )
        super().__init__(message, context)
        self.stderr = stderr
        self.available_printers = available_printers or []
