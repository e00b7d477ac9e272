"""
Utilities package for remote_print.

Contains common utility functions used across the remote_print codebase.
"""

from .logging_utils import (
    log_connection_event,
    log_debug_operation,
    log_print_event,
    log_request_error,
    log_request_event,
    log_session_action,
    log_session_error,
)

__all__ = [
    "log_connection_event",
    "log_request_event",
    "log_request_error",
    "log_session_action",
    "log_session_error",
    "log_print_event",
    "log_debug_operation",
]
