"""
Centralized logging utilities for remote_print.

Provides standardized logging functions for the connection, request,
session and print paths so log lines share one format across modules.
"""

import logging
from typing import Any, Optional


def log_connection_event(
    logger: logging.Logger, event_type: str, connection: str = "", details: str = ""
) -> None:
    """Log connection events with consistent format."""
    label = f" {connection}" if connection else ""
    detail_str = f": {details}" if details else ""
    logger.info(
        f"[CONNECTION{label}] {event_type}{detail_str}",
        extra={"connection": connection},
    )


def log_request_event(
    logger: logging.Logger,
    event_type: str,
    stream_id: Optional[int] = None,
    details: str = "",
) -> None:
    """Log request stream events with consistent format."""
    label = f" {stream_id}" if stream_id is not None else ""
    detail_str = f": {details}" if details else ""
    logger.info(
        f"[REQUEST{label}] {event_type}{detail_str}", extra={"stream_id": stream_id}
    )


def log_request_error(
    logger: logging.Logger,
    stream_id: Optional[int],
    error: Exception,
) -> None:
    """Log request failures that are reported back to the client."""
    label = f" {stream_id}" if stream_id is not None else ""
    logger.error(f"[REQUEST{label}] Failed: {error}", extra={"stream_id": stream_id})


def log_session_action(
    logger: logging.Logger, action_name: str, details: str = ""
) -> None:
    """Log session registry actions with consistent format."""
    detail_str = f": {details}" if details else ""
    logger.info(f"[SESSION] {action_name}{detail_str}")


def log_session_error(
    logger: logging.Logger, action_name: str, error: Exception
) -> None:
    """Log session registry errors with consistent format."""
    logger.warning(f"[SESSION] {action_name} rejected: {error}")


def log_print_event(
    logger: logging.Logger, event_type: str, details: str = ""
) -> None:
    """Log print dispatcher events with consistent format."""
    detail_str = f": {details}" if details else ""
    logger.info(f"[PRINT] {event_type}{detail_str}")


def log_debug_operation(
    logger: logging.Logger, operation: str, details: Any = None
) -> None:
    """Log debug information for operations."""
    if details is not None:
        logger.debug(f"{operation}: {details}")
    else:
        logger.debug(f"{operation}")
