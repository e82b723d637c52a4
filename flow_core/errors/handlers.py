# =============================================================================
# flow_core/errors/handlers.py
# Error Reporting Helpers for the FlowTracker storage core
# =============================================================================

from __future__ import annotations
from typing import Any, Dict, Optional

from flow_core.logging import get_logger
from .exceptions import (
    BackendsUnavailable,
    ErrorKind,
    FlowTrackerError,
    StorageError,
)

logger = get_logger(__name__)

# What the operator sees for each remote failure kind
USER_MESSAGES = {
    ErrorKind.UNAUTHENTICATED: "You are signed out of cloud storage. Sign in again to sync.",
    ErrorKind.NOT_FOUND: "The requested record no longer exists.",
    ErrorKind.VALIDATION: "The record was rejected by cloud storage.",
    ErrorKind.TRANSPORT: "Cloud storage is unreachable. Working from the local cache.",
    ErrorKind.SERVER: "Cloud storage reported an error. Working from the local cache.",
}


def describe_error(error: BaseException) -> Dict[str, Any]:
    """Structured view of any exception for logs and the diagnostics panel."""
    if isinstance(error, FlowTrackerError):
        return error.to_dict()
    return {
        "error_type": type(error).__name__,
        "code": "UNKNOWN",
        "message": str(error),
        "details": {},
        "recoverable": True,
    }


def user_message_for(error: BaseException) -> str:
    if isinstance(error, StorageError):
        return USER_MESSAGES[error.kind]
    if isinstance(error, BackendsUnavailable):
        return "Neither cloud storage nor the local cache accepted the change. Nothing was saved."
    if isinstance(error, FlowTrackerError):
        return error.message
    return str(error)


def handle_error(
    error: BaseException,
    show_user_message: bool = False,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Log an error and optionally surface it in the Streamlit UI.

    Args:
        error: The exception to handle
        show_user_message: Show the error with st.error / st.warning
        log_error: Whether to log the error
        user_message: Overrides the message derived from the error kind

    Returns:
        describe_error(error), for callers that keep the last failure around
    """
    info = describe_error(error)
    message = user_message or user_message_for(error)

    if log_error:
        logger.error(
            f"[{info['code']}] {info['message']}",
            extra={"details": info["details"]},
            exc_info=error,
        )

    if show_user_message:
        import streamlit as st

        if isinstance(error, StorageError) and error.triggers_fallback:
            st.warning(message)
        elif info["recoverable"]:
            st.error(message)
        else:
            st.error(f"{message} ({info['code']})")

        if info["details"] and st.session_state.get("debug_mode", False):
            with st.expander("Error details", expanded=False):
                st.json(info["details"])

    return info


def report_absorbed_error(operation: str, error: BaseException, absorbed_by: str = "fallback") -> None:
    """
    Log an error the caller never sees.

    Fallbacks hide remote failures from the caller; they still have to show up
    in the logs so silent degradation can be diagnosed.
    """
    info = describe_error(error)
    kind = error.kind.value if isinstance(error, StorageError) else info["error_type"]

    logger.warning(
        f"{operation}: remote {kind} absorbed by {absorbed_by}: {info['message']}",
        extra={"details": info},
    )


class ErrorContext:
    """
    Context manager that logs failures of a storage operation.

    Usage:
        with ErrorContext("Switching to remote mode"):
            manager.retry()

    Recoverable FlowTrackerErrors are swallowed after logging (the failure is
    kept on .error); everything else is re-raised.
    """

    def __init__(self, operation: str, recoverable: bool = True, show_user_message: bool = False):
        self.operation = operation
        self.recoverable = recoverable
        self.show_user_message = show_user_message
        self.error: Optional[BaseException] = None

    def __enter__(self) -> ErrorContext:
        logger.debug(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            logger.debug(f"Completed: {self.operation}")
            return False

        self.error = exc_val
        handle_error(
            exc_val,
            show_user_message=self.show_user_message,
            user_message=None if isinstance(exc_val, FlowTrackerError) else f"Error during: {self.operation}",
        )
        return self.recoverable and isinstance(exc_val, FlowTrackerError) and exc_val.recoverable
