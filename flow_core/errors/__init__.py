# =============================================================================
# flow_core/errors/__init__.py
# Centralized Error Handling for the FlowTracker storage core
# =============================================================================

from .exceptions import (
    FlowTrackerError,
    ErrorKind,
    ERROR_KIND_CLASSES,
    StorageError,
    Unauthenticated,
    NotFound,
    ValidationError,
    TransportError,
    ServerError,
    StorageUnavailable,
    BackendsUnavailable,
    PartialMigrationFailure,
    MigrationAborted,
    MigrationInProgress,
    ConfigurationError,
)

from .handlers import (
    describe_error,
    user_message_for,
    handle_error,
    report_absorbed_error,
    ErrorContext,
)

__all__ = [
    # Exceptions
    "FlowTrackerError",
    "ErrorKind",
    "ERROR_KIND_CLASSES",
    "StorageError",
    "Unauthenticated",
    "NotFound",
    "ValidationError",
    "TransportError",
    "ServerError",
    "StorageUnavailable",
    "BackendsUnavailable",
    "PartialMigrationFailure",
    "MigrationAborted",
    "MigrationInProgress",
    "ConfigurationError",
    # Handlers
    "describe_error",
    "user_message_for",
    "handle_error",
    "report_absorbed_error",
    "ErrorContext",
]
