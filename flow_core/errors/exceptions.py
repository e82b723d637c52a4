# =============================================================================
# flow_core/errors/exceptions.py
# Custom Exception Hierarchy for the FlowTracker storage core
# =============================================================================

from __future__ import annotations
from enum import Enum
from typing import Optional, Dict, Any, List, Sequence


class FlowTrackerError(Exception):
    """
    Base exception for all FlowTracker errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "STORE_503")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "FT_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# REMOTE STORE EXCEPTIONS
# =============================================================================

class ErrorKind(Enum):
    """Closed set of remote failure kinds the rest of the core branches on."""
    UNAUTHENTICATED = "Unauthenticated"
    NOT_FOUND = "NotFound"
    VALIDATION = "ValidationError"
    TRANSPORT = "TransportError"
    SERVER = "ServerError"

    @property
    def triggers_fallback(self) -> bool:
        """Only availability problems are worth retrying on the local cache."""
        return self in (ErrorKind.TRANSPORT, ErrorKind.SERVER)


class StorageError(FlowTrackerError):
    """Raised by the remote store client; always carries an ErrorKind."""

    kind: ErrorKind = ErrorKind.SERVER
    default_code = "STORE_500"

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if entity_type:
            details["entity_type"] = entity_type
        if record_id:
            details["record_id"] = record_id

        super().__init__(
            message=message,
            code=kwargs.pop("code", self.default_code),
            details=details,
            **kwargs,
        )

    @property
    def triggers_fallback(self) -> bool:
        return self.kind.triggers_fallback

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["kind"] = self.kind.value
        return data


class Unauthenticated(StorageError):
    """No valid owner identity; never retried automatically"""
    kind = ErrorKind.UNAUTHENTICATED
    default_code = "STORE_401"


class NotFound(StorageError):
    """Requested record does not exist remotely"""
    kind = ErrorKind.NOT_FOUND
    default_code = "STORE_404"


class ValidationError(StorageError):
    """Payload rejected by the backend; retrying elsewhere would not help"""
    kind = ErrorKind.VALIDATION
    default_code = "STORE_422"


class TransportError(StorageError):
    """Network, DNS or timeout failure"""
    kind = ErrorKind.TRANSPORT
    default_code = "STORE_503"


class ServerError(StorageError):
    """Backend-side failure (5xx equivalent)"""
    kind = ErrorKind.SERVER
    default_code = "STORE_500"


ERROR_KIND_CLASSES = {
    ErrorKind.UNAUTHENTICATED: Unauthenticated,
    ErrorKind.NOT_FOUND: NotFound,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.TRANSPORT: TransportError,
    ErrorKind.SERVER: ServerError,
}


# =============================================================================
# LOCAL CACHE EXCEPTIONS
# =============================================================================

class StorageUnavailable(FlowTrackerError):
    """Raised when the local cache medium rejects an operation"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        key: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        if key:
            details["key"] = key

        super().__init__(
            message=message,
            code="LOCAL_001",
            details=details,
            **kwargs,
        )


class BackendsUnavailable(FlowTrackerError):
    """Raised when both the remote store and the local cache failed"""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        remote_error: Optional[BaseException] = None,
        local_error: Optional[BaseException] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation
        if remote_error is not None:
            details["remote_error"] = str(remote_error)
        if local_error is not None:
            details["local_error"] = str(local_error)

        super().__init__(
            message=message,
            code="STORE_000",
            details=details,
            recoverable=False,
            **kwargs,
        )
        self.remote_error = remote_error
        self.local_error = local_error


# =============================================================================
# MIGRATION EXCEPTIONS
# =============================================================================

class PartialMigrationFailure(FlowTrackerError):
    """Aggregate of the per-record errors collected during a migration run"""

    def __init__(
        self,
        message: str,
        errors: Sequence[Any] = (),
        migrated: Optional[int] = None,
        total: Optional[int] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["errors"] = [
            e.to_dict() if hasattr(e, "to_dict") else str(e) for e in errors
        ]
        if migrated is not None:
            details["migrated"] = migrated
        if total is not None:
            details["total"] = total

        super().__init__(
            message=message,
            code="MIGRATE_001",
            details=details,
            **kwargs,
        )
        self.errors: List[Any] = list(errors)

    @property
    def failed_record_ids(self) -> List[str]:
        return [getattr(e, "record_id", str(e)) for e in self.errors]


class MigrationAborted(FlowTrackerError):
    """Raised when the export phase fails before any remote write"""

    def __init__(self, message: str, stage: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if stage:
            details["stage"] = stage

        super().__init__(
            message=message,
            code="MIGRATE_002",
            details=details,
            **kwargs,
        )


class MigrationInProgress(FlowTrackerError):
    """Raised when a migration is requested while another one is running"""

    def __init__(self, message: str = "A migration is already running", **kwargs):
        super().__init__(message=message, code="MIGRATE_003", **kwargs)


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(FlowTrackerError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        errors: Optional[List[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type
        if errors:
            details["errors"] = errors

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
