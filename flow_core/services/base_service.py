# =============================================================================
# flow_core/services/base_service.py
# Base class for long-running storage services (migration, backup)
# =============================================================================

from __future__ import annotations
from abc import ABC
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from flow_core.logging import get_logger, LogContext
from flow_core.errors import FlowTrackerError, handle_error

if TYPE_CHECKING:
    from flow_core.offline.models import MigrationProgress

ProgressListener = Callable[["MigrationProgress"], None]


@dataclass
class ServiceResult:
    """
    Outcome of a service call made on behalf of an operator surface.

    Lets the CLI and the Streamlit panel report failures without try/except
    around every call. Truthy on success.
    """
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    elapsed: float = 0.0

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, data: Any = None, elapsed: float = 0.0, **metadata: Any) -> ServiceResult:
        return cls(success=True, data=data, metadata=metadata, elapsed=elapsed)

    @classmethod
    def fail(cls, error: str, error_code: str = "UNKNOWN", **metadata: Any) -> ServiceResult:
        return cls(success=False, error=error, error_code=error_code, metadata=metadata)

    @classmethod
    def from_exception(cls, e: BaseException) -> ServiceResult:
        if isinstance(e, FlowTrackerError):
            return cls(success=False, error=e.message, error_code=e.code, metadata=dict(e.details))
        return cls(success=False, error=str(e), error_code="EXCEPTION", metadata={"error_type": type(e).__name__})


class BaseService(ABC):
    """
    Shared plumbing for services that report progress while they run.

    Provides:
    - A logger named after the concrete class
    - Progress listeners (observer pattern)
    - Timed operations and ServiceResult wrapping

    Usage:
        class BackupService(BaseService):
            def run(self) -> str:
                with self.log_operation("Writing backup"):
                    self._emit_progress(MigrationProgress.build("export", 0, 10))
                    ...
    """

    def __init__(self):
        self.logger = get_logger(type(self).__name__)
        self._listeners: List[ProgressListener] = []

    # =========================================================================
    # PROGRESS
    # =========================================================================

    def add_progress_listener(self, listener: ProgressListener) -> None:
        """Register a callable that receives every MigrationProgress event."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_progress_listener(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit_progress(self, progress: MigrationProgress) -> None:
        # Listener failures are logged and never stop the run
        for listener in list(self._listeners):
            try:
                listener(progress)
            except Exception as e:
                self.logger.error(f"Progress listener failed at '{progress.stage}': {e}")

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def log_operation(self, operation: str) -> LogContext:
        return LogContext(self.logger, operation)

    def safe_execute(self, operation: str, func: Callable[..., Any], *args, **kwargs) -> ServiceResult:
        """
        Run func(*args, **kwargs) and wrap the outcome in a ServiceResult.

        FlowTrackerErrors go through handle_error; anything else is logged
        with its traceback.
        """
        context = self.log_operation(operation)
        try:
            with context:
                result = func(*args, **kwargs)
        except FlowTrackerError as e:
            handle_error(e)
            return ServiceResult.from_exception(e)
        except Exception as e:
            self.logger.error(f"{operation} failed unexpectedly: {e}", exc_info=True)
            return ServiceResult.from_exception(e)
        return ServiceResult.ok(result, elapsed=context.elapsed)
