# =============================================================================
# flow_core/offline/operation_router.py
# Operation Router - Remote-first execution with local fallback
# =============================================================================
"""
OperationRouter - Runs one logical operation against the active backend.

Features:
- Remote first in REMOTE/HYBRID mode, local only in LOCAL mode
- Fallback only for transport/server failures
- Validation, not-found and auth errors always reach the caller
- Failure/success reporting back to the ModeManager
- Execution counters for the status panel
"""

from __future__ import annotations
import threading
from typing import Any, Callable, Dict, TypeVar
import logging

from flow_core.errors import (
    BackendsUnavailable,
    StorageError,
    StorageUnavailable,
    report_absorbed_error,
)
from flow_core.offline.config import StorageConfig
from flow_core.offline.mode_manager import ModeManager
from flow_core.offline.models import StorageMode

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationRouter:
    """
    Fallback executor.

    Usage:
        router = OperationRouter(mode_manager, config)
        task = router.execute(
            "read task",
            lambda: remote.get(EntityType.TASK, task_id),
            lambda: local.get(EntityType.TASK, task_id),
        )
    """

    def __init__(self, mode_manager: ModeManager, config: StorageConfig):
        self.mode_manager = mode_manager
        self.config = config
        self._lock = threading.Lock()
        self._stats = {
            "executed": 0,
            "remote": 0,
            "local": 0,
            "fallbacks": 0,
            "failures": 0,
        }

    def _count(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._stats[key] += 1

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def execute(
        self,
        operation: str,
        remote_fn: Callable[[], T],
        local_fn: Callable[[], T],
    ) -> T:
        """
        Execute an operation with automatic fallback.

        Args:
            operation: Short description used in logs
            remote_fn: Performs the operation against the remote store
            local_fn: Performs the operation against the local cache

        Returns:
            Result of whichever backend served the operation

        Raises:
            ValidationError, NotFound, Unauthenticated: never fall back
            TransportError, ServerError: when fallback is disabled
            BackendsUnavailable: remote failed and the local cache rejected the fallback
        """
        self._count("executed")
        mode = self.mode_manager.current_mode

        if mode is StorageMode.LOCAL:
            self._count("local")
            return local_fn()

        try:
            result = remote_fn()
        except StorageError as e:
            if not e.triggers_fallback:
                logger.debug(f"{operation}: {e.kind.value} is not retried on the local cache")
                raise

            self._count("failures")
            self.mode_manager.report_remote_failure(e)

            if not self.config.enable_fallback:
                logger.error(f"{operation} failed on remote store and fallback is disabled: {e}")
                raise

            return self._fallback(operation, e, local_fn)

        self._count("remote")
        self.mode_manager.report_remote_success()
        return result

    def _fallback(self, operation: str, remote_error: StorageError, local_fn: Callable[[], T]) -> T:
        self._count("fallbacks")
        if self.config.debug_storage:
            logger.debug(f"{operation}: falling back to local cache ({self.mode_manager.current_mode.value} mode)")

        try:
            result = local_fn()
        except StorageUnavailable as local_error:
            logger.error(f"{operation}: remote store and local cache both failed")
            raise BackendsUnavailable(
                f"{operation} failed on every backend",
                operation=operation,
                remote_error=remote_error,
                local_error=local_error,
            ) from local_error

        self._count("local")
        report_absorbed_error(operation, remote_error, absorbed_by="local cache")
        return result

