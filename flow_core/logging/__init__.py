# =============================================================================
# flow_core/logging/__init__.py
# Centralized Logging Configuration
# =============================================================================

from .config import (
    setup_logging,
    apply_config,
    set_storage_debug,
    resolve_level,
    get_logger,
    LogContext,
)

__all__ = [
    "setup_logging",
    "apply_config",
    "set_storage_debug",
    "resolve_level",
    "get_logger",
    "LogContext",
]
