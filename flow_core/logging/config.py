# =============================================================================
# flow_core/logging/config.py
# Logging Configuration for FlowTracker
# =============================================================================

import logging
import sys
import time
from pathlib import Path
from datetime import datetime
from typing import Any, Optional, Union


LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Daily files land here when file logging is on
LOG_DIR = Path("logs")

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "hpack", "supabase", "postgrest", "gotrue")

# Subsystems switched to DEBUG by the debug_storage option
STORAGE_LOGGERS = ("flow_core.offline", "flow_core.data")


def resolve_level(level: Union[int, str]) -> int:
    """Accept either a logging constant or a name like 'warning'."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def set_storage_debug(enabled: bool) -> None:
    """Force DEBUG on the storage subsystem, or hand it back to the root level."""
    for name in STORAGE_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if enabled else logging.NOTSET)


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_to_file: bool = True,
    log_filename: Optional[str] = None,
    debug_storage: bool = False,
) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Logging level or level name (default: INFO)
        log_to_file: Whether to also log to a file
        log_filename: Custom log filename (default: flowtracker_YYYY-MM-DD.log)
        debug_storage: Force DEBUG output for the storage subsystem
    """
    stream = logging.StreamHandler(sys.stdout)
    handlers = [stream]

    if log_to_file:
        LOG_DIR.mkdir(exist_ok=True)
        filename = log_filename or f"flowtracker_{datetime.now():%Y-%m-%d}.log"
        handlers.append(logging.FileHandler(LOG_DIR / filename, encoding="utf-8"))

    logging.basicConfig(
        level=resolve_level(level),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    set_storage_debug(debug_storage)

    logging.getLogger("flow_core").info(
        f"Logging initialized (level={logging.getLevelName(resolve_level(level))}, "
        f"file={'on' if log_to_file else 'off'}, debug_storage={debug_storage})"
    )


def apply_config(config: Any) -> None:
    """
    Re-apply log_level and debug_storage from a StorageConfig.

    Used after a hot reload; handlers are left as they are.
    """
    logging.getLogger().setLevel(resolve_level(config.log_level))
    set_storage_debug(config.debug_storage)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Usage:
        from flow_core.logging import get_logger
        logger = get_logger(__name__)
        logger.info("Migration started")
    """
    return logging.getLogger(name)


class LogContext:
    """
    Times an operation and logs its start and outcome.

    Usage:
        with LogContext(logger, "Migrating local cache") as op:
            engine.migrate()
        print(op.elapsed)
        # Logs: "Migrating local cache... started"
        # Logs: "Migrating local cache... completed (2.34s)"
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self._started: Optional[float] = None
        self.elapsed = 0.0

    def __enter__(self) -> "LogContext":
        self._started = time.monotonic()
        self.logger.log(self.level, f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.elapsed = time.monotonic() - self._started

        if exc_type is not None:
            self.logger.error(f"{self.operation}... failed ({self.elapsed:.2f}s): {exc_val}", exc_info=True)
        else:
            self.logger.log(self.level, f"{self.operation}... completed ({self.elapsed:.2f}s)")
        return False
