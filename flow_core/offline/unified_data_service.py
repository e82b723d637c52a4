# =============================================================================
# flow_core/offline/unified_data_service.py
# Storage Context - Single API for Remote/Local Operations
# =============================================================================
"""
StorageContext - The primary API for all record operations.

This context wires the storage core together and automatically handles:
- Remote mode: Supabase operations mirrored into the local cache
- Local mode: SQLite operations only
- Fallback to the local cache when the remote store fails
- Migration of the local cache when the remote store comes back

Usage:
------
from flow_core.offline import get_storage_context, EntityType, Record

ctx = get_storage_context()

tasks = ctx.entity(EntityType.TASK)
tasks.write(Record(EntityType.TASK, "task-1", {"title": "Write report"}))
print(tasks.read_all())

# Check status
print(ctx.get_status()["current_mode"])
"""

from __future__ import annotations
import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional
import logging

from flow_core.errors import (
    FlowTrackerError,
    MigrationInProgress,
    NotFound,
    StorageUnavailable,
    handle_error,
)
from flow_core.logging import apply_config
from flow_core.offline.config import StorageConfig, get_config_status, load_config
from flow_core.offline.connection_manager import AvailabilityProber, ConnectivityMonitor
from flow_core.offline.local_database import LocalCacheStore
from flow_core.offline.migration_engine import MigrationEngine
from flow_core.offline.mode_manager import ModeManager, TimerFactory
from flow_core.offline.models import (
    EntityType,
    MigrationSummary,
    Record,
    StorageMode,
    ValidationReport,
)
from flow_core.offline.operation_router import OperationRouter

if TYPE_CHECKING:
    from flow_core.data.supabase_client import RemoteStoreClient

logger = logging.getLogger(__name__)


class EntityAPI:
    """
    Read/write contract for one entity type.

    Every call goes through the OperationRouter, so callers never need to
    know which backend served it.
    """

    def __init__(self, entity_type: EntityType, context: StorageContext):
        self.entity_type = entity_type
        self._ctx = context

    def _check_type(self, record: Record) -> None:
        if record.entity_type is not self.entity_type:
            raise ValueError(
                f"Record type {record.entity_type.value} does not match "
                f"{self.entity_type.value} API"
            )

    def read(self, record_id: str) -> Optional[Record]:
        """Fetch one record; None when it does not exist."""
        remote, local = self._ctx.remote, self._ctx.local_store
        try:
            return self._ctx.router.execute(
                f"read {self.entity_type.value}",
                lambda: remote.get(self.entity_type, record_id),
                lambda: local.get(self.entity_type, record_id),
            )
        except NotFound:
            return None

    def read_all(self) -> List[Record]:
        remote, local = self._ctx.remote, self._ctx.local_store
        return self._ctx.router.execute(
            f"list {self.entity_type.value}",
            lambda: remote.list(self.entity_type),
            lambda: local.list(self.entity_type),
        )

    def write(self, record: Record) -> Record:
        """
        Create or update a record.

        A successful remote write is mirrored into the local cache so that
        reads keep working after a switch to local mode.
        """
        self._check_type(record)
        remote, local = self._ctx.remote, self._ctx.local_store

        def remote_write() -> Record:
            saved = remote.upsert(self.entity_type, record)
            self._mirror(lambda: local.put(self.entity_type, saved))
            return saved

        return self._ctx.router.execute(
            f"write {self.entity_type.value}",
            remote_write,
            lambda: local.put(self.entity_type, record),
        )

    def remove(self, record_id: str) -> bool:
        remote, local = self._ctx.remote, self._ctx.local_store

        def remote_remove() -> bool:
            removed = remote.delete(self.entity_type, record_id)
            self._mirror(lambda: local.delete(self.entity_type, record_id))
            return removed

        return self._ctx.router.execute(
            f"remove {self.entity_type.value}",
            remote_remove,
            lambda: local.delete(self.entity_type, record_id),
        )

    def _mirror(self, action: Callable[[], Any]) -> None:
        try:
            action()
        except StorageUnavailable as e:
            logger.warning(f"Could not mirror {self.entity_type.value} into local cache: {e.message}")


class StorageContext:
    """
    Owns one instance of every storage component.

    Components can be injected (tests, alternative backends); anything not
    given is built from the config.
    """

    def __init__(
        self,
        config: StorageConfig,
        local_store: Optional[LocalCacheStore] = None,
        remote: Optional[RemoteStoreClient] = None,
        prober: Optional[AvailabilityProber] = None,
        timer_factory: Optional[TimerFactory] = None,
    ):
        self.config = config
        self.local_store = local_store or LocalCacheStore(config.local_db_path, config.namespace)
        if remote is None:
            from flow_core.data.supabase_client import RemoteStoreClient
            remote = RemoteStoreClient.from_config(config)
        self.remote = remote
        self.prober = prober or AvailabilityProber(
            self.remote.ping,
            ttl_seconds=config.probe_cache_ttl_seconds,
        )

        manager_kwargs = {"timer_factory": timer_factory} if timer_factory else {}
        self.mode_manager = ModeManager(
            config,
            self.prober,
            self.local_store,
            on_remote_restored=self._enqueue_migration,
            **manager_kwargs,
        )
        self.router = OperationRouter(self.mode_manager, config)
        self.migration = MigrationEngine(self.local_store, self.remote)

        self._entities: Dict[EntityType, EntityAPI] = {}
        self._monitor: Optional[ConnectivityMonitor] = None
        self._migration_thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._initialized = False

    @classmethod
    def from_config(cls, config: Optional[StorageConfig] = None, **kwargs) -> StorageContext:
        return cls(config or load_config(), **kwargs)

    def initialize(self) -> StorageContext:
        """Create the local schema and resolve the startup mode."""
        if self._initialized:
            return self
        self.local_store.initialize()
        self.mode_manager.initialize()
        self._initialized = True
        return self

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def current_mode(self) -> StorageMode:
        return self.mode_manager.current_mode

    @property
    def is_remote(self) -> bool:
        return self.mode_manager.current_mode.prefers_remote

    def entity(self, entity_type: EntityType) -> EntityAPI:
        entity_type = EntityType.parse(entity_type)
        with self._lock:
            api = self._entities.get(entity_type)
            if api is None:
                api = self._entities[entity_type] = EntityAPI(entity_type, self)
        return api

    # =========================================================================
    # MIGRATION
    # =========================================================================

    def migrate(self, entity_types: Optional[Iterable[EntityType]] = None) -> MigrationSummary:
        return self.migration.migrate(entity_types)

    def validate_migration(self, summary: Optional[MigrationSummary] = None) -> ValidationReport:
        return self.migration.validate(summary)

    def backup(self) -> str:
        return self.migration.backup()

    def _enqueue_migration(self) -> None:
        """Start a background migration unless one is already running."""
        with self._lock:
            if self._migration_thread is not None and self._migration_thread.is_alive():
                logger.info("Migration already running, not enqueueing another")
                return
            self._migration_thread = threading.Thread(
                target=self._run_background_migration,
                daemon=True,
                name="MigrationEngine",
            )
            self._migration_thread.start()

    def _run_background_migration(self) -> None:
        try:
            summary = self.migration.migrate()
        except MigrationInProgress:
            logger.info("Skipped background migration: another migration is running")
            return
        except FlowTrackerError as e:
            handle_error(e)
            return

        if not summary.success:
            logger.warning(
                f"Background migration finished with {len(summary.errors)} errors: "
                f"{summary.failed_record_ids}"
            )

    def wait_for_migration(self, timeout: Optional[float] = None) -> Optional[MigrationSummary]:
        """Block until the background migration (if any) finishes."""
        thread = self._migration_thread
        if thread is not None:
            thread.join(timeout=timeout)
        return self.migration.last_summary

    # =========================================================================
    # CONNECTIVITY
    # =========================================================================

    def start_monitoring(self, monitor: Optional[ConnectivityMonitor] = None) -> ConnectivityMonitor:
        """Feed host connectivity changes into the mode manager."""
        if self._monitor is None:
            self._monitor = monitor or ConnectivityMonitor(
                interval_seconds=self.config.sync_interval_seconds,
                timeout_seconds=self.config.remote_timeout_seconds,
            )
            self._monitor.register_callbacks(
                on_online=self.mode_manager.handle_connectivity_restored,
                on_offline=self.mode_manager.handle_connectivity_lost,
            )
            self._monitor.start()
        return self._monitor

    def retry(self) -> StorageMode:
        return self.mode_manager.retry()

    def force_mode(self, mode: Any) -> StorageMode:
        return self.mode_manager.force_mode(mode)

    def reload_config(self) -> Dict[str, Any]:
        """Re-read the hot-reloadable settings from the environment."""
        changed = self.config.reload()
        if "log_level" in changed or "debug_storage" in changed:
            apply_config(self.config)
        if "sync_interval_ms" in changed and self._monitor is not None:
            # Picked up after the monitor's current wait
            self._monitor.interval_seconds = self.config.sync_interval_seconds
        if changed:
            logger.info(f"Reloaded storage settings: {sorted(changed)}")
        return changed

    # =========================================================================
    # STATUS & DIAGNOSTICS
    # =========================================================================

    def get_status(self) -> Dict[str, Any]:
        """
        Get comprehensive status information.

        Returns:
            Dict with status information for UI display
        """
        status = self.mode_manager.get_status().to_dict()
        availability = self.prober.status
        last_summary = self.migration.last_summary

        status.update({
            "remote_configured": self.config.has_remote_credentials,
            "remote_available": availability.available,
            "last_probe": availability.last_checked.isoformat() if availability.last_checked else None,
            "last_probe_error": availability.last_error,
            "router": self.router.stats(),
            "migration_running": self.migration.is_running,
            "last_migration": last_summary.to_dict() if last_summary else None,
            "config": get_config_status(self.config),
        })
        return status

    def close(self) -> None:
        """Cleanup resources."""
        self.mode_manager.shutdown()
        if self._monitor is not None:
            self._monitor.stop()
            self._monitor = None
        self.migration.cancel()
        self.wait_for_migration(timeout=5)
        self.remote.close()
        self.local_store.close()


# Singleton accessor
_storage_context: Optional[StorageContext] = None
_storage_context_lock = threading.Lock()


def get_storage_context() -> StorageContext:
    """
    Get the process-wide StorageContext, built from load_config().

    Usage:
        from flow_core.offline import get_storage_context

        ctx = get_storage_context()
        ctx.entity(EntityType.TASK).read_all()
    """
    global _storage_context
    if _storage_context is None:
        with _storage_context_lock:
            if _storage_context is None:
                _storage_context = StorageContext.from_config().initialize()
    return _storage_context


def reset_storage_context() -> None:
    """Close and forget the process-wide context."""
    global _storage_context
    with _storage_context_lock:
        if _storage_context is not None:
            _storage_context.close()
            _storage_context = None
