# =============================================================================
# flow_core/offline/migration_engine.py
# Migration Engine - Moves the local cache into the remote store
# =============================================================================
"""
MigrationEngine - Bulk export from the local cache and idempotent import into
the remote store.

Features:
- Full snapshot of the local cache before any remote write
- Per-record upsert; one bad record never stops the rest
- Structured per-record errors ("<ErrorKind>: <message>")
- Progress events for listeners (stage, completed/total, percentage)
- Cooperative cancellation between records
- Count-based validation and JSON backup of the local cache
"""

from __future__ import annotations
import json
import threading
import time
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Tuple

from flow_core.errors import (
    FlowTrackerError,
    MigrationAborted,
    MigrationInProgress,
    StorageError,
)
from flow_core.offline.local_database import LocalCacheStore
from flow_core.offline.models import (
    EntityType,
    MigrationJob,
    MigrationProgress,
    MigrationSummary,
    Record,
    ValidationReport,
    utcnow,
)
from flow_core.services.base_service import BaseService

if TYPE_CHECKING:
    from flow_core.data.supabase_client import RemoteStoreClient

BACKUP_VERSION = "1.0"

Snapshot = Dict[EntityType, List[Record]]


def failure_reason(error: BaseException) -> str:
    """Render an error as "<ErrorKind>: <message>"."""
    if isinstance(error, StorageError):
        return f"{error.kind.value}: {error.message}"
    if isinstance(error, FlowTrackerError):
        return f"{type(error).__name__}: {error.message}"
    return f"{type(error).__name__}: {error}"


class MigrationEngine(BaseService):
    """
    Local cache -> remote store migration.

    Usage:
        engine = MigrationEngine(local_store, remote_client)
        engine.add_progress_listener(lambda p: print(p.stage, p.percentage))
        summary = engine.migrate()
        report = engine.validate(summary)
    """

    def __init__(
        self,
        local_store: LocalCacheStore,
        remote: RemoteStoreClient,
        entity_types: Optional[Iterable[EntityType]] = None,
    ):
        super().__init__()
        self.local_store = local_store
        self.remote = remote
        self.entity_types: Tuple[EntityType, ...] = tuple(entity_types or EntityType)
        self._run_lock = threading.Lock()
        self._cancel_requested = threading.Event()
        self._last_summary: Optional[MigrationSummary] = None

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    @property
    def last_summary(self) -> Optional[MigrationSummary]:
        return self._last_summary

    def cancel(self) -> None:
        """Stop after the record currently in flight."""
        if self.is_running:
            self.logger.info("Migration cancellation requested")
        self._cancel_requested.set()

    # =========================================================================
    # EXPORT
    # =========================================================================

    def export_snapshot(self, entity_types: Optional[Iterable[EntityType]] = None) -> Snapshot:
        """
        Read every record of every requested type from the local cache.

        Raises:
            MigrationAborted: if the local cache cannot be read
        """
        types = self._resolve_types(entity_types)
        snapshot: Snapshot = {}
        try:
            for entity_type in types:
                snapshot[entity_type] = self.local_store.list(entity_type)
        except Exception as e:
            self.logger.error(f"Failed to export local cache: {e}")
            raise MigrationAborted(
                f"Local cache export failed: {e}",
                stage="export",
            ) from e

        self.logger.info(
            "Local cache export completed: "
            + ", ".join(f"{t.value}={len(r)}" for t, r in snapshot.items())
        )
        return snapshot

    def _resolve_types(self, entity_types: Optional[Iterable[EntityType]]) -> Tuple[EntityType, ...]:
        if entity_types is None:
            return self.entity_types
        return tuple(EntityType.parse(t) for t in entity_types)

    # =========================================================================
    # MIGRATE
    # =========================================================================

    def migrate(self, entity_types: Optional[Iterable[EntityType]] = None) -> MigrationSummary:
        """
        Run a full migration pass.

        Re-running is safe: records are upserted by id, so a second pass
        leaves the remote record count unchanged.

        Raises:
            MigrationInProgress: another migration is running
            MigrationAborted: the export stage failed (no remote writes made)
        """
        if not self._run_lock.acquire(blocking=False):
            raise MigrationInProgress()

        try:
            self._cancel_requested.clear()
            types = self._resolve_types(entity_types)
            job = MigrationJob(entity_types=types)

            with self.log_operation(f"Migrating local cache ({', '.join(t.value for t in types)})"):
                snapshot = self.export_snapshot(types)
                for entity_type in types:
                    job.totals[entity_type] = len(snapshot.get(entity_type, []))
                self._emit_progress(MigrationProgress.build("Exported local cache", 0, job.total_records))

                self._import(job, snapshot)
                summary = job.finalize()

            self._last_summary = summary
            self._emit_progress(MigrationProgress.build(
                "Cancelled" if summary.cancelled else "Complete",
                summary.migrated_records + len(summary.errors),
                summary.total_records,
                [e.reason for e in summary.errors],
            ))
            self._log_summary(summary)
            return summary
        finally:
            self._run_lock.release()

    def _import(self, job: MigrationJob, snapshot: Snapshot) -> None:
        total = job.total_records
        processed = 0
        reasons: List[str] = []

        for entity_type in job.entity_types:
            if self._cancel_requested.is_set():
                job.cancelled = True
                break

            stage = f"Migrating {entity_type.value}"
            started = time.monotonic()
            self._emit_progress(MigrationProgress.build(stage, processed, total, reasons))

            for record in snapshot.get(entity_type, []):
                if self._cancel_requested.is_set():
                    job.cancelled = True
                    break

                try:
                    self.remote.upsert(entity_type, record)
                    job.record_success(entity_type)
                except Exception as e:
                    error = job.record_failure(entity_type, record.id, failure_reason(e))
                    reasons.append(error.reason)
                    self.logger.warning(f"Failed to migrate {entity_type.value} {record.id}: {error.reason}")

                processed += 1
                self._emit_progress(MigrationProgress.build(stage, processed, total, reasons))

            if job.cancelled:
                break

            job.complete_entity(entity_type, time.monotonic() - started)
            self.logger.info(
                f"{entity_type.value} migration completed: "
                f"{job.migrated.get(entity_type, 0)}/{job.totals.get(entity_type, 0)}"
            )

    def _log_summary(self, summary: MigrationSummary) -> None:
        message = (
            f"Migration finished: {summary.migrated_records}/{summary.total_records} records, "
            f"{len(summary.errors)} errors, {summary.time_taken:.2f}s"
        )
        if summary.success:
            self.logger.info(message)
        else:
            self.logger.warning(message + (" (cancelled)" if summary.cancelled else ""))

    # =========================================================================
    # VALIDATION & BACKUP
    # =========================================================================

    def validate(self, summary: Optional[MigrationSummary] = None) -> ValidationReport:
        """
        Compare local snapshot counts with remote counts.

        Mismatches and remote errors are reported as advisory issues; this
        method does not raise for them.
        """
        summary = summary or self._last_summary
        issues: List[str] = []
        local_counts: Dict[str, int] = {}
        remote_counts: Dict[str, int] = {}

        if summary is not None:
            expected = summary.counts_by_entity()
        else:
            expected = {}
            for entity_type in self.entity_types:
                try:
                    expected[entity_type] = self.local_store.count(entity_type)
                except FlowTrackerError as e:
                    issues.append(f"Could not count local {entity_type.value} records: {e.message}")

        for entity_type, local_count in expected.items():
            local_counts[entity_type.value] = local_count
            try:
                remote_count = self.remote.count(entity_type)
            except Exception as e:
                issues.append(f"Could not verify {entity_type.value} migration: {failure_reason(e)}")
                continue

            remote_counts[entity_type.value] = remote_count
            if remote_count != local_count:
                issues.append(
                    f"{entity_type.value.capitalize()} count mismatch: "
                    f"database({remote_count}) vs local cache({local_count})"
                )

        report = ValidationReport(
            is_valid=not issues,
            issues=tuple(issues),
            local_counts=local_counts,
            remote_counts=remote_counts,
        )
        self.logger.info(f"Migration validation completed: valid={report.is_valid}, issues={len(issues)}")
        return report

    def backup(self) -> str:
        """JSON document {version, timestamp, data} of the local cache."""
        snapshot = self.export_snapshot()
        document = {
            "version": BACKUP_VERSION,
            "timestamp": utcnow().isoformat(),
            "data": {
                entity_type.value: [r.to_dict() for r in records]
                for entity_type, records in snapshot.items()
            },
        }
        return json.dumps(document, indent=2, default=str)
