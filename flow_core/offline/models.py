# =============================================================================
# flow_core/offline/models.py
# Shared Types for the Storage Core
# =============================================================================
"""
Backend-agnostic types shared by the local cache, the remote client, the mode
manager and the migration engine.

Record payloads are opaque dicts; only the adapters (LocalCacheStore and
RemoteStoreClient) know how to turn them into rows.
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from flow_core.errors import PartialMigrationFailure


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO timestamp as stored by SQLite or returned by PostgREST."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    text = str(value).replace("Z", "+00:00")
    parsed = datetime.fromisoformat(text)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class EntityType(Enum):
    """Record families the storage core knows how to move around."""
    TASK = "task"
    SETTINGS = "settings"
    SESSION = "session"
    ACHIEVEMENT = "achievement"
    STREAK = "streak"

    @classmethod
    def parse(cls, value: Any) -> EntityType:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Unknown entity type: {value!r} "
                f"(expected one of {[e.value for e in cls]})"
            ) from None


class StorageMode(Enum):
    """Which backend is preferred for new operations."""
    REMOTE = "remote"
    LOCAL = "local"
    HYBRID = "hybrid"

    @property
    def prefers_remote(self) -> bool:
        return self is not StorageMode.LOCAL


@dataclass(frozen=True)
class Record:
    """An opaque payload plus the fields the core needs for routing and validation."""
    entity_type: EntityType
    id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    owner_id: Optional[str] = None
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type.value,
            "id": self.id,
            "owner_id": self.owner_id,
            "updated_at": self.updated_at.isoformat(),
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Record:
        return cls(
            entity_type=EntityType.parse(data["entity_type"]),
            id=str(data["id"]),
            payload=dict(data.get("payload") or {}),
            owner_id=data.get("owner_id"),
            updated_at=parse_timestamp(data.get("updated_at")) or utcnow(),
        )


@dataclass
class AvailabilityStatus:
    """Last known availability of the remote store."""
    available: bool = False
    last_checked: Optional[datetime] = None
    consecutive_failures: int = 0
    last_error: Optional[str] = None

    def snapshot(self) -> AvailabilityStatus:
        return replace(self)


@dataclass(frozen=True)
class StorageProvider:
    """One backend as shown in the diagnostics panel."""
    name: str
    available: bool
    priority: int


@dataclass(frozen=True)
class StorageStatus:
    """Snapshot returned by ModeManager.get_status()."""
    current_mode: StorageMode
    last_switch: Optional[datetime]
    consecutive_failures: int
    is_online: bool
    retry_count: int = 0
    available_providers: Tuple[StorageProvider, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_mode": self.current_mode.value,
            "last_switch": self.last_switch.isoformat() if self.last_switch else None,
            "consecutive_failures": self.consecutive_failures,
            "is_online": self.is_online,
            "retry_count": self.retry_count,
            "available_providers": [
                {"name": p.name, "available": p.available, "priority": p.priority}
                for p in self.available_providers
            ],
        }


# =============================================================================
# MIGRATION TYPES
# =============================================================================

@dataclass(frozen=True)
class MigrationError:
    """One record that could not be written to the remote store."""
    entity_type: EntityType
    record_id: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entity_type": self.entity_type.value,
            "id": self.record_id,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class MigrationProgress:
    """Progress event pushed to migration listeners."""
    stage: str
    completed: int
    total: int
    percentage: int
    errors: Tuple[str, ...] = ()

    @classmethod
    def build(cls, stage: str, completed: int, total: int, errors: List[str] = ()) -> MigrationProgress:
        percentage = round(completed / total * 100) if total > 0 else 100
        return cls(stage, completed, total, percentage, tuple(errors))


@dataclass(frozen=True)
class EntityMigrationResult:
    entity_type: EntityType
    total_records: int
    migrated_records: int
    errors: Tuple[MigrationError, ...]
    time_taken: float
    processed: bool = True

    @property
    def success(self) -> bool:
        return self.processed and not self.errors


@dataclass
class MigrationJob:
    """
    Mutable bookkeeping for a single migration run.

    Owned by the MigrationEngine while the run is in progress and frozen into
    a MigrationSummary by finalize(). A retry always starts a new job.
    """
    entity_types: Tuple[EntityType, ...]
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    totals: Dict[EntityType, int] = field(default_factory=dict)
    migrated: Dict[EntityType, int] = field(default_factory=dict)
    errors: List[MigrationError] = field(default_factory=list)
    results: Dict[EntityType, EntityMigrationResult] = field(default_factory=dict)
    cancelled: bool = False
    _summary: Optional[MigrationSummary] = field(default=None, repr=False)

    @property
    def finalized(self) -> bool:
        return self._summary is not None

    @property
    def total_records(self) -> int:
        return sum(self.totals.values())

    @property
    def migrated_records(self) -> int:
        return sum(self.migrated.values())

    def record_success(self, entity_type: EntityType) -> None:
        self._check_open()
        self.migrated[entity_type] = self.migrated.get(entity_type, 0) + 1

    def record_failure(self, entity_type: EntityType, record_id: str, reason: str) -> MigrationError:
        self._check_open()
        error = MigrationError(entity_type, record_id, reason)
        self.errors.append(error)
        return error

    def complete_entity(self, entity_type: EntityType, time_taken: float) -> None:
        self._check_open()
        self.results[entity_type] = EntityMigrationResult(
            entity_type=entity_type,
            total_records=self.totals.get(entity_type, 0),
            migrated_records=self.migrated.get(entity_type, 0),
            errors=tuple(e for e in self.errors if e.entity_type is entity_type),
            time_taken=time_taken,
        )

    def finalize(self) -> MigrationSummary:
        if self._summary is not None:
            return self._summary

        self.finished_at = utcnow()
        results = []
        for entity_type in self.entity_types:
            result = self.results.get(entity_type)
            if result is None:
                # Never reached (cancelled before this entity type started)
                result = EntityMigrationResult(
                    entity_type=entity_type,
                    total_records=self.totals.get(entity_type, 0),
                    migrated_records=self.migrated.get(entity_type, 0),
                    errors=tuple(e for e in self.errors if e.entity_type is entity_type),
                    time_taken=0.0,
                    processed=False,
                )
            results.append(result)

        all_processed = all(r.processed for r in results)
        self._summary = MigrationSummary(
            success=not self.errors and all_processed and not self.cancelled,
            total_records=self.total_records,
            migrated_records=self.migrated_records,
            errors=tuple(self.errors),
            results=tuple(results),
            started_at=self.started_at,
            finished_at=self.finished_at,
            cancelled=self.cancelled,
        )
        return self._summary

    def _check_open(self) -> None:
        if self._summary is not None:
            raise RuntimeError("Migration job is finalized and cannot be modified")


@dataclass(frozen=True)
class MigrationSummary:
    """Immutable outcome of a migration run."""
    success: bool
    total_records: int
    migrated_records: int
    errors: Tuple[MigrationError, ...]
    results: Tuple[EntityMigrationResult, ...]
    started_at: datetime
    finished_at: datetime
    cancelled: bool = False

    @property
    def time_taken(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def failed_record_ids(self) -> List[str]:
        return [e.record_id for e in self.errors]

    def counts_by_entity(self) -> Dict[EntityType, int]:
        return {r.entity_type: r.total_records for r in self.results}

    def raise_for_errors(self) -> None:
        """Raise PartialMigrationFailure when any record failed."""
        if self.errors:
            raise PartialMigrationFailure(
                f"{len(self.errors)} of {self.total_records} records failed to migrate",
                errors=self.errors,
                migrated=self.migrated_records,
                total=self.total_records,
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "total_records": self.total_records,
            "migrated_records": self.migrated_records,
            "total_errors": len(self.errors),
            "errors": [e.to_dict() for e in self.errors],
            "time_taken": round(self.time_taken, 3),
            "cancelled": self.cancelled,
            "entities": {
                r.entity_type.value: {
                    "success": r.success,
                    "total_records": r.total_records,
                    "migrated_records": r.migrated_records,
                    "errors": len(r.errors),
                    "time_taken": round(r.time_taken, 3),
                }
                for r in self.results
            },
        }


@dataclass(frozen=True)
class ValidationReport:
    """Advisory comparison of local snapshot counts against remote counts."""
    is_valid: bool
    issues: Tuple[str, ...]
    local_counts: Dict[str, int] = field(default_factory=dict)
    remote_counts: Dict[str, int] = field(default_factory=dict)
