# =============================================================================
# flow_core/offline/local_database.py
# Local SQLite Cache for Offline Operations
# =============================================================================
"""
LocalCacheStore - SQLite-backed, key-namespaced record cache.

Features:
- Keys of the form "<namespace>_<entity_type>:<id>"
- Synchronous CRUD on opaque Record payloads (last writer wins)
- Corrupted rows are logged and skipped, never raised
- Rejected writes (disk full, read-only) raise StorageUnavailable
- DataFrame integration (pandas) for export and bulk import
- Thread-local connections
"""

from __future__ import annotations
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union
import logging

import numpy as np
import pandas as pd

from flow_core.errors import StorageUnavailable
from flow_core.offline.models import EntityType, Record, parse_timestamp, utcnow

logger = logging.getLogger(__name__)


class LocalCacheStore:
    """
    Local SQLite cache that mirrors the remote entity families.

    Usage:
        store = LocalCacheStore(Path("local_data/flowtracker.db"))
        store.initialize()
        store.put(EntityType.TASK, record)
        tasks = store.list(EntityType.TASK)
    """

    SCHEMA = {
        "records": """
            CREATE TABLE IF NOT EXISTS records (
                key TEXT PRIMARY KEY,
                entity_type TEXT NOT NULL,
                record_id TEXT NOT NULL,
                owner_id TEXT,
                payload_json TEXT,
                updated_at TEXT NOT NULL,
                UNIQUE(entity_type, record_id)
            )
        """,
        "records_by_type": """
            CREATE INDEX IF NOT EXISTS idx_records_entity_type
            ON records (entity_type)
        """,
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
    }

    def __init__(self, db_path: Union[str, Path], namespace: str = "flowtracker"):
        """
        Initialize local cache.

        Args:
            db_path: Path to SQLite database file (":memory:" is not supported,
                     connections are per thread)
            namespace: Prefix for every record key
        """
        self.db_path = Path(db_path)
        self.namespace = namespace
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._initialized = False

    # =========================================================================
    # CONNECTION MANAGEMENT
    # =========================================================================

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        conn = getattr(self._local, "connection", None)
        if conn is None:
            conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._local.connection = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def transaction(self, operation: str = "write", key: Optional[str] = None) -> Iterator[sqlite3.Connection]:
        """Context manager for write transactions; medium errors become StorageUnavailable."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.DatabaseError as e:
            conn.rollback()
            logger.error(f"Local cache rejected {operation}: {e}")
            raise StorageUnavailable(
                f"Local cache rejected {operation}: {e}",
                operation=operation,
                key=key,
            ) from e

    def _read(self, sql: str, params: Optional[List] = None) -> List[sqlite3.Row]:
        try:
            cursor = self._get_connection().execute(sql, params or [])
            return cursor.fetchall()
        except sqlite3.DatabaseError as e:
            logger.error(f"Local cache read failed: {e}")
            raise StorageUnavailable(f"Local cache read failed: {e}", operation="read") from e

    def initialize(self) -> None:
        """Create the directory and schema."""
        if self._initialized:
            return

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(
                f"Cannot create local cache directory: {e}",
                operation="initialize",
            ) from e

        with self.transaction("initialize") as conn:
            for name, schema in self.SCHEMA.items():
                conn.execute(schema)
                logger.debug(f"Created/verified: {name}")

        self._initialized = True
        logger.info(f"Local cache initialized at: {self.db_path}")

    def close(self) -> None:
        """Close every connection opened by this store."""
        with self._connections_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Error closing local cache connection: {e}")
            self._connections.clear()
        self._local = threading.local()
        self._initialized = False

    # =========================================================================
    # KEYS AND SERIALIZATION
    # =========================================================================

    def make_key(self, entity_type: EntityType, record_id: str) -> str:
        return f"{self.namespace}_{entity_type.value}:{record_id}"

    @staticmethod
    def _to_json(payload: Dict[str, Any]) -> str:
        return json.dumps(clean_for_json(payload))

    def _from_row(self, row: sqlite3.Row) -> Optional[Record]:
        """Rebuild a Record; returns None (and logs) when the row is corrupted."""
        try:
            payload = json.loads(row["payload_json"]) if row["payload_json"] else {}
            if not isinstance(payload, dict):
                raise ValueError(f"payload is {type(payload).__name__}, expected object")
            return Record(
                entity_type=EntityType.parse(row["entity_type"]),
                id=row["record_id"],
                payload=payload,
                owner_id=row["owner_id"],
                updated_at=parse_timestamp(row["updated_at"]) or utcnow(),
            )
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping corrupted local record {row['key']}: {e}")
            return None

    # =========================================================================
    # RECORD OPERATIONS
    # =========================================================================

    def get(self, entity_type: EntityType, record_id: str) -> Optional[Record]:
        """Return the record, or None when missing or unreadable."""
        rows = self._read(
            "SELECT * FROM records WHERE key = ?",
            [self.make_key(entity_type, record_id)],
        )
        return self._from_row(rows[0]) if rows else None

    def list(self, entity_type: EntityType) -> List[Record]:
        """Return every readable record of a type, most recently updated first."""
        rows = self._read(
            "SELECT * FROM records WHERE entity_type = ? ORDER BY updated_at DESC",
            [entity_type.value],
        )
        records = []
        for row in rows:
            record = self._from_row(row)
            if record is not None:
                records.append(record)
        return records

    def put(self, entity_type: EntityType, record: Record) -> Record:
        """Insert or replace a record."""
        if record.entity_type is not entity_type:
            raise ValueError(
                f"Record {record.id} is a {record.entity_type.value}, not a {entity_type.value}"
            )

        key = self.make_key(entity_type, record.id)
        with self.transaction("put", key) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO records
                    (key, entity_type, record_id, owner_id, payload_json, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    key,
                    entity_type.value,
                    record.id,
                    record.owner_id,
                    self._to_json(record.payload),
                    record.updated_at.isoformat(),
                ],
            )
        return record

    def put_many(self, entity_type: EntityType, records: List[Record]) -> int:
        """Insert or replace several records in one transaction."""
        if not records:
            return 0

        with self.transaction("put_many") as conn:
            conn.executemany(
                """
                INSERT OR REPLACE INTO records
                    (key, entity_type, record_id, owner_id, payload_json, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    [
                        self.make_key(entity_type, r.id),
                        entity_type.value,
                        r.id,
                        r.owner_id,
                        self._to_json(r.payload),
                        r.updated_at.isoformat(),
                    ]
                    for r in records
                ],
            )
        return len(records)

    def delete(self, entity_type: EntityType, record_id: str) -> bool:
        """Delete a record; returns False when it did not exist."""
        key = self.make_key(entity_type, record_id)
        with self.transaction("delete", key) as conn:
            cursor = conn.execute("DELETE FROM records WHERE key = ?", [key])
            return cursor.rowcount > 0

    def count(self, entity_type: EntityType) -> int:
        rows = self._read(
            "SELECT COUNT(*) AS count FROM records WHERE entity_type = ?",
            [entity_type.value],
        )
        return rows[0]["count"] if rows else 0

    def clear(self, entity_type: Optional[EntityType] = None) -> int:
        """Remove every record (of one type, or of all types)."""
        with self.transaction("clear") as conn:
            if entity_type is None:
                cursor = conn.execute("DELETE FROM records")
            else:
                cursor = conn.execute(
                    "DELETE FROM records WHERE entity_type = ?",
                    [entity_type.value],
                )
            removed = cursor.rowcount
        logger.info(f"Cleared {removed} local records")
        return removed

    def check_writable(self) -> bool:
        """Write and remove a probe row; False when the medium rejects it."""
        try:
            with self.transaction("check_writable") as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO app_settings (key, value) VALUES (?, ?)",
                    ["__write_test__", "test"],
                )
                conn.execute("DELETE FROM app_settings WHERE key = ?", ["__write_test__"])
            return True
        except StorageUnavailable:
            return False

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(self, entity_type: EntityType) -> pd.DataFrame:
        """
        Load every record of a type into a DataFrame.

        Payload fields become columns next to id, owner_id and updated_at.
        """
        records = self.list(entity_type)
        if not records:
            return pd.DataFrame(columns=["id", "owner_id", "updated_at"])

        rows = [
            {"id": r.id, "owner_id": r.owner_id, "updated_at": r.updated_at, **r.payload}
            for r in records
        ]
        return pd.DataFrame(rows)

    def put_dataframe(
        self,
        entity_type: EntityType,
        df: pd.DataFrame,
        id_column: str = "id",
        owner_id: Optional[str] = None,
    ) -> int:
        """
        Save each DataFrame row as a record.

        Args:
            entity_type: Target entity type
            df: Rows to store; id_column must be present
            id_column: Column holding the record id
            owner_id: Owner to stamp on rows that lack an owner_id column

        Returns:
            Number of records written
        """
        if df.empty:
            return 0
        if id_column not in df.columns:
            raise ValueError(f"DataFrame has no '{id_column}' column")

        df = df.replace({np.nan: None})
        records = []
        for row in df.to_dict(orient="records"):
            record_id = str(row.pop(id_column))
            row_owner = row.pop("owner_id", None) or owner_id
            updated_at = parse_timestamp(row.pop("updated_at", None)) or utcnow()
            records.append(Record(entity_type, record_id, row, row_owner, updated_at))

        return self.put_many(entity_type, records)

    def export_all(self) -> Dict[str, List[Dict[str, Any]]]:
        """Every readable record grouped by entity type, JSON-ready."""
        return {
            entity_type.value: [r.to_dict() for r in self.list(entity_type)]
            for entity_type in EntityType
        }

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an app setting; unreadable values fall back to the default."""
        rows = self._read("SELECT value FROM app_settings WHERE key = ?", [key])
        if not rows:
            return default
        try:
            return json.loads(rows[0]["value"])
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Corrupted setting {key!r}, using default: {e}")
            return default

    def set_setting(self, key: str, value: Any) -> None:
        """Set an app setting."""
        with self.transaction("set_setting", key) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO app_settings (key, value, updated_at)
                VALUES (?, ?, ?)
                """,
                [key, json.dumps(clean_for_json(value)), datetime.now().isoformat()],
            )


def clean_for_json(value: Any) -> Any:
    """Convert numpy/pandas/datetime values so json.dumps accepts them."""
    if isinstance(value, dict):
        return {str(k): clean_for_json(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [clean_for_json(v) for v in value]
    if isinstance(value, (datetime, pd.Timestamp)):
        return value.isoformat()
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return None if np.isnan(value) else float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.ndarray):
        return [clean_for_json(v) for v in value.tolist()]
    if isinstance(value, float) and value != value:
        return None
    return value
