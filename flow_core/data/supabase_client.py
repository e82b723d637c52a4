# =============================================================================
# flow_core/data/supabase_client.py
# Supabase Remote Store Client for FlowTracker
# Handles connections, CRUD operations and error classification
# =============================================================================

from __future__ import annotations
import concurrent.futures
from typing import Any, Callable, Dict, List, Optional
import logging

import httpx
from postgrest.exceptions import APIError

from flow_core.errors import (
    ErrorKind,
    ERROR_KIND_CLASSES,
    StorageError,
    NotFound,
    TransportError,
    Unauthenticated,
)
from flow_core.offline.local_database import clean_for_json
from flow_core.offline.models import EntityType, Record, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

OwnerResolver = Callable[[], Optional[str]]

# PostgREST / Postgres error codes, grouped by how the core reacts to them
NOT_FOUND_CODES = {"PGRST116"}
UNAUTHENTICATED_CODES = {"PGRST301", "PGRST302", "42501", "401", "403"}
VALIDATION_CODES = {"PGRST100", "PGRST102", "PGRST204", "42703", "400", "422"}
TRANSPORT_CODES = {"PGRST000", "PGRST001", "PGRST002"}

# Columns owned by the adapter rather than the record payload
ROW_META_COLUMNS = ("id", "user_id", "updated_at", "created_at")


def create_supabase_client(url: Optional[str], key: Optional[str], timeout_seconds: float = 5.0):
    """
    Create a Supabase client, or None when credentials are missing.

    Args:
        url: Project URL (https://<project>.supabase.co)
        key: Anon or service key
        timeout_seconds: PostgREST request timeout

    Returns:
        supabase.Client or None
    """
    if not url or not key:
        logger.info("Supabase credentials not configured")
        return None

    from supabase import ClientOptions, create_client

    options = ClientOptions(postgrest_client_timeout=timeout_seconds)
    return create_client(url, key, options=options)


def classify_exception(
    error: BaseException,
    entity_type: Optional[EntityType] = None,
    record_id: Optional[str] = None,
) -> StorageError:
    """
    Map any client-side exception onto the closed ErrorKind taxonomy.

    This is the only place that inspects driver error codes or messages.
    """
    if isinstance(error, StorageError):
        return error

    kind = ErrorKind.SERVER
    message = str(error) or type(error).__name__

    if isinstance(error, (httpx.TransportError, concurrent.futures.TimeoutError, TimeoutError, ConnectionError)):
        kind = ErrorKind.TRANSPORT
    elif isinstance(error, httpx.HTTPStatusError):
        kind = _kind_for_status(error.response.status_code)
    elif isinstance(error, APIError):
        code = str(error.code or "")
        message = error.message or message
        if code in NOT_FOUND_CODES:
            kind = ErrorKind.NOT_FOUND
        elif code in UNAUTHENTICATED_CODES:
            kind = ErrorKind.UNAUTHENTICATED
        elif code in VALIDATION_CODES or code[:2] in ("22", "23"):
            kind = ErrorKind.VALIDATION
        elif code in TRANSPORT_CODES:
            kind = ErrorKind.TRANSPORT
        elif code.isdigit() and len(code) == 3:
            kind = _kind_for_status(int(code))
    elif isinstance(error, OSError):
        kind = ErrorKind.TRANSPORT
    elif isinstance(error, (TypeError, ValueError)):
        # Raised client-side while encoding the request body
        kind = ErrorKind.VALIDATION

    return ERROR_KIND_CLASSES[kind](
        message,
        entity_type=entity_type.value if entity_type else None,
        record_id=record_id,
        details={"cause": type(error).__name__},
    )


def _kind_for_status(status: int) -> ErrorKind:
    if status in (401, 403):
        return ErrorKind.UNAUTHENTICATED
    if status == 404:
        return ErrorKind.NOT_FOUND
    if status in (400, 409, 422):
        return ErrorKind.VALIDATION
    if status in (408, 429, 502, 503, 504):
        return ErrorKind.TRANSPORT
    return ErrorKind.SERVER


class RemoteStoreClient:
    """
    Per-entity CRUD against Supabase tables.

    Every method resolves the owner identity first and fails fast with
    Unauthenticated when there is none. Every request is bounded by
    timeout_seconds; a slower request surfaces as TransportError.
    """

    TABLE_MAPPING = {
        EntityType.TASK: "tasks",
        EntityType.SETTINGS: "user_settings",
        EntityType.SESSION: "pomodoro_sessions",
        EntityType.ACHIEVEMENT: "achievements",
        EntityType.STREAK: "user_streaks",
    }

    PING_TABLE = "tasks"
    PAGE_SIZE = 1000

    def __init__(
        self,
        client: Any = None,
        owner_resolver: Optional[OwnerResolver] = None,
        timeout_seconds: float = 5.0,
    ):
        """
        Args:
            client: supabase.Client (None when not configured)
            owner_resolver: Returns the current owner id, or None if signed out
            timeout_seconds: Upper bound for each request
        """
        self.client = client
        self.owner_resolver = owner_resolver or (lambda: None)
        self.timeout_seconds = timeout_seconds
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=4,
            thread_name_prefix="RemoteStore",
        )

    @classmethod
    def from_config(cls, config, owner_resolver: Optional[OwnerResolver] = None) -> RemoteStoreClient:
        client = create_supabase_client(
            config.supabase_url,
            config.supabase_key,
            timeout_seconds=config.remote_timeout_seconds,
        )
        return cls(
            client=client,
            owner_resolver=owner_resolver or (lambda: config.owner_id),
            timeout_seconds=config.remote_timeout_seconds,
        )

    def is_connected(self) -> bool:
        """Check if a Supabase client is configured."""
        return self.client is not None

    def close(self) -> None:
        """Stop the request worker pool."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    # =========================================================================
    # REQUEST PLUMBING
    # =========================================================================

    def _table(self, entity_type: EntityType):
        return self.client.table(self.TABLE_MAPPING[entity_type])

    def _require_owner(self, entity_type: Optional[EntityType] = None) -> str:
        owner_id = self.owner_resolver()
        if not owner_id:
            raise Unauthenticated(
                "No signed-in owner for remote request",
                entity_type=entity_type.value if entity_type else None,
            )
        return owner_id

    def _run(
        self,
        operation: str,
        request: Callable[[str], Any],
        entity_type: Optional[EntityType] = None,
        record_id: Optional[str] = None,
    ) -> Any:
        """Resolve owner, then run request(owner_id) with a timeout and error mapping."""
        owner_id = self._require_owner(entity_type)

        if self.client is None:
            raise TransportError(
                "Supabase not configured",
                entity_type=entity_type.value if entity_type else None,
                record_id=record_id,
            )

        future = self._executor.submit(request, owner_id)
        try:
            return future.result(timeout=self.timeout_seconds)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise TransportError(
                f"{operation} timed out after {self.timeout_seconds:.1f}s",
                entity_type=entity_type.value if entity_type else None,
                record_id=record_id,
            ) from None
        except Exception as e:
            error = classify_exception(e, entity_type, record_id)
            logger.debug(f"Remote {operation} failed: {error.kind.value}: {error.message}")
            raise error from e

    # =========================================================================
    # ROW MAPPING
    # =========================================================================

    @staticmethod
    def to_row(record: Record, owner_id: str) -> Dict[str, Any]:
        row = {k: v for k, v in clean_for_json(record.payload).items() if k not in ROW_META_COLUMNS}
        row["id"] = record.id
        row["user_id"] = owner_id
        row["updated_at"] = record.updated_at.isoformat()
        return row

    @staticmethod
    def from_row(entity_type: EntityType, row: Dict[str, Any]) -> Record:
        payload = {k: v for k, v in row.items() if k not in ROW_META_COLUMNS}
        return Record(
            entity_type=entity_type,
            id=str(row["id"]),
            payload=payload,
            owner_id=row.get("user_id"),
            updated_at=parse_timestamp(row.get("updated_at")) or utcnow(),
        )

    def _single(self, entity_type: EntityType, data: Optional[List[Dict]], record_id: Optional[str]) -> Record:
        if not data:
            raise NotFound(
                f"{entity_type.value} {record_id} not found",
                entity_type=entity_type.value,
                record_id=record_id,
            )
        return self.from_row(entity_type, data[0])

    # =========================================================================
    # CRUD
    # =========================================================================

    def ping(self) -> bool:
        """Cheapest possible authenticated read (one id, limit 1)."""
        def request(owner_id: str):
            return (
                self.client.table(self.PING_TABLE)
                .select("id")
                .eq("user_id", owner_id)
                .limit(1)
                .execute()
            )

        self._run("ping", request)
        return True

    def get(self, entity_type: EntityType, record_id: str) -> Record:
        def request(owner_id: str):
            return (
                self._table(entity_type)
                .select("*")
                .eq("id", record_id)
                .eq("user_id", owner_id)
                .limit(1)
                .execute()
            )

        response = self._run("get", request, entity_type, record_id)
        return self._single(entity_type, response.data, record_id)

    def list(self, entity_type: EntityType) -> List[Record]:
        """Fetch every record of a type (paged past the 1000 row limit)."""
        def request(owner_id: str):
            rows: List[Dict] = []
            offset = 0
            while True:
                response = (
                    self._table(entity_type)
                    .select("*")
                    .eq("user_id", owner_id)
                    .order("updated_at", desc=True)
                    .range(offset, offset + self.PAGE_SIZE - 1)
                    .execute()
                )
                batch = response.data or []
                rows.extend(batch)
                if len(batch) < self.PAGE_SIZE:
                    return rows
                offset += self.PAGE_SIZE

        rows = self._run("list", request, entity_type)
        return [self.from_row(entity_type, row) for row in rows]

    def create(self, entity_type: EntityType, record: Record) -> Record:
        def request(owner_id: str):
            return self._table(entity_type).insert(self.to_row(record, owner_id)).execute()

        response = self._run("create", request, entity_type, record.id)
        return self._single(entity_type, response.data, record.id)

    def update(self, entity_type: EntityType, record: Record) -> Record:
        def request(owner_id: str):
            return (
                self._table(entity_type)
                .update(self.to_row(record, owner_id))
                .eq("id", record.id)
                .eq("user_id", owner_id)
                .execute()
            )

        response = self._run("update", request, entity_type, record.id)
        return self._single(entity_type, response.data, record.id)

    def upsert(self, entity_type: EntityType, record: Record) -> Record:
        """Insert or update keyed by record id; re-running is idempotent."""
        def request(owner_id: str):
            return (
                self._table(entity_type)
                .upsert(self.to_row(record, owner_id), on_conflict="id")
                .execute()
            )

        response = self._run("upsert", request, entity_type, record.id)
        return self._single(entity_type, response.data, record.id)

    def delete(self, entity_type: EntityType, record_id: str) -> bool:
        def request(owner_id: str):
            return (
                self._table(entity_type)
                .delete()
                .eq("id", record_id)
                .eq("user_id", owner_id)
                .execute()
            )

        response = self._run("delete", request, entity_type, record_id)
        return bool(response.data)

    def count(self, entity_type: EntityType) -> int:
        def request(owner_id: str):
            return (
                self._table(entity_type)
                .select("id", count="exact")
                .eq("user_id", owner_id)
                .limit(1)
                .execute()
            )

        response = self._run("count", request, entity_type)
        if response.count is not None:
            return int(response.count)
        return len(response.data or [])
