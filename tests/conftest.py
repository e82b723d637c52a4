# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from dataclasses import replace
from typing import Dict, List, Optional
from unittest.mock import MagicMock

from flow_core.errors import NotFound, TransportError
from flow_core.offline.config import StorageConfig
from flow_core.offline.local_database import LocalCacheStore
from flow_core.offline.models import EntityType, Record


# =============================================================================
# FAKE BACKENDS
# =============================================================================

class FakeRemoteStore:
    """
    In-memory stand-in for RemoteStoreClient.

    Failures can be scripted per call (fail_next), per record (fail_record)
    or globally (offline).
    """

    def __init__(self):
        self.tables: Dict[EntityType, Dict[str, Record]] = {t: {} for t in EntityType}
        self.offline = False
        self.calls: List[str] = []
        self.ping_count = 0
        self._scripted: List[Exception] = []
        self._record_failures: Dict[str, Exception] = {}

    def fail_next(self, *errors: Exception) -> None:
        self._scripted.extend(errors)

    def fail_record(self, record_id: str, error: Exception) -> None:
        self._record_failures[record_id] = error

    def _call(self, name: str, record_id: Optional[str] = None) -> None:
        self.calls.append(name)
        if self.offline:
            raise TransportError("connection refused")
        if self._scripted:
            raise self._scripted.pop(0)
        if record_id is not None and record_id in self._record_failures:
            raise self._record_failures[record_id]

    def ping(self) -> bool:
        self.ping_count += 1
        self._call("ping")
        return True

    def get(self, entity_type: EntityType, record_id: str) -> Record:
        self._call("get", record_id)
        try:
            return self.tables[entity_type][record_id]
        except KeyError:
            raise NotFound(f"{entity_type.value} {record_id} not found") from None

    def list(self, entity_type: EntityType) -> List[Record]:
        self._call("list")
        return list(self.tables[entity_type].values())

    def upsert(self, entity_type: EntityType, record: Record) -> Record:
        self._call("upsert", record.id)
        stored = replace(record, owner_id="user-1")
        self.tables[entity_type][record.id] = stored
        return stored

    create = upsert
    update = upsert

    def delete(self, entity_type: EntityType, record_id: str) -> bool:
        self._call("delete", record_id)
        return self.tables[entity_type].pop(record_id, None) is not None

    def count(self, entity_type: EntityType) -> int:
        self._call("count")
        return len(self.tables[entity_type])

    def close(self) -> None:
        pass


class FakeTimer:
    """threading.Timer replacement that only runs when fired."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


class TimerRecorder:
    """Collects every FakeTimer the code under test creates."""

    def __init__(self):
        self.timers: List[FakeTimer] = []

    def __call__(self, interval, function) -> FakeTimer:
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[FakeTimer]:
        return [t for t in self.timers if t.started and not t.cancelled]

    def fire_next(self) -> None:
        timer = self.pending[0]
        timer.cancelled = True
        timer.function()


def make_record(entity_type: EntityType = EntityType.TASK, record_id: str = "task-1", **payload) -> Record:
    return Record(entity_type, record_id, payload or {"title": f"Record {record_id}"})


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def db_path(tmp_path):
    """Temporary SQLite file"""
    return tmp_path / "cache" / "flowtracker.db"


@pytest.fixture
def local_store(db_path):
    """Initialized local cache"""
    store = LocalCacheStore(db_path)
    store.initialize()
    yield store
    store.close()


@pytest.fixture
def fake_remote():
    return FakeRemoteStore()


@pytest.fixture
def timers():
    return TimerRecorder()


@pytest.fixture
def storage_config(db_path):
    """Config with remote credentials and fast retries"""
    return StorageConfig(
        storage_mode="auto",
        supabase_url="https://test-project.supabase.co",
        supabase_key="test-anon-key",
        owner_id="user-1",
        local_db_path=str(db_path),
        remote_failure_threshold=5,
        remote_retry_attempts=3,
        retry_base_delay_seconds=5.0,
        retry_max_delay_seconds=60.0,
    )


@pytest.fixture
def sample_tasks():
    """Ten task records"""
    return [make_record(EntityType.TASK, f"task-{i}", title=f"Task {i}", done=i % 2 == 0) for i in range(1, 11)]


# =============================================================================
# MOCK FIXTURES
# =============================================================================

@pytest.fixture
def mock_streamlit():
    """Mock Streamlit for testing"""
    import sys

    mock_st = MagicMock()
    mock_st.session_state = {}
    mock_st.cache_data = lambda *args, **kwargs: (lambda f: f)
    mock_st.cache_resource = lambda *args, **kwargs: (lambda f: f)

    original_st = sys.modules.get('streamlit')
    sys.modules['streamlit'] = mock_st

    yield mock_st

    if original_st:
        sys.modules['streamlit'] = original_st
    else:
        del sys.modules['streamlit']


@pytest.fixture
def mock_supabase():
    """Mock Supabase client"""
    mock_client = MagicMock()
    mock_client.table.return_value.select.return_value.eq.return_value.limit.return_value.execute.return_value.data = []
    mock_client.table.return_value.upsert.return_value.execute.return_value.data = []
    return mock_client


@pytest.fixture
def record_factory():
    """make_record(entity_type, record_id, **payload)"""
    return make_record
