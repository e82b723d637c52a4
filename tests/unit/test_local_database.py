# =============================================================================
# tests/unit/test_local_database.py
# Unit Tests for LocalCacheStore
# =============================================================================

import sqlite3
import pytest
import numpy as np
import pandas as pd
from unittest.mock import MagicMock, patch

from flow_core.errors import StorageUnavailable
from flow_core.offline.local_database import LocalCacheStore
from flow_core.offline.models import EntityType, Record


def _insert_raw(store, entity_type, record_id, payload_json):
    with store.transaction("raw insert") as conn:
        conn.execute(
            """
            INSERT INTO records (key, entity_type, record_id, owner_id, payload_json, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            [store.make_key(entity_type, record_id), entity_type.value, record_id, None,
             payload_json, "2024-01-01T00:00:00+00:00"],
        )


def _failing_connection(message="database or disk is full"):
    conn = MagicMock()
    conn.execute.side_effect = sqlite3.OperationalError(message)
    conn.executemany.side_effect = sqlite3.OperationalError(message)
    return conn


class TestLocalCacheCrud:
    """Basic record operations"""

    def test_put_then_get(self, local_store, record_factory):
        record = record_factory(EntityType.TASK, "t-1", title="Write tests", estimate=3)
        local_store.put(EntityType.TASK, record)

        loaded = local_store.get(EntityType.TASK, "t-1")

        assert loaded.id == "t-1"
        assert loaded.payload == {"title": "Write tests", "estimate": 3}
        assert loaded.updated_at == record.updated_at

    def test_get_missing_returns_none(self, local_store):
        assert local_store.get(EntityType.TASK, "nope") is None

    def test_put_is_last_writer_wins(self, local_store, record_factory):
        local_store.put(EntityType.TASK, record_factory(EntityType.TASK, "t-1", title="first"))
        local_store.put(EntityType.TASK, record_factory(EntityType.TASK, "t-1", title="second"))

        assert local_store.count(EntityType.TASK) == 1
        assert local_store.get(EntityType.TASK, "t-1").payload["title"] == "second"

    def test_put_rejects_mismatched_type(self, local_store, record_factory):
        with pytest.raises(ValueError):
            local_store.put(EntityType.SESSION, record_factory(EntityType.TASK, "t-1"))

    def test_entity_types_are_isolated(self, local_store, record_factory):
        local_store.put(EntityType.TASK, record_factory(EntityType.TASK, "x"))
        local_store.put(EntityType.SESSION, record_factory(EntityType.SESSION, "x"))

        assert local_store.count(EntityType.TASK) == 1
        assert local_store.count(EntityType.SESSION) == 1
        assert local_store.delete(EntityType.TASK, "x")
        assert local_store.get(EntityType.SESSION, "x") is not None

    def test_delete_missing_returns_false(self, local_store):
        assert local_store.delete(EntityType.TASK, "missing") is False

    def test_clear_one_type(self, local_store, sample_tasks, record_factory):
        local_store.put_many(EntityType.TASK, sample_tasks)
        local_store.put(EntityType.STREAK, record_factory(EntityType.STREAK, "current", days=4))

        removed = local_store.clear(EntityType.TASK)

        assert removed == 10
        assert local_store.count(EntityType.TASK) == 0
        assert local_store.count(EntityType.STREAK) == 1

    def test_keys_are_namespaced(self, db_path):
        store = LocalCacheStore(db_path, namespace="custom")
        assert store.make_key(EntityType.TASK, "abc") == "custom_task:abc"


class TestLocalCacheCorruption:
    """Unreadable rows never raise"""

    def test_list_skips_corrupted_rows(self, local_store, record_factory):
        local_store.put(EntityType.TASK, record_factory(EntityType.TASK, "good"))
        _insert_raw(local_store, EntityType.TASK, "bad", "{not json")

        records = local_store.list(EntityType.TASK)

        assert [r.id for r in records] == ["good"]

    def test_get_corrupted_row_returns_none(self, local_store):
        _insert_raw(local_store, EntityType.TASK, "bad", "[1, 2, 3]")
        assert local_store.get(EntityType.TASK, "bad") is None

    def test_corrupted_setting_returns_default(self, local_store):
        with local_store.transaction("raw setting") as conn:
            conn.execute("INSERT INTO app_settings (key, value) VALUES (?, ?)", ["theme", "{oops"])

        assert local_store.get_setting("theme", "dark") == "dark"

    def test_settings_roundtrip_numpy_values(self, local_store):
        local_store.set_setting("pomodoro", {"minutes": np.int64(25), "ratio": np.float64(0.5)})
        assert local_store.get_setting("pomodoro") == {"minutes": 25, "ratio": 0.5}


class TestLocalCacheRejectedWrites:
    """Medium errors surface as StorageUnavailable"""

    def test_put_raises_storage_unavailable(self, local_store, record_factory):
        with patch.object(local_store, "_get_connection", return_value=_failing_connection()):
            with pytest.raises(StorageUnavailable) as exc_info:
                local_store.put(EntityType.TASK, record_factory())

        assert exc_info.value.code == "LOCAL_001"
        assert exc_info.value.details["operation"] == "put"

    def test_check_writable_false_when_rejected(self, local_store):
        with patch.object(local_store, "_get_connection", return_value=_failing_connection("attempt to write a readonly database")):
            assert local_store.check_writable() is False

    def test_check_writable_true_on_healthy_store(self, local_store):
        assert local_store.check_writable() is True


class TestLocalCacheDataFrames:
    """pandas integration"""

    def test_to_dataframe_empty(self, local_store):
        df = local_store.to_dataframe(EntityType.TASK)
        assert df.empty
        assert list(df.columns) == ["id", "owner_id", "updated_at"]

    def test_put_dataframe_converts_numpy(self, local_store):
        df = pd.DataFrame({
            "id": ["s-1", "s-2"],
            "minutes": np.array([25, 50], dtype=np.int64),
            "rating": [4.5, np.nan],
        })

        written = local_store.put_dataframe(EntityType.SESSION, df, owner_id="user-1")

        assert written == 2
        second = local_store.get(EntityType.SESSION, "s-2")
        assert second.payload == {"minutes": 50, "rating": None}
        assert second.owner_id == "user-1"

    def test_put_dataframe_requires_id_column(self, local_store):
        with pytest.raises(ValueError):
            local_store.put_dataframe(EntityType.TASK, pd.DataFrame({"title": ["x"]}))

    def test_export_all_groups_by_type(self, local_store, sample_tasks):
        local_store.put_many(EntityType.TASK, sample_tasks)

        exported = local_store.export_all()

        assert set(exported) == {e.value for e in EntityType}
        assert len(exported["task"]) == 10
        assert exported["settings"] == []
        assert Record.from_dict(exported["task"][0]).entity_type is EntityType.TASK
