# =============================================================================
# tests/unit/test_supabase_client.py
# Unit Tests for RemoteStoreClient and error classification
# =============================================================================

import json
import threading
from datetime import datetime

import numpy as np
import pytest
import httpx
from unittest.mock import MagicMock
from postgrest.exceptions import APIError

from flow_core.data.supabase_client import RemoteStoreClient, classify_exception
from flow_core.errors import (
    ErrorKind,
    NotFound,
    ServerError,
    TransportError,
    Unauthenticated,
    ValidationError,
)
from flow_core.offline.models import EntityType, Record


def make_query(data=None, count=None):
    """Query builder mock whose chain methods return itself"""
    query = MagicMock()
    for name in ("select", "eq", "limit", "order", "range", "insert", "update", "upsert", "delete"):
        getattr(query, name).return_value = query
    query.execute.return_value = MagicMock(data=data, count=count)
    return query


def make_client(query):
    client = MagicMock()
    client.table.return_value = query
    return client


def api_error(code, message="boom"):
    return APIError({"message": message, "code": code, "hint": None, "details": None})


class TestClassifyException:
    """Driver errors map onto the closed ErrorKind set"""

    @pytest.mark.parametrize("code, expected", [
        ("PGRST116", NotFound),
        ("PGRST301", Unauthenticated),
        ("42501", Unauthenticated),
        ("23505", ValidationError),
        ("22P02", ValidationError),
        ("PGRST204", ValidationError),
        ("PGRST000", TransportError),
        ("XX000", ServerError),
    ])
    def test_postgrest_codes(self, code, expected):
        error = classify_exception(api_error(code), EntityType.TASK, "t-1")

        assert isinstance(error, expected)
        assert error.details["entity_type"] == "task"
        assert error.details["record_id"] == "t-1"

    def test_httpx_timeout_is_transport(self):
        error = classify_exception(httpx.ConnectTimeout("timed out"))
        assert error.kind is ErrorKind.TRANSPORT

    @pytest.mark.parametrize("status, kind", [
        (401, ErrorKind.UNAUTHENTICATED),
        (404, ErrorKind.NOT_FOUND),
        (422, ErrorKind.VALIDATION),
        (503, ErrorKind.TRANSPORT),
        (500, ErrorKind.SERVER),
    ])
    def test_http_status_errors(self, status, kind):
        request = httpx.Request("GET", "https://test-project.supabase.co/rest/v1/tasks")
        response = httpx.Response(status, request=request)
        error = classify_exception(httpx.HTTPStatusError("bad status", request=request, response=response))

        assert error.kind is kind

    def test_unknown_exception_is_server_error(self):
        error = classify_exception(RuntimeError("weird"))
        assert isinstance(error, ServerError)
        assert error.details["cause"] == "RuntimeError"

    def test_encoding_errors_are_validation_errors(self):
        error = classify_exception(TypeError("Object of type set is not JSON serializable"), EntityType.TASK)

        assert isinstance(error, ValidationError)
        assert error.triggers_fallback is False
        assert error.details["cause"] == "TypeError"

    def test_storage_errors_pass_through(self):
        original = ValidationError("bad payload")
        assert classify_exception(original) is original


class TestRemoteStoreClientRequests:
    """CRUD plumbing against a mocked Supabase client"""

    def test_missing_owner_fails_without_network(self):
        query = make_query(data=[])
        client = make_client(query)
        remote = RemoteStoreClient(client, owner_resolver=lambda: None)

        with pytest.raises(Unauthenticated):
            remote.list(EntityType.TASK)

        client.table.assert_not_called()

    def test_unconfigured_client_is_transport_error(self):
        remote = RemoteStoreClient(None, owner_resolver=lambda: "user-1")

        with pytest.raises(TransportError):
            remote.ping()

    def test_ping(self, mock_supabase):
        remote = RemoteStoreClient(mock_supabase, owner_resolver=lambda: "user-1")

        assert remote.ping() is True
        mock_supabase.table.assert_called_with("tasks")

    def test_get_maps_row_to_record(self):
        row = {"id": "t-1", "user_id": "user-1", "updated_at": "2024-05-01T10:00:00Z", "title": "Plan"}
        remote = RemoteStoreClient(make_client(make_query(data=[row])), owner_resolver=lambda: "user-1")

        record = remote.get(EntityType.TASK, "t-1")

        assert record.id == "t-1"
        assert record.owner_id == "user-1"
        assert record.payload == {"title": "Plan"}
        assert record.updated_at.year == 2024

    def test_get_empty_result_is_not_found(self):
        remote = RemoteStoreClient(make_client(make_query(data=[])), owner_resolver=lambda: "user-1")

        with pytest.raises(NotFound):
            remote.get(EntityType.TASK, "missing")

    def test_upsert_sends_owner_and_conflict_key(self):
        record = Record(EntityType.SESSION, "s-1", {"minutes": 25})
        query = make_query(data=[RemoteStoreClient.to_row(record, "user-1")])
        client = make_client(query)
        remote = RemoteStoreClient(client, owner_resolver=lambda: "user-1")

        saved = remote.upsert(EntityType.SESSION, record)

        client.table.assert_called_with("pomodoro_sessions")
        row = query.upsert.call_args.args[0]
        assert row["id"] == "s-1"
        assert row["user_id"] == "user-1"
        assert row["minutes"] == 25
        assert query.upsert.call_args.kwargs["on_conflict"] == "id"
        assert saved.payload == {"minutes": 25}

    def test_row_payload_is_json_safe(self):
        record = Record(EntityType.TASK, "t-1", {
            "due": datetime(2024, 1, 1, 9, 30),
            "estimate": np.int64(3),
            "score": np.float64("nan"),
        })

        row = RemoteStoreClient.to_row(record, "user-1")

        assert row["due"] == "2024-01-01T09:30:00"
        assert row["estimate"] == 3 and type(row["estimate"]) is int
        assert row["score"] is None
        json.dumps(row)

    def test_api_error_is_classified(self):
        query = make_query()
        query.execute.side_effect = api_error("23502", "null value in column")
        remote = RemoteStoreClient(make_client(query), owner_resolver=lambda: "user-1")

        with pytest.raises(ValidationError) as exc_info:
            remote.upsert(EntityType.TASK, Record(EntityType.TASK, "t-1", {}))

        assert "null value" in exc_info.value.message

    def test_slow_request_becomes_transport_error(self):
        release = threading.Event()
        query = make_query()
        query.execute.side_effect = lambda: release.wait(5)
        remote = RemoteStoreClient(make_client(query), owner_resolver=lambda: "user-1", timeout_seconds=0.05)

        try:
            with pytest.raises(TransportError) as exc_info:
                remote.list(EntityType.TASK)
            assert "timed out" in exc_info.value.message
        finally:
            release.set()
            remote.close()

    def test_count_uses_exact_count(self):
        remote = RemoteStoreClient(make_client(make_query(data=[{"id": "a"}], count=42)), owner_resolver=lambda: "user-1")
        assert remote.count(EntityType.ACHIEVEMENT) == 42

    def test_list_pages_past_page_size(self):
        query = make_query()
        first_page = [{"id": str(i), "user_id": "user-1"} for i in range(RemoteStoreClient.PAGE_SIZE)]
        second_page = [{"id": "last", "user_id": "user-1"}]
        query.execute.side_effect = [MagicMock(data=first_page), MagicMock(data=second_page)]
        remote = RemoteStoreClient(make_client(query), owner_resolver=lambda: "user-1")

        records = remote.list(EntityType.TASK)

        assert len(records) == RemoteStoreClient.PAGE_SIZE + 1
        query.range.assert_any_call(RemoteStoreClient.PAGE_SIZE, 2 * RemoteStoreClient.PAGE_SIZE - 1)
