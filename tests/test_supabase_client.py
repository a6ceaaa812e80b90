"""
Tests for the Supabase record store, annotation queue and continuation channel.

These tests use mocking to avoid requiring a real database connection.
"""

from unittest.mock import MagicMock, Mock

import httpx
import pytest
from postgrest.exceptions import APIError

from models.data_models import AnnotationRecord, AnnotationWorkItem, ResumptionCursor
from pipeline.exceptions import CeilingKind, NotFound, ResourceCeilingExceeded, StorageError
from storage.annotation_queue import AnnotationQueue
from storage.continuations import CONTINUATION_PRIORITY, ContinuationChannel
from storage.supabase_client import SupabaseClient, chunked, classify_storage_error, run_query


def mock_query_chain(data=None, count=None):
    """Query builder mock whose chained calls return itself."""
    query = MagicMock()
    result = Mock()
    result.data = data if data is not None else []
    result.count = count
    for method in ("select", "eq", "in_", "order", "range", "limit", "insert", "update", "upsert"):
        getattr(query, method).return_value = query
    query.execute.return_value = result
    return query


def repo_row(**overrides):
    row = {
        "id": 1,
        "owner": "facebook",
        "name": "react",
        "github_url": "https://github.com/facebook/react",
        "good_first_issue_tag": "good first issue",
        "data_source_id": "awesome-for-beginners",
        "metadata_hash": "abc",
        "open_issues_count": 4,
    }
    row.update(overrides)
    return row


def issue_row(number, **overrides):
    row = {
        "id": number,
        "repo_id": 1,
        "github_issue_number": number,
        "title": f"Issue {number}",
        "state": "open",
        "comment_count": 0,
        "github_url": f"https://github.com/facebook/react/issues/{number}",
    }
    row.update(overrides)
    return row


class TestClassifyStorageError:
    """Tests for mapping client failures onto the error taxonomy."""

    def test_connection_error_is_resource_ceiling(self):
        error = classify_storage_error(httpx.ConnectError("connection refused"), "list repos")
        assert isinstance(error, ResourceCeilingExceeded)
        assert error.kind == CeilingKind.STORAGE_CONNECTIONS

    def test_pool_timeout_is_resource_ceiling(self):
        error = classify_storage_error(httpx.PoolTimeout("pool exhausted"), "list repos")
        assert isinstance(error, ResourceCeilingExceeded)

    @pytest.mark.parametrize("code", ["53300", "53400", "PGRST003"])
    def test_connection_limit_codes_are_resource_ceiling(self, code):
        error = classify_storage_error(APIError({"code": code, "message": "too many connections"}), "list repos")
        assert isinstance(error, ResourceCeilingExceeded)
        assert error.kind == CeilingKind.STORAGE_CONNECTIONS

    def test_other_api_errors_are_storage_errors(self):
        error = classify_storage_error(
            APIError({"code": "23505", "message": "duplicate key value violates unique constraint"}),
            "insert repo",
        )
        assert isinstance(error, StorageError)
        assert "insert repo" in str(error)

    def test_pipeline_errors_pass_through(self):
        original = NotFound("gone")
        assert classify_storage_error(original, "get repo") is original

    def test_run_query_raises_classified_error(self):
        query = Mock()
        query.execute.side_effect = httpx.ConnectTimeout("timed out")
        with pytest.raises(ResourceCeilingExceeded):
            run_query(query, "list repos")


def test_chunked():
    assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]
    assert list(chunked([], 3)) == []


class TestSupabaseClient:
    """Tests for SupabaseClient query construction."""

    def setup_method(self):
        self.mock_supabase = Mock()
        self.client = SupabaseClient.__new__(SupabaseClient)
        self.client.client = self.mock_supabase
        self.client.repos_table = "repos"
        self.client.issues_table = "issues"
        self.client.summaries_table = "ai_summaries"

    def test_find_repo_by_owner_name(self):
        query = mock_query_chain([repo_row()])
        self.mock_supabase.table.return_value = query

        record = self.client.find_repo_by_owner_name("facebook", "react")

        self.mock_supabase.table.assert_called_with("repos")
        query.eq.assert_any_call("owner", "facebook")
        query.eq.assert_any_call("name", "react")
        assert record.id == 1
        assert record.open_issues_count == 4

    def test_find_repo_missing(self):
        self.mock_supabase.table.return_value = mock_query_chain([])
        assert self.client.find_repo_by_owner_name("nobody", "nothing") is None

    def test_insert_repo_stamps_timestamps(self):
        query = mock_query_chain([repo_row(created_at="2025-01-15T10:00:00+00:00")])
        self.mock_supabase.table.return_value = query

        record = self.client.insert_repo({"owner": "facebook", "name": "react"})

        row = query.insert.call_args[0][0]
        assert row["owner"] == "facebook"
        assert "created_at" in row and "updated_at" in row
        assert record.full_name == "facebook/react"

    def test_insert_repo_without_returned_row(self):
        self.mock_supabase.table.return_value = mock_query_chain([])
        with pytest.raises(StorageError):
            self.client.insert_repo({"owner": "facebook", "name": "react"})

    def test_get_all_repos_pages_by_id(self):
        first = mock_query_chain([repo_row(id=1), repo_row(id=2, name="jest")])
        second = mock_query_chain([repo_row(id=3, name="relay")])
        self.mock_supabase.table.side_effect = [first, second]

        repos = self.client.get_all_repos(page_size=2)

        assert [r.id for r in repos] == [1, 2, 3]
        first.order.assert_called_with("id")
        first.range.assert_called_with(0, 1)
        second.range.assert_called_with(2, 3)

    def test_find_issues_by_numbers_keys_by_number(self):
        query = mock_query_chain([issue_row(5), issue_row(9)])
        self.mock_supabase.table.return_value = query

        found = self.client.find_issues_by_numbers(1, [5, 9, 11])

        query.in_.assert_called_with("github_issue_number", [5, 9, 11])
        assert set(found) == {5, 9}

    def test_batch_insert_issues(self):
        query = mock_query_chain([issue_row(1), issue_row(2)])
        self.mock_supabase.table.return_value = query
        rows = [{"repo_id": 1, "github_issue_number": n, "title": "t"} for n in (1, 2)]

        created = self.client.batch_insert_issues(rows)

        query.insert.assert_called_once_with(rows)
        assert [r.github_issue_number for r in created] == [1, 2]

    def test_batch_insert_rejects_oversized_chunk(self):
        rows = [{f"col{i}": i for i in range(12)} for _ in range(9)]
        with pytest.raises(StorageError):
            self.client.batch_insert_issues(rows)
        self.mock_supabase.table.assert_not_called()

    def test_batch_insert_empty(self):
        assert self.client.batch_insert_issues([]) == []
        self.mock_supabase.table.assert_not_called()

    def test_get_open_issues(self):
        query = mock_query_chain([issue_row(3)])
        self.mock_supabase.table.return_value = query

        issues = self.client.get_open_issues(1)

        query.eq.assert_any_call("repo_id", 1)
        query.eq.assert_any_call("state", "open")
        assert issues[0].github_issue_number == 3

    def test_upsert_annotation_only_writes_set_fields(self):
        query = mock_query_chain([])
        self.mock_supabase.table.return_value = query

        self.client.upsert_annotation(AnnotationRecord(entity_type="repo", entity_id=1, repo_summary="A UI library"))

        self.mock_supabase.table.assert_called_with("ai_summaries")
        row = query.upsert.call_args[0][0]
        assert row["repo_summary"] == "A UI library"
        assert "issue_intro" not in row
        assert query.upsert.call_args[1]["on_conflict"] == "entity_type,entity_id"

    def test_connection_exhaustion_surfaces_as_ceiling(self):
        query = mock_query_chain()
        query.execute.side_effect = APIError({"code": "53300", "message": "too many connections"})
        self.mock_supabase.table.return_value = query

        with pytest.raises(ResourceCeilingExceeded):
            self.client.get_repo(1)


class TestAnnotationQueue:
    """Tests for the table-backed annotation queue."""

    def setup_method(self):
        self.mock_supabase = Mock()
        store = SupabaseClient.__new__(SupabaseClient)
        store.client = self.mock_supabase
        self.queue = AnnotationQueue(store)

    def test_send_upserts_pending_row(self):
        query = mock_query_chain()
        self.mock_supabase.table.return_value = query

        self.queue.send(AnnotationWorkItem(kind="issue", entity_id=42, priority=50))

        self.mock_supabase.table.assert_called_with("ai_summary_queue")
        row = query.upsert.call_args[0][0]
        assert row["entity_type"] == "issue"
        assert row["entity_id"] == 42
        assert row["status"] == "pending"
        assert row["priority"] == 50
        assert row["attempts"] == 0
        assert query.upsert.call_args[1]["on_conflict"] == "entity_type,entity_id"

    def test_select_pending_orders_by_priority_then_age(self):
        query = mock_query_chain([
            {"id": 1, "entity_type": "repo", "entity_id": 7, "status": "pending", "priority": 100, "attempts": 0},
        ])
        self.mock_supabase.table.return_value = query

        items = self.queue.select_pending(8)

        query.eq.assert_called_with("status", "pending")
        assert query.order.call_args_list[0][0] == ("priority",)
        assert query.order.call_args_list[0][1] == {"desc": True}
        assert query.order.call_args_list[1][0] == ("created_at",)
        query.limit.assert_called_with(8)
        assert items[0].entity_id == 7

    @pytest.mark.parametrize("attempts, expected", [(1, "pending"), (2, "pending"), (3, "failed")])
    def test_mark_failed_status(self, attempts, expected):
        query = mock_query_chain()
        self.mock_supabase.table.return_value = query

        status = self.queue.mark_failed(5, "x" * 2000, attempts)

        assert status == expected
        update = query.update.call_args[0][0]
        assert update["status"] == expected
        assert update["attempts"] == attempts
        assert len(update["error_message"]) == 1000

    def test_pending_count(self):
        query = mock_query_chain(count=12)
        self.mock_supabase.table.return_value = query

        assert self.queue.pending_count() == 12
        query.select.assert_called_with("*", count="exact", head=True)

    def test_stats(self):
        self.mock_supabase.table.return_value = mock_query_chain(count=2)

        stats = self.queue.stats()

        assert stats == {"pending": 2, "processing": 2, "completed": 2, "failed": 2, "total": 8}


class TestContinuationChannel:
    """Tests for the continuation channel."""

    def setup_method(self):
        self.mock_supabase = Mock()
        store = SupabaseClient.__new__(SupabaseClient)
        store.client = self.mock_supabase
        self.channel = ContinuationChannel(store)

    def test_send_inserts_cursor(self):
        query = mock_query_chain()
        self.mock_supabase.table.return_value = query

        self.channel.send(ResumptionCursor(phase="issues", source_id="src1", last_index=4), run_id="run-1")

        self.mock_supabase.table.assert_called_with("scraper_continuations")
        row = query.insert.call_args[0][0]
        assert row["phase"] == "issues"
        assert row["source_id"] == "src1"
        assert row["last_index"] == 4
        assert row["run_id"] == "run-1"
        assert row["priority"] == CONTINUATION_PRIORITY
        assert row["consumed"] is False

    def test_latest_returns_cursor(self):
        query = mock_query_chain([{"id": 9, "phase": "repos", "source_id": "src1", "last_index": 2}])
        self.mock_supabase.table.return_value = query

        continuation_id, cursor = self.channel.latest()

        query.eq.assert_called_with("consumed", False)
        assert continuation_id == 9
        assert cursor == ResumptionCursor(phase="repos", source_id="src1", last_index=2)

    def test_latest_when_empty(self):
        self.mock_supabase.table.return_value = mock_query_chain([])
        assert self.channel.latest() is None

    def test_send_failure_raises(self):
        query = mock_query_chain()
        query.execute.side_effect = APIError({"code": "42P01", "message": "relation does not exist"})
        self.mock_supabase.table.return_value = query

        with pytest.raises(StorageError):
            self.channel.send(ResumptionCursor(source_id="src1", last_index=0))
