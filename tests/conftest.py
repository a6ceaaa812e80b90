"""Shared pytest fixtures and in-memory fakes for the pipeline components."""

import pytest

from models.data_models import (
    AnnotationRecord,
    IssueRecord,
    LanguageBreakdown,
    QueueItem,
    RepositoryRecord,
)
from pipeline.exceptions import StorageError, SummarizerOutputError
from storage.supabase_client import MAX_WRITE_PARAMETERS
from summarizer.summarizer import IssueAnalysis, RepoSummary


@pytest.fixture
def test_env(monkeypatch, tmp_path):
    """
    Set valid test environment variables.

    Config can then be loaded during tests without real credentials.
    """
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_test_token_1234567890")
    monkeypatch.setenv("SUPABASE_URL", "https://test-project.supabase.co")
    monkeypatch.setenv("SUPABASE_KEY", "test_supabase_key_1234567890")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")

    return {
        "github_token": "ghp_test_token_1234567890",
        "supabase_url": "https://test-project.supabase.co",
        "supabase_key": "test_supabase_key_1234567890",
        "log_level": "DEBUG",
    }


@pytest.fixture
def invalid_env(monkeypatch):
    """Set up invalid/missing environment variables for testing validation."""
    monkeypatch.setenv("GITHUB_TOKEN", "")
    monkeypatch.setenv("SUPABASE_URL", "")
    monkeypatch.setenv("SUPABASE_KEY", "")


class FakeStore:
    """In-memory record store with the SupabaseClient interface."""

    def __init__(self):
        self.repos = {}
        self.issues = {}
        self.annotations = {}
        self.insert_calls = []
        self.failing_insert_calls = set()
        self._next_repo_id = 1
        self._next_issue_id = 1

    def add_repo(self, owner="a", name="b", label="good first issue", source_id="src1", **fields):
        return self.insert_repo({
            "owner": owner,
            "name": name,
            "github_url": f"https://github.com/{owner}/{name}",
            "good_first_issue_tag": label,
            "data_source_id": source_id,
            **fields,
        })

    def find_repo_by_owner_name(self, owner, name):
        for row in self.repos.values():
            if row["owner"] == owner and row["name"] == name:
                return RepositoryRecord(**row)
        return None

    def get_repo(self, repo_id):
        row = self.repos.get(repo_id)
        return RepositoryRecord(**row) if row else None

    def insert_repo(self, record):
        repo_id = self._next_repo_id
        self._next_repo_id += 1
        self.repos[repo_id] = {**record, "id": repo_id}
        return RepositoryRecord(**self.repos[repo_id])

    def update_repo(self, repo_id, fields):
        self.repos[repo_id].update(fields)

    def get_all_repos(self):
        return [RepositoryRecord(**self.repos[repo_id]) for repo_id in sorted(self.repos)]

    def find_issues_by_numbers(self, repo_id, numbers):
        wanted = set(numbers)
        return {
            row["github_issue_number"]: IssueRecord(**row)
            for row in self.issues.values()
            if row["repo_id"] == repo_id and row["github_issue_number"] in wanted
        }

    def get_issue(self, issue_id):
        row = self.issues.get(issue_id)
        return IssueRecord(**row) if row else None

    def get_open_issues(self, repo_id):
        return [
            IssueRecord(**row)
            for row in self.issues.values()
            if row["repo_id"] == repo_id and row["state"] == "open"
        ]

    def batch_insert_issues(self, rows):
        self.insert_calls.append(len(rows))
        if len(rows) * max(len(row) for row in rows) > MAX_WRITE_PARAMETERS:
            raise StorageError("too many parameters")
        if len(self.insert_calls) in self.failing_insert_calls:
            raise StorageError("insert failed")

        created = []
        for row in rows:
            issue_id = self._next_issue_id
            self._next_issue_id += 1
            self.issues[issue_id] = {**row, "id": issue_id}
            created.append(IssueRecord(**self.issues[issue_id]))
        return created

    def update_issue(self, issue_id, fields):
        self.issues[issue_id].update(fields)

    def issue_by_number(self, repo_id, number):
        for row in self.issues.values():
            if row["repo_id"] == repo_id and row["github_issue_number"] == number:
                return row
        return None

    def upsert_annotation(self, annotation: AnnotationRecord):
        self.annotations[(annotation.entity_type, annotation.entity_id)] = annotation

    def get_annotation(self, entity_type, entity_id):
        return self.annotations.get((entity_type, entity_id))


class FakeQueue:
    """In-memory annotation queue, one row per (entity_type, entity_id)."""

    def __init__(self, max_attempts=3):
        self.rows = {}
        self.sent = []
        self.max_attempts = max_attempts
        self.fail_send = False
        self.send_error = None
        self.fail_count = False
        self._next_id = 1

    def send(self, item):
        if self.send_error is not None:
            raise self.send_error
        if self.fail_send:
            raise StorageError("queue unavailable")
        self.sent.append(item)
        key = (item.kind, item.entity_id)
        row = self.rows.get(key)
        if row is None:
            row = {"id": self._next_id, "entity_type": item.kind, "entity_id": item.entity_id}
            self._next_id += 1
            self.rows[key] = row
        row.update({"status": "pending", "priority": item.priority, "attempts": 0, "error_message": None})

    def _row(self, item_id):
        return next(row for row in self.rows.values() if row["id"] == item_id)

    def select_pending(self, limit=8):
        pending = [row for row in self.rows.values() if row["status"] == "pending"]
        pending.sort(key=lambda row: (-row["priority"], row["id"]))
        return [QueueItem(**row) for row in pending[:limit]]

    def mark_processing(self, item_id):
        self._row(item_id)["status"] = "processing"

    def mark_completed(self, item_id):
        self._row(item_id)["status"] = "completed"

    def mark_failed(self, item_id, error_message, attempts):
        status = "failed" if attempts >= self.max_attempts else "pending"
        self._row(item_id).update({"status": status, "attempts": attempts, "error_message": error_message})
        return status

    def pending_count(self):
        if self.fail_count:
            raise StorageError("count failed")
        return sum(1 for row in self.rows.values() if row["status"] == "pending")

    def status_of(self, kind, entity_id):
        return self.rows[(kind, entity_id)]["status"]


class FakeGateway:
    """GitHub gateway double serving canned observations."""

    def __init__(self):
        self.languages = {}
        self.label_counts = {}
        self.issues = {}
        self.refetch = {}
        self.errors = {}
        self.calls = []

    def _observe(self, call, owner, name):
        self.calls.append((call, f"{owner}/{name}"))
        error = self.errors.get(f"{owner}/{name}")
        if error is not None:
            raise error

    def fetch_languages(self, owner, name):
        self._observe("languages", owner, name)
        raw = self.languages.get(f"{owner}/{name}", {})
        ordered = [lang for lang, _ in sorted(raw.items(), key=lambda item: item[1], reverse=True)]
        return LanguageBreakdown(ordered=ordered, raw=raw)

    def fetch_issue_label_count(self, owner, name, label):
        self._observe("label_count", owner, name)
        return self.label_counts.get(f"{owner}/{name}", 0)

    def fetch_all_issues(self, owner, name, label, state="open"):
        self._observe("issues", owner, name)
        return list(self.issues.get(f"{owner}/{name}", []))

    def batch_fetch_issues(self, owner, name, numbers):
        self._observe("refetch", owner, name)
        full_name = f"{owner}/{name}"
        return {n: self.refetch[(full_name, n)] for n in numbers if (full_name, n) in self.refetch}

    def get_rate_limit_stats(self):
        return {"requests_sent": len(self.calls)}


class StubSummarizer:
    """Summarizer double returning fixed annotations."""

    def __init__(self, summary="test", intro="An intro", difficulty=2, first_steps="Read the code"):
        self.summary = summary
        self.intro = intro
        self.difficulty = difficulty
        self.first_steps = first_steps
        self.failing = set()
        self.calls = []

    def summarize_repo(self, owner, name, languages):
        self.calls.append(("repo", f"{owner}/{name}", list(languages)))
        if f"{owner}/{name}" in self.failing:
            raise SummarizerOutputError(f"Empty summary returned for {owner}/{name}")
        return RepoSummary(summary=self.summary)

    def analyze_issue(self, owner, name, title, body):
        self.calls.append(("issue", f"{owner}/{name}", title))
        if title in self.failing:
            raise SummarizerOutputError("Invalid issue analysis")
        return IssueAnalysis(intro=self.intro, difficulty=self.difficulty, first_steps=self.first_steps)


def github_issue(number, comments=0, assignees=None, state="open", title=None, body="Body", pull_request=False):
    """Build an issue payload shaped like the GitHub REST API."""
    issue = {
        "number": number,
        "title": title or f"Issue {number}",
        "body": body,
        "state": state,
        "comments": comments,
        "assignees": [{"login": login} for login in assignees or []],
        "created_at": "2025-01-10T10:00:00Z",
        "updated_at": "2025-01-11T10:00:00Z",
    }
    if pull_request:
        issue["pull_request"] = {"url": f"https://api.github.com/repos/a/b/pulls/{number}"}
    return issue


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def queue():
    return FakeQueue()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def summarizer():
    return StubSummarizer()


@pytest.fixture
def make_issue():
    return github_issue
