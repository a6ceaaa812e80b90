"""Data models for repositories, issues, annotation work and run results."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field


class RepoReference(BaseModel):
    """A candidate repository as normalized by a source adapter."""
    owner: str
    name: str
    source_id: str
    label: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class SourceBatch(BaseModel):
    """References discovered from one source, in source order."""
    source_id: str
    references: list[RepoReference] = Field(default_factory=list)


class LanguageBreakdown(BaseModel):
    """Repository languages, ordered by byte volume (largest first)."""
    ordered: list[str] = Field(default_factory=list)
    raw: dict[str, int] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.ordered


class RepositoryRecord(BaseModel):
    """Row in the `repos` table.

    (owner, name) is unique. metadata_hash is recomputed on every
    observation and compared against the stored value.
    """

    id: int
    owner: str
    name: str
    github_url: str
    languages_ordered: Optional[list[str]] = None
    languages_raw: Optional[dict[str, int]] = None
    good_first_issue_tag: str
    data_source_id: str
    metadata_hash: Optional[str] = None
    open_issues_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class IssueRecord(BaseModel):
    """Row in the `issues` table.

    (repo_id, github_issue_number) is unique. The hash covers comment
    count, state and assignees only: title/body edits never change it.
    """

    id: int
    repo_id: int
    github_issue_number: int
    title: str
    body: Optional[str] = None
    state: Literal["open", "closed"] = "open"
    comment_count: int = 0
    assignee_status: Optional[list[str]] = None
    github_url: str
    metadata_hash: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    scraped_at: Optional[datetime] = None


EntityKind = Literal["repo", "issue"]


class AnnotationWorkItem(BaseModel):
    """A "reprocess this entity" message for the annotation queue."""
    kind: EntityKind
    entity_id: int
    priority: int = 0


class QueueItem(BaseModel):
    """Row in the `ai_summary_queue` table (pull-based consumption)."""
    id: int
    entity_type: EntityKind
    entity_id: int
    status: Literal["pending", "processing", "completed", "failed"] = "pending"
    priority: int = 0
    attempts: int = 0
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class AnnotationRecord(BaseModel):
    """Row in the `ai_summaries` table, unique on (entity_type, entity_id).

    Overwritten, never appended, when an entity is reprocessed.
    """

    entity_type: EntityKind
    entity_id: int
    repo_summary: Optional[str] = None
    issue_intro: Optional[str] = None
    difficulty_score: Optional[int] = Field(default=None, ge=1, le=5)
    first_steps: Optional[str] = None


class ResumptionCursor(BaseModel):
    """Checkpoint left behind when a run pauses on a resource ceiling.

    `last_index` is the index of the last attempted item: within the
    source's reference list for phase "repos", within the stored
    repository list for phase "issues". Resuming re-attempts that item.
    """

    phase: Literal["repos", "issues"] = "repos"
    source_id: Optional[str] = None
    last_index: int = Field(default=0, ge=0)


class RepoStats(BaseModel):
    """Counters reported by the repository reconciler."""
    discovered: int = 0
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    queued: int = 0
    errors: int = 0

    def merge(self, other: "RepoStats") -> "RepoStats":
        """Add another step's counters into this one (in place) and return self."""
        for field in type(self).model_fields:
            setattr(self, field, getattr(self, field) + getattr(other, field))
        return self


class IssueStats(BaseModel):
    """Counters reported by the issue reconciler."""
    processed: int = 0
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    queued: int = 0
    errors: int = 0
    closed: int = 0

    def merge(self, other: "IssueStats") -> "IssueStats":
        for field in type(self).model_fields:
            setattr(self, field, getattr(self, field) + getattr(other, field))
        return self


class AnnotationStats(BaseModel):
    """Counters reported by the annotation batch processor.

    `remaining` is the pending queue size after the batch, or None when
    it could not be determined.
    """

    processed: int = 0
    success: int = 0
    failed: int = 0
    remaining: Optional[int] = None

    def merge(self, other: "AnnotationStats") -> "AnnotationStats":
        self.processed += other.processed
        self.success += other.success
        self.failed += other.failed
        # Latest observation wins for a point-in-time gauge
        self.remaining = other.remaining
        return self


class BatchResult(BaseModel):
    """Outcome of one annotation batch."""
    stats: AnnotationStats
    has_more: bool = False


class RunState(str, Enum):
    """States of the run orchestrator."""
    FETCHING_SOURCES = "fetching_sources"
    RECONCILING_REPOS = "reconciling_repos"
    FETCHING_REPOS_FOR_ISSUES = "fetching_repos_for_issues"
    RECONCILING_ISSUES = "reconciling_issues"
    DRAINING_ANNOTATION_QUEUE = "draining_annotation_queue"
    SUMMARIZING = "summarizing"
    DONE = "done"
    ABORTED = "aborted"
    PAUSED = "paused"


class RunResult(BaseModel):
    """Final report of an orchestrated run."""
    run_id: str
    state: RunState
    repos: RepoStats = Field(default_factory=RepoStats)
    issues: IssueStats = Field(default_factory=IssueStats)
    annotations: AnnotationStats = Field(default_factory=AnnotationStats)
    cursor: Optional[ResumptionCursor] = None
    continuation_queued: bool = False
    auth_failed: bool = False
    abort_reason: Optional[str] = None
    github_requests: dict[str, Any] = Field(default_factory=dict)
    duration_seconds: float = 0.0
