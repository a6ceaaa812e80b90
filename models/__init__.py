"""Data models for the Contribot pipeline."""

from models.config_models import Config, CredentialsConfig, PipelineConfig
from models.data_models import (
    AnnotationRecord,
    AnnotationStats,
    AnnotationWorkItem,
    BatchResult,
    IssueRecord,
    IssueStats,
    LanguageBreakdown,
    QueueItem,
    RepoReference,
    RepoStats,
    RepositoryRecord,
    ResumptionCursor,
    RunResult,
    RunState,
    SourceBatch,
)

__all__ = [
    "Config",
    "CredentialsConfig",
    "PipelineConfig",
    "AnnotationRecord",
    "AnnotationStats",
    "AnnotationWorkItem",
    "BatchResult",
    "IssueRecord",
    "IssueStats",
    "LanguageBreakdown",
    "QueueItem",
    "RepoReference",
    "RepoStats",
    "RepositoryRecord",
    "ResumptionCursor",
    "RunResult",
    "RunState",
    "SourceBatch",
]
