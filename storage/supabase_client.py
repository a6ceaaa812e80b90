"""
Supabase record store for repositories, issues and annotations.

Uniqueness is enforced by the schema:
- repos: (owner, name)
- issues: (repo_id, github_issue_number)
- ai_summaries: (entity_type, entity_id), written with upsert

Every query goes through run_query(), which turns client failures into the
pipeline's error taxonomy: connection exhaustion becomes
ResourceCeilingExceeded, everything else StorageError.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from models.data_models import AnnotationRecord, IssueRecord, RepositoryRecord
from pipeline.exceptions import (
    CeilingKind,
    ContribotError,
    ResourceCeilingExceeded,
    StorageError,
)
from utils.logger import setup_logger

logger = setup_logger(name=__name__)


# The store rejects single writes carrying more bound parameters than this
MAX_WRITE_PARAMETERS = 100

# Postgres / PostgREST codes meaning "no connection available"
CONNECTION_CEILING_CODES = {
    "53300",     # too_many_connections
    "53400",     # configuration_limit_exceeded
    "PGRST003",  # timed out acquiring a connection from the pool
}

CONNECTION_CEILING_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


def classify_storage_error(error: Exception, action: str) -> ContribotError:
    """
    Map a client exception onto the pipeline's error taxonomy.

    Args:
        error: Exception raised by the Supabase client
        action: Short description of the operation, for the message

    Returns:
        ResourceCeilingExceeded for connection exhaustion, StorageError otherwise
        (pipeline errors are returned unchanged)
    """
    if isinstance(error, ContribotError):
        return error
    if isinstance(error, CONNECTION_CEILING_ERRORS):
        return ResourceCeilingExceeded(
            f"Storage connection unavailable while trying to {action}: {error}",
            kind=CeilingKind.STORAGE_CONNECTIONS,
        )
    if isinstance(error, APIError) and error.code in CONNECTION_CEILING_CODES:
        return ResourceCeilingExceeded(
            f"Storage connection limit reached while trying to {action}: {error.message}",
            kind=CeilingKind.STORAGE_CONNECTIONS,
        )
    return StorageError(f"Failed to {action}: {error}")


def run_query(query: Any, action: str) -> Any:
    """Execute a query builder, classifying any failure."""
    try:
        return query.execute()
    except Exception as e:
        classified = classify_storage_error(e, action)
        logger.error(str(classified))
        raise classified from e


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def chunked(items: List[Any], size: int) -> Iterable[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class SupabaseClient:
    """Client for the Contribot tables in Supabase."""

    def __init__(self, supabase_url: str, supabase_key: str):
        """
        Initialize Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key (service role key for writes)
        """
        self.client: Client = create_client(supabase_url, supabase_key)
        self.repos_table = "repos"
        self.issues_table = "issues"
        self.summaries_table = "ai_summaries"
        logger.info(f"Initialized SupabaseClient for {supabase_url}")

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    def find_repo_by_owner_name(self, owner: str, name: str) -> Optional[RepositoryRecord]:
        """Look up a repository by its unique (owner, name) key."""
        query = (
            self.client.table(self.repos_table)
            .select("*")
            .eq("owner", owner)
            .eq("name", name)
            .limit(1)
        )
        result = run_query(query, f"look up repo {owner}/{name}")
        return RepositoryRecord(**result.data[0]) if result.data else None

    def get_repo(self, repo_id: int) -> Optional[RepositoryRecord]:
        query = self.client.table(self.repos_table).select("*").eq("id", repo_id).limit(1)
        result = run_query(query, f"get repo {repo_id}")
        return RepositoryRecord(**result.data[0]) if result.data else None

    def insert_repo(self, record: Dict[str, Any]) -> RepositoryRecord:
        """
        Insert a newly discovered repository.

        Args:
            record: Column values (owner, name, github_url, good_first_issue_tag,
                    data_source_id, metadata_hash, and optionally languages/open count)

        Returns:
            The stored RepositoryRecord (with its generated id)
        """
        now = utc_now()
        row = {**record, "created_at": now, "updated_at": now}
        result = run_query(
            self.client.table(self.repos_table).insert(row),
            f"insert repo {record.get('owner')}/{record.get('name')}",
        )
        if not result.data:
            raise StorageError(f"Insert of repo {record.get('owner')}/{record.get('name')} returned no row")
        logger.debug(f"Inserted repo {record.get('owner')}/{record.get('name')}")
        return RepositoryRecord(**result.data[0])

    def update_repo(self, repo_id: int, fields: Dict[str, Any]) -> None:
        row = {**fields, "updated_at": utc_now()}
        run_query(
            self.client.table(self.repos_table).update(row).eq("id", repo_id),
            f"update repo {repo_id}",
        )

    def get_all_repos(self, page_size: int = 1000) -> List[RepositoryRecord]:
        """
        Fetch every stored repository, ordered by id.

        Pages through results since Supabase caps a single select at 1000 rows.
        """
        repos: List[RepositoryRecord] = []
        offset = 0
        while True:
            query = (
                self.client.table(self.repos_table)
                .select("*")
                .order("id")
                .range(offset, offset + page_size - 1)
            )
            result = run_query(query, "list repos")
            rows = result.data or []
            repos.extend(RepositoryRecord(**row) for row in rows)
            if len(rows) < page_size:
                break
            offset += page_size

        logger.debug(f"Loaded {len(repos)} repos")
        return repos

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def find_issues_by_numbers(self, repo_id: int, numbers: List[int]) -> Dict[int, IssueRecord]:
        """
        Look up stored issues for a repository by issue number.

        Returns:
            Dict mapping issue number -> IssueRecord (numbers not stored are absent)
        """
        found: Dict[int, IssueRecord] = {}
        for numbers_chunk in chunked(list(numbers), MAX_WRITE_PARAMETERS):
            query = (
                self.client.table(self.issues_table)
                .select("*")
                .eq("repo_id", repo_id)
                .in_("github_issue_number", numbers_chunk)
            )
            result = run_query(query, f"look up issues of repo {repo_id}")
            for row in result.data or []:
                record = IssueRecord(**row)
                found[record.github_issue_number] = record
        return found

    def get_issue(self, issue_id: int) -> Optional[IssueRecord]:
        query = self.client.table(self.issues_table).select("*").eq("id", issue_id).limit(1)
        result = run_query(query, f"get issue {issue_id}")
        return IssueRecord(**result.data[0]) if result.data else None

    def get_open_issues(self, repo_id: int) -> List[IssueRecord]:
        """Fetch issues this store still considers open for a repository."""
        query = (
            self.client.table(self.issues_table)
            .select("*")
            .eq("repo_id", repo_id)
            .eq("state", "open")
        )
        result = run_query(query, f"list open issues of repo {repo_id}")
        return [IssueRecord(**row) for row in result.data or []]

    def batch_insert_issues(self, rows: List[Dict[str, Any]]) -> List[IssueRecord]:
        """
        Insert a chunk of new issues in one write.

        Args:
            rows: Issue column values. Callers chunk so that rows x columns
                  stays within MAX_WRITE_PARAMETERS.

        Returns:
            The stored IssueRecords, with generated ids

        Raises:
            StorageError: If the chunk exceeds the parameter ceiling or the write fails
        """
        if not rows:
            return []

        parameters = len(rows) * max(len(row) for row in rows)
        if parameters > MAX_WRITE_PARAMETERS:
            raise StorageError(
                f"Issue insert of {len(rows)} rows needs {parameters} parameters "
                f"(limit {MAX_WRITE_PARAMETERS})"
            )

        result = run_query(
            self.client.table(self.issues_table).insert(rows),
            f"insert {len(rows)} issues",
        )
        logger.debug(f"Inserted {len(result.data or [])} issues")
        return [IssueRecord(**row) for row in result.data or []]

    def update_issue(self, issue_id: int, fields: Dict[str, Any]) -> None:
        run_query(
            self.client.table(self.issues_table).update(fields).eq("id", issue_id),
            f"update issue {issue_id}",
        )

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    def upsert_annotation(self, annotation: AnnotationRecord) -> None:
        """
        Store an annotation, replacing any previous one for the same entity.

        Only the fields for the entity's kind are written, so a repo summary
        never clears issue fields and vice versa.
        """
        row = annotation.model_dump(exclude_none=True)
        row["updated_at"] = utc_now()
        run_query(
            self.client.table(self.summaries_table).upsert(row, on_conflict="entity_type,entity_id"),
            f"store annotation for {annotation.entity_type} {annotation.entity_id}",
        )
        logger.debug(f"Stored annotation for {annotation.entity_type} {annotation.entity_id}")

    def get_annotation(self, entity_type: str, entity_id: int) -> Optional[AnnotationRecord]:
        query = (
            self.client.table(self.summaries_table)
            .select("*")
            .eq("entity_type", entity_type)
            .eq("entity_id", entity_id)
            .limit(1)
        )
        result = run_query(query, f"get annotation for {entity_type} {entity_id}")
        if not result.data:
            return None
        row = result.data[0]
        return AnnotationRecord(**{k: row.get(k) for k in AnnotationRecord.model_fields})
