"""
Issue reconciliation and closed-issue detection.

Issues are reconciled like repositories, hashing only comment count,
state and assignees. A record's hash is stored only after its
annotation is queued. New issues are inserted in chunks sized to the
store's per-write parameter ceiling; updates are applied one at a time.

Closure is never inferred from absence alone: stored open issues missing
from the current listing are re-fetched, and only a confirmed
state="closed" is written.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from models.data_models import AnnotationWorkItem, IssueRecord, IssueStats, RepositoryRecord
from pipeline.repo_reconciler import FATAL_ERRORS, enqueue_then_commit_hash
from storage.supabase_client import chunked
from utils.hashing import hash_issue_metadata

logger = logging.getLogger(__name__)


ISSUE_PRIORITY = 0


def assignee_logins(issue: dict[str, Any]) -> Optional[list[str]]:
    """Assignee usernames, or None when the issue is unassigned."""
    logins = [a["login"] for a in issue.get("assignees") or [] if a.get("login")]
    return logins or None


def is_pull_request(issue: dict[str, Any]) -> bool:
    return "pull_request" in issue


class IssueReconciler:
    """Reconciles a repository's good-first issues against the record store."""

    def __init__(self, store: Any, gateway: Any, queue: Any, insert_chunk_size: int = 6):
        """
        Args:
            store: Record store (SupabaseClient or compatible)
            gateway: GitHubGateway
            queue: Annotation queue exposing send(AnnotationWorkItem)
            insert_chunk_size: Issues per insert write
        """
        if insert_chunk_size < 1:
            raise ValueError("insert_chunk_size must be at least 1")
        self.store = store
        self.gateway = gateway
        self.queue = queue
        self.insert_chunk_size = insert_chunk_size

    def process_repos(self, repos: Iterable[RepositoryRecord]) -> IssueStats:
        """Reconcile issues for several repositories, isolating per-repo failures."""
        stats = IssueStats()
        for repo in repos:
            self.process_repo(repo, stats)
        return stats

    def process_repo(self, repo: RepositoryRecord, stats: IssueStats) -> None:
        """Reconcile one repository's issues, folding the outcome into `stats`."""
        try:
            stats.merge(self.process_repo_issues(repo))
        except FATAL_ERRORS:
            raise
        except Exception as e:
            logger.error(f"✗ Error processing issues for {repo.full_name}: {e}")
            stats.errors += 1

    def process_repo_issues(self, repo: RepositoryRecord, label: Optional[str] = None) -> IssueStats:
        """
        Reconcile all open issues carrying the repository's label.

        Args:
            repo: Stored repository
            label: Label override (default: the repository's good_first_issue_tag)

        Returns:
            IssueStats, including the number of issues confirmed closed
        """
        label = label or repo.good_first_issue_tag
        listing = self.gateway.fetch_all_issues(repo.owner, repo.name, label, state="open")
        issues = [issue for issue in listing if not is_pull_request(issue)]
        logger.info(f"{repo.full_name}: {len(issues)} open issues labeled '{label}'")

        stats = IssueStats()
        existing = self.store.find_issues_by_numbers(repo.id, [i["number"] for i in issues]) if issues else {}

        to_create: list[dict[str, Any]] = []
        observed_hashes: dict[int, str] = {}
        to_update: list[tuple[IssueRecord, dict[str, Any]]] = []

        for issue in issues:
            stats.processed += 1
            try:
                assignees = assignee_logins(issue)
                state = issue.get("state", "open")
                metadata_hash = hash_issue_metadata(issue.get("comments", 0), state, assignees)
                record = existing.get(issue["number"])
                observed_hashes[issue["number"]] = metadata_hash

                if record is None:
                    to_create.append(self._new_issue_row(repo, issue, assignees))
                elif record.metadata_hash != metadata_hash:
                    to_update.append((record, self._changed_fields(issue, assignees)))
                else:
                    stats.unchanged += 1
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed issue in {repo.full_name}: {e}")
                stats.errors += 1

        self._insert_new(repo, to_create, observed_hashes, stats)
        self._apply_updates(repo, to_update, observed_hashes, stats)

        stats.closed = self.detect_closed_issues(repo, issues)

        logger.info(
            f"{repo.full_name}: {stats.new} new, {stats.updated} updated, {stats.unchanged} unchanged, "
            f"{stats.closed} closed, {stats.queued} queued, {stats.errors} errors"
        )
        return stats

    def _new_issue_row(
        self,
        repo: RepositoryRecord,
        issue: dict[str, Any],
        assignees: Optional[list[str]],
    ) -> dict[str, Any]:
        return {
            "repo_id": repo.id,
            "github_issue_number": issue["number"],
            "title": issue["title"],
            "body": issue.get("body"),
            "state": issue.get("state", "open"),
            "comment_count": issue.get("comments", 0),
            "assignee_status": assignees,
            "github_url": f"https://github.com/{repo.owner}/{repo.name}/issues/{issue['number']}",
            "metadata_hash": None,
            "created_at": issue.get("created_at"),
            "updated_at": issue.get("updated_at"),
            "scraped_at": datetime.now(timezone.utc).isoformat(),
        }

    def _changed_fields(
        self,
        issue: dict[str, Any],
        assignees: Optional[list[str]],
    ) -> dict[str, Any]:
        return {
            "title": issue["title"],
            "body": issue.get("body"),
            "state": issue.get("state", "open"),
            "comment_count": issue.get("comments", 0),
            "assignee_status": assignees,
            "metadata_hash": None,
            "updated_at": issue.get("updated_at"),
            "scraped_at": datetime.now(timezone.utc).isoformat(),
        }

    def _insert_new(
        self,
        repo: RepositoryRecord,
        rows: list[dict[str, Any]],
        observed_hashes: dict[int, str],
        stats: IssueStats,
    ) -> None:
        """
        Insert new issues chunk by chunk, queueing each chunk's records right after its write.

        A failed chunk is counted and skipped. Its issues remain unstored, so
        the next run sees them as new again and queues them then.
        """
        for index, chunk in enumerate(chunked(rows, self.insert_chunk_size), start=1):
            try:
                created = self.store.batch_insert_issues(chunk)
            except FATAL_ERRORS:
                raise
            except Exception as e:
                numbers = [row["github_issue_number"] for row in chunk]
                logger.error(f"✗ Failed to insert issue chunk {index} for {repo.full_name} {numbers}: {e}")
                stats.errors += len(chunk)
                continue

            stats.new += len(created)
            for record in created:
                self._enqueue(repo, record, observed_hashes[record.github_issue_number], stats)

    def _apply_updates(
        self,
        repo: RepositoryRecord,
        updates: list[tuple[IssueRecord, dict[str, Any]]],
        observed_hashes: dict[int, str],
        stats: IssueStats,
    ) -> None:
        for record, fields in updates:
            try:
                self.store.update_issue(record.id, fields)
            except FATAL_ERRORS:
                raise
            except Exception as e:
                logger.error(f"✗ Failed to update {repo.full_name}#{record.github_issue_number}: {e}")
                stats.errors += 1
                continue

            stats.updated += 1
            self._enqueue(repo, record, observed_hashes[record.github_issue_number], stats)

    def _enqueue(self, repo: RepositoryRecord, record: IssueRecord, metadata_hash: str, stats: IssueStats) -> None:
        item = AnnotationWorkItem(kind="issue", entity_id=record.id, priority=ISSUE_PRIORITY)
        queued = enqueue_then_commit_hash(
            self.queue,
            item,
            lambda: self.store.update_issue(record.id, {"metadata_hash": metadata_hash}),
            f"issue {repo.full_name}#{record.github_issue_number}",
        )
        if queued:
            stats.queued += 1
        else:
            stats.errors += 1

    def detect_closed_issues(self, repo: RepositoryRecord, current_open: list[dict[str, Any]]) -> int:
        """
        Mark stored open issues as closed when GitHub confirms they are closed.

        Args:
            repo: Stored repository
            current_open: The open issue listing just fetched for this repository

        Returns:
            Number of issues written as closed
        """
        open_numbers = {issue["number"] for issue in current_open}
        stored_open = self.store.get_open_issues(repo.id)
        candidates = [record for record in stored_open if record.github_issue_number not in open_numbers]
        if not candidates:
            return 0

        logger.info(f"{repo.full_name}: verifying {len(candidates)} possibly closed issues")
        fetched = self.gateway.batch_fetch_issues(
            repo.owner, repo.name, [record.github_issue_number for record in candidates]
        )

        closed = 0
        for record in candidates:
            number = record.github_issue_number
            issue = fetched.get(number)

            if issue is None:
                logger.warning(f"{repo.full_name}#{number} could not be re-fetched, leaving it untouched")
                continue

            if issue.get("state") != "closed":
                logger.debug(f"{repo.full_name}#{number} is still open (label removed?), leaving it untouched")
                continue

            assignees = assignee_logins(issue)
            comment_count = issue.get("comments", record.comment_count)
            try:
                self.store.update_issue(record.id, {
                    "state": "closed",
                    "comment_count": comment_count,
                    "assignee_status": assignees,
                    "metadata_hash": hash_issue_metadata(comment_count, "closed", assignees),
                    "updated_at": issue.get("updated_at"),
                    "scraped_at": datetime.now(timezone.utc).isoformat(),
                })
            except FATAL_ERRORS:
                raise
            except Exception as e:
                logger.error(f"✗ Failed to close {repo.full_name}#{number}: {e}")
                continue

            closed += 1
            logger.info(f"✓ Closed {repo.full_name}#{number}")

        return closed
