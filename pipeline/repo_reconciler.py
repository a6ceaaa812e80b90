"""
Repository reconciliation.

For each discovered repository reference:
1. Observe it on GitHub (label-scoped open issue count, or languages)
2. Hash the tracked metadata and compare with the stored record
3. Insert new / update changed / skip unchanged
4. Queue new and changed repositories for annotation, then store their hash

One reconciler serves both pipeline variants through ReconcileDepth, so
hashing and upsert rules are identical regardless of depth.
"""

import logging
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from models.data_models import AnnotationWorkItem, RepoReference, RepoStats, RepositoryRecord
from pipeline.exceptions import AuthenticationFailed, ResourceCeilingExceeded
from utils.hashing import hash_repo_metadata

logger = logging.getLogger(__name__)


NEW_REPO_PRIORITY = 100
UPDATED_REPO_PRIORITY = 50

# Propagate past the per-item boundary
FATAL_ERRORS = (AuthenticationFailed, ResourceCeilingExceeded)


class ReconcileDepth(str, Enum):
    """How much GitHub metadata to observe per repository."""
    COUNT_ONLY = "count"
    FULL_METADATA = "full"


def enqueue_then_commit_hash(
    queue: Any,
    item: AnnotationWorkItem,
    commit_hash: Callable[[], None],
    description: str,
) -> bool:
    """
    Queue an annotation work item, then store the record's new hash.

    Records are written with an empty hash and only get the observed one
    after their work item is queued. A record whose send failed therefore
    still looks changed to the next observation and is queued again.

    Raises:
        AuthenticationFailed, ResourceCeilingExceeded: From either write,
            so the caller can abort or pause; resuming re-attempts this record

    Returns:
        True if the item was queued
    """
    try:
        queue.send(item)
    except FATAL_ERRORS:
        raise
    except Exception as e:
        logger.error(f"Failed to queue {description} for annotation: {e}")
        return False

    try:
        commit_hash()
    except FATAL_ERRORS:
        raise
    except Exception as e:
        logger.warning(f"Queued {description} but failed to store its hash, it will be queued again next run: {e}")
    return True


class RepoReconciler:
    """Reconciles discovered repositories against the record store."""

    def __init__(
        self,
        store: Any,
        gateway: Any,
        queue: Any,
        depth: ReconcileDepth = ReconcileDepth.COUNT_ONLY,
    ):
        """
        Args:
            store: Record store (SupabaseClient or compatible)
            gateway: GitHubGateway
            queue: Annotation queue exposing send(AnnotationWorkItem)
            depth: COUNT_ONLY tracks the open good-first-issue count;
                   FULL_METADATA tracks languages and includes them in the hash
        """
        self.store = store
        self.gateway = gateway
        self.queue = queue
        self.depth = ReconcileDepth(depth)

    def process_repos(self, refs: Iterable[RepoReference]) -> RepoStats:
        """
        Reconcile a list of references in order.

        Raises:
            AuthenticationFailed: Immediately, leaving later references unprocessed
            ResourceCeilingExceeded: Immediately, so the caller can checkpoint
        """
        stats = RepoStats()
        for ref in refs:
            self.process_repo(ref, stats)

        logger.info(
            f"Repos: {stats.discovered} discovered, {stats.new} new, {stats.updated} updated, "
            f"{stats.unchanged} unchanged, {stats.queued} queued, {stats.errors} errors"
        )
        return stats

    def process_repo(self, ref: RepoReference, stats: RepoStats) -> None:
        """Reconcile one reference, folding the outcome into `stats`."""
        stats.discovered += 1
        try:
            self._reconcile(ref, stats)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            logger.error(f"✗ Error processing repo {ref.full_name}: {e}")
            stats.errors += 1

    def _reconcile(self, ref: RepoReference, stats: RepoStats) -> None:
        open_count: Optional[int] = None
        languages = None

        if self.depth == ReconcileDepth.FULL_METADATA:
            languages = self.gateway.fetch_languages(ref.owner, ref.name)
            if languages.is_empty():
                logger.warning(f"No languages found for {ref.full_name}, skipping")
                stats.errors += 1
                return
        else:
            open_count = self.gateway.fetch_issue_label_count(ref.owner, ref.name, ref.label)

        existing = self.store.find_repo_by_owner_name(ref.owner, ref.name)
        metadata_hash = hash_repo_metadata(
            ref.owner,
            ref.name,
            ref.label,
            ref.source_id,
            languages.ordered if languages is not None else None,
        )

        fields: dict[str, Any] = {
            "good_first_issue_tag": ref.label,
            "data_source_id": ref.source_id,
            "metadata_hash": None,
        }
        if languages is not None:
            fields["languages_ordered"] = languages.ordered
            fields["languages_raw"] = languages.raw
        if open_count is not None:
            fields["open_issues_count"] = open_count

        if existing is None:
            record = self.store.insert_repo({
                "owner": ref.owner,
                "name": ref.name,
                "github_url": f"https://github.com/{ref.owner}/{ref.name}",
                **fields,
            })
            stats.new += 1
            logger.info(f"✓ New repo: {ref.full_name}")
            self._enqueue(record, NEW_REPO_PRIORITY, metadata_hash, stats)
            return

        count_changed = open_count is not None and open_count != existing.open_issues_count
        if existing.metadata_hash != metadata_hash or count_changed:
            self.store.update_repo(existing.id, fields)
            stats.updated += 1
            logger.info(f"✓ Updated repo: {ref.full_name}")
            self._enqueue(existing, UPDATED_REPO_PRIORITY, metadata_hash, stats)
            return

        stats.unchanged += 1
        logger.debug(f"Unchanged repo: {ref.full_name}")

    def _enqueue(self, record: RepositoryRecord, priority: int, metadata_hash: str, stats: RepoStats) -> None:
        item = AnnotationWorkItem(kind="repo", entity_id=record.id, priority=priority)
        queued = enqueue_then_commit_hash(
            self.queue,
            item,
            lambda: self.store.update_repo(record.id, {"metadata_hash": metadata_hash}),
            f"repo {record.full_name}",
        )
        if queued:
            stats.queued += 1
        else:
            stats.errors += 1
