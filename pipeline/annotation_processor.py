"""
Annotation batch processor.

Pulls pending work items from the annotation queue, asks the summarizer
for a repo summary or an issue analysis, and stores the result. Each item
succeeds or fails on its own; nothing raised for one item stops the batch.
"""

import logging
import time
from typing import Any, Callable, Optional

from models.data_models import AnnotationRecord, AnnotationStats, BatchResult, QueueItem
from pipeline.exceptions import NotFound

logger = logging.getLogger(__name__)


class AnnotationProcessor:
    """Drains the annotation queue in small batches."""

    def __init__(self, store: Any, queue: Any, summarizer: Any):
        """
        Args:
            store: Record store with get_repo/get_issue/upsert_annotation
            queue: AnnotationQueue (pull side)
            summarizer: Summarizer with summarize_repo/analyze_issue
        """
        self.store = store
        self.queue = queue
        self.summarizer = summarizer

    def process_batch(self, batch_size: int = 8) -> BatchResult:
        """
        Process up to `batch_size` pending items.

        Returns:
            BatchResult whose stats.remaining is the pending count after the
            batch (None if the count failed) and has_more tells whether
            another batch should be scheduled
        """
        items = self.queue.select_pending(batch_size)
        stats = AnnotationStats()

        if not items:
            stats.remaining = 0
            logger.info("No pending annotation items")
            return BatchResult(stats=stats, has_more=False)

        logger.info(f"Processing {len(items)} annotation items")
        for item in items:
            stats.processed += 1
            if self._process_item(item):
                stats.success += 1
            else:
                stats.failed += 1

        try:
            has_more = len(self.queue.select_pending(1)) > 0
        except Exception as e:
            # A full batch suggests more work is waiting
            logger.warning(f"Could not probe for pending annotation items: {e}")
            has_more = len(items) >= batch_size

        try:
            stats.remaining = self.queue.pending_count()
        except Exception as e:
            logger.warning(f"Could not count pending annotation items: {e}")
            stats.remaining = None

        logger.info(
            f"Batch complete: {stats.success}/{stats.processed} succeeded, {stats.failed} failed, "
            f"remaining={stats.remaining if stats.remaining is not None else 'unknown'}"
        )
        return BatchResult(stats=stats, has_more=has_more)

    def drain(
        self,
        batch_size: int = 8,
        max_batches: Optional[int] = None,
        max_seconds: float = 3600,
        clock: Callable[[], float] = time.monotonic,
    ) -> AnnotationStats:
        """
        Process batches until the queue is empty or a budget is reached.

        The wall-clock budget is checked between batches only; a batch
        that has started always runs to completion.
        """
        totals = AnnotationStats()
        started = clock()
        batches = 0

        while max_batches is None or batches < max_batches:
            if clock() - started >= max_seconds:
                logger.warning(f"Annotation time budget of {max_seconds}s reached, stopping")
                break

            result = self.process_batch(batch_size)
            batches += 1
            totals.merge(result.stats)
            if not result.has_more:
                break

        logger.info(f"Annotation drain finished after {batches} batches: {totals.success} succeeded, {totals.failed} failed")
        return totals

    def _process_item(self, item: QueueItem) -> bool:
        try:
            self.queue.mark_processing(item.id)

            if item.entity_type == "repo":
                annotation = self._annotate_repo(item.entity_id)
            elif item.entity_type == "issue":
                annotation = self._annotate_issue(item.entity_id)
            else:
                raise ValueError(f"Unknown entity type: {item.entity_type}")

            self.store.upsert_annotation(annotation)
            self.queue.mark_completed(item.id)
            return True

        except Exception as e:
            logger.error(f"✗ Failed to annotate {item.entity_type} {item.entity_id}: {e}")
            try:
                self.queue.mark_failed(item.id, str(e), item.attempts + 1)
            except Exception as mark_error:
                logger.error(f"Could not mark queue item {item.id} failed: {mark_error}")
            return False

    def _annotate_repo(self, repo_id: int) -> AnnotationRecord:
        repo = self.store.get_repo(repo_id)
        if repo is None:
            raise NotFound(f"Repo {repo_id} not found")

        result = self.summarizer.summarize_repo(repo.owner, repo.name, repo.languages_ordered or [])
        return AnnotationRecord(entity_type="repo", entity_id=repo_id, repo_summary=result.summary)

    def _annotate_issue(self, issue_id: int) -> AnnotationRecord:
        issue = self.store.get_issue(issue_id)
        if issue is None:
            raise NotFound(f"Issue {issue_id} not found")

        repo = self.store.get_repo(issue.repo_id)
        if repo is None:
            raise NotFound(f"Repo {issue.repo_id} for issue {issue_id} not found")

        result = self.summarizer.analyze_issue(repo.owner, repo.name, issue.title, issue.body)
        return AnnotationRecord(
            entity_type="issue",
            entity_id=issue_id,
            issue_intro=result.intro,
            difficulty_score=result.difficulty,
            first_steps=result.first_steps,
        )
