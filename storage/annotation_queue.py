"""
Table-backed annotation queue (`ai_summary_queue`).

Producers call send(); the annotation processor pulls pending rows in
priority order and moves each through processing -> completed/failed.
One row exists per (entity_type, entity_id): sending an entity again
re-arms its row as pending, which gives at-least-once delivery without
piling up duplicates.
"""

from typing import Dict, List, Optional

from models.data_models import AnnotationWorkItem, QueueItem
from storage.supabase_client import SupabaseClient, run_query, utc_now
from utils.logger import setup_logger

logger = setup_logger(name=__name__)


QUEUE_STATUSES = ("pending", "processing", "completed", "failed")


class AnnotationQueue:
    """Pull-based annotation queue stored in Supabase."""

    def __init__(self, supabase: SupabaseClient, max_attempts: int = 3, table_name: str = "ai_summary_queue"):
        """
        Args:
            supabase: Store whose client holds the queue table
            max_attempts: Failures after which an item stays failed instead of returning to pending
            table_name: Queue table name
        """
        self.client = supabase.client
        self.max_attempts = max_attempts
        self.table_name = table_name

    def send(self, item: AnnotationWorkItem) -> None:
        """Enqueue (or re-arm) an entity for annotation."""
        row = {
            "entity_type": item.kind,
            "entity_id": item.entity_id,
            "status": "pending",
            "priority": item.priority,
            "attempts": 0,
            "error_message": None,
            "processed_at": None,
            "created_at": utc_now(),
        }
        run_query(
            self.client.table(self.table_name).upsert(row, on_conflict="entity_type,entity_id"),
            f"enqueue {item.kind} {item.entity_id}",
        )
        logger.debug(f"Queued {item.kind} {item.entity_id} (priority {item.priority})")

    def select_pending(self, limit: int = 8) -> List[QueueItem]:
        """Pending items, highest priority first, then oldest first."""
        query = (
            self.client.table(self.table_name)
            .select("*")
            .eq("status", "pending")
            .order("priority", desc=True)
            .order("created_at")
            .limit(limit)
        )
        result = run_query(query, "select pending queue items")
        return [QueueItem(**row) for row in result.data or []]

    def mark_processing(self, item_id: int) -> None:
        run_query(
            self.client.table(self.table_name).update({"status": "processing"}).eq("id", item_id),
            f"mark queue item {item_id} processing",
        )

    def mark_completed(self, item_id: int) -> None:
        run_query(
            self.client.table(self.table_name)
            .update({"status": "completed", "processed_at": utc_now(), "error_message": None})
            .eq("id", item_id),
            f"mark queue item {item_id} completed",
        )

    def mark_failed(self, item_id: int, error_message: str, attempts: int) -> str:
        """
        Record a failed attempt.

        Args:
            item_id: Queue row id
            error_message: Error text (truncated to 1000 chars)
            attempts: Attempt counter including this failure

        Returns:
            The status written: "failed" once attempts reach max_attempts,
            otherwise "pending" so a later batch retries it
        """
        status = "failed" if attempts >= self.max_attempts else "pending"
        run_query(
            self.client.table(self.table_name)
            .update({
                "status": status,
                "attempts": attempts,
                "error_message": error_message[:1000],
                "processed_at": utc_now(),
            })
            .eq("id", item_id),
            f"mark queue item {item_id} failed",
        )
        return status

    def pending_count(self) -> int:
        query = self.client.table(self.table_name).select("*", count="exact", head=True).eq("status", "pending")
        result = run_query(query, "count pending queue items")
        return result.count or 0

    def stats(self) -> Dict[str, Optional[int]]:
        """Row counts per status."""
        counts: Dict[str, Optional[int]] = {}
        for status in QUEUE_STATUSES:
            query = self.client.table(self.table_name).select("*", count="exact", head=True).eq("status", status)
            result = run_query(query, f"count {status} queue items")
            counts[status] = result.count or 0
        counts["total"] = sum(counts.values())
        return counts
