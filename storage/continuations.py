"""Continuation channel: hands resumption cursors to the next run."""

from typing import Optional, Tuple

from models.data_models import ResumptionCursor
from storage.supabase_client import SupabaseClient, run_query, utc_now
from utils.logger import setup_logger

logger = setup_logger(name=__name__)


CONTINUATION_PRIORITY = 1000


class ContinuationChannel:
    """
    Stores cursors in `scraper_continuations` for a later run to pick up.

    Delivery is best-effort: send() raises on failure and the orchestrator
    reports that automatic continuation is not guaranteed.
    """

    def __init__(self, supabase: SupabaseClient, table_name: str = "scraper_continuations"):
        self.client = supabase.client
        self.table_name = table_name

    def send(self, cursor: ResumptionCursor, run_id: Optional[str] = None) -> None:
        row = {
            **cursor.model_dump(),
            "run_id": run_id,
            "priority": CONTINUATION_PRIORITY,
            "consumed": False,
            "created_at": utc_now(),
        }
        run_query(self.client.table(self.table_name).insert(row), "queue continuation")
        logger.info(
            f"Queued continuation: phase={cursor.phase} source={cursor.source_id} index={cursor.last_index}"
        )

    def latest(self) -> Optional[Tuple[int, ResumptionCursor]]:
        """Most recent unconsumed cursor, as (row id, cursor)."""
        query = (
            self.client.table(self.table_name)
            .select("*")
            .eq("consumed", False)
            .order("priority", desc=True)
            .order("created_at", desc=True)
            .limit(1)
        )
        result = run_query(query, "read continuation")
        if not result.data:
            return None
        row = result.data[0]
        cursor = ResumptionCursor(
            phase=row.get("phase", "repos"),
            source_id=row.get("source_id"),
            last_index=row.get("last_index", 0),
        )
        return row["id"], cursor

    def mark_consumed(self, continuation_id: int) -> None:
        run_query(
            self.client.table(self.table_name).update({"consumed": True}).eq("id", continuation_id),
            f"consume continuation {continuation_id}",
        )
