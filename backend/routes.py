"""
API routes for triggering pipeline runs.

Failure responses never carry internal error text: authentication
failures get a 401 telling the caller to check the GitHub token, anything
else a generic 500. Full details stay in the logs.
"""

import uuid
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from models.data_models import RepoStats, RunState
from pipeline.exceptions import AuthenticationFailed, ResourceCeilingExceeded
from pipeline.factory import Pipeline, build_pipeline
from pipeline.journal import StepJournal
from utils.config_loader import load_config
from utils.logger import setup_logger

logger = setup_logger(name=__name__)

router = APIRouter(prefix="/api", tags=["pipeline"])

AUTH_FAILED_DETAIL = "GitHub authentication failed. Please check your GitHub token."
NOT_CONFIGURED_DETAIL = "Pipeline is not configured. Check the server environment."

_components: Optional[Pipeline] = None


def get_components() -> Pipeline:
    """
    Build pipeline components once per process.

    An invalid configuration is reported as a 503 instead of stopping the
    server; load_config has already printed which settings are wrong.
    """
    global _components
    if _components is None:
        try:
            config = load_config()
        except SystemExit:
            logger.error("Pipeline configuration is invalid, cannot serve pipeline requests")
            raise HTTPException(status_code=503, detail=NOT_CONFIGURED_DETAIL)
        _components = build_pipeline(config)
    return _components


class ScrapeRequest(BaseModel):
    depth: Optional[Literal["count", "full"]] = None
    checkpointed: bool = False
    run_id: Optional[str] = None
    resume: bool = False


class DiscoverRequest(BaseModel):
    depth: Literal["count", "full"] = "count"


class AnnotateRequest(BaseModel):
    batch_size: Optional[int] = Field(None, ge=1, description="Items to process (default: ANNOTATION_BATCH_SIZE)")


@router.post("/scrape")
def trigger_scrape(request: ScrapeRequest = ScrapeRequest(), components: Pipeline = Depends(get_components)):
    """
    Run the full pipeline: discovery, repo and issue reconciliation, annotation.

    Returns the run result. A paused run is still a 200; its body says
    whether a continuation was queued.
    """
    run_id = request.run_id or uuid.uuid4().hex[:12]
    try:
        cursor = None
        if request.resume:
            latest = components.continuations.latest()
            if latest is not None:
                continuation_id, cursor = latest
                components.continuations.mark_consumed(continuation_id)

        orchestrator = components.orchestrator(depth=request.depth, run_id=run_id)
        if request.checkpointed:
            journal = StepJournal(run_id, directory=components.config.pipeline.journal_dir)
            result = orchestrator.run_checkpointed(journal, cursor=cursor)
        else:
            result = orchestrator.run(cursor=cursor, run_id=run_id)
    except Exception as e:
        logger.exception(f"Scrape run {run_id} failed: {e}")
        raise HTTPException(status_code=500, detail="Scrape run failed. See the run logs for details.")

    if result.state == RunState.ABORTED:
        raise HTTPException(status_code=401, detail=AUTH_FAILED_DETAIL)

    return {"success": result.state == RunState.DONE, "result": result.model_dump(mode="json")}


@router.post("/discover")
def trigger_discover(request: DiscoverRequest = DiscoverRequest(), components: Pipeline = Depends(get_components)):
    """Reconcile repositories from every enabled source (no issues, no annotation)."""
    reconciler = components.repo_reconciler(request.depth)
    stats = RepoStats()
    try:
        for batch in components.registry.discover():
            stats.merge(reconciler.process_repos(batch.references))
    except AuthenticationFailed:
        raise HTTPException(status_code=401, detail=AUTH_FAILED_DETAIL)
    except ResourceCeilingExceeded as e:
        logger.warning(f"Discovery stopped early: {e}")
        return {"success": False, "paused": True, "stats": stats.model_dump()}
    except Exception as e:
        logger.exception(f"Discovery failed: {e}")
        raise HTTPException(status_code=500, detail="Discovery failed. See the logs for details.")

    return {"success": True, "paused": False, "stats": stats.model_dump()}


@router.post("/annotate")
def trigger_annotate(request: AnnotateRequest = AnnotateRequest(), components: Pipeline = Depends(get_components)):
    """Process one annotation batch."""
    processor = components.annotation_processor()
    if processor is None:
        raise HTTPException(status_code=503, detail="Annotation is not configured")

    batch_size = request.batch_size or components.config.pipeline.annotation_batch_size
    try:
        batch = processor.process_batch(batch_size)
    except Exception as e:
        logger.exception(f"Annotation batch failed: {e}")
        raise HTTPException(status_code=500, detail="Annotation batch failed. See the logs for details.")

    return {"success": True, "stats": batch.stats.model_dump(), "has_more": batch.has_more}


@router.get("/queue/stats")
def queue_stats(components: Pipeline = Depends(get_components)):
    """Annotation queue size per status."""
    try:
        return components.queue.stats()
    except Exception as e:
        logger.exception(f"Failed to read queue stats: {e}")
        raise HTTPException(status_code=500, detail="Failed to read queue stats")
