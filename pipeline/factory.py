"""Wires pipeline components from configuration."""

import uuid
from dataclasses import dataclass
from typing import Optional

from fetchers.github import GitHubGateway, RateLimiter
from fetchers.sources import AdapterRegistry
from models.config_models import Config
from pipeline.annotation_processor import AnnotationProcessor
from pipeline.issue_reconciler import IssueReconciler
from pipeline.orchestrator import RunOrchestrator
from pipeline.repo_reconciler import ReconcileDepth, RepoReconciler
from storage.annotation_queue import AnnotationQueue
from storage.continuations import ContinuationChannel
from storage.supabase_client import SupabaseClient
from summarizer.summarizer import Summarizer
from utils.logger import MemorySink, RunLog, SupabaseStorageSink
from utils.logger import setup_logger

logger = setup_logger(name=__name__)


@dataclass
class Pipeline:
    """All long-lived pipeline components for one process."""
    config: Config
    store: SupabaseClient
    queue: AnnotationQueue
    continuations: ContinuationChannel
    gateway: GitHubGateway
    registry: AdapterRegistry
    summarizer: Optional[Summarizer]

    def repo_reconciler(self, depth: Optional[str] = None) -> RepoReconciler:
        return RepoReconciler(
            self.store,
            self.gateway,
            self.queue,
            depth=ReconcileDepth(depth or self.config.pipeline.reconcile_depth),
        )

    def issue_reconciler(self) -> IssueReconciler:
        return IssueReconciler(
            self.store,
            self.gateway,
            self.queue,
            insert_chunk_size=self.config.pipeline.insert_chunk_size,
        )

    def annotation_processor(self) -> Optional[AnnotationProcessor]:
        if self.summarizer is None:
            return None
        return AnnotationProcessor(self.store, self.queue, self.summarizer)

    def run_log(self, run_id: str) -> RunLog:
        """Run log shipping to Supabase Storage when enabled, kept in memory otherwise."""
        settings = self.config.pipeline
        if settings.enable_log_shipping:
            sink = SupabaseStorageSink(self.store.client, settings.log_bucket)
        else:
            sink = MemorySink()
        return RunLog(run_id, sink=sink)

    def orchestrator(self, depth: Optional[str] = None, run_id: Optional[str] = None) -> RunOrchestrator:
        return RunOrchestrator(
            registry=self.registry,
            repo_reconciler=self.repo_reconciler(depth),
            issue_reconciler=self.issue_reconciler(),
            store=self.store,
            gateway=self.gateway,
            annotation_processor=self.annotation_processor(),
            continuations=self.continuations,
            settings=self.config.pipeline,
            run_log=self.run_log(run_id or uuid.uuid4().hex[:12]),
        )


def build_pipeline(config: Config) -> Pipeline:
    """
    Create the store, queue, gateway, registry and (if an LLM key is set) summarizer.

    Args:
        config: Validated application configuration

    Returns:
        Pipeline with every component constructed
    """
    settings = config.pipeline
    store = SupabaseClient(config.credentials.supabase_url, config.credentials.supabase_key)

    gateway = GitHubGateway(
        config.credentials.github_token,
        rate_limiter=RateLimiter(
            max_per_hour=settings.max_requests_per_hour,
            safety_margin=settings.rate_limit_safety_margin,
            min_delay=settings.min_request_delay,
        ),
        max_retries=settings.max_retries,
        default_retry_after=settings.default_retry_after,
        max_issue_pages=settings.max_issue_pages,
        request_budget=settings.request_budget,
    )

    summarizer = None
    api_key = config.credentials.llm_api_key()
    if api_key:
        summarizer = Summarizer.from_credentials(
            config.credentials.llm_provider,
            config.credentials.llm_model,
            api_key,
        )
    else:
        logger.warning(
            f"No API key for LLM provider '{config.credentials.llm_provider}', annotation is disabled"
        )

    return Pipeline(
        config=config,
        store=store,
        queue=AnnotationQueue(store),
        continuations=ContinuationChannel(store),
        gateway=gateway,
        registry=AdapterRegistry(disabled=settings.disabled_sources),
        summarizer=summarizer,
    )
