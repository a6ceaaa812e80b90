"""
Run orchestrator - sequences discovery, reconciliation and annotation.

State machine:
    FETCHING_SOURCES -> RECONCILING_REPOS -> FETCHING_REPOS_FOR_ISSUES
    -> RECONCILING_ISSUES -> DRAINING_ANNOTATION_QUEUE -> SUMMARIZING -> DONE

Terminal states:
- ABORTED on AuthenticationFailed, from any state
- PAUSED on ResourceCeilingExceeded; a ResumptionCursor pointing at the
  interrupted item (or at the start of the interrupted phase) is handed to
  the continuation channel and the result reports whether that hand-off
  succeeded

Two execution modes share the same steps:
- run(): one long-running call, each phase a single step
- run_checkpointed(): inputs chunked into fixed-size steps whose results
  are recorded in a StepJournal, so a retried run replays finished steps.
  Item steps are named after the absolute index of their first item, so a
  run resumed from a cursor never replays a step covering other items.
"""

import logging
import time
import uuid
from typing import Any, Callable, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel

from models.config_models import PipelineConfig
from models.data_models import (
    AnnotationStats,
    BatchResult,
    IssueStats,
    RepoReference,
    RepoStats,
    RepositoryRecord,
    ResumptionCursor,
    RunResult,
    RunState,
    SourceBatch,
)
from pipeline.exceptions import AuthenticationFailed, ResourceCeilingExceeded
from pipeline.journal import StepJournal
from utils.logger import RunLog

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class Discovery(BaseModel):
    """Journaled result of the discovery step."""
    batches: List[SourceBatch]


class RepoList(BaseModel):
    """Journaled result of the repo-listing step."""
    repos: List[RepositoryRecord]


class StepPaused(Exception):
    """Raised inside a step when a resource ceiling stops it mid-item."""

    def __init__(self, cursor: ResumptionCursor, partial: Optional[BaseModel], cause: ResourceCeilingExceeded):
        super().__init__(str(cause))
        self.cursor = cursor
        self.partial = partial
        self.cause = cause


def chunk_list(items: list, size: int) -> List[list]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class RunOrchestrator:
    """Drives one end-to-end pipeline run."""

    def __init__(
        self,
        registry: Any,
        repo_reconciler: Any,
        issue_reconciler: Any,
        store: Any,
        gateway: Any,
        annotation_processor: Any = None,
        continuations: Any = None,
        settings: Optional[PipelineConfig] = None,
        run_log: Optional[RunLog] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        step_retry_delay: float = 5.0,
    ):
        """
        Args:
            registry: AdapterRegistry used for discovery
            repo_reconciler: RepoReconciler
            issue_reconciler: IssueReconciler
            store: Record store (lists repositories for issue processing)
            gateway: GitHubGateway (rate limit stats for the summary)
            annotation_processor: AnnotationProcessor, or None to skip the drain
            continuations: ContinuationChannel for resumption cursors, or None
            settings: Batch sizes and budgets
            run_log: Structured run log; the orchestrator marks step boundaries on it
            clock: Monotonic clock (injected in tests)
            sleep: Sleep function for step retry backoff
            step_retry_delay: Base delay between retries of a failed step
        """
        self.registry = registry
        self.repo_reconciler = repo_reconciler
        self.issue_reconciler = issue_reconciler
        self.store = store
        self.gateway = gateway
        self.annotation_processor = annotation_processor
        self.continuations = continuations
        self.settings = settings or PipelineConfig()
        self.run_log = run_log
        self.clock = clock
        self.sleep = sleep
        self.step_retry_delay = step_retry_delay

        self.state = RunState.FETCHING_SOURCES
        self.journal: Optional[StepJournal] = None
        self.checkpointed = False

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self, cursor: Optional[ResumptionCursor] = None, run_id: Optional[str] = None) -> RunResult:
        """Run every phase as a single long-running call."""
        self.journal = StepJournal(run_id or uuid.uuid4().hex[:12])
        self.checkpointed = False
        return self._execute(cursor)

    def run_checkpointed(self, journal: StepJournal, cursor: Optional[ResumptionCursor] = None) -> RunResult:
        """
        Run as a sequence of fixed-size, independently retried steps.

        Steps already recorded in `journal` are replayed, not re-executed.
        """
        self.journal = journal
        self.checkpointed = True
        return self._execute(cursor)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _execute(self, cursor: Optional[ResumptionCursor]) -> RunResult:
        started = self.clock()
        result = RunResult(run_id=self.journal.run_id, state=RunState.FETCHING_SOURCES)

        if self.run_log is not None:
            self.run_log.attach()

        logger.info("=" * 80)
        logger.info(f"Starting run {result.run_id} ({'checkpointed' if self.checkpointed else 'single call'})")
        if cursor is not None:
            logger.info(f"Resuming from cursor: phase={cursor.phase} source={cursor.source_id} index={cursor.last_index}")
        logger.info("=" * 80)

        # Where to resume if a ceiling stops a phase outside its item steps
        phase_cursor = cursor or ResumptionCursor(phase="repos")

        try:
            if cursor is None or cursor.phase == "repos":
                self._transition(RunState.FETCHING_SOURCES, result)
                discovery = self._step(
                    "fetch-repos-from-sources",
                    Discovery,
                    lambda: Discovery(batches=self.registry.discover(cursor.source_id if cursor else None)),
                )

                self._transition(RunState.RECONCILING_REPOS, result)
                self._reconcile_repos(discovery, cursor, result)
            else:
                logger.info("Cursor points at issue processing, skipping discovery and repo reconciliation")

            issue_start = cursor.last_index if cursor is not None and cursor.phase == "issues" else 0
            phase_cursor = ResumptionCursor(phase="issues", last_index=issue_start)

            self._transition(RunState.FETCHING_REPOS_FOR_ISSUES, result)
            repo_list = self._step(
                "fetch-repos-for-issues",
                RepoList,
                lambda: RepoList(repos=self.store.get_all_repos()),
            )

            self._transition(RunState.RECONCILING_ISSUES, result)
            self._reconcile_issues(repo_list.repos, issue_start, result)

            # Past the last repository: resuming goes straight to the drain
            phase_cursor = ResumptionCursor(phase="issues", last_index=len(repo_list.repos))

            self._transition(RunState.DRAINING_ANNOTATION_QUEUE, result)
            self._drain_annotations(result)

            self._transition(RunState.SUMMARIZING, result)
            result.state = RunState.DONE

        except StepPaused as paused:
            self._pause(paused, result)

        except ResourceCeilingExceeded as e:
            self._pause(StepPaused(phase_cursor, None, e), result)

        except AuthenticationFailed as e:
            logger.error(f"✗ Run aborted: {e}")
            result.state = RunState.ABORTED
            result.auth_failed = True
            result.abort_reason = str(e)

        finally:
            self.state = result.state
            result.github_requests = self.gateway.get_rate_limit_stats()
            result.duration_seconds = round(self.clock() - started, 3)
            self._log_summary(result)
            if self.run_log is not None:
                self.run_log.detach()
                self.run_log.flush()

        return result

    def _transition(self, state: RunState, result: RunResult) -> None:
        logger.debug(f"State: {self.state.value} -> {state.value}")
        self.state = state
        result.state = state

    def _step(self, name: str, model_cls: Type[T], fn: Callable[[], T]) -> T:
        """
        Execute one step, or replay its recorded result.

        Non-fatal failures are retried (checkpointed mode only); auth
        failures, resource ceilings and pauses propagate immediately
        without being recorded.
        """
        recorded = self.journal.get(name)
        if recorded is not None:
            logger.info(f"↺ {name}: replaying recorded result")
            return model_cls.model_validate(recorded)

        attempts = self.settings.step_retries + 1 if self.checkpointed else 1
        for attempt in range(1, attempts + 1):
            if self.run_log is not None:
                self.run_log.start_step(name)
            try:
                value = fn()
            except (AuthenticationFailed, ResourceCeilingExceeded, StepPaused) as e:
                if self.run_log is not None:
                    self.run_log.step_error(e)
                raise
            except Exception as e:
                if self.run_log is not None:
                    self.run_log.step_error(e)
                if attempt == attempts:
                    raise
                delay = self.step_retry_delay * attempt
                logger.warning(f"Step {name} failed (attempt {attempt}/{attempts}), retrying in {delay:.0f}s: {e}")
                self.sleep(delay)
                continue

            data = value.model_dump(mode="json")
            self.journal.record(name, data)
            if self.run_log is not None:
                self.run_log.end_step(data if not isinstance(value, (Discovery, RepoList)) else None)
                self.run_log.flush()
            return value

        raise RuntimeError(f"Step {name} did not run")

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _reconcile_repos(self, discovery: Discovery, cursor: Optional[ResumptionCursor], result: RunResult) -> None:
        batches = discovery.batches
        if cursor is not None and cursor.phase == "repos":
            source_ids = [batch.source_id for batch in batches]
            if cursor.source_id in source_ids:
                batches = batches[source_ids.index(cursor.source_id):]

        work: List[Tuple[str, int, RepoReference]] = []
        for batch in batches:
            start = 0
            if cursor is not None and cursor.phase == "repos" and batch.source_id == cursor.source_id:
                start = cursor.last_index
                logger.info(f"Skipping {start} already processed repos from {batch.source_id}")
            work.extend((batch.source_id, index, ref) for index, ref in enumerate(batch.references) if index >= start)

        logger.info(f"Reconciling {len(work)} repositories")
        size = self.settings.repo_batch_size if self.checkpointed else max(len(work), 1)

        for chunk in chunk_list(work, size):
            source_id, first_index, _ = chunk[0]
            stats = self._step(
                f"process-repos-{source_id}-{first_index}",
                RepoStats,
                lambda chunk=chunk: self._repo_chunk(chunk),
            )
            result.repos.merge(stats)

    def _repo_chunk(self, chunk: List[Tuple[str, int, RepoReference]]) -> RepoStats:
        stats = RepoStats()
        for source_id, index, ref in chunk:
            try:
                self.repo_reconciler.process_repo(ref, stats)
            except ResourceCeilingExceeded as e:
                cursor = ResumptionCursor(phase="repos", source_id=source_id, last_index=index)
                raise StepPaused(cursor, stats, e)
        return stats

    def _reconcile_issues(self, repos: List[RepositoryRecord], start: int, result: RunResult) -> None:
        if start:
            logger.info(f"Skipping {start} repositories already processed for issues")
        work = [(index, repo) for index, repo in enumerate(repos) if index >= start]

        logger.info(f"Reconciling issues for {len(work)} repositories")
        size = self.settings.issue_repo_batch_size if self.checkpointed else max(len(work), 1)

        for chunk in chunk_list(work, size):
            first_index = chunk[0][0]
            stats = self._step(
                f"process-issues-{first_index}",
                IssueStats,
                lambda chunk=chunk: self._issue_chunk(chunk),
            )
            result.issues.merge(stats)

    def _issue_chunk(self, chunk: List[Tuple[int, RepositoryRecord]]) -> IssueStats:
        stats = IssueStats()
        for index, repo in chunk:
            try:
                self.issue_reconciler.process_repo(repo, stats)
            except ResourceCeilingExceeded as e:
                cursor = ResumptionCursor(phase="issues", source_id=repo.data_source_id, last_index=index)
                raise StepPaused(cursor, stats, e)
        return stats

    def _drain_annotations(self, result: RunResult) -> None:
        if self.annotation_processor is None:
            logger.info("No annotation processor configured, skipping annotation drain")
            return

        if not self.checkpointed:
            stats = self._step(
                "drain-annotation-queue",
                AnnotationStats,
                lambda: self.annotation_processor.drain(
                    batch_size=self.settings.annotation_batch_size,
                    max_seconds=self.settings.max_processing_seconds,
                ),
            )
            result.annotations.merge(stats)
            return

        for number in range(1, self.settings.max_annotation_batches + 1):
            batch = self._step(
                f"process-annotations-batch-{number}",
                BatchResult,
                lambda: self.annotation_processor.process_batch(self.settings.annotation_batch_size),
            )
            result.annotations.merge(batch.stats)
            if not batch.has_more:
                break
        else:
            logger.info(f"Reached {self.settings.max_annotation_batches} annotation batches, leaving the rest for the next run")

    # ------------------------------------------------------------------
    # Terminal handling
    # ------------------------------------------------------------------

    def _pause(self, paused: StepPaused, result: RunResult) -> None:
        """Fold in the interrupted step's partial stats, hand off the cursor, end PAUSED."""
        if isinstance(paused.partial, RepoStats):
            result.repos.merge(paused.partial)
        elif isinstance(paused.partial, IssueStats):
            result.issues.merge(paused.partial)

        cursor = paused.cursor
        logger.warning(
            f"⏸ Resource ceiling reached ({paused.cause.kind.value}) at {cursor.phase} index "
            f"{cursor.last_index} of {cursor.source_id}: {paused.cause}"
        )
        result.state = RunState.PAUSED
        result.cursor = cursor
        result.continuation_queued = self._queue_continuation(cursor, result.run_id)

    def _queue_continuation(self, cursor: ResumptionCursor, run_id: str) -> bool:
        if self.continuations is None:
            logger.warning("No continuation channel configured, run will not continue automatically")
            return False
        try:
            self.continuations.send(cursor, run_id=run_id)
        except Exception as e:
            logger.warning(f"Failed to queue continuation, run will not continue automatically: {e}")
            return False
        return True

    def _log_summary(self, result: RunResult) -> None:
        logger.info("=" * 80)
        logger.info(f"RUN {result.run_id}: {result.state.value.upper()} ({result.duration_seconds:.1f}s)")
        logger.info("=" * 80)
        logger.info(
            f"Repos: {result.repos.discovered} discovered, {result.repos.new} new, "
            f"{result.repos.updated} updated, {result.repos.unchanged} unchanged, "
            f"{result.repos.queued} queued, {result.repos.errors} errors"
        )
        logger.info(
            f"Issues: {result.issues.processed} processed, {result.issues.new} new, "
            f"{result.issues.updated} updated, {result.issues.closed} closed, "
            f"{result.issues.queued} queued, {result.issues.errors} errors"
        )
        logger.info(
            f"Annotations: {result.annotations.success}/{result.annotations.processed} succeeded, "
            f"{result.annotations.failed} failed"
        )
        logger.info(f"GitHub requests: {result.github_requests}")
        if result.state == RunState.PAUSED:
            logger.info(f"Continuation queued: {result.continuation_queued}")
        if result.state == RunState.ABORTED:
            logger.error(f"Aborted: {result.abort_reason}")
