#!/usr/bin/env python3
"""
Contribot pipeline - Main CLI entrypoint

Discovers beginner-friendly repositories from curated lists, reconciles
them and their good-first issues against Supabase, and annotates new or
changed entities with LLM-written summaries.

Usage:
    python main.py discover                       # Repos only (label issue counts)
    python main.py scrape                         # Full run in one call
    python main.py scrape --checkpointed --run-id nightly-2025-01-15
    python main.py scrape --resume                # Continue from the latest cursor
    python main.py annotate --all                 # Drain the annotation queue
    python main.py serve --port 8000              # HTTP trigger API
    python main.py setup-db --verify              # Check the database schema
"""

import argparse
import sys
import uuid

from models.data_models import RepoStats, RunState
from pipeline.exceptions import AuthenticationFailed, ResourceCeilingExceeded
from pipeline.factory import build_pipeline
from pipeline.journal import StepJournal
from storage import schema
from utils.config_loader import load_config
from utils.logger import setup_logger

logger = setup_logger(name=__name__)


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_AUTH_FAILED = 2
EXIT_PAUSED = 3


def run_discover(components, depth: str) -> int:
    """Fetch every enabled source and reconcile the repositories (no issues, no annotation)."""
    reconciler = components.repo_reconciler(depth)
    stats = RepoStats()

    try:
        for batch in components.registry.discover():
            logger.info(f"Processing {len(batch.references)} repos from {batch.source_id}")
            stats.merge(reconciler.process_repos(batch.references))
    except AuthenticationFailed as e:
        logger.error(f"✗ {e}. Check GITHUB_TOKEN in your .env file.")
        return EXIT_AUTH_FAILED
    except ResourceCeilingExceeded as e:
        logger.warning(f"⏸ Stopped early: {e}")
        return EXIT_PAUSED

    logger.info("=" * 80)
    logger.info("DISCOVERY SUMMARY")
    logger.info("=" * 80)
    logger.info(
        f"Discovered: {stats.discovered} | New: {stats.new} | Updated: {stats.updated} | "
        f"Unchanged: {stats.unchanged} | Queued: {stats.queued} | Errors: {stats.errors}"
    )
    return EXIT_OK


def run_scrape(components, depth: str, checkpointed: bool, run_id: str, resume: bool) -> int:
    """Run the full pipeline and map its terminal state to an exit code."""
    cursor = None
    if resume:
        latest = components.continuations.latest()
        if latest is None:
            logger.info("No pending continuation found, starting a fresh run")
        else:
            continuation_id, cursor = latest
            components.continuations.mark_consumed(continuation_id)

    orchestrator = components.orchestrator(depth=depth, run_id=run_id)
    try:
        if checkpointed:
            journal = StepJournal(run_id, directory=components.config.pipeline.journal_dir)
            result = orchestrator.run_checkpointed(journal, cursor=cursor)
        else:
            result = orchestrator.run(cursor=cursor, run_id=run_id)
    except Exception as e:
        logger.error(f"✗ Run {run_id} failed: {e}")
        if checkpointed:
            logger.info(f"Re-run with --checkpointed --run-id {run_id} to replay its finished steps")
        return EXIT_FAILURE

    if result.state == RunState.ABORTED:
        logger.error("GitHub authentication failed. Check GITHUB_TOKEN in your .env file.")
        return EXIT_AUTH_FAILED
    if result.state == RunState.PAUSED:
        if not result.continuation_queued:
            logger.warning("Continuation was not queued. Re-run with --resume after fixing storage.")
        return EXIT_PAUSED
    return EXIT_OK


def run_annotate(components, batch_size: int, drain: bool) -> int:
    processor = components.annotation_processor()
    if processor is None:
        logger.error("Annotation needs an LLM API key (ANTHROPIC_API_KEY or OPENAI_API_KEY)")
        return EXIT_FAILURE

    if drain:
        stats = processor.drain(
            batch_size=batch_size,
            max_seconds=components.config.pipeline.max_processing_seconds,
        )
    else:
        stats = processor.process_batch(batch_size).stats

    logger.info(
        f"Annotated {stats.success}/{stats.processed} items ({stats.failed} failed), "
        f"remaining: {stats.remaining if stats.remaining is not None else 'unknown'}"
    )
    return EXIT_OK if stats.failed == 0 else EXIT_FAILURE


def run_setup_db(config, verify: bool, drop: bool) -> int:
    if not config.credentials.database_url:
        logger.error("DATABASE_URL not found in .env file")
        logger.error("Find it in Supabase Dashboard → Project Settings → Database → Connection string")
        return EXIT_FAILURE

    conn = schema.create_connection(config.credentials.database_url)
    try:
        if verify:
            ok = schema.verify_schema(conn)
        else:
            if drop and not schema.drop_schema(conn):
                return EXIT_FAILURE
            ok = schema.create_schema(conn)
    finally:
        conn.close()
        logger.info("✓ Database connection closed")

    return EXIT_OK if ok else EXIT_FAILURE


def main():
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        description="Contribot - discover and annotate beginner-friendly open-source issues",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    discover_parser = subparsers.add_parser("discover", help="Discover and reconcile repositories only")
    discover_parser.add_argument(
        "--depth", choices=["count", "full"], default="count",
        help="count: track open good-first-issue count; full: track languages (default: count)",
    )

    scrape_parser = subparsers.add_parser("scrape", help="Run the full pipeline")
    scrape_parser.add_argument("--depth", choices=["count", "full"], default=None, help="Reconcile depth (default: RECONCILE_DEPTH)")
    scrape_parser.add_argument("--checkpointed", action="store_true", help="Run as journaled, independently retried steps")
    scrape_parser.add_argument("--run-id", type=str, default=None, help="Run id (re-use to replay a checkpointed run's finished steps)")
    scrape_parser.add_argument("--resume", action="store_true", help="Continue from the latest queued continuation cursor")

    annotate_parser = subparsers.add_parser("annotate", help="Process the annotation queue")
    annotate_parser.add_argument("--batch-size", type=int, default=None, help="Items per batch (default: ANNOTATION_BATCH_SIZE)")
    annotate_parser.add_argument("--all", action="store_true", help="Keep processing batches until the queue is empty")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP trigger API")
    serve_parser.add_argument("--host", type=str, default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    setup_parser = subparsers.add_parser("setup-db", help="Create or verify the database schema")
    setup_parser.add_argument("--verify", action="store_true", help="Verify existing schema without creating")
    setup_parser.add_argument("--drop", action="store_true", help="Drop and recreate tables (DANGEROUS - deletes all data)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(EXIT_FAILURE)

    if args.command == "serve":
        import uvicorn

        logger.info("=" * 80)
        logger.info("Starting Contribot API Server")
        logger.info("=" * 80)
        logger.info(f"API docs available at: http://{args.host}:{args.port}/docs")
        uvicorn.run("backend.app:app", host=args.host, port=args.port, log_level="info")
        sys.exit(EXIT_OK)

    config = load_config()
    setup_logger(config.log_level, name="contribot")

    if args.command == "setup-db":
        sys.exit(run_setup_db(config, verify=args.verify, drop=args.drop))

    try:
        components = build_pipeline(config)
    except Exception as e:
        logger.error(f"Failed to initialize clients: {e}")
        sys.exit(EXIT_FAILURE)

    if args.command == "discover":
        sys.exit(run_discover(components, args.depth))

    if args.command == "scrape":
        run_id = args.run_id or uuid.uuid4().hex[:12]
        sys.exit(run_scrape(components, args.depth, args.checkpointed, run_id, args.resume))

    if args.command == "annotate":
        batch_size = args.batch_size or config.pipeline.annotation_batch_size
        sys.exit(run_annotate(components, batch_size, args.all))

    logger.error(f"Command '{args.command}' is not implemented")
    sys.exit(EXIT_FAILURE)


if __name__ == "__main__":
    main()
