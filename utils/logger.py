"""Logging setup for the application, plus the structured run log."""

import json
import logging
import sys
import time
import traceback
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional


# Loggers whose records are captured into a run log while a run is active
PIPELINE_LOGGER_NAMES = ("pipeline", "fetchers", "storage", "summarizer")


def setup_logger(log_level: str = "INFO", name: str = "contribot") -> logging.Logger:
    """
    Set up and configure application logger.

    Creates a logger with a simple, readable format suitable for CLI output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        name: Logger name (default: contribot)

    Returns:
        logging.Logger: Configured logger instance
    """
    # Convert string to logging level
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    # Configure root logger
    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stdout,
        force=True,  # Override any existing configuration
    )

    # Get named logger and set its level explicitly
    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    return logger


logger = logging.getLogger(__name__)


class LogSink:
    """Destination for a batch of JSONL run-log lines."""

    def write(self, run_id: str, lines: List[str]) -> None:
        raise NotImplementedError


class MemorySink(LogSink):
    """Keeps flushed batches in memory (local runs and tests)."""

    def __init__(self):
        self.batches: List[List[str]] = []

    def write(self, run_id: str, lines: List[str]) -> None:
        self.batches.append(list(lines))


class SupabaseStorageSink(LogSink):
    """
    Ships run logs to a Supabase Storage bucket as JSONL objects.

    Objects are keyed by date so a day's runs can be listed together:
    logs/YYYY/MM/DD/run-{run_id}-{timestamp_ms}.jsonl
    """

    def __init__(self, client: Any, bucket: str, clock: Callable[[], float] = time.time):
        """
        Args:
            client: supabase Client (anything exposing .storage.from_(bucket))
            bucket: Storage bucket name
            clock: Wall-clock source in epoch seconds
        """
        self.client = client
        self.bucket = bucket
        self.clock = clock

    def object_key(self, run_id: str) -> str:
        now = self.clock()
        day = datetime.fromtimestamp(now, tz=timezone.utc)
        return f"logs/{day:%Y/%m/%d}/run-{run_id}-{int(now * 1000)}.jsonl"

    def write(self, run_id: str, lines: List[str]) -> None:
        key = self.object_key(run_id)
        content = ("\n".join(lines) + "\n").encode("utf-8")
        self.client.storage.from_(self.bucket).upload(
            key,
            content,
            {"content-type": "application/x-ndjson"},
        )
        logger.info(f"Shipped {len(lines)} log entries to {self.bucket}/{key}")


class RunLogHandler(logging.Handler):
    """logging.Handler that turns records into run-log entries."""

    def __init__(self, run_log: "RunLog", level: int = logging.INFO):
        super().__init__(level=level)
        self.run_log = run_log

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stack = None
            if record.exc_info:
                stack = "".join(traceback.format_exception(*record.exc_info))
            self.run_log.append(
                level=record.levelname.lower(),
                message=record.getMessage(),
                data=getattr(record, "data", None),
                stack=stack,
            )
        except Exception:
            self.handleError(record)


class RunLog:
    """
    Structured log for one pipeline run.

    The run log is handed to the orchestrator explicitly. While attached,
    its handler captures records from the pipeline's module loggers and
    tags each entry with the step being executed. Entries are JSON objects:
    {timestamp, level, step, message, data, duration, stack}.

    Flushing hands the buffered lines to the sink. A failed flush is logged
    and the entries are kept, so shipping problems never fail a run.
    """

    def __init__(
        self,
        run_id: str,
        sink: Optional[LogSink] = None,
        logger_names: Iterable[str] = PIPELINE_LOGGER_NAMES,
        level: int = logging.INFO,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.run_id = run_id
        self.sink = sink
        self.logger_names = tuple(logger_names)
        self.clock = clock
        self.current_step: Optional[str] = None
        self.entries: List[dict] = []
        self._step_started_at: Optional[float] = None
        self._handler = RunLogHandler(self, level=level)
        self._attached = False

    def attach(self) -> "RunLog":
        """Start capturing records from the pipeline loggers."""
        if not self._attached:
            for name in self.logger_names:
                logging.getLogger(name).addHandler(self._handler)
            self._attached = True
        return self

    def detach(self) -> None:
        """Stop capturing. Buffered entries are kept until flushed."""
        if self._attached:
            for name in self.logger_names:
                logging.getLogger(name).removeHandler(self._handler)
            self._attached = False

    def __enter__(self) -> "RunLog":
        return self.attach()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.detach()
        self.flush()

    def append(
        self,
        level: str,
        message: str,
        data: Any = None,
        duration: Optional[float] = None,
        stack: Optional[str] = None,
    ) -> None:
        self.entries.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "step": self.current_step,
            "message": message,
            "data": data,
            "duration": duration,
            "stack": stack,
        })

    def start_step(self, name: str) -> None:
        self.current_step = name
        self._step_started_at = self.clock()
        self.append("info", f"Step started: {name}")
        logger.info(f"▶ {name}")

    def end_step(self, data: Any = None) -> Optional[float]:
        """Close the current step, recording its duration (seconds) and result data."""
        duration = None
        if self._step_started_at is not None:
            duration = round(self.clock() - self._step_started_at, 3)
        self.append("info", f"Step completed: {self.current_step}", data=data, duration=duration)
        logger.info(f"✓ {self.current_step} ({duration}s)")
        self.current_step = None
        self._step_started_at = None
        return duration

    def step_error(self, error: BaseException) -> None:
        stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        self.append(
            "error",
            f"Step failed: {self.current_step}: {error}",
            data={"error_type": type(error).__name__},
            stack=stack,
        )
        logger.error(f"✗ {self.current_step}: {error}")

    def lines(self) -> List[str]:
        return [json.dumps(entry, default=str) for entry in self.entries]

    def flush(self) -> bool:
        """
        Hand buffered entries to the sink.

        Returns:
            True if there was nothing to ship or shipping succeeded,
            False if the sink raised (entries are kept for a later flush)
        """
        if self.sink is None or not self.entries:
            return True
        try:
            self.sink.write(self.run_id, self.lines())
        except Exception as e:
            logger.warning(f"Failed to ship run log for {self.run_id}: {e}")
            return False
        self.entries = []
        return True
