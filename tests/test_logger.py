"""Tests for logger setup and the structured run log."""

import json
import logging
from unittest.mock import Mock

from utils.logger import MemorySink, RunLog, SupabaseStorageSink, setup_logger


def test_setup_logger_default():
    """Test logger setup with default settings."""
    logger = setup_logger()
    assert logger.name == "contribot"
    assert logger.level == logging.INFO


def test_setup_logger_custom_level():
    logger = setup_logger(log_level="DEBUG")
    assert logger.level == logging.DEBUG


def test_setup_logger_custom_name():
    logger = setup_logger(name="test_logger")
    assert logger.name == "test_logger"


def test_logger_level_case_insensitive():
    logger = setup_logger(log_level="debug")
    assert logger.level == logging.DEBUG


class TestRunLog:
    """Tests for RunLog."""

    def test_captures_pipeline_records_with_step(self):
        run_log = RunLog("run-1", logger_names=("pipeline",))
        logging.getLogger("pipeline").setLevel(logging.INFO)

        with run_log:
            run_log.start_step("process-repos-src1-0")
            logging.getLogger("pipeline.repo_reconciler").info("New repo: a/b")
            run_log.end_step({"new": 1})

        captured = [e for e in run_log.entries if e["message"] == "New repo: a/b"]
        assert captured[0]["step"] == "process-repos-src1-0"
        assert captured[0]["level"] == "info"

    def test_detach_stops_capturing(self):
        run_log = RunLog("run-1", logger_names=("pipeline",))
        logging.getLogger("pipeline").setLevel(logging.INFO)
        run_log.attach()
        run_log.detach()

        logging.getLogger("pipeline.orchestrator").info("after detach")

        assert run_log.entries == []

    def test_end_step_records_duration(self):
        clock = Mock(side_effect=[10.0, 12.5])
        run_log = RunLog("run-1", clock=clock)

        run_log.start_step("fetch-repos-for-issues")
        duration = run_log.end_step({"count": 3})

        assert duration == 2.5
        last = run_log.entries[-1]
        assert last["duration"] == 2.5
        assert last["data"] == {"count": 3}
        assert last["step"] == "fetch-repos-for-issues"
        assert run_log.current_step is None

    def test_step_error_records_stack(self):
        run_log = RunLog("run-1")
        run_log.start_step("process-issues-0")
        try:
            raise ValueError("boom")
        except ValueError as e:
            run_log.step_error(e)

        entry = run_log.entries[-1]
        assert entry["level"] == "error"
        assert entry["data"] == {"error_type": "ValueError"}
        assert "ValueError: boom" in entry["stack"]

    def test_lines_are_json(self):
        run_log = RunLog("run-1")
        run_log.append("info", "hello", data={"n": 1})

        parsed = json.loads(run_log.lines()[0])

        assert set(parsed) == {"timestamp", "level", "step", "message", "data", "duration", "stack"}
        assert parsed["message"] == "hello"

    def test_flush_ships_and_clears(self):
        sink = MemorySink()
        run_log = RunLog("run-1", sink=sink)
        run_log.append("info", "hello")

        assert run_log.flush() is True
        assert len(sink.batches) == 1
        assert run_log.entries == []

    def test_flush_failure_keeps_entries(self):
        sink = Mock()
        sink.write.side_effect = RuntimeError("bucket missing")
        run_log = RunLog("run-1", sink=sink)
        run_log.append("info", "hello")

        assert run_log.flush() is False
        assert len(run_log.entries) == 1

    def test_flush_without_entries_is_noop(self):
        sink = Mock()
        assert RunLog("run-1", sink=sink).flush() is True
        sink.write.assert_not_called()


class TestSupabaseStorageSink:
    """Tests for shipping run logs to Supabase Storage."""

    def test_object_key_is_dated(self):
        sink = SupabaseStorageSink(Mock(), "contribot-logs", clock=lambda: 1736935200.5)
        assert sink.object_key("run-1") == "logs/2025/01/15/run-run-1-1736935200500.jsonl"

    def test_write_uploads_jsonl(self):
        client = Mock()
        sink = SupabaseStorageSink(client, "contribot-logs", clock=lambda: 1736935200.0)

        sink.write("run-1", ['{"a":1}', '{"b":2}'])

        client.storage.from_.assert_called_once_with("contribot-logs")
        key, content, options = client.storage.from_.return_value.upload.call_args[0]
        assert key == "logs/2025/01/15/run-run-1-1736935200000.jsonl"
        assert content == b'{"a":1}\n{"b":2}\n'
        assert options == {"content-type": "application/x-ndjson"}
