"""Tests for rotating log setup and the JSONL journal."""
import json
import logging
import tempfile
from pathlib import Path

from core.logging_utils import journal_path, log_jsonl, setup_rotating_logger


def test_log_jsonl_appends_records():
    with tempfile.TemporaryDirectory() as tmp:
        log_dir = Path(tmp) / "journal"
        log_jsonl(log_dir, {"event": "advance", "next_index": 2})
        log_jsonl(log_dir, {"event": "stopped"})
        path = journal_path(log_dir)
        assert path.name.startswith("layersync-")
        assert path.suffix == ".jsonl"
        records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert [r["event"] for r in records] == ["advance", "stopped"]
        assert isinstance(records[0]["ts_utc_ms"], int)


def test_setup_rotating_logger_once():
    with tempfile.TemporaryDirectory() as tmp:
        log_dir = Path(tmp)
        logger = setup_rotating_logger("layersync-test", log_dir, console_level=logging.WARNING)
        again = setup_rotating_logger("layersync-test", log_dir)
        try:
            assert logger is again
            assert len(logger.handlers) == 2
            assert sorted(h.level for h in logger.handlers) == [logging.DEBUG, logging.WARNING]
            logger.info("hello")
            for handler in logger.handlers:
                handler.flush()
            assert "hello" in (log_dir / "layersync-test.log").read_text(encoding="utf-8")
        finally:
            for handler in list(logger.handlers):
                handler.close()
                logger.removeHandler(handler)
        assert logging.getLogger("layersync-test").handlers == []
