"""Tests for the JSONL log sink."""

import json
import logging
import sys

import pytest

from livemodules.logging_setup import JsonlHandler
from livemodules.logging_setup import init_json_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)


def read_lines(path):
    return [json.loads(line) for line in path.read_text().splitlines()]


class TestJsonlHandler:
    """Test record formatting and writing."""

    def test_writes_one_line_per_record(self, tmp_path):
        """Test each record becomes a JSON object with the schema fields."""
        path = tmp_path / "logs" / "out.jsonl"
        logger = logging.getLogger("livemodules.test.jsonl")
        handler = JsonlHandler(path)
        logger.addHandler(handler)
        try:
            logger.warning("first %s", "message", extra={"event": "cycle_notice", "package": "app"})
            logger.warning("second")
        finally:
            logger.removeHandler(handler)

        lines = read_lines(path)
        assert len(lines) == 2
        assert lines[0]["message"] == "first message"
        assert lines[0]["lvl"] == "WARNING"
        assert lines[0]["logger"] == "livemodules.test.jsonl"
        assert lines[0]["schema"]["name"] == "livemodules.log"
        assert lines[0]["event"] == "cycle_notice"
        assert lines[0]["package"] == "app"
        assert lines[1]["event"] is None

    def test_exception_text(self, tmp_path):
        """Test exception tracebacks are included."""
        handler = JsonlHandler(tmp_path / "out.jsonl")
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.getLogger("x").makeRecord("x", logging.ERROR, __file__, 1, "failed", (), None)
            record.exc_info = sys.exc_info()

        data = handler.format_record(record)

        assert "RuntimeError: boom" in data["exception"]


class TestInitJsonLogging:
    """Test root logger setup."""

    def test_installs_single_handler(self, tmp_path, restore_root_logger):
        """Test repeated setup replaces the previous JSONL handler."""
        init_json_logging(tmp_path / "a.jsonl", "debug")
        handler = init_json_logging(tmp_path / "b.jsonl", "warning")

        jsonl_handlers = [h for h in restore_root_logger.handlers if isinstance(h, JsonlHandler)]
        assert jsonl_handlers == [handler]
        assert restore_root_logger.level == logging.WARNING
