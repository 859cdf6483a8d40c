"""
Tests for logging configuration.

Run: python3 -m pytest tests/test_logging_config.py -v
"""

import io
import logging
import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from utils import logging_config
from utils.logging_config import ColoredFormatter, parse_level, setup_logging


@pytest.fixture
def fresh_root():
    """Restore the root logger after setup_logging() replaced its handlers."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
    logging_config._initialized = False


class TestParseLevel:

    @pytest.mark.parametrize("value,expected", [
        ("debug", logging.DEBUG),
        ("WARNING", logging.WARNING),
        (logging.ERROR, logging.ERROR),
        ("nonsense", logging.INFO),
    ])
    def test_levels(self, value, expected):
        assert parse_level(value) == expected


class TestSetupLogging:

    def test_file_handler(self, tmp_path, fresh_root):
        log_file = tmp_path / "logs" / "signalscope.log"
        setup_logging(level="DEBUG", log_file=str(log_file), force=True)
        logging.getLogger("core.signals.test").debug("hello")
        for handler in fresh_root.handlers:
            handler.flush()
        assert "hello" in log_file.read_text()

    def test_second_call_is_a_no_op(self, fresh_root):
        setup_logging(level="INFO", force=True)
        count = len(fresh_root.handlers)
        setup_logging(level="DEBUG")
        assert len(fresh_root.handlers) == count
        assert fresh_root.level == logging.INFO

    def test_console_goes_to_stderr(self, fresh_root):
        setup_logging(force=True)
        assert fresh_root.handlers[0].stream is sys.stderr


class TestColoredFormatter:

    def test_no_color_when_not_a_tty(self):
        formatter = ColoredFormatter("%(levelname)s %(message)s", stream=io.StringIO())
        record = logging.LogRecord("x", logging.WARNING, __file__, 1, "msg", None, None)
        assert formatter.format(record) == "WARNING msg"
