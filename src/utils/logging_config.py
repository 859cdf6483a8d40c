"""
SignalScope Logging Configuration

One place to configure process logging for the CLI and for embedding
applications. Library modules only ever call logging.getLogger(__name__).

Usage:
    from utils.logging_config import setup_logging
    setup_logging(level="DEBUG", log_file="/tmp/signalscope.log")
"""

import logging
import logging.handlers
import sys
import threading
from pathlib import Path
from typing import Optional, Union

# Thread-safe initialization
_initialized = False
_lock = threading.Lock()

DEFAULT_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
SIMPLE_FORMAT = "%(levelname)s: %(message)s"
DEBUG_FORMAT = "%(asctime)s | %(threadName)s | %(name)s:%(lineno)d | %(levelname)s | %(message)s"

LEVEL_COLORS = {
    'DEBUG': '\033[36m',     # Cyan
    'INFO': '\033[32m',      # Green
    'WARNING': '\033[33m',   # Yellow
    'ERROR': '\033[31m',     # Red
    'CRITICAL': '\033[35m',  # Magenta
}
RESET = '\033[0m'

# Loggers that are chatty at DEBUG and irrelevant to signal collection
NOISY_LOGGERS = ('asyncio', 'urllib3', 'concurrent.futures')


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name when writing to a terminal."""

    def __init__(self, fmt=None, datefmt=None, use_colors=True, stream=None):
        super().__init__(fmt, datefmt)
        stream = stream or sys.stderr
        self.use_colors = use_colors and hasattr(stream, 'isatty') and stream.isatty()

    def format(self, record):
        if not self.use_colors or record.levelname not in LEVEL_COLORS:
            return super().format(record)
        original = record.levelname
        record.levelname = f"{LEVEL_COLORS[original]}{original}{RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def parse_level(level: Union[int, str]) -> int:
    """Accept logging constants or names like 'debug'."""
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    use_colors: bool = True,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    force: bool = False,
) -> None:
    """
    Configure the root logger once per process.

    Args:
        level: Logging level or level name
        log_file: Optional rotating log file
        log_format: Format string; DEBUG level defaults to DEBUG_FORMAT
        use_colors: Color level names on a terminal
        max_bytes: Max log file size before rotation
        backup_count: Number of rotated files to keep
        force: Reconfigure even if already initialized
    """
    global _initialized

    level = parse_level(level)
    if log_format is None:
        log_format = DEBUG_FORMAT if level <= logging.DEBUG else DEFAULT_FORMAT

    with _lock:
        if _initialized and not force:
            return

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        # Console output goes to stderr so --json stays clean on stdout
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        if use_colors:
            console_handler.setFormatter(ColoredFormatter(log_format, stream=sys.stderr))
        else:
            console_handler.setFormatter(logging.Formatter(log_format))
        root_logger.addHandler(console_handler)

        if log_file:
            log_path = Path(log_file)
            try:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.handlers.RotatingFileHandler(
                    log_path,
                    maxBytes=max_bytes,
                    backupCount=backup_count,
                )
                file_handler.setLevel(level)
                file_handler.setFormatter(logging.Formatter(log_format))
                root_logger.addHandler(file_handler)
            except OSError as e:
                root_logger.warning(f"File logging disabled ({log_path}): {e}")

        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

        _initialized = True
