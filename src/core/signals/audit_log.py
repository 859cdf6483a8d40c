"""
Signals Audit Log

Append-only, timestamped trail of what every collector did during one
run. It is owned by whoever builds the orchestrator and injected into it;
nothing here is process-global.

Line format:
    12:04:05.123 [cpuTemperature] START
    12:04:05.301 [cpuTemperature] SUCCESS (178ms) - 48.0
    12:04:20.002 [networkQuality] TIMEOUT after 15000ms

Writing is best-effort: a failing disk or a read-only path is logged at
debug level and never reaches the collectors.
"""

import logging
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


class SignalsAuditLog:
    """Run-scoped audit trail with an in-memory ring buffer and optional file."""

    def __init__(self, path: Optional[Path] = None, max_lines: int = 1000,
                 mirror_to_logging: bool = True):
        self.path = Path(path) if path else None
        self._lines: deque = deque(maxlen=max_lines)
        self._lock = threading.Lock()
        self._initialized = False
        self._mirror = mirror_to_logging

    # === Lifecycle ===

    def initialize(self, title: str = "Diagnostic signals collection") -> None:
        """Start a new run. Only the first call per run has an effect."""
        with self._lock:
            if self._initialized:
                return
            self._initialized = True
            self._lines.clear()
            header = [
                "=" * 60,
                f"{title} - {datetime.now().isoformat(timespec='seconds')}",
                "=" * 60,
            ]
            self._lines.extend(header)
            if self.path:
                try:
                    self.path.parent.mkdir(parents=True, exist_ok=True)
                    self.path.write_text("\n".join(header) + "\n")
                except OSError as e:
                    logger.debug(f"Audit log unavailable at {self.path}: {e}")

    def reset(self) -> None:
        """Allow the next initialize() to start a fresh run."""
        with self._lock:
            self._initialized = False

    @property
    def lines(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    # === Entries ===

    def start(self, name: str) -> None:
        self._write(name, "START")

    def success(self, name: str, duration_ms: int, details: str = "") -> None:
        entry = f"SUCCESS ({duration_ms}ms)"
        if details:
            entry += f" - {details}"
        self._write(name, entry)

    def fail(self, name: str, duration_ms: int, reason: str) -> None:
        self._write(name, f"FAIL ({duration_ms}ms) - {reason}", logging.WARNING)

    def timeout(self, name: str, timeout_ms: int) -> None:
        self._write(name, f"TIMEOUT after {timeout_ms}ms", logging.WARNING)

    def exception(self, name: str, error: BaseException) -> None:
        self._write(name, f"EXCEPTION: {type(error).__name__}: {error}", logging.ERROR)

    def retry(self, name: str, attempt: int, reason: str) -> None:
        self._write(name, f"RETRY attempt {attempt} - {reason}")

    def cancelled(self, name: str) -> None:
        self._write(name, "CANCELLED", logging.WARNING)

    def info(self, message: str) -> None:
        self._write(None, f"INFO: {message}")

    def warning(self, message: str) -> None:
        self._write(None, f"WARN: {message}", logging.WARNING)

    # === Internals ===

    def _write(self, name: Optional[str], entry: str, level: int = logging.DEBUG) -> None:
        try:
            stamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
            line = f"{stamp} [{name}] {entry}" if name else f"{stamp} {entry}"
            with self._lock:
                self._lines.append(line)
                if self.path:
                    with open(self.path, 'a') as f:
                        f.write(line + "\n")
            if self._mirror:
                logger.log(level, line)
        except Exception as e:
            logger.debug(f"Audit log write failed: {e}")
