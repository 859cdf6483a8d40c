"""
Signal Collector Contract

A collector is a named, independently time-boxed unit of work that
produces exactly one SignalResult. Concrete collectors subclass
SignalCollector directly and implement ``read()``; configuration is bound
in ``__init__``, never passed at call time.

Helpers in this module translate the usual failure modes of host data
sources (missing tools, permission errors, absent sysfs nodes, hung
commands) into SignalCollectionError with a specific reason code.
"""

import logging
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence

from .cancellation import CancellationToken
from .errors import OperationCancelled, SignalCollectionError
from .models import SignalCategory, SignalResult

logger = logging.getLogger(__name__)

# How often a running command checks its cancellation token
COMMAND_POLL_INTERVAL = 0.1


class SignalCollector(ABC):
    """
    Base contract for every collector.

    Class attributes:
        name: Stable key of the signal in the run aggregate
        default_timeout: Per-attempt budget in seconds
        priority: Weight used when ranking missing data (not scheduling order)
        category: SignalCategory used by reliability scoring
        source: Mechanism used to read the value (for diagnosis only)
    """

    name: str = ""
    default_timeout: float = 10.0
    priority: int = 5
    category: SignalCategory = SignalCategory.OTHER
    source: str = ""

    def __init__(self, timeout: Optional[float] = None):
        if timeout is not None:
            self.default_timeout = float(timeout)

    def collect(self, token: CancellationToken) -> SignalResult:
        """
        Run the collector once.

        Collector-local failures become unavailable results here. Other
        exceptions are left to the orchestrator's wrapper so they are
        reported as ``exception: <message>``.
        """
        try:
            return self.read(token)
        except SignalCollectionError as e:
            logger.debug(f"{self.name}: {e.reason}")
            return self.unavailable(e.reason, notes=e.notes)

    @abstractmethod
    def read(self, token: CancellationToken) -> SignalResult:
        """Collect the signal. May raise SignalCollectionError or OperationCancelled."""

    # --- Result helpers ---

    def ok(self, value: Any, notes: str = None, source: str = None) -> SignalResult:
        return SignalResult.ok(self.name, value, source or self.source, notes=notes)

    def partial(self, value: Any, notes: str = None, source: str = None) -> SignalResult:
        return SignalResult.partial(self.name, value, source or self.source, notes=notes)

    def suspect(self, value: Any, notes: str = None, source: str = None) -> SignalResult:
        return SignalResult.suspect(self.name, value, source or self.source, notes=notes)

    def unavailable(self, reason: str, notes: str = None, source: str = None) -> SignalResult:
        return SignalResult.unavailable(self.name, reason, source or self.source, notes=notes)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} timeout={self.default_timeout}s>"


# === Host access helpers ===

@dataclass
class CommandOutput:
    """Captured output of an external command."""
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def lines(self) -> List[str]:
        return [line for line in self.stdout.splitlines() if line.strip()]


def run_command(args: Sequence[str], token: CancellationToken,
                timeout: float = 10.0) -> CommandOutput:
    """
    Run an external command, killing it promptly if the token fires.

    Raises:
        SignalCollectionError: dependency_absent, access_denied or command_timeout
        OperationCancelled: if the token was cancelled while waiting
    """
    tool = args[0]
    if shutil.which(tool) is None:
        raise SignalCollectionError(f"dependency_absent: {tool}")

    token.raise_if_cancelled()

    try:
        proc = subprocess.Popen(
            list(args),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except FileNotFoundError:
        raise SignalCollectionError(f"dependency_absent: {tool}")
    except PermissionError:
        raise SignalCollectionError("access_denied", notes=f"cannot execute {tool}")

    deadline = time.monotonic() + timeout
    while True:
        try:
            stdout, stderr = proc.communicate(timeout=COMMAND_POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if token.cancelled:
                _kill(proc)
                raise OperationCancelled(token.reason or "cancelled")
            if time.monotonic() >= deadline:
                _kill(proc)
                raise SignalCollectionError(
                    "command_timeout", notes=f"{tool} exceeded {timeout:.0f}s"
                )

    return CommandOutput(proc.returncode, stdout or "", stderr or "")


def _kill(proc: subprocess.Popen) -> None:
    proc.kill()
    try:
        proc.communicate(timeout=1)
    except subprocess.TimeoutExpired:
        logger.debug(f"Process {proc.pid} did not exit after kill")


def read_text(path, missing_reason: str = "not_supported") -> str:
    """
    Read a small sysfs/procfs file.

    Raises:
        SignalCollectionError: ``missing_reason`` if absent, access_denied if unreadable
    """
    path = Path(path)
    try:
        return path.read_text().strip()
    except FileNotFoundError:
        raise SignalCollectionError(missing_reason, notes=str(path))
    except PermissionError:
        raise SignalCollectionError("access_denied", notes=str(path))
    except OSError as e:
        raise SignalCollectionError(f"read_failed: {e.strerror or e}", notes=str(path))


def read_int(path, missing_reason: str = "not_supported") -> int:
    """Read a sysfs file holding a single integer."""
    text = read_text(path, missing_reason)
    try:
        return int(text)
    except ValueError:
        raise SignalCollectionError("parse_error", notes=f"{path}: {text[:40]!r}")
