"""
Kernel log access through journalctl.

Several collectors count kernel events (machine checks, GPU resets,
oopses, power-limit notifications) over 7 and 30 day windows. They all
read the log through ``read_kernel_log()`` so permission and dependency
failures map to the same reason codes everywhere.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Pattern

from ..cancellation import CancellationToken
from ..collector import run_command
from ..errors import SignalCollectionError

logger = logging.getLogger(__name__)

JOURNAL_SOURCE = "journalctl -k"

# journalctl prints these when the caller may not read the system journal
RESTRICTED_HINTS = (
    "not seeing messages from other users",
    "insufficient permissions",
    "users in groups",
)


@dataclass
class KernelLogEntry:
    timestamp: Optional[datetime]
    message: str


@dataclass
class KernelLog:
    """Parsed kernel log lines plus whether the view was restricted."""
    entries: List[KernelLogEntry] = field(default_factory=list)
    restricted: bool = False

    def matching(self, pattern: Pattern, days: Optional[int] = None) -> List[KernelLogEntry]:
        """Entries whose message matches ``pattern``, optionally within ``days``."""
        cutoff = None
        if days is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        found = []
        for entry in self.entries:
            if not pattern.search(entry.message):
                continue
            if cutoff and entry.timestamp and entry.timestamp < cutoff:
                continue
            found.append(entry)
        return found

    def count(self, pattern: Pattern, days: Optional[int] = None) -> int:
        return len(self.matching(pattern, days))


def parse_timestamp(text: str) -> Optional[datetime]:
    """Parse a ``short-iso`` journal timestamp."""
    for fmt in ("%Y-%m-%dT%H:%M:%S%z", "%Y-%m-%dT%H:%M:%S.%f%z"):
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def parse_journal_lines(lines: Iterable[str]) -> List[KernelLogEntry]:
    """
    Parse ``journalctl -o short-iso`` output.

    Line shape: ``2024-05-01T10:00:00+0000 host kernel: message``
    """
    entries = []
    for line in lines:
        line = line.strip()
        if not line or line.startswith("--"):
            continue
        parts = line.split(" ", 2)
        if len(parts) < 3:
            continue
        timestamp = parse_timestamp(parts[0])
        message = parts[2]
        if message.startswith("kernel: "):
            message = message[len("kernel: "):]
        entries.append(KernelLogEntry(timestamp, message))
    return entries


def read_kernel_log(token: CancellationToken, days: int = 30,
                    priority: Optional[str] = None, timeout: float = 10.0) -> KernelLog:
    """
    Read kernel messages from the last ``days`` days.

    Raises:
        SignalCollectionError: dependency_absent / access_denied / command_failed
    """
    args = ["journalctl", "-k", "--no-pager", "-q", "-o", "short-iso",
            "--since", f"-{days}d"]
    if priority:
        args += ["-p", priority]

    output = run_command(args, token, timeout=timeout)
    stderr = output.stderr.lower()
    restricted = any(hint in stderr for hint in RESTRICTED_HINTS)

    if not output.ok:
        if restricted or "permission" in stderr:
            raise SignalCollectionError("access_denied", notes="journal not readable by this user")
        raise SignalCollectionError(
            f"command_failed: journalctl exit {output.returncode}",
            notes=output.stderr.strip()[:200] or None,
        )

    log = KernelLog(parse_journal_lines(output.stdout.splitlines()), restricted)
    logger.debug(f"Kernel log: {len(log.entries)} entries over {days}d (restricted={restricted})")
    return log


def compile_any(*patterns: str) -> Pattern:
    """Case-insensitive alternation of regex fragments."""
    return re.compile("|".join(f"(?:{p})" for p in patterns), re.IGNORECASE)
