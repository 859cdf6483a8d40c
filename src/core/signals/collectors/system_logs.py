"""Kernel stability and boot performance collectors."""

import logging
import re
import time
from collections import Counter
from typing import Dict, Optional

import psutil

from ..cancellation import CancellationToken
from ..collector import SignalCollector, run_command
from ..errors import SignalCollectionError
from ..models import SignalCategory, SignalResult
from .journal import compile_any, read_kernel_log

logger = logging.getLogger(__name__)

KERNEL_CRASH_PATTERN = compile_any(
    r"\bOops\b",
    r"(?-i:\bBUG: )",  # case-sensitive, "debug: " is not a crash
    r"kernel panic",
    r"general protection fault",
    r"unable to handle (?:kernel )?(?:paging request|NULL pointer)",
    r"watchdog: BUG: soft lockup",
)
GPU_DRIVER_PATTERN = compile_any(r"\[drm", r"amdgpu", r"nouveau", r"i915", r"NVRM")
APP_CRASH_PATTERN = compile_any(r"segfault at", r"traps: .* general protection")
_MODULE = re.compile(r"^\s*([a-zA-Z0-9_\-]+)[\s:\[]")

BOOT_SLOW_MS = 120000
MAX_FAILED_UNITS = 3


class DriverStabilityCollector(SignalCollector):
    """Kernel crashes, driver errors and user-space crashes over 30 days."""

    name = "driverStability"
    default_timeout = 20.0
    priority = 8
    category = SignalCategory.MONITORING
    source = "journalctl -k -p err"

    def read(self, token: CancellationToken) -> SignalResult:
        errors = read_kernel_log(token, days=30, priority="err", timeout=self.default_timeout - 2)
        warnings = read_kernel_log(token, days=30, priority="warning", timeout=self.default_timeout - 2)

        kernel_crashes = errors.count(KERNEL_CRASH_PATTERN)
        gpu_errors = errors.count(GPU_DRIVER_PATTERN)
        app_crashes = warnings.count(APP_CRASH_PATTERN)

        modules: Counter = Counter()
        for entry in errors.entries:
            match = _MODULE.match(entry.message)
            if match:
                modules[match.group(1)] += 1

        value = {
            "kernel_crashes": kernel_crashes,
            "gpu_driver_errors": gpu_errors,
            "app_crashes": app_crashes,
            "error_lines": len(errors.entries),
            "top_sources": [name for name, _ in modules.most_common(5)],
        }

        if kernel_crashes:
            return self.suspect(value, notes=f"{kernel_crashes} kernel crash events")
        if gpu_errors or app_crashes:
            return self.partial(value, notes="driver or application errors logged")
        if errors.restricted:
            return self.partial(value, notes="kernel log view restricted")
        return self.ok(value)


_DURATION_PART = re.compile(r"([\d.]+)(min|ms|s|h)\b")
_STAGE = re.compile(r"([\dhmins. ]+?)\s*\((firmware|loader|kernel|initrd|userspace)\)")
_TOTAL = re.compile(r"=\s*([\dhmins. ]+?)\s*$", re.MULTILINE)


def parse_systemd_duration(text: str) -> Optional[int]:
    """Convert '1min 2.345s' / '812ms' to milliseconds."""
    factors = {"h": 3600000, "min": 60000, "s": 1000, "ms": 1}
    total = 0.0
    found = False
    for amount, unit in _DURATION_PART.findall(text):
        total += float(amount) * factors[unit]
        found = True
    return int(round(total)) if found else None


def parse_systemd_analyze(output: str) -> Dict[str, Optional[int]]:
    """Parse ``systemd-analyze time`` into per-stage milliseconds."""
    stages: Dict[str, Optional[int]] = {}
    first_line = output.splitlines()[0] if output else ""
    for text, stage in _STAGE.findall(first_line):
        stages[f"{stage}_ms"] = parse_systemd_duration(text)
    total = _TOTAL.search(first_line)
    stages["boot_time_ms"] = parse_systemd_duration(total.group(1)) if total else None
    return stages


class BootPerformanceCollector(SignalCollector):
    """Boot duration from systemd-analyze, uptime-only fallback."""

    name = "bootPerformance"
    default_timeout = 15.0
    priority = 4
    category = SignalCategory.MONITORING
    source = "systemd-analyze"

    def read(self, token: CancellationToken) -> SignalResult:
        uptime_hours = round((time.time() - psutil.boot_time()) / 3600, 1)

        try:
            output = run_command(["systemd-analyze", "time"], token, timeout=self.default_timeout - 3)
        except SignalCollectionError as e:
            return self._fallback(uptime_hours, e.reason)

        if not output.ok or "Startup finished" not in output.stdout:
            reason = "boot_not_finished" if "not yet finished" in output.stderr else \
                f"command_failed: systemd-analyze exit {output.returncode}"
            return self._fallback(uptime_hours, reason)

        value = parse_systemd_analyze(output.stdout)
        value["uptime_hours"] = uptime_hours
        value["failed_units"] = self._failed_units(token)

        boot_ms = value.get("boot_time_ms") or 0
        failed = value["failed_units"] or 0
        if boot_ms > BOOT_SLOW_MS or failed > MAX_FAILED_UNITS:
            return self.suspect(value, notes=f"boot {boot_ms}ms, {failed} failed units")
        if value["failed_units"] is None:
            return self.partial(value, notes="failed unit count unavailable")
        return self.ok(value)

    def _failed_units(self, token: CancellationToken) -> Optional[int]:
        try:
            output = run_command(["systemctl", "--failed", "--no-legend", "--plain"], token, timeout=5)
        except SignalCollectionError as e:
            logger.debug(f"systemctl --failed: {e.reason}")
            return None
        return len(output.lines()) if output.ok else None

    def _fallback(self, uptime_hours: float, why: str) -> SignalResult:
        value = {"boot_time_ms": None, "uptime_hours": uptime_hours, "failed_units": None}
        return self.partial(value, notes=f"uptime only ({why})", source="psutil.boot_time")
