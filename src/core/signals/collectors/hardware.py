"""
Hardware error and memory pressure collectors.

hardwareErrors combines EDAC memory-controller counters from sysfs with
machine-check / PCIe AER events from the kernel log. memoryPressure
samples major page faults from /proc/vmstat while the run is in flight.
"""

import logging
import math
import time
from pathlib import Path
from typing import Dict, List, Optional

import psutil

from ..cancellation import CancellationToken
from ..collector import SignalCollector, read_int, read_text
from ..errors import SignalCollectionError
from ..models import SignalCategory, SignalResult
from .journal import compile_any, read_kernel_log

logger = logging.getLogger(__name__)

EDAC_ROOT = Path("/sys/devices/system/edac/mc")
VMSTAT_PATH = Path("/proc/vmstat")

HARDWARE_ERROR_PATTERN = compile_any(
    r"mce: \[hardware error\]",
    r"machine check",
    r"hardware error",
    r"\bAER:",
    r"EDAC .*(?:CE|UE)",
)
FATAL_PATTERN = compile_any(r"fatal", r"uncorrected", r"\bUE\b", r"panic")

# Major faults per second above which memory is considered under pressure
HARD_FAULTS_THRESHOLD = 500
SUSTAINED_PRESSURE_SECONDS = 5


def read_edac_counters(root: Path = EDAC_ROOT) -> Optional[Dict[str, int]]:
    """Sum corrected/uncorrected counts over all memory controllers, None if no EDAC."""
    controllers = sorted(root.glob("mc[0-9]*")) if root.exists() else []
    if not controllers:
        return None

    corrected = uncorrected = 0
    for mc in controllers:
        try:
            corrected += read_int(mc / "ce_count")
            uncorrected += read_int(mc / "ue_count")
        except SignalCollectionError as e:
            logger.debug(f"EDAC {mc.name}: {e.reason}")
    return {"controllers": len(controllers), "corrected": corrected, "uncorrected": uncorrected}


class HardwareErrorsCollector(SignalCollector):
    """Machine check, AER and EDAC errors (fatal -> suspect, any recent -> partial)."""

    name = "hardwareErrors"
    default_timeout = 15.0
    priority = 15
    category = SignalCategory.HARDWARE
    source = "edac+journalctl"

    def __init__(self, timeout: float = None, edac_root: Path = EDAC_ROOT):
        super().__init__(timeout)
        self.edac_root = Path(edac_root)

    def read(self, token: CancellationToken) -> SignalResult:
        edac = read_edac_counters(self.edac_root)

        journal_error = None
        log = None
        try:
            log = read_kernel_log(token, days=30, timeout=self.default_timeout - 2)
        except SignalCollectionError as e:
            journal_error = e
            if edac is None:
                raise

        value = {
            "edac_available": edac is not None,
            "corrected_errors": edac["corrected"] if edac else None,
            "uncorrected_errors": edac["uncorrected"] if edac else None,
            "events_7d": None,
            "events_30d": None,
            "fatal_events": None,
            "last_event": None,
        }

        if log is not None:
            events = log.matching(HARDWARE_ERROR_PATTERN, days=30)
            fatal = [e for e in events if FATAL_PATTERN.search(e.message)]
            value["events_7d"] = log.count(HARDWARE_ERROR_PATTERN, days=7)
            value["events_30d"] = len(events)
            value["fatal_events"] = len(fatal)
            if events:
                value["last_event"] = events[-1].message[:160]

        fatal_count = (value["fatal_events"] or 0) + (value["uncorrected_errors"] or 0)
        any_events = (value["events_30d"] or 0) + (value["corrected_errors"] or 0)

        if fatal_count:
            return self.suspect(value, notes=f"{fatal_count} fatal/uncorrected hardware errors")
        if journal_error is not None:
            return self.partial(value, notes=f"kernel log unavailable: {journal_error.reason}",
                                source="edac")
        if log is not None and log.restricted:
            return self.partial(value, notes="kernel log view restricted for this user")
        if any_events:
            return self.partial(value, notes=f"{any_events} corrected hardware errors")
        return self.ok(value)


def read_major_faults(path: Path = VMSTAT_PATH) -> int:
    for line in read_text(path).splitlines():
        key, _, count = line.partition(" ")
        if key == "pgmajfault":
            return int(count)
    raise SignalCollectionError("not_supported", notes="pgmajfault missing from vmstat")


def percentile(values: List[float], pct: float) -> Optional[float]:
    """Nearest-rank percentile, None for an empty list."""
    if not values:
        return None
    ordered = sorted(values)
    rank = max(1, math.ceil(pct / 100.0 * len(ordered)))
    return ordered[rank - 1]


class MemoryPressureCollector(SignalCollector):
    """Hard page faults per second, sampled over a short window."""

    name = "memoryPressure"
    default_timeout = 20.0
    priority = 5
    category = SignalCategory.HARDWARE
    source = "/proc/vmstat+psutil"

    def __init__(self, timeout: float = None, sample_seconds: int = 3,
                 interval: float = 1.0, vmstat_path: Path = VMSTAT_PATH):
        super().__init__(timeout)
        self.sample_seconds = max(1, int(sample_seconds))
        self.interval = interval
        self.vmstat_path = Path(vmstat_path)

    def read(self, token: CancellationToken) -> SignalResult:
        mem = psutil.virtual_memory()
        swap = psutil.swap_memory()
        value = {
            "total_mb": round(mem.total / (1024 ** 2)),
            "used_mb": round(mem.used / (1024 ** 2)),
            "available_percent": round(mem.available * 100.0 / mem.total, 1) if mem.total else None,
            "swap_percent": swap.percent,
            "faults_per_sec_avg": None,
            "faults_per_sec_p95": None,
            "faults_per_sec_max": None,
            "sustained_seconds": 0,
            "samples": 0,
        }

        rates = self._sample_fault_rates(token)
        if rates is None:
            return self.partial(value, notes="vmstat unavailable, memory totals only",
                                source="psutil")

        value["samples"] = len(rates)
        if not rates:
            return self.partial(value, notes="no_samples_collected")

        value["faults_per_sec_avg"] = round(sum(rates) / len(rates), 1)
        value["faults_per_sec_p95"] = round(percentile(rates, 95), 1)
        value["faults_per_sec_max"] = round(max(rates), 1)
        value["sustained_seconds"] = self._longest_run_above(rates)

        if value["sustained_seconds"] > SUSTAINED_PRESSURE_SECONDS:
            return self.suspect(value, notes="sustained hard-fault pressure")
        if value["faults_per_sec_p95"] > HARD_FAULTS_THRESHOLD:
            return self.partial(value, notes="hard-fault spikes")
        return self.ok(value)

    def _sample_fault_rates(self, token: CancellationToken) -> Optional[List[float]]:
        try:
            previous = read_major_faults(self.vmstat_path)
        except (SignalCollectionError, ValueError) as e:
            logger.debug(f"vmstat unreadable: {e}")
            return None

        rates = []
        last_time = time.monotonic()
        for _ in range(self.sample_seconds):
            token.sleep(self.interval)
            try:
                current = read_major_faults(self.vmstat_path)
            except (SignalCollectionError, ValueError):
                continue
            now = time.monotonic()
            elapsed = now - last_time
            if elapsed > 0 and current >= previous:
                rates.append((current - previous) / elapsed)
            previous, last_time = current, now
        return rates

    def _longest_run_above(self, rates: List[float]) -> int:
        longest = current = 0
        for rate in rates:
            current = current + 1 if rate > HARD_FAULTS_THRESHOLD else 0
            longest = max(longest, current)
        return int(longest * self.interval)
