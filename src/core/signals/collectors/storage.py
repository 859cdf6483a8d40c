"""
Storage collectors.

storageLatency samples /proc/diskstats for whole disks (the entries of
/sys/block, minus loop and ram devices) and derives per-operation latency
and average queue depth. storageCapacity reports mounted volume usage.
"""

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import psutil

from ..cancellation import CancellationToken
from ..collector import SignalCollector, read_text
from ..errors import SignalCollectionError
from ..models import SignalCategory, SignalResult
from .hardware import percentile

logger = logging.getLogger(__name__)

DISKSTATS_PATH = Path("/proc/diskstats")
SYS_BLOCK = Path("/sys/block")
VIRTUAL_DEVICE_PREFIXES = ("loop", "ram", "zram", "dm-", "md", "sr")

# Samples outside these bands are dropped as counter glitches
MAX_LATENCY_MS = 10000
MAX_QUEUE_DEPTH = 1000

LATENCY_SUSPECT_MS = 100
LATENCY_PARTIAL_MS = 20

SKIP_FSTYPES = ("squashfs", "tmpfs", "devtmpfs", "overlay", "iso9660")


@dataclass
class DiskCounters:
    """Cumulative /proc/diskstats counters for one device."""
    reads: int
    read_ms: int
    writes: int
    write_ms: int
    weighted_ms: int


def parse_diskstats(text: str) -> Dict[str, DiskCounters]:
    stats = {}
    for line in text.splitlines():
        fields = line.split()
        if len(fields) < 14:
            continue
        try:
            stats[fields[2]] = DiskCounters(
                reads=int(fields[3]),
                read_ms=int(fields[6]),
                writes=int(fields[7]),
                write_ms=int(fields[10]),
                weighted_ms=int(fields[13]),
            )
        except ValueError:
            continue
    return stats


def physical_disks(sys_block: Path = SYS_BLOCK) -> List[str]:
    try:
        names = os.listdir(sys_block)
    except OSError:
        return []
    return sorted(n for n in names if not n.startswith(VIRTUAL_DEVICE_PREFIXES))


class StorageLatencyCollector(SignalCollector):
    """Average and p95 I/O latency plus queue depth over a short window."""

    name = "storageLatency"
    default_timeout = 15.0
    priority = 6
    category = SignalCategory.STORAGE
    source = "/proc/diskstats"

    def __init__(self, timeout: float = None, sample_seconds: int = 3, interval: float = 1.0,
                 diskstats_path: Path = DISKSTATS_PATH, sys_block: Path = SYS_BLOCK):
        super().__init__(timeout)
        self.sample_seconds = max(1, int(sample_seconds))
        self.interval = interval
        self.diskstats_path = Path(diskstats_path)
        self.sys_block = Path(sys_block)

    def read(self, token: CancellationToken) -> SignalResult:
        disks = physical_disks(self.sys_block)
        if not disks:
            raise SignalCollectionError("no_disks_detected", notes=str(self.sys_block))

        previous = self._snapshot(disks)
        read_lat: List[float] = []
        write_lat: List[float] = []
        queue: List[float] = []

        for _ in range(self.sample_seconds):
            started = time.monotonic()
            token.sleep(self.interval)
            current = self._snapshot(disks)
            elapsed_ms = (time.monotonic() - started) * 1000

            reads = current.reads - previous.reads
            writes = current.writes - previous.writes
            if reads > 0:
                _keep(read_lat, (current.read_ms - previous.read_ms) / reads, MAX_LATENCY_MS)
            if writes > 0:
                _keep(write_lat, (current.write_ms - previous.write_ms) / writes, MAX_LATENCY_MS)
            if elapsed_ms > 0:
                _keep(queue, (current.weighted_ms - previous.weighted_ms) / elapsed_ms, MAX_QUEUE_DEPTH)
            previous = current

        if not queue:
            raise SignalCollectionError("no_samples_collected")

        all_latencies = read_lat + write_lat
        value = {
            "devices": disks,
            "read_latency_ms": _avg(read_lat),
            "write_latency_ms": _avg(write_lat),
            "p95_latency_ms": round(percentile(all_latencies, 95), 2) if all_latencies else None,
            "queue_depth": _avg(queue),
            "samples": len(queue),
        }

        p95 = value["p95_latency_ms"] or 0
        if p95 > LATENCY_SUSPECT_MS:
            return self.suspect(value, notes=f"p95 latency {p95}ms")
        if p95 > LATENCY_PARTIAL_MS:
            return self.partial(value, notes=f"elevated latency {p95}ms")
        if not all_latencies:
            return self.ok(value, notes="no I/O during sampling window")
        return self.ok(value)

    def _snapshot(self, disks: List[str]) -> DiskCounters:
        stats = parse_diskstats(read_text(self.diskstats_path))
        total = DiskCounters(0, 0, 0, 0, 0)
        for name in disks:
            c = stats.get(name)
            if c is None:
                continue
            total.reads += c.reads
            total.read_ms += c.read_ms
            total.writes += c.writes
            total.write_ms += c.write_ms
            total.weighted_ms += c.weighted_ms
        return total


def _keep(samples: List[float], value: float, upper: float) -> None:
    if 0 <= value < upper:
        samples.append(value)


def _avg(samples: List[float]) -> Optional[float]:
    return round(sum(samples) / len(samples), 2) if samples else None


class StorageCapacityCollector(SignalCollector):
    """Root volume usage plus every real mounted volume."""

    name = "storageCapacity"
    default_timeout = 10.0
    priority = 5
    category = SignalCategory.STORAGE
    source = "psutil.disk_usage"

    def __init__(self, timeout: float = None, root: str = "/"):
        super().__init__(timeout)
        self.root = root

    def read(self, token: CancellationToken) -> SignalResult:
        try:
            usage = psutil.disk_usage(self.root)
        except PermissionError:
            raise SignalCollectionError("access_denied", notes=self.root)
        except FileNotFoundError:
            raise SignalCollectionError("not_supported", notes=f"{self.root} missing")

        volumes = []
        for part in psutil.disk_partitions(all=False):
            token.raise_if_cancelled()
            if part.fstype in SKIP_FSTYPES or part.mountpoint.startswith("/snap"):
                continue
            try:
                u = psutil.disk_usage(part.mountpoint)
            except OSError:
                continue
            volumes.append({
                "mountpoint": part.mountpoint,
                "fstype": part.fstype,
                "total_gb": _gb(u.total),
                "used_percent": u.percent,
            })

        value = {
            "mountpoint": self.root,
            "total_gb": _gb(usage.total),
            "used_gb": _gb(usage.used),
            "free_gb": _gb(usage.free),
            "used_percent": usage.percent,
            "volumes": volumes,
        }

        fullest = max([usage.percent] + [v["used_percent"] for v in volumes])
        if fullest >= 95:
            return self.suspect(value, notes=f"volume {fullest}% full")
        if fullest >= 90:
            return self.partial(value, notes=f"volume {fullest}% full")
        return self.ok(value)


def _gb(size: int) -> float:
    return round(size / (1024 ** 3), 1)
