"""GPU hang/reset root-cause collector."""

import logging
import os
from pathlib import Path
from typing import List, Optional

import psutil

from ..cancellation import CancellationToken
from ..collector import SignalCollector
from ..errors import SignalCollectionError
from ..models import SignalCategory, SignalResult
from .journal import compile_any, read_kernel_log

logger = logging.getLogger(__name__)

DRM_ROOT = Path("/sys/class/drm")
GPU_SENSOR_CHIPS = ("amdgpu", "radeon", "nouveau", "nvidia")

GPU_RESET_PATTERN = compile_any(
    r"gpu hang",
    r"gpu reset",
    r"ring \S+ timeout",
    r"NVRM: Xid",
    r"amdgpu.*timeout",
    r"i915.*(?:hang|reset)",
    r"\[drm\] \*ERROR\*.*(?:hang|timed out)",
)
GPU_THROTTLE_PATTERN = compile_any(r"gpu.*throttl", r"amdgpu.*power.*limit")


def detect_gpu_drivers(drm_root: Path = DRM_ROOT) -> List[str]:
    """Driver names bound to DRM cards (card0, card1, ...)."""
    drivers = []
    for card in sorted(drm_root.glob("card[0-9]")):
        driver = card / "device" / "driver"
        try:
            name = os.path.basename(os.readlink(driver))
        except OSError:
            continue
        if name not in drivers:
            drivers.append(name)
    return drivers


class GpuRootCauseCollector(SignalCollector):
    """GPU resets and driver timeouts (TDR-equivalent) over 7/30 days."""

    name = "gpuRootCause"
    default_timeout = 15.0
    priority = 10
    category = SignalCategory.HARDWARE
    source = "journalctl -k (drm)"

    def __init__(self, timeout: float = None, drm_root: Path = DRM_ROOT):
        super().__init__(timeout)
        self.drm_root = Path(drm_root)

    def read(self, token: CancellationToken) -> SignalResult:
        drivers = detect_gpu_drivers(self.drm_root)
        if not drivers:
            raise SignalCollectionError("no_gpu_detected", notes=f"no cards under {self.drm_root}")

        log = read_kernel_log(token, days=30, timeout=self.default_timeout - 2)
        value = {
            "drivers": drivers,
            "resets_7d": log.count(GPU_RESET_PATTERN, days=7),
            "resets_30d": log.count(GPU_RESET_PATTERN, days=30),
            "throttle_events_7d": log.count(GPU_THROTTLE_PATTERN, days=7),
            "throttle_events_30d": log.count(GPU_THROTTLE_PATTERN, days=30),
            "temperature_c": self._temperature(),
            "throttling_suspected": False,
        }
        value["throttling_suspected"] = (
            value["throttle_events_7d"] >= 2 or value["throttle_events_30d"] >= 5
        )

        if value["resets_7d"]:
            return self.suspect(value, notes=f"{value['resets_7d']} GPU resets in 7 days")
        if value["throttling_suspected"] or value["resets_30d"]:
            return self.partial(value, notes="older GPU resets or throttling")
        if log.restricted:
            return self.partial(value, notes="kernel log view restricted")
        return self.ok(value)

    def _temperature(self) -> Optional[float]:
        if not hasattr(psutil, "sensors_temperatures"):
            return None
        try:
            chips = psutil.sensors_temperatures()
        except (OSError, RuntimeError):
            return None
        for chip in GPU_SENSOR_CHIPS:
            entries = chips.get(chip)
            if entries:
                return entries[0].current
        return None
