"""Thermal collectors: CPU temperature, throttling and power limits."""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import psutil

from ..cancellation import CancellationToken
from ..collector import SignalCollector, read_int, read_text
from ..errors import SignalCollectionError
from ..models import SignalCategory, SignalResult
from .journal import compile_any, read_kernel_log

logger = logging.getLogger(__name__)

THERMAL_ROOT = Path("/sys/class/thermal")
CPU_ROOT = Path("/sys/devices/system/cpu")
POWERCAP_ROOT = Path("/sys/class/powercap")

# psutil sensor chips that report the CPU, best first
CPU_SENSOR_CHIPS = ("coretemp", "k10temp", "zenpower", "cpu_thermal", "cpu-thermal", "soc_thermal")
PACKAGE_LABELS = ("package id", "tctl", "tdie", "cpu")

THERMAL_ZONE_TYPES = ("x86_pkg_temp", "cpu", "soc", "acpitz")

HOT_CPU_C = 95
THROTTLE_PERFORMANCE_PERCENT = 70
THROTTLE_COUNT_THRESHOLD = 3


class CpuTemperatureCollector(SignalCollector):
    """CPU package temperature from hwmon (psutil), falling back to thermal zones."""

    name = "cpuTemperature"
    default_timeout = 10.0
    priority = 8
    category = SignalCategory.THERMAL
    source = "psutil.sensors_temperatures"

    def __init__(self, timeout: float = None, thermal_root: Path = THERMAL_ROOT):
        super().__init__(timeout)
        self.thermal_root = Path(thermal_root)

    def read(self, token: CancellationToken) -> SignalResult:
        reading = self._from_psutil()
        if reading is not None:
            value, notes = reading
            return self._grade(value, notes, partial=False)

        token.raise_if_cancelled()
        reading = self._from_thermal_zones()
        if reading is None:
            raise SignalCollectionError("no_sensor", notes="no hwmon CPU chip or thermal zone")
        value, notes = reading
        return self._grade(value, notes, partial=value["sensor"] == "acpitz",
                           source=f"{self.thermal_root}")

    def _grade(self, value: dict, notes: Optional[str], partial: bool,
               source: str = None) -> SignalResult:
        hottest = max(t for t in (value.get("package_c"), value.get("max_core_c")) if t is not None)
        if hottest >= HOT_CPU_C:
            return self.suspect(value, notes=f"CPU at {hottest:.0f}°C", source=source)
        if partial:
            return self.partial(value, notes=notes or "ACPI zone, not a CPU sensor", source=source)
        return self.ok(value, notes=notes, source=source)

    def _from_psutil(self) -> Optional[Tuple[dict, Optional[str]]]:
        if not hasattr(psutil, "sensors_temperatures"):
            return None
        try:
            chips = psutil.sensors_temperatures()
        except (OSError, RuntimeError) as e:
            logger.debug(f"sensors_temperatures failed: {e}")
            return None

        for chip in CPU_SENSOR_CHIPS:
            entries = chips.get(chip)
            if not entries:
                continue
            package = None
            cores: List[float] = []
            for entry in entries:
                label = (entry.label or "").lower()
                if package is None and any(label.startswith(p) for p in PACKAGE_LABELS):
                    package = entry.current
                elif label.startswith("core"):
                    cores.append(entry.current)
            if package is None:
                package = entries[0].current
            value = {
                "package_c": package,
                "max_core_c": max(cores) if cores else None,
                "cores": len(cores),
                "sensor": chip,
            }
            return value, None
        return None

    def _from_thermal_zones(self) -> Optional[Tuple[dict, Optional[str]]]:
        zones: Dict[str, float] = {}
        for zone in sorted(self.thermal_root.glob("thermal_zone*")):
            try:
                zone_type = read_text(zone / "type")
                millideg = read_int(zone / "temp")
            except SignalCollectionError:
                continue
            zones.setdefault(zone_type, millideg / 1000.0)

        for wanted in THERMAL_ZONE_TYPES:
            for zone_type, temp in zones.items():
                if wanted in zone_type.lower():
                    value = {"package_c": temp, "max_core_c": None, "cores": 0, "sensor": zone_type}
                    return value, f"thermal zone {zone_type}"
        return None


class CpuThrottleCollector(SignalCollector):
    """Thermal throttle counters and current-vs-max clock."""

    name = "cpuThrottle"
    default_timeout = 20.0
    priority = 6
    category = SignalCategory.THERMAL
    source = "sysfs thermal_throttle+cpufreq"

    def __init__(self, timeout: float = None, cpu_root: Path = CPU_ROOT):
        super().__init__(timeout)
        self.cpu_root = Path(cpu_root)

    def read(self, token: CancellationToken) -> SignalResult:
        counters = self._throttle_counters()
        freq = psutil.cpu_freq() if hasattr(psutil, "cpu_freq") else None

        if counters is None and not freq:
            raise SignalCollectionError("not_supported", notes="no thermal_throttle or cpufreq data")

        value = {
            "core_throttle_count": counters[0] if counters else None,
            "package_throttle_count": counters[1] if counters else None,
            "current_mhz": round(freq.current) if freq else None,
            "max_mhz": round(freq.max) if freq and freq.max else None,
            "performance_percent": None,
            "throttling_suspected": False,
        }
        if freq and freq.max:
            value["performance_percent"] = round(min(100.0, freq.current * 100.0 / freq.max), 1)

        total_events = (value["core_throttle_count"] or 0) + (value["package_throttle_count"] or 0)
        perf = value["performance_percent"]
        value["throttling_suspected"] = (
            total_events >= THROTTLE_COUNT_THRESHOLD
            or (perf is not None and perf < THROTTLE_PERFORMANCE_PERCENT)
        )

        if value["throttling_suspected"]:
            return self.suspect(value, notes=f"{total_events} throttle events, perf {perf}%")
        if counters is None or perf is None:
            return self.partial(value, notes="throttle counters or max clock unavailable")
        return self.ok(value)

    def _throttle_counters(self) -> Optional[Tuple[int, int]]:
        core_total = package_total = 0
        found = False
        for cpu in self.cpu_root.glob("cpu[0-9]*"):
            throttle = cpu / "thermal_throttle"
            if not throttle.is_dir():
                continue
            found = True
            try:
                core_total += read_int(throttle / "core_throttle_count")
            except SignalCollectionError:
                pass
            try:
                # package counter is shared by every core of the package
                package_total = max(package_total, read_int(throttle / "package_throttle_count"))
            except SignalCollectionError:
                pass
        return (core_total, package_total) if found else None


POWER_LIMIT_PATTERN = compile_any(
    r"power limit notification",
    r"core power limit",
    r"package power limit",
    r"rapl",
)
THERMAL_EVENT_PATTERN = compile_any(
    r"temperature above threshold",
    r"cpu clock throttled",
    r"critical temperature",
    r"thermal.*shutdown",
)


class PowerLimitsCollector(SignalCollector):
    """Power-cap and thermal threshold events from the kernel log, plus RAPL limit."""

    name = "powerLimits"
    default_timeout = 15.0
    priority = 4
    category = SignalCategory.THERMAL
    source = "journalctl+powercap"

    def __init__(self, timeout: float = None, powercap_root: Path = POWERCAP_ROOT):
        super().__init__(timeout)
        self.powercap_root = Path(powercap_root)

    def read(self, token: CancellationToken) -> SignalResult:
        log = read_kernel_log(token, days=30, timeout=self.default_timeout - 2)

        value = {
            "thermal_events_7d": log.count(THERMAL_EVENT_PATTERN, days=7),
            "power_limit_events_7d": log.count(POWER_LIMIT_PATTERN, days=7),
            "events_30d": log.count(THERMAL_EVENT_PATTERN, days=30) + log.count(POWER_LIMIT_PATTERN, days=30),
            "package_power_limit_w": self._package_power_limit(),
        }
        recent = value["thermal_events_7d"] + value["power_limit_events_7d"]

        if recent >= 3:
            return self.suspect(value, notes=f"{recent} power/thermal limit events in 7 days")
        if recent or log.restricted:
            notes = "kernel log view restricted" if log.restricted and not recent else None
            return self.partial(value, notes=notes)
        return self.ok(value)

    def _package_power_limit(self) -> Optional[float]:
        try:
            microwatts = read_int(self.powercap_root / "intel-rapl:0" / "constraint_0_power_limit_uw")
        except SignalCollectionError:
            return None
        return round(microwatts / 1_000_000, 1)
