"""
Bundled Collector Registry

Adding a collector means adding its class to COLLECTOR_CLASSES; the
orchestrator itself never changes.
"""

import logging
from typing import Iterable, List, Optional

from .gpu import GpuRootCauseCollector
from .hardware import HardwareErrorsCollector, MemoryPressureCollector
from .network import InternetSpeedTestCollector, NetworkQualityCollector
from .security import FirewallStatusCollector
from .storage import StorageCapacityCollector, StorageLatencyCollector
from .system_logs import BootPerformanceCollector, DriverStabilityCollector
from .thermal import CpuTemperatureCollector, CpuThrottleCollector, PowerLimitsCollector

logger = logging.getLogger(__name__)

# Registry order is the order of the result map
COLLECTOR_CLASSES = (
    HardwareErrorsCollector,
    GpuRootCauseCollector,
    CpuThrottleCollector,
    CpuTemperatureCollector,
    NetworkQualityCollector,
    MemoryPressureCollector,
    StorageLatencyCollector,
    StorageCapacityCollector,
    DriverStabilityCollector,
    BootPerformanceCollector,
    PowerLimitsCollector,
    FirewallStatusCollector,
    InternetSpeedTestCollector,
)

# Flaky kernel-log and sensor reads that get one retry
DEFAULT_CRITICAL = frozenset({"hardwareErrors", "cpuTemperature", "driverStability"})

COLLECTOR_NAMES = tuple(cls.name for cls in COLLECTOR_CLASSES)

# Only run when ALLOW_EXTERNAL_NETWORK_TESTS is set or named explicitly
OPT_IN_COLLECTORS = frozenset({"internetSpeedTest"})


def default_collectors(settings=None, only: Optional[Iterable[str]] = None) -> List:
    """
    Instantiate the bundled collectors.

    Opt-in collectors (the internet speed test) are left out of a default run
    unless external tests are allowed, so a deliberate setting never shows up
    as missing data. Names passed in ``only`` are built regardless of the
    disabled list and the opt-in switch.

    Args:
        settings: Optional SignalSettings; supplies per-collector timeouts,
            disabled collectors, sampling windows and the external-test switch.
        only: Optional collector names to build instead of the default set

    Raises:
        ValueError: if ``only`` names a collector that does not exist
    """
    timeouts = getattr(settings, "timeouts", None) or {}
    disabled = set(getattr(settings, "disabled", None) or ())
    allow_external = bool(getattr(settings, "allow_external_network_tests", False))
    ping_count = getattr(settings, "ping_count", 4)
    sample_seconds = getattr(settings, "sample_seconds", 3)

    def timeout(cls) -> Optional[float]:
        return timeouts.get(cls.name)

    collectors = [
        HardwareErrorsCollector(timeout(HardwareErrorsCollector)),
        GpuRootCauseCollector(timeout(GpuRootCauseCollector)),
        CpuThrottleCollector(timeout(CpuThrottleCollector)),
        CpuTemperatureCollector(timeout(CpuTemperatureCollector)),
        NetworkQualityCollector(timeout(NetworkQualityCollector), ping_count=ping_count),
        MemoryPressureCollector(timeout(MemoryPressureCollector), sample_seconds=sample_seconds),
        StorageLatencyCollector(timeout(StorageLatencyCollector), sample_seconds=sample_seconds),
        StorageCapacityCollector(timeout(StorageCapacityCollector)),
        DriverStabilityCollector(timeout(DriverStabilityCollector)),
        BootPerformanceCollector(timeout(BootPerformanceCollector)),
        PowerLimitsCollector(timeout(PowerLimitsCollector)),
        FirewallStatusCollector(timeout(FirewallStatusCollector)),
        InternetSpeedTestCollector(timeout(InternetSpeedTestCollector), enabled=allow_external),
    ]

    if only:
        wanted = set(only)
        unknown = wanted - set(COLLECTOR_NAMES)
        if unknown:
            raise ValueError(f"Unknown collectors: {', '.join(sorted(unknown))}")
        return [c for c in collectors if c.name in wanted]

    if not allow_external:
        collectors = [c for c in collectors if c.name not in OPT_IN_COLLECTORS]

    if disabled:
        unknown = disabled - set(COLLECTOR_NAMES)
        if unknown:
            logger.warning(f"Ignoring unknown disabled collectors: {', '.join(sorted(unknown))}")
        collectors = [c for c in collectors if c.name not in disabled]

    return collectors


__all__ = [
    'COLLECTOR_CLASSES',
    'COLLECTOR_NAMES',
    'DEFAULT_CRITICAL',
    'OPT_IN_COLLECTORS',
    'default_collectors',
    'BootPerformanceCollector',
    'CpuTemperatureCollector',
    'CpuThrottleCollector',
    'DriverStabilityCollector',
    'FirewallStatusCollector',
    'GpuRootCauseCollector',
    'HardwareErrorsCollector',
    'InternetSpeedTestCollector',
    'MemoryPressureCollector',
    'NetworkQualityCollector',
    'PowerLimitsCollector',
    'StorageCapacityCollector',
    'StorageLatencyCollector',
]
