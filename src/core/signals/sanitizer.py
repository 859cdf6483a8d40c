"""
Signal Sanitizer

Separates "a collector returned a number" from "the number is physically
plausible". Sensor and counter sources surface sentinel values (0 or -1
meaning "no reading") and transient NaN/Infinity; these are turned into
explicit unavailable results with a reason code.

Sanitization runs once per run, centrally, before anything scores or
serializes the data, so every view of a run sees the same decisions.

Check order for a single value:
    nan_or_infinite -> sentinel_zero -> sentinel_minus_one -> out_of_range(min,max)
"""

import logging
import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .models import DiagnosticSignalsResult, Quality, SignalResult

logger = logging.getLogger(__name__)


# === Reason codes ===

SENTINEL_ZERO = "sentinel_zero"
SENTINEL_MINUS_ONE = "sentinel_minus_one"
NAN_OR_INFINITE = "nan_or_infinite"
NOT_NUMERIC = "not_numeric"


def out_of_range(min_value: Optional[float], max_value: Optional[float]) -> str:
    """Reason code for a value outside its plausibility band."""
    return f"out_of_range({_fmt(min_value)},{_fmt(max_value)})"


def _fmt(bound: Optional[float]) -> str:
    if bound is None:
        return ""
    if float(bound).is_integer():
        return str(int(bound))
    return str(bound)


# === Rules ===

@dataclass(frozen=True)
class MetricRule:
    """
    Plausibility rule for one numeric value of a signal.

    Attributes:
        signal: Signal name the rule applies to
        field: Key inside a dict value, or None for a scalar value
        min_value: Exclusive lower bound (None = unbounded)
        max_value: Exclusive upper bound (None = unbounded)
        zero_is_sentinel: 0 means "no reading" for this metric
        minus_one_is_sentinel: -1 means "counter unavailable"
        inclusive: Bounds are inclusive instead of exclusive
        label: Human-readable metric name for notes
    """
    signal: str
    field: Optional[str] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    zero_is_sentinel: bool = False
    minus_one_is_sentinel: bool = False
    inclusive: bool = False
    label: str = ""

    @property
    def target(self) -> str:
        return f"{self.signal}.{self.field}" if self.field else self.signal

    def check(self, value: Any) -> Optional[str]:
        """Return a reason code if ``value`` is not plausible, else None."""
        return check_value(
            value,
            min_value=self.min_value,
            max_value=self.max_value,
            zero_is_sentinel=self.zero_is_sentinel,
            minus_one_is_sentinel=self.minus_one_is_sentinel,
            inclusive=self.inclusive,
        )


@dataclass(frozen=True)
class CompositeRule:
    """
    Cross-field rule: a "used" quantity must not exceed its "total".

    ``tolerance`` allows rounding noise (5% by default, as seen on
    VRAM/memory counters that report used slightly above total).
    """
    signal: str
    used_field: str
    total_field: str
    tolerance: float = 0.05

    @property
    def target(self) -> str:
        return f"{self.signal}.{self.used_field}/{self.total_field}"

    def check(self, value: Any) -> Optional[str]:
        if not isinstance(value, dict):
            return None
        used = value.get(self.used_field)
        total = value.get(self.total_field)
        if not _is_number(used) or not _is_number(total):
            return None
        if total <= 0:
            return f"{self.total_field}_not_positive"
        if used > total * (1 + self.tolerance):
            return f"{self.used_field}_exceeds_{self.total_field}"
        return None


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def check_value(value: Any, min_value: Optional[float] = None, max_value: Optional[float] = None,
                zero_is_sentinel: bool = False, minus_one_is_sentinel: bool = False,
                inclusive: bool = False) -> Optional[str]:
    """
    Validate a single numeric reading.

    Returns:
        None if the value is plausible, otherwise the reason code.
    """
    if not _is_number(value):
        return NOT_NUMERIC

    number = float(value)
    if math.isnan(number) or math.isinf(number):
        return NAN_OR_INFINITE
    if zero_is_sentinel and number == 0:
        return SENTINEL_ZERO
    if minus_one_is_sentinel and number == -1:
        return SENTINEL_MINUS_ONE

    if inclusive:
        too_low = min_value is not None and number < min_value
        too_high = max_value is not None and number > max_value
    else:
        too_low = min_value is not None and number <= min_value
        too_high = max_value is not None and number >= max_value
    if too_low or too_high:
        return out_of_range(min_value, max_value)

    return None


# === Central pass ===

_MISSING = object()


@dataclass(frozen=True)
class SanitizationAction:
    """Record of one invalidated signal."""
    signal: str
    target: str
    reason: str
    raw_value: Any = None

    def to_dict(self) -> dict:
        raw = self.raw_value
        if isinstance(raw, float) and not math.isfinite(raw):
            raw = str(raw)
        return {
            "signal": self.signal,
            "target": self.target,
            "reason": self.reason,
            "rawValue": raw,
        }


@dataclass(frozen=True)
class SanitizationOutcome:
    """Sanitized run plus the list of actions taken."""
    run: DiagnosticSignalsResult
    actions: Tuple[SanitizationAction, ...] = field(default_factory=tuple)

    @property
    def invalidated_count(self) -> int:
        return len(self.actions)


def sanitize_signal(result: SignalResult, rules: Iterable) -> Tuple[SignalResult, Optional[SanitizationAction]]:
    """
    Apply every rule for ``result.name`` to one signal.

    An unavailable result is returned unchanged. The first violated rule
    invalidates the whole signal: the value is dropped, quality becomes
    suspect and the reason names the violation.
    """
    if not result.available:
        return result, None

    for rule in rules:
        if rule.signal != result.name:
            continue

        raw = _extract(result.value, rule)
        if raw is _MISSING:
            continue

        reason = rule.check(raw)
        if reason is None:
            continue

        action = SanitizationAction(result.name, rule.target, reason, raw_value=raw)
        notes = f"{rule.target} invalidated: {reason} (raw={raw!r})"
        if result.notes:
            notes = f"{result.notes}; {notes}"
        invalidated = result.evolve(
            value=None,
            available=False,
            reason=reason,
            quality=Quality.SUSPECT,
            notes=notes,
        )
        return invalidated, action

    return result, None


def _extract(value: Any, rule) -> Any:
    if isinstance(rule, CompositeRule):
        return value if isinstance(value, dict) else _MISSING
    if rule.field is None:
        return _MISSING if value is None else value
    if not isinstance(value, dict) or value.get(rule.field) is None:
        return _MISSING
    return value[rule.field]


class DataSanitizer:
    """Applies a rule table to a whole run, producing a new immutable run."""

    def __init__(self, rules: Optional[Sequence] = None):
        self.rules = list(DEFAULT_RULES if rules is None else rules)
        self._by_signal: Dict[str, List] = {}
        for rule in self.rules:
            self._by_signal.setdefault(rule.signal, []).append(rule)

    def apply(self, run: DiagnosticSignalsResult) -> SanitizationOutcome:
        replacements: Dict[str, SignalResult] = {}
        actions: List[SanitizationAction] = []

        for name, result in run.signals.items():
            rules = self._by_signal.get(name)
            if not rules:
                continue
            sanitized, action = sanitize_signal(result, rules)
            if action is not None:
                replacements[name] = sanitized
                actions.append(action)
                logger.warning(
                    f"[SANITIZE] {action.target}: {action.reason} (raw={action.raw_value!r})"
                )

        if not replacements:
            return SanitizationOutcome(run, ())
        return SanitizationOutcome(run.with_signals(replacements), tuple(actions))


# Default plausibility table for the bundled collectors.
DEFAULT_RULES = (
    MetricRule("cpuTemperature", "package_c", 5, 115, zero_is_sentinel=True,
               label="CPU package temperature"),
    MetricRule("cpuTemperature", "max_core_c", 5, 115, zero_is_sentinel=True,
               label="CPU hottest core"),
    MetricRule("gpuRootCause", "temperature_c", 5, 120, zero_is_sentinel=True,
               label="GPU temperature"),
    MetricRule("storageLatency", "read_latency_ms", 0, 10000, inclusive=True,
               label="Disk read latency"),
    MetricRule("storageLatency", "write_latency_ms", 0, 10000, inclusive=True,
               label="Disk write latency"),
    MetricRule("storageLatency", "queue_depth", 0, 1000, minus_one_is_sentinel=True,
               inclusive=True, label="Disk queue depth"),
    MetricRule("storageLatency", "disk_temperature_c", 0, 90, zero_is_sentinel=True,
               label="Disk temperature"),
    MetricRule("storageCapacity", "used_percent", 0, 100, inclusive=True,
               label="Disk usage"),
    CompositeRule("storageCapacity", "used_gb", "total_gb", tolerance=0.0),
    MetricRule("cpuThrottle", "performance_percent", 0, 100, minus_one_is_sentinel=True,
               inclusive=True, label="CPU performance"),
    MetricRule("memoryPressure", "available_percent", 0, 100, inclusive=True,
               label="Available memory"),
    CompositeRule("memoryPressure", "used_mb", "total_mb"),
    MetricRule("networkQuality", "loss_percent", 0, 100, inclusive=True,
               label="Packet loss"),
    MetricRule("networkQuality", "latency_ms", 0, 10000, minus_one_is_sentinel=True,
               inclusive=True, label="Gateway latency"),
    MetricRule("bootPerformance", "boot_time_ms", 0, 3600000, zero_is_sentinel=True,
               label="Boot time"),
)
