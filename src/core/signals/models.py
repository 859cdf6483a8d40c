"""
Signal Data Models

Every collector produces exactly one SignalResult; one orchestration pass
produces exactly one DiagnosticSignalsResult. Both are frozen dataclasses
so they can be handed to the sanitizer, the reliability scorer and the
serializers without locking.
"""

import json
import math
from dataclasses import dataclass, field, asdict, is_dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional


# === Enums ===

class Quality(Enum):
    """Quality tier of a single signal."""
    OK = "ok"               # Complete, trustworthy value
    PARTIAL = "partial"     # Available but incomplete (fallback source, missing fields)
    SUSPECT = "suspect"     # Unavailable, or available but indicating a problem


class SignalCategory(Enum):
    """Collection category, used to weight missing data in reliability scoring."""
    SECURITY = "security"       # firewall, update and protection state
    STORAGE = "storage"         # disk capacity, latency, SMART
    HARDWARE = "hardware"       # machine checks, memory, GPU
    THERMAL = "thermal"         # CPU/GPU temperatures, throttling, power caps
    MONITORING = "monitoring"   # kernel log, driver crashes, boot
    NETWORK = "network"         # latency, loss, DNS, throughput
    PROCESSES = "processes"     # process tables, startup items
    OTHER = "other"


# Confidence contribution of an *available* signal per quality tier.
QUALITY_CONFIDENCE = {
    Quality.OK: 100,
    Quality.PARTIAL: 60,
    Quality.SUSPECT: 30,
}


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _jsonable(value: Any) -> Any:
    """Convert a signal payload into plain JSON types."""
    if is_dataclass(value) and not isinstance(value, type):
        return _jsonable(asdict(value))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    return value


def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return utc_now()
    return datetime.fromisoformat(value)


# === Core Result Types ===

@dataclass(frozen=True)
class SignalResult:
    """
    Outcome of one collector run.

    Attributes:
        name: Collector name, unique key within a run
        value: Payload (scalar, dict record or None), opaque to the orchestrator
        available: False means the value must not be used downstream
        source: Mechanism that produced, or tried to produce, the value
        reason: Machine-matchable code, present iff available is False
        quality: OK, PARTIAL or SUSPECT; defaults to OK when available, SUSPECT otherwise
        timestamp: Collection instant (UTC)
        duration_ms: Wall time spent on this collector, retries included
        notes: Optional free-text detail for operators
        attempts: Number of attempts the orchestrator made
    """
    name: str
    value: Any = None
    available: bool = True
    source: str = ""
    reason: Optional[str] = None
    quality: Optional[Quality] = None
    timestamp: datetime = field(default_factory=utc_now)
    duration_ms: int = 0
    notes: Optional[str] = None
    attempts: int = 1

    def __post_init__(self):
        if self.quality is None:
            object.__setattr__(self, "quality", Quality.OK if self.available else Quality.SUSPECT)
        if self.available:
            if self.reason is not None:
                raise ValueError(f"{self.name}: available signal must not carry a reason")
        else:
            if not self.reason:
                raise ValueError(f"{self.name}: unavailable signal requires a reason")
            if self.quality == Quality.OK:
                raise ValueError(f"{self.name}: quality 'ok' requires an available signal")

    # --- Constructors ---

    @classmethod
    def ok(cls, name: str, value: Any, source: str, notes: Optional[str] = None) -> 'SignalResult':
        """Create a complete, trustworthy result."""
        return cls(name=name, value=value, available=True, source=source,
                   quality=Quality.OK, notes=notes)

    @classmethod
    def partial(cls, name: str, value: Any, source: str, notes: Optional[str] = None) -> 'SignalResult':
        """Create an available-but-incomplete result."""
        return cls(name=name, value=value, available=True, source=source,
                   quality=Quality.PARTIAL, notes=notes)

    @classmethod
    def suspect(cls, name: str, value: Any, source: str, notes: Optional[str] = None) -> 'SignalResult':
        """Create an available result whose value points at a problem."""
        return cls(name=name, value=value, available=True, source=source,
                   quality=Quality.SUSPECT, notes=notes)

    @classmethod
    def unavailable(cls, name: str, reason: str, source: str = "",
                    notes: Optional[str] = None) -> 'SignalResult':
        """Create an unavailable result with a specific reason code."""
        return cls(name=name, value=None, available=False, source=source,
                   reason=reason, quality=Quality.SUSPECT, notes=notes)

    # --- Derived ---

    @property
    def confidence(self) -> int:
        """Confidence contribution (0-100). Always 0 when unavailable."""
        if not self.available:
            return 0
        return QUALITY_CONFIDENCE[self.quality]

    def evolve(self, **changes) -> 'SignalResult':
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    # --- Serialization ---

    def to_dict(self) -> dict:
        """Serialize for JSON output. Optional fields are omitted when unset."""
        data = {
            "name": self.name,
            "value": _jsonable(self.value),
            "available": self.available,
            "source": self.source,
        }
        if self.reason is not None:
            data["reason"] = self.reason
        data["quality"] = self.quality.value
        data["timestamp"] = self.timestamp.isoformat()
        data["durationMs"] = self.duration_ms
        if self.notes is not None:
            data["notes"] = self.notes
        data["attempts"] = self.attempts
        return data

    @classmethod
    def from_dict(cls, data: dict) -> 'SignalResult':
        """Deserialize from dict."""
        return cls(
            name=data['name'],
            value=data.get('value'),
            available=data.get('available', True),
            source=data.get('source', ''),
            reason=data.get('reason'),
            quality=Quality(data['quality']) if data.get('quality') else None,
            timestamp=_parse_time(data.get('timestamp')),
            duration_ms=data.get('durationMs', 0),
            notes=data.get('notes'),
            attempts=data.get('attempts', 1),
        )


@dataclass(frozen=True)
class DiagnosticSignalsResult:
    """
    Aggregate of one orchestration pass.

    Built once after every collector has been joined, so success and
    fail counts are derived from the final map instead of being tracked
    concurrently.

    Attributes:
        start_time: When the pass started (UTC)
        end_time: When the join completed (UTC)
        total_duration_ms: Wall time of the whole pass
        signals: Read-only mapping of collector name to SignalResult
        success_count: Number of available signals
        fail_count: Number of unavailable signals
        cancelled: True if the caller cancelled the pass
    """
    start_time: datetime
    end_time: datetime
    total_duration_ms: int
    signals: Mapping[str, SignalResult]
    success_count: int = 0
    fail_count: int = 0
    cancelled: bool = False

    @classmethod
    def build(cls, start_time: datetime, end_time: datetime,
              signals: Iterable[SignalResult], cancelled: bool = False,
              total_duration_ms: Optional[int] = None) -> 'DiagnosticSignalsResult':
        """Create an aggregate, computing the counts from the final results."""
        ordered: Dict[str, SignalResult] = {}
        for result in signals:
            if result.name in ordered:
                raise ValueError(f"Duplicate signal name: {result.name}")
            ordered[result.name] = result

        if total_duration_ms is None:
            total_duration_ms = int((end_time - start_time).total_seconds() * 1000)

        success = sum(1 for r in ordered.values() if r.available)
        return cls(
            start_time=start_time,
            end_time=end_time,
            total_duration_ms=total_duration_ms,
            signals=MappingProxyType(ordered),
            success_count=success,
            fail_count=len(ordered) - success,
            cancelled=cancelled,
        )

    def with_signals(self, replacements: Mapping[str, SignalResult]) -> 'DiagnosticSignalsResult':
        """Return a new aggregate with some signals replaced. Counts are recomputed."""
        merged = [replacements.get(name, result) for name, result in self.signals.items()]
        return DiagnosticSignalsResult.build(
            self.start_time, self.end_time, merged,
            cancelled=self.cancelled,
            total_duration_ms=self.total_duration_ms,
        )

    def get(self, name: str) -> Optional[SignalResult]:
        return self.signals.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self.signals

    def __len__(self) -> int:
        return len(self.signals)

    def available_signals(self) -> List[SignalResult]:
        return [r for r in self.signals.values() if r.available]

    def unavailable_signals(self) -> List[SignalResult]:
        return [r for r in self.signals.values() if not r.available]

    def to_dict(self) -> dict:
        """Serialize for API/JSON output."""
        return {
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "totalDurationMs": self.total_duration_ms,
            "successCount": self.success_count,
            "failCount": self.fail_count,
            "cancelled": self.cancelled,
            "signals": {name: r.to_dict() for name, r in self.signals.items()},
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_dict(cls, data: dict) -> 'DiagnosticSignalsResult':
        """Deserialize from dict. Counts are recomputed, not trusted."""
        signals = []
        for name, entry in data.get('signals', {}).items():
            entry = dict(entry)
            entry.setdefault('name', name)
            signals.append(SignalResult.from_dict(entry))
        return cls.build(
            _parse_time(data.get('startTime')),
            _parse_time(data.get('endTime')),
            signals,
            cancelled=data.get('cancelled', False),
            total_duration_ms=data.get('totalDurationMs'),
        )
