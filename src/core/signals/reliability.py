"""
Data Reliability Scoring

Measures how much a human should trust a run's data, independently of
whether the machine is healthy. A clean machine with three collector
failures gets a low reliability score and may still have a high health
score; the two are never merged.

Model:
    1. Progressive base score keyed by the number of logical errors
       (0 -> 100, 1 -> 95, 2 -> 90, 3 -> 84, 4 -> 78, 5 -> 72, then -4 per
       extra error, floor 40)
    2. Category-weighted penalty (security gaps cost more than a missing
       process list), capped at 20 and floored at 40 overall
    3. Gating caps (many errors, critical hardware data missing, several
       invalidated metrics)
    4. Clamp to [0, 100]

A status flag (OK / PARTIAL / FAILED) derived from the error count gates
whether the run may be treated as authoritative, e.g. for automated
remediation.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import DiagnosticSignalsResult, SignalCategory

logger = logging.getLogger(__name__)


# === Policy tables ===

# Penalty weight per missing/invalid signal of each category.
CATEGORY_WEIGHTS: Dict[SignalCategory, int] = {
    SignalCategory.SECURITY: 8,
    SignalCategory.STORAGE: 4,
    SignalCategory.HARDWARE: 3,
    SignalCategory.THERMAL: 2,
    SignalCategory.MONITORING: 2,
    SignalCategory.NETWORK: 2,
    SignalCategory.PROCESSES: 1,
    SignalCategory.OTHER: 1,
}

# Keywords used to categorize free-text errors reported outside the collectors
# (e.g. by an external scan). First match wins.
CATEGORY_KEYWORDS: Tuple[Tuple[Tuple[str, ...], SignalCategory], ...] = (
    (("security", "firewall", "defender", "antivirus", "apparmor", "selinux"), SignalCategory.SECURITY),
    (("smart", "disk", "storage", "volume", "nvme"), SignalCategory.STORAGE),
    (("temp", "thermal", "throttl", "power"), SignalCategory.THERMAL),
    (("memory", "ram", "gpu", "vram", "cpu", "hardware", "mce"), SignalCategory.HARDWARE),
    (("network", "dns", "ping", "eventlog", "journal", "bsod", "kernel", "driver", "boot"), SignalCategory.MONITORING),
    (("process", "service", "startup"), SignalCategory.PROCESSES),
)

# Categories whose absence means the hardware picture itself is incomplete.
CRITICAL_DATA_CATEGORIES = frozenset({
    SignalCategory.HARDWARE,
    SignalCategory.STORAGE,
    SignalCategory.THERMAL,
})

BASE_SCORES = (100, 95, 90, 84, 78, 72)
EXTRA_ERROR_PENALTY = 4
SCORE_FLOOR = 40
MAX_CATEGORY_PENALTY = 20

CAP_MANY_ERRORS = 70            # more than 5 errors
CAP_ANY_ERROR = 85              # 1-5 errors
CAP_CRITICAL_DATA_MISSING = 75
CAP_MANY_INVALIDATED = 65       # more than 2 invalidated metrics

REMEDIATION_MIN_SCORE = 60


def categorize(text: str) -> SignalCategory:
    """Map a free-text error to a category."""
    lowered = text.lower()
    for keywords, category in CATEGORY_KEYWORDS:
        if any(k in lowered for k in keywords):
            return category
    return SignalCategory.OTHER


# === Enums ===

class CollectionStatus(Enum):
    """Machine-level collection status."""
    OK = "OK"               # No logical errors
    PARTIAL = "PARTIAL"     # 1-3 errors
    FAILED = "FAILED"       # More than 3 errors: broad collection breakdown


class ConfidenceTier(Enum):
    HIGH = "HIGH"       # >= 80
    MEDIUM = "MEDIUM"   # >= 60
    LOW = "LOW"


def status_for(error_count: int) -> CollectionStatus:
    if error_count <= 0:
        return CollectionStatus.OK
    if error_count <= 3:
        return CollectionStatus.PARTIAL
    return CollectionStatus.FAILED


def tier_for(score: int) -> ConfidenceTier:
    if score >= 80:
        return ConfidenceTier.HIGH
    if score >= 60:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


# === Diagnostics ===

class ErrorKind(Enum):
    COLLECTOR = "collector"         # signal unavailable after collection
    INVALIDATED = "invalidated"     # rejected by the sanitizer
    EXTERNAL = "external"           # reported outside the signal layer


@dataclass(frozen=True)
class CollectionError:
    """One logical collection error."""
    source: str
    reason: str
    category: SignalCategory
    kind: ErrorKind = ErrorKind.COLLECTOR

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "reason": self.reason,
            "category": self.category.value,
            "kind": self.kind.value,
        }


@dataclass(frozen=True)
class CollectionDiagnostics:
    """
    Logical errors of one run, independent of machine health.

    Attributes:
        errors: Every collector, sanitizer and external error
        signal_count: Number of signals in the run
        cancelled: The run was cancelled by the caller
    """
    errors: Tuple[CollectionError, ...] = ()
    signal_count: int = 0
    cancelled: bool = False

    @classmethod
    def from_run(cls, run: DiagnosticSignalsResult, actions: Iterable = (),
                 external_errors: Iterable[str] = (),
                 categories: Optional[Mapping[str, SignalCategory]] = None) -> 'CollectionDiagnostics':
        """
        Build diagnostics from a (sanitized) run.

        Args:
            run: Run aggregate, normally after sanitization
            actions: SanitizationAction records from the sanitizer
            external_errors: Free-text errors from outside the signal layer
            categories: Signal name -> category (from the collector registry)
        """
        categories = categories or {}
        invalidated = {a.signal: a for a in actions}
        errors: List[CollectionError] = []

        for name, result in run.signals.items():
            if result.available:
                continue
            category = categories.get(name, SignalCategory.OTHER)
            if name in invalidated:
                errors.append(CollectionError(name, result.reason, category, ErrorKind.INVALIDATED))
            else:
                errors.append(CollectionError(name, result.reason, category, ErrorKind.COLLECTOR))

        for text in external_errors:
            errors.append(CollectionError("external", text, categorize(text), ErrorKind.EXTERNAL))

        return cls(tuple(errors), signal_count=len(run), cancelled=run.cancelled)

    @property
    def logical_error_count(self) -> int:
        return len(self.errors)

    @property
    def invalidated_count(self) -> int:
        return sum(1 for e in self.errors if e.kind == ErrorKind.INVALIDATED)

    @property
    def missing_count(self) -> int:
        return sum(1 for e in self.errors if e.kind == ErrorKind.COLLECTOR)

    @property
    def status(self) -> CollectionStatus:
        return status_for(self.logical_error_count)

    @property
    def categories(self) -> List[SignalCategory]:
        return [e.category for e in self.errors]

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "logicalErrorCount": self.logical_error_count,
            "missingCount": self.missing_count,
            "invalidatedCount": self.invalidated_count,
            "cancelled": self.cancelled,
            "errors": [e.to_dict() for e in self.errors],
        }


# === Scoring ===

def base_score(error_count: int) -> int:
    """Progressive base score; non-increasing in ``error_count``."""
    if error_count < len(BASE_SCORES):
        return BASE_SCORES[max(0, error_count)]
    extra = error_count - (len(BASE_SCORES) - 1)
    return max(SCORE_FLOOR, BASE_SCORES[-1] - EXTRA_ERROR_PENALTY * extra)


def category_penalty(categories: Iterable[SignalCategory]) -> int:
    """Sum of category weights, capped."""
    total = sum(CATEGORY_WEIGHTS.get(c, CATEGORY_WEIGHTS[SignalCategory.OTHER]) for c in categories)
    return min(MAX_CATEGORY_PENALTY, total)


@dataclass(frozen=True)
class ReliabilityAssessment:
    """
    Data reliability of one run.

    Attributes:
        score: 0-100, how much the collected data can be trusted
        tier: HIGH, MEDIUM or LOW
        status: OK, PARTIAL or FAILED
        breakdown: Ordered description of each penalty and cap applied
    """
    score: int
    tier: ConfidenceTier
    status: CollectionStatus
    logical_error_count: int = 0
    breakdown: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_authoritative(self) -> bool:
        """Only a run with no logical errors may be treated as authoritative."""
        return self.status == CollectionStatus.OK

    @property
    def remediation_allowed(self) -> bool:
        return self.is_authoritative and self.score >= REMEDIATION_MIN_SCORE

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "tier": self.tier.value,
            "status": self.status.value,
            "logicalErrorCount": self.logical_error_count,
            "isAuthoritative": self.is_authoritative,
            "remediationAllowed": self.remediation_allowed,
            "breakdown": list(self.breakdown),
        }


def compute_reliability(diagnostics: CollectionDiagnostics) -> ReliabilityAssessment:
    """Score a run's data reliability."""
    errors = diagnostics.logical_error_count
    steps: List[str] = []

    score = base_score(errors)
    steps.append(f"base {score} ({errors} logical errors)")

    penalty = category_penalty(diagnostics.categories)
    if penalty:
        score = max(SCORE_FLOOR, score - penalty)
        steps.append(f"category penalty -{penalty} -> {score}")

    def cap(limit: int, why: str):
        nonlocal score
        if score > limit:
            score = limit
            steps.append(f"cap {limit}: {why}")

    if errors > 5:
        cap(CAP_MANY_ERRORS, "more than 5 logical errors")
    elif errors > 0:
        cap(CAP_ANY_ERROR, "logical errors present")

    if any(c in CRITICAL_DATA_CATEGORIES for c in diagnostics.categories):
        cap(CAP_CRITICAL_DATA_MISSING, "critical hardware data missing")

    if diagnostics.invalidated_count > 2:
        cap(CAP_MANY_INVALIDATED, f"{diagnostics.invalidated_count} metrics invalidated")

    score = max(0, min(100, score))
    assessment = ReliabilityAssessment(
        score=score,
        tier=tier_for(score),
        status=diagnostics.status,
        logical_error_count=errors,
        breakdown=tuple(steps),
    )
    logger.debug(f"Reliability {score} ({assessment.tier.value}, {assessment.status.value})")
    return assessment


# === Health score caps ===

HEALTH_CAP_ERRORS = 70
HEALTH_CAP_MISSING = 75
HEALTH_CAP_FAILED = 60


@dataclass(frozen=True)
class HealthCapResult:
    """Machine-health score after reliability caps."""
    raw_score: int
    score: int
    caps: Tuple[str, ...] = ()

    @property
    def capped(self) -> bool:
        return self.score < self.raw_score


def apply_health_caps(health_score: int, diagnostics: CollectionDiagnostics) -> HealthCapResult:
    """
    Cap a machine-health score when the data behind it is unreliable.

    The health score is computed elsewhere; this only limits how good it
    may look when collection was incomplete.
    """
    raw = max(0, min(100, int(health_score)))
    score = raw
    caps: List[str] = []

    def cap(limit: int, why: str):
        nonlocal score
        if score > limit:
            score = limit
            caps.append(f"cap {limit}: {why}")

    if diagnostics.logical_error_count > 0:
        cap(HEALTH_CAP_ERRORS, f"{diagnostics.logical_error_count} collection errors")
    if diagnostics.missing_count > 3:
        cap(HEALTH_CAP_MISSING, f"{diagnostics.missing_count} signals missing")
    if diagnostics.status == CollectionStatus.FAILED:
        cap(HEALTH_CAP_FAILED, "collection FAILED")

    return HealthCapResult(raw, score, tuple(caps))


def assess(run: DiagnosticSignalsResult, actions: Sequence = (),
           external_errors: Iterable[str] = (),
           categories: Optional[Mapping[str, SignalCategory]] = None
           ) -> Tuple[CollectionDiagnostics, ReliabilityAssessment]:
    """Convenience: diagnostics plus reliability for one run."""
    diagnostics = CollectionDiagnostics.from_run(run, actions, external_errors, categories)
    return diagnostics, compute_reliability(diagnostics)
