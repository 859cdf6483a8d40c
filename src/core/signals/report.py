"""
End-to-end signals pass: collect -> sanitize -> assess.

This is the single place where sanitization happens, so the JSON output,
the console table and the reliability score all see the same decisions.
"""

import json
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from .cancellation import CancellationToken
from .models import DiagnosticSignalsResult
from .orchestrator import SignalsOrchestrator
from .reliability import (
    CollectionDiagnostics, ReliabilityAssessment, HealthCapResult,
    apply_health_caps, compute_reliability,
)
from .sanitizer import DataSanitizer, SanitizationOutcome

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalsReport:
    """
    Everything one pass produced.

    Attributes:
        raw: Run aggregate as the collectors returned it
        sanitized: Sanitization outcome (new run plus actions)
        diagnostics: Logical collection errors
        reliability: Data reliability assessment
    """
    raw: DiagnosticSignalsResult
    sanitized: SanitizationOutcome
    diagnostics: CollectionDiagnostics
    reliability: ReliabilityAssessment

    @property
    def run(self) -> DiagnosticSignalsResult:
        """The sanitized run; use this for anything user-facing."""
        return self.sanitized.run

    def cap_health_score(self, health_score: int) -> HealthCapResult:
        return apply_health_caps(health_score, self.diagnostics)

    def to_dict(self) -> dict:
        data = self.run.to_dict()
        data["sanitization"] = [a.to_dict() for a in self.sanitized.actions]
        data["collection"] = self.diagnostics.to_dict()
        data["reliability"] = self.reliability.to_dict()
        return data

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)


def run_diagnostics(orchestrator: SignalsOrchestrator,
                    sanitizer: Optional[DataSanitizer] = None,
                    token: Optional[CancellationToken] = None,
                    external_errors: Iterable[str] = ()) -> SignalsReport:
    """Run one collection pass and reduce it to a report."""
    sanitizer = sanitizer or DataSanitizer()

    raw = orchestrator.collect_all(token)
    outcome = sanitizer.apply(raw)
    if outcome.actions:
        orchestrator.audit_log.warning(f"{len(outcome.actions)} values invalidated by sanitizer")

    categories = {c.name: c.category for c in orchestrator.collectors}
    diagnostics = CollectionDiagnostics.from_run(
        outcome.run, outcome.actions, external_errors, categories,
    )
    reliability = compute_reliability(diagnostics)

    orchestrator.audit_log.info(
        f"Reliability {reliability.score}/100 ({reliability.tier.value}), "
        f"status {reliability.status.value}"
    )
    return SignalsReport(raw, outcome, diagnostics, reliability)
