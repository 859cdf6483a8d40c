"""
Diagnostic Signals

Concurrent, time-boxed collection of host diagnostic signals, central
sanitization of implausible values, and data reliability scoring.

Usage:
    from core.signals import SignalsOrchestrator, run_diagnostics

    report = run_diagnostics(SignalsOrchestrator())
    print(report.reliability.score, report.run.success_count)
"""

from .audit_log import SignalsAuditLog
from .cancellation import CancellationToken
from .collector import SignalCollector, CommandOutput, run_command, read_text, read_int
from .errors import OperationCancelled, SignalCollectionError
from .models import (
    DiagnosticSignalsResult,
    Quality,
    SignalCategory,
    SignalResult,
)
from .orchestrator import SignalsOrchestrator, with_attempt_suffix
from .reliability import (
    CollectionDiagnostics,
    CollectionStatus,
    ConfidenceTier,
    ReliabilityAssessment,
    apply_health_caps,
    compute_reliability,
)
from .report import SignalsReport, run_diagnostics
from .sanitizer import (
    CompositeRule,
    DataSanitizer,
    MetricRule,
    SanitizationOutcome,
    check_value,
    sanitize_signal,
)

__all__ = [
    'CancellationToken',
    'CollectionDiagnostics',
    'CollectionStatus',
    'CommandOutput',
    'CompositeRule',
    'ConfidenceTier',
    'DataSanitizer',
    'DiagnosticSignalsResult',
    'MetricRule',
    'OperationCancelled',
    'Quality',
    'ReliabilityAssessment',
    'SanitizationOutcome',
    'SignalCategory',
    'SignalCollectionError',
    'SignalCollector',
    'SignalResult',
    'SignalsAuditLog',
    'SignalsOrchestrator',
    'SignalsReport',
    'apply_health_caps',
    'check_value',
    'compute_reliability',
    'read_int',
    'read_text',
    'run_command',
    'run_diagnostics',
    'sanitize_signal',
    'with_attempt_suffix',
]
