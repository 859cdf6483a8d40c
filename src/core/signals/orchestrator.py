"""
Signals Orchestrator

Runs a fixed registry of collectors concurrently and joins them into one
DiagnosticSignalsResult.

Design Principles:
1. Isolation - every collector attempt runs on its own worker thread with
   its own deadline; a hung collector is abandoned, never waited on
2. Completeness - every registered collector has exactly one entry in the
   result map, even if it timed out or the run was cancelled
3. Bounded retry - only critical collectors get a second attempt, after a
   cancellable pause
4. Join then count - success/fail counts are computed after the join

Usage:
    orchestrator = SignalsOrchestrator(audit_log=SignalsAuditLog(path))
    run = orchestrator.collect_all(token)
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from .audit_log import SignalsAuditLog
from .cancellation import CancellationToken
from .collector import SignalCollector
from .errors import OperationCancelled
from .models import DiagnosticSignalsResult, SignalResult, utc_now

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 0.5  # seconds between attempts of a critical collector
DEFAULT_MAX_ATTEMPTS = 2
CANCELLED_REASON = "cancelled"


class AttemptStatus(Enum):
    """How a single collector attempt ended."""
    COMPLETED = "completed"     # collector returned a SignalResult
    TIMEOUT = "timeout"         # deadline elapsed first
    EXCEPTION = "exception"     # collector raised
    CANCELLED = "cancelled"     # caller cancelled the run


@dataclass
class AttemptOutcome:
    status: AttemptStatus
    result: Optional[SignalResult] = None
    error: Optional[BaseException] = None
    elapsed_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == AttemptStatus.COMPLETED and self.result.available


def with_attempt_suffix(reason: str, attempts: int) -> str:
    """
    Mark a reason as persistent across attempts.

    >>> with_attempt_suffix("exception: boom", 2)
    'exception_after_2_attempts: boom'
    >>> with_attempt_suffix("access_denied", 2)
    'access_denied_after_2_attempts'
    """
    if attempts <= 1:
        return reason
    suffix = f"_after_{attempts}_attempts"
    head, sep, tail = reason.partition(": ")
    if sep:
        return f"{head}{suffix}{sep}{tail}"
    return f"{reason}{suffix}"


class SignalsOrchestrator:
    """
    Drives one collection pass over a fixed collector registry.

    Args:
        collectors: Ordered collectors; defaults to the bundled registry
        audit_log: Audit trail for this orchestrator's runs
        critical: Names of collectors that get a bounded retry
        retry_delay: Pause between attempts, in seconds
        max_attempts: Attempts for critical collectors
    """

    def __init__(
        self,
        collectors: Optional[Iterable[SignalCollector]] = None,
        audit_log: Optional[SignalsAuditLog] = None,
        critical: Optional[Iterable[str]] = None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ):
        if collectors is None or critical is None:
            from .collectors import DEFAULT_CRITICAL, default_collectors
            if collectors is None:
                collectors = default_collectors()
            if critical is None:
                critical = DEFAULT_CRITICAL

        self.collectors: List[SignalCollector] = list(collectors)
        names = [c.name for c in self.collectors]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate collector names: {', '.join(duplicates)}")
        if any(not n for n in names):
            raise ValueError("Every collector must declare a name")

        self.critical = frozenset(critical)
        self.retry_delay = max(0.0, retry_delay)
        self.max_attempts = max(1, int(max_attempts))
        self.audit_log = audit_log or SignalsAuditLog()

    @classmethod
    def from_settings(cls, settings, audit_log: Optional[SignalsAuditLog] = None,
                      only: Optional[Sequence[str]] = None) -> 'SignalsOrchestrator':
        """Build an orchestrator from a SignalSettings instance."""
        from .collectors import default_collectors

        return cls(
            collectors=default_collectors(settings, only=only),
            audit_log=audit_log,
            critical=settings.critical,
            retry_delay=settings.retry_delay_ms / 1000.0,
            max_attempts=settings.max_attempts,
        )

    @property
    def names(self) -> List[str]:
        return [c.name for c in self.collectors]

    def is_critical(self, collector: SignalCollector) -> bool:
        return collector.name in self.critical

    # === Run ===

    def collect_all(self, token: Optional[CancellationToken] = None) -> DiagnosticSignalsResult:
        """
        Run every collector once (critical ones up to max_attempts) and join.

        Never raises for collector failures. If ``token`` is cancelled the
        pass still returns a complete aggregate with ``cancelled=True``.
        """
        token = token or CancellationToken()
        self.audit_log.reset()
        self.audit_log.initialize()
        self.audit_log.info(
            f"Collecting {len(self.collectors)} signals "
            f"(critical: {', '.join(sorted(self.critical & set(self.names))) or 'none'})"
        )

        start_time = utc_now()
        start = time.time()

        workers = max(1, len(self.collectors))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="signals") as executor:
            futures = [
                (collector, executor.submit(self._supervise, collector, token))
                for collector in self.collectors
            ]
            results = [self._join(collector, future, token) for collector, future in futures]

        end_time = utc_now()
        duration = int((time.time() - start) * 1000)
        run = DiagnosticSignalsResult.build(
            start_time, end_time, results,
            cancelled=token.cancelled,
            total_duration_ms=duration,
        )

        self.audit_log.info(
            f"Done in {duration}ms: {run.success_count} ok, {run.fail_count} unavailable"
            + (" (cancelled)" if run.cancelled else "")
        )
        logger.info(
            f"Signals collected: {run.success_count}/{len(run)} available in {duration}ms"
        )
        return run

    def _join(self, collector: SignalCollector, future: Future,
              token: CancellationToken) -> SignalResult:
        try:
            return future.result()
        except Exception as e:
            # Supervisor itself failed; still represent the collector
            logger.error(f"Supervisor for {collector.name} failed: {e}")
            reason = CANCELLED_REASON if token.cancelled else f"exception: {e}"
            return SignalResult.unavailable(collector.name, reason, collector.source)

    # === Per-collector supervision ===

    def _supervise(self, collector: SignalCollector, token: CancellationToken) -> SignalResult:
        """Run one collector through its attempts and produce its final result."""
        name = collector.name
        max_attempts = self.max_attempts if self.is_critical(collector) else 1
        start = time.time()
        attempts = 0
        last: Optional[AttemptOutcome] = None

        self.audit_log.start(name)

        for attempt in range(1, max_attempts + 1):
            if token.cancelled:
                break
            if attempt > 1:
                self.audit_log.retry(name, attempt, self._describe(last))
                if token.wait(self.retry_delay):
                    break

            attempts = attempt
            outcome = self._run_attempt(collector, token)
            last = outcome

            if outcome.status == AttemptStatus.CANCELLED:
                break
            if outcome.succeeded:
                duration = int((time.time() - start) * 1000)
                self.audit_log.success(name, duration, _summarize(outcome.result.value))
                return outcome.result.evolve(
                    name=name,
                    duration_ms=duration,
                    attempts=attempts,
                )

            self._log_failure(collector, outcome)

        duration = int((time.time() - start) * 1000)

        if token.cancelled:
            self.audit_log.cancelled(name)
            source = last.result.source if last and last.result else collector.source
            return SignalResult.unavailable(
                name, CANCELLED_REASON, source,
            ).evolve(duration_ms=duration, attempts=max(attempts, 1))

        reason = self._final_reason(last, attempts)
        self.audit_log.fail(name, duration, reason)

        notes = None
        source = collector.source
        if last.result is not None:
            notes = last.result.notes
            source = last.result.source or source
        return SignalResult.unavailable(name, reason, source, notes=notes).evolve(
            duration_ms=duration,
            attempts=attempts,
        )

    def _run_attempt(self, collector: SignalCollector, token: CancellationToken) -> AttemptOutcome:
        """
        Run a single attempt on a dedicated daemon thread.

        The attempt gets a child token: it is cancelled when the caller
        cancels or when the deadline elapses, so well-behaved collectors
        stop their I/O promptly. Misbehaving ones are abandoned.
        """
        attempt_token = token.child()
        future: Future = Future()
        wake = threading.Event()
        future.add_done_callback(lambda _: wake.set())
        attempt_token.register(wake.set)

        def target():
            if not future.set_running_or_notify_cancel():
                return
            try:
                result = collector.collect(attempt_token)
                future.set_result((result, token.cancelled))
            except BaseException as e:
                future.set_exception(e)

        start = time.time()
        worker = threading.Thread(
            target=target,
            name=f"signal-{collector.name}",
            daemon=True,
        )
        worker.start()

        wake.wait(collector.default_timeout)
        elapsed = int((time.time() - start) * 1000)

        try:
            if future.done():
                return self._completed_outcome(collector, future, token, elapsed)
            if token.cancelled:
                return AttemptOutcome(AttemptStatus.CANCELLED, elapsed_ms=elapsed)
            attempt_token.cancel("timeout")
            return AttemptOutcome(AttemptStatus.TIMEOUT, elapsed_ms=elapsed)
        finally:
            attempt_token.detach()

    def _completed_outcome(self, collector: SignalCollector, future: Future,
                           token: CancellationToken, elapsed: int) -> AttemptOutcome:
        """
        Classify a finished attempt.

        The future holds ``(result, cancelled_first)``. An available value
        produced before the caller cancelled is kept; everything else that
        the supervisor sees after cancellation is reported as cancelled.
        """
        error = future.exception()
        if error is None:
            result, cancelled_first = future.result()
            if isinstance(result, SignalResult):
                if result.available and not cancelled_first:
                    return AttemptOutcome(AttemptStatus.COMPLETED, result, elapsed_ms=elapsed)
                if token.cancelled:
                    return AttemptOutcome(AttemptStatus.CANCELLED, elapsed_ms=elapsed)
                return AttemptOutcome(AttemptStatus.COMPLETED, result, elapsed_ms=elapsed)
            error = TypeError(f"collector returned {type(result).__name__}, not SignalResult")

        if token.cancelled:
            return AttemptOutcome(AttemptStatus.CANCELLED, elapsed_ms=elapsed)
        if isinstance(error, OperationCancelled):
            # Collector noticed its deadline token before we did
            return AttemptOutcome(AttemptStatus.TIMEOUT, error=error, elapsed_ms=elapsed)
        return AttemptOutcome(AttemptStatus.EXCEPTION, error=error, elapsed_ms=elapsed)

    # === Reasons and logging ===

    @staticmethod
    def _final_reason(outcome: AttemptOutcome, attempts: int) -> str:
        if outcome.status == AttemptStatus.TIMEOUT:
            return with_attempt_suffix("timeout", attempts)
        if outcome.status == AttemptStatus.EXCEPTION:
            message = str(outcome.error) or type(outcome.error).__name__
            return with_attempt_suffix(f"exception: {message}", attempts)
        return with_attempt_suffix(outcome.result.reason, attempts)

    @staticmethod
    def _describe(outcome: Optional[AttemptOutcome]) -> str:
        if outcome is None:
            return ""
        if outcome.status == AttemptStatus.TIMEOUT:
            return "timeout"
        if outcome.status == AttemptStatus.EXCEPTION:
            return f"exception: {outcome.error}"
        if outcome.result is not None:
            return outcome.result.reason or outcome.status.value
        return outcome.status.value

    def _log_failure(self, collector: SignalCollector, outcome: AttemptOutcome) -> None:
        name = collector.name
        if outcome.status == AttemptStatus.TIMEOUT:
            self.audit_log.timeout(name, int(collector.default_timeout * 1000))
        elif outcome.status == AttemptStatus.EXCEPTION:
            self.audit_log.exception(name, outcome.error)
            logger.debug(f"Collector {name} raised", exc_info=outcome.error)


def _summarize(value, limit: int = 80) -> str:
    """Short one-line rendering of a signal value for the audit log."""
    if value is None:
        return ""
    if isinstance(value, dict):
        text = ", ".join(f"{k}={v}" for k, v in list(value.items())[:4])
        if len(value) > 4:
            text += ", ..."
    else:
        text = str(value)
    return text if len(text) <= limit else text[:limit - 3] + "..."
