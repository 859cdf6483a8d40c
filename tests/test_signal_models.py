"""
Tests for signal data models.

Run: python3 -m pytest tests/test_signal_models.py -v
"""

import json
import math
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from core.signals.models import (
    DiagnosticSignalsResult,
    Quality,
    SignalResult,
)


class TestSignalResultInvariants:
    """Availability / reason / quality invariants."""

    def test_unavailable_requires_reason(self):
        """Unavailable without a reason is rejected."""
        with pytest.raises(ValueError):
            SignalResult(name="x", available=False, quality=Quality.SUSPECT)

    def test_unavailable_rejects_empty_reason(self):
        """An empty string is not a reason."""
        with pytest.raises(ValueError):
            SignalResult.unavailable("x", "")

    def test_available_rejects_reason(self):
        """Available results never carry a reason."""
        with pytest.raises(ValueError):
            SignalResult(name="x", value=1, available=True, reason="timeout")

    def test_ok_quality_requires_available(self):
        """quality=ok is only valid for available results."""
        with pytest.raises(ValueError):
            SignalResult(name="x", available=False, reason="timeout", quality=Quality.OK)

    def test_unavailable_defaults_to_suspect(self):
        """Unavailable results are suspect with no value."""
        result = SignalResult.unavailable("cpuTemperature", "no_sensor", "psutil")
        assert result.available is False
        assert result.quality == Quality.SUSPECT
        assert result.value is None
        assert result.reason == "no_sensor"

    def test_default_quality_follows_availability(self):
        """Quality left unset is ok when available and suspect when not."""
        assert SignalResult(name="x", value=1).quality == Quality.OK
        result = SignalResult(name="x", available=False, reason="no_sensor")
        assert result.quality == Quality.SUSPECT
        assert result.confidence == 0

    def test_results_are_immutable(self):
        """Frozen dataclass: fields cannot be reassigned."""
        result = SignalResult.ok("x", 1, "test")
        with pytest.raises(Exception):
            result.value = 2


class TestConfidence:
    """Per-signal confidence contribution."""

    def test_unavailable_contributes_zero(self):
        """Unavailable means zero confidence, always."""
        assert SignalResult.unavailable("x", "timeout").confidence == 0

    def test_quality_tiers(self):
        """ok > partial > suspect for available signals."""
        ok = SignalResult.ok("x", 1, "s").confidence
        partial = SignalResult.partial("x", 1, "s").confidence
        suspect = SignalResult.suspect("x", 1, "s").confidence
        assert ok == 100
        assert ok > partial > suspect > 0


class TestSerialization:
    """to_dict / from_dict."""

    def test_optional_fields_omitted(self):
        """reason and notes are absent, not null, on a clean result."""
        data = SignalResult.ok("cpuTemperature", {"package_c": 48.0}, "psutil").to_dict()
        assert "reason" not in data
        assert "notes" not in data
        assert data["available"] is True
        assert data["quality"] == "ok"
        assert "durationMs" in data

    def test_reason_present_when_unavailable(self):
        """reason is serialized for unavailable results."""
        data = SignalResult.unavailable("x", "access_denied", notes="journal").to_dict()
        assert data["reason"] == "access_denied"
        assert data["notes"] == "journal"
        assert data["value"] is None

    def test_non_finite_values_become_null(self):
        """NaN inside a payload does not break JSON output."""
        result = SignalResult.ok("x", {"a": float("nan"), "b": [1.5, float("inf")]}, "s")
        text = json.dumps(result.to_dict())
        assert "NaN" not in text
        assert json.loads(text)["value"] == {"a": None, "b": [1.5, None]}

    def test_from_dict_restores_result(self):
        """A serialized unavailable result deserializes to an equal object."""
        original = SignalResult.unavailable("x", "timeout_after_2_attempts", "src").evolve(
            duration_ms=1200, attempts=2)
        restored = SignalResult.from_dict(original.to_dict())
        assert restored == original

    def test_from_dict_without_quality(self):
        """Older payloads without a quality field still load."""
        restored = SignalResult.from_dict({"name": "x", "available": False, "reason": "timeout"})
        assert restored.quality == Quality.SUSPECT
        assert SignalResult.from_dict({"name": "y", "value": 3}).quality == Quality.OK


def _run(*results):
    now = datetime.now(timezone.utc)
    return DiagnosticSignalsResult.build(now, now, results)


class TestDiagnosticSignalsResult:
    """Run aggregate construction and derived counts."""

    def test_counts_computed_from_map(self):
        """success/fail counts come from the final results."""
        run = _run(
            SignalResult.ok("a", 1, "s"),
            SignalResult.partial("b", 2, "s"),
            SignalResult.unavailable("c", "timeout"),
        )
        assert run.success_count == 2
        assert run.fail_count == 1
        assert len(run) == 3
        assert list(run.signals) == ["a", "b", "c"]

    def test_duplicate_names_rejected(self):
        """Names are unique keys."""
        with pytest.raises(ValueError):
            _run(SignalResult.ok("a", 1, "s"), SignalResult.ok("a", 2, "s"))

    def test_signals_map_is_read_only(self):
        """The signals mapping cannot be mutated by consumers."""
        run = _run(SignalResult.ok("a", 1, "s"))
        with pytest.raises(TypeError):
            run.signals["b"] = SignalResult.ok("b", 1, "s")

    def test_with_signals_returns_new_run(self):
        """Replacing a signal produces a new aggregate with new counts."""
        run = _run(SignalResult.ok("a", 1, "s"), SignalResult.ok("b", 2, "s"))
        updated = run.with_signals({"b": SignalResult.unavailable("b", "sentinel_zero")})

        assert run.fail_count == 0
        assert run.get("b").available is True
        assert updated.fail_count == 1
        assert updated.success_count == 1
        assert updated.total_duration_ms == run.total_duration_ms

    def test_to_dict_shape(self):
        """Serialized aggregate has the documented top-level keys."""
        run = _run(SignalResult.ok("a", 1, "s"))
        data = json.loads(run.to_json())
        assert set(data) >= {"startTime", "endTime", "totalDurationMs",
                             "successCount", "failCount", "signals"}
        assert data["signals"]["a"]["value"] == 1

    def test_from_dict_recomputes_counts(self):
        """Counts in the input are ignored in favour of the signals."""
        run = _run(SignalResult.ok("a", 1, "s"), SignalResult.unavailable("b", "timeout"))
        data = run.to_dict()
        data["successCount"] = 99
        restored = DiagnosticSignalsResult.from_dict(data)
        assert restored.success_count == 1
        assert restored.fail_count == 1
        assert math.isclose(restored.total_duration_ms, run.total_duration_ms)
