"""
Tests for the end-to-end signals pass and the CLI.

Run: python3 -m pytest tests/test_report.py -v
"""

import json
import os
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cli import signals as cli
from core.signals.audit_log import SignalsAuditLog
from core.signals.collector import SignalCollector
from core.signals.collectors import DEFAULT_CRITICAL, default_collectors
from core.signals.models import SignalCategory
from core.signals.orchestrator import SignalsOrchestrator
from core.signals.reliability import CollectionStatus
from core.signals.report import run_diagnostics
from core.signals.sanitizer import DataSanitizer, MetricRule


class StaticCollector(SignalCollector):
    """Returns a fixed value, or an unavailable result when value is None."""

    source = "static"

    def __init__(self, name, value, category=SignalCategory.OTHER):
        super().__init__(1.0)
        self.name = name
        self.value = value
        self.category = category

    def read(self, token):
        if self.value is None:
            return self.unavailable("not_supported")
        return self.ok(self.value)


def orchestrator(*collectors):
    return SignalsOrchestrator(
        collectors=list(collectors),
        critical=(),
        audit_log=SignalsAuditLog(mirror_to_logging=False),
    )


TEMP_RULE = MetricRule("temp", "celsius", 5, 115, zero_is_sentinel=True)


class TestRunDiagnostics:
    """collect -> sanitize -> assess."""

    def test_clean_pass(self):
        report = run_diagnostics(orchestrator(
            StaticCollector("temp", {"celsius": 40}),
            StaticCollector("disk", {"used_percent": 50}),
        ), DataSanitizer([TEMP_RULE]))

        assert report.run.success_count == 2
        assert report.reliability.score == 100
        assert report.reliability.is_authoritative is True

    def test_sanitized_value_counts_as_error(self):
        """A sentinel reading is invalid in every view of the run."""
        report = run_diagnostics(orchestrator(
            StaticCollector("temp", {"celsius": 0}, SignalCategory.THERMAL),
            StaticCollector("disk", {"used_percent": 50}),
        ), DataSanitizer([TEMP_RULE]))

        assert report.raw.get("temp").available is True
        assert report.run.get("temp").reason == "sentinel_zero"
        assert report.diagnostics.invalidated_count == 1
        assert report.reliability.status == CollectionStatus.PARTIAL
        assert report.reliability.score == 75

        data = report.to_dict()
        assert data["signals"]["temp"]["available"] is False
        assert data["sanitization"][0]["reason"] == "sentinel_zero"
        assert data["collection"]["invalidatedCount"] == 1
        assert data["reliability"]["isAuthoritative"] is False

    def test_healthy_default_registry_is_ok(self):
        """Default settings on a healthy host give a clean, authoritative run."""
        collectors = default_collectors()
        for collector in collectors:
            collector.read = lambda token, c=collector: c.ok({"reading": 1})
        orch = SignalsOrchestrator(
            collectors=collectors,
            critical=DEFAULT_CRITICAL,
            audit_log=SignalsAuditLog(mirror_to_logging=False),
        )

        report = run_diagnostics(orch)

        assert report.run.fail_count == 0
        assert report.diagnostics.logical_error_count == 0
        assert report.reliability.score == 100
        assert report.reliability.status == CollectionStatus.OK
        assert report.reliability.is_authoritative is True
        assert report.cap_health_score(98).score == 98

    def test_external_errors_are_counted(self):
        report = run_diagnostics(
            orchestrator(StaticCollector("disk", {"used_percent": 50})),
            DataSanitizer([]),
            external_errors=["Firewall query failed"],
        )
        assert report.run.fail_count == 0
        assert report.diagnostics.logical_error_count == 1
        assert report.reliability.status == CollectionStatus.PARTIAL

    def test_health_score_capped(self):
        report = run_diagnostics(orchestrator(
            StaticCollector("a", None),
            StaticCollector("b", 1),
        ), DataSanitizer([]))
        capped = report.cap_health_score(98)
        assert capped.score == 70
        assert capped.capped is True

    def test_json_is_valid(self):
        report = run_diagnostics(orchestrator(
            StaticCollector("nan", float("nan")),
        ), DataSanitizer([]))
        data = json.loads(report.to_json())
        assert data["signals"]["nan"]["value"] is None

    def test_audit_summary_line(self):
        orch = orchestrator(StaticCollector("a", 1))
        run_diagnostics(orch, DataSanitizer([]))
        assert any("INFO: Reliability 100/100" in line for line in orch.audit_log.lines)


class TestCli:
    """Argument parsing and output helpers."""

    def test_parser_defaults(self):
        args = cli.build_parser().parse_args([])
        assert args.json is False
        assert args.only is None

    def test_only_is_repeatable(self):
        args = cli.build_parser().parse_args(["--only", "cpuTemperature", "--only", "hardwareErrors"])
        assert args.only == ["cpuTemperature", "hardwareErrors"]

    def test_unknown_collector_rejected(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["--only", "bogus"])

    @pytest.mark.parametrize("value,expected", [
        (None, "-"),
        (42, "42"),
        ({"a": 1, "b": None, "c": [1], "d": "x"}, "a=1, d=x"),
    ])
    def test_format_value(self, value, expected):
        assert cli.format_value(value) == expected

    def test_format_value_truncates(self):
        assert cli.format_value("x" * 100, limit=10) == "xxxxxxx..."

    def test_render_report(self, capsys):
        report = run_diagnostics(orchestrator(
            StaticCollector("a", None),
            StaticCollector("b", {"reading": 1}),
        ), DataSanitizer([]))
        cli.render_report(report)
        out = capsys.readouterr().out
        assert "Data reliability" in out
        assert "not_supported" in out

    def test_main_json(self, tmp_path, capsys):
        validation = {'valid': True, 'warnings': [], 'errors': [], 'config': {}}
        with patch.object(cli, "initialize_config", return_value=validation), \
                patch.object(cli, "setup_logging"), \
                patch.object(cli, "install_cancel_handler"):
            code = cli.main([
                "--json", "--only", "internetSpeedTest",
                "--log-file", str(tmp_path / "audit.log"),
                "--config", str(tmp_path / "absent.yaml"),
            ])

        assert code == 0
        data = json.loads(capsys.readouterr().out)
        assert list(data["signals"]) == ["internetSpeedTest"]
        assert data["signals"]["internetSpeedTest"]["reason"] == "external_tests_disabled"
        assert "[internetSpeedTest] START" in (tmp_path / "audit.log").read_text()

    def test_main_only_overrides_disabled(self, tmp_path, capsys):
        validation = {'valid': True, 'warnings': [], 'errors': [], 'config': {}}
        with patch.dict(os.environ, {'SIGNALS_DISABLED': 'internetSpeedTest'}), \
                patch.object(cli, "initialize_config", return_value=validation), \
                patch.object(cli, "setup_logging"), \
                patch.object(cli, "install_cancel_handler"):
            code = cli.main([
                "--json", "--only", "internetSpeedTest",
                "--log-file", str(tmp_path / "audit.log"),
                "--config", str(tmp_path / "absent.yaml"),
            ])

        assert code == 0
        data = json.loads(capsys.readouterr().out)
        assert list(data["signals"]) == ["internetSpeedTest"]

    def test_main_reports_bad_selection(self, tmp_path, capsys):
        validation = {'valid': True, 'warnings': [], 'errors': [], 'config': {}}
        with patch.object(cli, "initialize_config", return_value=validation), \
                patch.object(cli, "setup_logging"), \
                patch.object(cli.SignalsOrchestrator, "from_settings",
                             side_effect=ValueError("Unknown collectors: bogus")):
            code = cli.main(["--config", str(tmp_path / "absent.yaml")])

        assert code == 2
        assert "Unknown collectors: bogus" in capsys.readouterr().out
