#!/usr/bin/env python3
"""
SignalScope - Diagnostic Signals Collector

Runs every diagnostic collector once, sanitizes implausible values and
reports how reliable the collected data is.

Usage:
    signalscope [options]
    python3 src/cli/signals.py [options]

Options:
    --json              Output the full report as JSON
    --only NAME         Run only the named collector (repeatable)
    --log-file PATH     Audit trail location
    --allow-external    Enable tests that reach the internet
    --show-config       Show effective configuration and exit
    --debug             Verbose logging

Examples:
    # Full run with a table summary
    signalscope

    # Kernel log collectors only, as JSON
    sudo signalscope --only hardwareErrors --only driverStability --json
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

# Allow running from a source checkout
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from rich.console import Console
from rich.table import Table

from core import __version__
from core.signals import (
    CancellationToken,
    DataSanitizer,
    Quality,
    SignalsAuditLog,
    SignalsOrchestrator,
    SignalsReport,
    run_diagnostics,
)
from core.signals.collectors import COLLECTOR_NAMES
from utils.env_config import initialize_config, load_signal_settings, show_config_summary
from utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

console = Console()

QUALITY_STYLES = {
    Quality.OK: "green",
    Quality.PARTIAL: "yellow",
    Quality.SUSPECT: "red",
}
TIER_STYLES = {"HIGH": "green", "MEDIUM": "yellow", "LOW": "red"}


def install_cancel_handler(token: CancellationToken) -> None:
    """First Ctrl+C cancels the run cleanly; a second one exits immediately."""

    def handler(signum, frame):
        if token.cancelled:
            console.print("\n[red]Aborted[/red]")
            sys.exit(130)
        console.print("\n[yellow]Cancelling collection...[/yellow]")
        token.cancel("interrupted")

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def format_value(value, limit: int = 60) -> str:
    if value is None:
        return "-"
    if isinstance(value, dict):
        shown = [f"{k}={v}" for k, v in value.items()
                 if v is not None and not isinstance(v, (dict, list))]
        text = ", ".join(shown[:4])
    else:
        text = str(value)
    return text if len(text) <= limit else text[:limit - 3] + "..."


def render_report(report: SignalsReport) -> None:
    """Print a rich summary of one report."""
    run = report.run

    table = Table(title="Diagnostic Signals", show_header=True, header_style="bold cyan")
    table.add_column("Signal", style="cyan")
    table.add_column("Quality")
    table.add_column("Value / Reason")
    table.add_column("Time", justify="right", style="dim")
    table.add_column("Try", justify="right", style="dim")

    for name, result in run.signals.items():
        style = QUALITY_STYLES[result.quality]
        if result.available:
            detail = format_value(result.value)
        else:
            detail = f"[red]{result.reason}[/red]"
        table.add_row(
            name,
            f"[{style}]{result.quality.value}[/{style}]",
            detail,
            f"{result.duration_ms}ms",
            str(result.attempts),
        )

    console.print(table)

    for action in report.sanitized.actions:
        console.print(f"[yellow]Sanitized[/yellow] {action.target}: {action.reason}")

    reliability = report.reliability
    tier_style = TIER_STYLES.get(reliability.tier.value, "white")
    console.print(
        f"\n[bold]Data reliability:[/bold] [{tier_style}]{reliability.score}/100 "
        f"({reliability.tier.value})[/{tier_style}]  "
        f"status [bold]{reliability.status.value}[/bold]  "
        f"{run.success_count} ok / {run.fail_count} unavailable in {run.total_duration_ms}ms"
    )
    for step in reliability.breakdown:
        console.print(f"  [dim]{step}[/dim]")
    if not reliability.is_authoritative:
        console.print("[yellow]Run is not authoritative: automated remediation disabled[/yellow]")
    if run.cancelled:
        console.print("[yellow]Run was cancelled; pending signals are marked 'cancelled'[/yellow]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signalscope",
        description="Collect diagnostic signals and score data reliability",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Collectors:
  {', '.join(COLLECTOR_NAMES)}

Examples:
  signalscope                          # Table summary
  signalscope --json > run.json        # Full JSON report
  signalscope --only cpuTemperature    # Single collector
  sudo signalscope                     # Full kernel log access
        """
    )
    parser.add_argument('--json', action='store_true',
                        help='Output the full report as JSON')
    parser.add_argument('--only', action='append', metavar='NAME', choices=COLLECTOR_NAMES,
                        help='Run only this collector (repeatable)')
    parser.add_argument('--log-file', type=Path,
                        help='Audit trail path (default: SIGNALS_LOG_PATH)')
    parser.add_argument('--config', type=Path,
                        help='YAML overrides file (default: SIGNALS_CONFIG_PATH)')
    parser.add_argument('--allow-external', action='store_true',
                        help='Enable tests that reach the internet (speed test)')
    parser.add_argument('--show-config', action='store_true',
                        help='Show effective configuration and exit')
    parser.add_argument('--debug', action='store_true',
                        help='Verbose logging')
    parser.add_argument('--version', action='version', version=f'signalscope {__version__}')
    return parser


def main(argv: Optional[list] = None) -> int:
    """CLI entry point"""
    args = build_parser().parse_args(argv)

    validation = initialize_config()
    settings = load_signal_settings(args.config)

    setup_logging(level="DEBUG" if args.debug else settings.log_level)

    if args.show_config:
        show_config_summary()
        for warning in validation['warnings']:
            console.print(f"[yellow]Warning:[/yellow] {warning}")
        for error in validation['errors']:
            console.print(f"[red]Error:[/red] {error}")
        return 0 if validation['valid'] else 1

    if args.allow_external:
        settings.allow_external_network_tests = True

    audit_path = args.log_file or settings.audit_log_path
    audit_log = SignalsAuditLog(audit_path)
    try:
        orchestrator = SignalsOrchestrator.from_settings(settings, audit_log=audit_log, only=args.only)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        return 2

    token = CancellationToken()
    install_cancel_handler(token)

    if args.json:
        report = run_diagnostics(orchestrator, DataSanitizer(), token)
        print(report.to_json())
    else:
        with console.status(f"Collecting {len(orchestrator.collectors)} signals..."):
            report = run_diagnostics(orchestrator, DataSanitizer(), token)
        render_report(report)
        if audit_path:
            console.print(f"\n[dim]Audit log: {audit_path}[/dim]")

    return 130 if report.run.cancelled else 0


if __name__ == "__main__":
    sys.exit(main())
