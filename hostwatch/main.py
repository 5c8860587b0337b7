"""Entry point for hostwatch.

Exit codes:
    0 = OK
    1 = WARNING (one or more local metrics at or over threshold)
    2 = DOWN (HTTP target unreachable) / CRITICAL (setup or source error)
"""

from __future__ import annotations

import argparse
import logging
import socket
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from hostwatch.config import MonitorConfig, load_config, settings
from hostwatch.health.engine import HealthReport, Status
from hostwatch.health.errors import SetupError
from hostwatch.health.report import AlertAggregator, ReportLog
from hostwatch.health.scheduler import HealthScheduler
from hostwatch.notifications import NotificationManager

console = Console(stderr=True)

EXIT_CODES = {
    Status.OK: 0,
    Status.WARNING: 1,
    Status.DOWN: 2,
    Status.CRITICAL: 2,
}
EXIT_SETUP_ERROR = 2

_STYLES = {
    Status.OK: "bold green",
    Status.WARNING: "bold yellow",
    Status.DOWN: "bold red",
    Status.CRITICAL: "bold red",
}


def exit_code(report: HealthReport | None) -> int:
    if report is None:
        return EXIT_SETUP_ERROR
    return EXIT_CODES[report.status]


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        stream=sys.stderr,
    )


def print_summary(report: HealthReport) -> None:
    """Render the report as a rich table."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Check")
    table.add_column("Verdict")
    table.add_column("Detail")
    for r in report.results:
        verdict = "[green]pass[/green]" if r.passed else "[red]fail[/red]"
        table.add_row(r.name, verdict, r.message)

    title = f"{report.status.value} ({report.policy.value}"
    title += f", {report.attempts} attempts)" if report.attempts > 1 else ")"
    console.print(Panel(table, title=title, style=_STYLES[report.status]))


def build_config(args: argparse.Namespace) -> MonitorConfig:
    config = load_config(Path(args.config) if args.config else None)
    return config.with_overrides(
        report_path=args.report,
        http_url=getattr(args, "url", None),
        http_timeout=getattr(args, "timeout", None),
        interval_seconds=getattr(args, "interval", None),
    )


def run(args: argparse.Namespace) -> int:
    """Run the selected command and map its final report to an exit code."""
    try:
        config = build_config(args)
        report_log = ReportLog(config.report_path, echo=None if args.quiet else sys.stdout)
    except SetupError as e:
        console.print(f"[bold red]{e}[/bold red]")
        return EXIT_SETUP_ERROR

    notifier = NotificationManager(
        mail_to=config.mail_to,
        subject=config.mail_subject,
        slack_webhook=config.slack_webhook_url,
    )
    aggregator = AlertAggregator(report_log, notifier, hostname=socket.gethostname())
    scheduler = HealthScheduler(config, on_report=aggregator.publish)

    with report_log:
        if args.command == "system":
            report = scheduler.run_once("system")
        elif args.command == "http":
            report = scheduler.run_once("http")
        else:
            mode = "http" if args.http else "system"
            report = scheduler.run(cycles=args.cycles, mode=mode)

    if report is not None and not args.quiet:
        print_summary(report)
    return exit_code(report)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="hostwatch — host health checks")
    parser.add_argument("--config", help="YAML file overriding settings")
    parser.add_argument("--report", help="Report file (default: settings.report_path)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only write the report file")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("system", help="One pass over CPU, memory, disk and processes")

    http = sub.add_parser("http", help="Probe an HTTP endpoint with bounded retry")
    http.add_argument("url", nargs="?", help="Target URL (default: settings.http_url)")
    http.add_argument("timeout", nargs="?", type=float, help="Per-request timeout, seconds")

    watch = sub.add_parser("watch", help="Repeat checks as a daemon")
    watch.add_argument("--interval", type=float, help="Seconds between cycles")
    watch.add_argument("--cycles", type=int, help="Stop after N cycles (default: forever)")
    watch.add_argument("--http", action="store_true", help="Watch the HTTP target instead")

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        sys.exit(EXIT_SETUP_ERROR)

    setup_logging(settings.log_level)
    sys.exit(run(args))


if __name__ == "__main__":
    main()
