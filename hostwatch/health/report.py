"""Report aggregation and publishing.

``aggregate`` folds one cycle's CheckResults into a HealthReport.
``AlertAggregator`` writes the report lines (one per check, plus a summary)
and fires an alert when the report is not OK.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from .engine import NO_RESPONSE, CheckResult, HealthReport, Policy, Status
from .errors import SetupError

if TYPE_CHECKING:
    from ..notifications import NotificationManager

logger = logging.getLogger(__name__)

REPORT_FORMAT = "%(asctime)s [%(tag)s] %(message)s"
REPORT_DATEFMT = "%Y-%m-%d %H:%M:%S"


def aggregate(
    results: Sequence[CheckResult],
    policy: Policy = Policy.LOCAL,
    attempts: int = 1,
    error: str | None = None,
) -> HealthReport:
    """OK iff every result passed; otherwise WARNING (local) or DOWN (HTTP).

    ``error`` marks an aborted cycle and always yields CRITICAL.
    """
    if error is not None:
        status = Status.CRITICAL
    elif all(r.passed for r in results):
        status = Status.OK
    elif policy is Policy.HTTP:
        status = Status.DOWN
    else:
        status = Status.WARNING

    return HealthReport(
        status=status,
        results=tuple(results),
        policy=policy,
        attempts=attempts,
        error=error,
    )


def missing_processes(results: Sequence[CheckResult]) -> list[str]:
    """Watched patterns with no running match, in watch-list order."""
    return [
        r.name.removeprefix("process:")
        for r in results
        if r.name.startswith("process:") and not r.passed
    ]


def process_summary(results: Sequence[CheckResult]) -> tuple[str, str] | None:
    """The one-line process verdict as ``(tag, message)``; None if none were checked."""
    watched = [r.name.removeprefix("process:") for r in results if r.name.startswith("process:")]
    if not watched:
        return None
    missing = missing_processes(results)
    if missing:
        return "WARN", f"Missing processes: {','.join(missing)}"
    return "INFO", f"All monitored processes are running: {' '.join(watched)}"


# ── Report destination ───────────────────────────────────────────────────────


class ReportLog:
    """Timestamped, tagged report lines appended to a durable file."""

    def __init__(
        self,
        path: Path | str,
        echo: TextIO | None = None,
        max_bytes: int = 5 * 1024 * 1024,
        backup_count: int = 5,
    ) -> None:
        self.path = Path(path)
        self._logger = logging.getLogger("hostwatch.report")
        # one report destination at a time
        for stale in list(self._logger.handlers):
            stale.close()
            self._logger.removeHandler(stale)
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False

        try:
            fh = RotatingFileHandler(
                self.path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8",
            )
        except OSError as e:
            raise SetupError(
                f"Cannot write to {self.path}. Run as root or change report_path. ({e})"
            ) from e

        fmt = logging.Formatter(REPORT_FORMAT, datefmt=REPORT_DATEFMT)
        fh.setFormatter(fmt)
        self._handlers: list[logging.Handler] = [fh]

        if echo is not None:
            sh = logging.StreamHandler(echo)
            sh.setFormatter(fmt)
            self._handlers.append(sh)

        for handler in self._handlers:
            self._logger.addHandler(handler)

    def write(self, tag: str, message: str) -> None:
        level = logging.WARNING if tag in ("WARN", "ALERT", "DOWN", "CRITICAL") else logging.INFO
        self._logger.log(level, message, extra={"tag": tag})

    def close(self) -> None:
        for handler in self._handlers:
            handler.close()
            self._logger.removeHandler(handler)

    def __enter__(self) -> ReportLog:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


# ── Aggregator ───────────────────────────────────────────────────────────────


class AlertAggregator:
    """Publishes reports: report lines always, an alert only when not OK."""

    def __init__(
        self,
        report_log: ReportLog,
        notifier: NotificationManager | None = None,
        hostname: str = "localhost",
    ) -> None:
        self.report_log = report_log
        self.notifier = notifier
        self.hostname = hostname

    def publish(self, report: HealthReport) -> bool:
        """Write the report and alert if needed. Returns whether an alert went out."""
        if report.policy is Policy.HTTP:
            self._write_http(report)
        else:
            self._write_local(report)

        if report.ok:
            return False

        sent = False
        if self.notifier is not None:
            try:
                sent = self.notifier.notify_alert(report, self.hostname)
            except Exception:
                logger.exception("Alert notification failed")
        if report.policy is Policy.LOCAL:
            recipient = self.notifier.recipient if self.notifier else ""
            self.report_log.write("ALERT", f"Sent alert. (MAIL_TO={recipient or 'disabled'})")
        return sent

    def _write_local(self, report: HealthReport) -> None:
        w = self.report_log.write
        checks = report.results[:-1] if report.error is not None else report.results
        for r in checks:
            w("INFO" if r.passed else "WARN", r.message)

        summary = process_summary(checks)
        if summary is not None:
            w(*summary)

        if report.status is Status.CRITICAL:
            w("CRITICAL", f"Health check aborted: {report.error}")
        elif report.ok:
            w("OK", "System health OK.")

    def _write_http(self, report: HealthReport) -> None:
        w = self.report_log.write
        for n, r in enumerate(report.results, start=1):
            if not r.passed:
                code = r.sample.value if not r.sample.is_sentinel else NO_RESPONSE
                w("WARN", f"attempt {n}: returned {code}")

        last = report.results[-1] if report.results else None
        target = last.sample.detail if last else ""
        if report.ok and last is not None:
            w("OK", f"{target} returned {last.sample.value} in {last.sample.elapsed}s")
        else:
            w("DOWN", f"{target} appears down after {report.attempts} tries")
