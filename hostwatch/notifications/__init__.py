"""Alert notifications — local mail tool and Slack webhook.

Fires only for reports that are not OK. Delivery is best effort: a missing
recipient, a missing ``mail``/``mailx`` binary or a failed webhook is logged
and never changes the run's outcome.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

import httpx

from ..health.engine import Status
from ..health.errors import NotificationUnavailable
from ..health.report import missing_processes

if TYPE_CHECKING:
    from ..health.engine import HealthReport

logger = logging.getLogger(__name__)

MAIL_TOOLS = ("mail", "mailx")


class NotifyLevel(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


# Emoji/icon mapping
_EMOJI = {
    NotifyLevel.WARNING: "⚠️",
    NotifyLevel.CRITICAL: "🔴",
}


def level_for(status: Status) -> NotifyLevel:
    return NotifyLevel.WARNING if status is Status.WARNING else NotifyLevel.CRITICAL


def format_alert(report: HealthReport, hostname: str) -> str:
    """Plain-text alert body: header, one paragraph per failed check, footer.

    Missing processes are folded into a single paragraph.
    """
    ts = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    body = f"{hostname} - System health alert at {ts}\n\n"
    for r in report.failures:
        if not r.name.startswith("process:"):
            body += f"{r.message}\n\n"
    missing = missing_processes(report.results)
    if missing:
        body += f"Missing processes: {','.join(missing)}\n\n"
    if report.error:
        body += f"Health check aborted: {report.error}\n\n"
    body += "--- End of alert ---\n"
    return body


class NotificationManager:
    """Central dispatcher for mail / Slack alerts."""

    def __init__(
        self,
        mail_to: str = "",
        subject: str = "System Health Alert on {hostname}",
        slack_webhook: str = "",
        timeout: float = 10,
    ) -> None:
        self.mail_to = mail_to
        self.subject = subject
        self.slack_webhook = slack_webhook
        self.timeout = timeout

    @property
    def recipient(self) -> str:
        return self.mail_to

    @property
    def is_enabled(self) -> bool:
        return bool(self.mail_to or self.slack_webhook)

    # -- High-level -----------------------------------------------------------

    def notify_alert(self, report: HealthReport, hostname: str) -> bool:
        """Send the alert for a non-OK report on every configured channel."""
        if report.ok:
            return False
        if not self.is_enabled:
            logger.info("No alert recipient configured — skipping alert")
            return False

        body = format_alert(report, hostname)
        # only {hostname} is substituted; other braces are literal text
        subject = self.subject.replace("{hostname}", hostname)
        level = level_for(report.status)

        delivered = False
        if self.mail_to:
            try:
                self._send_mail(subject, body)
                delivered = True
            except NotificationUnavailable as exc:
                logger.warning("%s. Skipping email alert.", exc)
        if self.slack_webhook:
            try:
                self._send_slack(f"{_EMOJI[level]} *{subject}*\n```{body}```")
                delivered = True
            except NotificationUnavailable as exc:
                logger.warning("Slack notification failed: %s", exc)
        return delivered

    # -- Low-level dispatch ---------------------------------------------------

    def _send_mail(self, subject: str, body: str) -> None:
        tool = find_mail_tool()
        if tool is None:
            raise NotificationUnavailable("Mail tool not found (mail/mailx)")
        try:
            proc = subprocess.run(
                [tool, "-s", subject, self.mail_to],
                input=body,
                text=True,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise NotificationUnavailable(f"{tool} failed: {exc}") from exc
        if proc.returncode != 0:
            raise NotificationUnavailable(
                f"{tool} exited {proc.returncode}: {proc.stderr.strip()[:200]}"
            )
        logger.info("Alert mailed to %s via %s", self.mail_to, tool)

    def _send_slack(self, text: str) -> None:
        """POST to Slack incoming webhook."""
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(self.slack_webhook, json={"text": text, "mrkdwn": True})
        except httpx.HTTPError as exc:
            raise NotificationUnavailable(str(exc)) from exc
        if resp.status_code != 200:
            raise NotificationUnavailable(
                f"Slack webhook returned {resp.status_code}: {resp.text[:200]}"
            )


def find_mail_tool() -> str | None:
    """Path of the first available mail client, if any."""
    for name in MAIL_TOOLS:
        path = shutil.which(name)
        if path:
            return path
    return None
