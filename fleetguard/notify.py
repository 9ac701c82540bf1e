"""
Alert delivery for failed runs and monitoring thresholds
"""

import asyncio
import logging
import socket
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

import aiosmtplib

from fleetguard._types import Outcome, RunReport, RunStatus

logger = logging.getLogger(__name__)


class NullNotifier:
    """Notifier used when mail is not configured; only logs"""

    def notify(self, subject: str, body: str) -> bool:
        logger.info("Alert (mail not configured): %s", subject)
        return False


class MailNotifier:
    """Sends plain-text alerts over SMTP. Never raises."""

    def __init__(
        self,
        smtp_host: str,
        recipients: List[str],
        *,
        smtp_port: int = 587,
        smtp_username: str = "",
        smtp_password: str = "",
        smtp_use_tls: bool = True,
        from_email: str = "fleetguard@localhost",
        from_name: str = "fleetguard",
        timeout: float = 30,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.recipients = recipients
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout

    def notify(self, subject: str, body: str) -> bool:
        """Send an alert and report whether it was delivered"""
        if not self.recipients:
            logger.warning("No recipients configured for alert: %s", subject)
            return False
        return asyncio.run(self._send_email(self.recipients, subject, body))

    async def _send_email(self, recipients: List[str], subject: str, plain_body: str) -> bool:
        """Send email using SMTP"""
        msg = MIMEMultipart()
        msg["Subject"] = subject
        msg["From"] = f"{self.from_name} <{self.from_email}>"
        msg["To"] = ", ".join(recipients)
        msg.attach(MIMEText(plain_body, "plain"))

        try:
            await aiosmtplib.send(
                msg,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.smtp_username if self.smtp_username else None,
                password=self.smtp_password if self.smtp_password else None,
                start_tls=self.smtp_use_tls,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.error("Failed to send alert '%s': %s", subject, exc)
            return False

        logger.info("Alert sent to %s: %s", ", ".join(recipients), subject)
        return True


def build_notifier(settings) -> "MailNotifier | NullNotifier":
    """Create the notifier described by settings"""
    if not settings.mail_configured:
        return NullNotifier()
    return MailNotifier(
        settings.smtp_host,
        settings.alert_recipients,
        smtp_port=settings.smtp_port,
        smtp_username=settings.smtp_username,
        smtp_password=settings.smtp_password,
        smtp_use_tls=settings.smtp_use_tls,
        from_email=settings.alert_from,
    )


def run_alert(report: RunReport, sender_host: Optional[str] = None) -> tuple:
    """Build the subject and body of an alert for a non-successful run"""
    sender_host = sender_host or socket.gethostname()
    label = {
        RunStatus.PARTIAL_FAILURE: "partial failure",
        RunStatus.ABORTED_BEFORE_APPLY: "aborted before apply",
    }.get(report.status, report.status.value)
    subject = f"fleetguard: {label} on {report.host}"

    lines = [
        f"Host: {report.host}",
        f"Run: {report.run_id or '-'}",
        f"Status: {report.status.value}",
        f"Reported by: {sender_host}",
    ]
    if report.error:
        lines.append(f"Error: {report.error}")
    lines.append(
        "Outcomes: "
        + ", ".join(f"{report.count(outcome)} {outcome.value}" for outcome in Outcome)
    )
    problems = [e for e in report.entries if e.outcome in (Outcome.FAILED, Outcome.SKIPPED)]
    if problems:
        lines.append("")
        lines.extend(f"- {e.item_id}: {e.outcome.value} ({e.reason})" for e in problems)
    return subject, "\n".join(lines) + "\n"
