"""
Unit tests for alert delivery.

SMTP is never contacted: ``aiosmtplib.send`` is patched with an AsyncMock.
"""

from unittest.mock import AsyncMock, patch

import aiosmtplib
import pytest

from fleetguard._types import ActionKind, JournalEntry, Outcome, RunReport, RunStatus
from fleetguard.config import Settings
from fleetguard.notify import MailNotifier, NullNotifier, build_notifier, run_alert


def entry(item_id: str, outcome: Outcome, reason: str = "") -> JournalEntry:
    return JournalEntry(
        run_id="r1", host="web-01", item_id=item_id, action=ActionKind.MODIFY, outcome=outcome, reason=reason
    )


@pytest.mark.unit
class TestMailNotifier:
    def test_sends_message(self) -> None:
        notifier = MailNotifier("smtp.example.com", ["ops@example.com", "sec@example.com"], smtp_username="bot")
        with patch("fleetguard.notify.aiosmtplib.send", new_callable=AsyncMock) as send:
            assert notifier.notify("subject", "body\n") is True

        message = send.call_args.args[0]
        assert message["Subject"] == "subject"
        assert message["To"] == "ops@example.com, sec@example.com"
        assert message["From"] == "fleetguard <fleetguard@localhost>"
        kwargs = send.call_args.kwargs
        assert kwargs["hostname"] == "smtp.example.com"
        assert kwargs["port"] == 587
        assert kwargs["username"] == "bot"
        assert kwargs["password"] is None
        assert kwargs["start_tls"] is True

    def test_delivery_failure_returns_false(self) -> None:
        notifier = MailNotifier("smtp.example.com", ["ops@example.com"])
        error = aiosmtplib.SMTPConnectError("connection refused")
        with patch("fleetguard.notify.aiosmtplib.send", new_callable=AsyncMock, side_effect=error):
            assert notifier.notify("subject", "body") is False

    def test_network_error_returns_false(self) -> None:
        notifier = MailNotifier("smtp.example.com", ["ops@example.com"])
        with patch("fleetguard.notify.aiosmtplib.send", new_callable=AsyncMock, side_effect=OSError("unreachable")):
            assert notifier.notify("subject", "body") is False

    def test_no_recipients(self) -> None:
        notifier = MailNotifier("smtp.example.com", [])
        with patch("fleetguard.notify.aiosmtplib.send", new_callable=AsyncMock) as send:
            assert notifier.notify("subject", "body") is False
        send.assert_not_called()


@pytest.mark.unit
class TestBuildNotifier:
    def test_unconfigured(self) -> None:
        notifier = build_notifier(Settings(smtp_host="smtp.example.com"))
        assert isinstance(notifier, NullNotifier)
        assert notifier.notify("subject", "body") is False

    def test_configured(self) -> None:
        settings = Settings(smtp_host="smtp.example.com", smtp_port=25, alert_recipients="a@example.com, b@example.com")
        notifier = build_notifier(settings)
        assert isinstance(notifier, MailNotifier)
        assert notifier.smtp_port == 25
        assert notifier.recipients == ["a@example.com", "b@example.com"]


@pytest.mark.unit
class TestRunAlert:
    def test_partial_failure(self) -> None:
        report = RunReport(host="web-01", status=RunStatus.PARTIAL_FAILURE, run_id="r1")
        report.entries = [
            entry("ssh.root-login", Outcome.APPLIED),
            entry("ssh.reload", Outcome.FAILED, "ExitCode=1: unit not found"),
            entry("audit.rules", Outcome.SKIPPED, "dependency ssh.reload not satisfied"),
        ]

        subject, body = run_alert(report, sender_host="admin-01")

        assert subject == "fleetguard: partial failure on web-01"
        assert "Run: r1" in body
        assert "Reported by: admin-01" in body
        assert "Outcomes: 1 applied, 0 noop, 1 failed, 1 skipped" in body
        assert "- ssh.reload: failed (ExitCode=1: unit not found)" in body
        assert "ssh.root-login" not in body

    def test_aborted(self) -> None:
        report = RunReport(host="web-02", status=RunStatus.ABORTED_BEFORE_APPLY, error="every probe failed")
        subject, body = run_alert(report, sender_host="admin-01")
        assert subject == "fleetguard: aborted before apply on web-02"
        assert "Run: -" in body
        assert "Error: every probe failed" in body
