"""
Tests for notification rendering and the notifier channels.
"""

import smtplib
from dataclasses import replace
from decimal import Decimal
from uuid import uuid4

import pytest

from expense_config.schema import SmtpSettings
from expense_kernel.domain.approval import ExpenseStatus, Notification, NotificationKind
from expense_kernel.exceptions import NotificationError
from expense_kernel.services.user_directory import SqlUserDirectory
from expense_services.notifications import (
    LoggingNotifier,
    SmtpNotifier,
    budget_details,
    build_notifier,
    notify_safely,
    render_notification,
)

DETAILS = {
    "description": "Client dinner",
    "amount": "120.00",
    "currency": "EUR",
    "category": "Meals",
}


def notification(kind=NotificationKind.STEP_ASSIGNED, recipient_id=None, **kwargs):
    kwargs.setdefault("details", dict(DETAILS))
    return Notification(kind=kind, recipient_id=recipient_id or uuid4(), **kwargs)


class FakeSmtp:
    """Stands in for smtplib.SMTP; records every interaction."""

    instances: list["FakeSmtp"] = []

    def __init__(self, host, port, timeout=None, fail_with=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.fail_with = fail_with
        self.calls = []
        self.messages = []
        FakeSmtp.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.calls.append("quit")
        return False

    def starttls(self):
        self.calls.append("starttls")

    def login(self, username, password):
        self.calls.append(("login", username, password))

    def send_message(self, message):
        if self.fail_with is not None:
            raise self.fail_with
        self.messages.append(message)


@pytest.fixture
def fake_smtp():
    FakeSmtp.instances = []
    return FakeSmtp


class TestRenderNotification:

    def test_assignment(self):
        subject, body = render_notification(notification())
        assert subject == "New Expense Pending Approval - Client dinner"
        assert "120.00 EUR" in body

    @pytest.mark.parametrize(
        "kind, status",
        [
            (NotificationKind.EXPENSE_APPROVED, ExpenseStatus.APPROVED),
            (NotificationKind.EXPENSE_REJECTED, ExpenseStatus.REJECTED),
            (NotificationKind.EXPENSE_OVERRIDDEN, ExpenseStatus.APPROVED),
        ],
    )
    def test_outcome(self, kind, status):
        subject, _ = render_notification(notification(kind, status=status))
        assert subject == f"Expense {status.value} - Client dinner"

    def test_comments_included(self):
        details = {**DETAILS, "comments": "Missing receipt"}
        _, body = render_notification(
            notification(NotificationKind.EXPENSE_REJECTED, status=ExpenseStatus.REJECTED, details=details)
        )
        assert "Comments: Missing receipt" in body

    def test_budget_alerts(self):
        details = budget_details("2024-01", Decimal("850"), Decimal("1000"), Decimal("85"))
        warning, body = render_notification(notification(NotificationKind.BUDGET_WARNING, details=details))
        exceeded, _ = render_notification(notification(NotificationKind.BUDGET_EXCEEDED, details=details))
        assert warning == "Budget Alert - approaching your monthly budget"
        assert "85.00%" in body
        assert exceeded == "Budget Exceeded - monthly budget exceeded"


class TestLoggingNotifier:

    def test_records_and_logs(self, captured_logs):
        notifier = LoggingNotifier()
        sent = notification()
        notifier.notify(sent)
        assert notifier.sent_to(sent.recipient_id) == [sent]
        logged = [r for r in captured_logs() if r["message"] == "notification_logged"]
        assert logged[0]["kind"] == "step_assigned"


class TestSmtpNotifier:

    def test_sends_one_message(self, fake_smtp, captured_logs):
        recipient = uuid4()
        settings = SmtpSettings(host="mail.test", port=587, sender="noreply@acme.test")
        notifier = SmtpNotifier(settings, {recipient: "jane@acme.test"}.get, smtp_factory=fake_smtp)

        notifier.notify(notification(recipient_id=recipient))

        (smtp,) = fake_smtp.instances
        assert (smtp.host, smtp.port, smtp.timeout) == ("mail.test", 587, 10.0)
        (message,) = smtp.messages
        assert message["To"] == "jane@acme.test"
        assert message["From"] == "noreply@acme.test"
        assert message["Subject"] == "New Expense Pending Approval - Client dinner"
        assert smtp.calls == ["quit"]
        assert any(r["message"] == "notification_sent" for r in captured_logs())

    def test_tls_and_login(self, fake_smtp):
        recipient = uuid4()
        settings = SmtpSettings(use_tls=True, username="bot", password="s3cret")
        SmtpNotifier(settings, lambda _: "a@b.test", smtp_factory=fake_smtp).notify(
            notification(recipient_id=recipient)
        )
        assert fake_smtp.instances[0].calls[:2] == ["starttls", ("login", "bot", "s3cret")]

    def test_unknown_address(self, fake_smtp):
        notifier = SmtpNotifier(SmtpSettings(), lambda _: None, smtp_factory=fake_smtp)
        with pytest.raises(NotificationError):
            notifier.notify(notification())
        assert fake_smtp.instances == []

    def test_smtp_failure_wrapped(self):
        def factory(host, port, timeout=None):
            return FakeSmtp(host, port, timeout, fail_with=smtplib.SMTPRecipientsRefused({}))

        notifier = SmtpNotifier(SmtpSettings(), lambda _: "a@b.test", smtp_factory=factory)
        with pytest.raises(NotificationError) as exc_info:
            notifier.notify(notification())
        assert exc_info.value.code == "NOTIFICATION_FAILED"

    def test_connection_refused_wrapped(self):
        def factory(host, port, timeout=None):
            raise ConnectionRefusedError("connection refused")

        notifier = SmtpNotifier(SmtpSettings(), lambda _: "a@b.test", smtp_factory=factory)
        with pytest.raises(NotificationError):
            notifier.notify(notification())


class TestNotifySafely:

    def test_success(self):
        assert notify_safely(LoggingNotifier(), notification()) is True

    def test_no_notifier(self):
        assert notify_safely(None, notification()) is False

    def test_failure_logged_not_raised(self, captured_logs):
        notifier = SmtpNotifier(SmtpSettings(), lambda _: None)
        assert notify_safely(notifier, notification()) is False
        (failure,) = [r for r in captured_logs() if r["message"] == "notification_failed"]
        assert failure["error_code"] == "NOTIFICATION_FAILED"


class TestBuildNotifier:

    def test_logging_by_default(self, session, workflow_config):
        assert isinstance(build_notifier(workflow_config, SqlUserDirectory(session)), LoggingNotifier)

    def test_smtp_looks_up_user_email(self, session, org, workflow_config, fake_smtp, monkeypatch):
        config = replace(workflow_config, notifier="smtp")
        notifier = build_notifier(config, SqlUserDirectory(session))
        assert isinstance(notifier, SmtpNotifier)
        monkeypatch.setattr(notifier, "_smtp_factory", fake_smtp)

        notifier.notify(notification(recipient_id=org.manager.id))
        (message,) = fake_smtp.instances[0].messages
        assert message["To"] == org.manager.email
