"""
expense_services.notifications -- Outbound notification channels.

Responsibility:
    Implements the ``ExpenseNotifier`` protocol: a logging channel for
    development and tests, and an SMTP channel for production mail.
    ``notify_safely`` is the only way the workflow calls a notifier.

Architecture position:
    Services layer.  Called after the expense state has been written;
    never decides anything.

Invariants enforced:
    - A notifier failure never changes the outcome of the operation that
      triggered it.  ``notify_safely`` logs and swallows every error.
"""

from __future__ import annotations

import smtplib
from decimal import Decimal
from email.message import EmailMessage
from typing import Callable
from uuid import UUID

from expense_config.schema import SmtpSettings
from expense_kernel.domain.approval import (
    ExpenseNotifier,
    Notification,
    NotificationKind,
)
from expense_kernel.exceptions import NotificationError
from expense_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


def render_notification(notification: Notification) -> tuple[str, str]:
    """Subject and plain-text body for a notification."""
    details = notification.details
    description = details.get("description", "")
    amount = details.get("amount", "")
    currency = details.get("currency", "")
    kind = notification.kind

    if kind == NotificationKind.STEP_ASSIGNED:
        subject = f"New Expense Pending Approval - {description}"
        body = (
            f"An expense of {amount} {currency} is waiting for your approval.\n\n"
            f"Category: {details.get('category', '')}\n"
            f"Description: {description}\n"
        )
    elif kind in (
        NotificationKind.EXPENSE_APPROVED,
        NotificationKind.EXPENSE_REJECTED,
        NotificationKind.EXPENSE_OVERRIDDEN,
        NotificationKind.EXPENSE_CANCELLED,
    ):
        action = notification.status.value if notification.status else kind.value
        subject = f"Expense {action} - {description}"
        body = f"Your expense of {amount} {currency} was {action}.\n"
        comments = details.get("comments")
        if comments:
            body += f"\nComments: {comments}\n"
    elif kind == NotificationKind.BUDGET_WARNING:
        subject = "Budget Alert - approaching your monthly budget"
        body = (
            f"You have used {details.get('utilization', '')}% of your monthly "
            f"budget of {details.get('budget', '')} ({details.get('period', '')}).\n"
        )
    elif kind == NotificationKind.BUDGET_EXCEEDED:
        subject = "Budget Exceeded - monthly budget exceeded"
        body = (
            f"Your spend of {details.get('spent', '')} exceeds your monthly "
            f"budget of {details.get('budget', '')} ({details.get('period', '')}).\n"
        )
    else:
        subject = f"Expense notification - {kind.value}"
        body = ""
    return subject, body


class LoggingNotifier:
    """
    Writes each notification to the log and keeps it in ``sent``.

    The default channel; tests read ``sent`` to assert who was told what.
    """

    channel = "logging"

    def __init__(self):
        self.sent: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        subject, _ = render_notification(notification)
        self.sent.append(notification)
        logger.info(
            "notification_logged",
            extra={
                "kind": notification.kind.value,
                "recipient_id": str(notification.recipient_id),
                "notified_expense_id": (
                    str(notification.expense_id) if notification.expense_id else None
                ),
                "subject": subject,
            },
        )

    def sent_to(self, recipient_id: UUID) -> list[Notification]:
        return [n for n in self.sent if n.recipient_id == recipient_id]


class SmtpNotifier:
    """Sends one plain-text email per notification."""

    channel = "smtp"

    def __init__(
        self,
        settings: SmtpSettings,
        email_lookup: Callable[[UUID], str | None],
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ):
        self._settings = settings
        self._email_lookup = email_lookup
        self._smtp_factory = smtp_factory

    def build_message(self, notification: Notification, to_address: str) -> EmailMessage:
        subject, body = render_notification(notification)
        message = EmailMessage()
        message["From"] = self._settings.sender
        message["To"] = to_address
        message["Subject"] = subject
        message.set_content(body)
        return message

    def notify(self, notification: Notification) -> None:
        """
        Raises:
            NotificationError: No address for the recipient, or SMTP failed.
        """
        if notification.recipient_id is None:
            raise NotificationError(self.channel, "notification has no recipient")
        address = self._email_lookup(notification.recipient_id)
        if not address:
            raise NotificationError(
                self.channel, f"no email address for {notification.recipient_id}",
            )

        message = self.build_message(notification, address)
        settings = self._settings
        try:
            with self._smtp_factory(
                settings.host, settings.port, timeout=settings.timeout_seconds,
            ) as smtp:
                if settings.use_tls:
                    smtp.starttls()
                if settings.username:
                    smtp.login(settings.username, settings.password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(self.channel, str(exc)) from exc

        logger.info(
            "notification_sent",
            extra={"kind": notification.kind.value, "to": address},
        )


def notify_safely(notifier: ExpenseNotifier | None, notification: Notification) -> bool:
    """
    Deliver ``notification``; log and swallow any failure.

    Returns:
        True when the notifier accepted the notification.
    """
    if notifier is None:
        return False
    try:
        notifier.notify(notification)
        return True
    except Exception as exc:
        code = getattr(exc, "code", NotificationError.code)
        logger.warning(
            "notification_failed",
            extra={
                "kind": notification.kind.value,
                "recipient_id": str(notification.recipient_id),
                "error_code": code,
                "error": str(exc),
            },
        )
        return False


def expense_details(expense, comments: str | None = None) -> dict:
    """Notification details for an expense snapshot."""
    details = {
        "description": expense.description,
        "amount": str(expense.amount),
        "currency": expense.currency,
        "category": expense.category,
    }
    if comments:
        details["comments"] = comments
    return details


def budget_details(period: str, spent: Decimal, budget: Decimal, utilization: Decimal) -> dict:
    return {
        "period": period,
        "spent": str(spent),
        "budget": str(budget),
        "utilization": str(utilization.quantize(Decimal("0.01"))),
    }


def build_notifier(config, user_directory) -> ExpenseNotifier:
    """Notifier for ``config.notifier`` ("logging" or "smtp")."""
    if config.notifier == "smtp":
        def lookup(user_id: UUID) -> str | None:
            return user_directory.get_user(user_id).email

        return SmtpNotifier(config.smtp, lookup)
    return LoggingNotifier()
