"""Email notifications for accessgate."""

from integrations.email.notifier import (
    EmailNotifier,
    EmailTransport,
    NotificationEmail,
    OutboxTransport,
    SMTPTransport,
    format_notification,
)

__all__ = [
    "EmailNotifier",
    "EmailTransport",
    "NotificationEmail",
    "OutboxTransport",
    "SMTPTransport",
    "format_notification",
]
