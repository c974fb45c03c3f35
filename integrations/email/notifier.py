"""
Email notifications for accessgate.

Delivers engine notifications (escalation requests, ownership transfers,
tamper alerts) by email. The recipient named on a notification gets the
mail; notifications without one go to the configured security team.
A standby transport takes over while the primary reports itself down.
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Iterable, Optional

from accessgate.notifications import Notification, Severity


logger = logging.getLogger(__name__)

EVENT_HEADER = "X-Accessgate-Event"


def format_notification(notification: Notification) -> tuple[str, str]:
    """Render a notification as (subject, plain-text body)."""
    prefix = "[ACTION REQUIRED] " if notification.severity != Severity.INFO else ""
    subject = f"{prefix}{notification.title}"

    lines = [notification.message, ""]
    for key, value in sorted(notification.data.items()):
        if isinstance(value, (list, tuple)):
            value = ", ".join(map(str, value)) or "-"
        lines.append(f"{key}: {value}")
    lines.append("")
    lines.append(f"Event: {notification.event.value}")
    lines.append(f"Time: {notification.created_at.isoformat()}")
    return subject, "\n".join(lines)


@dataclass(frozen=True)
class NotificationEmail:
    """
    A notification rendered for delivery.

    Attributes:
        event: Notification event name, sent as the X-Accessgate-Event header
        subject: Email subject
        body: Plain-text body
        sender: From address
        recipients: To addresses
    """
    event: str
    subject: str
    body: str
    sender: str
    recipients: tuple[str, ...]

    @classmethod
    def render(cls, notification: Notification, sender: str, recipients: Iterable[str]) -> "NotificationEmail":
        subject, body = format_notification(notification)
        return cls(
            event=notification.event.value,
            subject=subject,
            body=body,
            sender=sender,
            recipients=tuple(recipients),
        )

    def to_mime(self) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = self.subject
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)
        message[EVENT_HEADER] = self.event
        message.set_content(self.body)
        return message


class EmailTransport(ABC):
    """Delivers rendered notification emails."""

    @abstractmethod
    def deliver(self, email: NotificationEmail) -> bool:
        """Deliver one email. Returns False when delivery failed."""
        ...

    @abstractmethod
    def is_available(self) -> bool:
        ...


class OutboxTransport(EmailTransport):
    """Keeps delivered emails in memory. Used in tests and local runs."""

    def __init__(self) -> None:
        self.outbox: list[NotificationEmail] = []
        self.online = True

    def deliver(self, email: NotificationEmail) -> bool:
        if not self.online:
            return False
        self.outbox.append(email)
        logger.debug(f"Queued {email.event} email for {list(email.recipients)}")
        return True

    def is_available(self) -> bool:
        return self.online


class SMTPTransport(EmailTransport):
    """Delivers over SMTP with optional STARTTLS and login."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        starttls: bool = True,
        timeout: int = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def is_available(self) -> bool:
        try:
            with smtplib.SMTP(self.host, self.port, timeout=5) as server:
                server.noop()
            return True
        except (OSError, smtplib.SMTPException):
            return False

    def deliver(self, email: NotificationEmail) -> bool:
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.starttls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(email.to_mime())
        except (OSError, smtplib.SMTPException) as e:
            logger.error(f"SMTP delivery of {email.event} to {self.host}:{self.port} failed: {e}")
            return False

        logger.info(f"Emailed {email.event} to {list(email.recipients)}")
        return True


class EmailNotifier:
    """
    Sends notifications through an email transport.

    Example:
        transport = SMTPTransport(host="smtp.example.com", username="...", password="...")
        notifier = EmailNotifier(transport, sender="accessgate@example.com",
                                 security_team=["security@example.com"])
        engine = create_engine(notifier=notifier)
    """

    def __init__(
        self,
        transport: EmailTransport,
        sender: str,
        security_team: Iterable[str] = (),
        fallback: Optional[EmailTransport] = None,
    ) -> None:
        """
        Initialize the notifier.

        Args:
            transport: Primary transport
            sender: From address
            security_team: Recipients for notifications that name no one
            fallback: Transport used while `transport` reports itself unavailable
        """
        self.transport = transport
        self.fallback = fallback
        self.sender = sender
        self.security_team = list(security_team)

    def recipients_for(self, notification: Notification) -> list[str]:
        recipients = [notification.recipient] if notification.recipient else list(self.security_team)
        # Critical events always reach the security team as well
        if notification.severity == Severity.CRITICAL:
            recipients += [r for r in self.security_team if r not in recipients]
        return recipients

    def active_transport(self) -> Optional[EmailTransport]:
        """The first transport that reports itself available, if any."""
        for transport in (self.transport, self.fallback):
            if transport is not None and transport.is_available():
                return transport
        return None

    def notify(self, notification: Notification) -> None:
        recipients = self.recipients_for(notification)
        if not recipients:
            logger.warning(f"No email recipients for {notification.event.value}, dropping")
            return

        transport = self.active_transport()
        if transport is None:
            logger.warning(f"No email transport available for {notification.event.value}, dropping")
            return
        if transport is not self.transport:
            logger.info(f"Primary email transport unavailable, using fallback for {notification.event.value}")

        email = NotificationEmail.render(notification, self.sender, recipients)
        if not transport.deliver(email):
            logger.error(f"Email delivery failed for {notification.event.value}")
