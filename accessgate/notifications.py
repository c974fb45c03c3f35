"""
Notification hooks.

The engine emits notifications for events that need a human
(clearance escalation, ownership transfer approval, tamper detection).
Delivery is fire-and-forget: a failing notifier is logged and never
breaks the operation that triggered it.

Transports live in the integrations package (email, Slack).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol

from accessgate.models import utcnow


logger = logging.getLogger(__name__)


class NotificationEvent(Enum):
    ESCALATION_REQUESTED = "clearance.escalation_requested"
    TRANSFER_REQUESTED = "ownership.transfer_requested"
    TAMPER_DETECTED = "audit.tamper_detected"


class Severity(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class Notification:
    """
    A notification emitted by the engine.

    Attributes:
        event: What happened
        title: One-line summary
        message: Human-readable body
        severity: Urgency of the event
        recipient: Optional address of the directly affected person
        data: Event-specific payload (ids, levels, reasons)
    """
    event: NotificationEvent
    title: str
    message: str
    severity: Severity = Severity.INFO
    recipient: Optional[str] = None
    data: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)


class Notifier(Protocol):
    """Protocol implemented by every notification transport."""

    def notify(self, notification: Notification) -> None:
        ...


class RecordingNotifier:
    """Keeps notifications in memory. Used in tests and as a default sink."""

    def __init__(self) -> None:
        self.notifications: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    def by_event(self, event: NotificationEvent) -> list[Notification]:
        return [n for n in self.notifications if n.event == event]

    def clear(self) -> None:
        self.notifications.clear()


class CompositeNotifier:
    """Fans a notification out to several notifiers."""

    def __init__(self, *notifiers: Notifier) -> None:
        self.notifiers = list(notifiers)

    def add(self, notifier: Notifier) -> None:
        self.notifiers.append(notifier)

    def notify(self, notification: Notification) -> None:
        for notifier in self.notifiers:
            dispatch(notifier, notification)


def dispatch(notifier: Optional[Notifier], notification: Notification) -> bool:
    """
    Deliver a notification, logging and swallowing transport errors.

    Returns:
        True if the notifier accepted the notification
    """
    if notifier is None:
        return False
    try:
        notifier.notify(notification)
        return True
    except Exception as e:
        logger.error(f"Notifier {type(notifier).__name__} failed for {notification.event.value}: {e}")
        return False
