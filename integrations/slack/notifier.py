"""
Slack notifications for accessgate.

Posts engine notifications to a Slack channel. Critical events (audit
tampering) mention the channel so they are not missed.

Requirements:
    pip install slack-sdk

Usage:
    from integrations.slack import SlackNotifier

    notifier = SlackNotifier(token="xoxb-...", channel="#security-alerts")
    engine = create_engine(notifier=notifier)
"""

import logging
from typing import Optional

from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from accessgate.notifications import Notification, Severity


logger = logging.getLogger(__name__)

SEVERITY_EMOJI = {
    Severity.INFO: ":information_source:",
    Severity.WARNING: ":warning:",
    Severity.CRITICAL: ":rotating_light:",
}


def build_blocks(notification: Notification) -> list[dict]:
    """Slack Block Kit layout for a notification."""
    emoji = SEVERITY_EMOJI.get(notification.severity, "")
    blocks = [
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"{emoji} *{notification.title}*\n{notification.message}"
            }
        }
    ]

    fields = []
    for key, value in sorted(notification.data.items()):
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            value = ", ".join(map(str, value)) or "-"
        fields.append({"type": "mrkdwn", "text": f"*{key}:*\n{value}"})
    if fields:
        # Slack allows at most 10 fields per section
        blocks.append({"type": "section", "fields": fields[:10]})

    blocks.append({
        "type": "context",
        "elements": [
            {
                "type": "mrkdwn",
                "text": f"{notification.event.value} | {notification.created_at.isoformat()}"
            }
        ]
    })
    return blocks


class SlackNotifier:
    """
    Sends notifications to a Slack channel.

    Example:
        notifier = SlackNotifier(client=MockSlackClient(), channel="#security")
        notifier.notify(notification)
    """

    def __init__(
        self,
        token: Optional[str] = None,
        channel: str = "#security-alerts",
        client: Optional[WebClient] = None,
        mention_on_critical: bool = True,
    ) -> None:
        """
        Initialize the notifier.

        Args:
            token: Bot token, used when no client is given
            channel: Channel receiving notifications
            client: Pre-built WebClient (or MockSlackClient in tests)
            mention_on_critical: Prefix critical alerts with <!channel>
        """
        if client is None and token is None:
            raise ValueError("SlackNotifier needs a token or a client")
        self._client = client or WebClient(token=token)
        self.channel = channel
        self.mention_on_critical = mention_on_critical

    def set_client(self, client: WebClient) -> None:
        """Set Slack client (useful for testing)."""
        self._client = client

    def notify(self, notification: Notification) -> None:
        text = notification.title
        if self.mention_on_critical and notification.severity == Severity.CRITICAL:
            text = f"<!channel> {text}"

        try:
            self._client.chat_postMessage(
                channel=self.channel,
                text=text,
                blocks=build_blocks(notification),
            )
        except SlackApiError as e:
            logger.error(f"Slack API error: {e}")


class MockSlackClient:
    """Mock Slack client for testing without actual Slack connection."""

    def __init__(self) -> None:
        self.messages: list[dict] = []

    def chat_postMessage(self, **kwargs) -> dict:
        """Record message for testing."""
        self.messages.append(kwargs)
        return {"ok": True, "ts": "1234567890.123456"}

    def get_sent_messages(self) -> list[dict]:
        return self.messages

    def clear(self) -> None:
        self.messages.clear()
