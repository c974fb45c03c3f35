"""Slack notifications for accessgate."""

from integrations.slack.notifier import MockSlackClient, SlackNotifier, build_blocks

__all__ = ["MockSlackClient", "SlackNotifier", "build_blocks"]
