"""Notification integrations (Slack, generic webhooks)."""

from saasguard.integrations.base import NotificationError, Notifier
from saasguard.integrations.slack import SlackError, SlackNotifier
from saasguard.integrations.webhook import (
    WebhookConfig,
    WebhookError,
    WebhookNotifier,
    WebhookRetryConfig,
)

__all__ = [
    "NotificationError",
    "Notifier",
    "SlackError",
    "SlackNotifier",
    "WebhookConfig",
    "WebhookError",
    "WebhookNotifier",
    "WebhookRetryConfig",
]
