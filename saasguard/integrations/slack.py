"""Slack integration for policy notifications."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import structlog

from saasguard.integrations.base import NotificationError

logger = structlog.get_logger(__name__)

PRIORITY_COLORS = {
    "critical": "danger",
    "high": "danger",
    "medium": "warning",
    "low": "good",
}


class SlackError(NotificationError):
    """Raised when Slack operations fail."""

    pass


class SlackNotifier:
    """Send policy notifications to Slack via incoming webhook."""

    def __init__(
        self,
        webhook_url: str,
        channel: Optional[str] = None,
        username: str = "SaaSGuard",
        icon_emoji: str = ":shield:",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize Slack notifier.

        Args:
            webhook_url: Slack webhook URL
            channel: Optional channel override (e.g., "#it-governance")
            username: Bot username
            icon_emoji: Bot icon emoji
            timeout: Request timeout in seconds
            client: Shared HTTP client; a short-lived one is used if omitted
        """
        self.webhook_url = webhook_url
        self.channel = channel
        self.username = username
        self.icon_emoji = icon_emoji
        self.timeout = timeout
        self._client = client

        logger.info("slack_notifier_initialized", channel=channel)

    async def send(self, message: str, context: Dict[str, Any]) -> None:
        """Send a notification.

        Args:
            message: Rendered notification text
            context: Policy and trigger details shown as attachment fields

        Raises:
            SlackError: If sending fails
        """
        payload = self._build_message(message, context)

        try:
            if self._client is not None:
                response = await self._client.post(self.webhook_url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as e:
            logger.error("slack_notification_failed", error=str(e))
            raise SlackError(f"Failed to send Slack notification: {e}") from e

        if response.status_code != 200:
            logger.error("slack_notification_rejected", status_code=response.status_code)
            raise SlackError(f"Slack API returned {response.status_code}: {response.text}")

        logger.info("slack_notification_sent", policy_id=context.get("policy_id"))

    def _build_message(self, message: str, context: Dict[str, Any]) -> Dict[str, Any]:
        priority = str(context.get("priority", "medium"))
        fields = [
            {"title": key.replace("_", " ").title(), "value": str(context[key]), "short": True}
            for key in ("trigger_event", "policy_name", "app_name", "risk_level")
            if context.get(key)
        ]

        payload: Dict[str, Any] = {
            "username": self.username,
            "icon_emoji": self.icon_emoji,
            "text": message,
            "attachments": [
                {
                    "color": PRIORITY_COLORS.get(priority, "warning"),
                    "fields": fields,
                    "footer": "SaaSGuard",
                    "ts": int(datetime.now(timezone.utc).timestamp()),
                }
            ],
        }

        if self.channel:
            payload["channel"] = self.channel

        return payload
