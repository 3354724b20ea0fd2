"""Generic webhook integration with retry and exponential backoff."""

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import structlog

from saasguard.integrations.base import NotificationError

logger = structlog.get_logger(__name__)


@dataclass
class WebhookRetryConfig:
    """Webhook retry configuration."""

    max_retries: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    exponential_base: float = 2.0
    jitter: bool = True


@dataclass
class WebhookConfig:
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    timeout: float = 10.0
    retry_config: WebhookRetryConfig = field(default_factory=WebhookRetryConfig)

    def __post_init__(self):
        if not self.headers:
            self.headers = {"Content-Type": "application/json"}


class WebhookError(NotificationError):
    """Raised when webhook delivery fails."""

    pass


class WebhookNotifier:
    """POST policy notifications as JSON to an arbitrary endpoint."""

    def __init__(self, config: WebhookConfig, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._client = client

        logger.info("webhook_notifier_initialized", url=config.url)

    async def send(self, message: str, context: Dict[str, Any]) -> None:
        """Send a notification with exponential backoff retry.

        Args:
            message: Rendered notification text
            context: Policy and trigger details

        Raises:
            WebhookError: If delivery fails after retries
        """
        payload = {
            "source": "saasguard",
            "message": message,
            "context": context,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        retry_config = self.config.retry_config

        for attempt in range(retry_config.max_retries + 1):
            try:
                response = await self._post(payload)
                response.raise_for_status()

                logger.info("webhook_sent", status_code=response.status_code, attempt=attempt + 1)
                return

            except httpx.HTTPError as e:
                is_last_attempt = attempt >= retry_config.max_retries

                logger.warning(
                    "webhook_send_failed",
                    attempt=attempt + 1,
                    max_retries=retry_config.max_retries + 1,
                    error=str(e),
                    will_retry=not is_last_attempt,
                )

                if is_last_attempt:
                    raise WebhookError(
                        f"Failed to send webhook after {retry_config.max_retries + 1} attempts: {e}"
                    ) from e

                delay = self._calculate_retry_delay(attempt, retry_config)
                logger.debug("webhook_retry_delay", attempt=attempt + 1, delay=f"{delay:.2f}s")
                await asyncio.sleep(delay)

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(
                self.config.url, json=payload, headers=self.config.headers
            )
        async with httpx.AsyncClient(timeout=self.config.timeout) as client:
            return await client.post(self.config.url, json=payload, headers=self.config.headers)

    @staticmethod
    def _calculate_retry_delay(attempt: int, retry_config: WebhookRetryConfig) -> float:
        """Calculate retry delay with exponential backoff.

        Args:
            attempt: Current attempt number (0-based)
            retry_config: Retry configuration

        Returns:
            Delay in seconds
        """
        delay = retry_config.initial_delay * (retry_config.exponential_base ** attempt)
        delay = min(delay, retry_config.max_delay)

        if retry_config.jitter:
            delay = delay * (0.5 + random.random() * 0.5)

        return delay
