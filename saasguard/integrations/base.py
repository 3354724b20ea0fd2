"""Common notifier contract."""

from typing import Any, Dict, Protocol


class NotificationError(Exception):
    """Raised when a notification cannot be delivered."""

    pass


class Notifier(Protocol):
    async def send(self, message: str, context: Dict[str, Any]) -> None:
        """Deliver a message.

        Raises:
            NotificationError: If delivery fails
        """
        ...
