"""In-process publish/subscribe bus for governance events."""

import inspect
from collections import defaultdict
from typing import Awaitable, Callable, Dict, List, Optional, Union

import structlog

from saasguard.core.events.topics import Event, EventPayload, Topic

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Event], Union[None, Awaitable[None]]]


class EventBusError(Exception):
    """Raised when the bus is used incorrectly."""

    pass


class EventBus:
    """Best-effort, non-durable event delivery.

    Handlers are invoked one after another in subscription order and may be
    plain functions or coroutines. A handler that raises is logged and
    skipped; the remaining handlers still receive the event and the
    publisher never sees the error. Events published while nobody is
    subscribed are dropped.
    """

    def __init__(self) -> None:
        self._handlers: Dict[Topic, List[EventHandler]] = defaultdict(list)

    def subscribe(self, topic: Union[str, Topic], handler: EventHandler) -> None:
        """Register a handler for future events on a topic.

        Args:
            topic: Topic enum member or dotted topic name
            handler: Callable receiving the Event

        Raises:
            EventBusError: If the handler is not callable
            ValueError: If the topic is unknown
        """
        if not callable(handler):
            raise EventBusError(f"Handler for {topic} is not callable: {handler!r}")

        resolved = Topic.parse(topic)
        self._handlers[resolved].append(handler)

        logger.debug(
            "event_handler_subscribed",
            topic=resolved.value,
            handler=getattr(handler, "__qualname__", repr(handler)),
            handlers=len(self._handlers[resolved]),
        )

    def unsubscribe(self, topic: Union[str, Topic], handler: EventHandler) -> bool:
        """Remove a previously registered handler.

        Returns:
            True if the handler was registered
        """
        handlers = self._handlers.get(Topic.parse(topic), [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def handler_count(self, topic: Optional[Union[str, Topic]] = None) -> int:
        """Number of handlers on one topic, or on all topics when omitted."""
        if topic is None:
            return sum(len(h) for h in self._handlers.values())
        return len(self._handlers.get(Topic.parse(topic), []))

    async def publish(self, payload: EventPayload) -> int:
        """Publish a typed payload on its topic.

        Args:
            payload: Topic payload; its class decides the topic

        Returns:
            Number of handlers that completed without raising
        """
        return await self.publish_event(Event.create(payload))

    async def publish_event(self, event: Event) -> int:
        """Deliver an already-built event to the topic's subscribers.

        Args:
            event: Event to deliver

        Returns:
            Number of handlers that completed without raising
        """
        # Snapshot so handlers subscribed during delivery only see later events
        handlers = list(self._handlers.get(event.topic, []))

        if not handlers:
            logger.debug("event_dropped_no_subscribers", topic=event.topic.value)
            return 0

        logger.debug(
            "publishing_event",
            topic=event.topic.value,
            event_id=event.event_id,
            tenant_id=event.tenant_id,
            handlers=len(handlers),
        )

        delivered = 0
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.error(
                    "event_handler_failed",
                    topic=event.topic.value,
                    event_id=event.event_id,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    exc_info=True,
                )

        return delivered
