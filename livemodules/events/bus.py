"""Event bus for module and package notifications."""

import logging
from collections.abc import Callable

from livemodules.events.schemas import ModuleEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[ModuleEvent], None]


class EventBus:
    """Simple event bus for publishing and subscribing to graph events.

    Subscribers are called synchronously, in subscription order. Errors in
    handlers are isolated and logged to prevent one failing handler from
    breaking others or the operation that emitted the event.
    """

    def __init__(self) -> None:
        self._subscribers: list[tuple[EventHandler, str | None]] = []

    def subscribe(self, handler: EventHandler, event_type: str | None = None) -> None:
        """Subscribe a handler to events.

        Args:
            handler: Callable that takes a ModuleEvent
            event_type: Only deliver events with this ``type``; None for all events
        """
        self._subscribers.append((handler, event_type))

    def unsubscribe(self, handler: EventHandler) -> bool:
        """Remove every subscription of ``handler``.

        Returns:
            True if the handler was subscribed
        """
        before = len(self._subscribers)
        self._subscribers = [(h, t) for h, t in self._subscribers if h is not handler]
        return len(self._subscribers) != before

    def publish(self, event: ModuleEvent) -> None:
        """Publish an event to all matching subscribers.

        Errors in handlers are caught and logged to prevent cascading failures.

        Args:
            event: ModuleEvent to publish
        """
        for handler, event_type in list(self._subscribers):
            if event_type is not None and event_type != event.type:
                continue
            try:
                handler(event)
            except Exception:
                logger.exception(f"Error in event handler {getattr(handler, '__name__', handler)!s}")
