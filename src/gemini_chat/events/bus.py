"""Event bus for decoupled component communication.

Usage:
    bus = EventBus()

    async def on_narration(event):
        print(event.data["event"].narration)

    bus.subscribe("turn.narration", on_narration)
    await bus.publish("turn.narration", {"event": TurnNarrationEvent(...)})
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)


@dataclass
class Event:
    """Event data container."""

    name: str
    data: dict[str, Any]
    source: str | None = None


class EventBus:
    """Simple event bus for publish/subscribe pattern.

    Handler failures are logged and never reach the publisher, so an
    observer cannot break the turn that emitted the event.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callable]] = {}

    def subscribe(self, event_name: str, handler: Callable) -> None:
        """Subscribe ``handler`` (sync or async) to ``event_name``."""
        self._subscribers.setdefault(event_name, []).append(handler)
        LOGGER.debug("Subscribed to event: %s", event_name)

    def unsubscribe(self, event_name: str, handler: Callable) -> None:
        """Unsubscribe from an event; unknown handlers are ignored."""
        handlers = self._subscribers.get(event_name)
        if not handlers:
            return
        try:
            handlers.remove(handler)
            LOGGER.debug("Unsubscribed from event: %s", event_name)
        except ValueError:
            pass

    async def publish(
        self, event_name: str, data: dict[str, Any], source: str | None = None
    ) -> None:
        """Publish an event to all subscribers in subscription order."""
        event = Event(name=event_name, data=data, source=source)
        handlers = list(self._subscribers.get(event_name, []))

        if not handlers:
            LOGGER.debug("No subscribers for event: %s", event_name)
            return

        for handler in handlers:
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)
            except Exception as exc:
                LOGGER.error(
                    "events.handler.failed",
                    extra={
                        "event": "events.handler.failed",
                        "event_name": event_name,
                        "error": str(exc),
                    },
                )

    def clear(self, event_name: str | None = None) -> None:
        """Clear subscribers for one event, or all when ``event_name`` is None."""
        if event_name:
            self._subscribers.pop(event_name, None)
        else:
            self._subscribers.clear()
