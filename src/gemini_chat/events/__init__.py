"""Event bus and domain events for decoupled turn observers."""

from .bus import Event, EventBus
from .domain import (
    ConversationSavedEvent,
    SidePanelOpenEvent,
    TurnCompletedEvent,
    TurnFailedEvent,
    TurnNarrationEvent,
    TurnPlaceholderEvent,
)

__all__ = [
    "ConversationSavedEvent",
    "Event",
    "EventBus",
    "SidePanelOpenEvent",
    "TurnCompletedEvent",
    "TurnFailedEvent",
    "TurnNarrationEvent",
    "TurnPlaceholderEvent",
]
