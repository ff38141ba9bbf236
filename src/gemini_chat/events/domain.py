"""Event names and payload records published during a turn."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..triggers import SidePanelPayload

TURN_PLACEHOLDER = "turn.placeholder"
TURN_NARRATION = "turn.narration"
TURN_COMPLETED = "turn.completed"
TURN_FAILED = "turn.failed"
SIDE_PANEL_OPEN = "side_panel.open"
CONVERSATION_SAVED = "conversation.saved"


@dataclass
class TurnPlaceholderEvent:
    conversation_id: str
    turn_id: str
    narration: str


@dataclass
class TurnNarrationEvent:
    conversation_id: str
    turn_id: str
    narration: str


@dataclass
class TurnCompletedEvent:
    conversation_id: str
    turn_id: str
    content: str


@dataclass
class TurnFailedEvent:
    conversation_id: str
    turn_id: str
    error: str


@dataclass
class SidePanelOpenEvent:
    conversation_id: str
    payload: SidePanelPayload


@dataclass
class ConversationSavedEvent:
    conversation_id: str
    path: str
    timestamp: datetime
