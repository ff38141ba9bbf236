"""Per-conversation orchestration: the turn controller and conversation registry."""

from .conversation import ConversationManager
from .turn import APOLOGY_MESSAGE, INITIAL_NARRATION, TurnController, TurnOutcome

__all__ = [
    "APOLOGY_MESSAGE",
    "ConversationManager",
    "INITIAL_NARRATION",
    "TurnController",
    "TurnOutcome",
]
