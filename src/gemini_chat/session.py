"""Turns, per-conversation configuration and session state."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from .capabilities import DEFAULT_MODEL, Feature, ModelId, permitted_features, resolve_model
from .exceptions import ConfigurationError, TurnStateError
from .history import SessionHistory

DEFAULT_TITLE = "New Conversation"
TITLE_LIMIT = 30
APOLOGY_MESSAGE = (
    "I'm sorry, I encountered an error processing your request. Please try again."
)


def generate_id() -> str:
    """Return a short random identifier for turns and conversations."""
    return uuid4().hex[:12]


def _now() -> datetime:
    return datetime.now(UTC)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    return _now()


def derive_title(text: str, limit: int = TITLE_LIMIT) -> str:
    """Build a conversation title from the first user message."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class TurnStatus(str, Enum):
    THINKING = "thinking"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class Turn:
    """One user or assistant message unit with its own status lifecycle.

    Assistant turns start in ``thinking`` and move exactly once to
    ``complete`` or ``error``; user turns are created ``complete``.
    """

    role: TurnRole
    content: str = ""
    status: TurnStatus = TurnStatus.COMPLETE
    thinking: str | None = None
    id: str = field(default_factory=generate_id)
    created_at: datetime = field(default_factory=_now)

    @classmethod
    def user(cls, text: str) -> Turn:
        return cls(role=TurnRole.USER, content=text, status=TurnStatus.COMPLETE)

    @classmethod
    def placeholder(cls, narration: str) -> Turn:
        return cls(
            role=TurnRole.ASSISTANT,
            content="",
            status=TurnStatus.THINKING,
            thinking=narration,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status is not TurnStatus.THINKING

    def narrate(self, text: str) -> None:
        """Update the transient narration while the turn is still thinking."""
        if self.is_terminal:
            raise TurnStateError(f"Turn {self.id} is no longer thinking.")
        self.thinking = text

    def complete(self, text: str) -> None:
        self._finish(TurnStatus.COMPLETE, text)

    def fail(self, text: str) -> None:
        self._finish(TurnStatus.ERROR, text)

    def _finish(self, status: TurnStatus, text: str) -> None:
        if self.is_terminal:
            raise TurnStateError(
                f"Turn {self.id} already finished with status {self.status.value}."
            )
        self.content = text
        self.status = status
        self.thinking = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "status": self.status.value,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
        }
        if self.thinking is not None:
            payload["thinking"] = self.thinking
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Turn:
        status = TurnStatus(payload.get("status", TurnStatus.COMPLETE.value))
        content = str(payload.get("content", ""))
        # A turn persisted mid-flight can never resume; surface it as failed.
        if status is TurnStatus.THINKING:
            status = TurnStatus.ERROR
            content = APOLOGY_MESSAGE
        return cls(
            id=str(payload.get("id") or generate_id()),
            role=TurnRole(payload.get("role", TurnRole.ASSISTANT.value)),
            status=status,
            content=content,
            thinking=None,
            created_at=_parse_timestamp(payload.get("created_at")),
        )


@dataclass
class ConversationConfig:
    """Request configuration for one conversation.

    At most the features the capability matrix permits for ``model`` are
    ever set. Mutual exclusivity of features is not enforced here;
    ``select_mode`` offers it as an opt-in policy.
    """

    model: ModelId = DEFAULT_MODEL
    temperature: float | None = None
    features: set[Feature] = field(default_factory=set)
    system_prompt: str | None = None

    def __post_init__(self) -> None:
        self.model = resolve_model(self.model)
        if self.temperature is not None:
            self.set_temperature(self.temperature)
        self.features = {Feature(item) for item in self.features}
        self._drop_unpermitted()

    def is_enabled(self, feature: Feature) -> bool:
        return feature in self.features

    def set_feature(self, feature: Feature, enabled: bool = True) -> bool:
        """Toggle one feature; returns whether it ended up enabled."""
        if not enabled:
            self.features.discard(feature)
            return False
        if feature not in permitted_features(self.model):
            return False
        self.features.add(feature)
        return True

    def select_mode(self, feature: Feature | None) -> bool:
        """Enable ``feature`` as the single active mode, clearing the rest."""
        self.features.clear()
        if feature is None:
            return False
        return self.set_feature(feature)

    def switch_model(self, model: ModelId | str) -> set[Feature]:
        """Change model and clear features it no longer permits.

        Returns the features that were cleared.
        """
        self.model = resolve_model(model)
        return self._drop_unpermitted()

    def set_temperature(self, value: float | None) -> None:
        if value is None:
            self.temperature = None
            return
        try:
            numeric = float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Temperature {value!r} is not a number.") from exc
        if not 0.0 <= numeric <= 1.0:
            raise ConfigurationError("Temperature must be between 0.0 and 1.0.")
        self.temperature = numeric

    def set_system_prompt(self, prompt: str | None) -> None:
        normalized = (prompt or "").strip()
        self.system_prompt = normalized or None

    def _drop_unpermitted(self) -> set[Feature]:
        dropped = self.features - permitted_features(self.model)
        self.features -= dropped
        return dropped

    def to_dict(self) -> dict[str, Any]:
        return {
            "model": self.model.value,
            "temperature": self.temperature,
            "features": sorted(feature.value for feature in self.features),
            "system_prompt": self.system_prompt,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ConversationConfig:
        features: set[Feature] = set()
        for raw in payload.get("features") or []:
            try:
                features.add(Feature(raw))
            except ValueError:
                continue
        return cls(
            model=resolve_model(payload.get("model")),
            temperature=payload.get("temperature"),
            features=features,
            system_prompt=payload.get("system_prompt") or None,
        )


class SessionState:
    """Mutable record for one open conversation."""

    def __init__(
        self,
        conversation_id: str | None = None,
        config: ConversationConfig | None = None,
        title: str = DEFAULT_TITLE,
    ) -> None:
        self.conversation_id = conversation_id or generate_id()
        self.config = config or ConversationConfig()
        self.title = title
        self.history = SessionHistory()
        self.turns: list[Turn] = []
        self.created_at = _now()
        self.updated_at = self.created_at

    @property
    def has_turns(self) -> bool:
        return bool(self.turns)

    def touch(self) -> None:
        self.updated_at = _now()

    def add_turn(self, turn: Turn) -> Turn:
        self.turns.append(turn)
        self.touch()
        return turn

    def get_turn(self, turn_id: str) -> Turn | None:
        for turn in self.turns:
            if turn.id == turn_id:
                return turn
        return None

    def update_turn(self, turn: Turn) -> None:
        """Replace the stored turn sharing ``turn.id`` in place."""
        for index, existing in enumerate(self.turns):
            if existing.id == turn.id:
                self.turns[index] = turn
                self.touch()
                return
        raise KeyError(turn.id)

    def record_exchange(self, user_text: str, assistant_text: str) -> None:
        """Append a completed user/assistant pair to the provider history."""
        self.history.append("user", user_text)
        self.history.append("model", assistant_text)
        self.touch()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.conversation_id,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "config": self.config.to_dict(),
            "history": self.history.entries,
            "turns": [turn.to_dict() for turn in self.turns],
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> SessionState:
        state = cls(
            conversation_id=str(payload.get("id") or generate_id()),
            config=ConversationConfig.from_dict(payload.get("config") or {}),
            title=str(payload.get("title") or DEFAULT_TITLE),
        )
        history = payload.get("history")
        if isinstance(history, list):
            state.history.replace_entries(history)
        turns = payload.get("turns")
        if isinstance(turns, list):
            state.turns = [Turn.from_dict(item) for item in turns if isinstance(item, dict)]
        state.created_at = _parse_timestamp(payload.get("created_at"))
        state.updated_at = _parse_timestamp(payload.get("updated_at"))
        return state
