"""Conversation registry, configuration updates and persistence.

Keeps one ``SessionState`` and one ``TurnController`` per open
conversation. Conversations never share mutable state; each controller
only touches its own session.
"""

from __future__ import annotations

from collections.abc import Sequence
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from ..capabilities import Feature, ModelId
from ..config import Config, ConversationDefaults, TurnConfig
from ..exceptions import ConversationNotFoundError
from ..observability import LoggingFailureSink, ObservabilitySink
from ..persistence import ConversationPersistence, PersistenceError
from ..request_builder import default_safety_settings
from ..session import ConversationConfig, SessionState
from .turn import SidePanelPresenter, TurnController, TurnOutcome

if TYPE_CHECKING:
    from ..events.bus import EventBus
    from ..provider import ProviderClient

LOGGER = logging.getLogger(__name__)


class ConversationManager:
    """Own every open conversation and route submissions to it."""

    def __init__(
        self,
        provider: ProviderClient,
        *,
        store: ConversationPersistence | None = None,
        sink: ObservabilitySink | None = None,
        event_bus: EventBus | None = None,
        presenter: SidePanelPresenter | None = None,
        defaults: ConversationDefaults | None = None,
        turn_settings: TurnConfig | None = None,
        streaming: bool = False,
        max_output_tokens: int | None = None,
        safety_settings: Sequence[dict[str, str]] | None = None,
    ) -> None:
        self.provider = provider
        self.store = store if store is not None and store.enabled else None
        self.sink = sink or LoggingFailureSink()
        self.event_bus = event_bus
        self.presenter = presenter
        self.defaults = defaults or ConversationDefaults()
        self.turn_settings = turn_settings or TurnConfig()
        self.streaming = streaming
        self.max_output_tokens = max_output_tokens
        self.safety_settings = list(safety_settings or [])
        self._sessions: dict[str, SessionState] = {}
        self._controllers: dict[str, TurnController] = {}

    @classmethod
    def from_config(
        cls,
        config: Config,
        provider: ProviderClient,
        *,
        sink: ObservabilitySink | None = None,
        event_bus: EventBus | None = None,
        presenter: SidePanelPresenter | None = None,
    ) -> ConversationManager:
        """Wire a manager from validated application configuration."""
        store = ConversationPersistence(
            enabled=config.persistence.enabled,
            directory=config.persistence.directory,
        )
        return cls(
            provider,
            store=store,
            sink=sink,
            event_bus=event_bus,
            presenter=presenter,
            defaults=config.conversation,
            turn_settings=config.turn,
            streaming=config.provider.streaming,
            max_output_tokens=config.provider.max_output_tokens,
            safety_settings=default_safety_settings(config.provider.safety_threshold),
        )

    def new_config(self) -> ConversationConfig:
        """Build a fresh conversation configuration from the defaults."""
        config = ConversationConfig(
            model=self.defaults.model_id,
            temperature=self.defaults.temperature,
            system_prompt=self.defaults.system_prompt or None,
        )
        config.select_mode(self.defaults.mode)
        return config

    def _register(self, session: SessionState) -> SessionState:
        self._sessions[session.conversation_id] = session
        self._controllers[session.conversation_id] = TurnController(
            session,
            self.provider,
            event_bus=self.event_bus,
            sink=self.sink,
            store=self.store,
            presenter=self.presenter,
            narration_frames=self.turn_settings.narration_frames,
            narration_interval=self.turn_settings.narration_interval_seconds,
            side_panel_delay=self.turn_settings.side_panel_delay_seconds,
            streaming=self.streaming,
            max_output_tokens=self.max_output_tokens,
            safety_settings=self.safety_settings,
        )
        return session

    def create_conversation(self, config: ConversationConfig | None = None) -> SessionState:
        session = self._register(SessionState(config=config or self.new_config()))
        self._save(session)
        LOGGER.info(
            "conversation.created",
            extra={
                "event": "conversation.created",
                "conversation_id": session.conversation_id,
                "model": session.config.model.value,
            },
        )
        return session

    def get(self, conversation_id: str | None) -> SessionState:
        """Return the session for ``conversation_id`` or raise a configuration error."""
        if not conversation_id:
            raise ConversationNotFoundError("No active conversation selected.")
        session = self._sessions.get(conversation_id)
        if session is None:
            raise ConversationNotFoundError(f"Unknown conversation {conversation_id!r}.")
        return session

    def controller(self, conversation_id: str | None) -> TurnController:
        session = self.get(conversation_id)
        return self._controllers[session.conversation_id]

    def list_conversations(self) -> list[SessionState]:
        """Open conversations, most recently updated first."""
        return sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)

    async def send(self, conversation_id: str | None, text: str) -> TurnOutcome:
        """Submit ``text`` to a conversation; see ``TurnController.submit``."""
        return await self.controller(conversation_id).submit(text)

    async def delete(self, conversation_id: str) -> None:
        controller = self.controller(conversation_id)
        await controller.close()
        del self._sessions[conversation_id]
        del self._controllers[conversation_id]
        if self.store is not None:
            try:
                self.store.delete_session(conversation_id)
            except (PersistenceError, OSError) as exc:
                LOGGER.warning(
                    "persistence.delete_failed",
                    extra={
                        "event": "persistence.delete_failed",
                        "conversation_id": conversation_id,
                        "error": str(exc),
                    },
                )

    def switch_model(self, conversation_id: str, model: ModelId | str) -> set[Feature]:
        """Change model; returns the features cleared by the switch."""
        session = self.get(conversation_id)
        cleared = session.config.switch_model(model)
        self._touch(session)
        return cleared

    def select_mode(self, conversation_id: str, feature: Feature | None) -> bool:
        session = self.get(conversation_id)
        enabled = session.config.select_mode(feature)
        self._touch(session)
        return enabled

    def set_feature(self, conversation_id: str, feature: Feature, enabled: bool) -> bool:
        session = self.get(conversation_id)
        result = session.config.set_feature(feature, enabled)
        self._touch(session)
        return result

    def set_temperature(self, conversation_id: str, value: float | None) -> None:
        session = self.get(conversation_id)
        session.config.set_temperature(value)
        self._touch(session)

    def set_system_prompt(self, conversation_id: str, prompt: str | None) -> None:
        session = self.get(conversation_id)
        session.config.set_system_prompt(prompt)
        self._touch(session)

    def rename(self, conversation_id: str, title: str) -> None:
        session = self.get(conversation_id)
        normalized = title.strip()
        if normalized:
            session.title = normalized
            self._touch(session)

    def _touch(self, session: SessionState) -> None:
        session.touch()
        self._save(session)

    def _save(self, session: SessionState) -> None:
        if self.store is None:
            return
        try:
            self.store.save_session(session)
        except (PersistenceError, OSError) as exc:
            LOGGER.warning(
                "persistence.save_failed",
                extra={
                    "event": "persistence.save_failed",
                    "conversation_id": session.conversation_id,
                    "error": str(exc),
                },
            )

    def load_all(self) -> int:
        """Load every persisted conversation not already open; returns the count."""
        if self.store is None:
            return 0
        loaded = 0
        for row in self.store.list_conversations():
            conversation_id = row["id"]
            if conversation_id in self._sessions:
                continue
            try:
                session = self.store.load_session(conversation_id)
            except PersistenceError as exc:
                LOGGER.warning(
                    "persistence.load_failed",
                    extra={
                        "event": "persistence.load_failed",
                        "conversation_id": conversation_id,
                        "error": str(exc),
                    },
                )
                continue
            if session is not None:
                self._register(session)
                loaded += 1
        return loaded

    def export_markdown(self, conversation_id: str) -> Path:
        """Write a markdown transcript; requires persistence to be enabled."""
        session = self.get(conversation_id)
        if self.store is None:
            raise PersistenceError("Persistence is disabled; nothing to export to.")
        return self.store.export_markdown(session)

    async def wait_for_background(self) -> None:
        for controller in list(self._controllers.values()):
            await controller.wait_for_background()

    async def close(self) -> None:
        for controller in list(self._controllers.values()):
            await controller.close()
