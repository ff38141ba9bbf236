"""Turn lifecycle management for a single conversation.

Drives one exchange at a time: optimistic placeholder, cosmetic thinking
narration, provider call, finalization or failure, and the delayed
side-panel notification for responses that carry a trigger.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Protocol

from ..config import DEFAULT_NARRATION_FRAMES
from ..events.domain import (
    CONVERSATION_SAVED,
    SIDE_PANEL_OPEN,
    TURN_COMPLETED,
    TURN_FAILED,
    TURN_NARRATION,
    TURN_PLACEHOLDER,
    ConversationSavedEvent,
    SidePanelOpenEvent,
    TurnCompletedEvent,
    TurnFailedEvent,
    TurnNarrationEvent,
    TurnPlaceholderEvent,
)
from ..exceptions import ConfigurationError, TurnInProgressError
from ..observability import FailureRecord, LoggingFailureSink, ObservabilitySink
from ..persistence import PersistenceError
from ..request_builder import ProviderRequest, build_request
from ..session import APOLOGY_MESSAGE, SessionState, Turn, derive_title
from ..state import TurnPhase, TurnStateMachine
from ..task_manager import TaskManager
from ..triggers import NO_TRIGGER, SidePanelPayload, TriggerResult, detect_triggers

if TYPE_CHECKING:
    from ..events.bus import EventBus
    from ..persistence import ConversationStore
    from ..provider import ProviderClient

LOGGER = logging.getLogger(__name__)

INITIAL_NARRATION = "I'm processing your request..."
NARRATION_TASK = "narration"


class SidePanelPresenter(Protocol):
    """Displays side-panel payloads; the engine only computes them."""

    def open(self, payload: SidePanelPayload) -> Any: ...


@dataclass
class TurnOutcome:
    """Result of one ``submit`` call."""

    user_turn: Turn
    assistant_turn: Turn
    trigger: TriggerResult = NO_TRIGGER
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class TurnController:
    """Run turns for one conversation, at most one at a time.

    A second ``submit`` while a turn is in flight is rejected with
    ``TurnInProgressError`` before any state is touched; there is no queue
    and the running turn is unaffected. Provider failures never escape
    ``submit``: they end the assistant turn in ``error`` status and are
    forwarded once to the observability sink.
    """

    def __init__(
        self,
        session: SessionState,
        provider: ProviderClient,
        *,
        event_bus: EventBus | None = None,
        sink: ObservabilitySink | None = None,
        store: ConversationStore | None = None,
        presenter: SidePanelPresenter | None = None,
        narration_frames: Sequence[str] = DEFAULT_NARRATION_FRAMES,
        narration_interval: float = 1.0,
        side_panel_delay: float = 0.5,
        streaming: bool = False,
        max_output_tokens: int | None = None,
        safety_settings: Sequence[dict[str, str]] | None = None,
    ) -> None:
        self.session = session
        self.provider = provider
        self.event_bus = event_bus
        self.sink = sink or LoggingFailureSink()
        self.store = store
        self.presenter = presenter
        self.narration_frames = tuple(narration_frames)
        self.narration_interval = narration_interval
        self.side_panel_delay = side_panel_delay
        self.streaming = streaming
        self.max_output_tokens = max_output_tokens
        self.safety_settings = list(safety_settings or [])
        self._machine = TurnStateMachine()
        self._tasks = TaskManager()
        self._closed = False

    @property
    def phase(self) -> TurnPhase:
        return self._machine.phase

    @property
    def in_flight(self) -> bool:
        return self._machine.in_flight

    @property
    def conversation_id(self) -> str:
        return self.session.conversation_id

    async def submit(self, text: str) -> TurnOutcome:
        """Run one exchange for ``text`` and return its outcome."""
        normalized = (text or "").strip()
        if not normalized:
            raise ConfigurationError("Message text must not be empty.")

        if not await self._machine.transition_if(
            TurnPhase.IDLE, TurnPhase.AWAITING_PLACEHOLDER
        ):
            LOGGER.info(
                "turn.rejected",
                extra={
                    "event": "turn.rejected",
                    "conversation_id": self.conversation_id,
                    "phase": self.phase.value,
                },
            )
            raise TurnInProgressError(
                f"A turn is already in progress for conversation {self.conversation_id}."
            )

        session = self.session
        request = build_request(
            session.config,
            session.history.entries,
            normalized,
            max_output_tokens=self.max_output_tokens,
            safety_settings=self.safety_settings,
        )
        if not session.has_turns:
            session.title = derive_title(normalized)
        user_turn = session.add_turn(Turn.user(normalized))
        placeholder = session.add_turn(Turn.placeholder(INITIAL_NARRATION))
        await self._machine.transition_to(TurnPhase.THINKING)

        LOGGER.info(
            "turn.submit",
            extra={
                "event": "turn.submit",
                "conversation_id": self.conversation_id,
                "turn_id": placeholder.id,
                "model": request.model.value,
                "tools": request.tools.names,
                "history_tokens": session.history.estimated_tokens(),
            },
        )
        await self._persist()
        self._tasks.start(NARRATION_TASK, self._narrate(placeholder))
        await self._publish(
            TURN_PLACEHOLDER,
            TurnPlaceholderEvent(self.conversation_id, placeholder.id, INITIAL_NARRATION),
        )

        try:
            response_text = await self._call_provider(request)
        except asyncio.CancelledError:
            await self._fail(placeholder, None)
            raise
        except Exception as exc:  # noqa: BLE001 - every provider failure ends the turn.
            await self._fail(placeholder, exc)
            return TurnOutcome(user_turn, placeholder, error=exc)

        try:
            trigger = await self._finalize(normalized, placeholder, response_text)
        except asyncio.CancelledError:
            await self._fail(placeholder, None)
            raise
        return TurnOutcome(user_turn, placeholder, trigger=trigger)

    async def _call_provider(self, request: ProviderRequest) -> str:
        if not self.streaming:
            return await self.provider.complete(request)
        chunks: list[str] = []
        async for chunk in self.provider.complete_streaming(request):
            chunks.append(chunk)
        return "".join(chunks)

    async def _finalize(self, user_text: str, placeholder: Turn, text: str) -> TriggerResult:
        await self._machine.transition_to(TurnPhase.FINALIZING)
        await self._tasks.cancel(NARRATION_TASK)

        placeholder.complete(text)
        self.session.update_turn(placeholder)
        self.session.record_exchange(user_text, text)
        trigger = detect_triggers(text)

        await self._machine.transition_to(TurnPhase.COMPLETE)
        LOGGER.info(
            "turn.complete",
            extra={
                "event": "turn.complete",
                "conversation_id": self.conversation_id,
                "turn_id": placeholder.id,
                "trigger": trigger.kind.value if trigger.kind else None,
            },
        )
        await self._persist()
        await self._publish(
            TURN_COMPLETED,
            TurnCompletedEvent(self.conversation_id, placeholder.id, text),
        )
        payload = trigger.to_panel_payload()
        if payload is not None:
            self._tasks.start(
                f"side_panel:{placeholder.id}", self._open_side_panel(payload)
            )
        await self._machine.reset()
        return trigger

    async def _fail(self, placeholder: Turn, exc: Exception | None) -> None:
        """End the placeholder in error status and return to IDLE."""
        await self._tasks.cancel(NARRATION_TASK)
        if not placeholder.is_terminal:
            placeholder.fail(APOLOGY_MESSAGE)
            self.session.update_turn(placeholder)
        if self.phase not in (TurnPhase.COMPLETE, TurnPhase.FAILED):
            await self._machine.transition_to(TurnPhase.FAILED)

        try:
            if exc is None:
                LOGGER.warning(
                    "turn.cancelled",
                    extra={
                        "event": "turn.cancelled",
                        "conversation_id": self.conversation_id,
                        "turn_id": placeholder.id,
                    },
                )
            else:
                self._record_failure(placeholder, exc)
                await self._publish(
                    TURN_FAILED,
                    TurnFailedEvent(self.conversation_id, placeholder.id, str(exc)),
                )
            await self._persist()
        finally:
            await self._machine.reset()

    def _record_failure(self, placeholder: Turn, exc: Exception) -> None:
        record = FailureRecord(
            conversation_id=self.conversation_id,
            turn_id=placeholder.id,
            error_message=str(exc),
            error_type=type(exc).__name__,
            model=self.session.config.model.value,
        )
        try:
            self.sink.record_failure(record)
        except Exception as sink_exc:  # noqa: BLE001 - a broken sink must not end the turn.
            LOGGER.error(
                "observability.sink_failed",
                extra={
                    "event": "observability.sink_failed",
                    "conversation_id": self.conversation_id,
                    "turn_id": placeholder.id,
                    "error": str(sink_exc),
                },
            )

    async def _narrate(self, placeholder: Turn) -> None:
        """Push canned narration phrases onto the placeholder until stopped."""
        for frame in self.narration_frames:
            await asyncio.sleep(self.narration_interval)
            if placeholder.is_terminal:
                return
            placeholder.narrate(frame)
            await self._publish(
                TURN_NARRATION,
                TurnNarrationEvent(self.conversation_id, placeholder.id, frame),
            )

    async def _open_side_panel(self, payload: SidePanelPayload) -> None:
        # Give the completed turn a moment to render before the panel opens.
        await asyncio.sleep(self.side_panel_delay)
        if self.presenter is not None:
            self.presenter.open(payload)
        await self._publish(
            SIDE_PANEL_OPEN, SidePanelOpenEvent(self.conversation_id, payload)
        )

    async def _publish(self, name: str, event: Any) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(name, {"event": event}, source=self.conversation_id)

    async def _persist(self) -> None:
        if self.store is None or self._closed:
            return
        try:
            path = self.store.save_session(self.session)
        except (PersistenceError, OSError) as exc:
            LOGGER.warning(
                "persistence.save_failed",
                extra={
                    "event": "persistence.save_failed",
                    "conversation_id": self.conversation_id,
                    "error": str(exc),
                },
            )
            return
        await self._publish(
            CONVERSATION_SAVED,
            ConversationSavedEvent(
                self.conversation_id, str(path or ""), self.session.updated_at
            ),
        )

    async def wait_for_background(self) -> None:
        """Wait for pending side-panel notifications and narration to settle."""
        await self._tasks.await_all()

    async def close(self) -> None:
        """Stop persisting and cancel any background work owned by this controller.

        A turn still awaiting the provider runs to its end but is no longer
        written to the store.
        """
        self._closed = True
        await self._tasks.cancel_all()
