"""Turn lifecycle state machine and lock-protected transitions."""

from __future__ import annotations

import asyncio
from enum import Enum

from .exceptions import TurnStateError


class TurnPhase(str, Enum):
    """Finite state machine for a single in-flight turn."""

    IDLE = "IDLE"
    AWAITING_PLACEHOLDER = "AWAITING_PLACEHOLDER"
    THINKING = "THINKING"
    FINALIZING = "FINALIZING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


ALLOWED_TRANSITIONS: dict[TurnPhase, frozenset[TurnPhase]] = {
    TurnPhase.IDLE: frozenset({TurnPhase.AWAITING_PLACEHOLDER}),
    TurnPhase.AWAITING_PLACEHOLDER: frozenset({TurnPhase.THINKING}),
    TurnPhase.THINKING: frozenset({TurnPhase.FINALIZING, TurnPhase.FAILED}),
    TurnPhase.FINALIZING: frozenset({TurnPhase.COMPLETE, TurnPhase.FAILED}),
    TurnPhase.COMPLETE: frozenset({TurnPhase.IDLE}),
    TurnPhase.FAILED: frozenset({TurnPhase.IDLE}),
}


class TurnStateMachine:
    """Manage turn phase transitions with async lock semantics."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._phase = TurnPhase.IDLE

    @property
    def phase(self) -> TurnPhase:
        """Current phase without taking the lock (read-only snapshot)."""
        return self._phase

    @property
    def in_flight(self) -> bool:
        return self._phase is not TurnPhase.IDLE

    async def transition_to(self, new_phase: TurnPhase) -> TurnPhase:
        """Move to ``new_phase``; raises on a transition the machine forbids."""
        async with self._lock:
            if new_phase not in ALLOWED_TRANSITIONS[self._phase]:
                raise TurnStateError(
                    f"Illegal turn transition {self._phase.value} -> {new_phase.value}."
                )
            self._phase = new_phase
            return self._phase

    async def transition_if(self, expected: TurnPhase, new_phase: TurnPhase) -> bool:
        """Transition only when the current phase matches ``expected``."""
        async with self._lock:
            if self._phase is not expected:
                return False
            if new_phase not in ALLOWED_TRANSITIONS[self._phase]:
                raise TurnStateError(
                    f"Illegal turn transition {self._phase.value} -> {new_phase.value}."
                )
            self._phase = new_phase
            return True

    async def reset(self) -> None:
        """Return to IDLE from a terminal phase."""
        async with self._lock:
            if self._phase in (TurnPhase.COMPLETE, TurnPhase.FAILED):
                self._phase = TurnPhase.IDLE
