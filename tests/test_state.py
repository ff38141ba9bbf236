"""Tests for lock-protected turn phase transitions."""

from __future__ import annotations

import asyncio
import unittest

from gemini_chat.exceptions import TurnStateError
from gemini_chat.state import TurnPhase, TurnStateMachine


class TurnStateMachineTests(unittest.IsolatedAsyncioTestCase):
    """Validate the single in-flight turn state machine."""

    async def test_full_successful_cycle(self) -> None:
        machine = TurnStateMachine()
        self.assertFalse(machine.in_flight)
        for phase in (
            TurnPhase.AWAITING_PLACEHOLDER,
            TurnPhase.THINKING,
            TurnPhase.FINALIZING,
            TurnPhase.COMPLETE,
        ):
            await machine.transition_to(phase)
            self.assertTrue(machine.in_flight)
        await machine.reset()
        self.assertEqual(machine.phase, TurnPhase.IDLE)

    async def test_illegal_transition_raises(self) -> None:
        machine = TurnStateMachine()
        with self.assertRaises(TurnStateError):
            await machine.transition_to(TurnPhase.COMPLETE)
        self.assertEqual(machine.phase, TurnPhase.IDLE)

    async def test_complete_cannot_become_failed(self) -> None:
        machine = TurnStateMachine()
        await machine.transition_to(TurnPhase.AWAITING_PLACEHOLDER)
        await machine.transition_to(TurnPhase.THINKING)
        await machine.transition_to(TurnPhase.FINALIZING)
        await machine.transition_to(TurnPhase.COMPLETE)
        with self.assertRaises(TurnStateError):
            await machine.transition_to(TurnPhase.FAILED)

    async def test_transition_if_enforces_expected_phase(self) -> None:
        machine = TurnStateMachine()
        changed = await machine.transition_if(TurnPhase.THINKING, TurnPhase.FAILED)
        self.assertFalse(changed)
        changed = await machine.transition_if(
            TurnPhase.IDLE, TurnPhase.AWAITING_PLACEHOLDER
        )
        self.assertTrue(changed)

    async def test_lock_admits_a_single_turn(self) -> None:
        machine = TurnStateMachine()

        async def try_start() -> bool:
            await asyncio.sleep(0)
            return await machine.transition_if(
                TurnPhase.IDLE, TurnPhase.AWAITING_PLACEHOLDER
            )

        results = await asyncio.gather(*(try_start() for _ in range(10)))
        self.assertEqual(sum(1 for result in results if result), 1)

    async def test_reset_ignores_non_terminal_phase(self) -> None:
        machine = TurnStateMachine()
        await machine.transition_to(TurnPhase.AWAITING_PLACEHOLDER)
        await machine.reset()
        self.assertEqual(machine.phase, TurnPhase.AWAITING_PLACEHOLDER)


if __name__ == "__main__":
    unittest.main()
