"""Tests for turns, conversation config, and session state."""

from __future__ import annotations

import unittest

from gemini_chat.capabilities import Feature, ModelId
from gemini_chat.exceptions import ConfigurationError, TurnStateError
from gemini_chat.session import (
    APOLOGY_MESSAGE,
    DEFAULT_TITLE,
    ConversationConfig,
    SessionState,
    Turn,
    TurnRole,
    TurnStatus,
    derive_title,
)


class TitleTests(unittest.TestCase):
    def test_long_text_is_truncated_with_ellipsis(self) -> None:
        self.assertEqual(
            derive_title("Explain quicksort in detail please"),
            "Explain quicksort in detail pl...",
        )

    def test_short_text_is_used_verbatim(self) -> None:
        self.assertEqual(derive_title("Hi"), "Hi")
        exact = "x" * 30
        self.assertEqual(derive_title(exact), exact)


class TurnTests(unittest.TestCase):
    """Validate the thinking -> complete|error lifecycle."""

    def test_placeholder_completes_once(self) -> None:
        turn = Turn.placeholder("Working...")
        self.assertIs(turn.role, TurnRole.ASSISTANT)
        self.assertIs(turn.status, TurnStatus.THINKING)
        turn.narrate("Still working...")
        self.assertEqual(turn.thinking, "Still working...")

        turn.complete("Done")
        self.assertIs(turn.status, TurnStatus.COMPLETE)
        self.assertIsNone(turn.thinking)
        with self.assertRaises(TurnStateError):
            turn.fail("late failure")
        with self.assertRaises(TurnStateError):
            turn.narrate("late narration")
        self.assertEqual(turn.content, "Done")

    def test_user_turn_is_terminal(self) -> None:
        turn = Turn.user("Hello")
        self.assertTrue(turn.is_terminal)
        self.assertIs(turn.status, TurnStatus.COMPLETE)

    def test_thinking_turn_loads_as_error(self) -> None:
        turn = Turn.placeholder("Working...")
        restored = Turn.from_dict(turn.to_dict())
        self.assertIs(restored.status, TurnStatus.ERROR)
        self.assertEqual(restored.content, APOLOGY_MESSAGE)
        self.assertEqual(restored.id, turn.id)


class ConversationConfigTests(unittest.TestCase):
    """Validate feature gating and parameter validation."""

    def test_unpermitted_features_are_dropped_on_construction(self) -> None:
        config = ConversationConfig(model=ModelId.FLASH_THINKING, features=set(Feature))
        self.assertEqual(config.features, {Feature.CODE_EXECUTION})

    def test_set_feature_refuses_unpermitted(self) -> None:
        config = ConversationConfig(model=ModelId.FLASH_THINKING)
        self.assertFalse(config.set_feature(Feature.FUNCTION_CALLING))
        self.assertTrue(config.set_feature(Feature.CODE_EXECUTION))
        self.assertFalse(config.set_feature(Feature.CODE_EXECUTION, enabled=False))
        self.assertEqual(config.features, set())

    def test_switch_model_clears_unsupported_features(self) -> None:
        config = ConversationConfig(
            features={Feature.STRUCTURED_OUTPUT, Feature.CODE_EXECUTION}
        )
        cleared = config.switch_model("gemini-2.0-flash-thinking-exp-01-21")
        self.assertEqual(cleared, {Feature.STRUCTURED_OUTPUT})
        self.assertEqual(config.features, {Feature.CODE_EXECUTION})

    def test_select_mode_keeps_a_single_feature(self) -> None:
        config = ConversationConfig(
            features={Feature.FUNCTION_CALLING, Feature.CODE_EXECUTION}
        )
        self.assertTrue(config.select_mode(Feature.GROUNDING_SEARCH))
        self.assertEqual(config.features, {Feature.GROUNDING_SEARCH})
        self.assertFalse(config.select_mode(None))
        self.assertEqual(config.features, set())

    def test_temperature_bounds(self) -> None:
        config = ConversationConfig(temperature=0.0)
        self.assertEqual(config.temperature, 0.0)
        config.set_temperature(1.0)
        self.assertEqual(config.temperature, 1.0)
        with self.assertRaises(ConfigurationError):
            config.set_temperature(1.5)
        with self.assertRaises(ConfigurationError):
            ConversationConfig(temperature=-0.1)
        with self.assertRaises(ConfigurationError):
            config.set_temperature("warm")
        config.set_temperature(None)
        self.assertIsNone(config.temperature)

    def test_blank_system_prompt_clears(self) -> None:
        config = ConversationConfig(system_prompt="Be terse")
        config.set_system_prompt("   ")
        self.assertIsNone(config.system_prompt)

    def test_dict_round_trip_ignores_unknown_features(self) -> None:
        payload = {
            "model": "gemini-2.0-pro-exp-02-05",
            "temperature": 0.3,
            "features": ["code_execution", "teleportation"],
            "system_prompt": "Be terse",
        }
        config = ConversationConfig.from_dict(payload)
        self.assertEqual(config.features, {Feature.CODE_EXECUTION})
        self.assertEqual(config.to_dict()["features"], ["code_execution"])


class SessionStateTests(unittest.TestCase):
    """Validate turn bookkeeping and provider history updates."""

    def test_new_session_defaults(self) -> None:
        session = SessionState()
        self.assertEqual(session.title, DEFAULT_TITLE)
        self.assertFalse(session.has_turns)
        self.assertEqual(len(session.history), 0)
        self.assertEqual(len(session.conversation_id), 12)

    def test_update_turn_replaces_by_id(self) -> None:
        session = SessionState()
        placeholder = session.add_turn(Turn.placeholder("..."))
        placeholder.complete("Answer")
        session.update_turn(placeholder)
        self.assertIs(session.get_turn(placeholder.id), placeholder)
        with self.assertRaises(KeyError):
            session.update_turn(Turn.user("stranger"))

    def test_record_exchange_appends_user_then_model(self) -> None:
        session = SessionState()
        session.record_exchange("Hi", "Hello!")
        self.assertEqual(
            [entry["role"] for entry in session.history.entries], ["user", "model"]
        )

    def test_round_trip_through_dict(self) -> None:
        session = SessionState(config=ConversationConfig(temperature=0.5), title="Demo")
        session.add_turn(Turn.user("Hi"))
        answer = session.add_turn(Turn.placeholder("..."))
        answer.complete("Hello!")
        session.record_exchange("Hi", "Hello!")

        restored = SessionState.from_dict(session.to_dict())
        self.assertEqual(restored.conversation_id, session.conversation_id)
        self.assertEqual(restored.title, "Demo")
        self.assertEqual(restored.config.temperature, 0.5)
        self.assertEqual(restored.history.entries, session.history.entries)
        self.assertEqual([t.content for t in restored.turns], ["Hi", "Hello!"])
        self.assertEqual(restored.updated_at, session.updated_at)


if __name__ == "__main__":
    unittest.main()
