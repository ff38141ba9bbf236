"""Tests for provider-format conversation history."""

from __future__ import annotations

import unittest

from gemini_chat.history import SessionHistory, entry_text, make_entry


class SessionHistoryTests(unittest.TestCase):
    """Validate append-only semantics and wire format."""

    def test_assistant_role_maps_to_model(self) -> None:
        self.assertEqual(
            make_entry("assistant", "hi"), {"role": "model", "parts": [{"text": "hi"}]}
        )

    def test_unknown_role_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            make_entry("system", "nope")

    def test_entries_returns_a_copy(self) -> None:
        history = SessionHistory()
        history.append("user", "Hello")
        snapshot = history.entries
        snapshot[0]["parts"][0]["text"] = "mutated"
        snapshot.append(make_entry("model", "extra"))
        self.assertEqual(len(history), 1)
        self.assertEqual(entry_text(history.entries[0]), "Hello")

    def test_replace_entries_drops_malformed_rows(self) -> None:
        history = SessionHistory(
            [
                {"role": "user", "parts": [{"text": "a"}]},
                {"role": "system", "parts": [{"text": "b"}]},
                "garbage",
                {"role": "assistant", "parts": [{"text": "c"}, {"text": "d"}]},
            ]
        )
        self.assertEqual(
            history.entries,
            [
                {"role": "user", "parts": [{"text": "a"}]},
                {"role": "model", "parts": [{"text": "cd"}]},
            ],
        )

    def test_estimated_tokens_is_positive(self) -> None:
        history = SessionHistory()
        self.assertEqual(history.estimated_tokens(), 1)
        history.append("user", "one two three four")
        self.assertGreater(history.estimated_tokens(), 1)


if __name__ == "__main__":
    unittest.main()
