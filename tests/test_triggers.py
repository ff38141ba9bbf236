"""Tests for side-panel trigger detection."""

from __future__ import annotations

import unittest

from gemini_chat.triggers import NO_TRIGGER, TriggerKind, detect_triggers


class TriggerDetectionTests(unittest.TestCase):
    """Validate rule order and payload extraction."""

    def test_fenced_code_block_with_language(self) -> None:
        result = detect_triggers("Here:\n```python\nprint(1)\n```\nDone.")
        self.assertTrue(result.should_open)
        self.assertIs(result.kind, TriggerKind.CODE)
        self.assertEqual(result.language, "python")
        self.assertEqual(result.content, "print(1)")
        self.assertEqual(result.title, "python Code")

    def test_code_block_without_language_defaults_to_plaintext(self) -> None:
        result = detect_triggers("```\nplain text\n```")
        self.assertEqual(result.language, "plaintext")
        self.assertEqual(result.title, "plaintext Code")

    def test_bare_url(self) -> None:
        result = detect_triggers("See https://example.com/docs for details")
        self.assertIs(result.kind, TriggerKind.URL)
        self.assertEqual(result.url, "https://example.com/docs")
        self.assertEqual(result.title, "Web Preview")

    def test_code_block_wins_over_url(self) -> None:
        text = "Visit https://example.com\n```js\nconsole.log('x')\n```"
        result = detect_triggers(text)
        self.assertIs(result.kind, TriggerKind.CODE)
        self.assertEqual(result.language, "js")

    def test_preview_directive_with_content(self) -> None:
        result = detect_triggers("!preview\n<h1>Hello</h1>\n!end")
        self.assertIs(result.kind, TriggerKind.PREVIEW)
        self.assertEqual(result.content, "<h1>Hello</h1>")
        self.assertEqual(result.title, "Generated Preview")

    def test_preview_phrase_without_directive_has_empty_content(self) -> None:
        result = detect_triggers("I've created a preview of the layout for you.")
        self.assertIs(result.kind, TriggerKind.PREVIEW)
        self.assertEqual(result.content, "")

    def test_show_directive(self) -> None:
        result = detect_triggers("!show the dashboard")
        self.assertIs(result.kind, TriggerKind.PREVIEW)

    def test_plain_text_has_no_trigger(self) -> None:
        self.assertEqual(detect_triggers("Just a normal answer."), NO_TRIGGER)
        self.assertEqual(detect_triggers(""), NO_TRIGGER)
        self.assertIsNone(NO_TRIGGER.to_panel_payload())

    def test_detection_is_idempotent(self) -> None:
        text = "```bash\nls -la\n```\nand https://example.com"
        self.assertEqual(detect_triggers(text), detect_triggers(text))

    def test_panel_payload_for_url(self) -> None:
        payload = detect_triggers("https://example.com").to_panel_payload()
        self.assertIsNotNone(payload)
        self.assertEqual(payload.title, "Web Preview")
        self.assertEqual(payload.url, "https://example.com")
        self.assertIsNone(payload.content)


if __name__ == "__main__":
    unittest.main()
