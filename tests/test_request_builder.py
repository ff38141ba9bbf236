"""Tests for provider request assembly and capability enforcement."""

from __future__ import annotations

from itertools import combinations
import unittest

from gemini_chat.capabilities import Feature, ModelId, permitted_features
from gemini_chat.history import SessionHistory
from gemini_chat.request_builder import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    STRUCTURED_OUTPUT_INSTRUCTION,
    build_request,
    default_safety_settings,
)
from gemini_chat.session import ConversationConfig

_FEATURE_TOOLS = {
    Feature.FUNCTION_CALLING: {"searchWeb", "showCode"},
    Feature.CODE_EXECUTION: {"codeExecution"},
    Feature.GROUNDING_SEARCH: {"googleSearch"},
}


def _config(model: ModelId, features: set[Feature], **kwargs) -> ConversationConfig:
    # Bypass the config's own gating so the builder sees the raw request.
    config = ConversationConfig(model=model, **kwargs)
    config.features = set(features)
    return config


class RequestBuilderTests(unittest.TestCase):
    """Validate generation parameters, tools, and system instructions."""

    def test_history_and_new_user_turn_form_contents(self) -> None:
        history = SessionHistory()
        history.append("user", "Hi")
        history.append("model", "Hello!")
        request = build_request(ConversationConfig(), history.entries, "How are you?")

        self.assertEqual(
            [entry["role"] for entry in request.contents], ["user", "model", "user"]
        )
        self.assertEqual(request.user_text, "How are you?")
        # The caller's history is not mutated.
        self.assertEqual(len(history), 2)

    def test_generation_defaults(self) -> None:
        request = build_request(ConversationConfig(), [], "hello")
        self.assertEqual(request.generation.temperature, 0.1)
        self.assertEqual(request.generation.top_p, 0.8)
        self.assertEqual(request.generation.top_k, 40)
        self.assertEqual(request.generation.max_output_tokens, DEFAULT_MAX_OUTPUT_TOKENS)

    def test_explicit_temperature_and_max_tokens(self) -> None:
        request = build_request(
            ConversationConfig(temperature=0.0), [], "hello", max_output_tokens=512
        )
        self.assertEqual(request.generation.temperature, 0.0)
        self.assertEqual(request.generation.max_output_tokens, 512)
        payload = request.to_payload()
        self.assertEqual(
            payload["generationConfig"],
            {"temperature": 0.0, "maxOutputTokens": 512, "topP": 0.8, "topK": 40},
        )

    def test_function_calling_declares_search_and_show_code(self) -> None:
        config = _config(ModelId.PRO, {Feature.FUNCTION_CALLING})
        payload = build_request(config, [], "hello").to_payload()
        declarations = payload["tools"][0]["functionDeclarations"]
        self.assertEqual([d["name"] for d in declarations], ["searchWeb", "showCode"])

    def test_no_tools_means_no_tools_field(self) -> None:
        payload = build_request(ConversationConfig(), [], "hello").to_payload()
        self.assertNotIn("tools", payload)
        self.assertNotIn("systemInstruction", payload)

    def test_restricted_model_keeps_only_code_execution(self) -> None:
        config = _config(ModelId.FLASH_THINKING, set(Feature))
        request = build_request(config, [], "hello")
        self.assertEqual(request.tools.names, ["codeExecution"])
        self.assertEqual(request.to_payload()["tools"], [{"codeExecution": {}}])

    def test_structured_output_overrides_custom_prompt(self) -> None:
        config = _config(
            ModelId.PRO, {Feature.STRUCTURED_OUTPUT}, system_prompt="Be terse"
        )
        request = build_request(config, [], "hello")
        self.assertEqual(request.system_instruction, STRUCTURED_OUTPUT_INSTRUCTION)

    def test_restricted_model_falls_through_to_custom_prompt(self) -> None:
        config = _config(
            ModelId.FLASH_THINKING, {Feature.STRUCTURED_OUTPUT}, system_prompt="Be terse"
        )
        request = build_request(config, [], "hello")
        self.assertEqual(request.system_instruction, "Be terse")
        self.assertEqual(
            request.to_payload()["systemInstruction"],
            {"role": "system", "parts": [{"text": "Be terse"}]},
        )

    def test_restricted_model_structured_output_without_prompt_omits_instruction(self) -> None:
        config = _config(ModelId.FLASH_THINKING, {Feature.STRUCTURED_OUTPUT})
        request = build_request(config, [], "hello")
        self.assertIsNone(request.system_instruction)

    def test_blank_system_prompt_is_omitted(self) -> None:
        config = ConversationConfig()
        config.system_prompt = "   "
        self.assertIsNone(build_request(config, [], "hello").system_instruction)

    def test_custom_prompt_installed_verbatim(self) -> None:
        config = ConversationConfig(system_prompt="  You are a pirate.  ")
        self.assertEqual(
            build_request(config, [], "hello").system_instruction, "  You are a pirate.  "
        )

    def test_safety_settings_rendered_when_supplied(self) -> None:
        request = build_request(
            ConversationConfig(), [], "hello", safety_settings=default_safety_settings()
        )
        payload = request.to_payload()
        self.assertEqual(len(payload["safetySettings"]), 4)
        self.assertTrue(
            all(item["threshold"] == "BLOCK_ONLY_HIGH" for item in payload["safetySettings"])
        )

    def test_never_exceeds_capability_matrix(self) -> None:
        """Every model and feature subset yields only permitted tools/instructions."""
        all_features = list(Feature)
        for model in ModelId:
            allowed = permitted_features(model)
            for size in range(len(all_features) + 1):
                for subset in combinations(all_features, size):
                    config = _config(model, set(subset), system_prompt="custom")
                    request = build_request(config, [], "hi")
                    expected_tools: set[str] = set()
                    for feature in set(subset) & allowed:
                        expected_tools |= _FEATURE_TOOLS.get(feature, set())
                    with self.subTest(model=model, features=subset):
                        self.assertEqual(set(request.tools.names), expected_tools)
                        if request.system_instruction == STRUCTURED_OUTPUT_INSTRUCTION:
                            self.assertIn(Feature.STRUCTURED_OUTPUT, allowed)
                            self.assertIn(Feature.STRUCTURED_OUTPUT, subset)
                        else:
                            self.assertEqual(request.system_instruction, "custom")

    def test_build_is_deterministic(self) -> None:
        config = _config(ModelId.PRO, {Feature.CODE_EXECUTION}, temperature=0.4)
        first = build_request(config, [], "same").to_payload()
        second = build_request(config, [], "same").to_payload()
        self.assertEqual(first, second)


if __name__ == "__main__":
    unittest.main()
