"""Assemble provider requests from conversation configuration.

This module never performs I/O. Every capability decision goes through the
capability matrix, so a feature the selected model does not permit is
silently dropped instead of being reported as an error.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from .capabilities import (
    Feature,
    ModelId,
    is_feature_available,
    resolve_model,
    supports_custom_system_prompt,
)
from .history import HistoryEntry, make_entry

DEFAULT_TEMPERATURE = 0.1
DEFAULT_TOP_P = 0.8
DEFAULT_TOP_K = 40
DEFAULT_MAX_OUTPUT_TOKENS = 2048

STRUCTURED_OUTPUT_INSTRUCTION = (
    "You must respond with valid JSON without any other text. Format your "
    "entire response as a JSON object with keys for 'message' containing your "
    "main response and 'data' containing any structured data."
)

SEARCH_WEB_DECLARATION: dict[str, Any] = {
    "name": "searchWeb",
    "description": "Search the web for information",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "query": {"type": "STRING", "description": "The search query"},
        },
        "required": ["query"],
    },
}

SHOW_CODE_DECLARATION: dict[str, Any] = {
    "name": "showCode",
    "description": "Display code in the web container",
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "language": {"type": "STRING", "description": "The programming language"},
            "code": {"type": "STRING", "description": "The code to display"},
        },
        "required": ["code"],
    },
}

HARM_CATEGORIES: tuple[str, ...] = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


def default_safety_settings(threshold: str = "BLOCK_ONLY_HIGH") -> list[dict[str, str]]:
    """Return one safety setting per harm category at ``threshold``."""
    return [{"category": category, "threshold": threshold} for category in HARM_CATEGORIES]


@dataclass(frozen=True)
class GenerationParameters:
    """Sampling parameters sent with every request."""

    temperature: float = DEFAULT_TEMPERATURE
    top_p: float = DEFAULT_TOP_P
    top_k: int = DEFAULT_TOP_K
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS

    def to_payload(self) -> dict[str, Any]:
        return {
            "temperature": self.temperature,
            "maxOutputTokens": self.max_output_tokens,
            "topP": self.top_p,
            "topK": self.top_k,
        }


@dataclass(frozen=True)
class ToolSet:
    """Tool declarations resolved for one request."""

    function_declarations: tuple[dict[str, Any], ...] = ()
    code_execution: bool = False
    grounding_search: bool = False

    @property
    def is_empty(self) -> bool:
        return not (
            self.function_declarations or self.code_execution or self.grounding_search
        )

    @property
    def names(self) -> list[str]:
        """Flat list of tool names, handy for logging and assertions."""
        names = [str(item["name"]) for item in self.function_declarations]
        if self.code_execution:
            names.append("codeExecution")
        if self.grounding_search:
            names.append("googleSearch")
        return names

    def to_payload(self) -> list[dict[str, Any]]:
        tools: list[dict[str, Any]] = []
        if self.function_declarations:
            tools.append(
                {"functionDeclarations": [dict(item) for item in self.function_declarations]}
            )
        if self.code_execution:
            tools.append({"codeExecution": {}})
        if self.grounding_search:
            tools.append({"googleSearch": {}})
        return tools


@dataclass(frozen=True)
class ProviderRequest:
    """A fully resolved completion request for one turn."""

    model: ModelId
    contents: tuple[HistoryEntry, ...]
    generation: GenerationParameters
    tools: ToolSet = field(default_factory=ToolSet)
    system_instruction: str | None = None
    safety_settings: tuple[dict[str, str], ...] = ()

    @property
    def user_text(self) -> str:
        """Text of the new user entry (always the last content entry)."""
        parts = self.contents[-1]["parts"] if self.contents else []
        return "".join(str(part.get("text", "")) for part in parts)

    def to_payload(self) -> dict[str, Any]:
        """Render the Gemini REST body, omitting fields that are not set."""
        payload: dict[str, Any] = {
            "contents": [
                {"role": entry["role"], "parts": [dict(part) for part in entry["parts"]]}
                for entry in self.contents
            ],
            "generationConfig": self.generation.to_payload(),
        }
        if not self.tools.is_empty:
            payload["tools"] = self.tools.to_payload()
        if self.system_instruction is not None:
            payload["systemInstruction"] = {
                "role": "system",
                "parts": [{"text": self.system_instruction}],
            }
        if self.safety_settings:
            payload["safetySettings"] = [dict(item) for item in self.safety_settings]
        return payload


def _enabled(config: Any, model: ModelId, feature: Feature) -> bool:
    return feature in config.features and is_feature_available(model, feature)


def resolve_tools(config: Any, model: ModelId) -> ToolSet:
    """Pick the tool declarations ``config`` asks for and ``model`` allows."""
    declarations: tuple[dict[str, Any], ...] = ()
    if _enabled(config, model, Feature.FUNCTION_CALLING):
        declarations = (SEARCH_WEB_DECLARATION, SHOW_CODE_DECLARATION)
    return ToolSet(
        function_declarations=declarations,
        code_execution=_enabled(config, model, Feature.CODE_EXECUTION),
        grounding_search=_enabled(config, model, Feature.GROUNDING_SEARCH),
    )


def resolve_system_instruction(config: Any, model: ModelId) -> str | None:
    """Structured output wins over a custom prompt; blank prompts are omitted."""
    if _enabled(config, model, Feature.STRUCTURED_OUTPUT):
        return STRUCTURED_OUTPUT_INSTRUCTION
    prompt = config.system_prompt
    if prompt and prompt.strip() and supports_custom_system_prompt(model):
        return prompt
    return None


def build_request(
    config: Any,
    history: Sequence[HistoryEntry],
    user_text: str,
    *,
    max_output_tokens: int | None = None,
    safety_settings: Sequence[dict[str, str]] | None = None,
) -> ProviderRequest:
    """Build the provider request for the next user turn.

    ``config`` is a ``ConversationConfig`` (or anything exposing ``model``,
    ``temperature``, ``features`` and ``system_prompt``); ``history`` is the
    provider-format session history. Neither is mutated.
    """
    model = resolve_model(config.model)
    temperature = config.temperature
    generation = GenerationParameters(
        temperature=DEFAULT_TEMPERATURE if temperature is None else float(temperature),
        max_output_tokens=max_output_tokens or DEFAULT_MAX_OUTPUT_TOKENS,
    )
    contents = tuple(
        {"role": entry["role"], "parts": [dict(part) for part in entry["parts"]]}
        for entry in history
    ) + (make_entry("user", user_text),)

    return ProviderRequest(
        model=model,
        contents=contents,
        generation=generation,
        tools=resolve_tools(config, model),
        system_instruction=resolve_system_instruction(config, model),
        safety_settings=tuple(dict(item) for item in (safety_settings or ())),
    )
