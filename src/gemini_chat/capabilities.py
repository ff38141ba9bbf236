"""Static capability matrix for the supported Gemini model variants."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging

LOGGER = logging.getLogger(__name__)


class ModelId(str, Enum):
    """Model identifiers a conversation may select."""

    PRO = "gemini-2.0-pro-exp-02-05"
    FLASH_THINKING = "gemini-2.0-flash-thinking-exp-01-21"


class Feature(str, Enum):
    """Optional, independently togglable request features."""

    STRUCTURED_OUTPUT = "structured_output"
    CODE_EXECUTION = "code_execution"
    FUNCTION_CALLING = "function_calling"
    GROUNDING_SEARCH = "grounding_search"


@dataclass(frozen=True)
class ModelCapabilities:
    """What a model variant is allowed to receive in a request.

    ``custom_system_prompt`` is independent of ``features``: the restricted
    reasoning-trace model still accepts a caller-supplied system prompt even
    though it rejects the structured-output instruction.
    """

    model: ModelId
    display_name: str
    features: frozenset[Feature]
    custom_system_prompt: bool = True


CAPABILITY_MATRIX: dict[ModelId, ModelCapabilities] = {
    ModelId.PRO: ModelCapabilities(
        model=ModelId.PRO,
        display_name="Gemini Pro",
        features=frozenset(Feature),
    ),
    ModelId.FLASH_THINKING: ModelCapabilities(
        model=ModelId.FLASH_THINKING,
        display_name="Gemini Thinking",
        features=frozenset({Feature.CODE_EXECUTION}),
    ),
}

DEFAULT_MODEL = ModelId.PRO


def _most_restrictive_model() -> ModelId:
    return min(
        CAPABILITY_MATRIX.values(),
        key=lambda caps: (len(caps.features), caps.custom_system_prompt),
    ).model


def available_models() -> list[ModelId]:
    """Return every known model in declaration order."""
    return list(CAPABILITY_MATRIX)


def resolve_model(identifier: ModelId | str | None) -> ModelId:
    """Map a raw identifier onto a known model, failing closed.

    Matching ignores case, surrounding whitespace and the ``models/`` prefix
    the REST API uses. Anything unrecognised resolves to the most restrictive
    known model so an unsupported capability is never granted by accident.
    """
    if isinstance(identifier, ModelId):
        return identifier
    normalized = str(identifier or "").strip().lower()
    if normalized.startswith("models/"):
        normalized = normalized[len("models/") :]
    for model in ModelId:
        if model.value == normalized:
            return model

    fallback = _most_restrictive_model()
    LOGGER.warning(
        "capabilities.model.unknown",
        extra={
            "event": "capabilities.model.unknown",
            "model": identifier,
            "fallback": fallback.value,
        },
    )
    return fallback


def capabilities_for(model: ModelId | str | None) -> ModelCapabilities:
    """Return the capability record for ``model`` (fail-closed lookup)."""
    return CAPABILITY_MATRIX[resolve_model(model)]


def permitted_features(model: ModelId | str | None) -> frozenset[Feature]:
    """Return the set of optional features the model may use."""
    return capabilities_for(model).features


def is_feature_available(model: ModelId | str | None, feature: Feature) -> bool:
    """Return True when ``feature`` is permitted for ``model``."""
    return feature in permitted_features(model)


def supports_custom_system_prompt(model: ModelId | str | None) -> bool:
    """Return True when a caller-supplied system prompt may be installed."""
    return capabilities_for(model).custom_system_prompt
