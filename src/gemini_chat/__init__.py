"""Top-level package for gemini-chat."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .capabilities import Feature, ModelId
    from .config import ensure_config_dir, load_config
    from .exceptions import (
        ConfigurationError,
        ConversationNotFoundError,
        GeminiChatError,
        ProviderError,
        TurnInProgressError,
    )
    from .managers import ConversationManager, TurnController
    from .provider import GeminiClient
    from .request_builder import build_request
    from .session import ConversationConfig, SessionState, Turn
    from .triggers import detect_triggers

__all__ = [
    "ConfigurationError",
    "ConversationConfig",
    "ConversationManager",
    "ConversationNotFoundError",
    "Feature",
    "GeminiChatError",
    "GeminiClient",
    "ModelId",
    "ProviderError",
    "SessionState",
    "Turn",
    "TurnController",
    "TurnInProgressError",
    "build_request",
    "detect_triggers",
    "ensure_config_dir",
    "load_config",
]

_LAZY_EXPORTS: dict[str, str] = {
    "Feature": "capabilities",
    "ModelId": "capabilities",
    "ensure_config_dir": "config",
    "load_config": "config",
    "ConfigurationError": "exceptions",
    "ConversationNotFoundError": "exceptions",
    "GeminiChatError": "exceptions",
    "ProviderError": "exceptions",
    "TurnInProgressError": "exceptions",
    "ConversationManager": "managers",
    "TurnController": "managers",
    "GeminiClient": "provider",
    "build_request": "request_builder",
    "ConversationConfig": "session",
    "SessionState": "session",
    "Turn": "session",
    "detect_triggers": "triggers",
}


def __getattr__(name: str) -> Any:
    """Lazily import symbols so importing the package stays cheap."""
    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    from importlib import import_module

    module = import_module(f".{module_name}", __name__)
    return getattr(module, name)
