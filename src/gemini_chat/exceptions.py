"""Domain exception hierarchy for the Gemini chat engine."""

from __future__ import annotations


class GeminiChatError(RuntimeError):
    """Base class for all domain-level chat errors."""


class ConfigurationError(GeminiChatError):
    """Raised when a request cannot be accepted with the current configuration."""


class ConfigValidationError(ConfigurationError):
    """Raised when configuration cannot be validated safely."""


class ConversationNotFoundError(ConfigurationError):
    """Raised when a submission targets no known conversation."""


class TurnInProgressError(GeminiChatError):
    """Raised when a turn is submitted while another is still in flight."""


class TurnStateError(GeminiChatError):
    """Raised on an illegal turn lifecycle transition."""


class ProviderError(GeminiChatError):
    """Raised when the completion provider fails."""


class ProviderConnectionError(ProviderError):
    """Raised when the provider host cannot be reached."""


class ProviderAuthError(ProviderError):
    """Raised when the provider rejects the API key."""


class ProviderQuotaError(ProviderError):
    """Raised when the provider reports quota or rate-limit exhaustion."""


class ProviderResponseError(ProviderError):
    """Raised when the provider returns an unusable response."""
