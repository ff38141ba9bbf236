"""Configuration loading and validation for the Gemini chat engine."""

from __future__ import annotations

from copy import deepcopy
import logging
import os
from pathlib import Path
import tomllib
from typing import Any
from urllib.parse import urlparse

from platformdirs import user_config_path, user_state_path
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

from .capabilities import DEFAULT_MODEL, Feature, ModelId, resolve_model
from .exceptions import ConfigValidationError

LOGGER = logging.getLogger(__name__)

APP_NAME = "gemini-chat"
CONFIG_DIR = user_config_path(APP_NAME)
CONFIG_PATH = CONFIG_DIR / "config.toml"
STATE_DIR = user_state_path(APP_NAME)

API_KEY_ENV = "GEMINI_API_KEY"
VALID_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
VALID_SAFETY_THRESHOLDS = {
    "BLOCK_NONE",
    "BLOCK_ONLY_HIGH",
    "BLOCK_MEDIUM_AND_ABOVE",
    "BLOCK_LOW_AND_ABOVE",
}
LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}

DEFAULT_NARRATION_FRAMES = [
    "Analyzing your question...",
    "Searching for relevant information...",
    "Formulating a comprehensive response...",
    "Finalizing the answer...",
]


def _non_empty_string(value: Any, label: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{label} must be a string.")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{label} must not be empty.")
    return normalized


class AppConfig(BaseModel):
    """Application metadata."""

    title: str = "Gemini Chat"

    @field_validator("title", mode="before")
    @classmethod
    def _validate_title(cls, value: Any) -> str:
        return _non_empty_string(value, "title")


class ProviderConfig(BaseModel):
    """Completion provider endpoint and transport settings."""

    api_key: str = ""
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout: int = Field(default=120, ge=1, le=3600)
    max_output_tokens: int = Field(default=2048, ge=1, le=8192)
    streaming: bool = False
    safety_threshold: str = "BLOCK_ONLY_HIGH"

    @field_validator("api_key", mode="before")
    @classmethod
    def _normalize_api_key(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("api_key must be a string.")
        return value.strip()

    @field_validator("base_url", mode="before")
    @classmethod
    def _validate_base_url(cls, value: Any) -> str:
        normalized = _non_empty_string(value, "base_url").rstrip("/")
        parsed = urlparse(normalized)
        hostname = (parsed.hostname or "").lower()
        if not hostname:
            raise ValueError("base_url must include a hostname.")
        if parsed.scheme == "http" and hostname not in LOCAL_HOSTS:
            raise ValueError("base_url must use https for non-local hosts.")
        if parsed.scheme not in {"http", "https"}:
            raise ValueError("base_url must use http or https scheme.")
        return normalized

    @field_validator("safety_threshold", mode="before")
    @classmethod
    def _validate_threshold(cls, value: Any) -> str:
        normalized = _non_empty_string(value, "safety_threshold").upper()
        if normalized not in VALID_SAFETY_THRESHOLDS:
            raise ValueError(f"Unsupported safety threshold {normalized!r}.")
        return normalized


class ConversationDefaults(BaseModel):
    """Configuration applied to newly created conversations."""

    model: str = DEFAULT_MODEL.value
    temperature: float | None = Field(default=None, ge=0.0, le=1.0)
    system_prompt: str = ""
    default_mode: str = "none"

    @field_validator("model", mode="before")
    @classmethod
    def _validate_model(cls, value: Any) -> str:
        normalized = _non_empty_string(value, "model")
        if normalized.lower() not in {model.value for model in ModelId}:
            raise ValueError(f"Unknown model {normalized!r}.")
        return normalized.lower()

    @field_validator("system_prompt", mode="before")
    @classmethod
    def _normalize_prompt(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("system_prompt must be a string.")
        return value.strip()

    @field_validator("default_mode", mode="before")
    @classmethod
    def _validate_mode(cls, value: Any) -> str:
        normalized = _non_empty_string(value, "default_mode").lower()
        allowed = {"none"} | {feature.value for feature in Feature}
        if normalized not in allowed:
            raise ValueError(f"default_mode must be one of {sorted(allowed)}.")
        return normalized

    @property
    def model_id(self) -> ModelId:
        return resolve_model(self.model)

    @property
    def mode(self) -> Feature | None:
        return None if self.default_mode == "none" else Feature(self.default_mode)


class TurnConfig(BaseModel):
    """Timing of the cosmetic thinking narration and side-panel notification."""

    narration_interval_seconds: float = Field(default=1.0, gt=0.0, le=60.0)
    side_panel_delay_seconds: float = Field(default=0.5, ge=0.0, le=10.0)
    narration_frames: list[str] = Field(
        default_factory=lambda: list(DEFAULT_NARRATION_FRAMES)
    )

    @field_validator("narration_frames", mode="before")
    @classmethod
    def _validate_frames(cls, value: Any) -> list[str]:
        if value is None:
            return list(DEFAULT_NARRATION_FRAMES)
        if not isinstance(value, list):
            raise ValueError("narration_frames must be a list of strings.")
        frames = [item.strip() for item in value if isinstance(item, str) and item.strip()]
        return frames or list(DEFAULT_NARRATION_FRAMES)


class LoggingConfig(BaseModel):
    """Logging behavior and output destinations."""

    level: str = "INFO"
    structured: bool = True
    log_to_file: bool = False
    log_file_path: str = str(STATE_DIR / "app.log")

    @field_validator("level", mode="before")
    @classmethod
    def _validate_level(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("Logging level must be a string.")
        normalized = value.strip().upper()
        if normalized not in VALID_LOG_LEVELS:
            raise ValueError(f"Unsupported log level {normalized!r}.")
        return normalized

    @field_validator("log_file_path", mode="before")
    @classmethod
    def _validate_log_file_path(cls, value: Any) -> str:
        return _non_empty_string(value, "log_file_path")


class PersistenceConfig(BaseModel):
    """Conversation persistence settings."""

    enabled: bool = True
    directory: str = str(STATE_DIR / "conversations")

    @field_validator("directory", mode="before")
    @classmethod
    def _validate_directory(cls, value: Any) -> str:
        return _non_empty_string(value, "directory")


class Config(BaseModel):
    """Root configuration model for all sections."""

    model_config = ConfigDict(populate_by_name=True)
    app: AppConfig = AppConfig()
    provider: ProviderConfig = ProviderConfig()
    conversation: ConversationDefaults = ConversationDefaults()
    turn: TurnConfig = TurnConfig()
    logging: LoggingConfig = LoggingConfig()
    persistence: PersistenceConfig = PersistenceConfig()

    @model_validator(mode="after")
    def _apply_env_api_key(self) -> Config:
        if not self.provider.api_key:
            self.provider.api_key = os.environ.get(API_KEY_ENV, "").strip()
        return self


def _build_default_config() -> dict[str, dict[str, Any]]:
    """Build default config data without the environment API key baked in."""
    data = Config().model_dump()
    data["provider"]["api_key"] = ""
    return data


DEFAULT_CONFIG: dict[str, dict[str, Any]] = _build_default_config()


def ensure_config_dir(config_dir: Path | None = None) -> Path:
    """Ensure that the config directory exists and return its path."""
    directory = config_dir or CONFIG_DIR
    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create config directory %s: %s", directory, exc)
    return directory


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override values onto base values."""
    merged: dict[str, Any] = deepcopy(base)
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _enforce_private_permissions(path: Path) -> None:
    """Best-effort private permissions; the file may hold an API key."""
    if os.name != "posix" or not path.exists():
        return
    try:
        path.chmod(0o600)
    except OSError as exc:
        LOGGER.warning("Unable to enforce 0600 permissions for %s: %s", path, exc)


def _validate_config(raw: dict[str, Any]) -> Config:
    """Validate merged config and fall back to safe defaults when possible."""
    try:
        return Config.model_validate(raw)
    except ValidationError as exc:
        LOGGER.warning(
            "config.invalid",
            extra={"event": "config.invalid", "error": str(exc)},
        )
        return Config()
    except Exception as exc:  # noqa: BLE001 - unexpected model construction failure.
        raise ConfigValidationError(f"Unable to validate configuration: {exc}") from exc


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from TOML, merge with defaults, and validate.

    The optional ``config_path`` argument is intended for tests and tooling.
    """
    target_path = config_path or CONFIG_PATH
    ensure_config_dir(target_path.parent)

    raw_data: dict[str, Any] = {}
    if target_path.exists():
        _enforce_private_permissions(target_path)
        try:
            raw_data = tomllib.loads(target_path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            LOGGER.warning(
                "config.parse_failed",
                extra={
                    "event": "config.parse_failed",
                    "path": str(target_path),
                    "error": str(exc),
                },
            )
            raw_data = {}

    merged = _deep_merge(DEFAULT_CONFIG, raw_data)
    return _validate_config(merged)
