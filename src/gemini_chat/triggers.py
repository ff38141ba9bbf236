"""Detect side-panel triggers embedded in finalized response text."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re

CODE_BLOCK_PATTERN = re.compile(r"```(\w+)?[^\S\n]*\n(.*?)```", re.DOTALL)
URL_PATTERN = re.compile(r"https?://[^\s]+")
PREVIEW_PATTERN = re.compile(r"!preview[^\S\n]*\n?(.*?)(?:!end|```|\Z)", re.DOTALL)
PREVIEW_PHRASE = "i've created a preview"

DEFAULT_LANGUAGE = "plaintext"
URL_TITLE = "Web Preview"
PREVIEW_TITLE = "Generated Preview"


class TriggerKind(str, Enum):
    CODE = "code"
    URL = "url"
    PREVIEW = "preview"


@dataclass(frozen=True)
class SidePanelPayload:
    """What the side-panel presenter is asked to display."""

    title: str
    url: str | None = None
    content: str | None = None


@dataclass(frozen=True)
class TriggerResult:
    """Normalized "open side panel" intent derived from one response."""

    should_open: bool
    kind: TriggerKind | None = None
    content: str | None = None
    url: str | None = None
    title: str | None = None
    language: str | None = None

    def to_panel_payload(self) -> SidePanelPayload | None:
        if not self.should_open:
            return None
        return SidePanelPayload(
            title=self.title or "Preview", url=self.url, content=self.content
        )


NO_TRIGGER = TriggerResult(should_open=False)


def _has_preview_directive(text: str) -> bool:
    return "!preview" in text or "!show" in text or PREVIEW_PHRASE in text.lower()


def detect_triggers(text: str) -> TriggerResult:
    """Scan ``text`` and return the first matching trigger.

    Rules are checked in order (code block, bare URL, preview directive) and
    only the first match is honored.
    """
    if not text:
        return NO_TRIGGER

    code_match = CODE_BLOCK_PATTERN.search(text)
    if code_match:
        language = code_match.group(1) or DEFAULT_LANGUAGE
        return TriggerResult(
            should_open=True,
            kind=TriggerKind.CODE,
            content=code_match.group(2).strip(),
            language=language,
            title=f"{language} Code",
        )

    url_match = URL_PATTERN.search(text)
    if url_match:
        return TriggerResult(
            should_open=True,
            kind=TriggerKind.URL,
            url=url_match.group(0),
            title=URL_TITLE,
        )

    if _has_preview_directive(text):
        preview_match = PREVIEW_PATTERN.search(text)
        content = preview_match.group(1).strip() if preview_match else ""
        return TriggerResult(
            should_open=True,
            kind=TriggerKind.PREVIEW,
            content=content,
            title=PREVIEW_TITLE,
        )

    return NO_TRIGGER
