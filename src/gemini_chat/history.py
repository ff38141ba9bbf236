"""Provider-format conversation history."""

from __future__ import annotations

from copy import deepcopy
from typing import Any

# Wire entry: {"role": "user" | "model", "parts": [{"text": "..."}]}
HistoryEntry = dict[str, Any]

USER_ROLE = "user"
MODEL_ROLE = "model"
_ROLE_ALIASES = {"user": USER_ROLE, "model": MODEL_ROLE, "assistant": MODEL_ROLE}


def make_entry(role: str, text: str) -> HistoryEntry:
    """Build a single provider wire entry, mapping ``assistant`` to ``model``."""
    normalized_role = _ROLE_ALIASES.get(role.strip().lower())
    if normalized_role is None:
        raise ValueError(f"Unsupported history role {role!r}.")
    return {"role": normalized_role, "parts": [{"text": text}]}


def entry_text(entry: HistoryEntry) -> str:
    """Concatenate the text parts of a wire entry."""
    parts = entry.get("parts")
    if not isinstance(parts, list):
        return ""
    return "".join(
        str(part.get("text", "")) for part in parts if isinstance(part, dict)
    )


class SessionHistory:
    """Ordered, append-only record of completed exchanges in provider format."""

    def __init__(self, entries: list[HistoryEntry] | None = None) -> None:
        self._entries: list[HistoryEntry] = []
        if entries:
            self.replace_entries(entries)

    @property
    def entries(self) -> list[HistoryEntry]:
        """Return a deep copy of all stored entries."""
        return deepcopy(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, role: str, text: str) -> None:
        """Append one entry to the end of the history."""
        self._entries.append(make_entry(role, text))

    def replace_entries(self, entries: list[HistoryEntry]) -> None:
        """Replace history from persisted data, dropping malformed rows."""
        normalized: list[HistoryEntry] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            role = str(entry.get("role", "")).strip().lower()
            if role not in _ROLE_ALIASES:
                continue
            normalized.append(make_entry(role, entry_text(entry)))
        self._entries = normalized

    @staticmethod
    def _estimate_tokens_for_parts(role: str, content: str) -> int:
        role_cost = 2 if role else 0
        return role_cost + len(content) // 4 + len(content.split()) + 2

    def estimated_tokens(self) -> int:
        """Estimate token count deterministically from entry text."""
        total = sum(
            self._estimate_tokens_for_parts(entry["role"], entry_text(entry))
            for entry in self._entries
        )
        return max(total, 1)

