"""On-disk conversation store: one JSON snapshot per conversation."""

from __future__ import annotations

from datetime import UTC, datetime
import json
import logging
import os
from pathlib import Path
import re
from typing import TYPE_CHECKING, Any, Protocol

from .exceptions import GeminiChatError

if TYPE_CHECKING:
    from .session import SessionState

LOGGER = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class PersistenceError(GeminiChatError):
    """Raised when persistence operations fail."""


class PersistenceDisabledError(PersistenceError):
    """Raised when persistence is disabled in configuration."""


class PersistenceFormatError(PersistenceError):
    """Raised when a persisted payload cannot be decoded safely."""


class ConversationStore(Protocol):
    """Storage collaborator for session snapshots."""

    def save_session(self, session: SessionState) -> Path | None: ...

    def load_session(self, conversation_id: str) -> SessionState | None: ...

    def list_conversations(self) -> list[dict[str, str]]: ...

    def delete_session(self, conversation_id: str) -> bool: ...


class ConversationPersistence:
    """Persist sessions as ``<id>.json`` files plus an ``index.json`` summary."""

    def __init__(self, enabled: bool, directory: str) -> None:
        self.enabled = enabled
        self.directory = Path(directory).expanduser()
        self.metadata_path = self.directory / "index.json"

    def _enforce_permissions(self, path: Path, mode: int = 0o600) -> None:
        """Set POSIX permissions on a file or directory; failures are logged."""
        if os.name != "posix":
            return
        try:
            path.chmod(mode)
        except OSError as exc:
            LOGGER.warning(
                "Unable to enforce %o permissions for %s: %s", mode, path, exc
            )

    def _require_enabled(self) -> None:
        if not self.enabled:
            raise PersistenceDisabledError("Persistence is disabled in configuration.")

    def _ensure_paths(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._enforce_permissions(self.directory, 0o700)
        if not self.metadata_path.exists():
            self.metadata_path.write_text("[]", encoding="utf-8")
        self._enforce_permissions(self.metadata_path)

    def _snapshot_path(self, conversation_id: str) -> Path:
        if not _SAFE_ID.match(conversation_id):
            raise PersistenceFormatError(
                f"Conversation id {conversation_id!r} is not a safe file name."
            )
        return self.directory / f"{conversation_id}.json"

    def _read_index(self) -> list[dict[str, str]]:
        self._ensure_paths()
        try:
            payload = json.loads(self.metadata_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            LOGGER.warning(
                "persistence.index.unreadable",
                extra={"event": "persistence.index.unreadable", "error": str(exc)},
            )
            return []
        rows: list[dict[str, str]] = []
        if isinstance(payload, list):
            for item in payload:
                if not isinstance(item, dict):
                    continue
                conversation_id = item.get("id")
                updated_at = item.get("updated_at")
                if isinstance(conversation_id, str) and isinstance(updated_at, str):
                    rows.append(
                        {
                            "id": conversation_id,
                            "title": str(item.get("title", "")),
                            "updated_at": updated_at,
                        }
                    )
        return rows

    def _write_index(self, rows: list[dict[str, str]]) -> None:
        self.metadata_path.write_text(
            json.dumps(rows, ensure_ascii=False, indent=2, sort_keys=True),
            encoding="utf-8",
        )
        self._enforce_permissions(self.metadata_path)

    def list_conversations(self) -> list[dict[str, str]]:
        """List known conversations, most recently updated first."""
        if not self.enabled:
            return []
        rows = self._read_index()
        return sorted(rows, key=lambda item: item["updated_at"], reverse=True)

    def save_session(self, session: SessionState) -> Path:
        """Write the full session snapshot and refresh its index row."""
        self._require_enabled()
        self._ensure_paths()
        target = self._snapshot_path(session.conversation_id)
        payload = session.to_dict()
        tmp = target.with_suffix(".json.tmp")
        tmp.write_text(
            json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True),
            encoding="utf-8",
        )
        self._enforce_permissions(tmp)
        tmp.replace(target)

        rows = [row for row in self._read_index() if row["id"] != session.conversation_id]
        rows.append(
            {
                "id": session.conversation_id,
                "title": session.title,
                "updated_at": payload["updated_at"],
            }
        )
        self._write_index(rows)
        return target

    def load_session(self, conversation_id: str) -> SessionState | None:
        """Load one conversation; returns None when no snapshot exists."""
        from .session import SessionState

        self._require_enabled()
        target = self._snapshot_path(conversation_id)
        if not target.exists():
            return None
        try:
            payload: Any = json.loads(target.read_text(encoding="utf-8"))
        except ValueError as exc:
            raise PersistenceFormatError(
                f"Conversation {conversation_id!r} is not valid JSON."
            ) from exc
        if not isinstance(payload, dict):
            raise PersistenceFormatError("Conversation payload is invalid.")
        return SessionState.from_dict(payload)

    def delete_session(self, conversation_id: str) -> bool:
        """Remove a snapshot and its index row; returns whether it existed."""
        self._require_enabled()
        target = self._snapshot_path(conversation_id)
        existed = target.exists()
        if existed:
            target.unlink()
        rows = self._read_index()
        remaining = [row for row in rows if row["id"] != conversation_id]
        if len(remaining) != len(rows):
            self._write_index(remaining)
        return existed

    def export_markdown(self, session: SessionState) -> Path:
        """Export the visible turns of a conversation to markdown."""
        self._require_enabled()
        self._ensure_paths()

        stamp = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
        target = self.directory / f"{stamp}-{session.conversation_id}-export.md"
        lines = [
            f"# {session.title} ({session.config.model.value})",
            "",
        ]
        for turn in session.turns:
            lines.append(f"## {turn.role.value.capitalize()}")
            lines.append("")
            lines.append(turn.content.strip())
            lines.append("")
        target.write_text("\n".join(lines).strip() + "\n", encoding="utf-8")
        self._enforce_permissions(target)
        return target
