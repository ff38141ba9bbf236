"""Failure reporting sinks for turns that end in error."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
from typing import Protocol

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class FailureRecord:
    """Structured description of one failed turn."""

    conversation_id: str
    turn_id: str
    error_message: str
    error_type: str = "ProviderError"
    model: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class ObservabilitySink(Protocol):
    """Receives failure records; the engine never acts on the outcome."""

    def record_failure(self, record: FailureRecord) -> None: ...


class LoggingFailureSink:
    """Emit failure records through the application log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or LOGGER

    def record_failure(self, record: FailureRecord) -> None:
        self._logger.error(
            "turn.failed",
            extra={
                "event": "turn.failed",
                "conversation_id": record.conversation_id,
                "turn_id": record.turn_id,
                "error_type": record.error_type,
                "error": record.error_message,
                "model": record.model,
            },
        )


class MemoryFailureSink:
    """Keep failure records in memory (REPL ``/errors`` and tests)."""

    def __init__(self, limit: int = 100) -> None:
        self.limit = max(1, limit)
        self.records: list[FailureRecord] = []

    def record_failure(self, record: FailureRecord) -> None:
        self.records.append(record)
        if len(self.records) > self.limit:
            del self.records[: len(self.records) - self.limit]


class CompositeFailureSink:
    """Fan a record out to several sinks."""

    def __init__(self, *sinks: ObservabilitySink) -> None:
        self.sinks = list(sinks)

    def record_failure(self, record: FailureRecord) -> None:
        for sink in self.sinks:
            sink.record_failure(record)
