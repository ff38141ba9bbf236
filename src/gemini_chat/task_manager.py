"""Lifecycle tracking for the background tasks a turn spawns."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)


class TaskManager:
    """Own named background tasks (narration tickers, delayed notifications).

    Starting a task under a name that is already running cancels the old
    one first. Finished tasks remove themselves and have any exception
    logged so it is not silently lost.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    def start(self, name: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        """Schedule ``coro`` as a tracked task under ``name``."""
        previous = self._tasks.pop(name, None)
        if previous is not None and not previous.done():
            previous.cancel()
        task = asyncio.create_task(coro, name=name)
        self._tasks[name] = task
        task.add_done_callback(lambda done: self._on_done(name, done))
        return task

    def _on_done(self, name: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning(
                "task.exception",
                extra={
                    "event": "task.exception",
                    "task": name,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )

    async def cancel(self, name: str) -> None:
        """Cancel a named task and wait until it has unwound."""
        task = self._tasks.pop(name, None)
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def cancel_all(self) -> None:
        """Cancel every tracked task and wait for all of them."""
        for name in list(self._tasks):
            await self.cancel(name)

    async def await_all(self) -> None:
        """Wait for tracked tasks to finish without cancelling them."""
        for task in list(self._tasks.values()):
            if task.done():
                continue
            try:
                await task
            except asyncio.CancelledError:
                pass
