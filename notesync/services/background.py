"""Tracked best-effort background tasks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Coroutine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackgroundFailure:
    """A background task that raised."""

    label: str
    error: BaseException


class BackgroundTasks:
    """Runs coroutines whose failure must not fail the caller.

    Tasks are referenced until done. Failures are logged and kept in
    ``errors`` so they can be inspected instead of disappearing.
    """

    def __init__(self, max_errors: int = 50) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self._max_errors = max_errors
        self.errors: list[BackgroundFailure] = []

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, label: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=label)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_done(label, t))
        return task

    def _on_done(self, label: str, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.warning("Background task %s failed: %s", label, exc)
        self.errors.append(BackgroundFailure(label, exc))
        del self.errors[: -self._max_errors]

    async def drain(self) -> None:
        """Wait until every task spawned so far (and any they spawn) is done."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
