"""Retrying decorator around a remote object store."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

from notesync.storage.remote import TransientRemoteError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from notesync.storage.remote import RemoteObjectStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 10.0


def calculate_delay(attempt: int, backoff_seconds: float, max_delay_seconds: float) -> float:
    """Delay before retrying after the given 1-based failed attempt."""
    return min(backoff_seconds * attempt, max_delay_seconds)


class RetryingStore:
    """Retry transient failures of the wrapped store with capped linear backoff.

    Only ``TransientRemoteError`` is retried. Not-found results are values, and
    any other ``RemoteStoreError`` is raised on the first attempt.
    """

    def __init__(
        self,
        inner: RemoteObjectStore,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        max_delay_seconds: float = DEFAULT_MAX_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)
        self.inner = inner
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.max_delay_seconds = max_delay_seconds
        self._sleep = sleep

    async def _call(self, label: str, operation: Callable[[], Awaitable[T]]) -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except TransientRemoteError as exc:
                if attempt >= self.max_attempts:
                    logger.error("%s failed after %d attempts: %s", label, attempt, exc)
                    raise
                delay = calculate_delay(attempt, self.backoff_seconds, self.max_delay_seconds)
                logger.warning(
                    "%s retry %d/%d in %.1fs: %s",
                    label,
                    attempt,
                    self.max_attempts - 1,
                    delay,
                    exc,
                )
                await self._sleep(delay)
                attempt += 1

    async def get(self, path: str) -> bytes | None:
        return await self._call(f"GET {path}", lambda: self.inner.get(path))

    async def put(self, path: str, data: bytes) -> None:
        await self._call(f"PUT {path}", lambda: self.inner.put(path, data))

    async def move(self, src: str, dst: str, *, overwrite: bool = True) -> None:
        await self._call(
            f"MOVE {src}",
            lambda: self.inner.move(src, dst, overwrite=overwrite),
        )

    async def delete(self, path: str) -> None:
        await self._call(f"DELETE {path}", lambda: self.inner.delete(path))

    async def mkdir(self, path: str) -> None:
        await self._call(f"MKCOL {path}", lambda: self.inner.mkdir(path))

    async def list(self, path: str) -> list[str]:
        return await self._call(f"PROPFIND {path}", lambda: self.inner.list(path))

    async def close(self) -> None:
        await self.inner.close()
