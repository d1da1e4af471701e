"""Remote object store protocol and transport-level errors."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


class RemoteStoreError(Exception):
    """A remote operation failed and must not be retried."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientRemoteError(RemoteStoreError):
    """A remote operation failed for a reason that may go away (timeout, reset, 5xx)."""


class RemoteNotFoundError(RemoteStoreError):
    """Raised by operations that require an existing source object (MOVE)."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Remote object not found: {path}", status_code=404)
        self.path = path


@runtime_checkable
class RemoteObjectStore(Protocol):
    """Whole-object storage with WebDAV semantics.

    There are no transactions and no conditional writes. Reads of missing
    objects return ``None`` rather than raising.
    """

    async def get(self, path: str) -> bytes | None:
        """Fetch an object, or ``None`` when it does not exist."""
        ...

    async def put(self, path: str, data: bytes) -> None:
        """Create or replace an object."""
        ...

    async def move(self, src: str, dst: str, *, overwrite: bool = True) -> None:
        """Rename ``src`` to ``dst``. Raises ``RemoteNotFoundError`` if ``src`` is missing."""
        ...

    async def delete(self, path: str) -> None:
        """Delete an object. Deleting a missing object succeeds."""
        ...

    async def mkdir(self, path: str) -> None:
        """Create a collection. Creating an existing collection succeeds."""
        ...

    async def list(self, path: str) -> list[str]:
        """Return child names of a collection, or ``[]`` when it does not exist."""
        ...

    async def close(self) -> None:
        """Release transport resources."""
        ...
