"""Sync events and a small in-process event bus."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar

from notesync.services.datetime_service import now_millis

if TYPE_CHECKING:
    from collections.abc import Callable

    from notesync.services.sync_service import ConflictRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncEvent:
    """Base class for events published by the orchestrator."""

    name: ClassVar[str] = "sync:event"

    timestamp: int = field(default_factory=now_millis, kw_only=True)


@dataclass(frozen=True)
class NoteUploaded(SyncEvent):
    """A note's content and meta were published remotely."""

    name: ClassVar[str] = "note:uploaded"

    note_id: str
    hash: str


@dataclass(frozen=True)
class ConflictDetected(SyncEvent):
    """Local and remote versions of a note diverged."""

    name: ClassVar[str] = "conflict:detected"

    conflict: ConflictRecord


class EventBus:
    """Publish/subscribe by event type, with a bounded history.

    A handler that raises is logged and does not stop delivery to the others.
    """

    def __init__(self, history_limit: int = 100) -> None:
        self._handlers: dict[type[SyncEvent], list[Callable[[SyncEvent], None]]] = {}
        self._history: list[SyncEvent] = []
        self._history_limit = history_limit

    def subscribe(
        self, event_type: type[SyncEvent], handler: Callable[[SyncEvent], None]
    ) -> None:
        """Subscribe *handler* to *event_type*; ``SyncEvent`` receives everything."""
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(
        self, event_type: type[SyncEvent], handler: Callable[[SyncEvent], None]
    ) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: SyncEvent) -> None:
        self._history.append(event)
        del self._history[: -self._history_limit]

        handlers = [*self._handlers.get(type(event), [])]
        if type(event) is not SyncEvent:
            handlers.extend(self._handlers.get(SyncEvent, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Handler for %s failed", event.name)

    def get_history(self) -> list[SyncEvent]:
        return self._history.copy()

    def clear_history(self) -> None:
        self._history.clear()
