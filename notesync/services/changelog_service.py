"""Remote append-only changelog with a capped trailing window."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from notesync.schemas.documents import MAX_DELTA, Changelog, ChangelogEntry, load_document
from notesync.services.datetime_service import now_millis

if TYPE_CHECKING:
    from collections.abc import Callable

    from notesync.services.revision_ledger import RevisionLedger
    from notesync.storage.layout import RemoteLayout
    from notesync.storage.remote import RemoteObjectStore

logger = logging.getLogger(__name__)


class ChangelogService:
    """Reads and appends to ``/index/notes-changelog.json``.

    Appending is read-modify-write without a version check: two devices
    appending at the same time can lose one entry. A lost entry only delays
    discovery of that change until the next bundle-based reconciliation.
    """

    def __init__(
        self,
        store: RemoteObjectStore,
        layout: RemoteLayout,
        ledger: RevisionLedger,
        *,
        max_delta: int = MAX_DELTA,
        on_append: Callable[[ChangelogEntry], None] | None = None,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self.store = store
        self.layout = layout
        self.ledger = ledger
        self.max_delta = max_delta
        self.on_append = on_append
        self._clock = clock
        self._lock = asyncio.Lock()

    async def read(self) -> Changelog | None:
        """Fetch the changelog, or None when there is no history yet."""
        raw = await self.store.get(self.layout.changelog_path)
        if raw is None:
            return None
        try:
            return load_document(Changelog, raw)
        except ValueError as exc:
            logger.warning("Remote changelog is malformed, treating as absent: %s", exc)
            return None

    async def append(self, note_id: str, content_hash: str) -> int:
        """Append a change for *note_id* and return its new revision.

        Appends from this process are serialized; appends from other devices
        are not visible to the lock.
        """
        async with self._lock:
            await self.store.mkdir(self.layout.index_dir)
            current = await self.read() or Changelog()
            new_rev = self.ledger.get(note_id) + 1
            entry = ChangelogEntry(
                note_id=note_id, rev=new_rev, hash=content_hash, ts=self._clock()
            )
            updated = current.appended(entry, self.max_delta)
            await self.store.put(self.layout.changelog_path, updated.to_json_bytes())

            self.ledger.set(note_id, new_rev)
            self.ledger.persist()
        logger.info(
            "Changelog append: note %s rev %d, version %d", note_id, new_rev, updated.version
        )
        if self.on_append is not None:
            self.on_append(entry)
        return new_rev
