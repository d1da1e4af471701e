"""Previous-version backups taken before a note is overwritten remotely."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from notesync.services.datetime_service import now_millis
from notesync.storage.remote import RemoteStoreError

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from notesync.storage.layout import RemoteLayout
    from notesync.storage.remote import RemoteObjectStore

logger = logging.getLogger(__name__)

DEFAULT_KEEP = 10


class BackupService:
    """Best-effort backups of a note's previous remote content.

    The remote copy goes to ``/snapshots`` and may fail; the local copy under
    ``sync-backups/`` is always attempted. Nothing here raises: a failed
    backup never blocks the write it precedes.
    """

    def __init__(
        self,
        store: RemoteObjectStore,
        layout: RemoteLayout,
        backup_dir: Path,
        *,
        keep: int = DEFAULT_KEEP,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self.store = store
        self.layout = layout
        self.backup_dir = backup_dir
        self.keep = keep
        self._clock = clock

    async def backup_previous_version(self, note_id: str, local_content: str | None) -> None:
        """Back up the current remote content of *note_id*.

        When the remote note does not exist (or cannot be read), the local
        content is backed up instead.
        """
        timestamp = self._clock()
        try:
            previous = await self.store.get(self.layout.note_path(note_id))
        except RemoteStoreError as exc:
            logger.warning("Could not read remote version of %s for backup: %s", note_id, exc)
            previous = None

        if previous is None:
            if local_content:
                self.backup_local(note_id, local_content.encode("utf-8"), timestamp)
            return

        try:
            await self.store.put(self.layout.backup_path(note_id, timestamp), previous)
        except RemoteStoreError as exc:
            logger.warning("Remote backup of %s failed, keeping local copy only: %s", note_id, exc)
        self.backup_local(note_id, previous, timestamp)

    def backup_local(self, note_id: str, content: bytes, timestamp: int) -> Path | None:
        path = self.backup_dir / f"note-{note_id}-{timestamp}.bak"
        try:
            self.backup_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)
        except OSError as exc:
            logger.error("Local backup of %s failed: %s", note_id, exc)
            return None
        self.prune(note_id)
        return path

    def list_backups(self, note_id: str) -> list[Path]:
        """Local backups of *note_id*, newest first."""
        if not self.backup_dir.is_dir():
            return []
        pattern = re.compile(rf"^note-{re.escape(note_id)}-(\d+)\.bak$")
        found: list[tuple[int, Path]] = []
        for path in self.backup_dir.iterdir():
            match = pattern.match(path.name)
            if match:
                found.append((int(match.group(1)), path))
        found.sort(key=lambda item: item[0], reverse=True)
        return [path for _, path in found]

    def prune(self, note_id: str) -> None:
        for stale in self.list_backups(note_id)[self.keep :]:
            try:
                stale.unlink()
            except OSError as exc:
                logger.warning("Failed to remove old backup %s: %s", stale, exc)
