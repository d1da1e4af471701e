"""Local store adapter: notes table rows exposed as sync objects."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from notesync.filesystem.frontmatter import extract_title
from notesync.models.note import Note
from notesync.services.datetime_service import now_millis
from notesync.services.hash_service import hash_content

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@dataclass
class SyncObject:
    """One synchronizable note as seen by the sync engine."""

    id: str
    content: str
    title: str
    created_at: int
    updated_at: int
    synced_at: int | None = None
    sync_hash: str | None = None
    last_modified_by: str | None = None

    @property
    def content_hash(self) -> str:
        """SHA-256 of the current content, recomputed on every access."""
        return hash_content(self.content)

    @property
    def last_modified_at(self) -> int:
        return self.updated_at

    @property
    def has_unsynced_changes(self) -> bool:
        return self.updated_at > (self.synced_at or 0)


def _to_object(row: Note) -> SyncObject:
    assert row.sync_id is not None
    return SyncObject(
        id=row.sync_id,
        content=row.content,
        title=row.title,
        created_at=row.created_at,
        updated_at=row.updated_at,
        synced_at=row.synced_at,
        sync_hash=row.sync_hash,
        last_modified_by=row.last_modified_by,
    )


class NoteStore:
    """Reads and writes note rows keyed by their stable sync id.

    Every mutation runs in its own transaction and replaces whole rows.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    @staticmethod
    async def _get_row(session: AsyncSession, note_id: str) -> Note | None:
        stmt = select(Note).where(Note.sync_id == note_id)
        return (await session.execute(stmt)).scalar_one_or_none()

    async def get_by_id(self, note_id: str) -> SyncObject | None:
        """Return the live note with *note_id*, or None if absent or deleted."""
        async with self._session_factory() as session:
            row = await self._get_row(session, note_id)
            if row is None or row.deleted_at is not None:
                return None
            return _to_object(row)

    async def is_tombstoned(self, note_id: str) -> bool:
        async with self._session_factory() as session:
            row = await self._get_row(session, note_id)
            return row is not None and row.deleted_at is not None

    async def list_live(self) -> list[SyncObject]:
        async with self._session_factory() as session:
            stmt = (
                select(Note)
                .where(Note.deleted_at.is_(None), Note.sync_id.is_not(None))
                .order_by(Note.created_at)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [_to_object(row) for row in rows]

    async def count(self) -> int:
        async with self._session_factory() as session:
            stmt = select(func.count()).select_from(Note).where(Note.deleted_at.is_(None))
            return int((await session.execute(stmt)).scalar_one())

    async def upsert(self, obj: SyncObject) -> None:
        """Insert or fully replace the row for ``obj.id``; clears any tombstone."""
        async with self._session_factory() as session, session.begin():
            row = await self._get_row(session, obj.id)
            if row is None:
                row = Note(sync_id=obj.id)
                session.add(row)
            row.content = obj.content
            row.title = obj.title
            row.created_at = obj.created_at
            row.updated_at = obj.updated_at
            row.synced_at = obj.synced_at
            row.sync_hash = obj.sync_hash
            row.last_modified_by = obj.last_modified_by
            row.deleted_at = None

    async def save_local_edit(
        self,
        note_id: str,
        content: str,
        *,
        title: str | None = None,
        device_id: str | None = None,
    ) -> SyncObject:
        """Record a local edit; the note then has unsynced changes."""
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            row = await self._get_row(session, note_id)
            if row is None:
                row = Note(sync_id=note_id, created_at=now)
                session.add(row)
            row.content = content
            row.title = title if title is not None else extract_title(content)
            row.updated_at = max(now, (row.synced_at or 0) + 1)
            row.last_modified_by = device_id
            row.deleted_at = None
            return _to_object(row)

    async def apply_remote(
        self,
        note_id: str,
        content: str,
        *,
        remote_hash: str,
        modified_by: str | None = None,
        created_at: int | None = None,
    ) -> bool:
        """Replace the local note with downloaded content and mark it synced.

        *created_at* only applies when the note is new locally. Returns False
        without writing when the note is tombstoned locally.
        """
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            row = await self._get_row(session, note_id)
            if row is not None and row.deleted_at is not None:
                logger.info("Skipping download of locally deleted note %s", note_id)
                return False
            if row is None:
                row = Note(sync_id=note_id, created_at=created_at or now)
                session.add(row)
            row.content = content
            row.title = extract_title(content)
            row.updated_at = now
            row.synced_at = now
            row.sync_hash = remote_hash
            row.last_modified_by = modified_by
            return True

    async def mark_synced(self, note_id: str, content_hash: str) -> None:
        """Record *content_hash* as the last synced hash.

        Unsynced state is cleared only when the local content still has that
        hash; an edit made in the meantime stays pending.
        """
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            row = await self._get_row(session, note_id)
            if row is None:
                return
            row.sync_hash = content_hash
            if hash_content(row.content) == content_hash:
                row.synced_at = max(now, row.updated_at)

    async def get_local_hash(self, note_id: str) -> str | None:
        """The hash recorded at the last sync of *note_id*, if any."""
        async with self._session_factory() as session:
            row = await self._get_row(session, note_id)
            if row is None or row.deleted_at is not None:
                return None
            return row.sync_hash

    async def has_unsynced_changes(self, note_id: str) -> bool:
        obj = await self.get_by_id(note_id)
        return obj is not None and obj.has_unsynced_changes

    async def mark_deleted(self, note_id: str) -> bool:
        """Tombstone *note_id*. Returns False if no such note exists."""
        now = self._clock()
        async with self._session_factory() as session, session.begin():
            row = await self._get_row(session, note_id)
            if row is None:
                return False
            row.deleted_at = now
            row.updated_at = max(now, row.updated_at)
            return True

    async def ensure_sync_ids(self) -> int:
        """Assign a UUID sync id to every row lacking one. Returns the count."""
        async with self._session_factory() as session, session.begin():
            stmt = select(Note).where(Note.sync_id.is_(None))
            rows = (await session.execute(stmt)).scalars().all()
            for row in rows:
                row.sync_id = str(uuid.uuid4())
        if rows:
            logger.info("Assigned sync ids to %d notes", len(rows))
        return len(rows)
