"""Local note model."""

from __future__ import annotations

from sqlalchemy import BigInteger, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from notesync.models.base import Base


class Note(Base):
    """A locally stored note.

    ``sync_id`` is the stable cross-device identifier; ``id`` is only the local
    row key. Timestamps are epoch milliseconds. A row with ``deleted_at`` set is
    a tombstone and is never resurrected by a download.
    """

    __tablename__ = "notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sync_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    sync_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_modified_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    synced_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    deleted_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        Index("idx_notes_updated_at", "updated_at"),
        Index("idx_notes_deleted_at", "deleted_at"),
    )
