"""SQLAlchemy ORM models for NoteSync."""

from notesync.models.base import Base
from notesync.models.note import Note

__all__ = [
    "Base",
    "Note",
]
