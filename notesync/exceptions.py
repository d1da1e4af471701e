"""Application-level exception types.

Convention:
- Absence of a remote object is never an exception; store reads return ``None``.
- Conflicts are states recorded by the orchestrator. Only ``write_note`` turns a
  conflict into an exception (``WriteRejectedError``) because it cannot proceed.
- ``SyncPassError`` is raised at the top of a pass only when every attempted item
  failed; partial success is reported through ``SyncReport`` counts instead.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from notesync.services.sync_service import ConflictRecord, SyncReport


class SyncError(Exception):
    """Base class for sync engine errors."""


class SyncInProgressError(SyncError):
    """Raised when a sync pass is requested while another one is in flight."""


class NoteNotFoundError(SyncError):
    """Raised when an operation needs a local note that does not exist."""

    def __init__(self, note_id: str) -> None:
        super().__init__(f"Note not found: {note_id}")
        self.note_id = note_id


class WriteRejectedError(SyncError):
    """Raised by ``write_note`` when the remote copy diverged from the local one."""

    def __init__(self, note_id: str, reason: str, conflict: ConflictRecord | None) -> None:
        super().__init__(f"Write forbidden for {note_id}: {reason}")
        self.note_id = note_id
        self.reason = reason
        self.conflict = conflict


class ConflictNotFoundError(SyncError):
    """Raised when resolving a conflict that is not recorded."""

    def __init__(self, note_id: str) -> None:
        super().__init__(f"No conflict found for note: {note_id}")
        self.note_id = note_id


class SchemaMismatchError(SyncError):
    """Raised when a persisted document uses a schema newer than this build understands."""


class SyncPassError(SyncError):
    """Raised when a sync pass attempted items and none of them succeeded."""

    def __init__(self, message: str, report: SyncReport) -> None:
        super().__init__(message)
        self.report = report
