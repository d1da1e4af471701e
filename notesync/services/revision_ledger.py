"""Locally persisted revision ledger."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from notesync.exceptions import SchemaMismatchError
from notesync.filesystem.state_file import read_json, write_json_atomic
from notesync.schemas.documents import LedgerDocument, load_document
from notesync.services.datetime_service import now_millis

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

logger = logging.getLogger(__name__)


class RevisionLedger:
    """Per-note revision numbers plus the last changelog version seen.

    Callers persist after every mutation. A missing or unreadable file yields
    an empty ledger, which only causes redundant downloads on the next pass.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._revisions: dict[str, int] = {}
        self._last_seen_version = 0

    def get(self, note_id: str) -> int:
        return self._revisions.get(note_id, 0)

    def set(self, note_id: str, rev: int) -> None:
        self._revisions[note_id] = rev

    @property
    def last_seen_version(self) -> int:
        return self._last_seen_version

    def set_last_seen_version(self, version: int) -> None:
        self._last_seen_version = version

    def merge(self, revisions: Mapping[str, int]) -> None:
        """Raise revisions to at least *revisions*; never lowers or drops one.

        Appends number from the ledger, so a lowered revision would make
        peers skip this device's next changes to that note.
        """
        for note_id, rev in revisions.items():
            if rev > self._revisions.get(note_id, 0):
                self._revisions[note_id] = rev

    def snapshot(self) -> dict[str, int]:
        return dict(self._revisions)

    def load(self) -> None:
        """Load from disk; any failure leaves an empty ledger."""
        self._revisions = {}
        self._last_seen_version = 0
        data = read_json(self.path)
        if data is None:
            return
        try:
            document = load_document(LedgerDocument, data)
        except (ValueError, SchemaMismatchError) as exc:
            logger.warning("Ignoring unreadable revision ledger %s: %s", self.path, exc)
            return
        self._revisions = dict(document.revisions)
        self._last_seen_version = document.last_seen_version
        logger.debug(
            "Loaded revision ledger: %d notes, last seen version %d",
            len(self._revisions),
            self._last_seen_version,
        )

    def persist(self) -> None:
        document = LedgerDocument(
            revisions=self._revisions,
            last_seen_version=self._last_seen_version,
            updated_at=now_millis(),
        )
        write_json_atomic(self.path, document.to_dict())
