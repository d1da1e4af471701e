"""Schemas for every JSON document the sync engine reads or writes.

Remote documents (meta, changelog, bundle) and local state files (revision
ledger, snapshot policy) all carry ``schema_version``. A document written by a
newer schema is rejected with ``SchemaMismatchError`` instead of being trusted.
"""

from __future__ import annotations

import json
from typing import Any, ClassVar, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from notesync.exceptions import SchemaMismatchError

SCHEMA_VERSION = 1
MAX_DELTA = 200
MODIFICATION_THRESHOLD = 100
TIME_THRESHOLD_MS = 24 * 60 * 60 * 1000

DocT = TypeVar("DocT", bound="SyncDocument")


class SyncDocument(BaseModel):
    """Base for versioned JSON documents."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    CURRENT_SCHEMA: ClassVar[int] = SCHEMA_VERSION

    schema_version: int = SCHEMA_VERSION

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(by_alias=True, indent=2).encode("utf-8")

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def load_document(model: type[DocT], raw: bytes | str | dict[str, Any]) -> DocT:
    """Parse and validate a document.

    Raises ``SchemaMismatchError`` when the document declares a newer schema
    than *model* understands, and ``ValueError`` (including pydantic's
    ``ValidationError``) when it is malformed.
    """
    data = raw if isinstance(raw, dict) else json.loads(raw)
    if not isinstance(data, dict):
        msg = f"{model.__name__} document must be a JSON object"
        raise ValueError(msg)
    declared = data.get("schema_version", SCHEMA_VERSION)
    if isinstance(declared, int) and declared > model.CURRENT_SCHEMA:
        msg = (
            f"{model.__name__} uses schema version {declared}, "
            f"newest supported is {model.CURRENT_SCHEMA}"
        )
        raise SchemaMismatchError(msg)
    return model.model_validate(data)


class RemoteMeta(SyncDocument):
    """Side-car metadata published next to each note's content."""

    note_id: str
    hash: str
    last_modified_by: str
    last_modified_at: int


class ChangelogEntry(BaseModel):
    """One appended change: the note, its new revision and content hash."""

    note_id: str
    rev: int = Field(ge=1)
    hash: str
    ts: int


class Changelog(SyncDocument):
    """Capped trailing window of changes under a single version counter."""

    version: int = Field(default=0, ge=0)
    changes: list[ChangelogEntry] = Field(default_factory=list)

    def appended(self, entry: ChangelogEntry, max_delta: int = MAX_DELTA) -> Changelog:
        """Return a copy with *entry* appended, the version bumped and the window capped."""
        changes = [*self.changes, entry][-max_delta:]
        return Changelog(version=self.version + 1, changes=changes)

    def latest_by_note(self) -> dict[str, ChangelogEntry]:
        """Latest entry per note id within the window (highest rev wins)."""
        latest: dict[str, ChangelogEntry] = {}
        for entry in self.changes:
            current = latest.get(entry.note_id)
            if current is None or entry.rev >= current.rev:
                latest[entry.note_id] = entry
        return latest


class BundleNote(BaseModel):
    """Per-note entry of a snapshot bundle."""

    note_id: str
    hash: str
    rev: int = Field(default=1, ge=0)
    title: str = ""
    created_at: str | None = None
    updated_at: str | None = None


class Bundle(SyncDocument):
    """Full-state manifest of every live note."""

    version: int
    created_at: str
    device_id: str
    notes_count: int = 0
    notes: dict[str, BundleNote] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_version(cls, data: Any) -> Any:
        if isinstance(data, dict) and "version" not in data and "snapshot_version" in data:
            data = {**data, "version": data["snapshot_version"]}
        return data

    @model_validator(mode="before")
    @classmethod
    def _fill_note_ids(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("notes"), dict):
            notes = {}
            for note_id, entry in data["notes"].items():
                if isinstance(entry, dict) and "note_id" not in entry:
                    entry = {**entry, "note_id": note_id}
                notes[note_id] = entry
            data = {**data, "notes": notes}
        return data


class BundleMeta(BaseModel):
    """Summary of a published bundle."""

    version: int
    notes_count: int
    size_bytes: int


class LedgerDocument(SyncDocument):
    """On-disk form of the revision ledger."""

    revisions: dict[str, int] = Field(default_factory=dict)
    last_seen_version: int = Field(default=0, alias="lastSeenVersion")
    updated_at: int = Field(default=0, alias="updatedAt")


class SnapshotPolicyState(SyncDocument):
    """On-disk form of the snapshot policy counters."""

    modification_count: int = Field(default=0, ge=0, alias="modificationCount")
    last_snapshot_time: int = Field(default=0, ge=0, alias="lastSnapshotTime")
    modification_threshold: int = Field(
        default=MODIFICATION_THRESHOLD, ge=1, alias="MODIFICATION_THRESHOLD"
    )
    time_threshold: int = Field(default=TIME_THRESHOLD_MS, ge=1, alias="TIME_THRESHOLD")
