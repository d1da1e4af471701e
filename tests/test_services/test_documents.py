"""Tests for versioned sync document schemas."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from notesync.exceptions import SchemaMismatchError
from notesync.schemas.documents import (
    Bundle,
    Changelog,
    ChangelogEntry,
    LedgerDocument,
    RemoteMeta,
    SnapshotPolicyState,
    load_document,
)


def _entry(note_id: str, rev: int) -> ChangelogEntry:
    return ChangelogEntry(note_id=note_id, rev=rev, hash=f"h-{note_id}-{rev}", ts=rev)


class TestLoadDocument:
    def test_parses_bytes(self) -> None:
        raw = json.dumps(
            {
                "note_id": "n1",
                "hash": "abc",
                "last_modified_by": "device-a",
                "last_modified_at": 1,
            }
        ).encode()
        meta = load_document(RemoteMeta, raw)
        assert meta.hash == "abc"
        assert meta.schema_version == 1

    def test_newer_schema_rejected(self) -> None:
        raw = json.dumps({"schema_version": 2, "version": 1, "changes": []})
        with pytest.raises(SchemaMismatchError, match="schema version 2"):
            load_document(Changelog, raw)

    def test_missing_field_is_value_error(self) -> None:
        with pytest.raises(ValidationError):
            load_document(RemoteMeta, {"note_id": "n1"})

    def test_non_object_rejected(self) -> None:
        with pytest.raises(ValueError, match="JSON object"):
            load_document(Changelog, "[]")

    def test_invalid_json_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            load_document(Changelog, b"{broken")

    def test_unknown_fields_ignored(self) -> None:
        changelog = load_document(Changelog, {"version": 3, "changes": [], "extra": True})
        assert changelog.version == 3


class TestChangelog:
    def test_appended_bumps_version_by_one(self) -> None:
        changelog = Changelog().appended(_entry("a", 1))
        assert changelog.version == 1
        assert changelog.appended(_entry("b", 1)).version == 2

    def test_window_capped(self) -> None:
        changelog = Changelog()
        for i in range(1, 8):
            changelog = changelog.appended(_entry("a", i), max_delta=5)
        assert changelog.version == 7
        assert [e.rev for e in changelog.changes] == [3, 4, 5, 6, 7]

    def test_appended_does_not_mutate_original(self) -> None:
        original = Changelog()
        original.appended(_entry("a", 1))
        assert original.version == 0
        assert original.changes == []

    def test_latest_by_note_keeps_highest_rev(self) -> None:
        changelog = Changelog(
            version=3, changes=[_entry("a", 1), _entry("b", 1), _entry("a", 2)]
        )
        latest = changelog.latest_by_note()
        assert latest["a"].rev == 2
        assert latest["b"].rev == 1

    def test_rev_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            ChangelogEntry(note_id="a", rev=0, hash="h", ts=0)


class TestBundle:
    def test_legacy_snapshot_version_upgraded(self) -> None:
        bundle = load_document(
            Bundle,
            {
                "snapshot_version": 1700000000000,
                "created_at": "2023-11-14T22:13:20+00:00",
                "device_id": "device-a",
                "notes": {"n1": {"hash": "h1", "rev": 2}},
            },
        )
        assert bundle.version == 1700000000000
        assert bundle.notes["n1"].note_id == "n1"
        assert bundle.notes["n1"].rev == 2

    def test_serialized_form_round_trips(self) -> None:
        bundle = Bundle(
            version=5,
            created_at="2026-01-01T00:00:00+00:00",
            device_id="device-a",
            notes_count=1,
            notes={"n1": {"note_id": "n1", "hash": "h1"}},  # type: ignore[dict-item]
        )
        parsed = load_document(Bundle, bundle.to_json_bytes())
        assert parsed == bundle


class TestLocalStateDocuments:
    def test_ledger_uses_camel_case_on_disk(self) -> None:
        doc = LedgerDocument(revisions={"a": 2}, last_seen_version=7, updated_at=1)
        data = doc.to_dict()
        assert data["lastSeenVersion"] == 7
        assert data["updatedAt"] == 1
        assert load_document(LedgerDocument, data).last_seen_version == 7

    def test_policy_aliases(self) -> None:
        policy = load_document(
            SnapshotPolicyState, {"modificationCount": 4, "lastSnapshotTime": 10}
        )
        assert policy.modification_count == 4
        assert policy.to_dict()["MODIFICATION_THRESHOLD"] == 100
