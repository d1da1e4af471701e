"""Tests for previous-version backups."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from notesync.services.backup_service import BackupService

if TYPE_CHECKING:
    from pathlib import Path

    from notesync.storage.layout import RemoteLayout
    from tests.conftest import InMemoryStore


class Counter:
    def __init__(self) -> None:
        self.value = 100

    def __call__(self) -> int:
        self.value += 1
        return self.value


@pytest.fixture
def backups(remote: InMemoryStore, layout: RemoteLayout, tmp_path: Path) -> BackupService:
    return BackupService(remote, layout, tmp_path / "sync-backups", keep=3, clock=Counter())


class TestBackupPreviousVersion:
    async def test_backs_up_remote_content(
        self, backups: BackupService, remote: InMemoryStore, layout: RemoteLayout
    ) -> None:
        remote.objects[layout.note_path("n1")] = b"remote v1"
        await backups.backup_previous_version("n1", "local")

        assert remote.objects[layout.backup_path("n1", 101)] == b"remote v1"
        [local_copy] = backups.list_backups("n1")
        assert local_copy.read_bytes() == b"remote v1"

    async def test_falls_back_to_local_content(
        self, backups: BackupService, remote: InMemoryStore
    ) -> None:
        await backups.backup_previous_version("n1", "local only")
        [local_copy] = backups.list_backups("n1")
        assert local_copy.read_text() == "local only"
        assert remote.ops("put") == []

    async def test_nothing_to_back_up(self, backups: BackupService) -> None:
        await backups.backup_previous_version("n1", None)
        assert backups.list_backups("n1") == []

    async def test_remote_failures_never_raise(
        self, backups: BackupService, remote: InMemoryStore, layout: RemoteLayout
    ) -> None:
        remote.objects[layout.note_path("n1")] = b"remote v1"
        remote.fail_on("put", "/snapshots/")
        await backups.backup_previous_version("n1", "local")
        assert len(backups.list_backups("n1")) == 1

        remote.fail_on("get", "note-n2.md")
        await backups.backup_previous_version("n2", "local n2")
        [local_copy] = backups.list_backups("n2")
        assert local_copy.read_text() == "local n2"


class TestLocalBackups:
    def test_newest_first_and_pruned(self, backups: BackupService) -> None:
        for ts in (5, 1, 9, 3, 7):
            backups.backup_local("n1", f"v{ts}".encode(), ts)
        names = [p.name for p in backups.list_backups("n1")]
        assert names == ["note-n1-9.bak", "note-n1-7.bak", "note-n1-5.bak"]

    def test_other_notes_not_listed(self, backups: BackupService) -> None:
        backups.backup_local("n1", b"a", 1)
        backups.backup_local("n10", b"b", 2)
        assert [p.name for p in backups.list_backups("n1")] == ["note-n1-1.bak"]

    def test_missing_dir_lists_nothing(self, backups: BackupService) -> None:
        assert backups.list_backups("n1") == []
