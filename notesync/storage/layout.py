"""Remote path layout under the application root."""

from __future__ import annotations

import re
from dataclasses import dataclass

_NOTE_FILE_RE = re.compile(r"^note-([A-Za-z0-9_-]+)\.md$")


@dataclass(frozen=True)
class RemoteLayout:
    """Deterministic remote paths for every synchronized document."""

    root: str = "/FlashNote"

    @property
    def notes_dir(self) -> str:
        return f"{self.root}/notes"

    @property
    def backups_dir(self) -> str:
        return f"{self.root}/snapshots"

    @property
    def index_dir(self) -> str:
        return f"{self.root}/index"

    @property
    def snapshot_dir(self) -> str:
        return f"{self.root}/snapshot"

    @property
    def changelog_path(self) -> str:
        return f"{self.index_dir}/notes-changelog.json"

    @property
    def bundle_path(self) -> str:
        return f"{self.snapshot_dir}/notes-snapshot.bundle"

    @property
    def bundle_tmp_path(self) -> str:
        return f"{self.bundle_path}.tmp"

    @property
    def folders(self) -> tuple[str, ...]:
        """Collections that must exist before any document is written."""
        return (self.root, self.notes_dir, self.backups_dir, self.index_dir, self.snapshot_dir)

    def note_path(self, note_id: str) -> str:
        return f"{self.notes_dir}/note-{note_id}.md"

    def note_tmp_path(self, note_id: str) -> str:
        return f"{self.notes_dir}/note-{note_id}.tmp"

    def meta_path(self, note_id: str) -> str:
        return f"{self.notes_dir}/note-{note_id}.meta.json"

    def backup_path(self, note_id: str, timestamp: int) -> str:
        return f"{self.backups_dir}/note-{note_id}-{timestamp}.bak"


def note_id_from_filename(filename: str) -> str | None:
    """Extract the note id from a ``note-{id}.md`` file name."""
    match = _NOTE_FILE_RE.match(filename)
    if match is None:
        return None
    return match.group(1)
