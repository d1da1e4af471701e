"""Sync orchestrator: optimistic-concurrency writes, incremental sync, full restore."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from notesync.exceptions import (
    ConflictNotFoundError,
    NoteNotFoundError,
    SyncError,
    SyncInProgressError,
    SyncPassError,
    WriteRejectedError,
)
from notesync.filesystem.device_id import load_or_create_device_id
from notesync.schemas.documents import RemoteMeta, load_document
from notesync.services.background import BackgroundTasks
from notesync.services.backup_service import BackupService
from notesync.services.changelog_service import ChangelogService
from notesync.services.datetime_service import iso_to_millis, now_millis
from notesync.services.events import ConflictDetected, EventBus, NoteUploaded
from notesync.services.hash_service import hash_content
from notesync.services.note_store import NoteStore
from notesync.services.revision_ledger import RevisionLedger
from notesync.services.snapshot_service import SnapshotService
from notesync.storage.layout import RemoteLayout, note_id_from_filename
from notesync.storage.remote import RemoteNotFoundError, RemoteStoreError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from notesync.config import Settings
    from notesync.schemas.documents import Bundle, BundleMeta, BundleNote, ChangelogEntry
    from notesync.storage.remote import RemoteObjectStore

logger = logging.getLogger(__name__)

# Errors isolated to a single note during a pass.
_ITEM_ERRORS = (RemoteStoreError, SyncError, SQLAlchemyError, OSError, ValueError)


class SyncState(StrEnum):
    """Orchestrator state."""

    IDLE = "idle"
    CHECKING = "checking"
    UPLOADING = "uploading"
    DOWNLOADING = "downloading"
    CONFLICT = "conflict"
    ERROR = "error"


_IN_FLIGHT = frozenset({SyncState.CHECKING, SyncState.UPLOADING, SyncState.DOWNLOADING})


class ResolutionAction(StrEnum):
    """Ways to resolve a recorded conflict."""

    USE_REMOTE = "use_remote"
    KEEP_LOCAL_AS_COPY = "keep_local_as_copy"
    FORCE_UPLOAD = "force_upload"


class WriteReason(StrEnum):
    """Outcome of validating a write against the remote meta."""

    NEW_NOTE = "new_note"
    HASH_MATCH = "hash_match"
    FAST_FORWARD = "fast_forward"
    HASH_MISMATCH = "hash_mismatch"


class NoteAction(StrEnum):
    """What happened to one note during a sync step."""

    DOWNLOADED = "downloaded"
    RESTORED = "restored"
    UPLOADED = "uploaded"
    UPLOADED_NEW = "uploaded_new"
    UPLOADED_MODIFIED = "uploaded_modified"
    UP_TO_DATE = "up_to_date"
    MARKED_SYNCED = "marked_synced"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    SKIPPED_EMPTY = "skipped_empty"
    SKIPPED_DELETED = "skipped_deleted"
    REPAIRED_META = "repaired_meta"
    REPAIRED_AND_UPLOADED = "repaired_and_uploaded"
    CLEANED_UP = "cleaned_up"
    INTACT = "intact"
    DELETED_REMOTE = "deleted_remote"
    ALREADY_DELETED_REMOTE = "already_deleted_remote"
    FAILED = "failed"


# Outcomes that count as neither success nor failure in a report.
_NEUTRAL_ACTIONS = frozenset(
    {NoteAction.CONFLICT, NoteAction.SKIPPED_DELETED, NoteAction.SKIPPED_EMPTY}
)


@dataclass
class ConflictRecord:
    """Divergence between local and remote versions of one note."""

    note_id: str
    local_hash: str
    remote_hash: str
    remote_device: str | None
    remote_time: int | None
    detected_at: int = field(default_factory=now_millis)


@dataclass
class WriteValidation:
    can_write: bool
    reason: WriteReason
    local_hash: str
    remote_meta: RemoteMeta | None = None
    conflict: ConflictRecord | None = None


@dataclass
class WriteResult:
    note_id: str
    hash: str
    uploaded: bool
    reason: WriteReason


@dataclass
class NoteSyncResult:
    """Outcome of syncing one note."""

    note_id: str
    action: NoteAction
    hash: str | None = None
    error: str | None = None
    conflict: ConflictRecord | None = None
    copy_id: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.action not in _NEUTRAL_ACTIONS

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass
class SyncReport:
    """Per-note results of one sync pass."""

    mode: str
    results: list[NoteSyncResult] = field(default_factory=list)
    version: int | None = None

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.succeeded)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.failed)

    @property
    def conflicts(self) -> int:
        return sum(1 for r in self.results if r.action is NoteAction.CONFLICT)


@dataclass
class SyncStats:
    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    conflicts: int = 0
    last_sync_time: int | None = None
    last_error: str | None = None


@dataclass
class SyncStatus:
    """Snapshot of the orchestrator for status queries."""

    state: SyncState
    device_id: str
    conflict_count: int
    last_seen_version: int
    stats: SyncStats
    pending_background_tasks: int
    background_errors: int


@dataclass
class HealthReport:
    local_db_ok: bool = False
    note_count: int | None = None
    can_connect: bool = False
    folder_structure: bool = False
    error: str | None = None
    timestamp: int = field(default_factory=now_millis)

    @property
    def healthy(self) -> bool:
        return self.local_db_ok and self.can_connect and self.folder_structure


class SyncOrchestrator:
    """Drives synchronization of one local database against the remote store.

    Remote writes are single-writer-per-note with optimistic concurrency: a
    write is validated against the remote meta hash, published to a temp path
    and MOVEd into place. Divergence with unsynced local work is recorded as a
    ``ConflictRecord`` and left for the caller to resolve.

    At most one public operation runs at a time; starting another while the
    state is checking, uploading or downloading raises ``SyncInProgressError``.
    """

    def __init__(
        self,
        *,
        store: RemoteObjectStore,
        layout: RemoteLayout,
        notes: NoteStore,
        ledger: RevisionLedger,
        changelog: ChangelogService,
        snapshots: SnapshotService,
        backups: BackupService,
        device_id: str,
        events: EventBus | None = None,
        background: BackgroundTasks | None = None,
        restore_batch_size: int = 5,
        restore_batch_delay: float = 0.2,
        snapshot_delay: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self.store = store
        self.layout = layout
        self.notes = notes
        self.ledger = ledger
        self.changelog = changelog
        self.snapshots = snapshots
        self.backups = backups
        self.device_id = device_id
        self.events = events or EventBus()
        self.background = background or BackgroundTasks()
        self.restore_batch_size = restore_batch_size
        self.restore_batch_delay = restore_batch_delay
        self.snapshot_delay = snapshot_delay
        self._sleep = sleep
        self._clock = clock

        self.state = SyncState.IDLE
        self.conflicts: dict[str, ConflictRecord] = {}
        self.stats = SyncStats()
        self._folders_ready = False
        self._snapshot_check_pending = False

    # ------------------------------------------------------------------
    # Lifecycle and status
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load local sync state and make sure every note has a sync id."""
        self.ledger.load()
        self.snapshots.load_policy()
        await self.notes.ensure_sync_ids()
        logger.info(
            "Sync engine ready on %s (last seen changelog version %d)",
            self.device_id,
            self.ledger.last_seen_version,
        )

    async def close(self) -> None:
        await self.background.drain()
        await self.store.close()

    def is_idle(self) -> bool:
        return self.state == SyncState.IDLE

    def get_status(self) -> SyncStatus:
        return SyncStatus(
            state=self.state,
            device_id=self.device_id,
            conflict_count=len(self.conflicts),
            last_seen_version=self.ledger.last_seen_version,
            stats=self.stats,
            pending_background_tasks=self.background.pending,
            background_errors=len(self.background.errors),
        )

    def list_conflicts(self) -> list[ConflictRecord]:
        return list(self.conflicts.values())

    async def ensure_folder_structure(self) -> None:
        for folder in self.layout.folders:
            await self.store.mkdir(folder)
        self._folders_ready = True

    async def health_check(self) -> HealthReport:
        report = HealthReport()
        try:
            report.note_count = await self.notes.count()
            report.local_db_ok = True
        except SQLAlchemyError as exc:
            logger.error("Local database health check failed: %s", exc)
            report.error = str(exc)
        try:
            await self.store.list(self.layout.root)
            report.can_connect = True
            await self.ensure_folder_structure()
            report.folder_structure = True
        except RemoteStoreError as exc:
            logger.error("Remote health check failed: %s", exc)
            report.error = str(exc)
        return report

    @asynccontextmanager
    async def _pass(self, operation: str) -> AsyncIterator[None]:
        if self.state in _IN_FLIGHT:
            msg = f"Cannot start {operation}: sync already {self.state.value}"
            raise SyncInProgressError(msg)
        self.state = SyncState.CHECKING
        try:
            yield
        except WriteRejectedError:
            self._settle()
            raise
        except Exception as exc:
            self.state = SyncState.ERROR
            self.stats.last_error = str(exc)
            logger.error("%s failed: %s", operation, exc)
            raise
        else:
            self._settle()

    def _settle(self) -> None:
        self.state = SyncState.CONFLICT if self.conflicts else SyncState.IDLE

    def _finish_report(self, report: SyncReport) -> SyncReport:
        self.stats.total_syncs += report.total
        self.stats.successful_syncs += report.succeeded
        self.stats.failed_syncs += report.failed
        for result in report.results:
            if result.failed:
                self.stats.last_error = result.error
        logger.info(
            "%s finished: %d notes, %d succeeded, %d failed, %d conflicts",
            report.mode,
            report.total,
            report.succeeded,
            report.failed,
            report.conflicts,
        )
        if report.failed and not report.succeeded:
            msg = f"{report.mode} failed for all {report.failed} notes"
            raise SyncPassError(msg, report)
        self.stats.last_sync_time = self._clock()
        return report

    def _record_conflict(self, note_id: str, local_hash: str, meta: RemoteMeta) -> ConflictRecord:
        conflict = ConflictRecord(
            note_id=note_id,
            local_hash=local_hash,
            remote_hash=meta.hash,
            remote_device=meta.last_modified_by,
            remote_time=meta.last_modified_at,
        )
        self.conflicts[note_id] = conflict
        self.stats.conflicts += 1
        self.state = SyncState.CONFLICT
        logger.warning(
            "Conflict on note %s: local %s, remote %s from %s",
            note_id,
            local_hash[:12],
            meta.hash[:12],
            meta.last_modified_by,
        )
        self.events.publish(ConflictDetected(conflict=conflict))
        return conflict

    # ------------------------------------------------------------------
    # Remote primitives
    # ------------------------------------------------------------------

    async def _get_remote_meta(self, note_id: str) -> RemoteMeta | None:
        raw = await self.store.get(self.layout.meta_path(note_id))
        if raw is None:
            return None
        try:
            return load_document(RemoteMeta, raw)
        except ValueError as exc:
            logger.warning("Remote meta of %s is malformed, treating as missing: %s", note_id, exc)
            return None

    async def _fetch_remote(self, note_id: str) -> tuple[RemoteMeta | None, bytes | None]:
        meta, content = await asyncio.gather(
            self._get_remote_meta(note_id),
            self.store.get(self.layout.note_path(note_id)),
        )
        return meta, content

    async def _put_meta(self, note_id: str, content_hash: str) -> None:
        meta = RemoteMeta(
            note_id=note_id,
            hash=content_hash,
            last_modified_by=self.device_id,
            last_modified_at=self._clock(),
        )
        await self.store.put(self.layout.meta_path(note_id), meta.to_json_bytes())

    async def _publish(self, note_id: str, content: str) -> str:
        """Upload content through temp + MOVE, then its meta. Returns the hash."""
        if not self._folders_ready:
            await self.ensure_folder_structure()
        content_hash = hash_content(content)
        tmp_path = self.layout.note_tmp_path(note_id)
        await self.store.put(tmp_path, content.encode("utf-8"))
        await self.store.move(tmp_path, self.layout.note_path(note_id), overwrite=True)
        await self._put_meta(note_id, content_hash)
        await self.notes.mark_synced(note_id, content_hash)
        logger.info("Uploaded note %s (%s)", note_id, content_hash[:12])
        return content_hash

    async def _append_changelog(self, note_id: str, content_hash: str) -> None:
        """Append inside a pass; failure only delays discovery by peers."""
        try:
            await self.changelog.append(note_id, content_hash)
        except (RemoteStoreError, SyncError, OSError) as exc:
            logger.warning(
                "Changelog append for %s failed, content is published: %s", note_id, exc
            )

    def _on_changelog_append(self, entry: ChangelogEntry) -> None:
        self.snapshots.record_modification()
        if self._snapshot_check_pending:
            return
        self._snapshot_check_pending = True
        self.background.spawn("snapshot-policy", self._delayed_snapshot_check())

    async def _delayed_snapshot_check(self) -> None:
        try:
            await self._sleep(self.snapshot_delay)
            await self.snapshots.maybe_snapshot()
        finally:
            self._snapshot_check_pending = False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _validate(self, note_id: str, content: str) -> WriteValidation:
        local_hash = hash_content(content)
        meta = await self._get_remote_meta(note_id)
        if meta is None:
            return WriteValidation(True, WriteReason.NEW_NOTE, local_hash)
        if meta.hash == local_hash:
            return WriteValidation(True, WriteReason.HASH_MATCH, local_hash, meta)
        base_hash = await self.notes.get_local_hash(note_id)
        if base_hash is not None and meta.hash == base_hash:
            # remote unchanged since this device last synced the note
            return WriteValidation(True, WriteReason.FAST_FORWARD, local_hash, meta)
        conflict = self._record_conflict(note_id, local_hash, meta)
        return WriteValidation(False, WriteReason.HASH_MISMATCH, local_hash, meta, conflict)

    async def validate_before_write(self, note_id: str, content: str) -> WriteValidation:
        """Check whether *content* may be published over the remote note.

        Never takes a lock; divergence is detected after the fact and recorded
        as a conflict without touching local or remote state.
        """
        async with self._pass("validate"):
            return await self._validate(note_id, content)

    async def write_note(self, note_id: str, content: str) -> WriteResult:
        """Publish *content* as the new remote version of *note_id*.

        Raises ``WriteRejectedError`` when the remote version diverged. Writing
        content the remote already has is a no-op. The changelog append runs
        in the background; its failure is recorded in ``background.errors``
        and does not fail the write.
        """
        async with self._pass("write"):
            validation = await self._validate(note_id, content)
            if not validation.can_write:
                logger.warning("Write rejected for %s: %s", note_id, validation.reason)
                raise WriteRejectedError(note_id, validation.reason, validation.conflict)

            content_hash = validation.local_hash
            if validation.reason is WriteReason.HASH_MATCH:
                await self.notes.mark_synced(note_id, content_hash)
                logger.debug("Note %s already published, nothing to write", note_id)
                return WriteResult(note_id, content_hash, uploaded=False, reason=validation.reason)

            self.state = SyncState.UPLOADING
            self.stats.total_syncs += 1
            try:
                local = await self.notes.get_by_id(note_id)
                await self.backups.backup_previous_version(
                    note_id, local.content if local else None
                )
                await self._publish(note_id, content)
            except Exception:
                self.stats.failed_syncs += 1
                raise
            self.background.spawn(
                f"changelog-append:{note_id}", self.changelog.append(note_id, content_hash)
            )
            self.stats.successful_syncs += 1
            self.stats.last_sync_time = self._clock()
            self.events.publish(NoteUploaded(note_id=note_id, hash=content_hash))
            return WriteResult(note_id, content_hash, uploaded=True, reason=validation.reason)

    # ------------------------------------------------------------------
    # Single note reconciliation
    # ------------------------------------------------------------------

    async def _repair(
        self, note_id: str, meta: RemoteMeta | None, content: bytes | None
    ) -> NoteSyncResult:
        if meta is not None and content is None:
            logger.warning("Note %s has meta but no content, repairing", note_id)
            local = await self.notes.get_by_id(note_id)
            await self.store.delete(self.layout.meta_path(note_id))
            if local is not None and local.content:
                content_hash = await self._publish(note_id, local.content)
                return NoteSyncResult(note_id, NoteAction.REPAIRED_AND_UPLOADED, content_hash)
            logger.info("Removed orphaned meta of %s", note_id)
            return NoteSyncResult(
                note_id, NoteAction.CLEANED_UP, error="Corrupted note cleaned up"
            )

        if content is not None and meta is None:
            logger.warning("Note %s has content but no meta, regenerating meta", note_id)
            content_hash = hash_content(content)
            await self._put_meta(note_id, content_hash)
            local = await self.notes.get_by_id(note_id)
            if local is None or not local.has_unsynced_changes:
                await self.notes.apply_remote(
                    note_id, content.decode("utf-8"), remote_hash=content_hash
                )
            return NoteSyncResult(note_id, NoteAction.REPAIRED_META, content_hash)

        if meta is None:
            return NoteSyncResult(note_id, NoteAction.NOT_FOUND, error="Note not found remotely")
        return NoteSyncResult(note_id, NoteAction.INTACT, meta.hash)

    async def repair_note(self, note_id: str) -> NoteSyncResult:
        """Repair a half-published note; running it again changes nothing."""
        async with self._pass("repair"):
            meta, content = await self._fetch_remote(note_id)
            return await self._repair(note_id, meta, content)

    async def _apply_remote_note(self, note_id: str, rev: int | None = None) -> NoteSyncResult:
        """Bring the local copy of *note_id* up to the remote one (incremental step)."""
        meta, content = await self._fetch_remote(note_id)
        if meta is None or content is None:
            return await self._repair(note_id, meta, content)

        remote_hash = hash_content(content)
        if remote_hash != meta.hash:
            logger.warning("Meta hash of %s does not match its content", note_id)
        if await self.notes.is_tombstoned(note_id):
            return NoteSyncResult(note_id, NoteAction.SKIPPED_DELETED, remote_hash)

        local = await self.notes.get_by_id(note_id)
        if local is not None:
            local_hash = local.content_hash
            if local_hash == remote_hash:
                await self.notes.mark_synced(note_id, remote_hash)
                return NoteSyncResult(note_id, NoteAction.UP_TO_DATE, remote_hash)
            if local.has_unsynced_changes:
                if local.sync_hash == remote_hash:
                    # local is ahead of an unchanged remote
                    return NoteSyncResult(note_id, NoteAction.UP_TO_DATE, remote_hash)
                conflict = self._record_conflict(note_id, local_hash, meta)
                return NoteSyncResult(note_id, NoteAction.CONFLICT, conflict=conflict)

        self.state = SyncState.DOWNLOADING
        await self.notes.apply_remote(
            note_id,
            content.decode("utf-8"),
            remote_hash=remote_hash,
            modified_by=meta.last_modified_by,
        )
        logger.info("Downloaded note %s rev %s", note_id, rev if rev is not None else "-")
        return NoteSyncResult(note_id, NoteAction.DOWNLOADED, remote_hash)

    async def _sync_from_remote(self, note_id: str) -> NoteSyncResult:
        local = await self.notes.get_by_id(note_id)

        if local is None:
            if await self.notes.is_tombstoned(note_id):
                return NoteSyncResult(note_id, NoteAction.SKIPPED_DELETED)
            self.state = SyncState.DOWNLOADING
            meta, content = await self._fetch_remote(note_id)
            if meta is None or content is None:
                return await self._repair(note_id, meta, content)
            remote_hash = hash_content(content)
            await self.notes.apply_remote(
                note_id,
                content.decode("utf-8"),
                remote_hash=remote_hash,
                modified_by=meta.last_modified_by,
            )
            return NoteSyncResult(note_id, NoteAction.DOWNLOADED, remote_hash)

        meta = await self._get_remote_meta(note_id)
        if meta is None:
            if not local.content.strip():
                logger.info("Skipping empty note %s", note_id)
                return NoteSyncResult(note_id, NoteAction.SKIPPED_EMPTY)
            self.state = SyncState.UPLOADING
            content_hash = await self._publish(note_id, local.content)
            await self._append_changelog(note_id, content_hash)
            return NoteSyncResult(note_id, NoteAction.UPLOADED, content_hash)

        local_hash = local.content_hash
        if local_hash == meta.hash:
            await self.notes.mark_synced(note_id, local_hash)
            return NoteSyncResult(note_id, NoteAction.UP_TO_DATE, local_hash)

        if local.has_unsynced_changes:
            if local.sync_hash == meta.hash:
                self.state = SyncState.UPLOADING
                await self.backups.backup_previous_version(note_id, local.content)
                content_hash = await self._publish(note_id, local.content)
                await self._append_changelog(note_id, content_hash)
                return NoteSyncResult(note_id, NoteAction.UPLOADED, content_hash)
            conflict = self._record_conflict(note_id, local_hash, meta)
            return NoteSyncResult(note_id, NoteAction.CONFLICT, conflict=conflict)

        self.state = SyncState.DOWNLOADING
        content = await self.store.get(self.layout.note_path(note_id))
        if content is None:
            return await self._repair(note_id, meta, None)
        remote_hash = hash_content(content)
        await self.notes.apply_remote(
            note_id,
            content.decode("utf-8"),
            remote_hash=remote_hash,
            modified_by=meta.last_modified_by,
        )
        return NoteSyncResult(note_id, NoteAction.DOWNLOADED, remote_hash)

    async def sync_from_remote(self, note_id: str) -> NoteSyncResult:
        """Reconcile one note in whichever direction is safe.

        Local missing: download. Remote missing: upload. Same hash: nothing.
        Different hash: download when the local copy has no unsynced changes,
        upload when the remote is still at the hash this device last synced,
        otherwise record a conflict and change nothing.
        """
        async with self._pass("sync_from_remote"):
            return await self._sync_from_remote(note_id)

    async def sync_deleted_note(self, note_id: str) -> NoteSyncResult:
        """Delete the remote content and meta of a locally deleted note."""
        async with self._pass("sync_deleted_note"):
            self.conflicts.pop(note_id, None)
            meta, content = await self._fetch_remote(note_id)
            if meta is None and content is None:
                return NoteSyncResult(note_id, NoteAction.ALREADY_DELETED_REMOTE)
            await self.store.delete(self.layout.note_path(note_id))
            await self.store.delete(self.layout.meta_path(note_id))
            logger.info("Deleted remote copy of note %s", note_id)
            return NoteSyncResult(note_id, NoteAction.DELETED_REMOTE)

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def incremental_sync(self) -> SyncReport:
        """Replay changelog entries newer than the ledger, or fall back to a full restore."""
        async with self._pass("incremental_sync"):
            return self._finish_report(await self._incremental())

    async def _incremental(self) -> SyncReport:
        changelog = await self.changelog.read()
        if changelog is None:
            logger.warning("No remote changelog, running full restore")
            return await self._full_restore()
        delta = changelog.version - self.ledger.last_seen_version
        if delta > self.changelog.max_delta:
            logger.warning(
                "Changelog delta %d exceeds window of %d, running full restore",
                delta,
                self.changelog.max_delta,
            )
            return await self._full_restore()

        pending = [
            entry
            for entry in changelog.latest_by_note().values()
            if entry.rev > self.ledger.get(entry.note_id)
        ]
        logger.info("Incremental sync: %d changed notes (delta %d)", len(pending), delta)

        report = SyncReport(mode="incremental", version=changelog.version)
        for entry in pending:
            try:
                result = await self._apply_remote_note(entry.note_id, entry.rev)
            except _ITEM_ERRORS as exc:
                logger.error("Sync of note %s failed: %s", entry.note_id, exc)
                result = NoteSyncResult(entry.note_id, NoteAction.FAILED, error=str(exc))
            if result.failed:
                logger.warning(
                    "Note %s marked processed at rev %d despite failure: %s",
                    entry.note_id,
                    entry.rev,
                    result.error,
                )
            # advanced even on failure so a permanently missing note is not retried forever
            self.ledger.set(entry.note_id, entry.rev)
            self.ledger.persist()
            report.results.append(result)

        self.ledger.set_last_seen_version(changelog.version)
        self.ledger.persist()
        return report

    async def full_restore(self) -> SyncReport:
        """Reconcile every note against the published bundle."""
        async with self._pass("full_restore"):
            return self._finish_report(await self._full_restore())

    async def _full_restore(self) -> SyncReport:
        bundle = await self.snapshots.read_bundle()
        if bundle is None:
            logger.warning("No usable bundle, falling back to listing-based full sync")
            return await self._legacy_full_sync()

        changelog = await self.changelog.read()
        observed_version = changelog.version if changelog is not None else 0
        report = SyncReport(mode="full_restore", version=bundle.version)
        logger.info("Full restore from bundle %d (%d notes)", bundle.version, len(bundle.notes))

        to_download: list[BundleNote] = []
        for note_id, entry in bundle.notes.items():
            if await self.notes.is_tombstoned(note_id):
                report.results.append(NoteSyncResult(note_id, NoteAction.SKIPPED_DELETED))
                continue
            local = await self.notes.get_by_id(note_id)
            if local is not None and local.has_unsynced_changes:
                # left to the local scan below
                continue
            if await self.notes.get_local_hash(note_id) != entry.hash:
                to_download.append(entry)

        await self._download_batches(to_download, report)

        self.ledger.merge({note_id: entry.rev for note_id, entry in bundle.notes.items()})
        await self._upload_local_changes(bundle, report)

        self.ledger.set_last_seen_version(observed_version)
        self.ledger.persist()
        return report

    async def _download_batches(self, entries: list[BundleNote], report: SyncReport) -> None:
        size = self.restore_batch_size
        self.state = SyncState.DOWNLOADING
        for start in range(0, len(entries), size):
            batch = entries[start : start + size]
            fetched = await asyncio.gather(
                *(self.store.get(self.layout.note_path(entry.note_id)) for entry in batch),
                return_exceptions=True,
            )
            for entry, outcome in zip(batch, fetched, strict=True):
                note_id = entry.note_id
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, _ITEM_ERRORS):
                        raise outcome
                    logger.error("Restore of note %s failed: %s", note_id, outcome)
                    result = NoteSyncResult(note_id, NoteAction.FAILED, error=str(outcome))
                elif outcome is None:
                    result = NoteSyncResult(
                        note_id, NoteAction.FAILED, error="Remote content not found"
                    )
                else:
                    result = await self._restore_one(entry, outcome)
                report.results.append(result)
            if start + size < len(entries):
                await self._sleep(self.restore_batch_delay)

    async def _restore_one(self, entry: BundleNote, content: bytes) -> NoteSyncResult:
        note_id = entry.note_id
        content_hash = hash_content(content)
        try:
            await self.notes.apply_remote(
                note_id,
                content.decode("utf-8"),
                remote_hash=content_hash,
                created_at=iso_to_millis(entry.created_at) if entry.created_at else None,
            )
        except _ITEM_ERRORS as exc:
            logger.error("Saving restored note %s failed: %s", note_id, exc)
            return NoteSyncResult(note_id, NoteAction.FAILED, error=str(exc))
        return NoteSyncResult(note_id, NoteAction.RESTORED, content_hash)

    async def _upload_local_changes(self, bundle: Bundle, report: SyncReport) -> None:
        """Upload local notes the bundle lacks or holds at a different hash."""
        for local in await self.notes.list_live():
            entry = bundle.notes.get(local.id)
            local_hash = local.content_hash
            if entry is not None and entry.hash == local_hash:
                if local.sync_hash != local_hash:
                    await self.notes.mark_synced(local.id, local_hash)
                continue
            if entry is not None and not local.has_unsynced_changes:
                # stale copies were handled by the download phase
                continue
            try:
                result = await self._reconcile_against_bundle(
                    local.id, local_hash, entry.hash if entry else None
                )
            except _ITEM_ERRORS as exc:
                logger.error("Upload of note %s failed: %s", local.id, exc)
                result = NoteSyncResult(local.id, NoteAction.FAILED, error=str(exc))
            report.results.append(result)

    async def _reconcile_against_bundle(
        self, note_id: str, local_hash: str, bundle_hash: str | None
    ) -> NoteSyncResult:
        meta = await self._get_remote_meta(note_id)
        if meta is not None and meta.hash == local_hash:
            await self.notes.mark_synced(note_id, local_hash)
            return NoteSyncResult(note_id, NoteAction.MARKED_SYNCED, local_hash)
        local = await self.notes.get_by_id(note_id)
        if local is None:
            return NoteSyncResult(note_id, NoteAction.NOT_FOUND, error="Local note vanished")
        if meta is not None and (meta.hash != bundle_hash or local.sync_hash != meta.hash):
            # remote moved on, or the local edit is based on an older version
            self.state = SyncState.CHECKING
            return await self._sync_from_remote(note_id)

        self.state = SyncState.UPLOADING
        content_hash = await self._publish(note_id, local.content)
        await self._append_changelog(note_id, content_hash)
        action = NoteAction.UPLOADED_NEW if bundle_hash is None else NoteAction.UPLOADED_MODIFIED
        return NoteSyncResult(note_id, action, content_hash)

    async def legacy_full_sync(self) -> SyncReport:
        """Reconcile the union of remote and local note ids one by one."""
        async with self._pass("legacy_full_sync"):
            return self._finish_report(await self._legacy_full_sync())

    async def _legacy_full_sync(self) -> SyncReport:
        changelog = await self.changelog.read()
        names = await self.store.list(self.layout.notes_dir)
        remote_ids = {note_id for name in names if (note_id := note_id_from_filename(name))}
        local_ids = {obj.id for obj in await self.notes.list_live()}
        all_ids = sorted(remote_ids | local_ids)
        logger.info(
            "Listing-based full sync: %d remote, %d local, %d total",
            len(remote_ids),
            len(local_ids),
            len(all_ids),
        )

        report = SyncReport(mode="legacy_full")
        for note_id in all_ids:
            self.state = SyncState.CHECKING
            try:
                result = await self._sync_from_remote(note_id)
            except _ITEM_ERRORS as exc:
                logger.error("Sync of note %s failed: %s", note_id, exc)
                result = NoteSyncResult(note_id, NoteAction.FAILED, error=str(exc))
            report.results.append(result)

        if changelog is not None:
            # every note was reconciled, so the window read up front is applied
            for entry in changelog.latest_by_note().values():
                if entry.rev > self.ledger.get(entry.note_id):
                    self.ledger.set(entry.note_id, entry.rev)
            self.ledger.set_last_seen_version(changelog.version)
            report.version = changelog.version
        self.ledger.persist()
        return report

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def generate_snapshot(self) -> BundleMeta | None:
        """Publish a bundle now; None if a generation is already running."""
        if self.state in _IN_FLIGHT:
            msg = f"Cannot generate snapshot: sync already {self.state.value}"
            raise SyncInProgressError(msg)
        return await self.snapshots.generate_snapshot()

    # ------------------------------------------------------------------
    # Conflict resolution
    # ------------------------------------------------------------------

    async def _download_over_local(self, note_id: str) -> str:
        meta, content = await self._fetch_remote(note_id)
        if content is None:
            raise RemoteNotFoundError(self.layout.note_path(note_id))
        content_hash = hash_content(content)
        self.state = SyncState.DOWNLOADING
        await self.notes.apply_remote(
            note_id,
            content.decode("utf-8"),
            remote_hash=content_hash,
            modified_by=meta.last_modified_by if meta else None,
        )
        return content_hash

    async def resolve_conflict(
        self, note_id: str, action: ResolutionAction | str
    ) -> NoteSyncResult:
        """Apply a resolution to a recorded conflict and forget it.

        ``use_remote`` discards local changes. ``keep_local_as_copy`` saves the
        local content under a new id before taking the remote version.
        ``force_upload`` overwrites the remote version without validation.
        """
        if note_id not in self.conflicts:
            raise ConflictNotFoundError(note_id)
        action = ResolutionAction(action)

        async with self._pass("resolve_conflict"):
            if action is ResolutionAction.USE_REMOTE:
                content_hash = await self._download_over_local(note_id)
                result = NoteSyncResult(note_id, NoteAction.DOWNLOADED, content_hash)

            elif action is ResolutionAction.KEEP_LOCAL_AS_COPY:
                local = await self.notes.get_by_id(note_id)
                if local is None:
                    raise NoteNotFoundError(note_id)
                copy_id = f"{note_id}-copy-{self._clock()}"
                await self.notes.save_local_edit(
                    copy_id, local.content, title=local.title, device_id=self.device_id
                )
                content_hash = await self._download_over_local(note_id)
                result = NoteSyncResult(
                    note_id, NoteAction.DOWNLOADED, content_hash, copy_id=copy_id
                )

            else:
                local = await self.notes.get_by_id(note_id)
                if local is None:
                    raise NoteNotFoundError(note_id)
                self.state = SyncState.UPLOADING
                await self.backups.backup_previous_version(note_id, local.content)
                content_hash = await self._publish(note_id, local.content)
                await self._append_changelog(note_id, content_hash)
                self.events.publish(NoteUploaded(note_id=note_id, hash=content_hash))
                result = NoteSyncResult(note_id, NoteAction.UPLOADED, content_hash)

            del self.conflicts[note_id]
            logger.info("Resolved conflict on %s with %s", note_id, action.value)
            return result


def create_orchestrator(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    store: RemoteObjectStore,
) -> SyncOrchestrator:
    """Wire one orchestrator for the database behind *session_factory*."""
    device_id = settings.device_id or load_or_create_device_id(settings.data_dir)
    layout = RemoteLayout(root=settings.remote_root.rstrip("/"))
    notes = NoteStore(session_factory)
    ledger = RevisionLedger(settings.revisions_file)
    changelog = ChangelogService(store, layout, ledger, max_delta=settings.max_delta)
    snapshots = SnapshotService(
        store,
        layout,
        notes,
        ledger,
        settings.snapshot_policy_file,
        device_id=device_id,
        modification_threshold=settings.snapshot_modification_threshold,
        time_threshold_ms=settings.snapshot_time_threshold_seconds * 1000,
    )
    backups = BackupService(store, layout, settings.backup_dir, keep=settings.backup_keep)
    orchestrator = SyncOrchestrator(
        store=store,
        layout=layout,
        notes=notes,
        ledger=ledger,
        changelog=changelog,
        snapshots=snapshots,
        backups=backups,
        device_id=device_id,
        restore_batch_size=settings.restore_batch_size,
        restore_batch_delay=settings.restore_batch_delay_seconds,
        snapshot_delay=settings.snapshot_delay_seconds,
    )
    changelog.on_append = orchestrator._on_changelog_append
    snapshots.is_idle = orchestrator.is_idle
    return orchestrator
