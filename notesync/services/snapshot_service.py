"""Full-state bundle publishing and the snapshot policy."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from notesync.exceptions import SchemaMismatchError
from notesync.filesystem.state_file import read_json, write_json_atomic
from notesync.schemas.documents import (
    MODIFICATION_THRESHOLD,
    TIME_THRESHOLD_MS,
    Bundle,
    BundleMeta,
    BundleNote,
    SnapshotPolicyState,
    load_document,
)
from notesync.services.datetime_service import millis_to_iso, now_millis

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from notesync.services.note_store import NoteStore
    from notesync.services.revision_ledger import RevisionLedger
    from notesync.storage.layout import RemoteLayout
    from notesync.storage.remote import RemoteObjectStore

logger = logging.getLogger(__name__)


class SnapshotService:
    """Builds bundles from live local notes and decides when to publish them.

    Publishing writes ``notes-snapshot.bundle.tmp`` and then MOVEs it over the
    canonical path, so readers never see a partial bundle. Only one generation
    runs at a time.
    """

    def __init__(
        self,
        store: RemoteObjectStore,
        layout: RemoteLayout,
        notes: NoteStore,
        ledger: RevisionLedger,
        policy_path: Path,
        *,
        device_id: str,
        is_idle: Callable[[], bool] = lambda: True,
        modification_threshold: int = MODIFICATION_THRESHOLD,
        time_threshold_ms: int = TIME_THRESHOLD_MS,
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self.store = store
        self.layout = layout
        self.notes = notes
        self.ledger = ledger
        self.policy_path = policy_path
        self.device_id = device_id
        self.is_idle = is_idle
        self._clock = clock
        self._generating = False
        self.policy = SnapshotPolicyState(
            modification_threshold=modification_threshold,
            time_threshold=time_threshold_ms,
        )

    @property
    def is_generating(self) -> bool:
        return self._generating

    def load_policy(self) -> None:
        """Load counters from disk; an unreadable file keeps the defaults."""
        data = read_json(self.policy_path)
        if data is None:
            return
        try:
            stored = load_document(SnapshotPolicyState, data)
        except (ValueError, SchemaMismatchError) as exc:
            logger.warning("Ignoring unreadable snapshot policy %s: %s", self.policy_path, exc)
            return
        # thresholds come from configuration, counters from disk
        self.policy = self.policy.model_copy(
            update={
                "modification_count": stored.modification_count,
                "last_snapshot_time": stored.last_snapshot_time,
            }
        )

    def save_policy(self) -> None:
        write_json_atomic(self.policy_path, self.policy.to_dict())

    def record_modification(self) -> None:
        self.policy.modification_count += 1
        self.save_policy()

    def should_snapshot(self) -> bool:
        if not self.is_idle() or self._generating:
            return False
        policy = self.policy
        if policy.modification_count >= policy.modification_threshold:
            return True
        elapsed = self._clock() - policy.last_snapshot_time
        return elapsed >= policy.time_threshold and policy.modification_count > 0

    async def maybe_snapshot(self) -> BundleMeta | None:
        """Publish a bundle if the policy says so."""
        if not self.should_snapshot():
            return None
        logger.info(
            "Snapshot policy triggered after %d modifications", self.policy.modification_count
        )
        return await self.generate_snapshot(auto=True)

    async def generate_snapshot(self, *, auto: bool = False) -> BundleMeta | None:
        """Build and publish a bundle of every live note.

        Returns None without doing anything when a generation is already in
        flight, or for automatic runs while a sync pass is active.
        """
        if self._generating:
            logger.info("Snapshot generation already in progress, skipping")
            return None
        if auto and not self.is_idle():
            logger.info("Sync pass in flight, postponing automatic snapshot")
            return None

        self._generating = True
        try:
            await self.store.mkdir(self.layout.snapshot_dir)
            live = await self.notes.list_live()
            now = self._clock()
            bundle = Bundle(
                version=now,
                created_at=millis_to_iso(now),
                device_id=self.device_id,
                notes_count=len(live),
                notes={
                    obj.id: BundleNote(
                        note_id=obj.id,
                        hash=obj.content_hash,
                        rev=self.ledger.get(obj.id) or 1,
                        title=obj.title,
                        created_at=millis_to_iso(obj.created_at),
                        updated_at=millis_to_iso(obj.updated_at),
                    )
                    for obj in live
                },
            )
            payload = bundle.to_json_bytes()
            await self.store.put(self.layout.bundle_tmp_path, payload)
            await self.store.move(
                self.layout.bundle_tmp_path, self.layout.bundle_path, overwrite=True
            )

            self.policy.modification_count = 0
            self.policy.last_snapshot_time = self._clock()
            self.save_policy()
            logger.info(
                "Published snapshot version %d with %d notes (%.2f KB)",
                bundle.version,
                bundle.notes_count,
                len(payload) / 1024,
            )
            return BundleMeta(
                version=bundle.version,
                notes_count=bundle.notes_count,
                size_bytes=len(payload),
            )
        finally:
            self._generating = False

    async def read_bundle(self) -> Bundle | None:
        """Fetch the published bundle, or None if absent or unreadable."""
        raw = await self.store.get(self.layout.bundle_path)
        if raw is None:
            return None
        try:
            return load_document(Bundle, raw)
        except ValueError as exc:
            logger.warning("Remote bundle is malformed: %s", exc)
            return None
