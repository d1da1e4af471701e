"""Sync API request and response schemas."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from notesync.services.sync_service import ResolutionAction

if TYPE_CHECKING:
    from notesync.services.sync_service import (
        ConflictRecord,
        NoteSyncResult,
        SyncReport,
        SyncStatus,
        WriteResult,
    )


class ConflictResponse(BaseModel):
    """A recorded conflict awaiting resolution."""

    note_id: str
    local_hash: str
    remote_hash: str
    remote_device: str | None = None
    remote_time: int | None = None
    detected_at: int

    @classmethod
    def from_record(cls, record: ConflictRecord) -> ConflictResponse:
        return cls(
            note_id=record.note_id,
            local_hash=record.local_hash,
            remote_hash=record.remote_hash,
            remote_device=record.remote_device,
            remote_time=record.remote_time,
            detected_at=record.detected_at,
        )


class SyncStatsResponse(BaseModel):
    total_syncs: int
    successful_syncs: int
    failed_syncs: int
    conflicts: int
    last_sync_time: int | None = None
    last_error: str | None = None


class SyncStatusResponse(BaseModel):
    """Current orchestrator state and counters."""

    state: str
    device_id: str
    conflict_count: int
    last_seen_version: int
    pending_background_tasks: int
    background_errors: int
    stats: SyncStatsResponse

    @classmethod
    def from_status(cls, status: SyncStatus) -> SyncStatusResponse:
        stats = status.stats
        return cls(
            state=status.state.value,
            device_id=status.device_id,
            conflict_count=status.conflict_count,
            last_seen_version=status.last_seen_version,
            pending_background_tasks=status.pending_background_tasks,
            background_errors=status.background_errors,
            stats=SyncStatsResponse(
                total_syncs=stats.total_syncs,
                successful_syncs=stats.successful_syncs,
                failed_syncs=stats.failed_syncs,
                conflicts=stats.conflicts,
                last_sync_time=stats.last_sync_time,
                last_error=stats.last_error,
            ),
        )


class NoteResultResponse(BaseModel):
    """Outcome for a single note."""

    note_id: str
    action: str
    hash: str | None = None
    error: str | None = None
    copy_id: str | None = None
    conflict: ConflictResponse | None = None

    @classmethod
    def from_result(cls, result: NoteSyncResult) -> NoteResultResponse:
        return cls(
            note_id=result.note_id,
            action=result.action.value,
            hash=result.hash,
            error=result.error,
            copy_id=result.copy_id,
            conflict=(
                ConflictResponse.from_record(result.conflict) if result.conflict else None
            ),
        )


class SyncReportResponse(BaseModel):
    """Summary and per-note results of a sync pass."""

    mode: str
    version: int | None = None
    total: int
    succeeded: int
    failed: int
    conflicts: int
    results: list[NoteResultResponse] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: SyncReport) -> SyncReportResponse:
        return cls(
            mode=report.mode,
            version=report.version,
            total=report.total,
            succeeded=report.succeeded,
            failed=report.failed,
            conflicts=report.conflicts,
            results=[NoteResultResponse.from_result(r) for r in report.results],
        )


class WriteResponse(BaseModel):
    note_id: str
    hash: str
    uploaded: bool
    reason: str

    @classmethod
    def from_result(cls, result: WriteResult) -> WriteResponse:
        return cls(
            note_id=result.note_id,
            hash=result.hash,
            uploaded=result.uploaded,
            reason=result.reason.value,
        )


class SnapshotResponse(BaseModel):
    """Result of a manual snapshot request."""

    generated: bool
    version: int | None = None
    notes_count: int | None = None
    size_bytes: int | None = None


class ResolveConflictRequest(BaseModel):
    action: ResolutionAction = Field(description="use_remote, keep_local_as_copy or force_upload")
