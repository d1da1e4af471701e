"""Sync API endpoints driving the orchestrator."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends

from notesync.api.deps import get_orchestrator
from notesync.exceptions import NoteNotFoundError
from notesync.schemas.sync import (
    ConflictResponse,
    NoteResultResponse,
    ResolveConflictRequest,
    SnapshotResponse,
    SyncReportResponse,
    SyncStatusResponse,
    WriteResponse,
)
from notesync.services.sync_service import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])

Orchestrator = Annotated[SyncOrchestrator, Depends(get_orchestrator)]


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(orchestrator: Orchestrator) -> SyncStatusResponse:
    """Current state, conflict count and counters."""
    return SyncStatusResponse.from_status(orchestrator.get_status())


@router.get("/conflicts", response_model=list[ConflictResponse])
async def list_conflicts(orchestrator: Orchestrator) -> list[ConflictResponse]:
    return [ConflictResponse.from_record(c) for c in orchestrator.list_conflicts()]


@router.post("/incremental", response_model=SyncReportResponse)
async def incremental_sync(orchestrator: Orchestrator) -> SyncReportResponse:
    """Replay remote changes since the last pass."""
    report = await orchestrator.incremental_sync()
    return SyncReportResponse.from_report(report)


@router.post("/restore", response_model=SyncReportResponse)
async def full_restore(orchestrator: Orchestrator) -> SyncReportResponse:
    """Reconcile everything against the published bundle."""
    report = await orchestrator.full_restore()
    return SyncReportResponse.from_report(report)


@router.post("/snapshot", response_model=SnapshotResponse)
async def generate_snapshot(orchestrator: Orchestrator) -> SnapshotResponse:
    meta = await orchestrator.generate_snapshot()
    if meta is None:
        return SnapshotResponse(generated=False)
    return SnapshotResponse(
        generated=True,
        version=meta.version,
        notes_count=meta.notes_count,
        size_bytes=meta.size_bytes,
    )


@router.post("/notes/{note_id}/push", response_model=WriteResponse)
async def push_note(note_id: str, orchestrator: Orchestrator) -> WriteResponse:
    """Publish the local content of a note."""
    note = await orchestrator.notes.get_by_id(note_id)
    if note is None:
        raise NoteNotFoundError(note_id)
    result = await orchestrator.write_note(note_id, note.content)
    return WriteResponse.from_result(result)


@router.post("/notes/{note_id}/pull", response_model=NoteResultResponse)
async def pull_note(note_id: str, orchestrator: Orchestrator) -> NoteResultResponse:
    """Reconcile one note in whichever direction is safe."""
    result = await orchestrator.sync_from_remote(note_id)
    return NoteResultResponse.from_result(result)


@router.delete("/notes/{note_id}", response_model=NoteResultResponse)
async def delete_note(note_id: str, orchestrator: Orchestrator) -> NoteResultResponse:
    """Delete a note locally and remove its remote copy."""
    if not await orchestrator.notes.mark_deleted(note_id):
        raise NoteNotFoundError(note_id)
    logger.info("Note %s deleted locally", note_id)
    result = await orchestrator.sync_deleted_note(note_id)
    return NoteResultResponse.from_result(result)


@router.post("/conflicts/{note_id}/resolve", response_model=NoteResultResponse)
async def resolve_conflict(
    note_id: str,
    body: ResolveConflictRequest,
    orchestrator: Orchestrator,
) -> NoteResultResponse:
    result = await orchestrator.resolve_conflict(note_id, body.action)
    return NoteResultResponse.from_result(result)
