"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from notesync.api.deps import get_orchestrator, get_session
from notesync.services.sync_service import SyncOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str
    remote: str
    folder_structure: bool
    note_count: int | None = None
    error: str | None = None


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> HealthResponse:
    """Database and remote store health."""
    db_status = "ok"
    try:
        await session.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check database query failed", exc_info=True)
        db_status = "error"

    report = await orchestrator.health_check()
    remote_status = "ok" if report.can_connect and report.folder_structure else "error"

    return HealthResponse(
        status="ok" if db_status == "ok" and remote_status == "ok" else "degraded",
        version="0.1.0",
        database=db_status,
        remote=remote_status,
        folder_structure=report.folder_structure,
        note_count=report.note_count,
        error=report.error,
    )
