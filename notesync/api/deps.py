"""Shared API dependencies: settings, DB session, orchestrator."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from notesync.config import Settings
from notesync.services.sync_service import SyncOrchestrator


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Get the sync orchestrator from app state."""
    orchestrator: SyncOrchestrator = request.app.state.orchestrator
    return orchestrator
