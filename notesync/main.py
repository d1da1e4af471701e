"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from notesync.api.health import router as health_router
from notesync.api.sync import router as sync_router
from notesync.config import Settings
from notesync.database import create_engine, create_schema
from notesync.exceptions import (
    ConflictNotFoundError,
    NoteNotFoundError,
    SchemaMismatchError,
    SyncInProgressError,
    SyncPassError,
    WriteRejectedError,
)
from notesync.logging_config import configure_logging
from notesync.schemas.sync import ConflictResponse
from notesync.services.sync_service import create_orchestrator
from notesync.storage.remote import RemoteStoreError
from notesync.storage.webdav import create_remote_store

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from notesync.storage.remote import RemoteObjectStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_config()
    settings.data_dir.mkdir(parents=True, exist_ok=True)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        await create_schema(engine)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    store: RemoteObjectStore = app.state.remote_store or create_remote_store(settings)
    orchestrator = create_orchestrator(settings, session_factory, store)
    configure_logging(settings.debug, settings.sync_log_dir, orchestrator.device_id)
    logger.info("Starting NoteSync (debug=%s, device=%s)", settings.debug, orchestrator.device_id)

    try:
        await orchestrator.start()
    except Exception as exc:
        logger.critical("Failed to load local sync state: %s.", exc)
        raise
    app.state.orchestrator = orchestrator

    try:
        await orchestrator.ensure_folder_structure()
    except RemoteStoreError as exc:
        # remote may be offline at startup; folders are created again before the first upload
        logger.warning("Could not prepare remote folders: %s", exc)

    yield

    try:
        await orchestrator.close()
    except Exception as exc:
        logger.error("Error during sync engine shutdown: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("NoteSync stopped")


def create_app(
    settings: Settings | None = None,
    store: RemoteObjectStore | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    *store* replaces the WebDAV store built from settings.
    """
    if settings is None:
        settings = Settings()

    app = FastAPI(
        title="NoteSync",
        description="Multi-device note synchronization over WebDAV",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.remote_store = store

    app.include_router(health_router)
    app.include_router(sync_router)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(SyncInProgressError)
    async def sync_in_progress_handler(
        request: Request, exc: SyncInProgressError
    ) -> JSONResponse:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(WriteRejectedError)
    async def write_rejected_handler(request: Request, exc: WriteRejectedError) -> JSONResponse:
        logger.warning("Write rejected in %s %s: %s", request.method, request.url.path, exc)
        conflict = (
            ConflictResponse.from_record(exc.conflict).model_dump() if exc.conflict else None
        )
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "reason": exc.reason, "conflict": conflict},
        )

    @app.exception_handler(ConflictNotFoundError)
    async def conflict_not_found_handler(
        request: Request, exc: ConflictNotFoundError
    ) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(NoteNotFoundError)
    async def note_not_found_handler(request: Request, exc: NoteNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(SyncPassError)
    async def sync_pass_error_handler(request: Request, exc: SyncPassError) -> JSONResponse:
        logger.error("SyncPassError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=502,
            content={
                "detail": str(exc),
                "total": exc.report.total,
                "failed": exc.report.failed,
            },
        )

    @app.exception_handler(RemoteStoreError)
    async def remote_store_error_handler(
        request: Request, exc: RemoteStoreError
    ) -> JSONResponse:
        logger.error(
            "RemoteStoreError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=502,
            content={"detail": "Remote storage unavailable", "status_code": exc.status_code},
        )

    @app.exception_handler(SchemaMismatchError)
    async def schema_mismatch_handler(request: Request, exc: SchemaMismatchError) -> JSONResponse:
        logger.error("SchemaMismatchError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "notesync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
