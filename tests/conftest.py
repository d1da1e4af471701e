"""Shared test fixtures for NoteSync."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient

from notesync.config import Settings
from notesync.database import create_engine, create_schema
from notesync.main import create_app
from notesync.schemas.documents import RemoteMeta
from notesync.services.datetime_service import now_millis
from notesync.services.hash_service import hash_content
from notesync.services.note_store import NoteStore
from notesync.services.sync_service import create_orchestrator
from notesync.storage.layout import RemoteLayout
from notesync.storage.remote import RemoteNotFoundError, RemoteStoreError

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from notesync.services.sync_service import SyncOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class _FailureRule:
    op: str
    path_fragment: str
    error: BaseException
    remaining: int | None


class InMemoryStore:
    """Remote object store double with WebDAV semantics.

    ``fail_on`` injects errors for matching operations; ``calls`` records
    every operation in order.
    """

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.dirs: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.closed = False
        self._rules: list[_FailureRule] = []

    def fail_on(
        self,
        op: str,
        path_fragment: str = "",
        error: BaseException | None = None,
        *,
        times: int | None = None,
    ) -> None:
        """Make *op* raise *error* for paths containing *path_fragment*."""
        self._rules.append(
            _FailureRule(
                op=op,
                path_fragment=path_fragment,
                error=error or RemoteStoreError(f"injected {op} failure", status_code=500),
                remaining=times,
            )
        )

    def clear_failures(self) -> None:
        self._rules.clear()

    def _check(self, op: str, path: str) -> None:
        self.calls.append((op, path))
        for rule in self._rules:
            if rule.op != op or rule.path_fragment not in path:
                continue
            if rule.remaining is not None:
                if rule.remaining <= 0:
                    continue
                rule.remaining -= 1
            raise rule.error

    def ops(self, op: str) -> list[str]:
        return [path for name, path in self.calls if name == op]

    async def get(self, path: str) -> bytes | None:
        self._check("get", path)
        return self.objects.get(path)

    async def put(self, path: str, data: bytes) -> None:
        self._check("put", path)
        self.objects[path] = bytes(data)

    async def move(self, src: str, dst: str, *, overwrite: bool = True) -> None:
        self._check("move", src)
        if src not in self.objects:
            raise RemoteNotFoundError(src)
        if dst in self.objects and not overwrite:
            raise RemoteStoreError(f"MOVE {src} returned 412", status_code=412)
        self.objects[dst] = self.objects.pop(src)

    async def delete(self, path: str) -> None:
        self._check("delete", path)
        self.objects.pop(path, None)

    async def mkdir(self, path: str) -> None:
        self._check("mkdir", path)
        self.dirs.add(path.rstrip("/"))

    async def list(self, path: str) -> list[str]:
        self._check("list", path)
        prefix = path.rstrip("/") + "/"
        names = []
        for key in [*self.objects, *self.dirs]:
            if key.startswith(prefix):
                rest = key[len(prefix) :]
                name = rest.split("/", 1)[0]
                if name and name not in names:
                    names.append(name)
        return names

    async def close(self) -> None:
        self.closed = True

    def seed_note(
        self,
        note_id: str,
        content: str,
        *,
        device_id: str = "device-z",
        layout: RemoteLayout | None = None,
        with_content: bool = True,
        with_meta: bool = True,
    ) -> str:
        """Publish a note as another device would, bypassing the call log."""
        layout = layout or RemoteLayout()
        content_hash = hash_content(content)
        if with_content:
            self.objects[layout.note_path(note_id)] = content.encode("utf-8")
        if with_meta:
            meta = RemoteMeta(
                note_id=note_id,
                hash=content_hash,
                last_modified_by=device_id,
                last_modified_at=now_millis(),
            )
            self.objects[layout.meta_path(note_id)] = meta.to_json_bytes()
        return content_hash

    def read_json(self, path: str) -> dict[str, Any] | None:
        raw = self.objects.get(path)
        return None if raw is None else json.loads(raw)


@dataclass
class DeviceFactory:
    """Builds orchestrators that each own a database and share one remote."""

    tmp_path: Path
    remote: InMemoryStore
    _engines: list[AsyncEngine] = field(default_factory=list)
    _devices: list[SyncOrchestrator] = field(default_factory=list)

    async def create(self, name: str, **overrides: Any) -> SyncOrchestrator:
        data_dir = self.tmp_path / name
        settings = make_settings(data_dir, device_id=name, **overrides)
        engine, session_factory = create_engine(settings)
        await create_schema(engine)
        self._engines.append(engine)
        orchestrator = create_orchestrator(settings, session_factory, self.remote)
        await orchestrator.start()
        self._devices.append(orchestrator)
        return orchestrator

    async def close(self) -> None:
        for device in self._devices:
            await device.background.drain()
        for engine in self._engines:
            await engine.dispose()


def make_settings(data_dir: Path, **overrides: Any) -> Settings:
    """Settings for a test device rooted at *data_dir*."""
    values: dict[str, Any] = {
        "debug": True,
        "database_url": f"sqlite+aiosqlite:///{data_dir / 'notesync.db'}",
        "data_dir": data_dir,
        "device_id": "device-test",
        "webdav_url": "http://localhost:8080/dav",
        "restore_batch_delay_seconds": 0,
        "snapshot_delay_seconds": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@asynccontextmanager
async def create_test_client(
    settings: Settings, store: InMemoryStore
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with a fully initialized app.

    Runs the application lifespan around the client because ASGITransport
    does not trigger it.
    """
    app = create_app(settings, store=store)
    async with app.router.lifespan_context(app):
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as ac:
            yield ac


@pytest.fixture
def layout() -> RemoteLayout:
    return RemoteLayout()


@pytest.fixture
def remote() -> InMemoryStore:
    """Empty shared remote store."""
    return InMemoryStore()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    return make_settings(tmp_path / "data")


@pytest.fixture
async def session_factory(
    test_settings: Settings,
) -> AsyncGenerator[async_sessionmaker[AsyncSession]]:
    """Session factory over a fresh SQLite database with the schema created."""
    engine, factory = create_engine(test_settings)
    await create_schema(engine)
    yield factory
    await engine.dispose()


@pytest.fixture
def note_store(session_factory: async_sessionmaker[AsyncSession]) -> NoteStore:
    return NoteStore(session_factory)


@pytest.fixture
async def devices(tmp_path: Path, remote: InMemoryStore) -> AsyncGenerator[DeviceFactory]:
    """Factory for devices sharing the ``remote`` store."""
    factory = DeviceFactory(tmp_path=tmp_path, remote=remote)
    yield factory
    await factory.close()


@pytest.fixture
async def device(devices: DeviceFactory) -> SyncOrchestrator:
    """A single device with its own database."""
    return await devices.create("device-a")


@pytest.fixture
async def client(test_settings: Settings, remote: InMemoryStore) -> AsyncGenerator[AsyncClient]:
    """HTTP client for an app backed by ``remote`` and the test database."""
    async with create_test_client(test_settings, remote) as ac:
        yield ac
