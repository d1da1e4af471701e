"""Tests for tracked background tasks."""

from __future__ import annotations

import asyncio

from notesync.services.background import BackgroundTasks


async def _ok(results: list[str], value: str) -> None:
    await asyncio.sleep(0)
    results.append(value)


async def _fail(message: str) -> None:
    await asyncio.sleep(0)
    raise RuntimeError(message)


class TestBackgroundTasks:
    async def test_drain_waits_for_completion(self) -> None:
        tasks = BackgroundTasks()
        results: list[str] = []
        tasks.spawn("a", _ok(results, "a"))
        tasks.spawn("b", _ok(results, "b"))
        assert tasks.pending == 2
        await tasks.drain()
        assert sorted(results) == ["a", "b"]
        assert tasks.pending == 0
        assert tasks.errors == []

    async def test_failures_recorded_not_raised(self) -> None:
        tasks = BackgroundTasks()
        tasks.spawn("changelog-append:n1", _fail("remote down"))
        await tasks.drain()
        [failure] = tasks.errors
        assert failure.label == "changelog-append:n1"
        assert str(failure.error) == "remote down"

    async def test_error_list_bounded(self) -> None:
        tasks = BackgroundTasks(max_errors=2)
        for i in range(4):
            tasks.spawn(f"t{i}", _fail(str(i)))
        await tasks.drain()
        assert [f.label for f in tasks.errors] == ["t2", "t3"]

    async def test_drain_includes_tasks_spawned_by_tasks(self) -> None:
        tasks = BackgroundTasks()
        results: list[str] = []

        async def parent() -> None:
            await asyncio.sleep(0)
            tasks.spawn("child", _ok(results, "child"))

        tasks.spawn("parent", parent())
        await tasks.drain()
        assert results == ["child"]

    async def test_cancel_all(self) -> None:
        tasks = BackgroundTasks()
        tasks.spawn("slow", asyncio.sleep(60))
        await tasks.cancel_all()
        assert tasks.pending == 0
        assert tasks.errors == []
