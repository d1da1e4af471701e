"""Tests for the JSON-lines sync log."""

from __future__ import annotations

import json
import logging
import sys
from typing import TYPE_CHECKING

import pytest

from notesync.logging_config import (
    SYNC_LOGGER_NAME,
    DailySyncLogHandler,
    JsonLinesFormatter,
    configure_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


def _record(msg: str, *args: object, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        "notesync.services.x", logging.WARNING, __file__, 1, msg, args, None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_sync_logger() -> Iterator[None]:
    sync_logger = logging.getLogger(SYNC_LOGGER_NAME)
    saved = list(sync_logger.handlers)
    yield
    for handler in list(sync_logger.handlers):
        if handler not in saved:
            sync_logger.removeHandler(handler)
            handler.close()


class TestJsonLinesFormatter:
    def test_fields(self) -> None:
        line = JsonLinesFormatter("device-a").format(_record("synced %s", "n1"))
        entry = json.loads(line)
        assert entry["level"] == "warning"
        assert entry["deviceId"] == "device-a"
        assert entry["logger"] == "notesync.services.x"
        assert entry["message"] == "synced n1"
        assert entry["timestamp"].endswith("+00:00")

    def test_extras_included(self) -> None:
        entry = json.loads(JsonLinesFormatter("d").format(_record("x", note_id="n1", rev=4)))
        assert entry["note_id"] == "n1"
        assert entry["rev"] == 4

    def test_exception_recorded(self) -> None:
        try:
            raise RuntimeError("bad")
        except RuntimeError:
            record = logging.LogRecord(
                "notesync.services", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )
        entry = json.loads(JsonLinesFormatter("d").format(record))
        assert "RuntimeError: bad" in entry["error"]


class TestDailySyncLogHandler:
    def test_appends_one_line_per_record(self, tmp_path: Path) -> None:
        handler = DailySyncLogHandler(tmp_path / "logs")
        handler.setFormatter(JsonLinesFormatter("device-a"))
        handler.emit(_record("first"))
        handler.emit(_record("second"))

        path = handler.current_path()
        assert path.parent == tmp_path / "logs"
        assert path.name.startswith("sync-")
        lines = path.read_text().splitlines()
        assert [json.loads(line)["message"] for line in lines] == ["first", "second"]


class TestConfigureLogging:
    def test_installs_single_sync_handler(
        self, tmp_path: Path, restore_sync_logger: None
    ) -> None:
        configure_logging(False, tmp_path, "device-a")
        configure_logging(False, tmp_path, "device-a")

        sync_logger = logging.getLogger(SYNC_LOGGER_NAME)
        handlers = [h for h in sync_logger.handlers if isinstance(h, DailySyncLogHandler)]
        assert len(handlers) == 1

        logging.getLogger("notesync.services.sync_service").info("pass done")
        entries = [json.loads(line) for line in handlers[0].current_path().read_text().splitlines()]
        assert entries[-1]["message"] == "pass done"
        assert entries[-1]["deviceId"] == "device-a"

    def test_without_log_dir(self, restore_sync_logger: None) -> None:
        configure_logging(True)
        sync_logger = logging.getLogger(SYNC_LOGGER_NAME)
        assert not any(isinstance(h, DailySyncLogHandler) for h in sync_logger.handlers)
