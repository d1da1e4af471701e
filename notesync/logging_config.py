"""Logging setup: console output plus the daily JSON-lines sync log."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

SYNC_LOGGER_NAME = "notesync.services"
_CONSOLE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_STANDARD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}


class JsonLinesFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, device, logger, message, extras."""

    def __init__(self, device_id: str) -> None:
        super().__init__()
        self.device_id = device_id

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "deviceId": self.device_id,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                entry[key] = value
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class DailySyncLogHandler(logging.Handler):
    """Appends records to ``sync-YYYY-MM-DD.log`` under *log_dir* (UTC dates)."""

    def __init__(self, log_dir: Path) -> None:
        super().__init__()
        self.log_dir = log_dir

    def current_path(self) -> Path:
        day = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        return self.log_dir / f"sync-{day}.log"

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
            self.log_dir.mkdir(parents=True, exist_ok=True)
            with self.current_path().open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except Exception:
            self.handleError(record)


def configure_logging(debug: bool, log_dir: Path | None = None, device_id: str = "") -> None:
    """Configure application logging.

    With *log_dir*, sync-engine records are also written to the daily
    JSON-lines sync log.
    """
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format=_CONSOLE_FORMAT,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)

    sync_logger = logging.getLogger(SYNC_LOGGER_NAME)
    for handler in list(sync_logger.handlers):
        if isinstance(handler, DailySyncLogHandler):
            sync_logger.removeHandler(handler)
            handler.close()
    if log_dir is not None:
        handler = DailySyncLogHandler(log_dir)
        handler.setFormatter(JsonLinesFormatter(device_id))
        handler.setLevel(logging.INFO)
        sync_logger.addHandler(handler)
