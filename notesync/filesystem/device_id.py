"""Stable per-installation device identifier."""

from __future__ import annotations

import logging
import uuid
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

DEVICE_ID_FILENAME = "device-id"


def load_or_create_device_id(data_dir: Path) -> str:
    """Load the device id from ``data_dir/device-id``, or create and save a new one."""
    path = data_dir / DEVICE_ID_FILENAME
    if path.exists():
        device_id = path.read_text(encoding="utf-8").strip()
        if device_id:
            return device_id
        logger.warning("Device id file %s is empty, generating a new id", path)
    device_id = f"device-{uuid.uuid4().hex[:12]}"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(device_id + "\n", encoding="utf-8")
    logger.info("Generated device id %s", device_id)
    return device_id
