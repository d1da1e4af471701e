"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import urlparse

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


class Settings(BaseSettings):
    """NoteSync application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/notesync.db"

    # Paths
    data_dir: Path = Path("./data")

    # Identity
    device_id: str | None = None

    # Server
    host: str = "127.0.0.1"
    port: int = Field(default=8765, ge=1, le=65535)

    # Remote store
    webdav_url: str = "https://dav.jianguoyun.com/dav"
    webdav_username: str = ""
    webdav_password: str = ""
    remote_root: str = "/FlashNote"
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    light_request_timeout_seconds: float = Field(default=10.0, gt=0)
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_backoff_seconds: float = Field(default=1.0, ge=0)
    retry_max_delay_seconds: float = Field(default=10.0, ge=0)

    # Sync
    max_delta: int = Field(default=200, ge=1)
    restore_batch_size: int = Field(default=5, ge=1)
    restore_batch_delay_seconds: float = Field(default=0.2, ge=0)
    backup_keep: int = Field(default=10, ge=1)

    # Snapshot policy
    snapshot_modification_threshold: int = Field(default=100, ge=1)
    snapshot_time_threshold_seconds: int = Field(default=24 * 60 * 60, ge=1)
    snapshot_delay_seconds: float = Field(default=5.0, ge=0)

    @property
    def revisions_file(self) -> Path:
        return self.data_dir / "sync-revisions.json"

    @property
    def snapshot_policy_file(self) -> Path:
        return self.data_dir / "snapshot-policy.json"

    @property
    def backup_dir(self) -> Path:
        return self.data_dir / "sync-backups"

    @property
    def sync_log_dir(self) -> Path:
        return self.data_dir / "sync-logs"

    def validate_runtime_config(self) -> None:
        """Validate remote-store settings before the sync engine starts."""
        violations: list[str] = []
        parsed = urlparse(self.webdav_url.strip())
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            violations.append("WEBDAV_URL must include scheme and host")
        elif parsed.scheme == "http" and parsed.hostname not in _LOCALHOST_HOSTS:
            violations.append("WEBDAV_URL must use HTTPS for non-localhost hosts")
        if not self.remote_root.startswith("/"):
            violations.append("REMOTE_ROOT must be an absolute path")

        if not self.debug and not (self.webdav_username and self.webdav_password):
            violations.append("WEBDAV_USERNAME and WEBDAV_PASSWORD must be configured")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Invalid sync configuration: {joined}")
