"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from notesync.config import Settings


class TestSettings:
    def test_default_settings(self) -> None:
        s = Settings(_env_file=None)
        assert s.debug is False
        assert s.port == 8765
        assert s.remote_root == "/FlashNote"
        assert s.max_delta == 200
        assert s.restore_batch_size == 5
        assert s.snapshot_modification_threshold == 100

    def test_custom_settings(self, tmp_path: Path) -> None:
        s = Settings(
            _env_file=None,
            debug=True,
            data_dir=tmp_path / "data",
            database_url="sqlite+aiosqlite:///test.db",
        )
        assert s.debug is True
        assert s.data_dir == tmp_path / "data"

    def test_state_file_paths(self, tmp_path: Path) -> None:
        s = Settings(_env_file=None, data_dir=tmp_path)
        assert s.revisions_file == tmp_path / "sync-revisions.json"
        assert s.snapshot_policy_file == tmp_path / "snapshot-policy.json"
        assert s.backup_dir == tmp_path / "sync-backups"
        assert s.sync_log_dir == tmp_path / "sync-logs"

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("WEBDAV_URL", "https://dav.example.com/remote")
        monkeypatch.setenv("MAX_DELTA", "50")
        s = Settings(_env_file=None)
        assert s.webdav_url == "https://dav.example.com/remote"
        assert s.max_delta == 50

    def test_settings_from_fixture(self, test_settings: Settings) -> None:
        assert test_settings.debug is True
        assert test_settings.device_id == "device-test"


class TestValidateRuntimeConfig:
    def test_accepts_https_with_credentials(self) -> None:
        s = Settings(
            _env_file=None,
            webdav_url="https://dav.example.com/dav",
            webdav_username="user",
            webdav_password="secret",
        )
        s.validate_runtime_config()

    def test_rejects_missing_credentials_outside_debug(self) -> None:
        s = Settings(_env_file=None, webdav_url="https://dav.example.com/dav")
        with pytest.raises(ValueError, match="WEBDAV_USERNAME"):
            s.validate_runtime_config()

    def test_debug_allows_missing_credentials(self) -> None:
        s = Settings(_env_file=None, debug=True, webdav_url="http://localhost:8080/dav")
        s.validate_runtime_config()

    def test_rejects_plain_http_for_remote_host(self) -> None:
        s = Settings(_env_file=None, debug=True, webdav_url="http://dav.example.com/dav")
        with pytest.raises(ValueError, match="HTTPS"):
            s.validate_runtime_config()

    def test_rejects_url_without_scheme(self) -> None:
        s = Settings(_env_file=None, debug=True, webdav_url="dav.example.com")
        with pytest.raises(ValueError, match="scheme and host"):
            s.validate_runtime_config()

    def test_rejects_relative_remote_root(self) -> None:
        s = Settings(
            _env_file=None,
            debug=True,
            webdav_url="https://dav.example.com/dav",
            remote_root="FlashNote",
        )
        with pytest.raises(ValueError, match="REMOTE_ROOT"):
            s.validate_runtime_config()


class TestCliEntry:
    def test_cli_entry_uses_app_settings(self) -> None:
        """cli_entry() should use the global app's settings, not create a new Settings()."""
        from notesync.main import app, cli_entry

        original_settings = getattr(app.state, "settings", None)
        app.state.settings = Settings(_env_file=None, host="127.0.0.1", port=9999, debug=True)

        try:
            with patch("uvicorn.run") as mock_run:
                cli_entry()

            mock_run.assert_called_once_with(
                "notesync.main:app",
                host="127.0.0.1",
                port=9999,
                reload=True,
            )
        finally:
            if original_settings is None:
                del app.state.settings
            else:
                app.state.settings = original_settings
