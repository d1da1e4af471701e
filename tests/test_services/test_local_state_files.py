"""Tests for hashing, atomic state files, device identity and title extraction."""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from notesync.filesystem.device_id import load_or_create_device_id
from notesync.filesystem.frontmatter import UNTITLED, extract_title
from notesync.filesystem.state_file import read_json, write_json_atomic
from notesync.services.hash_service import hash_content

if TYPE_CHECKING:
    from pathlib import Path


class TestHashContent:
    def test_sha256_hex(self) -> None:
        assert hash_content(b"hello") == hashlib.sha256(b"hello").hexdigest()

    def test_str_hashed_as_utf8(self) -> None:
        assert hash_content("zażółć") == hash_content("zażółć".encode())

    def test_different_content_different_hash(self) -> None:
        assert hash_content("a") != hash_content("b")


class TestStateFile:
    def test_write_then_read(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "state.json"
        write_json_atomic(path, {"a": 1, "b": [1, 2]})
        assert read_json(path) == {"a": 1, "b": [1, 2]}

    def test_no_temp_files_left_behind(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        write_json_atomic(path, {"a": 1})
        write_json_atomic(path, {"a": 2})
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_failed_write_keeps_previous_version(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        write_json_atomic(path, {"a": 1})
        with (
            patch("notesync.filesystem.state_file.os.replace", side_effect=OSError("disk full")),
            pytest.raises(OSError, match="disk full"),
        ):
            write_json_atomic(path, {"a": 2})
        assert read_json(path) == {"a": 1}
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_read_missing_returns_none(self, tmp_path: Path) -> None:
        assert read_json(tmp_path / "absent.json") is None

    def test_read_corrupt_returns_none(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json")
        assert read_json(path) is None

    def test_read_non_object_returns_none(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps([1, 2, 3]))
        assert read_json(path) is None


class TestDeviceId:
    def test_created_once_and_reused(self, tmp_path: Path) -> None:
        first = load_or_create_device_id(tmp_path)
        second = load_or_create_device_id(tmp_path)
        assert first == second
        assert first.startswith("device-")
        assert (tmp_path / "device-id").read_text().strip() == first

    def test_empty_file_regenerated(self, tmp_path: Path) -> None:
        (tmp_path / "device-id").write_text("\n")
        device_id = load_or_create_device_id(tmp_path)
        assert device_id.startswith("device-")

    def test_existing_id_kept(self, tmp_path: Path) -> None:
        (tmp_path / "device-id").write_text("laptop\n")
        assert load_or_create_device_id(tmp_path) == "laptop"


class TestExtractTitle:
    def test_front_matter_title(self) -> None:
        assert extract_title("---\ntitle: From Meta\n---\n# Heading\n") == "From Meta"

    def test_first_heading(self) -> None:
        assert extract_title("intro line\n# Real Title\nbody") == "Real Title"

    def test_first_non_empty_line(self) -> None:
        assert extract_title("\n\n  shopping list  \n- milk") == "shopping list"

    def test_subheading_used_as_plain_line(self) -> None:
        assert extract_title("## Section\ntext") == "Section"

    def test_empty_note_is_untitled(self) -> None:
        assert extract_title("") == UNTITLED
        assert extract_title("   \n\n") == UNTITLED

    def test_malformed_front_matter_treated_as_text(self) -> None:
        assert extract_title("---\ntitle: [unclosed\n---\nbody") == "---"

    def test_truncated(self) -> None:
        assert len(extract_title("x" * 500)) == 200
