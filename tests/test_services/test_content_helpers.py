"""Tests for content hashing and note title extraction."""

from __future__ import annotations

from notesync.filesystem.frontmatter import UNTITLED, extract_title
from notesync.services.hash_service import hash_content


class TestHashContent:
    def test_hash_string(self) -> None:
        h = hash_content("hello")
        assert len(h) == 64  # SHA-256 hex digest
        assert h == hash_content("hello")

    def test_str_and_utf8_bytes_agree(self) -> None:
        assert hash_content("zażółć") == hash_content("zażółć".encode())

    def test_different_content(self) -> None:
        assert hash_content("a") != hash_content("b")


class TestExtractTitle:
    def test_heading(self) -> None:
        assert extract_title("# My Title\n\nContent") == "My Title"

    def test_front_matter_title_wins(self) -> None:
        content = "---\ntitle: From Meta\n---\n# Heading\n"
        assert extract_title(content) == "From Meta"

    def test_subheading_is_not_a_title(self) -> None:
        assert extract_title("## Section\n# Real") == "Real"

    def test_first_line_fallback(self) -> None:
        assert extract_title("\n\nshopping list\n- milk") == "shopping list"

    def test_untitled(self) -> None:
        assert extract_title("   \n") == UNTITLED

    def test_truncated(self) -> None:
        assert len(extract_title("# " + "x" * 500)) == 200
