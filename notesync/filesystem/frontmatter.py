"""Note title extraction."""

from __future__ import annotations

import frontmatter

UNTITLED = "Untitled"
_MAX_TITLE_LENGTH = 200


def extract_title(content: str) -> str:
    """Derive a display title for a note.

    Uses the ``title`` front matter field when present, then the first
    ``# heading`` of the body, then the first non-empty line.
    """
    try:
        post = frontmatter.loads(content)
    except Exception:  # malformed front matter is treated as plain text
        body = content
    else:
        title = post.metadata.get("title")
        if isinstance(title, str) and title.strip():
            return title.strip()[:_MAX_TITLE_LENGTH]
        body = post.content

    first_line = ""
    for line in body.strip().split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("# ") and not stripped.startswith("## "):
            return stripped.removeprefix("# ").strip()[:_MAX_TITLE_LENGTH]
        if not first_line:
            first_line = stripped.lstrip("#").strip()
    return first_line[:_MAX_TITLE_LENGTH] or UNTITLED
