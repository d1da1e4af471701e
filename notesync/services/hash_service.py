"""Content hashing used as the optimistic-concurrency token."""

from __future__ import annotations

import hashlib


def hash_content(content: str | bytes) -> str:
    """Compute SHA-256 hash of content.

    Strings are hashed as UTF-8 so a note hashes identically whether it comes
    from the local database or from a remote download.
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()
