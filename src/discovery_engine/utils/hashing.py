"""Stable hashing helpers for point ids and cache keys."""

import hashlib
import json
from typing import Any

_MAX_POINT_ID = 0x7FFF_FFFF_FFFF_FFFF


def point_id(original_id: str) -> int:
    """
    Map a string id onto the vector index's unsigned integer id space.

    BLAKE2b-64 truncated to 63 bits, so the value is stable across processes
    and fits both signed and unsigned 64-bit fields. The original id is always
    kept in the payload as ``original_id``.
    """
    digest = hashlib.blake2b(original_id.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") & _MAX_POINT_ID


def content_hash(content: Any) -> str:
    """SHA-256 hex digest of a string, or of the canonical JSON of any other value."""
    if not isinstance(content, str):
        content = json.dumps(content, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(content.encode("utf-8")).hexdigest()
