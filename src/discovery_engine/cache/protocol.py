"""
Cache store protocol for discovery-engine.

Every component that caches (vector search results, embeddings, preference
vectors, behavior profiles) talks to a CacheStore. Values must be
JSON-serialisable so the same data works with the in-memory and Redis stores.
"""

from typing import Any, Optional, Protocol

from typing_extensions import runtime_checkable


@runtime_checkable
class CacheStore(Protocol):
    """
    Protocol for a shared key-value cache with per-key expiry.

    Keys are plain strings; pattern invalidation uses shell-style globs
    (``*`` and ``?``), matching the semantics of Redis ``SCAN MATCH``.
    """

    async def get(self, key: str) -> Optional[Any]:
        """
        Return the cached value, or None on miss/expiry.
        """
        ...

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """
        Store a value.

        Args:
            key: Cache key
            value: JSON-serialisable value
            ttl_seconds: Expiry in seconds (None = no expiry)
        """
        ...

    async def delete(self, key: str) -> None:
        """Remove a single key. Missing keys are ignored."""
        ...

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        Remove every key matching a glob pattern.

        Returns:
            Number of keys removed
        """
        ...
