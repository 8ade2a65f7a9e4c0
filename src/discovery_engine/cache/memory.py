"""
In-memory cache store.

Suitable for testing and single-process deployments. For multiple replicas
use the Redis implementation instead.
"""

import copy
import logging
import time
from fnmatch import fnmatchcase
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


class InMemoryCacheStore:
    """
    In-memory implementation of the CacheStore protocol.

    Values are deep-copied on the way in and out so callers can never mutate
    cached state. Expiry uses the monotonic clock. Expired entries are dropped
    when read, on every pattern invalidation and by a sweep every
    `sweep_interval` writes.
    """

    def __init__(self, sweep_interval: int = 100):
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._sweep_interval = max(sweep_interval, 1)
        self._writes = 0
        logger.info("InMemoryCacheStore initialized")

    def _expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and time.monotonic() >= expires_at

    def _sweep(self) -> int:
        expired = [key for key, (_, expires_at) in self._data.items() if self._expired(expires_at)]
        for key in expired:
            del self._data[key]
        return len(expired)

    async def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None

        value, expires_at = entry
        if self._expired(expires_at):
            del self._data[key]
            return None

        return copy.deepcopy(value)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        self._data[key] = (copy.deepcopy(value), expires_at)

        self._writes += 1
        if self._writes % self._sweep_interval == 0:
            swept = self._sweep()
            if swept:
                logger.debug(f"Swept {swept} expired keys")

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def invalidate_pattern(self, pattern: str) -> int:
        self._sweep()
        matched = [key for key in self._data if fnmatchcase(key, pattern)]
        for key in matched:
            del self._data[key]

        logger.debug(f"Invalidated {len(matched)} keys matching '{pattern}'")
        return len(matched)

    def size(self) -> int:
        """Stored entries, including expired ones not yet swept."""
        return len(self._data)

    def keys(self) -> List[str]:
        """Live (non-expired) keys. Used by tests and diagnostics."""
        return [key for key, (_, expires_at) in self._data.items() if not self._expired(expires_at)]

    def clear(self) -> None:
        """Drop everything."""
        self._data.clear()
