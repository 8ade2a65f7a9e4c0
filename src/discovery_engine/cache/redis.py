"""
Redis cache store.

Shared cache for production deployments with multiple replicas. Values are
stored as JSON strings under a configurable key prefix.
"""

import json
import logging
from typing import Any, List, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RedisCacheStore:
    """
    Redis implementation of the CacheStore protocol.

    Read/write failures are logged and treated as a cache miss or a no-op so a
    Redis outage degrades to uncached operation. Pattern invalidation
    propagates errors; callers (the invalidation engine) report them.
    """

    def __init__(
        self,
        client: "redis.Redis",
        key_prefix: str = "discovery:",
        delete_batch_size: int = 500,
    ):
        """
        Initialize the Redis store.

        Args:
            client: redis.asyncio client (decode_responses=True expected)
            key_prefix: Prefix for every key (default: "discovery:")
            delete_batch_size: Keys deleted per DEL command during pattern invalidation
        """
        self.client = client
        self._key_prefix = key_prefix
        self._delete_batch_size = delete_batch_size

    @classmethod
    def from_url(cls, host: str = "localhost", port: int = 6379, db: int = 0, key_prefix: str = "discovery:"):
        client = redis.Redis(host=host, port=port, db=db, decode_responses=True)
        logger.info(f"RedisCacheStore initialized (host={host}:{port}, db={db})")
        return cls(client, key_prefix=key_prefix)

    def _get_key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(self._get_key(key))
        except RedisError as e:
            logger.warning(f"Redis get failed for '{key}': {e}")
            return None

        if raw is None:
            return None

        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning(f"Discarding undecodable cache entry '{key}': {e}")
            return None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        try:
            await self.client.set(self._get_key(key), json.dumps(value), ex=ttl_seconds)
        except RedisError as e:
            logger.warning(f"Redis set failed for '{key}': {e}")

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(self._get_key(key))
        except RedisError as e:
            logger.warning(f"Redis delete failed for '{key}': {e}")

    async def invalidate_pattern(self, pattern: str) -> int:
        removed = 0
        batch: List[str] = []

        async for key in self.client.scan_iter(match=self._get_key(pattern), count=500):
            batch.append(key)
            if len(batch) >= self._delete_batch_size:
                removed += await self.client.delete(*batch)
                batch = []

        if batch:
            removed += await self.client.delete(*batch)

        logger.debug(f"Invalidated {removed} Redis keys matching '{pattern}'")
        return removed

    async def close(self) -> None:
        await self.client.aclose()
