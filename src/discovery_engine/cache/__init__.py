"""
Cache stores for discovery-engine.

- CacheStore: protocol every cache backend satisfies
- InMemoryCacheStore: process-local store for tests and single instances
- RedisCacheStore: shared store backed by redis.asyncio
"""

from discovery_engine.cache.memory import InMemoryCacheStore
from discovery_engine.cache.protocol import CacheStore
from discovery_engine.cache.redis import RedisCacheStore

__all__ = [
    "CacheStore",
    "InMemoryCacheStore",
    "RedisCacheStore",
]
