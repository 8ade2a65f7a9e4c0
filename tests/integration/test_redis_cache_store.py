"""Integration tests for RedisCacheStore against a live Redis."""

from uuid import uuid4

import pytest

from discovery_engine.cache import RedisCacheStore


@pytest.mark.integration
@pytest.mark.asyncio
async def test_redis_set_get_and_invalidate(skip_if_no_redis):
    """Values round-trip as JSON and glob invalidation only touches this store's prefix."""
    prefix = f"discovery-test-{uuid4().hex[:8]}:"
    store = RedisCacheStore.from_url(host="localhost", port=6379, db=15, key_prefix=prefix)

    try:
        await store.set("user_preferences:u1", [0.25, 0.75], ttl_seconds=60)
        await store.set("discovery_feed:u1", {"items": ["p1"]}, ttl_seconds=60)
        await store.set("discovery_feed:u2", {"items": ["p2"]}, ttl_seconds=60)

        assert await store.get("user_preferences:u1") == [0.25, 0.75]

        removed = await store.invalidate_pattern("discovery_feed:*")

        assert removed == 2
        assert await store.get("discovery_feed:u1") is None
        assert await store.get("user_preferences:u1") == [0.25, 0.75]

    finally:
        try:
            await store.invalidate_pattern("*")
        finally:
            await store.close()
