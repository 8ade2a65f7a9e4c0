"""Integration tests for VectorStoreClient against a live Qdrant."""

from uuid import uuid4

import pytest
from qdrant_client import AsyncQdrantClient

from discovery_engine.cache import InMemoryCacheStore
from discovery_engine.vector import CollectionConfig, VectorPayload, VectorRecord, VectorStoreClient

DIMS = 8


def unit(index):
    vector = [0.0] * DIMS
    vector[index] = 1.0
    return vector


@pytest.mark.integration
@pytest.mark.asyncio
async def test_qdrant_upsert_search_and_fetch(skip_if_no_qdrant):
    """Provision a collection, write points and read them back by similarity and id."""
    client = AsyncQdrantClient(url="http://localhost:6333")
    config = CollectionConfig(name=f"test_posts_{uuid4().hex[:8]}", dimensions=DIMS)
    store = VectorStoreClient(client, InMemoryCacheStore(), config)

    try:
        await store.ensure_collection()
        await store.ensure_collection()

        written = await store.batch_upsert_vectors(
            [
                VectorRecord(
                    id=f"post-{i}",
                    vector=unit(i),
                    payload=VectorPayload(user_id=f"u{i}", content_type="post", hashtags=[f"tag{i}"]),
                )
                for i in range(4)
            ]
        )
        assert written == 4

        results = await store.search_vectors(unit(2), limit=2)
        assert results[0].id == "post-2"
        assert results[0].payload.hashtags == ["tag2"]

        vectors = await store.get_vectors(["post-1", "missing"])
        assert list(vectors) == ["post-1"]
        assert vectors["post-1"] == pytest.approx(unit(1))

        records = await store.search_by_metadata({"original_id": ["post-0", "post-3"]})
        assert sorted(record.id for record in records) == ["post-0", "post-3"]

        batch = await store.batch_search_vectors([unit(0), unit(3)], limit=1)
        assert [hits[0].id for hits in batch] == ["post-0", "post-3"]

        await store.delete_vector("post-2")
        results = await store.search_vectors(unit(2), limit=1)
        assert results[0].id != "post-2"

    finally:
        try:
            await client.delete_collection(config.name)
        finally:
            await store.close()
