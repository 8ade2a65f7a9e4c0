"""
Unit tests for VectorStoreClient.

The Qdrant client is replaced with an AsyncMock so these tests exercise
provisioning, caching, batching and error mapping without a server.
"""

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from qdrant_client.http.exceptions import UnexpectedResponse

from discovery_engine.cache import InMemoryCacheStore
from discovery_engine.errors import UpstreamUnavailableError, ValidationError, VectorStoreError
from discovery_engine.utils.hashing import point_id
from discovery_engine.vector import CollectionConfig, VectorPayload, VectorRecord, VectorStoreClient

DIMS = 4


def make_point(original_id, score=0.9, vector=None, **payload):
    return SimpleNamespace(
        id=point_id(original_id),
        score=score,
        payload={"original_id": original_id, **payload},
        vector=vector,
    )


@pytest.fixture
def qdrant():
    """AsyncMock standing in for AsyncQdrantClient."""
    client = AsyncMock()
    client.collection_exists.return_value = True
    client.query_points.return_value = SimpleNamespace(
        points=[make_point("p1", 0.95, user_id="u2"), make_point("p2", 0.80, user_id="u3")]
    )
    return client


@pytest.fixture
def cache():
    return InMemoryCacheStore()


@pytest.fixture
def store(qdrant, cache):
    return VectorStoreClient(
        qdrant,
        cache,
        CollectionConfig(name="posts", dimensions=DIMS),
        backoff_base=0,
    )


@pytest.mark.asyncio
async def test_ensure_collection_creates_once(qdrant, store):
    """Two calls with the same config make at most one creation request."""
    qdrant.collection_exists.return_value = False

    await store.ensure_collection()
    qdrant.collection_exists.return_value = True
    await store.ensure_collection()

    assert qdrant.create_collection.await_count == 1
    assert qdrant.collection_exists.await_count == 1
    kwargs = qdrant.create_collection.await_args.kwargs
    assert kwargs["collection_name"] == "posts"
    assert kwargs["vectors_config"].size == DIMS
    assert kwargs["hnsw_config"].m == 32
    assert kwargs["quantization_config"] is not None


@pytest.mark.asyncio
async def test_ensure_collection_leaves_existing_collection_alone(qdrant, store):
    await store.ensure_collection()
    await store.ensure_collection()

    qdrant.create_collection.assert_not_awaited()
    assert qdrant.collection_exists.await_count == 1


@pytest.mark.asyncio
async def test_search_vectors_maps_original_ids(qdrant, store):
    results = await store.search_vectors([0.1, 0.2, 0.3, 0.4], limit=2)

    assert [r.id for r in results] == ["p1", "p2"]
    assert results[0].score == 0.95
    assert results[0].payload.user_id == "u2"
    assert qdrant.query_points.await_args.kwargs["limit"] == 2


@pytest.mark.asyncio
async def test_search_vectors_uses_cache(qdrant, store):
    vector = [0.1, 0.2, 0.3, 0.4]

    first = await store.search_vectors(vector, limit=2)
    second = await store.search_vectors(vector, limit=2)

    assert first == second
    assert qdrant.query_points.await_count == 1
    metrics = store.get_metrics()
    assert metrics.cache_hits == 1
    assert metrics.cache_misses == 1


@pytest.mark.asyncio
async def test_upsert_invalidates_cached_searches(qdrant, store):
    """A repeated search after an upsert reflects the upsert."""
    vector = [0.1, 0.2, 0.3, 0.4]
    await store.search_vectors(vector, limit=2)

    qdrant.query_points.return_value = SimpleNamespace(points=[make_point("p9", 0.99)])
    await store.upsert_vector(VectorRecord(id="p9", vector=vector))
    results = await store.search_vectors(vector, limit=2)

    assert [r.id for r in results] == ["p9"]
    assert qdrant.query_points.await_count == 2


@pytest.mark.asyncio
async def test_search_with_non_positive_limit_returns_empty(qdrant, store):
    assert await store.search_vectors([0.1, 0.2, 0.3, 0.4], limit=0) == []
    qdrant.query_points.assert_not_awaited()


@pytest.mark.asyncio
async def test_search_with_empty_vector_raises(store):
    with pytest.raises(ValidationError):
        await store.search_vectors([], limit=5)


@pytest.mark.asyncio
async def test_batch_search_splits_into_sub_batches(qdrant, store):
    """25 vectors are sent as sub-batches of 10, 10 and 5; results keep input order."""

    async def query_batch_points(collection_name, requests):
        return [
            SimpleNamespace(points=[make_point(f"hit-{request.query[0]:.0f}")])
            for request in requests
        ]

    qdrant.query_batch_points.side_effect = query_batch_points
    vectors = [[float(i), 0.0, 0.0, 0.0] for i in range(25)]

    results = await store.batch_search_vectors(vectors, limit=1)

    assert qdrant.query_batch_points.await_count == 3
    sizes = [len(call.kwargs["requests"]) for call in qdrant.query_batch_points.await_args_list]
    assert sizes == [10, 10, 5]
    assert len(results) == 25
    assert [r[0].id for r in results] == [f"hit-{i}" for i in range(25)]


@pytest.mark.asyncio
async def test_batch_search_fails_fast(qdrant, store):
    qdrant.query_batch_points.side_effect = UnexpectedResponse(
        400, "Bad Request", b"{}", httpx.Headers()
    )

    with pytest.raises(VectorStoreError):
        await store.batch_search_vectors([[0.0] * DIMS] * 15, limit=1)

    assert qdrant.query_batch_points.await_count == 1


@pytest.mark.asyncio
async def test_application_errors_are_not_retried(qdrant, store):
    qdrant.query_points.side_effect = UnexpectedResponse(
        404, "Not Found", b"{}", httpx.Headers()
    )

    with pytest.raises(VectorStoreError) as exc_info:
        await store.search_vectors([0.1, 0.2, 0.3, 0.4])

    assert exc_info.value.status_code == 404
    assert qdrant.query_points.await_count == 1
    assert store.get_metrics().failed_requests == 1


@pytest.mark.asyncio
async def test_transport_errors_are_retried(qdrant, store):
    qdrant.query_points.side_effect = httpx.ConnectError("connection refused")

    with pytest.raises(UpstreamUnavailableError):
        await store.search_vectors([0.1, 0.2, 0.3, 0.4])

    assert qdrant.query_points.await_count == 3


@pytest.mark.asyncio
async def test_upsert_rejects_wrong_dimension(qdrant, store):
    with pytest.raises(ValidationError):
        await store.upsert_vector(VectorRecord(id="p1", vector=[0.1, 0.2]))

    qdrant.upsert.assert_not_awaited()


@pytest.mark.asyncio
async def test_upsert_stores_hashed_id_and_original_id(qdrant, store):
    await store.upsert_vector(
        VectorRecord(
            id="post-1",
            vector=[0.1, 0.2, 0.3, 0.4],
            payload=VectorPayload(user_id="u1", extra={"source": "import"}),
        )
    )

    point = qdrant.upsert.await_args.kwargs["points"][0]
    assert point.id == point_id("post-1")
    assert point.payload["original_id"] == "post-1"
    assert point.payload["source"] == "import"


@pytest.mark.asyncio
async def test_batch_upsert_batches_of_100(qdrant, store):
    records = [VectorRecord(id=f"p{i}", vector=[0.1, 0.2, 0.3, 0.4]) for i in range(250)]

    written = await store.batch_upsert_vectors(records)

    assert written == 250
    sizes = sorted(len(call.kwargs["points"]) for call in qdrant.upsert.await_args_list)
    assert sizes == [50, 100, 100]


@pytest.mark.asyncio
async def test_batch_upsert_keeps_three_batches_in_flight(qdrant, store):
    in_flight = 0
    peak = 0

    async def upsert(**kwargs):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1

    qdrant.upsert.side_effect = upsert
    records = [VectorRecord(id=f"p{i}", vector=[0.1, 0.2, 0.3, 0.4]) for i in range(700)]

    written = await store.batch_upsert_vectors(records)

    assert written == 700
    assert qdrant.upsert.await_count == 7
    assert peak == 3


@pytest.mark.asyncio
async def test_batch_upsert_invalidates_cache_even_on_failure(qdrant, store, cache):
    await cache.set("vector_search:abc", [])
    qdrant.upsert.side_effect = [None, UnexpectedResponse(500, "Error", b"{}", httpx.Headers())]
    records = [VectorRecord(id=f"p{i}", vector=[0.1, 0.2, 0.3, 0.4]) for i in range(150)]

    with pytest.raises(VectorStoreError):
        await store.batch_upsert_vectors(records)

    assert await cache.get("vector_search:abc") is None


@pytest.mark.asyncio
async def test_collision_check_rejects_foreign_point(qdrant, cache):
    store = VectorStoreClient(
        qdrant, cache, CollectionConfig(name="posts", dimensions=DIMS), check_collisions=True
    )
    qdrant.retrieve.return_value = [
        SimpleNamespace(id=point_id("post-1"), payload={"original_id": "someone-else"}, vector=None)
    ]

    with pytest.raises(ValidationError):
        await store.upsert_vector(VectorRecord(id="post-1", vector=[0.1, 0.2, 0.3, 0.4]))

    qdrant.upsert.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_vectors_keys_by_original_id(qdrant, store):
    qdrant.retrieve.return_value = [
        SimpleNamespace(id=point_id("p1"), payload={"original_id": "p1"}, vector=[1.0, 0.0, 0.0, 0.0]),
    ]

    vectors = await store.get_vectors(["p1", "p2", "p1"])

    assert vectors == {"p1": [1.0, 0.0, 0.0, 0.0]}
    assert len(qdrant.retrieve.await_args.kwargs["ids"]) == 2


@pytest.mark.asyncio
async def test_search_by_metadata_builds_filter(qdrant, store):
    qdrant.scroll.return_value = (
        [make_point("p1", vector=[1.0, 0.0, 0.0, 0.0], content_type="image")],
        None,
    )

    records = await store.search_by_metadata({"original_id": ["p1", "p2"]}, include_embedding=False)

    assert [r.id for r in records] == ["p1"]
    assert records[0].vector is None
    scroll_filter = qdrant.scroll.await_args.kwargs["scroll_filter"]
    assert scroll_filter.must[0].key == "original_id"


@pytest.mark.asyncio
async def test_search_posts_returns_candidates(qdrant, store):
    qdrant.scroll.return_value = (
        [
            make_point(
                "p1",
                vector=[1.0, 0.0, 0.0, 0.0],
                user_id="u2",
                text="hello",
                created_at="2026-01-01T00:00:00+00:00",
                hashtags=["art"],
            )
        ],
        None,
    )

    posts = await store.search_posts(limit=10, exclude_user_id="u1", include_embedding=True)

    assert posts[0].id == "p1"
    assert posts[0].content == "hello"
    assert posts[0].embedding == [1.0, 0.0, 0.0, 0.0]
    assert qdrant.scroll.await_args.kwargs["scroll_filter"].must_not[0].key == "user_id"


@pytest.mark.asyncio
async def test_search_posts_accepts_zulu_timestamps(qdrant, store):
    qdrant.scroll.return_value = (
        [make_point("p1", user_id="u2", text="hello", created_at="2026-01-01T08:30:00Z")],
        None,
    )

    posts = await store.search_posts(limit=10)

    assert posts[0].created_at == datetime(2026, 1, 1, 8, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_delete_vector_invalidates_cache(qdrant, store, cache):
    await cache.set("vector_search:abc", [])

    await store.delete_vector("p1")

    assert qdrant.delete.await_args.kwargs["points_selector"].points == [point_id("p1")]
    assert await cache.get("vector_search:abc") is None
