"""
Tests for RecommendationEngine.

Uses the in-memory repository and cache with a mocked vector store.
"""

import asyncio
import math
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from discovery_engine.cache import InMemoryCacheStore
from discovery_engine.errors import UpstreamUnavailableError
from discovery_engine.models import CandidateContent, ContentRow, RecommendationOptions
from discovery_engine.recommendation import RecommendationEngine
from discovery_engine.storage import InMemoryContentRepository

A = [1.0, 0.0, 0.0, 0.0]
B = [0.0, 1.0, 0.0, 0.0]
C = [0.0, 0.0, 1.0, 0.0]


def post(post_id, hours_ago, user_id="author", **fields):
    return ContentRow(
        id=post_id,
        user_id=user_id,
        content=f"post {post_id}",
        created_at=datetime.now(timezone.utc) - timedelta(hours=hours_ago),
        **fields,
    )


@pytest.fixture
def repository():
    repo = InMemoryContentRepository()
    repo.add_content(
        post("liked-a", 30),
        post("liked-b", 31),
        post("new", 1),
        post("mid", 5),
        post("old", 20),
    )
    return repo


@pytest.fixture
def stored_vectors():
    return {"liked-a": A, "liked-b": B, "new": C, "mid": A, "old": B}


@pytest.fixture
def vector_store(stored_vectors):
    store = Mock()

    async def get_vectors(ids):
        return {item: stored_vectors[item] for item in ids if item in stored_vectors}

    store.get_vectors = AsyncMock(side_effect=get_vectors)
    return store


@pytest.fixture
def cache():
    return InMemoryCacheStore()


@pytest.fixture
def engine(repository, vector_store, cache):
    return RecommendationEngine(repository, vector_store, cache)


@pytest.mark.asyncio
async def test_zero_history_user_gets_recency_fallback(engine):
    """A user with no saves or likes gets every candidate newest first."""
    feed = await engine.generate_recommendations("newcomer", limit=10)

    assert [item.id for item in feed.items] == ["new", "mid", "old", "liked-a", "liked-b"]
    assert feed.metrics.fallback_reason == "no_preference_signal"
    assert feed.metrics.degraded is False


@pytest.mark.asyncio
async def test_personalized_ranking_prefers_similar_content(engine, repository):
    repository.add_like("u1", "liked-a")

    feed = await engine.generate_recommendations("u1", limit=10)

    assert feed.metrics.fallback_reason is None
    assert "liked-a" not in [item.id for item in feed.items]
    assert feed.items[0].id == "mid"
    assert feed.items[0].similarity_score == pytest.approx(1.0)
    assert all(0.0 <= item.final_score <= 1.0 for item in feed.items)
    scores = [item.final_score for item in feed.items]
    assert scores == sorted(scores, reverse=True)
    assert feed.metrics.quality_score > 0


@pytest.mark.asyncio
async def test_centroid_reduces_similarity_of_single_match(engine, repository):
    """Liking A and B makes a copy of A score 1/sqrt(2) on similarity instead of 1.0."""
    repository.add_like("single", "liked-a")
    repository.add_like("both", "liked-a")
    repository.add_like("both", "liked-b")

    single = await engine.generate_recommendations("single", limit=10)
    both = await engine.generate_recommendations("both", limit=10)

    mid_single = next(item for item in single.items if item.id == "mid")
    mid_both = next(item for item in both.items if item.id == "mid")
    assert mid_single.similarity_score == pytest.approx(1.0)
    assert mid_both.similarity_score == pytest.approx(1 / math.sqrt(2))
    assert mid_both.final_score < mid_single.final_score


@pytest.mark.asyncio
async def test_preference_vector_is_cached(engine, repository, vector_store, cache):
    repository.add_save("u1", "liked-a")
    repository.add_like("u1", "liked-b")

    vector = await engine.get_user_preference_vector("u1")
    again = await engine.get_user_preference_vector("u1")

    assert vector == pytest.approx([0.5, 0.5, 0.0, 0.0])
    assert again == vector
    assert vector_store.get_vectors.await_count == 1
    assert await cache.get("user_preferences:u1") == vector


@pytest.mark.asyncio
async def test_preference_vector_none_without_signal(engine):
    assert await engine.get_user_preference_vector("nobody") is None


@pytest.mark.asyncio
async def test_vector_timeout_degrades_to_limit_sized_fallback(engine, repository, vector_store):
    repository.add_like("u1", "liked-a")
    vector_store.get_vectors.side_effect = UpstreamUnavailableError("Qdrant retrieve exceeded deadline")

    feed = await engine.generate_recommendations("u1", limit=2)

    assert len(feed.items) == 2
    assert [item.id for item in feed.items] == ["new", "mid"]
    assert feed.metrics.degraded is True
    assert feed.metrics.fallback_reason.startswith("error")


@pytest.mark.asyncio
async def test_repository_failure_propagates(engine, repository):
    repository.get_recent_content = AsyncMock(side_effect=RuntimeError("database down"))

    with pytest.raises(RuntimeError):
        await engine.generate_recommendations("u1", limit=5)


@pytest.mark.asyncio
async def test_no_embedded_candidates_falls_back(engine, repository, stored_vectors):
    repository.add_like("u1", "liked-a")
    for key in ("new", "mid", "old", "liked-b"):
        stored_vectors.pop(key)

    feed = await engine.generate_recommendations("u1", limit=10)

    assert feed.metrics.fallback_reason == "no_embedded_candidates"
    assert [item.id for item in feed.items] == ["new", "mid", "old", "liked-b"]


@pytest.mark.asyncio
async def test_seen_content_excluded(engine):
    await engine.update_seen_content("u1", ["new"])

    feed = await engine.generate_recommendations("u1", limit=10)
    assert "new" not in [item.id for item in feed.items]

    feed = await engine.generate_recommendations(
        "u1", limit=10, options=RecommendationOptions(exclude_seen=False)
    )
    assert "new" in [item.id for item in feed.items]


@pytest.mark.asyncio
async def test_private_content_only_visible_to_followers(engine, repository):
    repository.add_content(post("secret", 0.5, user_id="friend", is_private=True))

    stranger = await engine.generate_recommendations("stranger", limit=10)
    repository.add_follow("follower", "friend")
    follower = await engine.generate_recommendations("follower", limit=10)

    assert "secret" not in [item.id for item in stranger.items]
    assert follower.items[0].id == "secret"


@pytest.mark.asyncio
async def test_batch_retrieve_embeddings_uses_cache(engine, vector_store, cache):
    candidates = await engine.get_candidate_content("u1", limit=10, with_embeddings=False)

    first = await engine.batch_retrieve_embeddings(candidates)
    for candidate in candidates:
        candidate.embedding = None
    calls = vector_store.get_vectors.await_count
    second = await engine.batch_retrieve_embeddings(candidates)

    assert first == second == 5
    assert vector_store.get_vectors.await_count == calls
    assert await cache.get("embedding:content:new") == C


@pytest.mark.asyncio
async def test_generate_missing_embeddings(repository, vector_store, cache, stored_vectors):
    stored_vectors.pop("new")
    embedding_service = Mock()
    embedding_service.generate_post_embedding = AsyncMock(
        return_value=Mock(embedding=Mock(vector=[0.0, 0.0, 0.0, 1.0]))
    )
    engine = RecommendationEngine(repository, vector_store, cache, embedding_service=embedding_service)

    candidates = await engine.get_candidate_content("u1", limit=10, generate_missing=True)

    new = next(c for c in candidates if c.id == "new")
    assert new.embedding == [0.0, 0.0, 0.0, 1.0]
    embedding_service.generate_post_embedding.assert_awaited_once()


@pytest.mark.asyncio
async def test_clear_caches(engine, repository, cache):
    repository.add_like("u1", "liked-a")
    await engine.generate_recommendations("u1", limit=10)

    removed = await engine.clear_caches("u1")

    assert removed >= 1
    assert await cache.get("user_preferences:u1") is None


@pytest.mark.asyncio
async def test_saves_beyond_preference_cap_are_still_excluded(repository, vector_store, cache, stored_vectors):
    """Everything the user saved stays out of the feed, not only the 100 most recent saves."""
    for i in range(150):
        repository.add_content(post(f"p{i}", 2 + i * 0.1))
        stored_vectors[f"p{i}"] = A
        repository.add_save("viewer", f"p{i}")
    engine = RecommendationEngine(repository, vector_store, cache)

    feed = await engine.generate_recommendations("viewer", limit=20)

    returned = {item.id for item in feed.items}
    assert returned
    assert not returned & {f"p{i}" for i in range(150)}


@pytest.mark.asyncio
async def test_batch_retrieve_embeddings_keeps_three_partitions_in_flight(cache):
    in_flight = 0
    peak = 0

    async def get_vectors(ids):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return {item: A for item in ids}

    vector_store = Mock()
    vector_store.get_vectors = AsyncMock(side_effect=get_vectors)
    engine = RecommendationEngine(InMemoryContentRepository(), vector_store, cache)
    now = datetime.now(timezone.utc)
    candidates = [
        CandidateContent(id=f"c{i}", user_id="author", content="text", created_at=now) for i in range(400)
    ]

    retrieved = await engine.batch_retrieve_embeddings(candidates)

    assert retrieved == 400
    assert vector_store.get_vectors.await_count == 8
    assert peak == 3
