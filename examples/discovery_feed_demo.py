"""
Discovery Feed Example

Builds a discovery feed end to end using Qdrant's local in-memory mode, the
in-memory content repository and the in-memory cache. No external services
are needed.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from qdrant_client import AsyncQdrantClient

from discovery_engine import DiscoveryService, InteractionEvent
from discovery_engine.behavior import BehaviorTracker
from discovery_engine.cache import InMemoryCacheStore
from discovery_engine.invalidation import CacheInvalidationEngine
from discovery_engine.models import ContentRow
from discovery_engine.monitoring import PerformanceMonitor
from discovery_engine.recommendation import RecommendationEngine
from discovery_engine.storage import InMemoryContentRepository
from discovery_engine.vector import CollectionConfig, VectorPayload, VectorRecord, VectorStoreClient

DIMS = 4

POSTS = [
    ("hike-1", "Sunrise above the clouds", ["hiking"], [0.9, 0.1, 0.0, 0.0], 2),
    ("hike-2", "Trail running gear review", ["hiking", "gear"], [0.8, 0.2, 0.1, 0.0], 5),
    ("food-1", "Street food in Lisbon", ["food"], [0.0, 0.1, 0.9, 0.1], 1),
    ("food-2", "Sourdough, day three", ["baking"], [0.1, 0.0, 0.8, 0.3], 8),
    ("art-1", "Charcoal study", ["art"], [0.0, 0.9, 0.0, 0.2], 3),
]


async def main():
    logging.basicConfig(level=logging.INFO)
    print("=== Discovery Feed Example ===\n")

    cache = InMemoryCacheStore()
    repository = InMemoryContentRepository()
    vector_store = VectorStoreClient(
        AsyncQdrantClient(location=":memory:"),
        cache,
        CollectionConfig(name="posts", dimensions=DIMS, quantization=None),
    )

    now = datetime.now(timezone.utc)
    records = []
    for post_id, text, hashtags, vector, hours_ago in POSTS:
        repository.add_content(
            ContentRow(
                id=post_id,
                user_id="creator",
                content=text,
                hashtags=hashtags,
                created_at=now - timedelta(hours=hours_ago),
            )
        )
        records.append(
            VectorRecord(id=post_id, vector=vector, payload=VectorPayload(user_id="creator", text=text, hashtags=hashtags))
        )
    await vector_store.batch_upsert_vectors(records)

    monitor = PerformanceMonitor()
    service = DiscoveryService(
        RecommendationEngine(repository, vector_store, cache, monitor=monitor),
        BehaviorTracker(repository, cache, vector_store=vector_store),
        CacheInvalidationEngine(cache),
        monitor=monitor,
    )
    service.start()

    print("1. Feed for a brand new user (recency fallback):")
    feed = await service.generate_discovery_feed("newcomer", limit=3)
    for item in feed.items:
        print(f"   {item.id:8} {item.content}")
    print(f"   fallback_reason={feed.metrics.fallback_reason}\n")

    print("2. A user who saved a hiking post:")
    repository.add_save("hiker", "hike-1")
    await service.track_interaction(InteractionEvent(user_id="hiker", content_id="hike-1", kind="save"))
    feed = await service.generate_discovery_feed("hiker", limit=3)
    for item in feed.items:
        print(f"   {item.id:8} final={item.final_score:.3f} similarity={item.similarity_score:.3f}")
    print(f"   quality={feed.metrics.quality_score:.3f}\n")

    await service.stop()
    await vector_store.close()

    print("3. Timings:")
    for name, stats in monitor.snapshot()["timings"].items():
        print(f"   {name}: count={stats['count']} p95={stats['p95']:.1f}ms")


if __name__ == "__main__":
    asyncio.run(main())
