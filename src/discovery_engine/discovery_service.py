"""
Discovery service - the surface exposed to the routing layer.

Wires the recommendation engine, behavior tracker, invalidation engine and
performance monitor together. Feed generation returns a result whenever the
content repository is reachable; tracking and invalidation are side effects
that never raise to the caller.
"""

import logging
from typing import Any, Awaitable, Callable, List, Optional

from discovery_engine.behavior.tracker import BehaviorTracker
from discovery_engine.cache.memory import InMemoryCacheStore
from discovery_engine.cache.protocol import CacheStore
from discovery_engine.cache.redis import RedisCacheStore
from discovery_engine.config import DiscoverySettings
from discovery_engine.embeddings.openai_provider import OpenAICompatibleProvider
from discovery_engine.embeddings.service import EmbeddingService
from discovery_engine.invalidation.engine import CacheInvalidationEngine
from discovery_engine.invalidation.models import InvalidationEvent
from discovery_engine.models import DiscoveryFeed, InteractionEvent, RecommendationOptions
from discovery_engine.monitoring.performance import PerformanceMonitor
from discovery_engine.recommendation.engine import RecommendationEngine
from discovery_engine.storage.protocols import ContentRepository
from discovery_engine.utils.side_effects import best_effort
from discovery_engine.vector.qdrant import VectorStoreClient

logger = logging.getLogger(__name__)


class DiscoveryService:
    """
    Discovery feed, interaction tracking and cache invalidation.

    Example:
        >>> service = build_discovery_service(DiscoverySettings(), repository)
        >>> service.start()
        >>> feed = await service.generate_discovery_feed("user-1", limit=20)
        >>> await service.track_interaction(InteractionEvent(user_id="user-1", content_id="p1", kind="like"))
        >>> await service.stop()
    """

    def __init__(
        self,
        engine: RecommendationEngine,
        tracker: BehaviorTracker,
        invalidation: CacheInvalidationEngine,
        monitor: Optional[PerformanceMonitor] = None,
        closers: Optional[List[Callable[[], Awaitable[Any]]]] = None,
    ):
        """
        Initialize the service.

        Args:
            engine: Ranks candidate content
            tracker: Buffers interactions and personalizes by behavior
            invalidation: Clears cache entries made stale by writes
            monitor: Optional performance monitor
            closers: Coroutines releasing upstream connections on stop()
        """
        self.engine = engine
        self.tracker = tracker
        self.invalidation = invalidation
        self.monitor = monitor
        self._closers = closers or []

    def start(self) -> None:
        self.tracker.start()
        if self.monitor is not None:
            self.monitor.start()
        logger.info("DiscoveryService started")

    async def stop(self) -> None:
        """Flush buffered interactions and deferred invalidations, then release connections."""
        await self.tracker.stop()
        await self.invalidation.stop()
        if self.monitor is not None:
            await self.monitor.stop()
        for close in self._closers:
            await best_effort(close(), "Closing upstream connection")
        logger.info("DiscoveryService stopped")

    async def generate_discovery_feed(
        self,
        user_id: str,
        limit: int = 20,
        options: Optional[RecommendationOptions] = None,
    ) -> DiscoveryFeed:
        """
        Build a user's discovery feed.

        Personalized results are re-ranked by behavior affinity; fallback
        results keep their recency order. Returned items are recorded as seen.
        """
        feed = await self.engine.generate_recommendations(user_id, limit, options)

        if feed.metrics.fallback_reason is None and feed.items:
            items = await self.tracker.get_personalized_recommendations(user_id, feed.items, limit)
            feed = DiscoveryFeed(items=items, metrics=feed.metrics)

        if feed.items:
            await best_effort(
                self.engine.update_seen_content(user_id, [item.id for item in feed.items]),
                f"Recording seen content for {user_id}",
            )
        if self.monitor is not None:
            self.monitor.increment("discovery.feeds")
            if feed.metrics.degraded:
                self.monitor.increment("discovery.degraded_feeds")
        return feed

    async def track_interaction(self, event: InteractionEvent) -> None:
        await best_effort(self.tracker.track_interaction(event), f"Tracking {event.kind} by {event.user_id}")

    async def invalidate_on_event(self, event: InvalidationEvent) -> None:
        await best_effort(self.invalidation.invalidate_on_event(event), f"Invalidating for {event.action}")


def build_cache(settings: DiscoverySettings) -> CacheStore:
    if settings.cache_backend == "redis":
        return RedisCacheStore.from_url(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            key_prefix=settings.redis_key_prefix,
        )
    return InMemoryCacheStore()


def build_discovery_service(
    settings: DiscoverySettings,
    repository: ContentRepository,
    cache: Optional[CacheStore] = None,
) -> DiscoveryService:
    """
    Create a DiscoveryService from settings.

    Args:
        settings: Connection and tuning settings
        repository: Content data-query collaborator
        cache: Cache store to share (default: built from ``settings.cache_backend``)

    Returns:
        Service wired to Qdrant, the embedding provider and the cache
    """
    cache = cache if cache is not None else build_cache(settings)
    monitor = PerformanceMonitor(interval=settings.metrics_interval)

    vector_store = VectorStoreClient.from_settings(settings, cache, monitor=monitor)
    provider = OpenAICompatibleProvider(
        api_key=settings.embedding_api_key,
        model=settings.embedding_model,
        base_url=settings.embedding_base_url,
        dimensions=settings.vector_dimensions,
        timeout=settings.embedding_timeout,
        provider_name=settings.embedding_provider,
    )
    embedding_service = EmbeddingService(
        provider,
        cache,
        vector_store=vector_store,
        max_retries=settings.embedding_max_retries,
        retry_delay=settings.embedding_retry_delay,
        request_deadline=settings.request_deadline,
    )
    engine = RecommendationEngine(
        repository,
        vector_store,
        cache,
        embedding_service=embedding_service,
        monitor=monitor,
        similarity_weight=settings.similarity_weight,
        recency_weight=settings.recency_weight,
        engagement_weight=settings.engagement_weight,
        max_generated_embeddings=settings.max_generated_embeddings,
    )
    tracker = BehaviorTracker(
        repository,
        cache,
        vector_store=vector_store,
        buffer_size=settings.behavior_buffer_size,
        flush_interval=settings.behavior_flush_interval,
    )
    invalidation = CacheInvalidationEngine(cache, batch_delay=settings.invalidation_batch_delay)

    monitor.add_collector(lambda: {
        "vector.average_latency_ms": vector_store.get_metrics().average_latency_ms,
        "vector.failed_requests": vector_store.get_metrics().failed_requests,
        "invalidation.pending_patterns": invalidation.get_metrics().pending_patterns,
    })

    closers: List[Callable[[], Awaitable[Any]]] = [vector_store.close]
    if isinstance(cache, RedisCacheStore):
        closers.append(cache.close)

    logger.info(f"DiscoveryService built (cache={type(cache).__name__}, collection={settings.qdrant_collection})")
    return DiscoveryService(engine, tracker, invalidation, monitor=monitor, closers=closers)
