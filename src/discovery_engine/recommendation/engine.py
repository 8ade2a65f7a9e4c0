"""
Real-time recommendation engine.

Sources candidate content from the relational collaborator, attaches stored
embeddings, builds a preference vector from what the user saved or liked and
ranks candidates by similarity, recency and engagement. Any failure in the
personalized path degrades to recency ranking.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Set

from discovery_engine.cache.protocol import CacheStore
from discovery_engine.config import (
    CANDIDATE_WINDOW_DAYS,
    CONTENT_EMBEDDING_PREFIX,
    EMBEDDING_LOOKUP_BATCH_SIZE,
    EXCLUSION_LOOKUP_LIMIT,
    MAX_CONCURRENT_BATCHES,
    PREFERENCE_SIGNAL_CAP,
    SEEN_CONTENT_PREFIX,
    USER_PREFERENCES_PREFIX,
    CacheTTL,
)
from discovery_engine.models import (
    CandidateContent,
    DiscoveryFeed,
    RecommendationMetrics,
    RecommendationOptions,
)
from discovery_engine.recommendation.scoring import (
    clamp,
    compute_centroid,
    cosine_similarity,
    engagement_score,
    recency_score,
)
from discovery_engine.storage.protocols import ContentRepository

logger = logging.getLogger(__name__)


class RecommendationEngine:
    """
    Ranks recent content for a user.

    Example:
        >>> engine = RecommendationEngine(repository, vector_store, cache)
        >>> feed = await engine.generate_recommendations("user-1", limit=20)
        >>> feed.metrics.degraded
        False
    """

    def __init__(
        self,
        repository: ContentRepository,
        vector_store: Any,
        cache: CacheStore,
        embedding_service: Optional[Any] = None,
        monitor: Optional[Any] = None,
        similarity_weight: float = 0.6,
        recency_weight: float = 0.2,
        engagement_weight: float = 0.2,
        max_generated_embeddings: int = 10,
    ):
        """
        Initialize the engine.

        Args:
            repository: Relational collaborator (content, saves, likes, seen log)
            vector_store: VectorStoreClient holding content embeddings
            cache: Shared cache
            embedding_service: Used to embed candidates missing from the index
            monitor: Optional PerformanceMonitor
            similarity_weight: Weight of preference similarity (default: 0.6)
            recency_weight: Default weight of recency (default: 0.2)
            engagement_weight: Default weight of engagement (default: 0.2)
            max_generated_embeddings: Cap on on-the-fly embeddings per request
        """
        self._repository = repository
        self._vector_store = vector_store
        self._cache = cache
        self._embedding_service = embedding_service
        self._monitor = monitor
        self._similarity_weight = similarity_weight
        self._recency_weight = recency_weight
        self._engagement_weight = engagement_weight
        self._max_generated_embeddings = max_generated_embeddings

    # ------------------------------------------------------------------
    # Candidate sourcing
    # ------------------------------------------------------------------

    async def _get_seen_ids(self, user_id: str) -> Set[str]:
        cache_key = f"{SEEN_CONTENT_PREFIX}{user_id}"
        cached = await self._cache.get(cache_key)
        if cached is not None:
            return set(cached)

        seen = await self._repository.get_seen_content_ids(user_id)
        await self._cache.set(cache_key, sorted(seen), CacheTTL.SEEN_CONTENT)
        return set(seen)

    async def _get_exclusions(self, user_id: str, exclude_seen: bool) -> Set[str]:
        lookups = [
            self._repository.get_saved_content_ids(user_id, EXCLUSION_LOOKUP_LIMIT),
            self._repository.get_liked_content_ids(user_id, EXCLUSION_LOOKUP_LIMIT),
        ]
        if exclude_seen:
            lookups.append(self._get_seen_ids(user_id))

        results = await asyncio.gather(*lookups)
        excluded: Set[str] = set()
        for ids in results:
            excluded.update(ids)
        return excluded

    async def get_candidate_content(
        self,
        user_id: str,
        limit: int,
        exclude_seen: bool = True,
        with_embeddings: bool = True,
        generate_missing: bool = False,
        metrics: Optional[RecommendationMetrics] = None,
    ) -> List[CandidateContent]:
        """
        Recent, visible content the user has not seen, saved or liked.

        Over-fetches ``2 * limit`` rows from the repository so that the
        visibility filter still leaves enough candidates. Repository errors
        propagate; embedding lookup failures only leave candidates without
        embeddings.

        Args:
            user_id: Viewer
            limit: Requested feed size
            exclude_seen: Also exclude content already shown
            with_embeddings: Attach stored embeddings
            generate_missing: Embed candidates missing from the index
            metrics: Updated with cache hits and degradation
        """
        excluded = await self._get_exclusions(user_id, exclude_seen)
        since = datetime.now(timezone.utc) - timedelta(days=CANDIDATE_WINDOW_DAYS)

        rows = await self._repository.get_recent_content(excluded, since, max(limit, 1) * 2)
        visible = await self._repository.filter_visible(user_id, rows)
        candidates = [CandidateContent(**row.model_dump()) for row in visible]

        logger.debug(
            f"Sourced {len(candidates)} candidates for {user_id} "
            f"({len(rows)} fetched, {len(excluded)} excluded)"
        )

        if with_embeddings and candidates:
            await self.batch_retrieve_embeddings(candidates, generate_missing=generate_missing, metrics=metrics)

        return candidates

    async def batch_retrieve_embeddings(
        self,
        candidates: Sequence[CandidateContent],
        generate_missing: bool = False,
        metrics: Optional[RecommendationMetrics] = None,
    ) -> int:
        """
        Attach stored embeddings to candidates in place.

        Ids are looked up in the per-content cache first, then fetched from the
        vector index in partitions of 50 with at most 3 partitions in flight.
        A failed partition leaves its candidates without embeddings.

        Returns:
            Number of candidates that carry an embedding afterwards
        """
        metrics = metrics if metrics is not None else RecommendationMetrics()
        by_id: Dict[str, CandidateContent] = {candidate.id: candidate for candidate in candidates}

        cached = await asyncio.gather(
            *(self._cache.get(f"{CONTENT_EMBEDDING_PREFIX}{content_id}") for content_id in by_id)
        )
        missing: List[str] = []
        for content_id, vector in zip(by_id, cached):
            if vector is not None:
                by_id[content_id].embedding = vector
                metrics.cache_hits += 1
            else:
                missing.append(content_id)

        partitions = [
            missing[offset : offset + EMBEDDING_LOOKUP_BATCH_SIZE]
            for offset in range(0, len(missing), EMBEDDING_LOOKUP_BATCH_SIZE)
        ]
        semaphore = asyncio.Semaphore(MAX_CONCURRENT_BATCHES)

        async def _fetch(partition: List[str]) -> Dict[str, List[float]]:
            async with semaphore:
                return await self._vector_store.get_vectors(partition)

        outcomes = await asyncio.gather(*(_fetch(p) for p in partitions), return_exceptions=True)

        for partition, outcome in zip(partitions, outcomes):
            if isinstance(outcome, BaseException):
                metrics.degraded = True
                logger.warning(
                    f"Embedding lookup failed for {len(partition)} candidates, continuing without them: {outcome}"
                )
                continue
            for content_id, vector in outcome.items():
                if content_id in by_id:
                    by_id[content_id].embedding = vector
                    await self._cache.set(
                        f"{CONTENT_EMBEDDING_PREFIX}{content_id}", vector, CacheTTL.CONTENT_EMBEDDING
                    )

        if generate_missing and self._embedding_service is not None:
            await self._generate_missing_embeddings(list(by_id.values()), metrics)

        retrieved = sum(1 for candidate in by_id.values() if candidate.embedding)
        metrics.embeddings_retrieved = retrieved
        return retrieved

    async def _generate_missing_embeddings(
        self, candidates: List[CandidateContent], metrics: RecommendationMetrics
    ) -> None:
        pending = [c for c in candidates if not c.embedding and c.content.strip()]
        for candidate in pending[: self._max_generated_embeddings]:
            try:
                post = await self._embedding_service.generate_post_embedding(
                    candidate.id,
                    candidate.content,
                    candidate.hashtags,
                    author_id=candidate.user_id,
                    is_private=candidate.is_private,
                    created_at=candidate.created_at,
                    content_type=candidate.content_type,
                )
            except Exception as e:
                metrics.degraded = True
                logger.warning(f"Could not embed candidate {candidate.id}: {e}")
                continue

            candidate.embedding = post.embedding.vector
            await self._cache.set(
                f"{CONTENT_EMBEDDING_PREFIX}{candidate.id}", candidate.embedding, CacheTTL.CONTENT_EMBEDDING
            )

    # ------------------------------------------------------------------
    # Preference vector
    # ------------------------------------------------------------------

    async def get_user_preference_vector(self, user_id: str) -> Optional[List[float]]:
        """
        Centroid of the embeddings of up to 100 items the user saved or liked.

        Returns None when the user has no such signal (or none of it is
        embedded).
        """
        cache_key = f"{USER_PREFERENCES_PREFIX}{user_id}"
        cached = await self._cache.get(cache_key)
        if cached is not None:
            return cached

        saved, liked = await asyncio.gather(
            self._repository.get_saved_content_ids(user_id, PREFERENCE_SIGNAL_CAP),
            self._repository.get_liked_content_ids(user_id, PREFERENCE_SIGNAL_CAP),
        )
        signal_ids = list(dict.fromkeys([*saved, *liked]))[:PREFERENCE_SIGNAL_CAP]
        if not signal_ids:
            return None

        vectors = await self._vector_store.get_vectors(signal_ids)
        embeddings = [vectors[content_id] for content_id in signal_ids if content_id in vectors]
        if not embeddings:
            logger.debug(f"No embedded signal content for {user_id}")
            return None

        centroid = compute_centroid(embeddings)
        await self._cache.set(cache_key, centroid, CacheTTL.USER_PREFERENCES)
        return centroid

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def _score(
        self,
        candidates: Sequence[CandidateContent],
        user_vector: Sequence[float],
        options: RecommendationOptions,
        now: datetime,
    ) -> List[CandidateContent]:
        recency_weight = options.recency_boost if options.recency_boost is not None else self._recency_weight
        engagement_weight = (
            options.engagement_boost if options.engagement_boost is not None else self._engagement_weight
        )

        scored = []
        for candidate in candidates:
            similarity = cosine_similarity(user_vector, candidate.embedding)
            recency = recency_score(candidate.created_at, now)
            engagement = engagement_score(candidate.save_count, candidate.comment_count)
            final = clamp(
                similarity * self._similarity_weight
                + recency * recency_weight
                + engagement * engagement_weight
            )
            scored.append(
                candidate.model_copy(
                    update={
                        "similarity_score": similarity,
                        "recency_score": recency,
                        "engagement_score": engagement,
                        "final_score": final,
                    }
                )
            )

        scored.sort(key=lambda c: c.final_score, reverse=True)
        return scored

    def _fallback(
        self,
        candidates: Sequence[CandidateContent],
        limit: int,
        metrics: RecommendationMetrics,
        started: float,
        reason: str,
    ) -> DiscoveryFeed:
        now = datetime.now(timezone.utc)
        ranked = sorted(candidates, key=lambda c: c.created_at, reverse=True)[:limit]
        items = [c.model_copy(update={"recency_score": recency_score(c.created_at, now)}) for c in ranked]

        metrics.fallback_reason = reason
        metrics.quality_score = 0.0
        metrics.processing_time_ms = (time.perf_counter() - started) * 1000
        if self._monitor is not None:
            self._monitor.increment("recommendation.fallback")
            self._monitor.timing("recommendation.generate", metrics.processing_time_ms)

        logger.info(f"Recency fallback ({reason}): {len(items)} items, degraded={metrics.degraded}")
        return DiscoveryFeed(items=items, metrics=metrics)

    async def generate_recommendations(
        self,
        user_id: str,
        limit: int = 20,
        options: Optional[RecommendationOptions] = None,
    ) -> DiscoveryFeed:
        """
        Rank candidates for a user.

        Falls back to recency ordering when the user has no preference signal,
        when no candidate carries an embedding, or when anything in the
        personalized path raises. Only a repository failure while sourcing the
        fallback candidates propagates.

        Args:
            user_id: Viewer
            limit: Maximum items returned
            options: Weight overrides and sourcing flags

        Returns:
            DiscoveryFeed with at most ``limit`` items
        """
        options = options or RecommendationOptions()
        started = time.perf_counter()
        metrics = RecommendationMetrics()
        candidates: Optional[List[CandidateContent]] = None

        try:
            candidates = await self.get_candidate_content(
                user_id,
                limit,
                exclude_seen=options.exclude_seen,
                generate_missing=options.generate_missing_embeddings,
                metrics=metrics,
            )
            metrics.posts_processed = len(candidates)

            user_vector = await self.get_user_preference_vector(user_id)
            if user_vector is None:
                return self._fallback(candidates, limit, metrics, started, "no_preference_signal")

            embedded = [c for c in candidates if c.embedding]
            if not embedded:
                return self._fallback(candidates, limit, metrics, started, "no_embedded_candidates")

            ranked = self._score(embedded, user_vector, options, datetime.now(timezone.utc))[:limit]
        except Exception as e:
            logger.error(f"Personalized ranking failed for {user_id}, using recency fallback: {e}")
            metrics.degraded = True
            if candidates is None:
                candidates = await self.get_candidate_content(
                    user_id, limit, exclude_seen=options.exclude_seen, with_embeddings=False
                )
                metrics.posts_processed = len(candidates)
            return self._fallback(candidates, limit, metrics, started, f"error: {type(e).__name__}")

        metrics.quality_score = sum(c.final_score for c in ranked) / len(ranked) if ranked else 0.0
        metrics.processing_time_ms = (time.perf_counter() - started) * 1000
        if self._monitor is not None:
            self._monitor.timing("recommendation.generate", metrics.processing_time_ms)
            self._monitor.gauge("recommendation.quality", metrics.quality_score)

        logger.info(
            f"Generated {len(ranked)} recommendations for {user_id} "
            f"(candidates={metrics.posts_processed}, quality={metrics.quality_score:.3f}, "
            f"{metrics.processing_time_ms:.0f}ms)"
        )
        return DiscoveryFeed(items=ranked, metrics=metrics)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def update_seen_content(self, user_id: str, content_ids: Sequence[str]) -> None:
        """Record content as shown and drop the user's cached seen list."""
        if not content_ids:
            return
        await self._repository.record_seen(user_id, content_ids)
        await self._cache.delete(f"{SEEN_CONTENT_PREFIX}{user_id}")
        logger.debug(f"Marked {len(content_ids)} items as seen for {user_id}")

    async def clear_caches(self, user_id: Optional[str] = None) -> int:
        """
        Drop cached preference vectors and seen lists.

        With no ``user_id`` every user's entries and the per-content embedding
        cache are cleared.

        Returns:
            Number of cache keys removed
        """
        target = user_id or "*"
        patterns = [f"{USER_PREFERENCES_PREFIX}{target}", f"{SEEN_CONTENT_PREFIX}{target}"]
        if user_id is None:
            patterns.append(f"{CONTENT_EMBEDDING_PREFIX}*")

        removed = 0
        for pattern in patterns:
            removed += await self._cache.invalidate_pattern(pattern)
        logger.info(f"Cleared {removed} recommendation cache entries (user={target})")
        return removed
