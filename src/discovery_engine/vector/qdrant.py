"""
Qdrant-backed vector store client.

Wraps AsyncQdrantClient with collection provisioning, search-result caching,
sub-batched search, bounded-concurrency upserts and retry/error mapping.
String ids are hashed onto Qdrant's integer id space; the original id is kept
in the payload as ``original_id`` and used for every id that leaves this
module.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar, Union

import httpx
from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import (
    Distance,
    Filter,
    HnswConfigDiff,
    OptimizersConfigDiff,
    PointIdsList,
    PointStruct,
    QuantizationSearchParams,
    QueryRequest,
    RecommendInput,
    RecommendQuery,
    RecommendStrategy,
    ScalarQuantization,
    ScalarQuantizationConfig,
    ScalarType,
    SearchParams,
    VectorParams,
)

from discovery_engine.cache.protocol import CacheStore
from discovery_engine.config import (
    MAX_CONCURRENT_BATCHES,
    SEARCH_CACHE_PREFIX,
    SEARCH_SUB_BATCH_SIZE,
    SLOW_SEARCH_THRESHOLD_MS,
    UPSERT_BATCH_SIZE,
    CacheTTL,
    DiscoverySettings,
)
from discovery_engine.errors import TransientNetworkError, ValidationError, VectorStoreError
from discovery_engine.models import CandidateContent
from discovery_engine.utils.hashing import content_hash, point_id
from discovery_engine.utils.retry import retry_async
from discovery_engine.vector.filters import match_filter
from discovery_engine.vector.models import (
    CollectionConfig,
    ScrollRecord,
    SearchMetrics,
    SearchResult,
    VectorPayload,
    VectorRecord,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRANSPORT_ERRORS = (
    ResponseHandlingException,
    httpx.TransportError,
    ConnectionError,
    asyncio.TimeoutError,
)


class VectorStoreClient:
    """
    Async client for the vector-search service.

    Example:
        >>> client = VectorStoreClient.from_settings(settings, cache)
        >>> await client.ensure_collection()
        >>> hits = await client.search_vectors(vector, limit=20)
    """

    def __init__(
        self,
        client: AsyncQdrantClient,
        cache: CacheStore,
        collection: CollectionConfig,
        max_attempts: int = 3,
        backoff_base: float = 0.1,
        request_deadline: Optional[float] = None,
        check_collisions: bool = False,
        monitor: Optional[Any] = None,
    ):
        """
        Initialize the vector store client.

        Args:
            client: AsyncQdrantClient instance
            cache: Shared cache for search results
            collection: Default collection configuration
            max_attempts: Attempts per request on transport failure (default: 3)
            backoff_base: Exponential backoff unit in seconds (default: 0.1)
            request_deadline: Optional overall budget in seconds per request, retries included
            check_collisions: Verify hashed ids do not collide before upserting
            monitor: Optional PerformanceMonitor receiving search timings
        """
        self.client = client
        self.cache = cache
        self.collection = collection
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._request_deadline = request_deadline
        self._check_collisions = check_collisions
        self._monitor = monitor

        self._provisioned: set[str] = set()
        self._provision_lock = asyncio.Lock()
        self._metrics = SearchMetrics()
        self._total_latency_ms = 0.0

    @classmethod
    def from_settings(
        cls, settings: DiscoverySettings, cache: CacheStore, monitor: Optional[Any] = None
    ) -> "VectorStoreClient":
        client = AsyncQdrantClient(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
            timeout=settings.qdrant_timeout,
        )
        collection = CollectionConfig(
            name=settings.qdrant_collection, dimensions=settings.vector_dimensions
        )
        logger.info(
            f"VectorStoreClient initialized (url={settings.qdrant_url}, "
            f"collection={collection.name}, dimensions={collection.dimensions})"
        )
        return cls(
            client,
            cache,
            collection,
            max_attempts=settings.vector_max_attempts,
            backoff_base=settings.vector_backoff_base,
            request_deadline=settings.request_deadline,
            check_collisions=settings.check_id_collisions,
            monitor=monitor,
        )

    async def close(self) -> None:
        await self.client.close()

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    async def _request(self, description: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run one Qdrant call with error mapping and transport-level retries."""

        async def _mapped() -> T:
            try:
                return await call()
            except UnexpectedResponse as e:
                raise VectorStoreError(
                    f"{description} failed with HTTP {e.status_code}: {e.reason_phrase}",
                    status_code=e.status_code,
                ) from e
            except _TRANSPORT_ERRORS as e:
                raise TransientNetworkError(f"{description}: {e!r}") from e

        try:
            return await retry_async(
                _mapped,
                attempts=self._max_attempts,
                base_delay=self._backoff_base,
                backoff="exponential",
                retry_on=(TransientNetworkError,),
                deadline=self._request_deadline,
                description=f"Qdrant {description}",
            )
        except Exception:
            self._metrics.failed_requests += 1
            raise

    def _record_search_latency(self, latency_ms: float, searches: int = 1) -> None:
        self._metrics.total_searches += searches
        self._total_latency_ms += latency_ms
        if latency_ms > SLOW_SEARCH_THRESHOLD_MS:
            self._metrics.slow_searches += 1
            logger.warning(f"Slow vector search: {latency_ms:.0f}ms")
        if self._monitor is not None:
            self._monitor.timing("vector.search", latency_ms)

    async def _invalidate_search_cache(self) -> None:
        try:
            removed = await self.cache.invalidate_pattern(f"{SEARCH_CACHE_PREFIX}*")
            logger.debug(f"Invalidated {removed} cached search results")
        except Exception as e:
            logger.error(f"Failed to invalidate search cache: {e}")

    @staticmethod
    def _to_search_result(point: Any) -> SearchResult:
        payload = VectorPayload.from_qdrant(point.payload)
        vector = point.vector if isinstance(point.vector, list) else None
        return SearchResult(
            id=payload.original_id or str(point.id),
            score=point.score,
            payload=payload,
            vector=vector,
        )

    @staticmethod
    def _to_scroll_record(point: Any, include_vector: bool = True) -> ScrollRecord:
        payload = VectorPayload.from_qdrant(point.payload)
        vector = point.vector if include_vector and isinstance(point.vector, list) else None
        return ScrollRecord(id=payload.original_id or str(point.id), payload=payload, vector=vector)

    def _to_point(self, record: VectorRecord, config: CollectionConfig) -> PointStruct:
        if len(record.vector) != config.dimensions:
            raise ValidationError(
                f"Vector for '{record.id}' has {len(record.vector)} dimensions, "
                f"collection '{config.name}' expects {config.dimensions}"
            )
        payload = record.payload.model_copy(update={"original_id": record.id})
        return PointStruct(id=point_id(record.id), vector=record.vector, payload=payload.to_qdrant())

    # ------------------------------------------------------------------
    # Collection management
    # ------------------------------------------------------------------

    async def ensure_collection(self, config: Optional[CollectionConfig] = None) -> None:
        """
        Create the collection if it does not exist.

        Idempotent: an existing collection is never modified, and once a
        collection is known to exist no further requests are made for it.
        """
        config = config or self.collection
        if config.name in self._provisioned:
            return

        async with self._provision_lock:
            if config.name in self._provisioned:
                return

            exists = await self._request(
                "collection_exists",
                partial(self.client.collection_exists, collection_name=config.name),
            )
            if not exists:
                quantization = None
                if config.quantization is not None:
                    quantization = ScalarQuantization(
                        scalar=ScalarQuantizationConfig(
                            type=ScalarType.INT8,
                            quantile=config.quantization.quantile,
                            always_ram=config.quantization.always_ram,
                        )
                    )
                await self._request(
                    "create_collection",
                    partial(
                        self.client.create_collection,
                        collection_name=config.name,
                        vectors_config=VectorParams(
                            size=config.dimensions, distance=Distance(config.distance)
                        ),
                        hnsw_config=HnswConfigDiff(**config.hnsw.model_dump()),
                        optimizers_config=OptimizersConfigDiff(**config.optimizers.model_dump()),
                        quantization_config=quantization,
                    ),
                )
                logger.info(
                    f"Created collection '{config.name}' "
                    f"({config.dimensions} dims, {config.distance})"
                )
            else:
                logger.debug(f"Collection '{config.name}' already exists")

            self._provisioned.add(config.name)

    async def get_collection_info(self, config: Optional[CollectionConfig] = None) -> Dict[str, Any]:
        """Status and size counters for a collection."""
        config = config or self.collection
        info = await self._request(
            "get_collection", partial(self.client.get_collection, collection_name=config.name)
        )
        return {
            "name": config.name,
            "status": str(info.status),
            "points_count": info.points_count,
            "indexed_vectors_count": info.indexed_vectors_count,
            "segments_count": info.segments_count,
        }

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _search_cache_key(
        self, name: str, vector: Sequence[float], limit: int, query_filter: Optional[Filter], with_vector: bool
    ) -> str:
        key_material = {
            "collection": name,
            "vector": list(vector),
            "limit": limit,
            "filter": query_filter.model_dump(exclude_none=True) if query_filter else None,
            "with_vector": with_vector,
        }
        return f"{SEARCH_CACHE_PREFIX}{content_hash(key_material)}"

    async def search_vectors(
        self,
        vector: Sequence[float],
        limit: int = 10,
        query_filter: Optional[Filter] = None,
        with_vector: bool = False,
        hnsw_ef: Optional[int] = None,
        config: Optional[CollectionConfig] = None,
    ) -> List[SearchResult]:
        """
        Approximate nearest-neighbour search, cached for a short window.

        Args:
            vector: Query vector
            limit: Maximum results
            query_filter: Optional payload filter
            with_vector: Return stored vectors with each hit
            hnsw_ef: Override search-time ef (default: max(4*limit, 256))
            config: Collection to search (default: the client's collection)

        Returns:
            Results in descending score order
        """
        if not vector:
            raise ValidationError("Cannot search with an empty vector")
        if limit <= 0:
            return []

        config = config or self.collection
        await self.ensure_collection(config)

        cache_key = self._search_cache_key(config.name, vector, limit, query_filter, with_vector)
        cached = await self.cache.get(cache_key)
        if cached is not None:
            self._metrics.cache_hits += 1
            logger.debug(f"Search cache hit ({len(cached)} results)")
            return [SearchResult.model_validate(item) for item in cached]
        self._metrics.cache_misses += 1

        params = SearchParams(
            hnsw_ef=hnsw_ef or max(4 * limit, 256),
            exact=False,
            quantization=QuantizationSearchParams(rescore=True),
        )

        start = time.perf_counter()
        response = await self._request(
            "query_points",
            partial(
                self.client.query_points,
                collection_name=config.name,
                query=list(vector),
                query_filter=query_filter,
                search_params=params,
                limit=limit,
                with_payload=True,
                with_vectors=with_vector,
            ),
        )
        self._record_search_latency((time.perf_counter() - start) * 1000)

        results = [self._to_search_result(point) for point in response.points]
        await self.cache.set(
            cache_key, [result.model_dump() for result in results], CacheTTL.SEARCH_RESULTS
        )

        logger.debug(f"Vector search returned {len(results)} results (limit={limit})")
        return results

    async def batch_search_vectors(
        self,
        vectors: Sequence[Sequence[float]],
        limit: int = 10,
        query_filter: Optional[Filter] = None,
        config: Optional[CollectionConfig] = None,
    ) -> List[List[SearchResult]]:
        """
        Search many query vectors, sending sub-batches of 10 per request.

        Sub-batches run sequentially. The call is all-or-nothing: the first
        failing sub-batch aborts it and its error propagates.

        Returns:
            One result list per input vector, in input order
        """
        if not vectors:
            return []

        config = config or self.collection
        await self.ensure_collection(config)

        params = SearchParams(
            hnsw_ef=max(2 * limit, 128),
            exact=False,
            quantization=QuantizationSearchParams(rescore=True),
        )

        results: List[List[SearchResult]] = []
        start = time.perf_counter()
        for offset in range(0, len(vectors), SEARCH_SUB_BATCH_SIZE):
            sub_batch = vectors[offset : offset + SEARCH_SUB_BATCH_SIZE]
            requests = [
                QueryRequest(
                    query=list(vector),
                    filter=query_filter,
                    params=params,
                    limit=limit,
                    with_payload=True,
                    with_vector=False,
                )
                for vector in sub_batch
            ]
            responses = await self._request(
                "query_batch_points",
                partial(
                    self.client.query_batch_points,
                    collection_name=config.name,
                    requests=requests,
                ),
            )
            for response in responses:
                results.append([self._to_search_result(point) for point in response.points])

        self._metrics.batch_searches += 1
        self._record_search_latency((time.perf_counter() - start) * 1000, searches=len(vectors))

        logger.debug(f"Batch search for {len(vectors)} vectors completed")
        return results

    async def recommend_similar(
        self,
        positive_ids: Sequence[str],
        negative_ids: Sequence[str] = (),
        limit: int = 10,
        query_filter: Optional[Filter] = None,
        strategy: str = "average_vector",
        config: Optional[CollectionConfig] = None,
    ) -> List[SearchResult]:
        """Recommend points similar to the positive examples and unlike the negative ones."""
        if not positive_ids:
            raise ValidationError("recommend_similar needs at least one positive example")

        config = config or self.collection
        await self.ensure_collection(config)

        query = RecommendQuery(
            recommend=RecommendInput(
                positive=[point_id(item) for item in positive_ids],
                negative=[point_id(item) for item in negative_ids] or None,
                strategy=RecommendStrategy(strategy),
            )
        )

        start = time.perf_counter()
        response = await self._request(
            "recommend",
            partial(
                self.client.query_points,
                collection_name=config.name,
                query=query,
                query_filter=query_filter,
                limit=limit,
                with_payload=True,
            ),
        )
        self._record_search_latency((time.perf_counter() - start) * 1000)

        return [self._to_search_result(point) for point in response.points]

    async def search_similar(
        self,
        vector: Sequence[float],
        limit: int = 10,
        exclude_user_id: Optional[str] = None,
        min_score: Optional[float] = None,
    ) -> List[SearchResult]:
        """Similarity search that skips one author's content and low scores."""
        query_filter = match_filter(must_not={"user_id": exclude_user_id}) if exclude_user_id else None
        results = await self.search_vectors(vector, limit=limit, query_filter=query_filter)
        if min_score is None:
            return results
        return [result for result in results if result.score >= min_score]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _verify_no_collisions(self, config: CollectionConfig, records: Sequence[VectorRecord]) -> None:
        seen: Dict[int, str] = {}
        for record in records:
            hashed = point_id(record.id)
            other = seen.setdefault(hashed, record.id)
            if other != record.id:
                raise ValidationError(f"Point id collision between '{other}' and '{record.id}'")

        existing = await self._request(
            "retrieve",
            partial(
                self.client.retrieve,
                collection_name=config.name,
                ids=list(seen),
                with_payload=True,
                with_vectors=False,
            ),
        )
        for point in existing:
            stored_id = (point.payload or {}).get("original_id")
            expected = seen.get(int(point.id))
            if stored_id is not None and expected is not None and stored_id != expected:
                logger.error(f"Point id collision: '{expected}' hashes onto stored '{stored_id}'")
                raise ValidationError(f"Point id collision between '{stored_id}' and '{expected}'")

    async def _upsert_points(self, config: CollectionConfig, records: Sequence[VectorRecord]) -> None:
        points = [self._to_point(record, config) for record in records]
        if self._check_collisions:
            await self._verify_no_collisions(config, records)
        await self._request(
            "upsert",
            partial(self.client.upsert, collection_name=config.name, points=points, wait=True),
        )
        self._metrics.upserted_points += len(points)

    async def upsert_vector(self, record: VectorRecord, config: Optional[CollectionConfig] = None) -> None:
        """Insert or replace a single vector, then drop cached search results."""
        config = config or self.collection
        await self.ensure_collection(config)
        try:
            await self._upsert_points(config, [record])
        finally:
            await self._invalidate_search_cache()
        logger.debug(f"Upserted vector '{record.id}'")

    async def batch_upsert_vectors(
        self, records: Sequence[VectorRecord], config: Optional[CollectionConfig] = None
    ) -> int:
        """
        Upsert many vectors in batches of 100 with at most 3 batches in flight.

        Every batch is allowed to settle before returning. Cached search
        results are invalidated even when some batches failed; the first
        failure is then raised.

        Returns:
            Number of points written
        """
        if not records:
            return 0

        config = config or self.collection
        await self.ensure_collection(config)

        batches = [
            records[offset : offset + UPSERT_BATCH_SIZE]
            for offset in range(0, len(records), UPSERT_BATCH_SIZE)
        ]
        semaphore = asyncio.Semaphore(MAX_CONCURRENT_BATCHES)

        async def _run(batch: Sequence[VectorRecord]) -> int:
            async with semaphore:
                await self._upsert_points(config, batch)
                return len(batch)

        try:
            outcomes = await asyncio.gather(*(_run(batch) for batch in batches), return_exceptions=True)
        finally:
            await self._invalidate_search_cache()

        errors = [outcome for outcome in outcomes if isinstance(outcome, BaseException)]
        written = sum(outcome for outcome in outcomes if isinstance(outcome, int))
        if errors:
            logger.error(f"{len(errors)}/{len(batches)} upsert batches failed ({written} points written)")
            raise errors[0]

        logger.info(f"Upserted {written} vectors in {len(batches)} batches")
        return written

    async def delete_vector(self, vector_id: str, config: Optional[CollectionConfig] = None) -> None:
        config = config or self.collection
        try:
            await self._request(
                "delete",
                partial(
                    self.client.delete,
                    collection_name=config.name,
                    points_selector=PointIdsList(points=[point_id(vector_id)]),
                    wait=True,
                ),
            )
        finally:
            await self._invalidate_search_cache()
        logger.debug(f"Deleted vector '{vector_id}'")

    # ------------------------------------------------------------------
    # Reads by id / payload
    # ------------------------------------------------------------------

    async def get_vectors(
        self, ids: Iterable[str], config: Optional[CollectionConfig] = None
    ) -> Dict[str, List[float]]:
        """
        Fetch stored vectors by original id.

        Ids with no stored point are simply absent from the result.
        """
        ids = list(dict.fromkeys(ids))
        if not ids:
            return {}

        config = config or self.collection
        await self.ensure_collection(config)

        by_hash = {point_id(item): item for item in ids}
        points = await self._request(
            "retrieve",
            partial(
                self.client.retrieve,
                collection_name=config.name,
                ids=list(by_hash),
                with_payload=True,
                with_vectors=True,
            ),
        )

        vectors: Dict[str, List[float]] = {}
        for point in points:
            if not isinstance(point.vector, list):
                continue
            original = (point.payload or {}).get("original_id") or by_hash.get(int(point.id))
            if original is not None:
                vectors[original] = point.vector
        return vectors

    async def scroll(
        self,
        limit: int = 100,
        query_filter: Optional[Filter] = None,
        with_payload: bool = True,
        with_vector: bool = True,
        config: Optional[CollectionConfig] = None,
    ) -> List[ScrollRecord]:
        config = config or self.collection
        await self.ensure_collection(config)

        points, _next_offset = await self._request(
            "scroll",
            partial(
                self.client.scroll,
                collection_name=config.name,
                scroll_filter=query_filter,
                limit=limit,
                with_payload=with_payload,
                with_vectors=with_vector,
            ),
        )
        return [self._to_scroll_record(point) for point in points]

    async def search_by_metadata(
        self,
        query_filter: Union[Filter, Dict[str, Any]],
        limit: int = 100,
        include_embedding: bool = False,
    ) -> List[ScrollRecord]:
        """
        Scroll points matching a payload filter.

        ``query_filter`` may be a Qdrant Filter or a ``{field: value}`` dict of
        required matches.
        """
        if isinstance(query_filter, dict):
            query_filter = match_filter(must=query_filter)
        records = await self.scroll(limit=limit, query_filter=query_filter, with_vector=include_embedding)
        if not include_embedding:
            for record in records:
                record.vector = None
        return records

    async def search_posts(
        self,
        limit: int = 100,
        exclude_user_id: Optional[str] = None,
        include_embedding: bool = False,
    ) -> List[CandidateContent]:
        """Scroll indexed posts and reshape them into candidate content."""
        query_filter = match_filter(must_not={"user_id": exclude_user_id}) if exclude_user_id else None
        records = await self.scroll(limit=limit, query_filter=query_filter, with_vector=include_embedding)

        posts = []
        for record in records:
            payload = record.payload
            posts.append(
                CandidateContent(
                    id=record.id,
                    user_id=payload.user_id or "",
                    content=payload.text or "",
                    hashtags=payload.hashtags,
                    created_at=payload.created_at_datetime() or datetime.now(timezone.utc),
                    save_count=payload.save_count,
                    comment_count=payload.comment_count,
                    view_count=payload.view_count,
                    is_private=payload.is_private,
                    author_username=payload.author_username,
                    content_type=payload.content_type or "post",
                    embedding=record.vector if include_embedding else None,
                )
            )
        return posts

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def get_metrics(self) -> SearchMetrics:
        metrics = self._metrics.model_copy()
        if metrics.total_searches:
            metrics.average_latency_ms = self._total_latency_ms / metrics.total_searches
        return metrics

    def reset_metrics(self) -> None:
        self._metrics = SearchMetrics()
        self._total_latency_ms = 0.0
