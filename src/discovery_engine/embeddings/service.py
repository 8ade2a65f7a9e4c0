"""
Embedding service.

Caches, retries and dimension-checks provider embeddings, and stores content
embeddings in the vector index.
"""

import logging
from datetime import datetime
from functools import partial
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel

from discovery_engine.cache.protocol import CacheStore
from discovery_engine.config import (
    CONTENT_EMBEDDING_PREFIX,
    EMBEDDING_CACHE_PREFIX,
    CacheTTL,
)
from discovery_engine.embeddings.protocol import EmbeddingInput, EmbeddingProvider, MultimodalPart
from discovery_engine.errors import EmbeddingDimensionError, TransientNetworkError, ValidationError
from discovery_engine.utils.hashing import content_hash
from discovery_engine.utils.retry import retry_async
from discovery_engine.vector.models import CollectionConfig, SearchResult, VectorPayload, VectorRecord

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_COLLECTION = "voyage_embeddings"


class EmbeddingResult(BaseModel):
    vector: List[float]
    dimensions: int
    provider: str
    model: str
    collection: CollectionConfig
    cached: bool = False


class PostEmbedding(BaseModel):
    embedding: EmbeddingResult
    metadata: VectorPayload


class EmbeddingService:
    """
    Front door for all embedding generation.

    Every vector returned has exactly ``provider.dimension`` elements; anything
    else raises EmbeddingDimensionError and is never cached. Identical inputs
    are served from the cache without calling the provider.

    Example:
        >>> service = EmbeddingService(provider, cache, vector_store)
        >>> result = await service.generate_text_embedding("street food in Lisbon")
        >>> len(result.vector) == result.dimensions
        True
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: CacheStore,
        vector_store: Optional[Any] = None,
        collection: Optional[CollectionConfig] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        request_deadline: Optional[float] = None,
    ):
        """
        Initialize the embedding service.

        Args:
            provider: Embedding provider (one upstream call per embed)
            cache: Shared cache for generated vectors
            vector_store: VectorStoreClient used by store_embedding/search_similar
            collection: Collection embeddings are stored in (default: the
                vector store's collection, else "voyage_embeddings")
            max_retries: Extra attempts after a transient failure (default: 3)
            retry_delay: Fixed delay between attempts in seconds (default: 1.0)
            request_deadline: Optional overall budget in seconds per embedding
        """
        self._provider = provider
        self._cache = cache
        self._vector_store = vector_store
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._request_deadline = request_deadline

        if collection is None:
            if vector_store is not None:
                collection = vector_store.collection
            else:
                collection = CollectionConfig(
                    name=DEFAULT_EMBEDDING_COLLECTION, dimensions=provider.dimension
                )
        if collection.dimensions != provider.dimension:
            raise ValidationError(
                f"Collection '{collection.name}' has {collection.dimensions} dimensions "
                f"but provider {provider.provider_name} produces {provider.dimension}"
            )
        self.collection = collection

        logger.info(
            f"EmbeddingService initialized ({provider.provider_name}/{provider.model_name}, "
            f"{provider.dimension} dims, collection={collection.name})"
        )

    @property
    def dimension(self) -> int:
        return self._provider.dimension

    @property
    def model_name(self) -> str:
        return self._provider.model_name

    def get_available_providers(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": self._provider.provider_name,
                "model": self._provider.model_name,
                "dimensions": self._provider.dimension,
                "multimodal": True,
            }
        ]

    def _cache_key(self, kind: str, material: Any) -> str:
        return (
            f"{EMBEDDING_CACHE_PREFIX}{kind}:{self._provider.provider_name}:"
            f"{self._provider.model_name}:{self._provider.dimension}:{content_hash(material)}"
        )

    def _result(self, vector: List[float], cached: bool) -> EmbeddingResult:
        return EmbeddingResult(
            vector=vector,
            dimensions=len(vector),
            provider=self._provider.provider_name,
            model=self._provider.model_name,
            collection=self.collection,
            cached=cached,
        )

    async def _generate(self, kind: str, material: Any, provider_input: EmbeddingInput, ttl: int) -> EmbeddingResult:
        cache_key = self._cache_key(kind, material)
        cached = await self._cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Embedding cache hit ({kind})")
            return self._result(cached, cached=True)

        vector = await retry_async(
            partial(self._provider.embed, provider_input),
            attempts=self._max_retries + 1,
            base_delay=self._retry_delay,
            backoff="fixed",
            retry_on=(TransientNetworkError,),
            deadline=self._request_deadline,
            description=f"{self._provider.provider_name} {kind} embedding",
        )

        if len(vector) != self._provider.dimension:
            logger.error(
                f"{self._provider.provider_name} returned {len(vector)}-dim {kind} embedding, "
                f"expected {self._provider.dimension}"
            )
            raise EmbeddingDimensionError(self._provider.dimension, len(vector))

        await self._cache.set(cache_key, vector, ttl)
        return self._result(vector, cached=False)

    async def generate_text_embedding(self, text: str) -> EmbeddingResult:
        if not text or not text.strip():
            raise ValidationError("Cannot embed empty text")
        return await self._generate("text", text, text, CacheTTL.TEXT_EMBEDDING)

    async def generate_image_embedding(self, image_base64: str) -> EmbeddingResult:
        if not image_base64:
            raise ValidationError("Cannot embed an empty image")
        parts = [MultimodalPart(type="image", content=image_base64)]
        return await self._generate("image", image_base64, parts, CacheTTL.IMAGE_EMBEDDING)

    async def generate_multimodal_embedding(self, parts: Sequence[MultimodalPart]) -> EmbeddingResult:
        if not parts or all(not part.content for part in parts):
            raise ValidationError("Cannot embed empty multimodal input")
        material = [part.model_dump() for part in parts]
        return await self._generate("multimodal", material, list(parts), CacheTTL.MULTIMODAL_EMBEDDING)

    async def generate_post_embedding(
        self,
        post_id: str,
        content: str,
        hashtags: Sequence[str] = (),
        author_id: Optional[str] = None,
        is_private: bool = False,
        created_at: Optional[datetime] = None,
        content_type: str = "post",
    ) -> PostEmbedding:
        """
        Embed a post's text together with its hashtags.

        Returns:
            The embedding plus the payload to store alongside it
        """
        text = f"{content} {' '.join(hashtags)}".strip()
        embedding = await self.generate_text_embedding(text)

        metadata = VectorPayload(
            original_id=post_id,
            user_id=author_id,
            content_type=content_type,
            is_private=is_private,
            created_at=created_at.isoformat() if created_at else None,
            hashtags=list(hashtags),
            text=content,
            embedding_provider=embedding.provider,
            embedding_dimensions=embedding.dimensions,
        )
        return PostEmbedding(embedding=embedding, metadata=metadata)

    async def store_embedding(
        self, content_id: str, result: EmbeddingResult, payload: Optional[VectorPayload] = None
    ) -> None:
        """Upsert an embedding into the vector index, tagged with its provider and dimension."""
        if self._vector_store is None:
            raise ValidationError("store_embedding requires a vector store")

        payload = (payload or VectorPayload()).model_copy(
            update={
                "embedding_provider": result.provider,
                "embedding_dimensions": result.dimensions,
            }
        )
        await self._vector_store.upsert_vector(
            VectorRecord(id=content_id, vector=result.vector, payload=payload),
            config=self.collection,
        )
        await self._cache.delete(f"{CONTENT_EMBEDDING_PREFIX}{content_id}")
        logger.debug(f"Stored embedding for '{content_id}' in '{self.collection.name}'")

    async def search_similar(self, vector: Sequence[float], limit: int = 10, query_filter: Optional[Any] = None) -> List[SearchResult]:
        if self._vector_store is None:
            raise ValidationError("search_similar requires a vector store")
        return await self._vector_store.search_vectors(
            vector, limit=limit, query_filter=query_filter, config=self.collection
        )
