"""
Configuration for discovery-engine.

Settings are read from the environment (prefix ``DISCOVERY_``) or a ``.env``
file via pydantic-settings. Tuned constants that are not meant to be changed
per deployment live here as module-level values.
"""

from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheTTL:
    """Time-to-live (seconds) for each kind of cached value."""

    SEARCH_RESULTS = 180  # 3 minutes
    TEXT_EMBEDDING = 7200  # static for the same text
    IMAGE_EMBEDDING = 7200
    MULTIMODAL_EMBEDDING = 3600
    CONTENT_EMBEDDING = 3600  # stored content vectors fetched from the index
    USER_PREFERENCES = 1800  # preference centroid
    BEHAVIOR_PROFILE = 3600
    SESSION = 1800
    SEEN_CONTENT = 3600


# Cache key prefixes shared between the components that write and the
# invalidation rules that clear them.
SEARCH_CACHE_PREFIX = "vector_search:"
EMBEDDING_CACHE_PREFIX = "embedding:"
CONTENT_EMBEDDING_PREFIX = "embedding:content:"
USER_PREFERENCES_PREFIX = "user_preferences:"
SEEN_CONTENT_PREFIX = "seen_posts:"
BEHAVIOR_PROFILE_PREFIX = "behavior-profile:"
SESSION_PREFIX = "session:"

# Vector store batching
SEARCH_SUB_BATCH_SIZE = 10
UPSERT_BATCH_SIZE = 100
MAX_CONCURRENT_BATCHES = 3
SLOW_SEARCH_THRESHOLD_MS = 2000.0

# Recommendation
EMBEDDING_LOOKUP_BATCH_SIZE = 50
PREFERENCE_SIGNAL_CAP = 100
EXCLUSION_LOOKUP_LIMIT = 1000
CANDIDATE_WINDOW_DAYS = 7


class DiscoverySettings(BaseSettings):
    """Deployment settings. Every field can be overridden via ``DISCOVERY_<FIELD>``."""

    model_config = SettingsConfigDict(
        env_prefix="DISCOVERY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Vector search service
    qdrant_url: str = "http://localhost:6333"
    qdrant_api_key: Optional[str] = None
    qdrant_collection: str = "posts"
    qdrant_timeout: int = 10
    vector_dimensions: int = 1024
    vector_max_attempts: int = 3
    vector_backoff_base: float = 0.1
    check_id_collisions: bool = False

    # Embedding provider (any OpenAI-compatible /embeddings endpoint)
    embedding_provider: str = "voyage"
    embedding_base_url: str = "https://api.voyageai.com/v1"
    embedding_api_key: Optional[str] = None
    embedding_model: str = "voyage-multimodal-3"
    embedding_max_retries: int = 3
    embedding_retry_delay: float = 1.0
    embedding_timeout: float = 30.0

    # Shared cache
    cache_backend: Literal["memory", "redis"] = "memory"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0
    redis_key_prefix: str = "discovery:"

    # Ranking
    similarity_weight: float = 0.6
    recency_weight: float = 0.2
    engagement_weight: float = 0.2
    max_generated_embeddings: int = 10

    # Behavior tracking
    behavior_buffer_size: int = 100
    behavior_flush_interval: float = 30.0

    # Invalidation
    invalidation_batch_delay: Optional[float] = None

    # Request-level deadline applied around retried upstream calls
    request_deadline: Optional[float] = None

    # Monitoring
    metrics_interval: float = 30.0
