"""
discovery-engine: Real-time content discovery with vector search, behavior tracking and cache invalidation.

Core components:
- vector: Qdrant vector store client (collections, search, batch upsert)
- embeddings: Cached multimodal embedding generation
- recommendation: Candidate sourcing, preference vectors and hybrid ranking
- behavior: Interaction buffering, behavior profiles and personalization
- invalidation: Event-driven cache invalidation rules
- cache / storage: Cache store and content repository abstractions
- monitoring: In-process performance metrics
"""

__version__ = "0.1.0"

from discovery_engine.config import DiscoverySettings
from discovery_engine.errors import (
    DiscoveryError,
    EmbeddingDimensionError,
    EmbeddingProviderError,
    TransientNetworkError,
    UpstreamUnavailableError,
    ValidationError,
    VectorStoreError,
)
from discovery_engine.models import (
    CandidateContent,
    ContentRow,
    DiscoveryFeed,
    InteractionEvent,
    RecommendationMetrics,
    RecommendationOptions,
)
from discovery_engine.discovery_service import DiscoveryService, build_discovery_service

__all__ = [
    "__version__",
    "DiscoverySettings",
    # Errors
    "DiscoveryError",
    "EmbeddingDimensionError",
    "EmbeddingProviderError",
    "TransientNetworkError",
    "UpstreamUnavailableError",
    "ValidationError",
    "VectorStoreError",
    # Models
    "CandidateContent",
    "ContentRow",
    "DiscoveryFeed",
    "InteractionEvent",
    "RecommendationMetrics",
    "RecommendationOptions",
    # Service
    "DiscoveryService",
    "build_discovery_service",
]
