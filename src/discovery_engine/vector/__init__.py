"""
Vector storage for discovery-engine.

- VectorStoreClient: Qdrant-backed client with caching, batching and retries
- models: collection configuration, payload schema and result shapes
"""

from discovery_engine.vector.filters import match_filter
from discovery_engine.vector.models import (
    CollectionConfig,
    HnswSettings,
    OptimizerSettings,
    ScalarQuantizationSettings,
    ScrollRecord,
    SearchMetrics,
    SearchResult,
    VectorPayload,
    VectorRecord,
)
from discovery_engine.vector.qdrant import VectorStoreClient

__all__ = [
    "CollectionConfig",
    "HnswSettings",
    "OptimizerSettings",
    "ScalarQuantizationSettings",
    "ScrollRecord",
    "SearchMetrics",
    "SearchResult",
    "VectorPayload",
    "VectorRecord",
    "VectorStoreClient",
    "match_filter",
]
