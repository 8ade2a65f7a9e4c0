"""
Models for vector storage.

Defines the collection configuration, the schema-validated point payload and
the result shapes returned by the vector store client.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class HnswSettings(BaseModel):
    m: int = 32
    ef_construct: int = 400
    full_scan_threshold: int = 10000
    max_indexing_threads: int = 0
    on_disk: bool = True


class OptimizerSettings(BaseModel):
    deleted_threshold: float = 0.2
    vacuum_min_vector_number: int = 1000
    default_segment_number: int = 4


class ScalarQuantizationSettings(BaseModel):
    """int8 scalar quantization."""

    quantile: float = 0.99
    always_ram: bool = True


class CollectionConfig(BaseModel):
    """
    Provisioning configuration for a vector collection.

    Applied only when the collection is created; an existing collection is
    never altered.
    """

    name: str
    dimensions: int = 1024
    distance: str = "Cosine"
    hnsw: HnswSettings = Field(default_factory=HnswSettings)
    optimizers: OptimizerSettings = Field(default_factory=OptimizerSettings)
    quantization: Optional[ScalarQuantizationSettings] = Field(
        default_factory=ScalarQuantizationSettings
    )


class VectorPayload(BaseModel):
    """
    Payload stored alongside each vector.

    Known fields are validated; anything else goes in ``extra`` and is
    flattened into the stored payload.
    """

    original_id: Optional[str] = None
    user_id: Optional[str] = None
    content_type: Optional[str] = None
    is_private: bool = False
    created_at: Optional[str] = None  # ISO format timestamp
    hashtags: List[str] = []
    text: Optional[str] = None
    author_username: Optional[str] = None
    save_count: int = 0
    comment_count: int = 0
    view_count: int = 0
    embedding_provider: Optional[str] = None
    embedding_dimensions: Optional[int] = None
    extra: Dict[str, Any] = {}

    def to_qdrant(self) -> Dict[str, Any]:
        """Flatten into the dict stored by the index (``extra`` merged, nulls dropped)."""
        data = self.model_dump(exclude={"extra"}, exclude_none=True)
        for key, value in self.extra.items():
            data.setdefault(key, value)
        return data

    @classmethod
    def from_qdrant(cls, payload: Optional[Dict[str, Any]]) -> "VectorPayload":
        payload = dict(payload or {})
        known = set(cls.model_fields) - {"extra"}
        fields = {key: payload.pop(key) for key in list(payload) if key in known}
        return cls(**fields, extra=payload)

    def created_at_datetime(self) -> Optional[datetime]:
        if not self.created_at:
            return None
        value = self.created_at
        if value.endswith(("Z", "z")):
            value = value[:-1] + "+00:00"
        return datetime.fromisoformat(value)


class VectorRecord(BaseModel):
    """A vector to upsert, addressed by its original string id."""

    id: str
    vector: List[float]
    payload: VectorPayload = Field(default_factory=VectorPayload)


class SearchResult(BaseModel):
    id: str
    score: float
    payload: VectorPayload
    vector: Optional[List[float]] = None


class ScrollRecord(BaseModel):
    id: str
    payload: VectorPayload
    vector: Optional[List[float]] = None


class SearchMetrics(BaseModel):
    total_searches: int = 0
    batch_searches: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    average_latency_ms: float = 0.0
    slow_searches: int = 0
    upserted_points: int = 0
    failed_requests: int = 0
