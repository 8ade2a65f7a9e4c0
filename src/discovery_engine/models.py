from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

InteractionKind = Literal["view", "save", "like", "share", "comment", "create"]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ContentRow(BaseModel):
    """A piece of content as stored by the relational collaborator."""

    id: str
    user_id: str
    content: str = ""
    hashtags: List[str] = []
    created_at: datetime
    save_count: int = 0
    comment_count: int = 0
    view_count: int = 0
    is_private: bool = False
    is_draft: bool = False
    author_username: Optional[str] = None
    content_type: str = "post"

    @field_validator("created_at")
    @classmethod
    def _normalize_created_at(cls, value: datetime) -> datetime:
        return _as_utc(value)


class CandidateContent(ContentRow):
    """Content row enriched with its embedding and ranking scores."""

    embedding: Optional[List[float]] = None
    similarity_score: float = 0.0
    recency_score: float = 0.0
    engagement_score: float = 0.0
    final_score: float = 0.0
    behavior_score: Optional[float] = None


class InteractionContext(BaseModel):
    """Optional client context attached to an interaction."""

    model_config = ConfigDict(frozen=True)

    source: Optional[str] = None
    position: Optional[int] = None
    device_type: Optional[str] = None
    referrer: Optional[str] = None


class InteractionEvent(BaseModel):
    """A single user interaction with a piece of content. Immutable."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    content_id: str
    kind: InteractionKind
    duration: Optional[float] = Field(default=None, ge=0, description="View duration in seconds")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: Optional[str] = None
    metadata: Optional[InteractionContext] = None

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_utc(value)


class RecommendationOptions(BaseModel):
    exclude_seen: bool = True
    recency_boost: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    engagement_boost: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    generate_missing_embeddings: bool = False


class RecommendationMetrics(BaseModel):
    posts_processed: int = 0
    embeddings_retrieved: int = 0
    cache_hits: int = 0
    processing_time_ms: float = 0.0
    quality_score: float = 0.0
    degraded: bool = False
    fallback_reason: Optional[str] = None


class DiscoveryFeed(BaseModel):
    """Ranked feed handed back to the caller."""

    items: List[CandidateContent]
    metrics: RecommendationMetrics
