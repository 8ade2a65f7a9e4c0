"""Models for user behavior profiles and insights."""

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class EngagementPatterns(BaseModel):
    average_view_duration: float = 0.0  # seconds
    preferred_hours: List[int] = []  # UTC hours, most active first
    session_length: float = 0.0  # minutes
    interaction_velocity: float = 0.0  # interactions per minute


class SocialPatterns(BaseModel):
    follows_users: List[str] = []
    interacts_with_users: Dict[str, int] = {}
    avoids_users: List[str] = []


class BehaviorPreferences(BaseModel):
    content_types: Dict[str, float] = {}
    topics: Dict[str, float] = {}
    engagement: EngagementPatterns = Field(default_factory=EngagementPatterns)
    social: SocialPatterns = Field(default_factory=SocialPatterns)


class RecencyWeights(BaseModel):
    recent_views: float = 1.0
    recent_saves: float = 1.0
    recent_creations: float = 1.0


class UserBehaviorProfile(BaseModel):
    """Aggregated behavior of one user, cached and updated incrementally on flush."""

    user_id: str
    preferences: BehaviorPreferences = Field(default_factory=BehaviorPreferences)
    recency_weights: RecencyWeights = Field(default_factory=RecencyWeights)
    diversity_preference: float = Field(default=0.5, ge=0.0, le=1.0)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    total_interactions: int = 0


class BehaviorInsight(BaseModel):
    type: Literal["content_type_shift", "topic_discovery", "engagement_pattern", "social_behavior"]
    description: str
    confidence: float = Field(ge=0.0, le=1.0)
    actionable: bool = True
    recommendations: List[str] = []


class ContentMetadata(BaseModel):
    """The slice of content metadata the tracker needs."""

    content_id: str
    content_type: str = "post"
    hashtags: List[str] = []
    author_id: Optional[str] = None
