"""
Content ranking for discovery-engine.

- RecommendationEngine: candidate sourcing, preference vectors, ranking and fallback
- scoring: cosine similarity, centroid, recency and engagement scores
"""

from discovery_engine.recommendation.engine import RecommendationEngine
from discovery_engine.recommendation.scoring import (
    compute_centroid,
    cosine_similarity,
    engagement_score,
    recency_score,
)

__all__ = [
    "RecommendationEngine",
    "compute_centroid",
    "cosine_similarity",
    "engagement_score",
    "recency_score",
]
