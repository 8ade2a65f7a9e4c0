"""
Scoring primitives for content ranking.

All functions are pure. Vector math uses numpy; results are plain Python
floats/lists so they can be cached as JSON.
"""

import math
from datetime import datetime, timezone
from typing import List, Optional, Sequence

import numpy as np

RECENCY_DECAY_HOURS = 24.0
WEEK_HOURS = 24.0 * 7
MONTH_HOURS = 24.0 * 30


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity in [-1, 1].

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        ValueError: If the vectors have different lengths
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vector length mismatch: {va.shape[0]} vs {vb.shape[0]}")

    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.clip(np.dot(va, vb) / norm, -1.0, 1.0))


def compute_centroid(vectors: Sequence[Sequence[float]]) -> Optional[List[float]]:
    """Component-wise mean of equal-length vectors, or None for no input."""
    if not vectors:
        return None
    matrix = np.asarray(vectors, dtype=np.float64)
    return matrix.mean(axis=0).tolist()


def recency_score(created_at: datetime, now: Optional[datetime] = None) -> float:
    """
    Exponential decay with a 24h constant, heavily discounted for old content.

    Content older than a week is scaled by 0.1, older than a month by 0.01.
    Future timestamps score 1.0.
    """
    now = now or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)

    hours = max((now - created_at).total_seconds() / 3600.0, 0.0)
    score = math.exp(-hours / RECENCY_DECAY_HOURS)
    if hours > MONTH_HOURS:
        score *= 0.01
    elif hours > WEEK_HOURS:
        score *= 0.1
    return score


def engagement_score(save_count: int, comment_count: int) -> float:
    """log(2*saves + comments + 1) / log(101), capped at 1. Saves count double."""
    raw = 2 * max(save_count, 0) + max(comment_count, 0)
    return min(math.log(raw + 1) / math.log(101), 1.0)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))
