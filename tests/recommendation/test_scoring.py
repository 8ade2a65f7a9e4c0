"""Tests for the scoring primitives."""

import math
from datetime import datetime, timedelta, timezone

import pytest

from discovery_engine.recommendation.scoring import (
    clamp,
    compute_centroid,
    cosine_similarity,
    engagement_score,
    recency_score,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_centroid_of_ones_and_threes_is_twos():
    centroid = compute_centroid([[1.0] * 768, [3.0] * 768])

    assert len(centroid) == 768
    assert centroid == pytest.approx([2.0] * 768)


def test_centroid_of_nothing_is_none():
    assert compute_centroid([]) is None


def test_cosine_similarity_identical_and_orthogonal():
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)


def test_cosine_similarity_zero_vector():
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_cosine_similarity_length_mismatch():
    with pytest.raises(ValueError):
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


def test_candidate_against_centroid_scores_below_single_vector():
    a = [1.0, 0.0, 0.0, 0.0]
    b = [0.0, 1.0, 0.0, 0.0]

    against_single = cosine_similarity(a, a)
    against_centroid = cosine_similarity(compute_centroid([a, b]), a)

    assert against_single == pytest.approx(1.0)
    assert against_centroid == pytest.approx(1 / math.sqrt(2))
    assert against_centroid < against_single


def test_recency_score_decay():
    assert recency_score(NOW, NOW) == pytest.approx(1.0)
    assert recency_score(NOW - timedelta(hours=24), NOW) == pytest.approx(math.exp(-1))


def test_recency_score_discounts_old_content():
    eight_days = NOW - timedelta(days=8)
    forty_days = NOW - timedelta(days=40)

    assert recency_score(eight_days, NOW) == pytest.approx(math.exp(-8) * 0.1)
    assert recency_score(forty_days, NOW) == pytest.approx(math.exp(-40) * 0.01)


def test_recency_score_future_and_naive_timestamps():
    assert recency_score(NOW + timedelta(hours=1), NOW) == pytest.approx(1.0)
    assert recency_score(NOW.replace(tzinfo=None), NOW) == pytest.approx(1.0)


def test_engagement_score():
    assert engagement_score(0, 0) == 0.0
    assert engagement_score(25, 50) == pytest.approx(1.0)
    assert engagement_score(1000, 1000) == 1.0
    # saves count double
    assert engagement_score(1, 0) == pytest.approx(engagement_score(0, 2))


def test_clamp():
    assert clamp(1.5) == 1.0
    assert clamp(-0.2) == 0.0
    assert clamp(0.4) == 0.4
