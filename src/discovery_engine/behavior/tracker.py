"""
User behavior tracking.

Interactions are buffered per user and flushed when the buffer fills or the
periodic timer fires. A flush persists the events and folds them into the
user's cached behavior profile. Tracking is a best-effort side channel: every
public method logs and absorbs its own failures.
"""

import asyncio
import logging
import math
import time
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from discovery_engine.behavior.models import (
    BehaviorInsight,
    ContentMetadata,
    RecencyWeights,
    UserBehaviorProfile,
)
from discovery_engine.cache.protocol import CacheStore
from discovery_engine.config import BEHAVIOR_PROFILE_PREFIX, SESSION_PREFIX, CacheTTL
from discovery_engine.models import CandidateContent, InteractionEvent, InteractionKind
from discovery_engine.recommendation.scoring import clamp
from discovery_engine.storage.protocols import ContentRepository
from discovery_engine.utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)

INTERACTION_WEIGHTS: Dict[InteractionKind, float] = {
    "view": 0.1,
    "like": 0.3,
    "share": 0.6,
    "comment": 0.7,
    "save": 0.8,
    "create": 1.0,
}

NEUTRAL_AFFINITY = 0.5
AFFINITY_DECAY = 0.9
DURATION_DECAY = 0.95
RECENCY_WEIGHT_CAP = 2.0
PROFILE_HISTORY_LIMIT = 1000
DIVERSITY_THRESHOLD = 0.3
SECONDS_PER_DAY = 86400.0


def _smooth_affinity(old: Optional[float], weight: float) -> float:
    previous = NEUTRAL_AFFINITY if old is None else old
    return previous * AFFINITY_DECAY + weight * (1 - AFFINITY_DECAY)


def calculate_diversity_preference(events: Sequence[InteractionEvent], metadata: Dict[str, ContentMetadata]) -> float:
    """min((distinct types * 0.3 + distinct topics * 0.1) / max(n * 0.1, 1), 1)."""
    if not events:
        return NEUTRAL_AFFINITY

    content_types = set()
    topics = set()
    for event in events:
        meta = metadata.get(event.content_id)
        if meta is None:
            continue
        content_types.add(meta.content_type)
        topics.update(meta.hashtags)

    score = (len(content_types) * 0.3 + len(topics) * 0.1) / max(len(events) * 0.1, 1.0)
    return min(score, 1.0)


def calculate_recency_weights(events: Sequence[InteractionEvent], now: Optional[datetime] = None) -> RecencyWeights:
    """Sum of exp(-age / 1 day) per kind (views, saves, creations), each capped at 2.0."""
    now = now or datetime.now(timezone.utc)
    totals = {"view": 0.0, "save": 0.0, "create": 0.0}
    for event in events:
        if event.kind not in totals:
            continue
        age = max((now - event.timestamp).total_seconds(), 0.0)
        totals[event.kind] += math.exp(-age / SECONDS_PER_DAY)

    return RecencyWeights(
        recent_views=min(totals["view"], RECENCY_WEIGHT_CAP),
        recent_saves=min(totals["save"], RECENCY_WEIGHT_CAP),
        recent_creations=min(totals["create"], RECENCY_WEIGHT_CAP),
    )


def calculate_session_patterns(events: Sequence[InteractionEvent]) -> tuple[float, float]:
    """
    Average session length (minutes) and interactions per minute.

    Events without a session id are grouped into one "default" session.
    """
    sessions: Dict[str, List[datetime]] = defaultdict(list)
    for event in events:
        sessions[event.session_id or "default"].append(event.timestamp)
    if not sessions:
        return 0.0, 0.0

    lengths = []
    velocities = []
    for timestamps in sessions.values():
        minutes = (max(timestamps) - min(timestamps)).total_seconds() / 60.0
        lengths.append(minutes)
        velocities.append(len(timestamps) / max(minutes, 0.1))

    return sum(lengths) / len(lengths), sum(velocities) / len(velocities)


def preferred_hours(events: Sequence[InteractionEvent], top: int = 6) -> List[int]:
    counts = Counter(event.timestamp.hour for event in events)
    return [hour for hour, _ in sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:top]]


def apply_diversity_filter(items: Sequence[CandidateContent], max_consecutive: int = 2) -> List[CandidateContent]:
    """
    Reorder so no more than ``max_consecutive`` items of one content type run back to back.

    The highest-ranked item that does not extend a run is taken next. When no
    remaining item fits, the rest are appended in rank order.
    """
    pending = list(items)
    result: List[CandidateContent] = []

    while pending:
        tail = result[-max_consecutive:]
        for index, item in enumerate(pending):
            run = len(tail) == max_consecutive and all(r.content_type == item.content_type for r in tail)
            if not run:
                result.append(pending.pop(index))
                break
        else:
            result.extend(pending)
            break

    return result


class BehaviorTracker:
    """
    Buffers interactions and maintains per-user behavior profiles.

    Example:
        >>> tracker = BehaviorTracker(repository, cache, vector_store)
        >>> tracker.start()
        >>> await tracker.track_interaction(InteractionEvent(user_id="u1", content_id="p1", kind="save"))
        >>> await tracker.stop()
    """

    def __init__(
        self,
        repository: ContentRepository,
        cache: CacheStore,
        vector_store: Optional[Any] = None,
        buffer_size: int = 100,
        flush_interval: float = 30.0,
        max_consecutive: int = 2,
    ):
        """
        Initialize the tracker.

        Args:
            repository: Persists interactions and serves content rows
            cache: Shared cache for profiles and session stats
            vector_store: Optional VectorStoreClient for content metadata lookups
            buffer_size: Per-user buffer capacity that triggers a flush (default: 100)
            flush_interval: Seconds between timer flushes (default: 30)
            max_consecutive: Longest same-type run allowed by diversity filtering
        """
        self._repository = repository
        self._cache = cache
        self._vector_store = vector_store
        self._buffer_size = buffer_size
        self._max_consecutive = max_consecutive

        self._buffers: Dict[str, List[InteractionEvent]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_holders: Dict[str, int] = {}
        self._backoff: Set[str] = set()
        self._flush_task = PeriodicTask(self.flush_all, flush_interval, name="behavior-flush")

        logger.info(f"BehaviorTracker initialized (buffer_size={buffer_size}, flush_interval={flush_interval}s)")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._flush_task.start()

    async def stop(self) -> None:
        """Cancel the timer and flush whatever is still buffered."""
        await self._flush_task.stop()
        await self.flush_all()

    def buffered_count(self, user_id: str) -> int:
        return len(self._buffers.get(user_id, []))

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def track_interaction(self, event: InteractionEvent) -> None:
        """
        Buffer an interaction; flush the user's buffer once it reaches capacity.

        After a failed flush the user's buffer is left to the timer path and
        kept at capacity by dropping the oldest interactions.
        """
        try:
            buffer = self._buffers.setdefault(event.user_id, [])
            buffer.append(event)
            if len(buffer) >= self._buffer_size:
                if event.user_id in self._backoff:
                    self._trim(event.user_id)
                else:
                    await self.flush_user(event.user_id)

            await self._update_session(event)
        except Exception as e:
            logger.error(f"Failed to track interaction for {event.user_id}: {e}")

    def _trim(self, user_id: str) -> None:
        buffer = self._buffers.get(user_id, [])
        overflow = len(buffer) - self._buffer_size
        if overflow > 0:
            del buffer[:overflow]
            logger.warning(f"Interaction buffer for {user_id} is full, dropped {overflow} oldest interactions")

    async def _update_session(self, event: InteractionEvent) -> None:
        key = f"{SESSION_PREFIX}{event.user_id}:{event.session_id or 'default'}"
        now = time.time()

        session = await self._cache.get(key) or {"started_at": now, "interaction_count": 0}
        session["interaction_count"] += 1
        session["last_activity"] = now
        minutes = (now - session["started_at"]) / 60.0
        session["interaction_velocity"] = session["interaction_count"] / max(minutes, 0.1)

        await self._cache.set(key, session, CacheTTL.SESSION)

    async def flush_user(self, user_id: str) -> int:
        """
        Persist and apply one user's buffered interactions.

        The buffer is swapped out before processing, so it is empty as soon as
        the flush starts. Flushes for the same user are serialized. If the
        interactions cannot be persisted they are put back at the front of the
        buffer, trimmed to capacity.

        Returns:
            Number of interactions flushed
        """
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._lock_holders[user_id] = self._lock_holders.get(user_id, 0) + 1
        try:
            async with lock:
                return await self._flush_locked(user_id)
        finally:
            self._lock_holders[user_id] -= 1
            if not self._lock_holders[user_id]:
                del self._lock_holders[user_id]
                del self._locks[user_id]

    async def _flush_locked(self, user_id: str) -> int:
        events = self._buffers.pop(user_id, [])
        if not events:
            return 0

        try:
            await self._repository.record_interactions(events)
        except Exception as e:
            logger.error(f"Failed to persist {len(events)} interactions for {user_id}: {e}")
            self._buffers[user_id] = events + self._buffers.get(user_id, [])
            self._trim(user_id)
            self._backoff.add(user_id)
            return 0

        self._backoff.discard(user_id)
        await self.update_user_preferences(user_id, events)
        logger.debug(f"Flushed {len(events)} interactions for {user_id}")
        return len(events)

    async def flush_all(self) -> int:
        """Flush every user with buffered interactions (timer path)."""
        flushed = 0
        for user_id in list(self._buffers):
            flushed += await self.flush_user(user_id)
        if flushed:
            logger.info(f"Flushed {flushed} buffered interactions")
        return flushed

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def _get_content_metadata(self, content_ids: Iterable[str]) -> Dict[str, ContentMetadata]:
        ids = list(dict.fromkeys(content_ids))
        metadata: Dict[str, ContentMetadata] = {}
        if not ids:
            return metadata

        if self._vector_store is not None:
            try:
                records = await self._vector_store.search_by_metadata({"original_id": ids}, limit=len(ids))
                for record in records:
                    metadata[record.id] = ContentMetadata(
                        content_id=record.id,
                        content_type=record.payload.content_type or "post",
                        hashtags=record.payload.hashtags,
                        author_id=record.payload.user_id,
                    )
            except Exception as e:
                logger.warning(f"Vector metadata lookup failed, using repository: {e}")

        missing = [content_id for content_id in ids if content_id not in metadata]
        if missing:
            try:
                for row in await self._repository.get_content_by_ids(missing):
                    metadata[row.id] = ContentMetadata(
                        content_id=row.id,
                        content_type=row.content_type,
                        hashtags=row.hashtags,
                        author_id=row.user_id,
                    )
            except Exception as e:
                logger.warning(f"Repository metadata lookup failed for {len(missing)} items: {e}")

        return metadata

    def _apply_events(
        self,
        profile: UserBehaviorProfile,
        events: Sequence[InteractionEvent],
        metadata: Dict[str, ContentMetadata],
    ) -> None:
        preferences = profile.preferences
        for event in sorted(events, key=lambda e: e.timestamp):
            weight = INTERACTION_WEIGHTS.get(event.kind, 0.1)
            meta = metadata.get(event.content_id)
            if meta is not None:
                preferences.content_types[meta.content_type] = _smooth_affinity(
                    preferences.content_types.get(meta.content_type), weight
                )
                for tag in meta.hashtags:
                    preferences.topics[tag] = _smooth_affinity(preferences.topics.get(tag), weight)
                if meta.author_id and meta.author_id != profile.user_id:
                    counts = preferences.social.interacts_with_users
                    counts[meta.author_id] = counts.get(meta.author_id, 0) + 1

            if event.duration:
                engagement = preferences.engagement
                engagement.average_view_duration = (
                    engagement.average_view_duration * DURATION_DECAY
                    + event.duration * (1 - DURATION_DECAY)
                )

    async def _refresh_social(self, profile: UserBehaviorProfile) -> None:
        try:
            following = await self._repository.get_following_ids(profile.user_id)
            profile.preferences.social.follows_users = sorted(following)
        except Exception as e:
            logger.warning(f"Could not load follows for {profile.user_id}: {e}")

    def _finish(self, profile: UserBehaviorProfile, events: Sequence[InteractionEvent], metadata: Dict[str, ContentMetadata]) -> None:
        profile.recency_weights = calculate_recency_weights(events)
        profile.diversity_preference = calculate_diversity_preference(events, metadata)
        session_length, velocity = calculate_session_patterns(events)
        engagement = profile.preferences.engagement
        engagement.session_length = session_length
        engagement.interaction_velocity = velocity
        engagement.preferred_hours = preferred_hours(events)
        profile.last_updated = datetime.now(timezone.utc)

    async def _store_profile(self, profile: UserBehaviorProfile) -> None:
        await self._cache.set(
            f"{BEHAVIOR_PROFILE_PREFIX}{profile.user_id}",
            profile.model_dump(mode="json"),
            CacheTTL.BEHAVIOR_PROFILE,
        )

    async def _compute_profile(self, user_id: str) -> Optional[UserBehaviorProfile]:
        events = await self._repository.get_recent_interactions(user_id, PROFILE_HISTORY_LIMIT)
        if not events:
            return None

        metadata = await self._get_content_metadata(event.content_id for event in events)
        profile = UserBehaviorProfile(user_id=user_id)
        self._apply_events(profile, events, metadata)

        durations = [event.duration for event in events if event.duration]
        profile.preferences.engagement.average_view_duration = (
            sum(durations) / len(durations) if durations else 0.0
        )
        self._finish(profile, events, metadata)
        profile.total_interactions = len(events)
        await self._refresh_social(profile)
        return profile

    async def update_user_preferences(self, user_id: str, events: Sequence[InteractionEvent]) -> None:
        """
        Fold a batch of interactions into the user's cached profile.

        Without a cached profile the profile is rebuilt from persisted history
        (which already includes ``events``) instead.
        """
        try:
            cached = await self._cache.get(f"{BEHAVIOR_PROFILE_PREFIX}{user_id}")
            if cached is None:
                profile = await self._compute_profile(user_id)
                if profile is None:
                    profile = UserBehaviorProfile(user_id=user_id)
                    await self._fold(profile, events)
            else:
                profile = UserBehaviorProfile.model_validate(cached)
                await self._fold(profile, events)

            await self._store_profile(profile)
        except Exception as e:
            logger.error(f"Failed to update preferences for {user_id}: {e}")

    async def _fold(self, profile: UserBehaviorProfile, events: Sequence[InteractionEvent]) -> None:
        metadata = await self._get_content_metadata(event.content_id for event in events)
        self._apply_events(profile, events, metadata)
        self._finish(profile, events, metadata)
        profile.total_interactions += len(events)
        await self._refresh_social(profile)

    async def get_user_behavior_profile(self, user_id: str) -> Optional[UserBehaviorProfile]:
        """Cached profile, or one rebuilt from the last 1000 interactions. None without history."""
        try:
            cached = await self._cache.get(f"{BEHAVIOR_PROFILE_PREFIX}{user_id}")
            if cached is not None:
                return UserBehaviorProfile.model_validate(cached)

            profile = await self._compute_profile(user_id)
            if profile is not None:
                await self._store_profile(profile)
            return profile
        except Exception as e:
            logger.error(f"Failed to load behavior profile for {user_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    async def generate_behavior_insights(self, user_id: str) -> List[BehaviorInsight]:
        profile = await self.get_user_behavior_profile(user_id)
        if profile is None:
            return []

        insights = []
        for analyze in (self._content_type_insight, self._engagement_insight, self._social_insight):
            insight = analyze(profile)
            if insight is not None:
                insights.append(insight)
        return insights

    @staticmethod
    def _content_type_insight(profile: UserBehaviorProfile) -> Optional[BehaviorInsight]:
        content_types = profile.preferences.content_types
        if not content_types:
            return None

        dominant, affinity = max(content_types.items(), key=lambda item: item[1])
        if affinity <= 0.7:
            return None
        return BehaviorInsight(
            type="content_type_shift",
            description=f"Strong preference for {dominant} content ({affinity * 100:.0f}% affinity)",
            confidence=min(affinity, 1.0),
            recommendations=[
                f"Surface more {dominant} content in discovery feed",
                f"Consider promoting {dominant} creators",
            ],
        )

    @staticmethod
    def _engagement_insight(profile: UserBehaviorProfile) -> Optional[BehaviorInsight]:
        duration = profile.preferences.engagement.average_view_duration
        if duration > 30:
            return BehaviorInsight(
                type="engagement_pattern",
                description=f"High engagement user (avg {duration:.0f}s view time)",
                confidence=0.8,
                recommendations=["Prioritize longer-form content", "Surface detailed, comprehensive posts"],
            )
        if duration < 10:
            return BehaviorInsight(
                type="engagement_pattern",
                description=f"Quick browser (avg {duration:.0f}s view time)",
                confidence=0.8,
                recommendations=[
                    "Prioritize concise, easily digestible content",
                    "Surface visually striking posts",
                ],
            )
        return None

    @staticmethod
    def _social_insight(profile: UserBehaviorProfile) -> Optional[BehaviorInsight]:
        social = profile.preferences.social
        total_interactions = sum(social.interacts_with_users.values())
        if len(social.follows_users) > 100 and total_interactions > 500:
            return BehaviorInsight(
                type="social_behavior",
                description="Highly social user with strong community engagement",
                confidence=0.9,
                recommendations=[
                    "Surface content from followed users",
                    "Promote community discussions and comments",
                    "Highlight trending topics in their network",
                ],
            )
        return None

    # ------------------------------------------------------------------
    # Personalization
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_behavior_score(candidate: CandidateContent, profile: UserBehaviorProfile) -> float:
        preferences = profile.preferences
        score = 0.5
        score += preferences.content_types.get(candidate.content_type, NEUTRAL_AFFINITY) * 0.3

        if candidate.hashtags:
            topic_total = sum(preferences.topics.get(tag, NEUTRAL_AFFINITY) for tag in candidate.hashtags)
            score += topic_total / len(candidate.hashtags) * 0.3

        if candidate.user_id in preferences.social.follows_users:
            score += 0.2
        score += min(preferences.social.interacts_with_users.get(candidate.user_id, 0) * 0.1, 0.2)

        return clamp(score)

    async def get_personalized_recommendations(
        self, user_id: str, candidates: Sequence[CandidateContent], limit: int = 20
    ) -> List[CandidateContent]:
        """
        Blend externally scored candidates with behavior affinity.

        final = 0.7 * external final score + 0.3 * behavior score, then
        diversity filtering when the user prefers varied content.
        """
        try:
            profile = await self.get_user_behavior_profile(user_id)
            if profile is None:
                return list(candidates[:limit])

            scored = []
            for candidate in candidates:
                behavior = self.calculate_behavior_score(candidate, profile)
                scored.append(
                    candidate.model_copy(
                        update={
                            "behavior_score": behavior,
                            "final_score": candidate.final_score * 0.7 + behavior * 0.3,
                        }
                    )
                )
            scored.sort(key=lambda c: c.final_score, reverse=True)

            if profile.diversity_preference >= DIVERSITY_THRESHOLD:
                scored = apply_diversity_filter(scored, self._max_consecutive)
            return scored[:limit]
        except Exception as e:
            logger.error(f"Behavior personalization failed for {user_id}: {e}")
            return list(candidates[:limit])

    async def get_session_stats(self, user_id: str, session_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        return await self._cache.get(f"{SESSION_PREFIX}{user_id}:{session_id or 'default'}")
