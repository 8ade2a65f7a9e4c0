"""
In-memory content repository.

Provides a simple in-memory implementation of ContentRepository, suitable for
testing and local development. Data is lost on restart.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Sequence, Set

from discovery_engine.models import ContentRow, InteractionEvent

logger = logging.getLogger(__name__)


class InMemoryContentRepository:
    """
    In-memory implementation of the ContentRepository protocol.

    Saves and likes are kept as ordered lists (oldest first) so "most recent
    first" queries are a reversed slice.
    """

    def __init__(self):
        self._content: Dict[str, ContentRow] = {}
        self._seen: Dict[str, Set[str]] = defaultdict(set)
        self._saved: Dict[str, List[str]] = defaultdict(list)
        self._liked: Dict[str, List[str]] = defaultdict(list)
        self._following: Dict[str, Set[str]] = defaultdict(set)
        self._interactions: Dict[str, List[InteractionEvent]] = defaultdict(list)

        logger.info("InMemoryContentRepository initialized")

    # Mutators used to seed data

    def add_content(self, *rows: ContentRow) -> None:
        for row in rows:
            self._content[row.id] = row

    def add_save(self, user_id: str, content_id: str) -> None:
        if content_id not in self._saved[user_id]:
            self._saved[user_id].append(content_id)

    def add_like(self, user_id: str, content_id: str) -> None:
        if content_id not in self._liked[user_id]:
            self._liked[user_id].append(content_id)

    def add_follow(self, follower_id: str, followee_id: str) -> None:
        self._following[follower_id].add(followee_id)

    # ContentRepository

    async def get_seen_content_ids(self, user_id: str) -> Set[str]:
        return set(self._seen.get(user_id, set()))

    async def get_saved_content_ids(self, user_id: str, limit: int = 100) -> List[str]:
        return list(reversed(self._saved.get(user_id, [])))[:limit]

    async def get_liked_content_ids(self, user_id: str, limit: int = 100) -> List[str]:
        return list(reversed(self._liked.get(user_id, [])))[:limit]

    async def get_recent_content(
        self, exclude_ids: Iterable[str], since: datetime, limit: int
    ) -> List[ContentRow]:
        excluded = set(exclude_ids)
        rows = [
            row
            for row in self._content.values()
            if row.id not in excluded and not row.is_draft and row.created_at >= since
        ]
        rows.sort(key=lambda row: row.created_at, reverse=True)
        return rows[:limit]

    async def filter_visible(self, viewer_id: str, rows: Sequence[ContentRow]) -> List[ContentRow]:
        following = self._following.get(viewer_id, set())
        return [
            row
            for row in rows
            if not row.is_private or row.user_id == viewer_id or row.user_id in following
        ]

    async def get_content_by_ids(self, content_ids: Iterable[str]) -> List[ContentRow]:
        return [self._content[item] for item in content_ids if item in self._content]

    async def get_following_ids(self, user_id: str) -> Set[str]:
        return set(self._following.get(user_id, set()))

    async def get_recent_interactions(self, user_id: str, limit: int = 1000) -> List[InteractionEvent]:
        events = sorted(self._interactions.get(user_id, []), key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    async def record_interactions(self, events: Sequence[InteractionEvent]) -> None:
        for event in events:
            self._interactions[event.user_id].append(event)
        logger.debug(f"Recorded {len(events)} interactions")

    async def record_seen(self, user_id: str, content_ids: Iterable[str]) -> None:
        self._seen[user_id].update(content_ids)
