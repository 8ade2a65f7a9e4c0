"""
Storage protocol definitions for content and interaction data.

The discovery core never talks to the relational database directly; it goes
through a ContentRepository. Implementations can be backed by PostgreSQL,
an ORM, a remote service or (for tests) memory.
"""

from datetime import datetime
from typing import Iterable, List, Protocol, Sequence, Set

from typing_extensions import runtime_checkable

from discovery_engine.models import ContentRow, InteractionEvent


@runtime_checkable
class ContentRepository(Protocol):
    """
    Protocol for the relational collaborator of the discovery core.

    All methods are async and may raise; callers decide whether a failure
    degrades the request or propagates.
    """

    async def get_seen_content_ids(self, user_id: str) -> Set[str]:
        """Ids of content already shown to the user."""
        ...

    async def get_saved_content_ids(self, user_id: str, limit: int = 100) -> List[str]:
        """
        Ids of content the user saved, most recent first.

        Args:
            user_id: The user
            limit: Maximum ids to return
        """
        ...

    async def get_liked_content_ids(self, user_id: str, limit: int = 100) -> List[str]:
        """Ids of content the user liked, most recent first."""
        ...

    async def get_recent_content(
        self, exclude_ids: Iterable[str], since: datetime, limit: int
    ) -> List[ContentRow]:
        """
        Non-draft content created at or after ``since``, newest first.

        Args:
            exclude_ids: Content ids to leave out
            since: Oldest creation time to include
            limit: Maximum rows to return
        """
        ...

    async def filter_visible(self, viewer_id: str, rows: Sequence[ContentRow]) -> List[ContentRow]:
        """
        Drop rows the viewer may not see.

        Public content is visible to everyone; private content only to its
        author and the author's followers. Order is preserved.
        """
        ...

    async def get_content_by_ids(self, content_ids: Iterable[str]) -> List[ContentRow]:
        """Rows for the given ids; unknown ids are skipped."""
        ...

    async def get_following_ids(self, user_id: str) -> Set[str]:
        """Ids of users the given user follows."""
        ...

    async def get_recent_interactions(self, user_id: str, limit: int = 1000) -> List[InteractionEvent]:
        """The user's interactions, most recent first."""
        ...

    async def record_interactions(self, events: Sequence[InteractionEvent]) -> None:
        """Persist a batch of interactions."""
        ...

    async def record_seen(self, user_id: str, content_ids: Iterable[str]) -> None:
        """Mark content as shown to the user."""
        ...
