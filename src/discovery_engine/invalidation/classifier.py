"""
Classify successful write requests into invalidation events.

REST requests are classified by path segments and method; GraphQL requests by
the mutation names that appear in the operation text. Names are matched as
whole identifiers, so ``unlikePost`` never also counts as ``likePost``.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple, Union

from discovery_engine.invalidation.models import EventType, InvalidationEvent

logger = logging.getLogger(__name__)

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# (operation name, action, event type, content type)
GRAPHQL_OPERATIONS: List[Tuple[str, str, EventType, Optional[str]]] = [
    ("createPost", "post_create", "content_update", "post"),
    ("updatePost", "post_update", "content_update", "post"),
    ("publishPost", "post_update", "content_update", "post"),
    ("unpublishPost", "post_update", "content_update", "post"),
    ("deletePost", "post_delete", "content_update", "post"),
    ("likePost", "like", "user_action", "post"),
    ("unlikePost", "unlike", "user_action", "post"),
    ("savePost", "save", "user_action", "post"),
    ("unsavePost", "unsave", "user_action", "post"),
    ("createComment", "comment", "user_action", "post"),
    ("updateProfile", "profile_update", "user_action", None),
    ("followUser", "follow", "user_action", None),
    ("unfollowUser", "unfollow", "user_action", None),
    ("blockUser", "block", "user_action", None),
    ("unblockUser", "unblock", "user_action", None),
    ("updateSettings", "settings_change", "user_action", None),
    ("updatePreferences", "settings_change", "user_action", None),
    ("uploadMedia", "media_create", "content_update", "media"),
    ("updateMedia", "media_update", "content_update", "media"),
    ("deleteMedia", "media_delete", "content_update", "media"),
]

_CONTENT_ID_VARIABLES = ("contentId", "postId", "mediaId", "id")

_POST_INTERACTIONS = {
    ("like", "POST"): "like",
    ("like", "DELETE"): "unlike",
    ("save", "POST"): "save",
    ("save", "DELETE"): "unsave",
    ("comments", "POST"): "comment",
}

_SOCIAL_INTERACTIONS = {
    ("follow", "POST"): "follow",
    ("follow", "DELETE"): "unfollow",
    ("block", "POST"): "block",
    ("block", "DELETE"): "unblock",
}

_CRUD_ACTIONS = {"POST": "create", "PUT": "update", "PATCH": "update", "DELETE": "delete"}


def _segments(path: str) -> List[str]:
    return [segment for segment in path.split("?")[0].split("/") if segment]


def _after(segments: List[str], name: str) -> List[str]:
    index = segments.index(name)
    return segments[index + 1 :]


def classify_operation(
    operation: str,
    user_id: Optional[str] = None,
    variables: Optional[Dict[str, Any]] = None,
) -> List[InvalidationEvent]:
    """
    Events for every known mutation named in a GraphQL operation.

    The content id is taken from the first of ``contentId``, ``postId``,
    ``mediaId`` or ``id`` present in ``variables``.
    """
    if not operation:
        return []

    content_id = None
    for key in _CONTENT_ID_VARIABLES:
        value = (variables or {}).get(key)
        if value is not None:
            content_id = str(value)
            break

    events = []
    for name, action, event_type, content_type in GRAPHQL_OPERATIONS:
        if re.search(rf"\b{name}\b", operation):
            events.append(
                InvalidationEvent(
                    type=event_type,
                    action=action,
                    content_type=content_type,
                    user_id=user_id,
                    content_id=content_id if content_type else None,
                    metadata={"operation": name},
                )
            )
    return events


def classify_rest(path: str, method: str, user_id: Optional[str] = None) -> List[InvalidationEvent]:
    """Events for a REST write, based on the resource named in the path."""
    method = method.upper()
    if method not in WRITE_METHODS:
        return []

    segments = _segments(path)
    metadata = {"path": path, "method": method}

    if "posts" in segments:
        rest = _after(segments, "posts")
        content_id = rest[0] if rest else None
        if len(rest) >= 2:
            action = _POST_INTERACTIONS.get((rest[1], method))
            if action is None:
                return []
            return [
                InvalidationEvent(
                    type="user_action",
                    action=action,
                    content_type="post",
                    user_id=user_id,
                    content_id=content_id,
                    metadata=metadata,
                )
            ]
        return [
            InvalidationEvent(
                type="content_update",
                action=f"post_{_CRUD_ACTIONS[method]}",
                content_type="post",
                user_id=user_id,
                content_id=content_id,
                metadata=metadata,
            )
        ]

    if "users" in segments or "profile" in segments:
        rest = _after(segments, "users") if "users" in segments else []
        if len(rest) >= 2:
            action = _SOCIAL_INTERACTIONS.get((rest[1], method))
            if action is not None:
                return [
                    InvalidationEvent(
                        type="user_action",
                        action=action,
                        user_id=user_id,
                        metadata={**metadata, "target_user_id": rest[0]},
                    )
                ]
        if method in ("PUT", "PATCH"):
            return [InvalidationEvent(type="user_action", action="profile_update", user_id=user_id, metadata=metadata)]
        return []

    if "media" in segments:
        rest = _after(segments, "media")
        return [
            InvalidationEvent(
                type="content_update",
                action=f"media_{_CRUD_ACTIONS[method]}",
                content_type="media",
                user_id=user_id,
                content_id=rest[0] if rest else None,
                metadata=metadata,
            )
        ]

    if "admin" in segments or "system" in segments:
        return [InvalidationEvent(type="system_event", action="admin_operation", user_id=user_id, metadata=metadata)]

    return []


def _parse_graphql_body(body: Union[str, bytes, Dict[str, Any], None]) -> Tuple[str, Dict[str, Any]]:
    if body is None:
        return "", {}
    if isinstance(body, (str, bytes)):
        try:
            body = json.loads(body)
        except ValueError:
            logger.debug("Ignoring GraphQL request with an unparseable body")
            return "", {}
    if not isinstance(body, dict):
        return "", {}

    operation = body.get("query") or body.get("operationName") or ""
    variables = body.get("variables") if isinstance(body.get("variables"), dict) else {}
    return str(operation), variables


def classify_request(
    path: str,
    method: str,
    user_id: Optional[str] = None,
    body: Union[str, bytes, Dict[str, Any], None] = None,
) -> List[InvalidationEvent]:
    """Classify a request; ``POST .../graphql`` bodies are inspected for mutation names."""
    if "graphql" in _segments(path) and method.upper() == "POST":
        operation, variables = _parse_graphql_body(body)
        return classify_operation(operation, user_id, variables)
    return classify_rest(path, method, user_id)
