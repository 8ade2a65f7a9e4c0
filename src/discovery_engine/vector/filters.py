"""Helpers for building Qdrant payload filters from plain dicts."""

from typing import Any, Dict, List, Optional

from qdrant_client.models import FieldCondition, Filter, MatchAny, MatchValue


def _conditions(fields: Optional[Dict[str, Any]]) -> List[FieldCondition]:
    conditions = []
    for key, value in (fields or {}).items():
        if isinstance(value, (list, tuple, set)):
            conditions.append(FieldCondition(key=key, match=MatchAny(any=list(value))))
        else:
            conditions.append(FieldCondition(key=key, match=MatchValue(value=value)))
    return conditions


def match_filter(
    must: Optional[Dict[str, Any]] = None,
    must_not: Optional[Dict[str, Any]] = None,
) -> Optional[Filter]:
    """
    Build a Filter from ``{field: value}`` maps.

    Scalar values become exact matches, sequences become "any of" matches.
    Returns None when both maps are empty.

    Example:
        >>> match_filter(must={"content_type": ["image", "video"]}, must_not={"user_id": "u1"})
    """
    must_conditions = _conditions(must)
    must_not_conditions = _conditions(must_not)
    if not must_conditions and not must_not_conditions:
        return None

    return Filter(
        must=must_conditions or None,
        must_not=must_not_conditions or None,
    )
