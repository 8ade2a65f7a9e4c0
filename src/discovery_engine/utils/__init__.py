"""Utility helpers for discovery-engine."""

from discovery_engine.utils.hashing import content_hash, point_id
from discovery_engine.utils.periodic import PeriodicTask
from discovery_engine.utils.retry import retry_async
from discovery_engine.utils.side_effects import SideEffectResult, best_effort

__all__ = [
    "content_hash",
    "point_id",
    "PeriodicTask",
    "retry_async",
    "SideEffectResult",
    "best_effort",
]
