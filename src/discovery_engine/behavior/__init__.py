"""
Behavior tracking for discovery-engine.

- BehaviorTracker: buffered interaction ingestion, profiles, insights, personalization
- models: behavior profile and insight shapes
"""

from discovery_engine.behavior.models import BehaviorInsight, UserBehaviorProfile
from discovery_engine.behavior.tracker import INTERACTION_WEIGHTS, BehaviorTracker, apply_diversity_filter

__all__ = [
    "BehaviorInsight",
    "BehaviorTracker",
    "INTERACTION_WEIGHTS",
    "UserBehaviorProfile",
    "apply_diversity_filter",
]
