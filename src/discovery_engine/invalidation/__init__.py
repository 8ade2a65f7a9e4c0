"""
Cache invalidation for discovery-engine.

- CacheInvalidationEngine: rule evaluation, immediate and deferred sweeps
- classifier: request/operation to event classification
- DEFAULT_RULES: rules for the content workflow
"""

from discovery_engine.invalidation.classifier import classify_operation, classify_request, classify_rest
from discovery_engine.invalidation.engine import CacheInvalidationEngine, expand_pattern
from discovery_engine.invalidation.models import (
    InvalidationEvent,
    InvalidationMetrics,
    InvalidationReport,
    InvalidationRule,
    InvalidationStrategy,
    RuleConditions,
    RuleMonitoring,
)
from discovery_engine.invalidation.rules import DEFAULT_RULES

__all__ = [
    "CacheInvalidationEngine",
    "DEFAULT_RULES",
    "InvalidationEvent",
    "InvalidationMetrics",
    "InvalidationReport",
    "InvalidationRule",
    "InvalidationStrategy",
    "RuleConditions",
    "RuleMonitoring",
    "classify_operation",
    "classify_request",
    "classify_rest",
    "expand_pattern",
]
