"""Models for event-driven cache invalidation."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

EventType = Literal["content_update", "user_action", "system_event"]
Priority = Literal["critical", "high", "medium", "low"]

PRIORITY_WEIGHTS: Dict[str, int] = {"critical": 4, "high": 3, "medium": 2, "low": 1}


class InvalidationEvent(BaseModel):
    """A semantic write event derived from a successful request."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    action: str
    content_type: Optional[str] = None
    user_id: Optional[str] = None
    content_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = {}


class RuleConditions(BaseModel):
    """
    When a rule fires.

    Empty lists match anything. Content types are only checked when the event
    carries one.
    """

    actions: List[str] = []
    content_types: List[str] = []


class InvalidationStrategy(BaseModel):
    immediate: bool = True
    cascading: bool = False
    delay_seconds: Optional[float] = None
    batched: bool = False


class RuleMonitoring(BaseModel):
    track_performance: bool = True
    alert_on_failure: bool = False
    log_details: bool = False


class InvalidationRule(BaseModel):
    """
    Maps matching events to a cache key pattern.

    ``pattern`` and ``cascade_patterns`` may contain ``{user_id}``,
    ``{content_id}`` and ``{content_type}`` placeholders.
    """

    id: str
    pattern: str
    description: str = ""
    priority: Priority = "medium"
    enabled: bool = True
    conditions: RuleConditions = Field(default_factory=RuleConditions)
    strategy: InvalidationStrategy = Field(default_factory=InvalidationStrategy)
    monitoring: RuleMonitoring = Field(default_factory=RuleMonitoring)
    cascade_patterns: List[str] = []
    trigger_count: int = 0


class InvalidationReport(BaseModel):
    """What one event did to the cache."""

    action: str
    matched_rules: List[str] = []
    skipped_rules: List[str] = []
    immediate_patterns: List[str] = []
    deferred_patterns: List[str] = []
    keys_invalidated: int = 0
    errors: List[str] = []


class InvalidationMetrics(BaseModel):
    events_processed: int = 0
    rules_triggered: int = 0
    rules_skipped: int = 0
    keys_invalidated: int = 0
    deferred_sweeps: int = 0
    pending_patterns: int = 0
    failures: int = 0
