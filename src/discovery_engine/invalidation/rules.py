"""Default invalidation rules for the content workflow."""

from typing import List

from discovery_engine.invalidation.models import (
    InvalidationRule,
    InvalidationStrategy,
    RuleConditions,
    RuleMonitoring,
)

_ALERTING = RuleMonitoring(track_performance=True, alert_on_failure=True, log_details=True)
_QUIET = RuleMonitoring(track_performance=True, alert_on_failure=False, log_details=False)

DEFAULT_RULES: List[InvalidationRule] = [
    InvalidationRule(
        id="post_create_rule",
        pattern="feed:*",
        description="Invalidate all feeds when a post is created",
        priority="high",
        conditions=RuleConditions(actions=["post_create"], content_types=["post"]),
        strategy=InvalidationStrategy(immediate=True, cascading=True),
        monitoring=_ALERTING,
        cascade_patterns=["discovery_feed:*"],
    ),
    InvalidationRule(
        id="post_update_rule",
        pattern="post:{content_id}*",
        description="Invalidate a post's cache entries when it is updated or deleted",
        priority="high",
        conditions=RuleConditions(actions=["post_update", "post_delete"], content_types=["post"]),
        strategy=InvalidationStrategy(immediate=True, cascading=True),
        monitoring=_ALERTING,
        cascade_patterns=["embedding:content:{content_id}", "discovery_feed:*"],
    ),
    InvalidationRule(
        id="post_interaction_rule",
        pattern="discovery_feed:*",
        description="Invalidate discovery feeds when users interact with posts",
        priority="medium",
        conditions=RuleConditions(
            actions=["like", "unlike", "save", "unsave", "comment"], content_types=["post"]
        ),
        strategy=InvalidationStrategy(immediate=False, delay_seconds=60, batched=True),
        monitoring=_QUIET,
    ),
    InvalidationRule(
        id="preference_signal_rule",
        pattern="user_preferences:{user_id}",
        description="Drop the interacting user's preference vector when their saves or likes change",
        priority="high",
        conditions=RuleConditions(actions=["like", "unlike", "save", "unsave"], content_types=["post"]),
        strategy=InvalidationStrategy(immediate=True),
        monitoring=_QUIET,
    ),
    InvalidationRule(
        id="profile_update_rule",
        pattern="*{user_id}*",
        description="Invalidate all user-related cache when a profile is updated",
        priority="high",
        conditions=RuleConditions(actions=["profile_update"]),
        strategy=InvalidationStrategy(immediate=True, cascading=True),
        monitoring=_ALERTING,
        cascade_patterns=["discovery_feed:*"],
    ),
    InvalidationRule(
        id="social_interaction_rule",
        pattern="feed:{user_id}:*",
        description="Invalidate a user's feeds when they follow, unfollow, block or unblock",
        priority="medium",
        conditions=RuleConditions(actions=["follow", "unfollow", "block", "unblock"]),
        strategy=InvalidationStrategy(immediate=True, cascading=True),
        monitoring=RuleMonitoring(track_performance=True, alert_on_failure=False, log_details=True),
        cascade_patterns=["behavior-profile:{user_id}"],
    ),
    InvalidationRule(
        id="media_update_rule",
        pattern="media:{content_id}*",
        description="Invalidate media cache when media is updated or deleted",
        priority="medium",
        conditions=RuleConditions(actions=["media_update", "media_delete"], content_types=["media"]),
        strategy=InvalidationStrategy(immediate=True),
        monitoring=_ALERTING,
    ),
    InvalidationRule(
        id="admin_operation_rule",
        pattern="*",
        description="Invalidate all cache for critical admin operations",
        priority="critical",
        conditions=RuleConditions(actions=["admin_operation"]),
        strategy=InvalidationStrategy(immediate=True, cascading=True),
        monitoring=_ALERTING,
    ),
]
