"""
Event-driven cache invalidation.

Matches invalidation events against rules and clears the cache key patterns
they name. Immediate rules clear their patterns (and, when cascading, their
dependent patterns) right away; delayed rules accumulate patterns and clear
each once when the delay window closes. Invalidation never raises to the
caller: failures are logged and reported.
"""

import asyncio
import logging
import re
from fnmatch import fnmatchcase
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from discovery_engine.cache.protocol import CacheStore
from discovery_engine.invalidation.classifier import classify_request
from discovery_engine.invalidation.models import (
    PRIORITY_WEIGHTS,
    InvalidationEvent,
    InvalidationMetrics,
    InvalidationReport,
    InvalidationRule,
)
from discovery_engine.invalidation.rules import DEFAULT_RULES

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def expand_pattern(pattern: str, event: InvalidationEvent) -> Optional[str]:
    """
    Substitute ``{user_id}``, ``{content_id}`` and ``{content_type}`` from the event.

    Returns None if the pattern needs a value the event does not carry.
    """
    values = {
        "user_id": event.user_id,
        "content_id": event.content_id,
        "content_type": event.content_type,
    }
    missing = False

    def _substitute(match: "re.Match[str]") -> str:
        nonlocal missing
        value = values.get(match.group(1))
        if value is None:
            missing = True
            return match.group(0)
        return str(value)

    expanded = _PLACEHOLDER.sub(_substitute, pattern)
    return None if missing else expanded


def rule_matches(rule: InvalidationRule, event: InvalidationEvent) -> bool:
    if not rule.enabled:
        return False
    conditions = rule.conditions
    if conditions.actions and event.action not in conditions.actions:
        return False
    if conditions.content_types and event.content_type is not None:
        return event.content_type in conditions.content_types
    return True


class CacheInvalidationEngine:
    """
    Applies invalidation rules to events.

    Example:
        >>> engine = CacheInvalidationEngine(cache)
        >>> await engine.invalidate_on_request("/api/posts", "POST", 201, user_id="u1")
        >>> await engine.stop()
    """

    def __init__(
        self,
        cache: CacheStore,
        rules: Optional[Iterable[InvalidationRule]] = None,
        batch_delay: Optional[float] = None,
    ):
        """
        Initialize the engine.

        Args:
            cache: Cache store to invalidate
            rules: Rules to apply (default: DEFAULT_RULES)
            batch_delay: Overrides every delayed rule's window, in seconds
        """
        self._cache = cache
        self._rules: Dict[str, InvalidationRule] = {
            rule.id: rule.model_copy(deep=True)
            for rule in (DEFAULT_RULES if rules is None else rules)
        }
        self._batch_delay = batch_delay
        self._pending: Set[str] = set()
        self._flush_task: Optional[asyncio.Task] = None
        self._metrics = InvalidationMetrics()

        logger.info(f"CacheInvalidationEngine initialized with {len(self._rules)} rules")

    # ------------------------------------------------------------------
    # Rule management
    # ------------------------------------------------------------------

    def add_rule(self, rule: InvalidationRule) -> None:
        if rule.id in self._rules:
            raise ValueError(f"Invalidation rule '{rule.id}' already exists")
        self._rules[rule.id] = rule.model_copy(deep=True)
        logger.info(f"Added invalidation rule '{rule.id}' ({rule.pattern})")

    def remove_rule(self, rule_id: str) -> bool:
        removed = self._rules.pop(rule_id, None) is not None
        if removed:
            logger.info(f"Removed invalidation rule '{rule_id}'")
        return removed

    def get_rule(self, rule_id: str) -> Optional[InvalidationRule]:
        return self._rules.get(rule_id)

    def list_rules(self, enabled: Optional[bool] = None, priority: Optional[str] = None) -> List[InvalidationRule]:
        rules = list(self._rules.values())
        if enabled is not None:
            rules = [rule for rule in rules if rule.enabled == enabled]
        if priority is not None:
            rules = [rule for rule in rules if rule.priority == priority]
        return rules

    @staticmethod
    def test_pattern(pattern: str, keys: Iterable[str]) -> List[str]:
        """Keys a glob pattern would invalidate."""
        return [key for key in keys if fnmatchcase(key, pattern)]

    def get_metrics(self) -> InvalidationMetrics:
        return self._metrics.model_copy(update={"pending_patterns": len(self._pending)})

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def _matching_rules(self, event: InvalidationEvent) -> List[InvalidationRule]:
        matched = [rule for rule in self._rules.values() if rule_matches(rule, event)]
        matched.sort(key=lambda rule: PRIORITY_WEIGHTS.get(rule.priority, 0), reverse=True)
        return matched

    async def _invalidate(self, pattern: str, rule: Optional[InvalidationRule], report: Optional[InvalidationReport]) -> int:
        try:
            removed = await self._cache.invalidate_pattern(pattern)
        except Exception as e:
            self._metrics.failures += 1
            if report is not None:
                report.errors.append(f"{pattern}: {e}")
            if rule is None or rule.monitoring.alert_on_failure:
                logger.error(f"Invalidation of '{pattern}' failed: {e}")
            else:
                logger.warning(f"Invalidation of '{pattern}' failed: {e}")
            return 0

        self._metrics.keys_invalidated += removed
        if report is not None:
            report.keys_invalidated += removed
            report.immediate_patterns.append(pattern)
        if rule is not None and rule.monitoring.log_details:
            logger.info(f"Rule '{rule.id}' invalidated {removed} keys matching '{pattern}'")
        else:
            logger.debug(f"Invalidated {removed} keys matching '{pattern}'")
        return removed

    def _defer(self, patterns: List[str], rule: InvalidationRule) -> None:
        self._pending.update(patterns)
        if self._flush_task is not None and not self._flush_task.done():
            return

        delay = self._batch_delay if self._batch_delay is not None else (rule.strategy.delay_seconds or 0.0)
        self._flush_task = asyncio.get_running_loop().create_task(
            self._delayed_flush(delay), name="invalidation-flush"
        )
        logger.debug(f"Scheduled deferred invalidation sweep in {delay}s")

    async def _delayed_flush(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._flush_task = None
        await self.flush_pending()

    async def invalidate_on_event(self, event: InvalidationEvent) -> InvalidationReport:
        """
        Apply every matching rule, highest priority first.

        Returns:
            Report of matched rules, cleared and deferred patterns and errors
        """
        report = InvalidationReport(action=event.action)
        try:
            self._metrics.events_processed += 1
            done: Set[str] = set()

            for rule in self._matching_rules(event):
                primary = expand_pattern(rule.pattern, event)
                if primary is None:
                    self._metrics.rules_skipped += 1
                    report.skipped_rules.append(rule.id)
                    logger.debug(f"Skipping rule '{rule.id}': event '{event.action}' lacks a placeholder value")
                    continue

                patterns = [primary]
                if rule.strategy.cascading:
                    for cascade in rule.cascade_patterns:
                        expanded = expand_pattern(cascade, event)
                        if expanded is not None:
                            patterns.append(expanded)

                rule.trigger_count += 1
                self._metrics.rules_triggered += 1
                report.matched_rules.append(rule.id)

                if rule.strategy.immediate:
                    for pattern in patterns:
                        if pattern in done:
                            continue
                        done.add(pattern)
                        await self._invalidate(pattern, rule, report)
                else:
                    self._defer(patterns, rule)
                    report.deferred_patterns.extend(patterns)
        except Exception as e:
            self._metrics.failures += 1
            report.errors.append(str(e))
            logger.error(f"Invalidation for event '{event.action}' failed: {e}")

        return report

    async def invalidate_on_request(
        self,
        path: str,
        method: str,
        status: int,
        user_id: Optional[str] = None,
        body: Union[str, bytes, Dict[str, Any], None] = None,
    ) -> List[InvalidationReport]:
        """Classify a finished request and invalidate for it. Non-2xx responses are ignored."""
        if not 200 <= status < 300:
            return []

        try:
            events = classify_request(path, method, user_id, body)
        except Exception as e:
            logger.error(f"Could not classify {method} {path} for invalidation: {e}")
            return []

        return [await self.invalidate_on_event(event) for event in events]

    async def flush_pending(self) -> int:
        """Clear every deferred pattern now. Returns keys removed."""
        patterns, self._pending = self._pending, set()
        if not patterns:
            return 0

        removed = 0
        for pattern in sorted(patterns):
            removed += await self._invalidate(pattern, None, None)
        self._metrics.deferred_sweeps += 1
        logger.info(f"Deferred invalidation sweep cleared {removed} keys ({len(patterns)} patterns)")
        return removed

    async def stop(self) -> None:
        """Cancel the pending window and apply whatever was deferred."""
        task, self._flush_task = self._flush_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.flush_pending()
