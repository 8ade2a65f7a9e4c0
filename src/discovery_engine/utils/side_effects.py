"""
Non-fatal side effects.

Behavior tracking and cache invalidation must never fail the request that
triggered them. ``best_effort`` runs such a coroutine, logs whatever it
raises, and reports the outcome instead of raising.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SideEffectResult:
    ok: bool
    error: Optional[BaseException] = None


async def best_effort(awaitable: Awaitable[object], description: str) -> SideEffectResult:
    try:
        await awaitable
    except Exception as e:
        logger.error(f"{description} failed: {e}", exc_info=True)
        return SideEffectResult(ok=False, error=e)
    return SideEffectResult(ok=True)
