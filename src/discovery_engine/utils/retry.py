"""
Retry helper shared by the vector store client and the embedding service.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Literal, Optional, Tuple, Type, TypeVar

from discovery_engine.errors import TransientNetworkError, UpstreamUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_delay(attempt: int, base_delay: float, backoff: Literal["exponential", "fixed"]) -> float:
    """
    Delay before the next attempt.

    ``attempt`` is 1-based: with exponential backoff and a 0.1s base the
    delays are 0.2s, 0.4s, 0.8s...
    """
    if backoff == "fixed":
        return base_delay
    return (2**attempt) * base_delay


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 0.1,
    backoff: Literal["exponential", "fixed"] = "exponential",
    retry_on: Tuple[Type[BaseException], ...] = (TransientNetworkError,),
    deadline: Optional[float] = None,
    description: str = "operation",
) -> T:
    """
    Run ``operation`` until it succeeds or the retry budget is spent.

    Only exceptions in ``retry_on`` are retried; anything else propagates at
    once. When every attempt fails, or the overall ``deadline`` (seconds)
    expires, ``UpstreamUnavailableError`` is raised carrying the last error.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt
        attempts: Total number of attempts (>= 1)
        base_delay: Delay unit in seconds
        backoff: "exponential" (2**attempt * base_delay) or "fixed" (base_delay)
        retry_on: Exception types considered transient
        deadline: Optional wall-clock budget in seconds for all attempts
        description: Used in log and error messages

    Returns:
        The operation's result
    """
    attempts = max(1, attempts)
    last_error: Optional[BaseException] = None

    async def _attempt_loop() -> T:
        nonlocal last_error
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except retry_on as e:
                last_error = e
                if attempt >= attempts:
                    break
                delay = compute_delay(attempt, base_delay, backoff)
                logger.warning(
                    f"{description} failed (attempt {attempt}/{attempts}): {e}; retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        raise UpstreamUnavailableError(
            f"{description} failed after {attempts} attempts: {last_error}",
            last_error=last_error,
        )

    if deadline is None:
        return await _attempt_loop()

    try:
        return await asyncio.wait_for(_attempt_loop(), timeout=deadline)
    except asyncio.TimeoutError as e:
        logger.warning(f"{description} exceeded deadline of {deadline}s")
        raise UpstreamUnavailableError(
            f"{description} exceeded deadline of {deadline}s",
            last_error=last_error or e,
        ) from e
