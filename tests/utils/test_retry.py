"""Tests for the shared retry helper."""

import asyncio

import pytest

from discovery_engine.errors import TransientNetworkError, UpstreamUnavailableError, ValidationError
from discovery_engine.utils.retry import compute_delay, retry_async


def test_compute_delay_exponential():
    assert compute_delay(1, 0.1, "exponential") == pytest.approx(0.2)
    assert compute_delay(2, 0.1, "exponential") == pytest.approx(0.4)
    assert compute_delay(3, 0.1, "exponential") == pytest.approx(0.8)


def test_compute_delay_fixed():
    assert compute_delay(1, 1.0, "fixed") == 1.0
    assert compute_delay(5, 1.0, "fixed") == 1.0


@pytest.mark.asyncio
async def test_retry_succeeds_after_transient_failures():
    calls = []

    async def operation():
        calls.append(1)
        if len(calls) < 3:
            raise TransientNetworkError("connection reset")
        return "ok"

    result = await retry_async(operation, attempts=3, base_delay=0)

    assert result == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retry_exhausted_raises_upstream_unavailable():
    calls = []

    async def operation():
        calls.append(1)
        raise TransientNetworkError("down")

    with pytest.raises(UpstreamUnavailableError) as exc_info:
        await retry_async(operation, attempts=3, base_delay=0, description="search")

    assert len(calls) == 3
    assert isinstance(exc_info.value.last_error, TransientNetworkError)


@pytest.mark.asyncio
async def test_non_retryable_errors_propagate_immediately():
    calls = []

    async def operation():
        calls.append(1)
        raise ValidationError("bad input")

    with pytest.raises(ValidationError):
        await retry_async(operation, attempts=5, base_delay=0)

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_deadline_aborts_retries():
    async def operation():
        await asyncio.sleep(1)
        return "late"

    with pytest.raises(UpstreamUnavailableError):
        await retry_async(operation, attempts=3, base_delay=0, deadline=0.05)
