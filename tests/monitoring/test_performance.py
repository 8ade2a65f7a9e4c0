"""Tests for PerformanceMonitor."""

import asyncio

import pytest

from discovery_engine.monitoring import PerformanceMonitor


@pytest.fixture
def monitor():
    return PerformanceMonitor(interval=0.01)


def test_stats_summarize_timings(monitor):
    for value in range(1, 101):
        monitor.timing("vector.search", value)

    stats = monitor.stats("vector.search")

    assert stats["count"] == 100
    assert stats["min"] == 1.0
    assert stats["max"] == 100.0
    assert stats["avg"] == pytest.approx(50.5)
    assert stats["p50"] == pytest.approx(50.5)
    assert stats["p95"] == pytest.approx(95.05)


def test_stats_for_unknown_timing(monitor):
    assert monitor.stats("nothing")["count"] == 0


def test_histograms_are_bounded():
    monitor = PerformanceMonitor(histogram_size=10)
    for value in range(25):
        monitor.timing("t", value)

    stats = monitor.stats("t")
    assert stats["count"] == 10
    assert stats["min"] == 15.0


def test_counters_and_gauges(monitor):
    monitor.increment("recommendation.fallback")
    monitor.increment("recommendation.fallback", 2)
    monitor.gauge("recommendation.quality", 0.7)

    assert monitor.counter("recommendation.fallback") == 3
    assert monitor.get_gauge("recommendation.quality") == 0.7
    snapshot = monitor.snapshot()
    assert snapshot["counters"]["recommendation.fallback"] == 3

    monitor.reset()
    assert monitor.snapshot() == {"timings": {}, "counters": {}, "gauges": {}}


@pytest.mark.asyncio
async def test_measure_records_time_and_errors(monitor):
    async with monitor.measure("work"):
        await asyncio.sleep(0.01)

    with pytest.raises(RuntimeError):
        async with monitor.measure("work"):
            raise RuntimeError("failed")

    assert monitor.stats("work")["count"] == 2
    assert monitor.stats("work")["max"] >= 10.0 * 0.9
    assert monitor.counter("work.errors") == 1


@pytest.mark.asyncio
async def test_collectors_polled_while_running(monitor):
    async def async_collector():
        return {"cache.size": 42}

    def broken_collector():
        raise RuntimeError("unavailable")

    monitor.add_collector(lambda: {"queue.depth": 3})
    monitor.add_collector(async_collector)
    monitor.add_collector(broken_collector)

    monitor.start()
    assert monitor.running
    await asyncio.sleep(0.05)
    await monitor.stop()

    assert not monitor.running
    assert monitor.get_gauge("queue.depth") == 3
    assert monitor.get_gauge("cache.size") == 42
