"""
In-process performance monitoring.

Collects timings, counters and gauges from the discovery components. Timings
are kept in bounded histograms (the most recent 1000 samples per name) and
summarized on demand. Collectors registered with ``add_collector`` are polled
on a fixed interval while the monitor is started and their values recorded as
gauges.
"""

import asyncio
import logging
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Deque, Dict, List, Optional, Union

import numpy as np

from discovery_engine.utils.periodic import PeriodicTask

logger = logging.getLogger(__name__)

HISTOGRAM_SIZE = 1000

Collector = Callable[[], Union[Dict[str, float], Awaitable[Dict[str, float]]]]


class PerformanceMonitor:
    """
    Timings, counters and gauges for one process.

    Example:
        >>> monitor = PerformanceMonitor(interval=30)
        >>> async with monitor.measure("vector.search"):
        ...     await client.search_vectors(vector)
        >>> monitor.stats("vector.search")["p95"]
    """

    def __init__(self, interval: float = 30.0, histogram_size: int = HISTOGRAM_SIZE):
        """
        Initialize the monitor.

        Args:
            interval: Seconds between collector polls once started
            histogram_size: Samples kept per timing name
        """
        self._histogram_size = histogram_size
        self._timings: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=self._histogram_size))
        self._counters: Dict[str, float] = defaultdict(float)
        self._gauges: Dict[str, float] = {}
        self._collectors: List[Collector] = []
        self._task = PeriodicTask(self.collect, interval, name="performance-monitor")

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def timing(self, name: str, milliseconds: float) -> None:
        self._timings[name].append(float(milliseconds))

    def increment(self, name: str, value: float = 1) -> None:
        self._counters[name] += value

    def gauge(self, name: str, value: float) -> None:
        self._gauges[name] = float(value)

    @asynccontextmanager
    async def measure(self, name: str) -> AsyncIterator[None]:
        """Record the wall time of the block as a timing; errors also count ``{name}.errors``."""
        started = time.perf_counter()
        try:
            yield
        except Exception:
            self.increment(f"{name}.errors")
            raise
        finally:
            self.timing(name, (time.perf_counter() - started) * 1000)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def stats(self, name: str) -> Dict[str, float]:
        """
        Summary of a timing histogram.

        Returns:
            count/min/max/avg/p50/p95/p99; all zero when nothing was recorded
        """
        samples = self._timings.get(name)
        if not samples:
            return {"count": 0, "min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p95": 0.0, "p99": 0.0}

        values = np.fromiter(samples, dtype=float)
        p50, p95, p99 = np.percentile(values, [50, 95, 99])
        return {
            "count": int(values.size),
            "min": float(values.min()),
            "max": float(values.max()),
            "avg": float(values.mean()),
            "p50": float(p50),
            "p95": float(p95),
            "p99": float(p99),
        }

    def counter(self, name: str) -> float:
        return self._counters.get(name, 0.0)

    def get_gauge(self, name: str) -> Optional[float]:
        return self._gauges.get(name)

    def snapshot(self) -> Dict[str, Dict]:
        return {
            "timings": {name: self.stats(name) for name in self._timings},
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
        }

    def reset(self) -> None:
        self._timings.clear()
        self._counters.clear()
        self._gauges.clear()

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    def add_collector(self, collector: Collector) -> None:
        """Register a callable (sync or async) returning ``{gauge_name: value}``."""
        self._collectors.append(collector)

    async def collect(self) -> None:
        for collector in self._collectors:
            try:
                values = collector()
                if asyncio.iscoroutine(values):
                    values = await values
            except Exception as e:
                logger.warning(f"Metrics collector {getattr(collector, '__name__', collector)} failed: {e}")
                continue
            for name, value in values.items():
                self.gauge(name, value)

        logger.debug(f"Collected metrics: {len(self._gauges)} gauges, {len(self._counters)} counters")

    @property
    def running(self) -> bool:
        return self._task.running

    def start(self) -> None:
        self._task.start()
        logger.info("PerformanceMonitor started")

    async def stop(self) -> None:
        await self._task.stop()
        logger.info("PerformanceMonitor stopped")
