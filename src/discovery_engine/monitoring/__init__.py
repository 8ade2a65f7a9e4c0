"""Performance monitoring for discovery-engine."""

from discovery_engine.monitoring.performance import PerformanceMonitor

__all__ = ["PerformanceMonitor"]
