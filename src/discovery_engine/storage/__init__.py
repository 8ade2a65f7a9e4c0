"""
Content storage for discovery-engine.

Provides the ContentRepository protocol the discovery core depends on and an
in-memory implementation for tests and local runs.
"""

from discovery_engine.storage.memory import InMemoryContentRepository
from discovery_engine.storage.protocols import ContentRepository

__all__ = [
    "ContentRepository",
    "InMemoryContentRepository",
]
