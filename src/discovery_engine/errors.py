"""
Error types for discovery-engine.

Low-level clients (vector store, embedding provider) raise these typed
errors. The recommendation engine catches them and degrades to recency
ranking; the behavior tracker and the invalidation engine log and discard
them.
"""

from typing import Optional


class DiscoveryError(Exception):
    """Base class for all discovery-engine errors."""


class TransientNetworkError(DiscoveryError):
    """Connection-level failure talking to an upstream service. Retryable."""


class ValidationError(DiscoveryError):
    """Malformed input. Never retried."""


class EmbeddingDimensionError(ValidationError):
    """
    Provider returned a vector whose length differs from the configured dimension.

    Data-integrity violation: the vector is never truncated or padded.
    """

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}")


class UpstreamUnavailableError(DiscoveryError):
    """Upstream still failing after the retry budget (or request deadline) was spent."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        self.last_error = last_error
        super().__init__(message)


class VectorStoreError(DiscoveryError):
    """Well-formed non-2xx response from the vector-search service."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class EmbeddingProviderError(DiscoveryError):
    """Non-retryable error response (or malformed body) from the embedding provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
