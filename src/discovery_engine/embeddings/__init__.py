"""
Embedding generation for discovery-engine.

- EmbeddingProvider: protocol for one-shot upstream embedding calls
- OpenAICompatibleProvider: any OpenAI-style /embeddings endpoint (Voyage by default)
- EmbeddingService: caching, retries and dimension checks on top of a provider
"""

from discovery_engine.embeddings.openai_provider import OpenAICompatibleProvider
from discovery_engine.embeddings.protocol import EmbeddingProvider, MultimodalPart
from discovery_engine.embeddings.service import EmbeddingResult, EmbeddingService, PostEmbedding

__all__ = [
    "EmbeddingProvider",
    "EmbeddingResult",
    "EmbeddingService",
    "MultimodalPart",
    "OpenAICompatibleProvider",
    "PostEmbedding",
]
