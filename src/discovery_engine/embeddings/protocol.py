"""
Embedding provider protocol for discovery-engine.

Provides a unified interface for turning text, images or mixed inputs into
dense vectors for similarity search.
"""

from typing import Dict, List, Literal, Protocol, Union

from pydantic import BaseModel
from typing_extensions import runtime_checkable


class MultimodalPart(BaseModel):
    """
    One element of a multimodal input.

    ``content`` is the text for ``type="text"`` and a base64-encoded image
    for ``type="image"``.
    """

    type: Literal["text", "image"]
    content: str

    def to_wire(self) -> Dict[str, str]:
        if self.type == "text":
            return {"type": "text", "text": self.content}
        return {"type": "image", "image": self.content}


EmbeddingInput = Union[str, List[MultimodalPart]]


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Protocol for embedding providers.

    Providers make exactly one upstream request per ``embed`` call and do not
    retry or cache; the EmbeddingService owns both. Implementations must:

    1. Expose their configured output dimension
    2. Raise TransientNetworkError for connection-level failures
    3. Raise EmbeddingProviderError for non-retryable error responses

    Example:
        >>> provider = OpenAICompatibleProvider(api_key="...")
        >>> vector = await provider.embed("sunset over the harbour")
        >>> len(vector) == provider.dimension
        True
    """

    @property
    def provider_name(self) -> str:
        """Short provider identifier used in cache keys (e.g. "voyage")."""
        ...

    @property
    def model_name(self) -> str:
        """Identifier of the embedding model."""
        ...

    @property
    def dimension(self) -> int:
        """
        Vector dimension the provider is configured to produce.

        Must match the vector collection's dimension.
        """
        ...

    async def embed(self, input: EmbeddingInput) -> List[float]:
        """
        Embed a single input.

        Args:
            input: Text, or a list of text/image parts

        Returns:
            Embedding vector as returned by the provider (not validated here)
        """
        ...
