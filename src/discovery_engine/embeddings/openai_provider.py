"""OpenAI-compatible embedding provider for discovery-engine."""

import logging
from typing import Any, List, Optional

from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from discovery_engine.embeddings.protocol import EmbeddingInput
from discovery_engine.errors import EmbeddingProviderError, TransientNetworkError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.voyageai.com/v1"
DEFAULT_MODEL = "voyage-multimodal-3"


class OpenAICompatibleProvider:
    """
    Embedding provider for any endpoint speaking the OpenAI ``/embeddings`` contract.

    Defaults to Voyage AI's multimodal model. Works with OpenAI itself, Azure,
    or any compatible gateway by changing ``base_url`` and ``model``.

    The underlying client is created with ``max_retries=0``: retries and
    caching belong to the EmbeddingService.

    Example:
        >>> provider = OpenAICompatibleProvider(api_key="pa-...", dimensions=1024)
        >>> vector = await provider.embed("I like hiking")
        >>> len(vector)
        1024
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        dimensions: int = 1024,
        timeout: float = 30.0,
        provider_name: str = "voyage",
        client: Optional[AsyncOpenAI] = None,
    ):
        """
        Initialize the provider.

        Args:
            api_key: API key for the endpoint (required unless ``client`` is given)
            model: Model name (default: voyage-multimodal-3)
            base_url: Endpoint base URL (default: Voyage AI)
            dimensions: Configured output dimension (default: 1024)
            timeout: Request timeout in seconds
            provider_name: Identifier used in cache keys and logs
            client: Pre-built AsyncOpenAI client (used by tests)
        """
        if client is None:
            if not api_key:
                raise ValidationError(f"An API key is required for the {provider_name} embedding provider")
            client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

        self._client = client
        self._model = model
        self._dimension = dimensions
        self._provider_name = provider_name

        logger.info(f"Embedding provider initialized: {provider_name}/{model} ({dimensions} dimensions)")

    @property
    def provider_name(self) -> str:
        return self._provider_name

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, input: EmbeddingInput) -> List[float]:
        """
        Send one embedding request.

        Raises:
            TransientNetworkError: Connection failure, timeout, 429 or 5xx
            EmbeddingProviderError: Any other error response, or a malformed body
        """
        payload: Any = input if isinstance(input, str) else [part.to_wire() for part in input]

        try:
            response = await self._client.embeddings.create(model=self._model, input=payload)
        except APIConnectionError as e:
            raise TransientNetworkError(f"{self._provider_name} connection error: {e}") from e
        except APIStatusError as e:
            if e.status_code == 429 or e.status_code >= 500:
                raise TransientNetworkError(
                    f"{self._provider_name} returned HTTP {e.status_code}"
                ) from e
            raise EmbeddingProviderError(
                f"{self._provider_name} returned HTTP {e.status_code}: {e.message}",
                status_code=e.status_code,
            ) from e

        data = getattr(response, "data", None) or []
        if not data:
            raise EmbeddingProviderError(f"{self._provider_name} response contained no embeddings")

        first = min(data, key=lambda item: getattr(item, "index", 0) or 0)
        embedding = getattr(first, "embedding", None)
        if not isinstance(embedding, list) or not embedding:
            raise EmbeddingProviderError(f"{self._provider_name} response contained an invalid embedding")

        try:
            return [float(value) for value in embedding]
        except (TypeError, ValueError) as e:
            raise EmbeddingProviderError(
                f"{self._provider_name} response contained non-numeric values"
            ) from e
