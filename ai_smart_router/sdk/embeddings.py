"""
Embedding generation.

Turns question text into vectors for the semantic cache using the OpenAI
embeddings endpoint.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from openai import OpenAI, OpenAIError

from ..core.pricing import calculate_cost

logger = logging.getLogger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_EMBEDDING_DIMENSIONS = 1536

# Roughly 8K tokens
MAX_INPUT_CHARS = 8000


class EmbeddingUnavailableError(Exception):
    """Raised when the embedding service is unreachable or returns an error."""


@dataclass(frozen=True)
class EmbeddingResult:
    """A vector and what it cost to compute."""
    vector: List[float]
    tokens: int
    cost: float


class OpenAIEmbedder:
    """Embedding generator backed by OpenAI.

    Any failure is raised as EmbeddingUnavailableError so callers only have
    one exception to degrade on.
    """

    def __init__(
        self,
        model: str = DEFAULT_EMBEDDING_MODEL,
        dimensions: int = DEFAULT_EMBEDDING_DIMENSIONS,
        timeout: float = 30.0,
        client: Optional[OpenAI] = None
    ):
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            try:
                self._client = OpenAI(max_retries=0)
            except OpenAIError as e:
                raise EmbeddingUnavailableError(f"OpenAI client unavailable: {e}") from e
        return self._client

    def embed(self, text: str) -> EmbeddingResult:
        """Embed a single text.

        Args:
            text: Text to embed, truncated to MAX_INPUT_CHARS

        Returns:
            EmbeddingResult with the vector, token count and USD cost

        Raises:
            EmbeddingUnavailableError: If the service fails or returns no data
        """
        try:
            response = self.client.embeddings.create(
                model=self.model,
                input=text[:MAX_INPUT_CHARS],
                dimensions=self.dimensions,
                timeout=self.timeout
            )
        except OpenAIError as e:
            raise EmbeddingUnavailableError(f"Embedding request failed: {e}") from e

        if not response.data:
            raise EmbeddingUnavailableError("Embedding response contained no data")

        tokens = response.usage.total_tokens if response.usage else 0
        return EmbeddingResult(
            vector=list(response.data[0].embedding),
            tokens=tokens,
            cost=calculate_cost(self.model, tokens, 0)
        )
