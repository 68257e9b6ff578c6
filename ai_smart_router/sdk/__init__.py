"""
SDK for AI Smart Router.

Adapters for the external services the router depends on: the embedding
generator and the language-model providers.
"""

from .embeddings import EmbeddingResult, EmbeddingUnavailableError, OpenAIEmbedder
from .providers import ProviderError, ProviderResponse, default_invokers

__all__ = [
    "EmbeddingResult",
    "EmbeddingUnavailableError",
    "OpenAIEmbedder",
    "ProviderError",
    "ProviderResponse",
    "default_invokers",
]
