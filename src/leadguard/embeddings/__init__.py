"""Embedding provider clients and the caching adapter used by semantic checks."""

from leadguard.embeddings.adapter import (
    CachedEmbedder,
    EmbeddingCacheStats,
    content_hash,
    cosine_similarity,
)
from leadguard.embeddings.clients import (
    EmbeddingsClient,
    GeminiEmbeddings,
    OllamaEmbeddings,
    OpenAIEmbeddings,
    get_embeddings_client,
)

__all__ = [
    "CachedEmbedder",
    "EmbeddingCacheStats",
    "EmbeddingsClient",
    "GeminiEmbeddings",
    "OllamaEmbeddings",
    "OpenAIEmbeddings",
    "content_hash",
    "cosine_similarity",
    "get_embeddings_client",
]
