"""Provider clients that turn text into embedding vectors.

OpenAI is the default backend; Ollama (local) and Gemini (cloud) are
alternatives selected by ``EMBEDDINGS_BACKEND``. Clients are plain
transports: they take their configuration as arguments, never cache, and let
provider errors propagate. Caching and the zero-vector fallback live in
:class:`~leadguard.embeddings.adapter.CachedEmbedder`.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import httpx
import openai
from google import genai  # type: ignore[attr-defined]

from leadguard.config import get_settings
from leadguard.logging import get_logger

if TYPE_CHECKING:
    from leadguard.config import Settings

log = get_logger("leadguard.embeddings.clients")


class EmbeddingsClient(ABC):
    """A text embedding provider."""

    @abstractmethod
    async def embed_text(self, text: str) -> list[float]:
        """Return the embedding vector for *text*."""
        raise NotImplementedError

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts, preserving order.

        The default issues one request per text concurrently. Backends with a
        native batch endpoint override it.
        """
        return list(await asyncio.gather(*(self.embed_text(text) for text in texts)))

    async def close(self) -> None:  # noqa: B027
        """Release any held network resources."""


class OpenAIEmbeddings(EmbeddingsClient):
    """OpenAI embeddings API (``text-embedding-3-small`` by default)."""

    def __init__(self, api_key: str, model: str = "text-embedding-3-small") -> None:
        self._client = openai.AsyncOpenAI(api_key=api_key)
        self._model = model
        log.info("openai_embeddings_initialized", model=model)

    async def embed_text(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        response = await self._client.embeddings.create(model=self._model, input=texts)
        ordered = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in ordered]

    async def close(self) -> None:
        await self._client.close()


class OllamaEmbeddings(EmbeddingsClient):
    """Local Ollama server, via its ``/api/embed`` endpoint.

    One ``httpx.AsyncClient`` is kept open for the life of the client so
    that the hot path reuses connections.
    """

    def __init__(self, base_url: str, model: str = "nomic-embed-text", timeout: float = 30) -> None:
        self._model = model
        self._http = httpx.AsyncClient(base_url=base_url, timeout=timeout)
        log.info("ollama_embeddings_initialized", url=base_url, model=model)

    async def embed_text(self, text: str) -> list[float]:
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        response = await self._http.post("/api/embed", json={"model": self._model, "input": texts})
        response.raise_for_status()
        # {"embeddings": [[...], ...]} in input order
        return [list(vector) for vector in response.json()["embeddings"]]

    async def close(self) -> None:
        await self._http.aclose()


class GeminiEmbeddings(EmbeddingsClient):
    """Gemini embeddings through the ``google-genai`` SDK."""

    def __init__(self, api_key: str, model: str = "text-embedding-004") -> None:
        self._client = genai.Client(api_key=api_key)
        self._model = model
        log.info("gemini_embeddings_initialized", model=model)

    async def embed_text(self, text: str) -> list[float]:
        result = await self._client.aio.models.embed_content(model=self._model, contents=text)
        return list(result.embeddings[0].values)  # type: ignore[index, arg-type]


def get_embeddings_client(settings: Settings | None = None) -> EmbeddingsClient:
    """Build the client for the configured ``embeddings_backend``.

    Raises:
        ValueError: If the selected cloud backend has no API key configured.
    """
    settings = settings or get_settings()
    backend = settings.embeddings_backend

    if backend == "ollama":
        return OllamaEmbeddings(
            settings.ollama_url,
            model=settings.ollama_embedding_model,
            timeout=settings.ollama_timeout,
        )
    if backend == "gemini":
        if settings.gemini_api_key is None:
            raise ValueError("GEMINI_API_KEY is required for the gemini embeddings backend")
        return GeminiEmbeddings(
            settings.gemini_api_key.get_secret_value(), model=settings.embedding_model
        )
    if settings.openai_api_key is None:
        raise ValueError("OPENAI_API_KEY is required for the openai embeddings backend")
    return OpenAIEmbeddings(
        settings.openai_api_key.get_secret_value(), model=settings.openai_embedding_model
    )
