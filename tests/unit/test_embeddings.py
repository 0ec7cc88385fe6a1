"""Unit tests for the embeddings clients and the caching adapter."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from leadguard.config import Settings
from leadguard.embeddings.adapter import CachedEmbedder, content_hash, cosine_similarity
from leadguard.embeddings.clients import (
    GeminiEmbeddings,
    OllamaEmbeddings,
    OpenAIEmbeddings,
    get_embeddings_client,
)


def _openai_item(index: int, embedding: list[float]) -> MagicMock:
    item = MagicMock()
    item.index = index
    item.embedding = embedding
    return item


def _mock_http(payload: dict | None = None, error: Exception | None = None) -> AsyncMock:
    """Build a mock httpx.AsyncClient whose ``post`` returns *payload*."""
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status = MagicMock(side_effect=error)
    http = AsyncMock()
    http.post = AsyncMock(return_value=response)
    return http


class TestOpenAIEmbeddings:
    """Tests for the OpenAI client."""

    @pytest.mark.asyncio
    async def test_embed_text(self):
        mock_client = MagicMock()
        mock_client.embeddings.create = AsyncMock(
            return_value=MagicMock(data=[_openai_item(0, [0.1, 0.2, 0.3])])
        )

        with patch(
            "leadguard.embeddings.clients.openai.AsyncOpenAI", return_value=mock_client
        ) as mock_openai:
            embeddings = OpenAIEmbeddings("test-openai-key")
            result = await embeddings.embed_text("Hello")

        mock_openai.assert_called_once_with(api_key="test-openai-key")
        mock_client.embeddings.create.assert_awaited_once_with(
            model="text-embedding-3-small", input=["Hello"]
        )
        assert result == [0.1, 0.2, 0.3]

    @pytest.mark.asyncio
    async def test_embed_batch_orders_by_index(self):
        mock_client = MagicMock()
        mock_client.embeddings.create = AsyncMock(
            return_value=MagicMock(data=[_openai_item(1, [2.0]), _openai_item(0, [1.0])])
        )

        with patch("leadguard.embeddings.clients.openai.AsyncOpenAI", return_value=mock_client):
            embeddings = OpenAIEmbeddings("key", model="text-embedding-3-large")
            result = await embeddings.embed_batch(["first", "second"])

        assert result == [[1.0], [2.0]]
        assert mock_client.embeddings.create.call_args.kwargs["model"] == "text-embedding-3-large"

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self):
        mock_client = MagicMock()
        mock_client.embeddings.create = AsyncMock(side_effect=RuntimeError("quota"))

        with patch("leadguard.embeddings.clients.openai.AsyncOpenAI", return_value=mock_client):
            embeddings = OpenAIEmbeddings("key")
            with pytest.raises(RuntimeError, match="quota"):
                await embeddings.embed_text("Hello")

    @pytest.mark.asyncio
    async def test_close(self):
        mock_client = MagicMock()
        mock_client.close = AsyncMock()
        with patch("leadguard.embeddings.clients.openai.AsyncOpenAI", return_value=mock_client):
            embeddings = OpenAIEmbeddings("key")
            await embeddings.close()
        mock_client.close.assert_awaited_once()


class TestOllamaEmbeddings:
    """Tests for the Ollama client."""

    @pytest.mark.asyncio
    async def test_embed_text(self):
        mock_http = _mock_http({"embeddings": [[0.5, 0.25]]})

        with patch(
            "leadguard.embeddings.clients.httpx.AsyncClient", return_value=mock_http
        ) as mock_cls:
            embeddings = OllamaEmbeddings("http://ollama:11434", timeout=5)
            result = await embeddings.embed_text("Hello")

        mock_cls.assert_called_once_with(base_url="http://ollama:11434", timeout=5)
        assert result == [0.5, 0.25]
        mock_http.post.assert_awaited_once_with(
            "/api/embed",
            json={"model": "nomic-embed-text", "input": ["Hello"]},
        )

    @pytest.mark.asyncio
    async def test_embed_batch_single_request(self):
        mock_http = _mock_http({"embeddings": [[1.0], [2.0]]})

        with patch("leadguard.embeddings.clients.httpx.AsyncClient", return_value=mock_http):
            embeddings = OllamaEmbeddings("http://ollama:11434")
            result = await embeddings.embed_batch(["a", "b"])

        assert result == [[1.0], [2.0]]
        assert mock_http.post.await_count == 1

    @pytest.mark.asyncio
    async def test_http_error_propagates(self):
        request = httpx.Request("POST", "http://ollama:11434/api/embed")
        error = httpx.HTTPStatusError(
            "boom", request=request, response=httpx.Response(500, request=request)
        )
        mock_http = _mock_http(error=error)

        with patch("leadguard.embeddings.clients.httpx.AsyncClient", return_value=mock_http):
            embeddings = OllamaEmbeddings("http://ollama:11434")
            with pytest.raises(httpx.HTTPStatusError):
                await embeddings.embed_text("Hello")

    @pytest.mark.asyncio
    async def test_close(self):
        mock_http = _mock_http()
        with patch("leadguard.embeddings.clients.httpx.AsyncClient", return_value=mock_http):
            embeddings = OllamaEmbeddings("http://ollama:11434")
            await embeddings.close()
        mock_http.aclose.assert_awaited_once()


class TestGeminiEmbeddings:
    """Tests for the Gemini client."""

    @pytest.mark.asyncio
    async def test_embed_text(self):
        mock_embedding = MagicMock()
        mock_embedding.values = [0.1] * 768
        mock_result = MagicMock()
        mock_result.embeddings = [mock_embedding]

        mock_client = MagicMock()
        mock_client.aio.models.embed_content = AsyncMock(return_value=mock_result)

        with patch(
            "leadguard.embeddings.clients.genai.Client", return_value=mock_client
        ) as mock_genai:
            embeddings = GeminiEmbeddings("test-gemini-key")
            result = await embeddings.embed_text("Hello, world!")

        mock_genai.assert_called_once_with(api_key="test-gemini-key")
        assert len(result) == 768
        mock_client.aio.models.embed_content.assert_awaited_once_with(
            model="text-embedding-004",
            contents="Hello, world!",
        )

    @pytest.mark.asyncio
    async def test_embed_batch_falls_back_to_parallel_calls(self):
        mock_client = MagicMock()
        mock_client.aio.models.embed_content = AsyncMock(
            return_value=MagicMock(embeddings=[MagicMock(values=[1.0])])
        )

        with patch("leadguard.embeddings.clients.genai.Client", return_value=mock_client):
            embeddings = GeminiEmbeddings("key")
            result = await embeddings.embed_batch(["a", "b", "c"])

        assert result == [[1.0], [1.0], [1.0]]
        assert mock_client.aio.models.embed_content.await_count == 3


class TestEmbeddingsFactory:
    """Tests for get_embeddings_client."""

    def test_openai_is_default(self):
        settings = Settings(_env_file=None, openai_api_key="sk-test")
        with patch("leadguard.embeddings.clients.OpenAIEmbeddings") as mock_cls:
            client = get_embeddings_client(settings)
        assert client is mock_cls.return_value
        mock_cls.assert_called_once_with("sk-test", model=settings.openai_embedding_model)

    def test_ollama(self):
        settings = Settings(_env_file=None, embeddings_backend="ollama")
        with patch("leadguard.embeddings.clients.OllamaEmbeddings") as mock_cls:
            get_embeddings_client(settings)
        mock_cls.assert_called_once_with(
            settings.ollama_url,
            model=settings.ollama_embedding_model,
            timeout=settings.ollama_timeout,
        )

    def test_gemini(self):
        settings = Settings(_env_file=None, embeddings_backend="gemini", gemini_api_key="g-key")
        with patch("leadguard.embeddings.clients.GeminiEmbeddings") as mock_cls:
            get_embeddings_client(settings)
        mock_cls.assert_called_once_with("g-key", model=settings.embedding_model)

    @pytest.mark.parametrize(
        ("backend", "key_field", "message"),
        [
            ("openai", "openai_api_key", "OPENAI_API_KEY"),
            ("gemini", "gemini_api_key", "GEMINI_API_KEY"),
        ],
    )
    def test_missing_key_raises(self, backend, key_field, message):
        settings = Settings(_env_file=None, embeddings_backend=backend, **{key_field: None})
        with pytest.raises(ValueError, match=message):
            get_embeddings_client(settings)

    def test_defaults_to_global_settings(self):
        with patch("leadguard.embeddings.clients.OpenAIEmbeddings") as mock_cls:
            client = get_embeddings_client()
        assert client is mock_cls.return_value


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0

    def test_zero_vector_is_never_similar(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0

    def test_length_mismatch(self):
        assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0

    def test_empty(self):
        assert cosine_similarity([], []) == 0.0


class TestCachedEmbedder:
    """Tests for the caching adapter."""

    @pytest.mark.asyncio
    async def test_cache_hit_skips_provider(self, embedder, fake_embeddings_client):
        fake_embeddings_client.register("hello", 0)

        first = await embedder.embed("hello")
        second = await embedder.embed("hello")

        assert first == second
        assert fake_embeddings_client.calls == ["hello"]
        stats = embedder.cache_stats()
        assert (stats.size, stats.hits, stats.misses) == (1, 1, 1)

    @pytest.mark.asyncio
    async def test_provider_error_degrades_to_zero_vector(self, embedder, fake_embeddings_client):
        fake_embeddings_client.fail_with = RuntimeError("provider down")

        vector = await embedder.embed("hello")

        assert vector == [0.0] * embedder.dimension
        assert embedder.last_call_degraded
        assert embedder.cache_stats().degraded_calls == 1
        # Degraded results are not cached
        assert embedder.cache_stats().size == 0

    @pytest.mark.asyncio
    async def test_recovers_after_degradation(self, embedder, fake_embeddings_client):
        fake_embeddings_client.fail_with = RuntimeError("provider down")
        await embedder.embed("hello")

        fake_embeddings_client.fail_with = None
        fake_embeddings_client.register("hello", 1)
        vector = await embedder.embed("hello")

        assert vector[1] == 1.0
        assert not embedder.last_call_degraded

    @pytest.mark.asyncio
    async def test_cache_hit_clears_degraded_flag(self, embedder, fake_embeddings_client):
        await embedder.embed("cached")
        fake_embeddings_client.fail_with = RuntimeError("provider down")
        await embedder.embed("uncached")
        assert embedder.last_call_degraded

        vector = await embedder.embed("cached")

        assert vector == [0.0] * embedder.dimension
        assert not embedder.last_call_degraded
        assert embedder.cache_stats().hits == 1

    @pytest.mark.asyncio
    async def test_embed_batch_sends_only_misses(self, embedder, fake_embeddings_client):
        fake_embeddings_client.register("a", 0)
        fake_embeddings_client.register("b", 1)
        await embedder.embed("a")
        fake_embeddings_client.embed_batch = AsyncMock(  # type: ignore[method-assign]
            return_value=[[0.0, 1.0]]
        )

        vectors = await embedder.embed_batch(["a", "b", "a"])

        fake_embeddings_client.embed_batch.assert_awaited_once_with(["b"])
        assert vectors[0] == vectors[2] == fake_embeddings_client.vectors["a"]
        assert vectors[1] == [0.0, 1.0]
        stats = embedder.cache_stats()
        assert (stats.size, stats.hits, stats.misses) == (2, 1, 2)
        assert not embedder.last_call_degraded

    @pytest.mark.asyncio
    async def test_embed_batch_failure_degrades_misses(self, embedder, fake_embeddings_client):
        fake_embeddings_client.register("a", 0)
        await embedder.embed("a")
        fake_embeddings_client.fail_with = RuntimeError("provider down")

        vectors = await embedder.embed_batch(["a", "b", "c"])

        assert vectors[0][0] == 1.0
        assert vectors[1] == vectors[2] == [0.0] * embedder.dimension
        assert embedder.last_call_degraded
        assert embedder.cache_stats().degraded_calls == 1
        assert embedder.cache_stats().size == 1

    @pytest.mark.asyncio
    async def test_embed_batch_length_mismatch_degrades(self, embedder, fake_embeddings_client):
        fake_embeddings_client.embed_batch = AsyncMock(  # type: ignore[method-assign]
            return_value=[[1.0]]
        )

        vectors = await embedder.embed_batch(["a", "b"])

        assert vectors == [[0.0] * embedder.dimension] * 2
        assert embedder.last_call_degraded

    @pytest.mark.asyncio
    async def test_embed_batch_all_cached_skips_provider(self, embedder, fake_embeddings_client):
        await embedder.embed_batch(["a", "b"])
        await embedder.embed_batch(["b", "a"])

        assert sorted(fake_embeddings_client.calls) == ["a", "b"]
        assert embedder.cache_stats().hits == 2


    @pytest.mark.asyncio
    async def test_timeout_degrades(self, fake_embeddings_client):
        async def slow(text: str) -> list[float]:
            await asyncio.sleep(1)
            return [1.0]

        fake_embeddings_client.embed_text = slow  # type: ignore[method-assign]
        embedder = CachedEmbedder(fake_embeddings_client, dimension=4, timeout=0.01)

        assert await embedder.embed("slow") == [0.0, 0.0, 0.0, 0.0]
        assert embedder.last_call_degraded

    @pytest.mark.asyncio
    async def test_clear_cache(self, embedder, fake_embeddings_client):
        await embedder.embed("hello")
        embedder.clear_cache()
        await embedder.embed("hello")

        assert fake_embeddings_client.calls == ["hello", "hello"]
        assert embedder.cache_stats().size == 1

    @pytest.mark.asyncio
    async def test_close_closes_client(self, embedder, fake_embeddings_client):
        await embedder.close()
        assert fake_embeddings_client.closed

    def test_content_hash_is_stable(self):
        assert content_hash("abc") == content_hash("abc")
        assert content_hash("abc") != content_hash("abd")

    def test_stats_to_dict(self, embedder):
        assert embedder.cache_stats().to_dict() == {
            "size": 0,
            "hits": 0,
            "misses": 0,
            "degraded_calls": 0,
        }
