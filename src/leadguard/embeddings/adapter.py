"""Caching embedding adapter with a zero-vector availability fallback.

The adapter is the only component on the request path that talks to the
network. Results are cached by the SHA-256 of the input text for the life of
the process; inputs are length-capped upstream so the cache stays bounded in
practice.

Failure policy is ``degrade_open``: any provider error or timeout yields a
zero vector of the configured dimension. Cosine similarity against a zero
vector is always 0, so a degraded call can only ever read as "not similar to
any attack pattern".
"""

from __future__ import annotations

import asyncio
import hashlib
import math
from collections.abc import Sequence
from dataclasses import dataclass

from leadguard.embeddings.clients import EmbeddingsClient
from leadguard.logging import get_logger

log = get_logger("leadguard.embeddings.adapter")


def content_hash(text: str) -> str:
    """Return the cache key for *text*."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def cosine_similarity(vec_a: Sequence[float], vec_b: Sequence[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 when the lengths differ or either vector has zero norm.
    """
    if len(vec_a) != len(vec_b) or not vec_a:
        return 0.0

    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for a, b in zip(vec_a, vec_b, strict=True):
        dot += a * b
        norm_a += a * a
        norm_b += b * b

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    similarity = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    # Floating point noise can push |similarity| a hair past 1
    return max(-1.0, min(1.0, similarity))


@dataclass
class EmbeddingCacheStats:
    """Counters describing the adapter's cache and fallback behaviour."""

    size: int = 0
    hits: int = 0
    misses: int = 0
    degraded_calls: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert to dictionary."""
        return {
            "size": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "degraded_calls": self.degraded_calls,
        }


class CachedEmbedder:
    """Deterministic ``text -> vector`` contract over an :class:`EmbeddingsClient`."""

    def __init__(
        self,
        client: EmbeddingsClient,
        *,
        dimension: int,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the adapter.

        Args:
            client: Provider client used on cache misses.
            dimension: Size of the zero vector returned on failure.
            timeout: Seconds to wait for the provider before degrading.
        """
        self._client = client
        self._dimension = dimension
        self._timeout = timeout
        self._cache: dict[str, list[float]] = {}
        self._stats = EmbeddingCacheStats()
        self._last_call_degraded = False

    @property
    def dimension(self) -> int:
        """Vector size of the zero-vector fallback."""
        return self._dimension

    @property
    def last_call_degraded(self) -> bool:
        """Whether the most recent call returned the zero-vector fallback."""
        return self._last_call_degraded

    async def embed(self, text: str) -> list[float]:
        """Return the embedding for *text*, never raising on provider failure."""
        key = content_hash(text)
        cached = self._cache.get(key)
        if cached is not None:
            self._stats.hits += 1
            self._last_call_degraded = False
            return cached

        self._stats.misses += 1
        try:
            vector = await asyncio.wait_for(self._client.embed_text(text), timeout=self._timeout)
        except Exception as e:
            return self.degrade_open(e, text_length=len(text))

        self._last_call_degraded = False
        self._cache[key] = vector
        return vector

    async def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts* in order, sending every cache miss in one provider request.

        If that request fails, every miss degrades to the zero vector and
        :attr:`last_call_degraded` is set.
        """
        found: dict[str, list[float]] = {}
        misses: list[str] = []
        for text in dict.fromkeys(texts):
            cached = self._cache.get(content_hash(text))
            if cached is None:
                misses.append(text)
            else:
                found[text] = cached

        self._stats.hits += len(found)
        self._stats.misses += len(misses)
        self._last_call_degraded = False

        if misses:
            try:
                fetched = await asyncio.wait_for(
                    self._client.embed_batch(misses), timeout=self._timeout
                )
                embedded = dict(zip(misses, fetched, strict=True))
            except Exception as e:
                zero = self.degrade_open(e, text_length=sum(len(text) for text in misses))
                embedded = {text: list(zero) for text in misses}
            else:
                for text, vector in embedded.items():
                    self._cache[content_hash(text)] = vector
            found.update(embedded)

        return [found[text] for text in texts]

    def degrade_open(self, error: BaseException, *, text_length: int) -> list[float]:
        """Fail open on availability: substitute a zero vector for a failed call.

        The zero vector is not cached, so the next request for the same text
        retries the provider.
        """
        self._stats.degraded_calls += 1
        self._last_call_degraded = True
        log.warning(
            "embedding_degraded_to_zero_vector",
            error=str(error) or type(error).__name__,
            error_type=type(error).__name__,
            text_length=text_length,
            dimension=self._dimension,
        )
        return [0.0] * self._dimension

    def cache_stats(self) -> EmbeddingCacheStats:
        """Snapshot of the cache counters."""
        return EmbeddingCacheStats(
            size=len(self._cache),
            hits=self._stats.hits,
            misses=self._stats.misses,
            degraded_calls=self._stats.degraded_calls,
        )

    def clear_cache(self) -> None:
        """Drop every cached vector."""
        self._cache.clear()
        log.info("embedding_cache_cleared")

    async def close(self) -> None:
        """Close the underlying provider client."""
        await self._client.close()
