"""Embedding utilities."""

from __future__ import annotations

import logging
import math
import re
from typing import Awaitable, Callable, Sequence

from openai import AsyncOpenAI

from code_companion.core.errors import ConfigurationError, DimensionMismatchError
from code_companion.core.metrics import EMBEDDING_FALLBACKS

logger = logging.getLogger(__name__)

DEFAULT_DIM = 768
MAX_INPUT_CHARS = 8000

_WHITESPACE = re.compile(r"\s+")

EmbeddingProvider = Callable[[str], Awaitable[list[float]]]


def _utf16_units(word: str) -> list[int]:
    units: list[int] = []
    for char in word:
        code = ord(char)
        if code > 0xFFFF:
            code -= 0x10000
            units.extend((0xD800 + (code >> 10), 0xDC00 + (code & 0x3FF)))
        else:
            units.append(code)
    return units


def deterministic_embedding(text: str, dim: int = DEFAULT_DIM) -> list[float]:
    """Stable hash-style embedding used when the provider is unavailable.

    Every UTF-16 code unit of every word contributes ``0.1`` at slot
    ``(code_unit * (word_index + 1) * (unit_index + 1)) % dim``; the result is
    scaled to unit length. Not semantic, only repeatable.

    Words come from splitting on whitespace runs, so leading whitespace yields
    an empty first word and shifts every index by one. Characters outside the
    BMP count as their two surrogate units. Both keep vectors compatible with
    embeddings already stored.
    """
    vector = [0.0] * dim
    for i, word in enumerate(_WHITESPACE.split(text.lower())):
        for j, unit in enumerate(_utf16_units(word)):
            vector[(unit * (i + 1) * (j + 1)) % dim] += 0.1
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return [value / norm for value in vector]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise DimensionMismatchError(f"Vector dimensions must match ({len(a)} != {len(b)})")
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


class OpenAIEmbeddingProvider:
    """Calls the OpenAI embeddings endpoint, requesting a fixed dimension."""

    def __init__(
        self,
        api_key: str | None,
        model: str,
        dim: int = DEFAULT_DIM,
        base_url: str | None = None,
    ) -> None:
        self.model = model
        self.dim = dim
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url) if api_key else None

    async def __call__(self, text: str) -> list[float]:
        if self._client is None:
            raise ConfigurationError("OpenAI API key is not configured")
        response = await self._client.embeddings.create(model=self.model, input=text, dimensions=self.dim)
        return list(response.data[0].embedding)


class EmbeddingModel:
    """Embeds text through a provider, degrading to :func:`deterministic_embedding`."""

    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        dim: int = DEFAULT_DIM,
        max_chars: int = MAX_INPUT_CHARS,
    ) -> None:
        self.provider = provider
        self._dim = dim
        self.max_chars = max_chars

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def backend(self) -> str:
        return "provider" if self.provider is not None else "deterministic"

    async def embed(self, text: str) -> list[float]:
        truncated = text[: self.max_chars]
        if self.provider is not None:
            try:
                vector = await self.provider(truncated)
                if len(vector) != self._dim:
                    raise DimensionMismatchError(f"Provider returned {len(vector)} dimensions, expected {self._dim}")
                return vector
            except Exception as exc:
                logger.warning("Embedding provider failed, using deterministic fallback: %s", exc)
        EMBEDDING_FALLBACKS.inc()
        return deterministic_embedding(truncated, self._dim)


__all__ = [
    "EmbeddingModel",
    "EmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "cosine_similarity",
    "deterministic_embedding",
]
