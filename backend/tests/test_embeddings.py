"""Tests for embedding utilities."""

from __future__ import annotations

import asyncio
import math

import pytest

from code_companion.core.errors import DimensionMismatchError
from code_companion.ingest.embeddings import EmbeddingModel, cosine_similarity, deterministic_embedding


def test_deterministic_embedding_is_stable_and_unit_length() -> None:
    first = deterministic_embedding("NullPointerException in CartService")
    second = deterministic_embedding("NullPointerException in CartService")
    assert first == second
    assert len(first) == 768
    assert abs(math.sqrt(sum(value * value for value in first)) - 1.0) < 1e-9


def test_deterministic_embedding_empty_text_is_zero_vector() -> None:
    vector = deterministic_embedding("", dim=16)
    assert vector == [0.0] * 16


def test_deterministic_embedding_slot_formula() -> None:
    # "ab": a -> 97 * 1 * 1, b -> 98 * 1 * 2; both land in distinct slots of a 1000-dim vector
    vector = deterministic_embedding("ab", dim=1000)
    assert vector[97] == pytest.approx(1 / math.sqrt(2))
    assert vector[196] == pytest.approx(1 / math.sqrt(2))


def test_deterministic_embedding_leading_whitespace_shifts_word_index() -> None:
    # the empty first word makes "ab" word 2: a -> 97 * 2 * 1, b -> 98 * 2 * 2
    vector = deterministic_embedding(" ab", dim=1000)
    assert [index for index, value in enumerate(vector) if value] == [194, 392]


def test_deterministic_embedding_uses_utf16_code_units() -> None:
    # U+1F600 is the surrogate pair 0xD83D 0xDE00
    vector = deterministic_embedding("\N{GRINNING FACE}", dim=1000)
    assert [index for index, value in enumerate(vector) if value] == [357, 664]


def test_cosine_similarity_bounds_and_symmetry() -> None:
    a = deterministic_embedding("login fails after password reset")
    b = deterministic_embedding("password reset email never arrives")
    assert -1.0 <= cosine_similarity(a, b) <= 1.0
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
    assert cosine_similarity(a, a) == pytest.approx(1.0)


def test_cosine_similarity_zero_vector() -> None:
    assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


def test_cosine_similarity_dimension_mismatch() -> None:
    with pytest.raises(DimensionMismatchError):
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


def test_embedding_model_without_provider_uses_fallback() -> None:
    model = EmbeddingModel(dim=32)
    vector = asyncio.run(model.embed("hello world"))
    assert model.backend == "deterministic"
    assert vector == deterministic_embedding("hello world", 32)


def test_embedding_model_falls_back_when_provider_fails() -> None:
    async def broken(text: str) -> list[float]:
        raise RuntimeError("quota exceeded")

    model = EmbeddingModel(provider=broken, dim=32)
    assert asyncio.run(model.embed("timeout in checkout")) == deterministic_embedding("timeout in checkout", 32)


def test_embedding_model_rejects_wrong_dimension_from_provider() -> None:
    async def short(text: str) -> list[float]:
        return [1.0, 0.0]

    model = EmbeddingModel(provider=short, dim=8)
    assert asyncio.run(model.embed("abc")) == deterministic_embedding("abc", 8)


def test_embedding_model_truncates_input() -> None:
    seen: list[str] = []

    async def provider(text: str) -> list[float]:
        seen.append(text)
        return [1.0] + [0.0] * 7

    model = EmbeddingModel(provider=provider, dim=8, max_chars=10)
    vector = asyncio.run(model.embed("x" * 50))
    assert seen == ["x" * 10]
    assert vector[0] == 1.0
