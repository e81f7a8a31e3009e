"""Retrieval orchestration components."""

from .search import (
    RetrievalService,
    SearchResults,
    SimilarityMatch,
    detect_requested_quantity,
    find_similar,
)

__all__ = [
    "RetrievalService",
    "SearchResults",
    "SimilarityMatch",
    "detect_requested_quantity",
    "find_similar",
]
