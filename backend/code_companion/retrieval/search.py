"""Similarity search orchestration."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Sequence, TypeVar

from code_companion.core.config import Settings
from code_companion.core.logging import get_logger
from code_companion.db.store import KnowledgeStore
from code_companion.ingest.embeddings import cosine_similarity
from code_companion.models.entities import CommitRecord, PullRequestRecord, TicketRecord

logger = get_logger(__name__)

T = TypeVar("T")

MAX_REQUESTED_QUANTITY = 50

_QUANTITY_RE = re.compile(
    r"\b(\d+)\s+(?:\w+\s+)?(?:prs?|pull\s+requests?|commits?|items?|results?|tickets?|matches)\b",
    re.IGNORECASE,
)


@dataclass(slots=True)
class SimilarityMatch(Generic[T]):
    item: T
    similarity: float


@dataclass(slots=True)
class SearchResults:
    prs: list[SimilarityMatch[PullRequestRecord]]
    commits: list[SimilarityMatch[CommitRecord]]
    tickets: list[SimilarityMatch[TicketRecord]]


def _embedding_attr(item: object) -> Sequence[float] | None:
    return getattr(item, "embedding", None)


def find_similar(
    query_vector: Sequence[float],
    candidates: Iterable[T],
    threshold: float,
    limit: int,
    embedding_of: Callable[[T], Sequence[float] | None] = _embedding_attr,
) -> list[SimilarityMatch[T]]:
    """Rank candidates by cosine similarity, keeping those at or above ``threshold``.

    Candidates without an embedding are ignored. Python's sort is stable, so
    equal scores keep their input order.
    """
    scored: list[SimilarityMatch[T]] = []
    for candidate in candidates:
        embedding = embedding_of(candidate)
        if not embedding:
            continue
        similarity = cosine_similarity(query_vector, embedding)
        if similarity >= threshold:
            scored.append(SimilarityMatch(item=candidate, similarity=similarity))
    scored.sort(key=lambda match: match.similarity, reverse=True)
    return scored[: max(limit, 0)]


def detect_requested_quantity(text: str) -> int | None:
    """Return N for phrases such as "show me 15 PRs", capped at 50."""
    match = _QUANTITY_RE.search(text)
    if not match:
        return None
    value = int(match.group(1))
    if value <= 0:
        return None
    return min(value, MAX_REQUESTED_QUANTITY)


class RetrievalService:
    """Runs the PR, commit and ticket searches against the knowledge store."""

    def __init__(self, store: KnowledgeStore, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    async def search_prs(
        self,
        query_vector: Sequence[float],
        limit: int | None = None,
        threshold: float | None = None,
        merged_only: bool = False,
    ) -> list[SimilarityMatch[PullRequestRecord]]:
        candidates = self.store.list_pull_requests(merged_only=merged_only)
        return find_similar(
            query_vector,
            candidates,
            self.settings.pr_threshold if threshold is None else threshold,
            self.settings.pr_limit if limit is None else limit,
        )

    async def search_commits(
        self,
        query_vector: Sequence[float],
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[SimilarityMatch[CommitRecord]]:
        return find_similar(
            query_vector,
            self.store.list_commits(),
            self.settings.commit_threshold if threshold is None else threshold,
            self.settings.commit_limit if limit is None else limit,
        )

    async def search_tickets(
        self,
        query_vector: Sequence[float],
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[SimilarityMatch[TicketRecord]]:
        return find_similar(
            query_vector,
            self.store.list_tickets(),
            self.settings.ticket_threshold if threshold is None else threshold,
            self.settings.ticket_limit if limit is None else limit,
        )

    async def search_all(self, query_vector: Sequence[float], query_text: str = "") -> SearchResults:
        requested = detect_requested_quantity(query_text) if query_text else None
        if requested is not None:
            logger.info("Query requested %s items; overriding search limits", requested)
        prs, commits, tickets = await asyncio.gather(
            self.search_prs(query_vector, limit=requested),
            self.search_commits(query_vector, limit=requested),
            self.search_tickets(query_vector, limit=requested),
        )
        logger.debug("Found %s PRs, %s commits, %s tickets", len(prs), len(commits), len(tickets))
        return SearchResults(prs=prs, commits=commits, tickets=tickets)


__all__ = [
    "MAX_REQUESTED_QUANTITY",
    "RetrievalService",
    "SearchResults",
    "SimilarityMatch",
    "detect_requested_quantity",
    "find_similar",
]
