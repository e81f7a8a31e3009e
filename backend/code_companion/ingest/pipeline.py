"""Ingest pipeline: embed and persist pull requests, commits and tickets."""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from code_companion.core.config import Settings
from code_companion.core.logging import get_logger
from code_companion.db.store import KnowledgeStore
from code_companion.ingest.embeddings import EmbeddingModel
from code_companion.models.dto import CommitIngest, FileChangeIn, PRIngest, TicketIngest
from code_companion.models.entities import CommitRecord, FileChange, PullRequestRecord, TicketRecord
from code_companion.utils.text import join_nonempty

logger = get_logger(__name__)


def combine_diffs(files: Iterable[Mapping[str, Any]], limit: int = 8000) -> str:
    """Join per-file patches as ``File: <name>`` blocks, cut to ``limit`` characters."""
    blocks = [f"File: {item['filename']}\n{item['patch']}" for item in files if item.get("patch")]
    return "\n\n".join(blocks)[:limit]


def pr_search_text(data: PRIngest, repository: str | None = None) -> str:
    status = None
    if repository is not None:
        status = {"merged": "Status: Merged", "closed": "Status: Closed"}.get(data.state or "", "Status: Open")
    return join_nonempty(
        [
            f"PR #{data.pr_number}: {data.title}",
            data.description or "",
            f"Author: {data.author}",
            f"Repository: {repository}" if repository else "",
            status or "",
            f"Labels: {', '.join(data.labels)}" if data.labels else "",
            ", ".join(change.path for change in data.files_changed),
            data.diff_content or "",
        ]
    )


def commit_search_text(data: CommitIngest) -> str:
    return join_nonempty(
        [
            f"Commit: {data.message}",
            f"Author: {data.author} <{data.author_email}>" if data.author_email else f"Author: {data.author}",
            f"SHA: {data.sha}",
            ", ".join(change.path for change in data.files_changed),
            data.diff_content or "",
        ]
    )


def ticket_search_text(data: TicketIngest) -> str:
    return join_nonempty(
        [
            f"Ticket {data.ticket_key}: {data.title}",
            data.description or "",
            f"Status: {data.status}",
            f"Priority: {data.priority}" if data.priority else "",
        ]
    )


def _file_changes(items: Sequence[FileChangeIn]) -> list[FileChange]:
    return [
        FileChange(
            path=item.path,
            additions=item.additions or 0,
            deletions=item.deletions or 0,
            status=item.status or "modified",
        )
        for item in items
    ]


class IngestPipeline:
    """Embed searchable text and upsert the entity keyed by its natural identifier."""

    def __init__(self, store: KnowledgeStore, embedding_model: EmbeddingModel, settings: Settings) -> None:
        self.store = store
        self.embedding_model = embedding_model
        self.settings = settings

    async def ingest_pr(self, data: PRIngest, repository: str | None = None) -> PullRequestRecord:
        state = data.state or ("merged" if data.merged_at else "open")
        data = data.model_copy(update={"state": state})
        embedding = await self.embedding_model.embed(pr_search_text(data, repository))
        record = self.store.upsert_pull_request(
            pr_number=data.pr_number,
            repo_url=data.repo_url,
            title=data.title,
            description=data.description,
            author=data.author,
            pr_url=data.pr_url,
            merged_at=data.merged_at,
            state=state,
            labels=data.labels,
            files_changed=_file_changes(data.files_changed),
            diff_content=data.diff_content,
            embedding=embedding,
        )
        logger.info("Ingested PR #%s", data.pr_number, extra={"ctx_repo_url": data.repo_url})
        return record

    async def ingest_commit(self, data: CommitIngest) -> tuple[CommitRecord, bool]:
        existing = self.store.get_commit(data.sha)
        if existing is not None:
            logger.debug("Commit %s already exists", data.sha[:7])
            return existing, False
        embedding = await self.embedding_model.embed(commit_search_text(data))
        record, created = self.store.insert_commit(
            sha=data.sha,
            message=data.message,
            author=data.author,
            author_email=data.author_email,
            repo_url=data.repo_url,
            commit_url=data.commit_url,
            committed_at=data.committed_at,
            files_changed=_file_changes(data.files_changed),
            diff_content=data.diff_content,
            embedding=embedding,
        )
        logger.info("Ingested commit %s", data.sha[:7])
        return record, created

    async def ingest_ticket(self, data: TicketIngest) -> TicketRecord:
        embedding = await self.embedding_model.embed(ticket_search_text(data))
        record = self.store.upsert_ticket(
            ticket_key=data.ticket_key,
            title=data.title,
            description=data.description,
            status=data.status,
            priority=data.priority,
            assignee=data.assignee,
            ticket_url=data.ticket_url,
            embedding=embedding,
        )
        logger.info("Ingested ticket %s", data.ticket_key)
        return record


__all__ = [
    "IngestPipeline",
    "combine_diffs",
    "commit_search_text",
    "pr_search_text",
    "ticket_search_text",
]
