"""Test fixtures for Code Companion."""

from __future__ import annotations

import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from code_companion.core.config import Settings  # noqa: E402
from code_companion.db.sqlite import SQLiteDatabase  # noqa: E402
from code_companion.db.store import KnowledgeStore  # noqa: E402
from code_companion.ingest.embeddings import EmbeddingModel  # noqa: E402
from code_companion.ingest.pipeline import IngestPipeline  # noqa: E402
from code_companion.models.entities import (  # noqa: E402
    CommitRecord,
    FileChange,
    PullRequestRecord,
    TicketRecord,
)


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("CC_DB_PATH", str(tmp_path / "cc.db"))
    monkeypatch.setenv("CC_CONFIG", str(tmp_path / "missing-config.yaml"))
    for name in ("CC_GITHUB_TOKEN", "CC_OPENAI_API_KEY", "CC_GITHUB_WEBHOOK_SECRET", "CC_ALLOWED_REPOS"):
        monkeypatch.delenv(name, raising=False)

    from code_companion.api import dependencies as deps

    deps.reset_dependencies()
    yield
    deps.reset_dependencies()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(db_path=tmp_path / "store.db", sync_pr_delay=0, sync_page_delay=0)


@pytest.fixture
def store(tmp_path: Path) -> KnowledgeStore:
    db = SQLiteDatabase(tmp_path / "store.db")
    db.ensure_schema()
    yield KnowledgeStore(db)
    db.close()


@pytest.fixture
def embedding_model() -> EmbeddingModel:
    return EmbeddingModel()


@pytest.fixture
def pipeline(store: KnowledgeStore, embedding_model: EmbeddingModel, settings: Settings) -> IngestPipeline:
    return IngestPipeline(store, embedding_model, settings)


class FakeLLM:
    """Scripted stand-in for ``LLMClient``; records every prompt it receives."""

    def __init__(self, response: str | Exception = "{}", chunks: Sequence[str] = ()) -> None:
        self.response = response
        self.chunks = list(chunks)
        self.calls: list[tuple[str | None, str]] = []
        self.configured = True

    async def generate(self, system_prompt: str, user_prompt: str, json_mode: bool = True) -> str:
        self.calls.append((system_prompt, user_prompt))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    async def generate_stream(self, system_prompt: str | None, user_prompt: str, history=()) -> AsyncIterator[str]:
        self.calls.append((system_prompt, user_prompt))
        if isinstance(self.response, Exception):
            raise self.response
        for chunk in self.chunks:
            yield chunk


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


def make_pr(
    number: int,
    embedding: list[float],
    *,
    title: str | None = None,
    diff: str | None = None,
    state: str = "merged",
    repo_url: str = "https://github.com/acme/shop",
) -> PullRequestRecord:
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    return PullRequestRecord(
        id=f"pr_{number}",
        pr_number=number,
        title=title or f"PR {number}",
        description=f"Description of PR {number}",
        author="octocat",
        repo_url=repo_url,
        pr_url=f"{repo_url}/pull/{number}",
        merged_at=now if state == "merged" else None,
        state=state,
        labels=["bug"],
        files_changed=[FileChange(path="src/app.py", additions=3, deletions=1)],
        diff_content=diff,
        embedding=embedding,
        created_at=now,
        updated_at=now,
    )


def make_commit(sha: str, embedding: list[float], message: str = "fix things") -> CommitRecord:
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    return CommitRecord(
        id=f"cm_{sha}",
        sha=sha,
        message=message,
        author="octocat",
        author_email=None,
        repo_url="https://github.com/acme/shop",
        commit_url=f"https://github.com/acme/shop/commit/{sha}",
        committed_at=now,
        files_changed=[FileChange(path="src/cart.py")],
        diff_content=None,
        embedding=embedding,
        created_at=now,
    )


def make_ticket(key: str, embedding: list[float], title: str = "Checkout broken") -> TicketRecord:
    now = datetime(2024, 5, 1, tzinfo=timezone.utc)
    return TicketRecord(
        id=f"tk_{key}",
        ticket_key=key,
        title=title,
        description=None,
        status="open",
        priority="high",
        assignee=None,
        ticket_url=f"https://tickets.example.com/{key}",
        embedding=embedding,
        created_at=now,
        updated_at=now,
    )


def github_pr(
    number: int,
    *,
    updated_at: str = "2024-01-01T00:00:00Z",
    merged_at: str | None = "2024-01-01T00:00:00Z",
    state: str = "closed",
) -> dict[str, Any]:
    """Pull request as returned by the GitHub list endpoint."""
    return {
        "number": number,
        "title": f"Fix issue {number}",
        "body": f"Body of {number}",
        "state": state,
        "merged_at": merged_at,
        "updated_at": updated_at,
        "html_url": f"https://github.com/acme/shop/pull/{number}",
        "user": {"login": "octocat"},
        "labels": [{"name": "bug"}],
    }
