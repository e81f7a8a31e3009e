"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class FileChange:
    path: str
    additions: int = 0
    deletions: int = 0
    status: str = "modified"

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "additions": self.additions,
            "deletions": self.deletions,
            "status": self.status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileChange":
        return cls(
            path=data["path"],
            additions=int(data.get("additions") or 0),
            deletions=int(data.get("deletions") or 0),
            status=data.get("status") or "modified",
        )


@dataclass(slots=True)
class PullRequestRecord:
    id: str
    pr_number: int
    title: str
    description: str | None
    author: str
    repo_url: str
    pr_url: str
    merged_at: datetime | None
    state: str
    labels: list[str]
    files_changed: list[FileChange]
    diff_content: str | None
    embedding: list[float]
    created_at: datetime
    updated_at: datetime | None


@dataclass(slots=True)
class CommitRecord:
    id: str
    sha: str
    message: str
    author: str
    author_email: str | None
    repo_url: str
    commit_url: str
    committed_at: datetime
    files_changed: list[FileChange]
    diff_content: str | None
    embedding: list[float]
    created_at: datetime


@dataclass(slots=True)
class TicketRecord:
    id: str
    ticket_key: str
    title: str
    description: str | None
    status: str
    priority: str | None
    assignee: str | None
    ticket_url: str
    embedding: list[float]
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class AllowedRepo:
    id: str
    repo_url: str
    owner: str
    name: str
    is_active: bool
    description: str | None
    added_at: datetime
    last_synced_at: datetime | None
    pr_count: int


@dataclass(slots=True)
class ProjectProfile:
    project_name: str
    tech_stack: dict[str, list[str]]
    directory_structure: dict[str, str]
    architecture_overview: str
    last_scanned_at: datetime


@dataclass(slots=True)
class CodebaseNode:
    """One source file and the modules it imports."""

    file: str
    imports: list[str]
    last_scanned_at: datetime


@dataclass(slots=True)
class IssueRecord:
    issue_id: str
    title: str
    description: str
    input_type: str
    status: str
    user_id: str | None = None
    email: str | None = None
    matched_prs: list[dict[str, Any]] = field(default_factory=list)
    analysis_result: dict[str, Any] | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None


@dataclass(slots=True)
class ConversationMessage:
    role: str
    content: str
    timestamp: datetime


__all__ = [
    "FileChange",
    "PullRequestRecord",
    "CommitRecord",
    "TicketRecord",
    "AllowedRepo",
    "ProjectProfile",
    "CodebaseNode",
    "IssueRecord",
    "ConversationMessage",
]
