"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

InputType = Literal["error", "stack_trace", "jira_ticket", "github_issue", "description"]
AnalysisStatus = Literal["fixed", "not_fixed", "partially_fixed", "unknown"]


class CamelModel(BaseModel):
    """Accepts and emits camelCase keys while exposing snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Analysis result ------------------------------------------------------


class RelatedPR(CamelModel):
    pr_number: int
    title: str
    author: str = ""
    url: str = ""
    merged_at: str | None = None
    relevance_score: float = Field(default=0.0, ge=-1.0, le=1.0)
    files_impacted: list[str] = Field(default_factory=list)
    why_relevant: str | None = None
    description: str | None = None
    diff_content: str | None = None
    labels: list[str] = Field(default_factory=list)


class RelatedCommit(CamelModel):
    sha: str
    message: str
    author: str = ""
    url: str = ""
    committed_at: str | None = None
    files_changed: list[str] = Field(default_factory=list)


class RelatedTicket(CamelModel):
    key: str
    title: str
    status: str = "unknown"
    priority: str = "medium"
    url: str = ""


class FileImpact(CamelModel):
    path: str
    module: str = ""
    change_type: Literal["modified", "added", "deleted"] = "modified"
    lines_changed: int = 0


class FixSuggestion(CamelModel):
    title: str
    description: str
    steps: list[str] = Field(default_factory=list)
    code_example: str | None = None


class AnalysisResult(CamelModel):
    """Structured diagnosis returned by the model or by the fallback path."""

    status: AnalysisStatus
    confidence: float = Field(ge=0.0, le=1.0)
    summary: str
    root_cause: str = ""
    explanation: str = ""
    conversational_response: str | None = None
    diff_analysis: str | None = None
    best_practices: list[str] = Field(default_factory=list)
    related_prs: list[RelatedPR] = Field(default_factory=list, alias="relatedPRs")
    related_commits: list[RelatedCommit] = Field(default_factory=list)
    related_tickets: list[RelatedTicket] = Field(default_factory=list)
    files_impacted: list[FileImpact] = Field(default_factory=list)
    fix_suggestion: FixSuggestion | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# Analysis requests ----------------------------------------------------


class AnalyzeRequest(CamelModel):
    input_text: str = Field(min_length=1)
    input_type: InputType


class ChatPart(BaseModel):
    text: str


class ChatMessage(BaseModel):
    role: Literal["user", "model"]
    parts: list[ChatPart]

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts)


class StreamAnalyzeRequest(AnalyzeRequest):
    conversation_id: str | None = None
    messages: list[ChatMessage] = Field(default_factory=list)


# Ingestion ------------------------------------------------------------


class FileChangeIn(BaseModel):
    path: str
    additions: int | None = None
    deletions: int | None = None
    status: Literal["modified", "added", "deleted"] | None = None


class PRIngest(CamelModel):
    pr_number: int
    title: str
    description: str | None = None
    author: str
    repo_url: str = Field(pattern=r"^https?://")
    pr_url: str = Field(pattern=r"^https?://")
    merged_at: datetime | None = None
    state: Literal["open", "closed", "merged"] | None = None
    labels: list[str] = Field(default_factory=list)
    files_changed: list[FileChangeIn] = Field(default_factory=list)
    diff_content: str | None = None


class CommitIngest(CamelModel):
    sha: str = Field(min_length=1)
    message: str
    author: str
    author_email: str | None = None
    repo_url: str = Field(pattern=r"^https?://")
    commit_url: str = Field(pattern=r"^https?://")
    committed_at: datetime
    files_changed: list[FileChangeIn] = Field(default_factory=list)
    diff_content: str | None = None


class TicketIngest(CamelModel):
    ticket_key: str = Field(min_length=1)
    title: str
    description: str | None = None
    status: str = "open"
    priority: str | None = None
    assignee: str | None = None
    ticket_url: str = Field(pattern=r"^https?://")


class IngestRequest(BaseModel):
    type: Literal["pr", "commit", "ticket", "bulk_prs", "bulk_commits"]
    data: Any


class IngestItemResult(BaseModel):
    success: bool
    id: str | None = None
    error: str | None = None


# Sync -----------------------------------------------------------------


class SyncRequest(BaseModel):
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    limit: int = Field(default=0, ge=0)


class TriggerWebhookRequest(CamelModel):
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    pr_number: int = Field(gt=0)
    action: Literal["opened", "closed", "synchronize", "edited"] = "synchronize"


# Webhook payloads -----------------------------------------------------


class WebhookRepository(BaseModel):
    full_name: str = Field(pattern=r"^[^/]+/[^/]+$")
    html_url: str


class WebhookUser(BaseModel):
    login: str


class WebhookLabel(BaseModel):
    name: str


class WebhookPullRequest(BaseModel):
    number: int
    title: str
    body: str | None = None
    state: str | None = None
    merged: bool | None = None
    merged_at: str | None = None
    html_url: str
    user: WebhookUser
    labels: list[WebhookLabel] = Field(default_factory=list)


class PullRequestEvent(BaseModel):
    """The subset of a ``pull_request`` delivery we read; extra keys are ignored."""

    action: str = ""
    pull_request: WebhookPullRequest
    repository: WebhookRepository


class PushEvent(BaseModel):
    repository: WebhookRepository
    commits: list[dict[str, Any]] = Field(default_factory=list)


# Repositories ---------------------------------------------------------


class RepoCreateRequest(BaseModel):
    owner: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str | None = None


class RepoSyncUpdate(CamelModel):
    pr_count: int | None = Field(default=None, ge=0)


class RepoResponse(CamelModel):
    id: str
    repo_url: str
    owner: str
    name: str
    is_active: bool
    description: str | None = None
    added_at: datetime
    last_synced_at: datetime | None = None
    pr_count: int = 0


# Issues ---------------------------------------------------------------


class IssueSubmitRequest(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=10000)
    input_type: InputType = "description"
    user_id: str | None = None
    email: str | None = None


class IssueResponse(CamelModel):
    issue_id: str
    title: str
    description: str
    input_type: str
    status: str
    user_id: str | None = None
    email: str | None = None
    matched_prs: list[dict[str, Any]] = Field(default_factory=list)
    analysis_result: dict[str, Any] | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None


__all__ = [
    "AnalysisResult",
    "AnalysisStatus",
    "AnalyzeRequest",
    "ChatMessage",
    "ChatPart",
    "CommitIngest",
    "FileChangeIn",
    "FileImpact",
    "FixSuggestion",
    "IngestItemResult",
    "IngestRequest",
    "InputType",
    "IssueResponse",
    "IssueSubmitRequest",
    "PRIngest",
    "PullRequestEvent",
    "PushEvent",
    "RelatedCommit",
    "RelatedPR",
    "RelatedTicket",
    "RepoCreateRequest",
    "RepoResponse",
    "RepoSyncUpdate",
    "StreamAnalyzeRequest",
    "SyncRequest",
    "TicketIngest",
    "TriggerWebhookRequest",
    "WebhookLabel",
    "WebhookPullRequest",
    "WebhookRepository",
    "WebhookUser",
]
