"""Prompt context assembly from ranked matches."""

from __future__ import annotations

from typing import Sequence

from code_companion.models.entities import CommitRecord, PullRequestRecord, TicketRecord
from code_companion.retrieval.search import SimilarityMatch
from code_companion.utils.text import truncate

DIFF_SIMILARITY_THRESHOLD = 0.4
DIFF_EXCERPT_CHARS = 2000
DIFF_TRUNCATED_MARKER = "\n  ... (diff truncated)"

NO_PRS = "No matching PRs found"
NO_COMMITS = "No matching commits found"
NO_TICKETS = "No matching tickets found"


def _percent(similarity: float) -> str:
    return f"{similarity * 100:.1f}%"


def _files(paths: Sequence[str]) -> str:
    return ", ".join(paths) or "N/A"


def format_pr(
    match: SimilarityMatch[PullRequestRecord],
    diff_threshold: float = DIFF_SIMILARITY_THRESHOLD,
    diff_chars: int = DIFF_EXCERPT_CHARS,
) -> str:
    pr = match.item
    lines = [
        f"- PR #{pr.pr_number}: {pr.title} (similarity: {_percent(match.similarity)})",
        f"  Author: {pr.author}",
        f"  URL: {pr.pr_url}",
        f"  Merged: {pr.merged_at.isoformat() if pr.merged_at else 'Not merged'}",
        f"  Files: {_files([change.path for change in pr.files_changed])}",
        f"  Description: {pr.description or 'No description'}",
    ]
    if pr.diff_content and match.similarity >= diff_threshold:
        excerpt = truncate(pr.diff_content, diff_chars, DIFF_TRUNCATED_MARKER)
        lines.append(f"  Diff:\n```diff\n{excerpt}\n```")
    return "\n".join(lines)


def format_commit(match: SimilarityMatch[CommitRecord]) -> str:
    commit = match.item
    return "\n".join(
        [
            f"- {commit.sha[:7]}: {commit.message} (similarity: {_percent(match.similarity)})",
            f"  Author: {commit.author}",
            f"  URL: {commit.commit_url}",
            f"  Files: {_files([change.path for change in commit.files_changed])}",
        ]
    )


def format_ticket(match: SimilarityMatch[TicketRecord]) -> str:
    ticket = match.item
    return "\n".join(
        [
            f"- {ticket.ticket_key}: {ticket.title} (similarity: {_percent(match.similarity)})",
            f"  Status: {ticket.status}",
            f"  Priority: {ticket.priority or 'Unknown'}",
            f"  URL: {ticket.ticket_url}",
        ]
    )


def build_context(
    prs: Sequence[SimilarityMatch[PullRequestRecord]],
    commits: Sequence[SimilarityMatch[CommitRecord]],
    tickets: Sequence[SimilarityMatch[TicketRecord]],
    project_context: str = "",
    diff_threshold: float = DIFF_SIMILARITY_THRESHOLD,
    diff_chars: int = DIFF_EXCERPT_CHARS,
) -> str:
    """Render project context followed by PR, commit and ticket sections, in that order.

    Diff excerpts are only attached to PRs at or above ``diff_threshold``.
    """
    pr_section = "\n\n".join(format_pr(match, diff_threshold, diff_chars) for match in prs) or NO_PRS
    commit_section = "\n\n".join(format_commit(match) for match in commits) or NO_COMMITS
    ticket_section = "\n\n".join(format_ticket(match) for match in tickets) or NO_TICKETS
    return (
        f"{project_context}\n\n"
        "# >>> KNOWLEDGE BASE SEARCH RESULTS <<<\n"
        "# Retrieved by semantic vector search over the repository history.\n\n"
        f"## Matched Pull Requests:\n{pr_section}\n\n"
        f"## Matched Commits:\n{commit_section}\n\n"
        f"## Related Tickets:\n{ticket_section}\n"
        "# >>> END OF KNOWLEDGE BASE CONTEXT <<<\n"
    )


__all__ = [
    "DIFF_EXCERPT_CHARS",
    "DIFF_SIMILARITY_THRESHOLD",
    "NO_COMMITS",
    "NO_PRS",
    "NO_TICKETS",
    "build_context",
    "format_commit",
    "format_pr",
    "format_ticket",
]
