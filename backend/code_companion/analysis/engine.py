"""LLM analysis with strict parsing and a deterministic fallback."""

from __future__ import annotations

import re
from typing import AsyncIterator, Sequence

import orjson
from pydantic import ValidationError

from code_companion.analysis import prompts
from code_companion.analysis.context import build_context
from code_companion.analysis.llm import LLMClient
from code_companion.core.config import Settings
from code_companion.core.errors import ConfigurationError, LLMResponseError
from code_companion.core.logging import get_logger
from code_companion.core.metrics import ANALYSIS_REQUESTS
from code_companion.models.dto import (
    AnalysisResult,
    FixSuggestion,
    RelatedCommit,
    RelatedPR,
    RelatedTicket,
)
from code_companion.models.entities import CommitRecord, ConversationMessage, PullRequestRecord, TicketRecord
from code_companion.retrieval.search import SimilarityMatch

logger = get_logger(__name__)

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")

FALLBACK_CONFIDENCE = 0.3

_FALLBACK_OPENING = (
    "Hey there! 👋\n\n"
    "I looked through the codebase for anything related to your issue, but I wasn't able to find a "
    "definitive match. "
)

_FALLBACK_WITH_MATCHES = (
    "I did find {prs} potentially related PRs and {commits} commits that might give you some clues.\n\n"
    "**What I suggest:**\n"
    "- Take a look at the related PRs listed below; they might have patterns that help\n"
    "- Check recent commits in the modules where you're seeing this issue\n"
    "- Try adding some debug logging to narrow down where things are going wrong\n\n"
    "I know it's frustrating when there's no clear answer, but you've got this! Let me know if you'd like "
    "me to dig deeper into any specific area. 💪"
)

_FALLBACK_WITHOUT_MATCHES = (
    "This could mean:\n"
    "- The issue is new and hasn't been addressed in any previous PRs\n"
    "- The relevant code changes haven't been synced yet\n"
    "- The issue might be in a different area than where I searched\n\n"
    "**Here's what you can try:**\n"
    "1. Make sure your repository is fully synced with recent PRs\n"
    "2. Search the codebase manually for similar error patterns\n"
    "3. Add some debug logging to help pinpoint the issue\n\n"
    "Don't give up! Sometimes bugs just need a fresh set of eyes. Let me know if you'd like to try a "
    "different search approach. 🔍"
)

_STEPS_UNAVAILABLE = "Unable to generate implementation steps. Please review the PR description directly for guidance."
_SUGGESTIONS_UNAVAILABLE = (
    "Unable to generate specific suggestions. Please review the PR directly for implementation details."
)


def parse_analysis_response(text: str) -> AnalysisResult:
    """Parse model output as JSON, falling back to the first fenced code block.

    Raises ``LLMResponseError`` when neither parses or the payload does not
    validate against ``AnalysisResult``.
    """
    try:
        payload = orjson.loads(text)
    except orjson.JSONDecodeError:
        match = _FENCED_JSON_RE.search(text)
        if not match:
            raise LLMResponseError("Model response is not JSON and contains no fenced JSON block")
        try:
            payload = orjson.loads(match.group(1).strip())
        except orjson.JSONDecodeError as exc:
            raise LLMResponseError(f"Fenced block is not valid JSON: {exc}") from exc
    try:
        return AnalysisResult.model_validate(payload)
    except ValidationError as exc:
        raise LLMResponseError(f"Model response failed validation: {exc.error_count()} errors") from exc


def related_pr(match: SimilarityMatch[PullRequestRecord]) -> RelatedPR:
    pr = match.item
    return RelatedPR(
        pr_number=pr.pr_number,
        title=pr.title,
        description=pr.description,
        author=pr.author,
        url=pr.pr_url,
        merged_at=pr.merged_at.isoformat() if pr.merged_at else None,
        relevance_score=match.similarity,
        files_impacted=[change.path for change in pr.files_changed],
        diff_content=pr.diff_content,
        labels=list(pr.labels),
    )


def related_commit(match: SimilarityMatch[CommitRecord]) -> RelatedCommit:
    commit = match.item
    return RelatedCommit(
        sha=commit.sha,
        message=commit.message,
        author=commit.author,
        url=commit.commit_url,
        committed_at=commit.committed_at.isoformat() if commit.committed_at else None,
        files_changed=[change.path for change in commit.files_changed],
    )


def related_ticket(match: SimilarityMatch[TicketRecord]) -> RelatedTicket:
    ticket = match.item
    return RelatedTicket(
        key=ticket.ticket_key,
        title=ticket.title,
        status=ticket.status,
        priority=ticket.priority or "medium",
        url=ticket.ticket_url,
    )


def build_fallback_analysis(
    prs: Sequence[SimilarityMatch[PullRequestRecord]],
    commits: Sequence[SimilarityMatch[CommitRecord]],
    tickets: Sequence[SimilarityMatch[TicketRecord]],
) -> AnalysisResult:
    """Schema-valid result used whenever the model path fails."""
    if prs or commits:
        conversational = _FALLBACK_OPENING + _FALLBACK_WITH_MATCHES.format(prs=len(prs), commits=len(commits))
    else:
        conversational = _FALLBACK_OPENING + _FALLBACK_WITHOUT_MATCHES
    return AnalysisResult(
        status="unknown",
        confidence=FALLBACK_CONFIDENCE,
        summary="Unable to determine if this issue has been fixed.",
        root_cause="Analysis inconclusive. The error pattern could not be matched to existing code changes.",
        explanation=(
            "We analyzed the error but could not find definitive matches in the codebase. This could mean "
            "the issue is new or the relevant code changes are not yet indexed."
        ),
        conversational_response=conversational,
        diff_analysis=(
            "No matching diffs available for analysis. The issue may be new or not yet addressed in the codebase."
        ),
        best_practices=[
            "Add comprehensive error handling",
            "Implement proper input validation",
            "Use defensive coding practices",
            "Add logging for debugging purposes",
        ],
        related_prs=[related_pr(match) for match in prs],
        related_commits=[related_commit(match) for match in commits],
        related_tickets=[related_ticket(match) for match in tickets],
        files_impacted=[],
        fix_suggestion=FixSuggestion(
            title="Investigate Further",
            description="This issue requires manual investigation as no definitive matches were found.",
            steps=[
                "Search the codebase for similar error patterns",
                "Check recent commits in related modules",
                "Review open issues and PRs for similar reports",
                "Add logging to narrow down the issue location",
            ],
        ),
    )


def reconcile(
    result: AnalysisResult,
    prs: Sequence[SimilarityMatch[PullRequestRecord]],
    commits: Sequence[SimilarityMatch[CommitRecord]],
    tickets: Sequence[SimilarityMatch[TicketRecord]],
) -> AnalysisResult:
    """Align related items with retrieval: scores come from similarity, omitted matches are appended."""
    by_number = {match.item.pr_number: match for match in prs}
    related_prs: list[RelatedPR] = []
    seen_prs: set[int] = set()
    for item in result.related_prs:
        match = by_number.get(item.pr_number)
        if match is not None:
            item = item.model_copy(
                update={
                    "relevance_score": match.similarity,
                    "diff_content": item.diff_content or match.item.diff_content,
                    "description": item.description or match.item.description,
                }
            )
        related_prs.append(item)
        seen_prs.add(item.pr_number)
    related_prs.extend(related_pr(match) for match in prs if match.item.pr_number not in seen_prs)

    seen_shas = {item.sha for item in result.related_commits}
    related_commits = list(result.related_commits)
    related_commits.extend(related_commit(match) for match in commits if match.item.sha not in seen_shas)

    seen_keys = {item.key for item in result.related_tickets}
    related_tickets = list(result.related_tickets)
    related_tickets.extend(related_ticket(match) for match in tickets if match.item.ticket_key not in seen_keys)

    return result.model_copy(
        update={
            "related_prs": related_prs,
            "related_commits": related_commits,
            "related_tickets": related_tickets,
        }
    )


class AnalysisEngine:
    """Runs one model invocation per analysis and guarantees a usable result."""

    def __init__(self, llm: LLMClient, settings: Settings) -> None:
        self.llm = llm
        self.settings = settings

    def _context(
        self,
        prs: Sequence[SimilarityMatch[PullRequestRecord]],
        commits: Sequence[SimilarityMatch[CommitRecord]],
        tickets: Sequence[SimilarityMatch[TicketRecord]],
        project_context: str,
    ) -> str:
        return build_context(
            prs,
            commits,
            tickets,
            project_context,
            diff_threshold=self.settings.diff_similarity_threshold,
            diff_chars=self.settings.diff_excerpt_chars,
        )

    async def analyze(
        self,
        input_text: str,
        input_type: str,
        prs: Sequence[SimilarityMatch[PullRequestRecord]],
        commits: Sequence[SimilarityMatch[CommitRecord]],
        tickets: Sequence[SimilarityMatch[TicketRecord]],
        project_context: str = "",
    ) -> AnalysisResult:
        logger.info("Analyzing with LLM (%s PRs, %s commits, %s tickets)", len(prs), len(commits), len(tickets))
        context = self._context(prs, commits, tickets, project_context)
        try:
            response = await self.llm.generate(
                prompts.ANALYSIS_SYSTEM_PROMPT,
                prompts.user_prompt(input_text, input_type, context),
            )
            result = reconcile(parse_analysis_response(response), prs, commits, tickets)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.error("LLM analysis failed, returning fallback: %s", exc)
            ANALYSIS_REQUESTS.labels(outcome="fallback").inc()
            return build_fallback_analysis(prs, commits, tickets)
        ANALYSIS_REQUESTS.labels(outcome="model").inc()
        return result

    async def analyze_stream(
        self,
        input_text: str,
        input_type: str,
        prs: Sequence[SimilarityMatch[PullRequestRecord]],
        commits: Sequence[SimilarityMatch[CommitRecord]],
        tickets: Sequence[SimilarityMatch[TicketRecord]],
        history: Sequence[ConversationMessage] = (),
        project_context: str = "",
    ) -> AsyncIterator[str]:
        """Stream Markdown chunks; the first turn carries the full retrieval context."""
        if history:
            system_prompt = None
            user_content = input_text
        else:
            system_prompt = prompts.STREAMING_SYSTEM_PROMPT
            context = self._context(prs, commits, tickets, project_context)
            user_content = prompts.user_prompt(input_text, input_type, context)
        try:
            async for chunk in self.llm.generate_stream(system_prompt, user_content, history):
                yield chunk
        except Exception as exc:
            logger.error("LLM streaming analysis failed: %s", exc)
            yield (
                "\n\n**Analysis Error**: I encountered an issue while generating the analysis.\n\n"
                f"Debug Details: `{exc}`"
            )

    async def generate_implementation_steps(self, issue_description: str, pr_title: str, pr_description: str) -> str:
        try:
            return await self.llm.generate(
                "You write practical implementation guidance.",
                prompts.implementation_steps_prompt(issue_description, pr_title, pr_description),
                json_mode=False,
            )
        except Exception as exc:
            logger.error("Failed to generate implementation steps: %s", exc)
            return _STEPS_UNAVAILABLE

    async def generate_change_suggestions(self, issue_description: str, pr_title: str, diff_content: str) -> str:
        try:
            return await self.llm.generate(
                "You explain how to reuse code changes.",
                prompts.change_suggestions_prompt(issue_description, pr_title, diff_content),
                json_mode=False,
            )
        except Exception as exc:
            logger.error("Failed to generate change suggestions: %s", exc)
            return _SUGGESTIONS_UNAVAILABLE


__all__ = [
    "AnalysisEngine",
    "FALLBACK_CONFIDENCE",
    "build_fallback_analysis",
    "parse_analysis_response",
    "reconcile",
    "related_commit",
    "related_pr",
    "related_ticket",
]
