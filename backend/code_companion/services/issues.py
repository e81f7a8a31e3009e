"""User-submitted issues analysed in the background against merged PRs."""

from __future__ import annotations

import asyncio
from typing import Any

from code_companion.analysis.engine import AnalysisEngine
from code_companion.core.config import Settings
from code_companion.core.logging import get_logger
from code_companion.db.store import KnowledgeStore
from code_companion.github.client import GitHubClient, extract_keywords
from code_companion.ingest.embeddings import EmbeddingModel
from code_companion.models.dto import IssueSubmitRequest
from code_companion.models.entities import IssueRecord, PullRequestRecord
from code_companion.retrieval.search import SimilarityMatch, find_similar
from code_companion.utils.ids import new_uuid
from code_companion.utils.time import parse_timestamp, utc_now

logger = get_logger(__name__)

ISSUE_STATUSES = ("pending", "analyzing", "resolved", "unresolved", "needs_attention")
MAX_MATCHED_PRS = 10
GUIDED_PRS = 5
STEPS_THRESHOLD = 0.4
SUGGESTIONS_THRESHOLD = 0.5
FIXING_THRESHOLD = 0.6


def _status_from_analysis(status: str) -> str:
    if status == "fixed":
        return "resolved"
    if status == "not_fixed":
        return "unresolved"
    return "needs_attention"


def _remote_pr_record(pr: dict[str, Any], repo_url: str) -> PullRequestRecord:
    now = utc_now()
    merged_at = parse_timestamp(pr.get("merged_at"))
    return PullRequestRecord(
        id=f"github:{pr['number']}",
        pr_number=pr["number"],
        title=pr["title"],
        description=pr.get("body") or "",
        author=(pr.get("user") or {}).get("login", "unknown"),
        repo_url=repo_url,
        pr_url=pr["html_url"],
        merged_at=merged_at,
        state="merged" if merged_at else pr.get("state", "open"),
        labels=[label["name"] for label in pr.get("labels") or []],
        files_changed=[],
        diff_content=None,
        embedding=[],
        created_at=now,
        updated_at=now,
    )


def issue_message(issue: IssueRecord) -> str:
    has_matches = bool(issue.matched_prs)
    if issue.status == "pending":
        return "Your issue is pending analysis."
    if issue.status == "analyzing":
        return "Your issue is currently being analyzed."
    if issue.status == "resolved" and has_matches:
        fixing = next((pr for pr in issue.matched_prs if pr.get("isFixing")), None)
        if fixing:
            return (
                f"Great news! This issue appears to be fixed in PR #{fixing['prNumber']}. "
                "Check the implementation steps below."
            )
        return "This issue has been resolved. See related PRs for details."
    if issue.status == "unresolved":
        if has_matches:
            return "We found similar PRs. Review the implementation steps for guidance on how to fix your issue."
        return "No matching fixes found. Consider opening a new issue on the repository."
    return "This issue needs manual review."


class IssueService:
    def __init__(
        self,
        store: KnowledgeStore,
        embedding_model: EmbeddingModel,
        engine: AnalysisEngine,
        github: GitHubClient,
        settings: Settings,
    ) -> None:
        self.store = store
        self.embedding_model = embedding_model
        self.engine = engine
        self.github = github
        self.settings = settings
        self._tasks: set[asyncio.Task[None]] = set()

    def submit(self, request: IssueSubmitRequest) -> IssueRecord:
        """Store the issue as pending and schedule its analysis."""
        issue = self.store.create_issue(
            IssueRecord(
                issue_id=new_uuid(),
                title=request.title,
                description=request.description,
                input_type=request.input_type,
                status="pending",
                user_id=request.user_id,
                email=request.email,
            )
        )
        logger.info("Submitted issue %s: %s", issue.issue_id, issue.title)
        task = asyncio.create_task(self.analyze_issue(issue.issue_id), name=f"issue-{issue.issue_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return issue

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def analyze_issue(self, issue_id: str) -> None:
        issue = self.store.get_issue(issue_id)
        if issue is None:
            logger.error("Issue %s not found for analysis", issue_id)
            return
        try:
            self.store.update_issue(issue_id, status="analyzing")
            search_text = f"{issue.title}\n{issue.description}"
            embedding = await self.embedding_model.embed(search_text)
            local = self._local_matches(embedding)
            logger.info("Found %s local matching PRs for issue %s", len(local), issue_id)
            remote = await self._remote_matches(search_text)
            matches = self._combine(local, remote)

            analysis = await self.engine.analyze(search_text, issue.input_type, matches, [], [])
            local_by_number = {match.item.pr_number: match.item for match in local}
            matched_prs: list[dict[str, Any]] = []
            for match in matches[:GUIDED_PRS]:
                pr = match.item
                steps = None
                if match.similarity >= STEPS_THRESHOLD:
                    steps = await self.engine.generate_implementation_steps(
                        issue.description, pr.title, pr.description or "No description provided"
                    )
                suggestions = None
                local_pr = local_by_number.get(pr.pr_number)
                if local_pr is not None and local_pr.diff_content and match.similarity >= SUGGESTIONS_THRESHOLD:
                    suggestions = await self.engine.generate_change_suggestions(
                        issue.description, pr.title, local_pr.diff_content
                    )
                matched_prs.append(
                    {
                        "prId": local_pr.id if local_pr is not None else None,
                        "prNumber": pr.pr_number,
                        "prUrl": pr.pr_url,
                        "title": pr.title,
                        "description": pr.description or "",
                        "confidence": round(match.similarity, 2),
                        "isFixing": analysis.status == "fixed" and match.similarity >= FIXING_THRESHOLD,
                        "suggestedChanges": suggestions,
                        "implementationSteps": steps,
                    }
                )
            status = _status_from_analysis(analysis.status)
            self.store.update_issue(
                issue_id,
                status=status,
                matched_prs=matched_prs,
                analysis_result=analysis.to_payload(),
                embedding=embedding,
            )
            logger.info("Issue %s analysis complete. Status: %s", issue_id, status)
        except Exception as exc:
            logger.error("Error analyzing issue %s: %s", issue_id, exc)
            self.store.update_issue(issue_id, status="needs_attention")

    def _local_matches(self, embedding: list[float]) -> list[SimilarityMatch[PullRequestRecord]]:
        candidates = [
            pr for pr in self.store.list_pull_requests(merged_only=True) if self.settings.is_repo_allowed(pr.repo_url)
        ]
        return find_similar(embedding, candidates, self.settings.pr_threshold, self.settings.pr_limit)

    async def _remote_matches(self, search_text: str) -> list[SimilarityMatch[PullRequestRecord]]:
        owner, repo = self.settings.target_repo_owner, self.settings.target_repo_name
        if not (owner and repo and self.github.configured):
            return []
        try:
            prs = await self.github.search_pull_requests(owner, repo, extract_keywords(search_text))
        except Exception as exc:
            logger.warning("GitHub search failed, continuing with local results only: %s", exc)
            return []
        repo_url = f"https://github.com/{owner}/{repo}"
        return [
            SimilarityMatch(item=_remote_pr_record(pr, repo_url), similarity=0.8 - index * 0.05)
            for index, pr in enumerate(prs)
        ]

    @staticmethod
    def _combine(
        local: list[SimilarityMatch[PullRequestRecord]],
        remote: list[SimilarityMatch[PullRequestRecord]],
    ) -> list[SimilarityMatch[PullRequestRecord]]:
        seen: set[int] = set()
        combined: list[SimilarityMatch[PullRequestRecord]] = []
        for match in [*local, *remote]:
            if match.item.pr_number in seen:
                continue
            seen.add(match.item.pr_number)
            combined.append(match)
        combined.sort(key=lambda match: match.similarity, reverse=True)
        return combined[:MAX_MATCHED_PRS]

    def get(self, issue_id: str) -> IssueRecord | None:
        return self.store.get_issue(issue_id)

    def list_issues(
        self,
        user_id: str | None = None,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[IssueRecord], int]:
        return self.store.list_issues(user_id=user_id, status=status, limit=limit, offset=offset)

    def stats(self) -> dict[str, int]:
        counts = self.store.issue_status_counts()
        return {
            "total": sum(counts.values()),
            "pending": counts.get("pending", 0),
            "analyzing": counts.get("analyzing", 0),
            "resolved": counts.get("resolved", 0),
            "unresolved": counts.get("unresolved", 0),
            "needsAttention": counts.get("needs_attention", 0),
        }


__all__ = ["ISSUE_STATUSES", "IssueService", "issue_message"]
