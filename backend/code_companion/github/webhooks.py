"""GitHub webhook verification and event handlers."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
from dataclasses import dataclass, field
from typing import Any, Mapping

from code_companion.core.config import Settings
from code_companion.core.errors import CodeCompanionError
from code_companion.core.logging import get_logger
from code_companion.github.client import GitHubClient
from code_companion.ingest.pipeline import IngestPipeline, combine_diffs
from code_companion.models.dto import (
    CommitIngest,
    FileChangeIn,
    PRIngest,
    PullRequestEvent,
    PushEvent,
    WebhookPullRequest,
)
from code_companion.utils.time import parse_timestamp

logger = get_logger(__name__)

HANDLED_PR_ACTIONS = frozenset({"opened", "closed", "reopened", "edited", "synchronize"})


def verify_signature(body: bytes, signature: str | None, secret: str | None) -> bool:
    """Check ``X-Hub-Signature-256`` against an HMAC-SHA256 of the raw body.

    With no secret configured every payload is accepted and a warning is logged.
    """
    if not secret:
        logger.warning("Webhook secret not configured; skipping signature verification (development mode)")
        return True
    if not signature:
        logger.error("Webhook request carried no signature")
        return False
    expected = "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8"))


@dataclass(slots=True)
class WebhookOutcome:
    processed: int = 0
    errors: list[str] = field(default_factory=list)


def _pr_state(pr: WebhookPullRequest) -> str:
    if pr.merged or pr.merged_at:
        return "merged"
    return "closed" if pr.state == "closed" else "open"


class WebhookHandler:
    """Routes webhook events into the ingest pipeline."""

    def __init__(self, github: GitHubClient, pipeline: IngestPipeline, settings: Settings) -> None:
        self.github = github
        self.pipeline = pipeline
        self.settings = settings

    async def dispatch(self, event: str, payload: Mapping[str, Any]) -> dict[str, Any]:
        if event == "ping":
            logger.info("Received ping event; webhook configured")
            return {"success": True, "message": "Pong! Webhook configured correctly."}
        if event == "pull_request":
            outcome = await self.handle_pull_request(payload)
        elif event == "push":
            outcome = await self.handle_push(payload)
        else:
            logger.debug("Ignoring event type: %s", event)
            return {"success": True, "message": f"Event type '{event}' not processed"}
        logger.info("Webhook processing complete: %s processed, %s errors", outcome.processed, len(outcome.errors))
        return {"success": not outcome.errors, "processed": outcome.processed, "errors": outcome.errors}

    async def handle_pull_request(self, payload: Mapping[str, Any]) -> WebhookOutcome:
        """Ingest the delivered PR; raises ``ValidationError`` on a malformed payload."""
        event = PullRequestEvent.model_validate(payload)
        action = event.action
        pr = event.pull_request
        repository = event.repository
        number = pr.number
        logger.info("Processing PR event: %s for PR #%s", action, number)
        if action not in HANDLED_PR_ACTIONS:
            logger.debug("Skipping action: %s", action)
            return WebhookOutcome()
        if not self.settings.is_repo_allowed(repository.html_url):
            logger.info("Repository %s not in allow-list; ignoring", repository.full_name)
            return WebhookOutcome()

        owner, repo_name = repository.full_name.split("/", 1)
        files: list[dict[str, Any]] = []
        try:
            files = await self.github.list_pull_request_files(owner, repo_name, number)
        except CodeCompanionError as exc:
            logger.warning("Could not fetch files for PR #%s: %s", number, exc)

        try:
            data = PRIngest(
                pr_number=number,
                title=pr.title,
                description=pr.body,
                author=pr.user.login,
                repo_url=repository.html_url,
                pr_url=pr.html_url,
                merged_at=parse_timestamp(pr.merged_at),
                state=_pr_state(pr),
                labels=[label.name for label in pr.labels],
                files_changed=[
                    FileChangeIn(path=f["filename"], additions=f["additions"], deletions=f["deletions"])
                    for f in files
                ],
                diff_content=combine_diffs(files, self.settings.max_diff_chars),
            )
            await self.pipeline.ingest_pr(data, repository=repository.full_name)
        except Exception as exc:
            message = f"Failed to process PR #{number}: {exc}"
            logger.error(message)
            return WebhookOutcome(errors=[message])
        logger.info("Processed PR #%s with %s files", number, len(files))
        return WebhookOutcome(processed=1)

    async def handle_push(self, payload: Mapping[str, Any]) -> WebhookOutcome:
        event = PushEvent.model_validate(payload)
        commits = event.commits
        repository = event.repository
        logger.info("Processing push event with %s commits", len(commits))
        outcome = WebhookOutcome()
        for commit in commits:
            try:
                files = [
                    *(FileChangeIn(path=path, status="modified") for path in commit.get("modified") or []),
                    *(FileChangeIn(path=path, status="added") for path in commit.get("added") or []),
                    *(FileChangeIn(path=path, status="deleted") for path in commit.get("removed") or []),
                ]
                data = CommitIngest(
                    sha=commit["id"],
                    message=commit["message"],
                    author=commit["author"]["name"],
                    author_email=commit["author"].get("email"),
                    repo_url=repository.html_url,
                    commit_url=commit["url"],
                    committed_at=parse_timestamp(commit["timestamp"]),
                    files_changed=files,
                )
                _, created = await self.pipeline.ingest_commit(data)
                if created:
                    outcome.processed += 1
                    await asyncio.sleep(0.05)
            except Exception as exc:
                message = f"Failed to process commit {commit.get('id')}: {exc}"
                logger.error(message)
                outcome.errors.append(message)
        return outcome

    async def trigger(self, owner: str, repo: str, pr_number: int, action: str = "synchronize") -> WebhookOutcome:
        """Fetch a PR and feed it through the ``pull_request`` handler as GitHub would."""
        logger.info("Manual webhook trigger for %s/%s#%s (action: %s)", owner, repo, pr_number, action)
        pr = await self.github.get_pull_request(owner, repo, pr_number)
        payload = {
            "action": action,
            "pull_request": {
                "number": pr["number"],
                "title": pr["title"],
                "body": pr.get("body"),
                "state": pr.get("state"),
                "merged": pr.get("merged") or False,
                "merged_at": pr.get("merged_at"),
                "html_url": pr["html_url"],
                "user": {"login": pr["user"]["login"]},
                "labels": [{"name": label["name"]} for label in pr.get("labels") or []],
            },
            "repository": {
                "full_name": f"{owner}/{repo}",
                "html_url": f"https://github.com/{owner}/{repo}",
            },
        }
        return await self.handle_pull_request(payload)


__all__ = ["HANDLED_PR_ACTIONS", "WebhookHandler", "WebhookOutcome", "verify_signature"]
