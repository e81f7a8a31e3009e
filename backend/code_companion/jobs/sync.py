"""Incremental pull-request synchronization from GitHub."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping

from code_companion.core.config import Settings
from code_companion.core.logging import get_logger
from code_companion.core.metrics import SYNC_PRS
from code_companion.db.store import KnowledgeStore
from code_companion.github.client import GitHubClient
from code_companion.ingest.pipeline import IngestPipeline, combine_diffs
from code_companion.models.dto import FileChangeIn, PRIngest
from code_companion.models.entities import PullRequestRecord
from code_companion.utils.time import parse_timestamp

logger = get_logger(__name__)

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(slots=True)
class SyncProgress:
    processed: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


@dataclass(slots=True)
class SyncResult:
    processed: int
    updated: int
    skipped: int
    errors: list[str]
    stopped_early: bool
    message: str
    pages_fetched: int = 0


def needs_update(existing: PullRequestRecord | None, remote: Mapping[str, Any]) -> bool:
    """True for unknown PRs, PRs touched since we stored them, and PRs merged since."""
    if existing is None:
        return True
    try:
        remote_updated: datetime | None = parse_timestamp(remote.get("updated_at"))
    except ValueError:
        # An unreadable timestamp never counts as newer.
        remote_updated = None
    if existing.updated_at is not None and remote_updated is not None and remote_updated > existing.updated_at:
        return True
    return bool(remote.get("merged_at")) and existing.state != "merged"


def summarize(processed: int, updated: int, skipped: int, stopped_early: bool) -> str:
    if processed + updated == 0 and skipped > 0:
        return f"All {skipped} PRs are already synced and up-to-date. No new or updated PRs to process."
    if stopped_early:
        return (
            f"Synced {processed} new PRs, updated {updated} PRs, skipped {skipped} already synced. "
            "Stopped early as remaining PRs are already synced."
        )
    return f"Synced {processed} new PRs, updated {updated} PRs, skipped {skipped} unchanged."


class SyncOrchestrator:
    """Pages through a repository's PRs and ingests the new or changed ones, one at a time."""

    def __init__(
        self,
        github: GitHubClient,
        store: KnowledgeStore,
        pipeline: IngestPipeline,
        settings: Settings,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.github = github
        self.store = store
        self.pipeline = pipeline
        self.settings = settings
        self._sleep = sleep

    async def sync_repo_prs(
        self,
        owner: str,
        repo: str,
        limit: int = 0,
        on_progress: Callable[[SyncProgress], None] | None = None,
    ) -> SyncResult:
        """Sync PRs for ``owner/repo``; ``limit`` caps inspected (new + skipped) PRs, 0 means all."""
        fetch_all = limit == 0
        page_size = self.settings.sync_page_size
        repo_url = f"https://github.com/{owner}/{repo}"
        progress = SyncProgress()
        stopped_early = False
        keep_fetching = True
        page = 1
        pages_fetched = 0
        logger.info("Syncing PRs for %s/%s (limit: %s)", owner, repo, "ALL" if fetch_all else limit)

        while keep_fetching:
            prs = await self.github.list_pull_requests(owner, repo, state="all", per_page=page_size, page=page)
            pages_fetched += 1
            if not prs:
                break

            page_skipped = 0
            for pr in prs:
                if not fetch_all and progress.processed + progress.skipped >= limit:
                    keep_fetching = False
                    break
                try:
                    existing = self.store.get_pull_request(pr["number"], repo_url)
                    if existing is not None and not needs_update(existing, pr):
                        progress.skipped += 1
                        page_skipped += 1
                        SYNC_PRS.labels(outcome="skipped").inc()
                        continue

                    await self._ingest_remote_pr(owner, repo, repo_url, pr)
                    if existing is not None:
                        progress.updated += 1
                        SYNC_PRS.labels(outcome="updated").inc()
                        logger.info(
                            "PR #%s updated (was %s, now %s)",
                            pr["number"],
                            existing.state,
                            "merged" if pr.get("merged_at") else pr.get("state"),
                        )
                    else:
                        progress.processed += 1
                        SYNC_PRS.labels(outcome="new").inc()
                    if progress.processed and progress.processed % 10 == 0:
                        logger.info("Progress: %s PRs synced, %s skipped", progress.processed, progress.skipped)
                    await self._sleep(self.settings.sync_pr_delay)
                except Exception as exc:
                    message = f"Failed to sync PR #{pr.get('number')}: {exc}"
                    logger.error(message)
                    progress.errors.append(message)
                    SYNC_PRS.labels(outcome="error").inc()
                finally:
                    if on_progress is not None:
                        on_progress(progress)

            if page_skipped == len(prs):
                logger.info("All %s PRs on page %s already synced. Stopping early.", len(prs), page)
                stopped_early = True
                break

            if len(prs) < page_size:
                keep_fetching = False
            else:
                page += 1
                await self._sleep(self.settings.sync_page_delay)

        message = summarize(progress.processed, progress.updated, progress.skipped, stopped_early)
        logger.info(
            "Sync complete for %s/%s: %s new, %s updated, %s skipped, %s errors",
            owner,
            repo,
            progress.processed,
            progress.updated,
            progress.skipped,
            len(progress.errors),
        )
        return SyncResult(
            processed=progress.processed,
            updated=progress.updated,
            skipped=progress.skipped,
            errors=progress.errors,
            stopped_early=stopped_early,
            message=message,
            pages_fetched=pages_fetched,
        )

    async def _ingest_remote_pr(self, owner: str, repo: str, repo_url: str, pr: Mapping[str, Any]) -> None:
        files = await self.github.list_pull_request_files(owner, repo, pr["number"])
        merged_at = parse_timestamp(pr.get("merged_at"))
        data = PRIngest(
            pr_number=pr["number"],
            title=pr["title"],
            description=pr.get("body") or "",
            author=(pr.get("user") or {}).get("login", "unknown"),
            repo_url=repo_url,
            pr_url=pr["html_url"],
            merged_at=merged_at,
            state="merged" if merged_at else ("closed" if pr.get("state") == "closed" else "open"),
            labels=[label["name"] for label in pr.get("labels") or []],
            files_changed=[
                FileChangeIn(
                    path=item["filename"],
                    additions=item.get("additions"),
                    deletions=item.get("deletions"),
                    status=_file_status(item.get("status")),
                )
                for item in files
            ],
            diff_content=combine_diffs(files, self.settings.max_diff_chars),
        )
        await self.pipeline.ingest_pr(data)


def _file_status(status: str | None) -> str:
    if status == "added":
        return "added"
    if status == "removed":
        return "deleted"
    return "modified"


__all__ = ["SyncOrchestrator", "SyncProgress", "SyncResult", "needs_update", "summarize"]
