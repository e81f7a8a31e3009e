"""In-memory registry of background sync jobs."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Literal

from code_companion.core.logging import get_logger, job_logger
from code_companion.core.metrics import ACTIVE_JOBS, SYNC_DURATION, SYNC_JOBS
from code_companion.db.store import KnowledgeStore
from code_companion.jobs.events import EventKind, JobEvent, JobEventBus
from code_companion.jobs.sync import SyncOrchestrator, SyncProgress
from code_companion.utils.ids import new_uuid
from code_companion.utils.time import utc_now

logger = get_logger(__name__)

JobStatus = Literal["pending", "running", "completed", "failed"]
ACTIVE_STATUSES = frozenset({"pending", "running"})
CANCELLED_MESSAGE = "Sync cancelled by shutdown"


@dataclass(slots=True)
class SyncJob:
    id: str
    owner: str
    repo: str
    limit: int
    status: JobStatus = "pending"
    progress: SyncProgress = field(default_factory=SyncProgress)
    message: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    completed_at: datetime | None = None

    def snapshot(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner": self.owner,
            "repo": self.repo,
            "limit": self.limit,
            "status": self.status,
            "progress": self.progress.to_dict(),
            "message": self.message,
            "startedAt": self.started_at.isoformat(),
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
        }


class JobRegistry:
    """Owns sync jobs for the lifetime of the process.

    Each job runs on its own asyncio task; only that task mutates the job.
    Finished jobs are dropped by a periodic sweep once older than the
    retention window.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        events: JobEventBus,
        store: KnowledgeStore | None = None,
        retention_seconds: float = 3600.0,
        sweep_interval: float = 600.0,
    ) -> None:
        self.orchestrator = orchestrator
        self.events = events
        self.store = store
        self.retention = timedelta(seconds=retention_seconds)
        self.sweep_interval = sweep_interval
        self._jobs: dict[str, SyncJob] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._sweeper: asyncio.Task[None] | None = None

    # Lifecycle --------------------------------------------------------

    def start(self) -> None:
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_forever(), name="sync-job-sweeper")

    async def stop(self) -> None:
        pending = [task for task in self._tasks.values() if not task.done()]
        if self._sweeper is not None:
            pending.append(self._sweeper)
            self._sweeper = None
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        # Tasks cancelled before their first step never reach _run's handlers.
        for job in self._jobs.values():
            if job.status in ACTIVE_STATUSES:
                self._cancel(job)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            removed = self.sweep()
            if removed:
                logger.info("Removed %s expired sync jobs", removed)

    # Queries ----------------------------------------------------------

    def get(self, job_id: str) -> SyncJob | None:
        return self._jobs.get(job_id)

    def list_active(self) -> list[SyncJob]:
        return [job for job in self._jobs.values() if job.status in ACTIVE_STATUSES]

    def list_recent(self, n: int = 10) -> list[SyncJob]:
        return sorted(self._jobs.values(), key=lambda job: job.started_at, reverse=True)[:n]

    def sweep(self, now: datetime | None = None) -> int:
        now = now or utc_now()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.completed_at is not None and now - job.completed_at > self.retention
        ]
        for job_id in expired:
            del self._jobs[job_id]
            self._tasks.pop(job_id, None)
        return len(expired)

    # Commands ---------------------------------------------------------

    def create(self, owner: str, repo: str, limit: int = 0) -> SyncJob:
        """Register a pending job and schedule it; returns without waiting."""
        job = SyncJob(id=new_uuid(), owner=owner, repo=repo, limit=limit)
        self._jobs[job.id] = job
        ACTIVE_JOBS.inc()
        task = asyncio.create_task(self._run(job), name=f"sync-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))
        return job

    async def wait(self, job_id: str) -> SyncJob | None:
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._jobs.get(job_id)

    # Internals --------------------------------------------------------

    def _emit(self, job: SyncJob, kind: EventKind) -> None:
        self.events.publish(job.id, JobEvent(kind=kind, job=job.snapshot()))

    def _on_progress(self, job: SyncJob, progress: SyncProgress) -> None:
        job.progress = SyncProgress(
            processed=progress.processed,
            updated=progress.updated,
            skipped=progress.skipped,
            errors=list(progress.errors),
        )
        self._emit(job, "progress")

    def _finish(self, job: SyncJob, status: JobStatus, message: str) -> None:
        job.status = status
        job.message = message
        job.completed_at = utc_now()
        ACTIVE_JOBS.dec()
        SYNC_JOBS.labels(status=status).inc()
        SYNC_DURATION.observe((job.completed_at - job.started_at).total_seconds())

    def _cancel(self, job: SyncJob) -> None:
        job.progress.errors.append(CANCELLED_MESSAGE)
        self._finish(job, "failed", CANCELLED_MESSAGE)
        self._emit(job, "failed")

    async def _run(self, job: SyncJob) -> None:
        log = job_logger(logger, job.id)
        job.status = "running"
        log.info("Starting sync for %s/%s", job.owner, job.repo)
        self._emit(job, "started")
        try:
            result = await self.orchestrator.sync_repo_prs(
                job.owner,
                job.repo,
                job.limit,
                on_progress=lambda progress: self._on_progress(job, progress),
            )
        except asyncio.CancelledError:
            self._cancel(job)
            raise
        except Exception as exc:
            message = str(exc) or "Sync failed"
            job.progress.errors.append(message)
            self._finish(job, "failed", message)
            self._emit(job, "failed")
            log.error("Sync failed: %s", message)
            return

        job.progress = SyncProgress(
            processed=result.processed,
            updated=result.updated,
            skipped=result.skipped,
            errors=list(result.errors),
        )
        self._finish(job, "completed", result.message)
        self._emit(job, "completed")
        self._record_repo_sync(job, result.processed)
        log.info("Sync completed: %s processed, %s skipped", result.processed, result.skipped)

    def _record_repo_sync(self, job: SyncJob, processed: int) -> None:
        if self.store is None:
            return
        try:
            self.store.record_repo_sync(job.owner, job.repo, processed)
        except Exception as exc:
            job_logger(logger, job.id).warning("Failed to update allowed repo after sync: %s", exc)


__all__ = ["ACTIVE_STATUSES", "CANCELLED_MESSAGE", "JobRegistry", "JobStatus", "SyncJob"]
