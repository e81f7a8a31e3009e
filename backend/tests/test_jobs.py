"""Tests for the sync job registry and event bus."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from code_companion.core.metrics import REGISTRY
from code_companion.db.store import KnowledgeStore
from code_companion.jobs.events import JobEvent, JobEventBus
from code_companion.jobs.registry import JobRegistry
from code_companion.jobs.sync import SyncProgress, SyncResult


class FakeOrchestrator:
    def __init__(self, result: SyncResult | None = None, error: Exception | None = None, gate=None) -> None:
        self.result = result or SyncResult(
            processed=3, updated=1, skipped=2, errors=[], stopped_early=False, message="Synced 3 new PRs"
        )
        self.error = error
        self.gate = gate

    async def sync_repo_prs(self, owner, repo, limit=0, on_progress=None):
        if self.gate is not None:
            await self.gate.wait()
        if on_progress is not None:
            on_progress(SyncProgress(processed=1))
        if self.error is not None:
            raise self.error
        return self.result


def test_job_completes_and_records_progress() -> None:
    async def scenario():
        registry = JobRegistry(FakeOrchestrator(), JobEventBus())
        job = registry.create("acme", "shop", limit=5)
        assert job.status == "pending"
        assert registry.list_active() == [job]
        finished = await registry.wait(job.id)
        return registry, finished

    registry, job = asyncio.run(scenario())
    assert job.status == "completed"
    assert job.message == "Synced 3 new PRs"
    assert job.progress.to_dict() == {"processed": 3, "updated": 1, "skipped": 2, "errors": []}
    assert job.completed_at is not None
    assert registry.list_active() == []
    assert job.snapshot()["limit"] == 5


def test_job_failure_is_captured() -> None:
    async def scenario():
        registry = JobRegistry(FakeOrchestrator(error=RuntimeError("GitHub down")), JobEventBus())
        job = registry.create("acme", "shop")
        return await registry.wait(job.id)

    job = asyncio.run(scenario())
    assert job.status == "failed"
    assert job.message == "GitHub down"
    assert job.progress.errors == ["GitHub down"]


def test_completed_job_updates_allowed_repo(store: KnowledgeStore) -> None:
    repo = store.add_allowed_repo("acme", "shop")

    async def scenario():
        registry = JobRegistry(FakeOrchestrator(), JobEventBus(), store=store)
        job = registry.create("acme", "shop")
        await registry.wait(job.id)

    asyncio.run(scenario())
    updated = store.get_allowed_repo(repo.id)
    assert updated.pr_count == 3
    assert updated.last_synced_at is not None


def test_sweep_removes_only_expired_finished_jobs() -> None:
    async def scenario():
        gate = asyncio.Event()
        registry = JobRegistry(FakeOrchestrator(), JobEventBus(), retention_seconds=60)
        done = registry.create("acme", "shop")
        await registry.wait(done.id)
        blocked = JobRegistry(FakeOrchestrator(gate=gate), JobEventBus())
        running = blocked.create("acme", "other")
        await asyncio.sleep(0)
        assert blocked.sweep(now=running.started_at + timedelta(days=1)) == 0
        gate.set()
        await blocked.wait(running.id)
        return registry, done

    registry, done = asyncio.run(scenario())
    assert registry.sweep(now=done.completed_at + timedelta(seconds=30)) == 0
    assert registry.sweep(now=done.completed_at + timedelta(seconds=61)) == 1
    assert registry.get(done.id) is None


def test_list_recent_is_newest_first() -> None:
    async def scenario():
        registry = JobRegistry(FakeOrchestrator(), JobEventBus())
        jobs = []
        for name in ("a", "b", "c"):
            job = registry.create("acme", name)
            await registry.wait(job.id)
            jobs.append(job)
        jobs[1].started_at = jobs[2].started_at - timedelta(seconds=1)
        jobs[0].started_at = jobs[2].started_at + timedelta(seconds=1)
        return registry, jobs

    registry, jobs = asyncio.run(scenario())
    assert [job.repo for job in registry.list_recent(2)] == ["a", "c"]


def test_stop_cancels_running_jobs() -> None:
    async def scenario():
        registry = JobRegistry(FakeOrchestrator(gate=asyncio.Event()), JobEventBus())
        registry.start()
        job = registry.create("acme", "shop")
        await asyncio.sleep(0)
        await registry.stop()
        return job

    job = asyncio.run(scenario())
    assert job.status == "failed"
    assert job.message == "Sync cancelled by shutdown"


def test_stop_fails_jobs_that_never_started() -> None:
    async def scenario():
        registry = JobRegistry(FakeOrchestrator(), JobEventBus())
        before = REGISTRY.get_sample_value("cc_active_sync_jobs")
        job = registry.create("acme", "shop")
        await registry.stop()
        return job, before, REGISTRY.get_sample_value("cc_active_sync_jobs")

    job, before, after = asyncio.run(scenario())
    assert job.status == "failed"
    assert job.completed_at is not None
    assert job.progress.errors == ["Sync cancelled by shutdown"]
    assert after == before


def test_every_subscriber_receives_lifecycle_events() -> None:
    async def scenario():
        events = JobEventBus()
        gate = asyncio.Event()
        registry = JobRegistry(FakeOrchestrator(gate=gate), events)
        job = registry.create("acme", "shop")

        async def listen() -> list[str]:
            kinds: list[str] = []
            async with events.subscribe(job.id) as subscription:
                async for event in subscription:
                    kinds.append(event.kind)
                    if event.terminal:
                        break
            return kinds

        listeners = [asyncio.create_task(listen()) for _ in range(2)]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*listeners)
        await registry.wait(job.id)
        return events, job, results

    events, job, results = asyncio.run(scenario())
    assert results == [["progress", "completed"], ["progress", "completed"]]
    assert events.subscriber_count(job.id) == 0


def test_publish_without_subscribers_is_dropped() -> None:
    async def scenario():
        events = JobEventBus()
        delivered = events.publish("job-1", JobEvent(kind="started", job={"id": "job-1"}))
        async with events.subscribe("job-1") as subscription:
            missed = await subscription.get(timeout=0.01)
            events.publish("job-1", JobEvent(kind="completed", job={"id": "job-1"}))
            received = await subscription.get(timeout=1)
        return delivered, missed, received

    delivered, missed, received = asyncio.run(scenario())
    assert delivered == 0
    assert missed is None
    assert received.to_dict() == {"type": "completed", "id": "job-1"}
