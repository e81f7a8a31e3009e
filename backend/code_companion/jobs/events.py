"""Per-job publish/subscribe channel for sync lifecycle events."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Literal

from code_companion.core.logging import get_logger

logger = get_logger(__name__)

EventKind = Literal["started", "progress", "completed", "failed"]
TERMINAL_EVENTS = frozenset({"completed", "failed"})


@dataclass(slots=True, frozen=True)
class JobEvent:
    kind: EventKind
    job: dict[str, Any]

    @property
    def terminal(self) -> bool:
        return self.kind in TERMINAL_EVENTS

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.kind, **self.job}


class Subscription:
    """Async iterator over one subscriber's queue."""

    def __init__(self, queue: asyncio.Queue[JobEvent]) -> None:
        self._queue = queue

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> JobEvent:
        return await self._queue.get()

    async def get(self, timeout: float | None = None) -> JobEvent | None:
        """Next event, or ``None`` if ``timeout`` elapses first."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class JobEventBus:
    """Fan-out of job events to any number of subscribers; nothing is replayed."""

    def __init__(self) -> None:
        self._subscribers: dict[str, set[asyncio.Queue[JobEvent]]] = defaultdict(set)

    def publish(self, job_id: str, event: JobEvent) -> int:
        queues = self._subscribers.get(job_id)
        if not queues:
            return 0
        for queue in list(queues):
            queue.put_nowait(event)
        return len(queues)

    def subscriber_count(self, job_id: str) -> int:
        return len(self._subscribers.get(job_id, ()))

    @asynccontextmanager
    async def subscribe(self, job_id: str) -> AsyncIterator[Subscription]:
        queue: asyncio.Queue[JobEvent] = asyncio.Queue()
        self._subscribers[job_id].add(queue)
        logger.debug("Subscriber attached to job %s", job_id)
        try:
            yield Subscription(queue)
        finally:
            queues = self._subscribers.get(job_id)
            if queues is not None:
                queues.discard(queue)
                if not queues:
                    del self._subscribers[job_id]
            logger.debug("Subscriber detached from job %s", job_id)


__all__ = ["EventKind", "JobEvent", "JobEventBus", "Subscription", "TERMINAL_EVENTS"]
