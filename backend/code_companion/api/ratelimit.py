"""Per-client request rate limiting.

Each client IP gets a sliding one-minute window per tier. A request counts
against exactly one tier: webhook deliveries, analysis requests (which call
the LLM), or the general API. Health and metrics endpoints are never limited.
"""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

from code_companion.core.config import Settings

Clock = Callable[[], float]

EXEMPT_PATHS = frozenset({"/health", "/metrics"})
# Keys whose window has emptied are dropped once this many clients are tracked.
PRUNE_THRESHOLD = 10_000


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0


class SlidingWindowLimiter:
    """Counts hits per key over the trailing ``window`` seconds."""

    def __init__(self, limit: int, window: float = 60.0, clock: Clock = time.monotonic) -> None:
        self.limit = limit
        self.window = window
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}

    def hit(self, key: str) -> RateLimitDecision:
        now = self._clock()
        hits = self._hits.setdefault(key, deque())
        while hits and now - hits[0] >= self.window:
            hits.popleft()
        if len(hits) >= self.limit:
            retry_after = max(1, math.ceil(self.window - (now - hits[0])))
            return RateLimitDecision(allowed=False, limit=self.limit, remaining=0, retry_after=retry_after)
        hits.append(now)
        if len(self._hits) > PRUNE_THRESHOLD:
            self.prune(now)
        return RateLimitDecision(allowed=True, limit=self.limit, remaining=self.limit - len(hits))

    def prune(self, now: float | None = None) -> int:
        now = self._clock() if now is None else now
        stale = [key for key, hits in self._hits.items() if not hits or now - hits[-1] >= self.window]
        for key in stale:
            del self._hits[key]
        return len(stale)


@dataclass(frozen=True, slots=True)
class RateLimitTier:
    name: str
    limiter: SlidingWindowLimiter
    message: str


class RateLimiter:
    def __init__(self, settings: Settings, clock: Clock = time.monotonic) -> None:
        window = settings.rate_limit_window_seconds
        self.enabled = settings.rate_limit_enabled
        self.general = RateLimitTier(
            "general",
            SlidingWindowLimiter(settings.rate_limit_general, window, clock),
            "Too many requests, please try again later.",
        )
        self.analysis = RateLimitTier(
            "analysis",
            SlidingWindowLimiter(settings.rate_limit_analysis, window, clock),
            "Too many analysis requests, please try again later.",
        )
        self.webhook = RateLimitTier(
            "webhook",
            SlidingWindowLimiter(settings.rate_limit_webhook, window, clock),
            "Too many webhook events.",
        )

    def tier_for(self, method: str, path: str) -> RateLimitTier | None:
        if not self.enabled or path in EXEMPT_PATHS:
            return None
        if path == "/github/webhook":
            return self.webhook
        if method == "POST" and (path == "/analyze" or path.startswith("/analyze/") or path == "/issues"):
            return self.analysis
        return self.general

    def check(self, method: str, path: str, client: str) -> tuple[RateLimitTier, RateLimitDecision] | None:
        """Record one request; ``None`` means the path is not limited."""
        tier = self.tier_for(method, path)
        if tier is None:
            return None
        return tier, tier.limiter.hit(client)


__all__ = [
    "EXEMPT_PATHS",
    "RateLimitDecision",
    "RateLimitTier",
    "RateLimiter",
    "SlidingWindowLimiter",
]
