"""Tests for per-client request rate limiting."""

from __future__ import annotations

import pytest

from code_companion.api.ratelimit import RateLimiter, SlidingWindowLimiter
from code_companion.core.config import Settings


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_window_blocks_then_recovers() -> None:
    clock = FakeClock()
    limiter = SlidingWindowLimiter(limit=2, window=60.0, clock=clock)

    first = limiter.hit("10.0.0.1")
    clock.now += 10
    second = limiter.hit("10.0.0.1")
    blocked = limiter.hit("10.0.0.1")

    assert (first.allowed, first.remaining) == (True, 1)
    assert (second.allowed, second.remaining) == (True, 0)
    assert not blocked.allowed
    assert blocked.retry_after == 50

    clock.now += 50
    assert limiter.hit("10.0.0.1").allowed


def test_clients_are_counted_separately() -> None:
    limiter = SlidingWindowLimiter(limit=1, clock=FakeClock())
    assert limiter.hit("a").allowed
    assert limiter.hit("b").allowed
    assert not limiter.hit("a").allowed


def test_prune_drops_idle_clients() -> None:
    clock = FakeClock()
    limiter = SlidingWindowLimiter(limit=5, window=60.0, clock=clock)
    limiter.hit("idle")
    clock.now += 30
    limiter.hit("busy")
    clock.now += 40

    assert limiter.prune() == 1
    assert limiter.hit("busy").remaining == 3


@pytest.mark.parametrize(
    ("method", "path", "tier"),
    [
        ("POST", "/github/webhook", "webhook"),
        ("POST", "/analyze", "analysis"),
        ("POST", "/analyze/stream", "analysis"),
        ("POST", "/issues", "analysis"),
        ("GET", "/issues", "general"),
        ("GET", "/analyze/history", "general"),
        ("POST", "/github/sync/prs", "general"),
        ("GET", "/health", None),
        ("GET", "/metrics", None),
    ],
)
def test_tier_selection(method: str, path: str, tier: str | None) -> None:
    selected = RateLimiter(Settings()).tier_for(method, path)
    assert (selected.name if selected else None) == tier


def test_tiers_do_not_share_counters() -> None:
    limiter = RateLimiter(Settings(rate_limit_analysis=1, rate_limit_general=1), clock=FakeClock())

    assert limiter.check("POST", "/analyze", "c")[1].allowed
    assert limiter.check("GET", "/stats", "c")[1].allowed
    tier, decision = limiter.check("POST", "/analyze", "c")
    assert tier.name == "analysis"
    assert not decision.allowed
    assert tier.message == "Too many analysis requests, please try again later."


def test_disabled_limiter_checks_nothing() -> None:
    limiter = RateLimiter(Settings(rate_limit_enabled=False, rate_limit_general=0))
    assert limiter.check("GET", "/stats", "c") is None
