"""Prometheus metrics instrumentation."""

from __future__ import annotations

from fastapi import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

REQUEST_COUNT = Counter(
    "cc_requests_total",
    "Total HTTP requests",
    labelnames=("endpoint", "method", "status"),
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "cc_request_latency_seconds",
    "Latency of HTTP requests",
    labelnames=("endpoint", "method"),
    registry=REGISTRY,
)

ANALYSIS_REQUESTS = Counter(
    "cc_analysis_requests_total",
    "Analyses served, by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

EMBEDDING_FALLBACKS = Counter(
    "cc_embedding_fallbacks_total",
    "Embeddings produced by the deterministic fallback",
    registry=REGISTRY,
)

SYNC_JOBS = Counter(
    "cc_sync_jobs_total",
    "Sync jobs by terminal status",
    labelnames=("status",),
    registry=REGISTRY,
)

SYNC_PRS = Counter(
    "cc_sync_prs_total",
    "Pull requests inspected by sync jobs",
    labelnames=("outcome",),
    registry=REGISTRY,
)

SYNC_DURATION = Histogram(
    "cc_sync_duration_seconds",
    "Sync job duration",
    registry=REGISTRY,
)

RATE_LIMITED = Counter(
    "cc_rate_limited_total",
    "Requests rejected by the rate limiter",
    labelnames=("tier",),
    registry=REGISTRY,
)

ACTIVE_JOBS = Gauge(
    "cc_active_sync_jobs",
    "Sync jobs pending or running",
    registry=REGISTRY,
)


def metrics_response() -> Response:
    """Return Prometheus metrics as an HTTP response."""
    payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = [
    "REGISTRY",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "ANALYSIS_REQUESTS",
    "EMBEDDING_FALLBACKS",
    "SYNC_JOBS",
    "SYNC_PRS",
    "SYNC_DURATION",
    "ACTIVE_JOBS",
    "RATE_LIMITED",
    "metrics_response",
]
