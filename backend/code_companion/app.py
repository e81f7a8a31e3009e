"""FastAPI application setup for Code Companion."""

from __future__ import annotations

import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from code_companion.api.dependencies import (
    get_app_settings,
    get_github_client,
    get_job_registry,
    get_rate_limiter,
    get_store,
)
from code_companion.api.routes_admin import router as admin_router
from code_companion.api.routes_analysis import router as analysis_router
from code_companion.api.routes_github import router as github_router
from code_companion.api.routes_issues import router as issues_router
from code_companion.api.routes_repos import router as repos_router
from code_companion.core.errors import ConfigurationError, GitHubAPIError
from code_companion.core.logging import REQUEST_ID, configure_logging, get_logger
from code_companion.core.metrics import RATE_LIMITED, REQUEST_COUNT, REQUEST_LATENCY

configure_logging()
logger = get_logger(__name__)

app = FastAPI(
    title=get_app_settings().project_name,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_app_settings().cors_origins,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

app.include_router(analysis_router, prefix="/analyze", tags=["analysis"])
app.include_router(github_router, prefix="/github", tags=["github"])
app.include_router(repos_router, prefix="/repos", tags=["repos"])
app.include_router(issues_router, prefix="/issues", tags=["issues"])
app.include_router(admin_router, prefix="", tags=["admin"])


@app.middleware("http")
async def enforce_rate_limit(request: Request, call_next):
    client = request.client.host if request.client else "unknown"
    checked = get_rate_limiter().check(request.method, request.url.path, client)
    if checked is None:
        return await call_next(request)
    tier, decision = checked
    if not decision.allowed:
        RATE_LIMITED.labels(tier=tier.name).inc()
        logger.warning("Rate limit exceeded for IP: %s (%s)", client, tier.name)
        return JSONResponse(
            status_code=429,
            content={"success": False, "error": tier.message},
            headers={
                "Retry-After": str(decision.retry_after),
                "RateLimit-Limit": str(decision.limit),
                "RateLimit-Remaining": "0",
            },
        )
    response = await call_next(request)
    response.headers["RateLimit-Limit"] = str(decision.limit)
    response.headers["RateLimit-Remaining"] = str(decision.remaining)
    return response


@app.middleware("http")
async def record_request_metrics(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    REQUEST_LATENCY.labels(endpoint=endpoint, method=request.method).observe(time.perf_counter() - started)
    REQUEST_COUNT.labels(endpoint=endpoint, method=request.method, status=str(response.status_code)).inc()
    return response


@app.middleware("http")
async def assign_request_id(request: Request, call_next):
    """Reuse the caller's ``X-Request-ID`` or mint one, and echo it back."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    token = REQUEST_ID.set(request_id)
    started = time.perf_counter()
    try:
        response = await call_next(request)
        logger.info(
            "%s %s %s - %.1f ms",
            request.method,
            request.url.path,
            response.status_code,
            (time.perf_counter() - started) * 1000,
        )
    finally:
        REQUEST_ID.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"success": False, "error": str(exc)})


@app.exception_handler(GitHubAPIError)
async def github_error_handler(request: Request, exc: GitHubAPIError) -> JSONResponse:
    logger.error("GitHub API error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"success": False, "error": str(exc)})


@app.on_event("startup")
async def startup() -> None:
    """Open storage and start the sync job sweeper."""
    get_store()
    get_job_registry().start()


@app.on_event("shutdown")
async def shutdown() -> None:
    await get_job_registry().stop()
    await get_github_client().close()


__all__ = ["app"]
