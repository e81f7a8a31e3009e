"""GitHub webhook, manual ingest and background sync routes."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

import orjson
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from code_companion.api.dependencies import (
    get_app_settings,
    get_event_bus,
    get_github_client,
    get_ingest_pipeline,
    get_job_registry,
    get_webhook_handler,
)
from code_companion.api.streaming import sse_frame, sse_response
from code_companion.core.config import Settings
from code_companion.core.errors import ConfigurationError
from code_companion.core.logging import get_logger
from code_companion.github.client import GitHubClient
from code_companion.github.webhooks import WebhookHandler, verify_signature
from code_companion.ingest.pipeline import IngestPipeline
from code_companion.jobs.events import TERMINAL_EVENTS, JobEventBus
from code_companion.jobs.registry import JobRegistry
from code_companion.models.dto import (
    CommitIngest,
    IngestItemResult,
    IngestRequest,
    PRIngest,
    SyncRequest,
    TicketIngest,
    TriggerWebhookRequest,
)

logger = get_logger(__name__)

router = APIRouter()

BULK_ITEM_DELAY = 0.1


@router.post("/webhook", summary="Receive GitHub webhook deliveries")
async def github_webhook(
    request: Request,
    handler: WebhookHandler = Depends(get_webhook_handler),
    settings: Settings = Depends(get_app_settings),
):
    body = await request.body()
    signature = request.headers.get("X-Hub-Signature-256")
    if not verify_signature(body, signature, settings.github_webhook_secret):
        logger.warning("Rejected webhook with invalid signature")
        return JSONResponse(status_code=401, content={"success": False, "error": "Invalid signature"})
    try:
        payload = orjson.loads(body)
    except orjson.JSONDecodeError:
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid JSON payload"})
    event = request.headers.get("X-GitHub-Event", "")
    logger.info("Received GitHub webhook: %s", event, extra={"ctx_delivery": request.headers.get("X-GitHub-Delivery")})
    try:
        return await handler.dispatch(event, payload)
    except ValidationError as exc:
        logger.warning("Rejected malformed %s webhook: %s validation errors", event, exc.error_count())
        raise RequestValidationError(exc.errors()) from exc


def _validate(model: type[BaseModel], data: Any) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc


async def _ingest_one(pipeline: IngestPipeline, kind: str, data: Any) -> dict[str, Any]:
    if kind == "pr":
        record = await pipeline.ingest_pr(_validate(PRIngest, data))
        return {"success": True, "id": record.id, "message": f"PR #{record.pr_number} ingested"}
    if kind == "commit":
        record, created = await pipeline.ingest_commit(_validate(CommitIngest, data))
        message = "Commit ingested" if created else "Commit already exists"
        return {"success": True, "id": record.id, "created": created, "message": message}
    record = await pipeline.ingest_ticket(_validate(TicketIngest, data))
    return {"success": True, "id": record.id, "message": f"Ticket {record.ticket_key} ingested"}


async def _ingest_bulk(pipeline: IngestPipeline, kind: str, items: list[Any]) -> list[IngestItemResult]:
    results: list[IngestItemResult] = []
    for index, item in enumerate(items):
        if index:
            await asyncio.sleep(BULK_ITEM_DELAY)
        try:
            if kind == "bulk_prs":
                record = await pipeline.ingest_pr(PRIngest.model_validate(item))
            else:
                record, _ = await pipeline.ingest_commit(CommitIngest.model_validate(item))
            results.append(IngestItemResult(success=True, id=record.id))
        except ValidationError as exc:
            results.append(IngestItemResult(success=False, error=f"Invalid item: {exc.error_count()} validation errors"))
        except Exception as exc:
            logger.error("Bulk ingest item %s failed: %s", index, exc)
            results.append(IngestItemResult(success=False, error=str(exc)))
    return results


@router.post("/ingest", summary="Manually ingest PRs, commits or tickets")
async def ingest(
    request: IngestRequest,
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> dict[str, Any]:
    if request.type in {"pr", "commit", "ticket"}:
        return await _ingest_one(pipeline, request.type, request.data)
    if not isinstance(request.data, list):
        raise RequestValidationError(
            [{"type": "list_type", "loc": ("body", "data"), "msg": "Input should be a valid list", "input": None}]
        )
    results = await _ingest_bulk(pipeline, request.type, request.data)
    succeeded = sum(1 for result in results if result.success)
    return {
        "success": True,
        "total": len(results),
        "succeeded": succeeded,
        "results": [result.model_dump(exclude_none=True) for result in results],
    }


@router.post("/sync/prs", status_code=202, summary="Start a background PR sync")
async def start_sync(
    request: SyncRequest,
    registry: JobRegistry = Depends(get_job_registry),
    github: GitHubClient = Depends(get_github_client),
) -> dict[str, Any]:
    if not github.configured:
        raise ConfigurationError("GitHub token is not configured")
    job = registry.create(request.owner, request.repo, request.limit)
    return {
        "success": True,
        "message": f"Sync started for {request.owner}/{request.repo}",
        "jobId": job.id,
        "status": job.status,
    }


@router.get("/sync/status/{job_id}", summary="Status of a sync job")
async def sync_status(job_id: str, registry: JobRegistry = Depends(get_job_registry)) -> dict[str, Any]:
    job = registry.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return {"success": True, "job": job.snapshot()}


@router.get("/sync/jobs", summary="Active and recent sync jobs")
async def sync_jobs(registry: JobRegistry = Depends(get_job_registry)) -> dict[str, Any]:
    return {
        "success": True,
        "active": [job.snapshot() for job in registry.list_active()],
        "recent": [job.snapshot() for job in registry.list_recent()],
    }


@router.get("/sync/events/{job_id}", summary="Stream sync job events")
async def sync_events(
    job_id: str,
    registry: JobRegistry = Depends(get_job_registry),
    events: JobEventBus = Depends(get_event_bus),
):
    if registry.get(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")

    async def frames() -> AsyncIterator[bytes]:
        async with events.subscribe(job_id) as subscription:
            job = registry.get(job_id)
            if job is None:
                return
            yield sse_frame("snapshot", {"type": "snapshot", **job.snapshot()})
            if job.status in TERMINAL_EVENTS:
                return
            async for event in subscription:
                yield sse_frame(event.kind, event.to_dict())
                if event.terminal:
                    break

    return sse_response(frames())


@router.post("/trigger-webhook", summary="Re-run the pull_request handler for one PR")
async def trigger_webhook(
    request: TriggerWebhookRequest,
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> dict[str, Any]:
    outcome = await handler.trigger(request.owner, request.repo, request.pr_number, request.action)
    return {"success": not outcome.errors, "processed": outcome.processed, "errors": outcome.errors}


__all__ = ["router"]
