"""Bug analysis routes."""

from __future__ import annotations

from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, Query

from code_companion.api.dependencies import get_analysis_service
from code_companion.api.streaming import sse_frame, sse_response
from code_companion.core.logging import get_logger
from code_companion.models.dto import AnalyzeRequest, StreamAnalyzeRequest
from code_companion.services.analysis import AnalysisService

logger = get_logger(__name__)

router = APIRouter()


@router.post("", summary="Analyze a bug report, log or stack trace")
async def analyze(
    request: AnalyzeRequest,
    service: AnalysisService = Depends(get_analysis_service),
) -> dict[str, Any]:
    result = await service.submit_analysis(request.input_text, request.input_type)
    return {"success": True, "analysis": result.to_payload()}


@router.get("/recent", summary="Recent analyses")
async def recent_analyses(
    limit: int = Query(20, ge=1, le=100),
    service: AnalysisService = Depends(get_analysis_service),
) -> dict[str, Any]:
    return {"success": True, "analyses": service.recent(limit)}


@router.post("/stream", summary="Stream an analysis as server-sent events")
async def analyze_stream(
    request: StreamAnalyzeRequest,
    service: AnalysisService = Depends(get_analysis_service),
):
    async def frames() -> AsyncIterator[bytes]:
        try:
            async for event, data in service.stream(request):
                yield sse_frame(event, data)
        except Exception as exc:
            logger.error("Streaming analysis failed: %s", exc)
            yield sse_frame("error", {"message": str(exc) or "Analysis failed"})

    return sse_response(frames())


__all__ = ["router"]
