"""Issue submission and tracking routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from code_companion.api.dependencies import get_issue_service
from code_companion.models.dto import IssueResponse, IssueSubmitRequest
from code_companion.models.entities import IssueRecord
from code_companion.services.issues import ISSUE_STATUSES, IssueService, issue_message

router = APIRouter()


def _issue_payload(issue: IssueRecord) -> dict[str, Any]:
    payload = IssueResponse.model_validate(issue, from_attributes=True).model_dump(by_alias=True, mode="json")
    payload["message"] = issue_message(issue)
    return payload


@router.post("", status_code=201, summary="Submit an issue for background analysis")
async def submit_issue(
    request: IssueSubmitRequest,
    service: IssueService = Depends(get_issue_service),
):
    issue = service.submit(request)
    return JSONResponse(
        status_code=201,
        content={
            "success": True,
            "issueId": issue.issue_id,
            "status": issue.status,
            "message": "Issue submitted successfully. Analysis in progress.",
        },
    )


@router.get("", summary="List issues")
async def list_issues(
    user_id: str | None = Query(None, alias="userId"),
    status: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: IssueService = Depends(get_issue_service),
) -> dict[str, Any]:
    if status is not None and status not in ISSUE_STATUSES:
        raise HTTPException(status_code=422, detail=f"Unknown status '{status}'")
    issues, total = service.list_issues(user_id=user_id, status=status, limit=limit, offset=offset)
    return {
        "success": True,
        "issues": [_issue_payload(issue) for issue in issues],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


@router.get("/stats", summary="Issue counts by status")
async def issue_stats(service: IssueService = Depends(get_issue_service)) -> dict[str, Any]:
    return {"success": True, "stats": service.stats()}


@router.get("/{issue_id}", summary="Fetch one issue")
async def get_issue(issue_id: str, service: IssueService = Depends(get_issue_service)) -> dict[str, Any]:
    issue = service.get(issue_id)
    if issue is None:
        raise HTTPException(status_code=404, detail="Issue not found")
    return {"success": True, "issue": _issue_payload(issue)}


__all__ = ["router"]
