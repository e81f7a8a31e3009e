"""Allowed repository management."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from code_companion.api.dependencies import get_github_client, get_store
from code_companion.db.store import KnowledgeStore
from code_companion.github.client import GitHubClient
from code_companion.models.dto import RepoCreateRequest, RepoResponse, RepoSyncUpdate
from code_companion.models.entities import AllowedRepo

router = APIRouter()


def _repo_payload(repo: AllowedRepo) -> dict[str, Any]:
    return RepoResponse.model_validate(repo, from_attributes=True).model_dump(by_alias=True, mode="json")


@router.get("", summary="List active allowed repositories")
async def list_repos(store: KnowledgeStore = Depends(get_store)) -> dict[str, Any]:
    return {"success": True, "repos": [_repo_payload(repo) for repo in store.list_allowed_repos()]}


@router.post("", summary="Add or reactivate an allowed repository")
async def add_repo(request: RepoCreateRequest, store: KnowledgeStore = Depends(get_store)):
    existing = store.find_allowed_repo(request.owner, request.name)
    if existing is not None:
        repo = store.set_repo_active(existing.id, True, request.description)
        if repo is None:
            raise HTTPException(status_code=404, detail="Repository not found")
        return {"success": True, "repo": _repo_payload(repo), "message": "Repository reactivated"}
    repo = store.add_allowed_repo(request.owner, request.name, request.description)
    return JSONResponse(
        status_code=201,
        content={"success": True, "repo": _repo_payload(repo), "message": "Repository added"},
    )


@router.delete("/{repo_id}", summary="Deactivate an allowed repository")
async def remove_repo(repo_id: str, store: KnowledgeStore = Depends(get_store)) -> dict[str, Any]:
    if store.set_repo_active(repo_id, False) is None:
        raise HTTPException(status_code=404, detail="Repository not found")
    return {"success": True, "message": "Repository removed from allowed list"}


@router.patch("/{repo_id}/sync", summary="Stamp a repository as synced")
async def mark_synced(
    repo_id: str,
    request: RepoSyncUpdate,
    store: KnowledgeStore = Depends(get_store),
) -> dict[str, Any]:
    repo = store.touch_repo(repo_id, request.pr_count)
    if repo is None:
        raise HTTPException(status_code=404, detail="Repository not found")
    return {"success": True, "repo": _repo_payload(repo)}


@router.get("/pr-diff", summary="Fetch the raw diff of a pull request")
async def pr_diff(
    owner: str = Query(..., min_length=1),
    repo: str = Query(..., min_length=1),
    pr_number: int = Query(..., alias="prNumber", gt=0),
    github: GitHubClient = Depends(get_github_client),
) -> dict[str, Any]:
    diff = await github.get_pull_request_diff(owner, repo, pr_number)
    return {"success": True, "diff": diff}


__all__ = ["router"]
