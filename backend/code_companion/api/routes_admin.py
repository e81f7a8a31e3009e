"""Administrative routes for Code Companion."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from code_companion.analysis.engine import AnalysisEngine
from code_companion.api.dependencies import (
    get_analysis_engine,
    get_embedding_model,
    get_github_client,
    get_job_registry,
    get_project_service,
    get_store,
)
from code_companion.core.metrics import metrics_response
from code_companion.db.store import KnowledgeStore
from code_companion.github.client import GitHubClient
from code_companion.ingest.embeddings import EmbeddingModel
from code_companion.jobs.registry import JobRegistry
from code_companion.services.project import ProjectService

router = APIRouter()


@router.get("/health", summary="Liveness and capability check")
async def health(
    embedding_model: EmbeddingModel = Depends(get_embedding_model),
    engine: AnalysisEngine = Depends(get_analysis_engine),
    github: GitHubClient = Depends(get_github_client),
) -> dict[str, Any]:
    return {
        "ok": True,
        "embeddingBackend": embedding_model.backend,
        "llmConfigured": engine.llm.configured,
        "githubConfigured": github.configured,
    }


@router.get("/stats", summary="Knowledge base counts")
async def stats(
    store: KnowledgeStore = Depends(get_store),
    registry: JobRegistry = Depends(get_job_registry),
) -> dict[str, Any]:
    return {
        "success": True,
        "stats": {
            **store.counts(),
            "allowedRepos": len(store.list_allowed_repos()),
            "activeSyncJobs": len(registry.list_active()),
        },
    }


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


@router.post("/project/scan", summary="Rebuild the project profile and import graph from the configured root")
async def scan_project(project: ProjectService = Depends(get_project_service)) -> dict[str, Any]:
    if not project.root.is_dir():
        raise HTTPException(status_code=404, detail=f"Directory not found: {project.root}")
    profile = project.scan()
    return {
        "success": True,
        "projectName": profile.project_name,
        "techStack": profile.tech_stack,
        "modules": len(profile.directory_structure),
        "files": project.store.counts()["codebaseFiles"],
    }


@router.get("/project/context", summary="Project context prepended to prompts")
async def project_context(project: ProjectService = Depends(get_project_service)) -> dict[str, Any]:
    return {"success": True, "context": project.context()}


@router.get("/project/graph/related", summary="Modules imported by a file")
async def related_files(
    file: str = Query(..., min_length=1),
    project: ProjectService = Depends(get_project_service),
) -> dict[str, Any]:
    return {"success": True, "file": file, "related": project.get_related_files(file)}


@router.get("/project/graph/dependents", summary="Files that import a file")
async def dependents(
    file: str = Query(..., min_length=1),
    project: ProjectService = Depends(get_project_service),
) -> dict[str, Any]:
    return {"success": True, "file": file, "dependents": project.get_dependents(file)}


__all__ = ["router"]
