"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from code_companion.analysis.engine import AnalysisEngine
from code_companion.analysis.llm import LLMClient
from code_companion.api.ratelimit import RateLimiter
from code_companion.core.config import Settings, get_settings
from code_companion.db.sqlite import SQLiteDatabase
from code_companion.db.store import KnowledgeStore
from code_companion.github.client import GitHubClient
from code_companion.github.webhooks import WebhookHandler
from code_companion.ingest.embeddings import EmbeddingModel, OpenAIEmbeddingProvider
from code_companion.ingest.pipeline import IngestPipeline
from code_companion.jobs.events import JobEventBus
from code_companion.jobs.registry import JobRegistry
from code_companion.jobs.sync import SyncOrchestrator
from code_companion.retrieval import RetrievalService
from code_companion.services.analysis import AnalysisService
from code_companion.services.issues import IssueService
from code_companion.services.project import ProjectService

_DB: SQLiteDatabase | None = None
_STORE: KnowledgeStore | None = None
_EMBEDDING_MODEL: EmbeddingModel | None = None
_GITHUB: GitHubClient | None = None
_PIPELINE: IngestPipeline | None = None
_ENGINE: AnalysisEngine | None = None
_EVENTS: JobEventBus | None = None
_REGISTRY: JobRegistry | None = None
_ANALYSIS_SERVICE: AnalysisService | None = None
_ISSUE_SERVICE: IssueService | None = None
_RATE_LIMITER: RateLimiter | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_store() -> KnowledgeStore:
    global _STORE
    if _STORE is None:
        _STORE = KnowledgeStore(get_database())
    return _STORE


def get_embedding_model() -> EmbeddingModel:
    global _EMBEDDING_MODEL
    if _EMBEDDING_MODEL is None:
        settings = get_app_settings()
        provider = None
        if settings.openai_api_key:
            provider = OpenAIEmbeddingProvider(
                api_key=settings.openai_api_key,
                model=settings.embedding_model,
                dim=settings.embedding_dim,
                base_url=settings.openai_base_url,
            )
        _EMBEDDING_MODEL = EmbeddingModel(
            provider=provider,
            dim=settings.embedding_dim,
            max_chars=settings.embedding_max_chars,
        )
    return _EMBEDDING_MODEL


def get_github_client() -> GitHubClient:
    global _GITHUB
    if _GITHUB is None:
        settings = get_app_settings()
        _GITHUB = GitHubClient(token=settings.github_token, api_url=settings.github_api_url)
    return _GITHUB


def get_ingest_pipeline() -> IngestPipeline:
    global _PIPELINE
    if _PIPELINE is None:
        _PIPELINE = IngestPipeline(
            store=get_store(),
            embedding_model=get_embedding_model(),
            settings=get_app_settings(),
        )
    return _PIPELINE


def get_retrieval_service() -> RetrievalService:
    return RetrievalService(get_store(), get_app_settings())


def get_analysis_engine() -> AnalysisEngine:
    global _ENGINE
    if _ENGINE is None:
        settings = get_app_settings()
        llm = LLMClient(
            api_key=settings.openai_api_key,
            model=settings.llm_model,
            base_url=settings.openai_base_url,
        )
        _ENGINE = AnalysisEngine(llm, settings)
    return _ENGINE


def get_webhook_handler() -> WebhookHandler:
    return WebhookHandler(get_github_client(), get_ingest_pipeline(), get_app_settings())


def get_event_bus() -> JobEventBus:
    global _EVENTS
    if _EVENTS is None:
        _EVENTS = JobEventBus()
    return _EVENTS


def get_job_registry() -> JobRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        settings = get_app_settings()
        orchestrator = SyncOrchestrator(
            github=get_github_client(),
            store=get_store(),
            pipeline=get_ingest_pipeline(),
            settings=settings,
        )
        _REGISTRY = JobRegistry(
            orchestrator,
            get_event_bus(),
            store=get_store(),
            retention_seconds=settings.job_retention_seconds,
            sweep_interval=settings.job_sweep_interval,
        )
    return _REGISTRY


def get_project_service() -> ProjectService:
    settings = get_app_settings()
    return ProjectService(get_store(), settings.project_name, settings.project_root)


def get_analysis_service() -> AnalysisService:
    global _ANALYSIS_SERVICE
    if _ANALYSIS_SERVICE is None:
        _ANALYSIS_SERVICE = AnalysisService(
            embedding_model=get_embedding_model(),
            retrieval=get_retrieval_service(),
            engine=get_analysis_engine(),
            store=get_store(),
            project=get_project_service(),
        )
    return _ANALYSIS_SERVICE


def get_issue_service() -> IssueService:
    global _ISSUE_SERVICE
    if _ISSUE_SERVICE is None:
        _ISSUE_SERVICE = IssueService(
            store=get_store(),
            embedding_model=get_embedding_model(),
            engine=get_analysis_engine(),
            github=get_github_client(),
            settings=get_app_settings(),
        )
    return _ISSUE_SERVICE


def get_rate_limiter() -> RateLimiter:
    global _RATE_LIMITER
    if _RATE_LIMITER is None:
        _RATE_LIMITER = RateLimiter(get_app_settings())
    return _RATE_LIMITER


def reset_dependencies() -> None:
    """Drop every cached singleton; the next request rebuilds them from fresh settings."""
    global _DB, _STORE, _EMBEDDING_MODEL, _GITHUB, _PIPELINE, _ENGINE
    global _EVENTS, _REGISTRY, _ANALYSIS_SERVICE, _ISSUE_SERVICE, _RATE_LIMITER
    if _DB is not None:
        _DB.close()
    get_app_settings.cache_clear()
    get_settings.cache_clear()
    _DB = None
    _STORE = None
    _EMBEDDING_MODEL = None
    _GITHUB = None
    _PIPELINE = None
    _ENGINE = None
    _EVENTS = None
    _REGISTRY = None
    _ANALYSIS_SERVICE = None
    _ISSUE_SERVICE = None
    _RATE_LIMITER = None


__all__ = [
    "get_analysis_engine",
    "get_analysis_service",
    "get_app_settings",
    "get_database",
    "get_embedding_model",
    "get_event_bus",
    "get_github_client",
    "get_ingest_pipeline",
    "get_issue_service",
    "get_job_registry",
    "get_project_service",
    "get_rate_limiter",
    "get_retrieval_service",
    "get_store",
    "get_webhook_handler",
    "reset_dependencies",
]
