"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "CC_"
DEFAULT_CONFIG_PATH = Path("~/.config/code-companion/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("github", "token"): "github_token",
    ("github", "webhook_secret"): "github_webhook_secret",
    ("github", "api_url"): "github_api_url",
    ("github", "target_owner"): "target_repo_owner",
    ("github", "target_repo"): "target_repo_name",
    ("github", "allowed_repos"): "allowed_repos",
    ("llm", "api_key"): "openai_api_key",
    ("llm", "base_url"): "openai_base_url",
    ("llm", "model"): "llm_model",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "max_chars"): "embedding_max_chars",
    ("retrieval", "pr_threshold"): "pr_threshold",
    ("retrieval", "commit_threshold"): "commit_threshold",
    ("retrieval", "ticket_threshold"): "ticket_threshold",
    ("retrieval", "pr_limit"): "pr_limit",
    ("retrieval", "commit_limit"): "commit_limit",
    ("retrieval", "ticket_limit"): "ticket_limit",
    ("context", "diff_similarity"): "diff_similarity_threshold",
    ("context", "diff_excerpt_chars"): "diff_excerpt_chars",
    ("sync", "page_size"): "sync_page_size",
    ("sync", "pr_delay"): "sync_pr_delay",
    ("sync", "page_delay"): "sync_page_delay",
    ("sync", "max_diff_chars"): "max_diff_chars",
    ("jobs", "retention_seconds"): "job_retention_seconds",
    ("jobs", "sweep_interval"): "job_sweep_interval",
    ("server", "host"): "host",
    ("server", "port"): "port",
    ("server", "cors_origins"): "cors_origins",
    ("server", "shutdown_timeout"): "shutdown_timeout",
    ("project", "name"): "project_name",
    ("project", "root"): "project_root",
    ("rate_limit", "enabled"): "rate_limit_enabled",
    ("rate_limit", "window_seconds"): "rate_limit_window_seconds",
    ("rate_limit", "general"): "rate_limit_general",
    ("rate_limit", "analysis"): "rate_limit_analysis",
    ("rate_limit", "webhook"): "rate_limit_webhook",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".code-companion" / "cc.db")

    github_token: str | None = None
    github_webhook_secret: str | None = None
    github_api_url: str = "https://api.github.com"
    target_repo_owner: str | None = None
    target_repo_name: str | None = None
    allowed_repos: list[str] = Field(default_factory=list)

    openai_api_key: str | None = None
    openai_base_url: str | None = None
    llm_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = 768
    embedding_max_chars: int = 8000

    pr_threshold: float = 0.3
    commit_threshold: float = 0.3
    ticket_threshold: float = 0.3
    pr_limit: int = 10
    commit_limit: int = 10
    ticket_limit: int = 5
    diff_similarity_threshold: float = 0.4
    diff_excerpt_chars: int = 2000

    sync_page_size: int = 100
    sync_pr_delay: float = 0.2
    sync_page_delay: float = 0.1
    max_diff_chars: int = 8000
    job_retention_seconds: float = 3600.0
    job_sweep_interval: float = 600.0

    host: str = "127.0.0.1"
    port: int = 3001
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:5173"])
    shutdown_timeout: int = 10
    project_name: str = "Code Companion"
    project_root: Path = Field(default_factory=Path.cwd)

    rate_limit_enabled: bool = True
    rate_limit_window_seconds: float = 60.0
    rate_limit_general: int = 100
    rate_limit_analysis: int = 20
    rate_limit_webhook: int = 200

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "project_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("expected a path or string")

    @field_validator("allowed_repos", "cors_origins", mode="before")
    @classmethod
    def _split_csv(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None

    def is_repo_allowed(self, repo_url: str) -> bool:
        """Match a repository URL against the allow-list; empty list allows all."""
        if not self.allowed_repos:
            return True
        lowered = repo_url.lower()
        return any(allowed.lower() in lowered for allowed in self.allowed_repos)


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with CC_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
