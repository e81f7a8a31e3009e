"""Tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from code_companion.core.config import Settings


def test_yaml_keys_are_flattened(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text(
        "github:\n"
        "  token: ghp_yaml\n"
        "  allowed_repos: [acme/shop]\n"
        "sync:\n"
        "  page_size: 50\n"
        "retrieval:\n"
        "  pr_threshold: 0.5\n"
    )
    settings = Settings.from_yaml(config)
    assert settings.github_token == "ghp_yaml"
    assert settings.allowed_repos == ["acme/shop"]
    assert settings.sync_page_size == 50
    assert settings.pr_threshold == 0.5


def test_env_overrides_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("llm:\n  model: gpt-yaml\n")
    monkeypatch.setenv("CC_LLM_MODEL", "gpt-env")
    monkeypatch.setenv("CC_CORS_ORIGINS", "http://a.test, http://b.test")
    settings = Settings.from_yaml(config)
    assert settings.llm_model == "gpt-env"
    assert settings.cors_origins == ["http://a.test", "http://b.test"]


def test_defaults() -> None:
    settings = Settings()
    assert settings.embedding_dim == 768
    assert (settings.pr_limit, settings.commit_limit, settings.ticket_limit) == (10, 10, 5)
    assert settings.sync_page_size == 100


def test_repo_allow_list() -> None:
    assert Settings().is_repo_allowed("https://github.com/anyone/anything")
    settings = Settings(allowed_repos="acme/shop")
    assert settings.is_repo_allowed("https://github.com/Acme/Shop")
    assert not settings.is_repo_allowed("https://github.com/acme/other")


def test_project_root_and_rate_limits_from_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config = tmp_path / "config.yaml"
    config.write_text("project:\n  root: /srv/yaml-project\nrate_limit:\n  general: 50\n")
    monkeypatch.setenv("CC_PROJECT_ROOT", str(tmp_path))
    monkeypatch.setenv("CC_RATE_LIMIT_ANALYSIS", "5")
    settings = Settings.from_yaml(config)
    assert settings.project_root == tmp_path
    assert settings.rate_limit_general == 50
    assert settings.rate_limit_analysis == 5
    assert settings.rate_limit_webhook == 200
