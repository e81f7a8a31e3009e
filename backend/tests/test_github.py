"""Tests for the GitHub client and webhook handling."""

from __future__ import annotations

import asyncio
import hashlib
import hmac

import httpx
import pytest
from pydantic import ValidationError

from code_companion.core.config import Settings
from code_companion.core.errors import ConfigurationError, GitHubAPIError
from code_companion.db.store import KnowledgeStore
from code_companion.github.client import GitHubClient, extract_keywords, parse_github_url
from code_companion.github.webhooks import WebhookHandler, verify_signature
from code_companion.ingest.pipeline import IngestPipeline

PR_DETAIL = {
    "number": 7,
    "title": "Fix cart total rounding",
    "body": "Rounds totals to cents",
    "state": "closed",
    "merged": True,
    "merged_at": "2024-03-01T10:00:00Z",
    "html_url": "https://github.com/acme/shop/pull/7",
    "user": {"login": "octocat"},
    "labels": [{"name": "bug"}],
}

PR_FILES = [
    {"filename": "src/cart.py", "additions": 4, "deletions": 1, "status": "modified", "patch": "@@ -1 +1 @@\n-a\n+b"},
    {"filename": "docs/cart.md", "additions": 1, "deletions": 0, "status": "added"},
]


def _handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/repos/acme/shop/pulls/7":
        if request.headers.get("Accept") == "application/vnd.github.v3.diff":
            return httpx.Response(200, text="diff --git a/src/cart.py b/src/cart.py")
        return httpx.Response(200, json=PR_DETAIL)
    if path == "/repos/acme/shop/pulls/7/files":
        return httpx.Response(200, json=PR_FILES)
    if path == "/repos/acme/shop/pulls":
        return httpx.Response(200, json=[PR_DETAIL])
    if path == "/search/issues":
        return httpx.Response(200, json={"items": [{"number": 7}]})
    if path == "/repos/acme/private/pulls":
        return httpx.Response(403, headers={"X-RateLimit-Remaining": "0"})
    return httpx.Response(404)


def _client(token: str | None = "ghp_test") -> GitHubClient:
    return GitHubClient(token=token, transport=httpx.MockTransport(_handler))


def test_parse_github_url() -> None:
    assert parse_github_url("https://github.com/acme/shop.git") == ("acme", "shop")
    assert parse_github_url("https://example.com/acme") is None


def test_extract_keywords_drops_stop_words() -> None:
    keywords = extract_keywords("The checkout page crashes when the cart is empty")
    assert "the" not in keywords
    assert "checkout" in keywords and "cart" in keywords


def test_client_requires_token() -> None:
    with pytest.raises(ConfigurationError):
        asyncio.run(_client(token=None).list_pull_requests("acme", "shop"))


def test_client_fetches_prs_files_and_diff() -> None:
    async def scenario():
        client = _client()
        try:
            prs = await client.list_pull_requests("acme", "shop")
            files = await client.list_pull_request_files("acme", "shop", 7)
            diff = await client.get_pull_request_diff("acme", "shop", 7)
            found = await client.search_pull_requests("acme", "shop", ["cart", "rounding"])
        finally:
            await client.close()
        return prs, files, diff, found

    prs, files, diff, found = asyncio.run(scenario())
    assert prs[0]["number"] == 7
    assert [item["filename"] for item in files] == ["src/cart.py", "docs/cart.md"]
    assert diff.startswith("diff --git")
    assert [pr["title"] for pr in found] == ["Fix cart total rounding"]


@pytest.mark.parametrize(("repo", "status"), [("private", 403), ("missing", 404)])
def test_client_maps_http_errors(repo: str, status: int) -> None:
    with pytest.raises(GitHubAPIError) as excinfo:
        asyncio.run(_client().list_pull_requests("acme", repo))
    assert excinfo.value.status_code == status


def test_verify_signature() -> None:
    body = b'{"zen": "Keep it simple"}'
    good = "sha256=" + hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    assert verify_signature(body, good, "s3cret") is True
    assert verify_signature(body, "sha256=deadbeef", "s3cret") is False
    assert verify_signature(body, None, "s3cret") is False
    assert verify_signature(body, None, None) is True


def _pr_payload(action: str = "closed", html_url: str = "https://github.com/acme/shop") -> dict:
    return {
        "action": action,
        "pull_request": PR_DETAIL,
        "repository": {"full_name": "acme/shop", "html_url": html_url},
    }


def test_pull_request_event_is_ingested(store: KnowledgeStore, pipeline: IngestPipeline, settings: Settings) -> None:
    handler = WebhookHandler(_client(), pipeline, settings)

    result = asyncio.run(handler.dispatch("pull_request", _pr_payload()))

    assert result == {"success": True, "processed": 1, "errors": []}
    pr = store.get_pull_request(7, "https://github.com/acme/shop")
    assert pr.state == "merged"
    assert [change.path for change in pr.files_changed] == ["src/cart.py", "docs/cart.md"]
    assert pr.diff_content == "File: src/cart.py\n@@ -1 +1 @@\n-a\n+b"


def test_pull_request_event_respects_allow_list_and_actions(
    store: KnowledgeStore, pipeline: IngestPipeline, settings: Settings
) -> None:
    settings.allowed_repos = ["acme/other"]
    handler = WebhookHandler(_client(), pipeline, settings)
    assert asyncio.run(handler.dispatch("pull_request", _pr_payload()))["processed"] == 0

    settings.allowed_repos = []
    assert asyncio.run(handler.dispatch("pull_request", _pr_payload(action="labeled")))["processed"] == 0
    assert store.get_pull_request(7, "https://github.com/acme/shop") is None


def test_pull_request_event_without_repository_is_invalid(pipeline: IngestPipeline, settings: Settings) -> None:
    handler = WebhookHandler(_client(), pipeline, settings)
    with pytest.raises(ValidationError):
        asyncio.run(handler.dispatch("pull_request", {"action": "closed", "pull_request": PR_DETAIL}))


def test_ping_and_unknown_events(pipeline: IngestPipeline, settings: Settings) -> None:
    handler = WebhookHandler(_client(), pipeline, settings)
    assert asyncio.run(handler.dispatch("ping", {}))["message"] == "Pong! Webhook configured correctly."
    assert asyncio.run(handler.dispatch("star", {}))["message"] == "Event type 'star' not processed"


def test_push_event_inserts_commits_once(store: KnowledgeStore, pipeline: IngestPipeline, settings: Settings) -> None:
    payload = {
        "repository": {"full_name": "acme/shop", "html_url": "https://github.com/acme/shop"},
        "commits": [
            {
                "id": "a1b2c3d4e5f6",
                "message": "Fix rounding",
                "author": {"name": "Octo Cat", "email": "octo@example.com"},
                "url": "https://github.com/acme/shop/commit/a1b2c3d4e5f6",
                "timestamp": "2024-03-01T10:00:00Z",
                "modified": ["src/cart.py"],
                "added": [],
                "removed": ["src/legacy.py"],
            }
        ],
    }
    handler = WebhookHandler(_client(), pipeline, settings)

    first = asyncio.run(handler.dispatch("push", payload))
    second = asyncio.run(handler.dispatch("push", payload))

    assert first["processed"] == 1
    assert second["processed"] == 0
    commit = store.get_commit("a1b2c3d4e5f6")
    assert [change.status for change in commit.files_changed] == ["modified", "deleted"]


def test_manual_trigger_fetches_pr(store: KnowledgeStore, pipeline: IngestPipeline, settings: Settings) -> None:
    handler = WebhookHandler(_client(), pipeline, settings)
    outcome = asyncio.run(handler.trigger("acme", "shop", 7))
    assert outcome.processed == 1
    assert store.get_pull_request(7, "https://github.com/acme/shop").title == "Fix cart total rounding"
