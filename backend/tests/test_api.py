"""API integration tests."""

from __future__ import annotations

import hashlib
import hmac

import orjson
import pytest
from conftest import FakeLLM
from fastapi.testclient import TestClient

from code_companion.analysis.engine import AnalysisEngine
from code_companion.api import dependencies as deps
from code_companion.app import app
from code_companion.jobs.registry import JobRegistry
from code_companion.jobs.sync import SyncResult

PR_BODY = {
    "prNumber": 42,
    "title": "Guard null cart in checkout",
    "description": "Checkout crashed with a NullPointerException when the cart was empty",
    "author": "octocat",
    "repoUrl": "https://github.com/acme/shop",
    "prUrl": "https://github.com/acme/shop/pull/42",
    "mergedAt": "2024-03-01T10:00:00Z",
    "diffContent": "+ if cart is None:\n+     return",
}


class FakeOrchestrator:
    async def sync_repo_prs(self, owner, repo, limit=0, on_progress=None):
        return SyncResult(processed=2, updated=0, skipped=0, errors=[], stopped_early=False, message="Synced 2 new PRs")


@pytest.fixture
def client() -> TestClient:
    with TestClient(app) as test_client:
        yield test_client


def _use_llm(llm: FakeLLM) -> None:
    deps._ENGINE = AnalysisEngine(llm, deps.get_app_settings())
    deps._ANALYSIS_SERVICE = None


def test_health(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["ok"] is True
    assert body["embeddingBackend"] == "deterministic"
    assert body["llmConfigured"] is False


def test_analyze_without_llm_key_is_unavailable(client: TestClient) -> None:
    resp = client.post("/analyze", json={"inputText": "checkout crashes", "inputType": "description"})
    assert resp.status_code == 503
    assert resp.json()["success"] is False


def test_analyze_rejects_invalid_input(client: TestClient) -> None:
    resp = client.post("/analyze", json={"inputText": "", "inputType": "poem"})
    assert resp.status_code == 422


def test_ingest_then_analyze_flow(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CC_PR_THRESHOLD", "-1")
    with TestClient(app) as client:
        ingest = client.post("/github/ingest", json={"type": "pr", "data": PR_BODY})
        assert ingest.status_code == 200
        assert ingest.json()["success"] is True

        _use_llm(FakeLLM("not json at all"))
        resp = client.post("/analyze", json={"inputText": "NullPointerException in checkout", "inputType": "log"})
        assert resp.status_code == 200
        analysis = resp.json()["analysis"]
        assert analysis["status"] == "unknown"
        assert analysis["relatedPRs"][0]["prNumber"] == 42

        recent = client.get("/analyze/recent").json()["analyses"]
        assert len(recent) == 1

        stats = client.get("/stats").json()["stats"]
        assert stats["pullRequests"] == 1
        assert stats["analysisQueries"] == 1


def test_ingest_validation_and_bulk(client: TestClient) -> None:
    bad = client.post("/github/ingest", json={"type": "pr", "data": {**PR_BODY, "repoUrl": "ftp://nope"}})
    assert bad.status_code == 422

    bulk = client.post(
        "/github/ingest",
        json={"type": "bulk_prs", "data": [PR_BODY, {**PR_BODY, "prNumber": 43, "prUrl": "https://github.com/acme/shop/pull/43"}, {"title": "x"}]},
    )
    assert bulk.status_code == 200
    body = bulk.json()
    assert body["total"] == 3
    assert body["succeeded"] == 2
    assert body["results"][2]["success"] is False


def test_stream_emits_stages_and_persists_conversation(client: TestClient) -> None:
    _use_llm(FakeLLM(chunks=["The cart ", "was empty."]))
    resp = client.post(
        "/analyze/stream",
        json={"inputText": "why does checkout crash?", "inputType": "description", "conversationId": "c-1"},
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/event-stream")
    events = [line.split(": ", 1)[1] for line in resp.text.splitlines() if line.startswith("event: ")]
    assert events[:4] == ["stage", "stage", "stage", "result"]
    assert events[-1] == "complete"
    assert events.count("content") == 2
    history = deps.get_store().get_history("c-1")
    assert [(message.role, message.content) for message in history] == [
        ("user", "why does checkout crash?"),
        ("model", "The cart was empty."),
    ]


def test_webhook_signature_is_enforced(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CC_GITHUB_WEBHOOK_SECRET", "s3cret")
    body = orjson.dumps({"zen": "Design for failure."})
    signature = "sha256=" + hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()
    with TestClient(app) as client:
        rejected = client.post(
            "/github/webhook",
            content=body,
            headers={"X-GitHub-Event": "ping", "X-Hub-Signature-256": "sha256=bad"},
        )
        accepted = client.post(
            "/github/webhook",
            content=body,
            headers={"X-GitHub-Event": "ping", "X-Hub-Signature-256": signature},
        )
    assert rejected.status_code == 401
    assert accepted.status_code == 200
    assert accepted.json()["message"] == "Pong! Webhook configured correctly."


def test_malformed_webhook_is_rejected_before_ingest(client: TestClient) -> None:
    resp = client.post("/github/webhook", content=b"{}", headers={"X-GitHub-Event": "pull_request"})
    assert resp.status_code == 422
    fields = {tuple(error["loc"]) for error in resp.json()["detail"]}
    assert ("pull_request",) in fields
    assert ("repository",) in fields

    push = client.post("/github/webhook", content=b"{\"commits\": []}", headers={"X-GitHub-Event": "push"})
    assert push.status_code == 422
    assert client.get("/stats").json()["stats"]["pullRequests"] == 0


def test_sync_requires_github_token(client: TestClient) -> None:
    resp = client.post("/github/sync/prs", json={"owner": "acme", "repo": "shop"})
    assert resp.status_code == 503
    assert client.get("/github/sync/status/unknown").status_code == 404


def test_sync_job_lifecycle(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CC_GITHUB_TOKEN", "ghp_test")
    deps._REGISTRY = JobRegistry(FakeOrchestrator(), deps.get_event_bus())
    with TestClient(app) as client:
        started = client.post("/github/sync/prs", json={"owner": "acme", "repo": "shop", "limit": 5})
        assert started.status_code == 202
        job_id = started.json()["jobId"]

        stream = client.get(f"/github/sync/events/{job_id}")
        assert stream.status_code == 200
        assert '"status":"completed"' in stream.text

        job = client.get(f"/github/sync/status/{job_id}").json()["job"]
        assert job["status"] == "completed"
        assert job["progress"]["processed"] == 2

        jobs = client.get("/github/sync/jobs").json()
        assert jobs["active"] == []
        assert jobs["recent"][0]["id"] == job_id


def test_repo_registry(client: TestClient) -> None:
    created = client.post("/repos", json={"owner": "acme", "name": "shop"})
    assert created.status_code == 201
    repo_id = created.json()["repo"]["id"]
    assert created.json()["repo"]["repoUrl"] == "https://github.com/acme/shop"

    assert client.delete(f"/repos/{repo_id}").status_code == 200
    assert client.get("/repos").json()["repos"] == []

    reactivated = client.post("/repos", json={"owner": "acme", "name": "shop", "description": "Storefront"})
    assert reactivated.status_code == 200
    assert reactivated.json()["repo"]["isActive"] is True

    synced = client.patch(f"/repos/{repo_id}/sync", json={"prCount": 12})
    assert synced.json()["repo"]["prCount"] == 12
    assert client.delete("/repos/missing").status_code == 404


def test_issue_submission(client: TestClient) -> None:
    resp = client.post("/issues", json={"title": "Cart total wrong", "description": "Off by one cent", "userId": "u1"})
    assert resp.status_code == 201
    issue_id = resp.json()["issueId"]

    issue = client.get(f"/issues/{issue_id}").json()["issue"]
    assert issue["issueId"] == issue_id
    assert issue["message"]

    listing = client.get("/issues", params={"userId": "u1"}).json()
    assert listing["total"] == 1
    assert client.get("/issues/stats").json()["stats"]["total"] == 1
    assert client.get("/issues/nope").status_code == 404


def _demo_project(root) -> None:
    (root / "pyproject.toml").write_text('[project]\nname = "demo"\ndependencies = ["fastapi>=0.110", "httpx"]\n')
    package = root / "demo"
    package.mkdir()
    (package / "__init__.py").write_text('"""Demo package."""\n')
    (package / "models.py").write_text("import json\n")
    (package / "views.py").write_text("from .models import Cart\nimport httpx\n")


def test_project_scan_and_context(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    root = tmp_path / "project"
    root.mkdir()
    _demo_project(root)
    monkeypatch.setenv("CC_PROJECT_ROOT", str(root))

    with TestClient(app) as client:
        assert client.get("/project/context").json()["context"] == "Project architecture context unavailable."
        scanned = client.post("/project/scan")
        assert scanned.status_code == 200
        assert scanned.json()["files"] == 3
        context = client.get("/project/context").json()["context"]

    assert "## Project Architecture Context:" in context
    assert "- Backend: fastapi, httpx" in context
    assert "- demo: Demo package" in context


def test_project_scan_ignores_root_in_request_body(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    configured = tmp_path / "configured"
    configured.mkdir()
    other = tmp_path / "other"
    other.mkdir()
    _demo_project(other)
    monkeypatch.setenv("CC_PROJECT_ROOT", str(configured))

    with TestClient(app) as client:
        scanned = client.post("/project/scan", json={"root": str(other)})
        context = client.get("/project/context").json()["context"]

    assert scanned.status_code == 200
    assert scanned.json()["files"] == 0
    assert "demo" not in context


def test_project_scan_missing_root_is_404(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CC_PROJECT_ROOT", str(tmp_path / "absent"))
    with TestClient(app) as client:
        assert client.post("/project/scan").status_code == 404


def test_project_graph_endpoints(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    _demo_project(tmp_path)
    monkeypatch.setenv("CC_PROJECT_ROOT", str(tmp_path))

    with TestClient(app) as client:
        client.post("/project/scan")
        related = client.get("/project/graph/related", params={"file": "demo/views.py"}).json()
        dependents = client.get("/project/graph/dependents", params={"file": "demo/models.py"}).json()
        missing = client.get("/project/graph/related")

    assert related["related"] == ["demo.models", "demo.models.Cart", "httpx"]
    assert dependents["dependents"] == ["demo/views.py"]
    assert missing.status_code == 422


def test_analysis_rate_limit_returns_429(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CC_RATE_LIMIT_ANALYSIS", "2")
    with TestClient(app) as client:
        body = {"inputText": "", "inputType": "poem"}
        statuses = [client.post("/analyze", json=body).status_code for _ in range(2)]
        blocked = client.post("/analyze", json=body)
        stats = client.get("/stats")
        health = client.get("/health")

    assert statuses == [422, 422]
    assert blocked.status_code == 429
    assert blocked.json() == {"success": False, "error": "Too many analysis requests, please try again later."}
    assert int(blocked.headers["Retry-After"]) >= 1
    assert health.status_code == 200
    assert stats.status_code == 200


def test_request_id_is_echoed_or_generated(client: TestClient) -> None:
    echoed = client.get("/health", headers={"X-Request-ID": "req-123"})
    generated = client.get("/health")

    assert echoed.headers["X-Request-ID"] == "req-123"
    assert len(generated.headers["X-Request-ID"]) == 36


def test_metrics_endpoint(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert b"cc_requests_total" in resp.content
