"""CLI entrypoint for Code Companion."""

from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Optional

import requests
import typer

app = typer.Typer(name="cc", help="Code Companion command-line interface")

DEFAULT_HOST = "http://127.0.0.1:3001"
TERMINAL_STATUSES = {"completed", "failed"}


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip('/')
    env_host = os.environ.get("CC_HOST")
    if env_host:
        return env_host.rstrip('/')
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    resp = requests.request(method, url, timeout=120, **kwargs)
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _echo_json(payload: object) -> None:
    typer.echo(json.dumps(payload, indent=2))


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address (defaults to config)"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port (defaults to config)"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Run the API server."""
    import uvicorn

    from code_companion.core.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "code_companion.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        timeout_graceful_shutdown=settings.shutdown_timeout,
    )


@app.command()
def analyze(
    text: str = typer.Argument(..., help="Bug description, log excerpt or stack trace"),
    input_type: str = typer.Option("description", "--type", help="description, log or stacktrace"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Analyze a bug against the ingested history."""
    resp = _request("POST", "/analyze", host=host, json={"inputText": text, "inputType": input_type})
    _echo_json(resp.json()["analysis"])


@app.command()
def sync(
    owner: str = typer.Argument(..., help="Repository owner"),
    repo: str = typer.Argument(..., help="Repository name"),
    limit: int = typer.Option(0, "--limit", min=0, help="Max PRs to inspect; 0 syncs everything"),
    wait: bool = typer.Option(False, "--wait", help="Poll until the job finishes"),
    interval: float = typer.Option(2.0, "--interval", help="Polling interval in seconds"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Start a background PR sync."""
    resp = _request("POST", "/github/sync/prs", host=host, json={"owner": owner, "repo": repo, "limit": limit})
    payload = resp.json()
    job_id = payload["jobId"]
    if not wait:
        _echo_json(payload)
        return
    typer.echo(f"Sync job {job_id} started", err=True)
    while True:
        job = _request("GET", f"/github/sync/status/{job_id}", host=host).json()["job"]
        progress = job["progress"]
        typer.echo(
            f"{job['status']}: {progress['processed']} new, {progress['updated']} updated, {progress['skipped']} skipped",
            err=True,
        )
        if job["status"] in TERMINAL_STATUSES:
            _echo_json(job)
            if job["status"] == "failed":
                raise typer.Exit(code=1)
            return
        time.sleep(interval)


@app.command()
def status(
    job_id: str = typer.Argument(..., help="Sync job identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show a sync job."""
    resp = _request("GET", f"/github/sync/status/{job_id}", host=host)
    _echo_json(resp.json()["job"])


@app.command()
def jobs(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """List active and recent sync jobs."""
    resp = _request("GET", "/github/sync/jobs", host=host)
    _echo_json(resp.json())


@app.command()
def ingest(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file with one item or a list"),
    kind: str = typer.Option("pr", "--type", help="pr, commit, ticket, bulk_prs or bulk_commits"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Manually ingest PRs, commits or tickets from a JSON file."""
    data = json.loads(path.expanduser().read_text(encoding="utf-8"))
    if isinstance(data, list) and kind == "pr":
        kind = "bulk_prs"
    elif isinstance(data, list) and kind == "commit":
        kind = "bulk_commits"
    resp = _request("POST", "/github/ingest", host=host, json={"type": kind, "data": data})
    _echo_json(resp.json())


if __name__ == "__main__":
    app()
