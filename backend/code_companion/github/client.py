"""Async GitHub REST client used by sync, webhooks and issue matching."""

from __future__ import annotations

import re
from typing import Any

import httpx

from code_companion.core.errors import ConfigurationError, GitHubAPIError
from code_companion.core.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "code-companion-api"

_GITHUB_URL_RE = re.compile(r"github\.com[/:]([\w-]+)/([\w.-]+)", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")

STOP_WORDS = frozenset(
    """
    the a an is are was were be been being have has had do does did will would could
    should may might must shall can need dare ought used to of in for on with at by
    from as into through during before after above below between under again further
    then once here there when where why how all each few more most other some such no
    nor not only own same so than too very just and but if or because until while this
    that these those it i me my we our you your he him his she her they them their what
    which who whom
    """.split()
)


def parse_github_url(url: str) -> tuple[str, str] | None:
    """Extract ``(owner, repo)`` from an https or ssh GitHub URL."""
    match = _GITHUB_URL_RE.search(url)
    if not match:
        return None
    repo = match.group(2)
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return match.group(1), repo


def extract_keywords(text: str, limit: int = 10) -> list[str]:
    """Unique lower-case words longer than two characters, stop words removed."""
    words = _NON_ALNUM_RE.sub(" ", text.lower()).split()
    keywords: list[str] = []
    for word in words:
        if len(word) > 2 and word not in STOP_WORDS and word not in keywords:
            keywords.append(word)
            if len(keywords) >= limit:
                break
    return keywords


class GitHubClient:
    """Bearer-token client for the handful of REST endpoints the service needs."""

    def __init__(
        self,
        token: str | None,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _http(self) -> httpx.AsyncClient:
        if not self.token:
            raise ConfigurationError("GitHub token not configured. Set CC_GITHUB_TOKEN to enable GitHub access.")
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                timeout=self.timeout,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Accept": "application/vnd.github.v3+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                    "User-Agent": USER_AGENT,
                },
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        client = self._http()
        try:
            response = await client.get(endpoint, params=params, headers=headers)
        except httpx.HTTPError as exc:
            raise GitHubAPIError(f"GitHub request failed: {exc}") from exc
        if response.status_code == 404:
            raise GitHubAPIError(f"Resource not found: {endpoint}", status_code=404)
        if response.status_code == 401:
            raise GitHubAPIError("Authentication failed. Check the GitHub token.", status_code=401)
        if response.status_code == 403:
            remaining = response.headers.get("X-RateLimit-Remaining", "unknown")
            logger.warning("403 from GitHub for %s (rate limit remaining=%s)", endpoint, remaining)
            raise GitHubAPIError(f"Access forbidden. Rate limit remaining: {remaining}", status_code=403)
        if response.status_code >= 400:
            raise GitHubAPIError(
                f"GitHub API error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response

    async def list_pull_requests(
        self,
        owner: str,
        repo: str,
        state: str = "all",
        per_page: int = 100,
        page: int = 1,
    ) -> list[dict[str, Any]]:
        response = await self._request(
            f"/repos/{owner}/{repo}/pulls",
            params={"state": state, "per_page": per_page, "page": page},
        )
        prs = response.json()
        logger.info("Fetched %s PRs from %s/%s (page %s)", len(prs), owner, repo, page)
        return prs

    async def get_pull_request(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        response = await self._request(f"/repos/{owner}/{repo}/pulls/{number}")
        return response.json()

    async def list_pull_request_files(self, owner: str, repo: str, number: int) -> list[dict[str, Any]]:
        response = await self._request(f"/repos/{owner}/{repo}/pulls/{number}/files", params={"per_page": 100})
        return [
            {
                "filename": item["filename"],
                "additions": item.get("additions", 0),
                "deletions": item.get("deletions", 0),
                "status": item.get("status", "modified"),
                "patch": item.get("patch"),
            }
            for item in response.json()
        ]

    async def get_pull_request_diff(self, owner: str, repo: str, number: int) -> str:
        response = await self._request(
            f"/repos/{owner}/{repo}/pulls/{number}",
            headers={"Accept": "application/vnd.github.v3.diff"},
        )
        return response.text

    async def search_pull_requests(self, owner: str, repo: str, keywords: list[str]) -> list[dict[str, Any]]:
        """Keyword search over the repository's PRs; returns full details for the top 10 hits."""
        if not keywords:
            return []
        query = f"{' '.join(keywords[:5])} repo:{owner}/{repo} type:pr"
        logger.info("Searching PRs with keywords: %s", " ".join(keywords[:5]))
        response = await self._request("/search/issues", params={"q": query, "per_page": 20})
        items = response.json().get("items") or []
        details: list[dict[str, Any]] = []
        for item in items[:10]:
            try:
                details.append(await self.get_pull_request(owner, repo, item["number"]))
            except GitHubAPIError as exc:
                logger.warning("Could not fetch PR #%s: %s", item.get("number"), exc)
        return details


__all__ = ["GitHubClient", "STOP_WORDS", "extract_keywords", "parse_github_url"]
