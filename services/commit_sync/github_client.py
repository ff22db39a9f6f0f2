"""
GitHub history fetcher.

Payloads from the GitHub REST API are validated into typed models right after
each call; nothing downstream sees raw JSON. List entries that do not match
the expected shape are skipped with a warning, while a malformed detail
payload is a ``FetchError``.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from config.settings import GitHubSettings
from shared.errors import FetchError, SetupError
from shared.models import CommitCreate, ensure_utc

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class FetchedCommit(BaseModel):
    """A commit as reported by the history provider."""

    sha: str
    message: str = ""
    author_name: str = "Unknown"
    author_email: Optional[str] = None
    author_date: datetime
    url: Optional[str] = None
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0

    def to_commit_create(self, repository_id: Optional[int]) -> CommitCreate:
        """Convert to the storage shape."""
        return CommitCreate(
            repository_id=repository_id,
            sha=self.sha,
            message=self.message,
            author=self.author_name,
            author_email=self.author_email,
            date=self.author_date,
            additions=self.additions,
            deletions=self.deletions,
            files_changed=self.changed_files,
            url=self.url,
        )


class HistoryFetcher(ABC):
    """Source of commit history for one repository at a time."""

    @abstractmethod
    async def list_commits_since(self, owner: str, name: str, since: datetime) -> List[FetchedCommit]:
        """Commits newer than ``since``, without diff statistics."""

    @abstractmethod
    async def get_commit_detail(self, owner: str, name: str, sha: str) -> FetchedCommit:
        """One commit including additions, deletions and changed files."""

    @abstractmethod
    async def repository_exists(self, owner: str, name: str) -> bool:
        """Whether the repository can be read with the configured credentials."""

    async def close(self) -> None:
        return None


# GitHub payload models
class _GitActor(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    date: Optional[datetime] = None


class _GitCommit(BaseModel):
    message: str = ""
    author: Optional[_GitActor] = None
    committer: Optional[_GitActor] = None


class _CommitStats(BaseModel):
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)


class GitHubCommitPayload(BaseModel):
    """Shape shared by the commit list and commit detail endpoints."""

    model_config = ConfigDict(extra="ignore")

    sha: str = Field(..., min_length=1)
    html_url: Optional[str] = None
    commit: _GitCommit
    stats: Optional[_CommitStats] = None
    files: Optional[List[Dict[str, Any]]] = None

    def to_fetched(self) -> FetchedCommit:
        author = self.commit.author or _GitActor()
        committer = self.commit.committer or _GitActor()
        date = author.date or committer.date
        if date is None:
            raise ValueError(f"commit {self.sha} has no author date")

        stats = self.stats or _CommitStats()
        return FetchedCommit(
            sha=self.sha,
            message=self.commit.message,
            author_name=author.name or committer.name or "Unknown",
            author_email=author.email,
            author_date=ensure_utc(date),
            url=self.html_url,
            additions=stats.additions,
            deletions=stats.deletions,
            changed_files=len(self.files or []),
        )


def _format_since(since: datetime) -> str:
    return ensure_utc(since).strftime("%Y-%m-%dT%H:%M:%SZ")


class GitHubClient(HistoryFetcher):
    """GitHub REST API client with bounded retries."""

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.github.com",
        per_page: int = 100,
        max_pages: int = 10,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_backoff: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.per_page = per_page
        self.max_pages = max_pages
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.client = httpx.AsyncClient(
            base_url=api_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "devlog-bot/1.0.0",
            },
        )

    @classmethod
    def from_settings(cls, settings: GitHubSettings, **kwargs) -> "GitHubClient":
        if settings.token is None or not settings.token.get_secret_value().strip():
            raise SetupError("GitHub token not configured (set GITHUB_TOKEN)")
        return cls(
            token=settings.token.get_secret_value(),
            api_url=settings.api_url,
            per_page=settings.per_page,
            max_pages=settings.max_pages,
            timeout=settings.timeout,
            retry_attempts=settings.retry_attempts,
            retry_backoff=settings.retry_backoff,
            **kwargs,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    def _retry_delay(self, response: Optional[httpx.Response], attempt: int) -> float:
        if response is not None:
            retry_after = response.headers.get("retry-after")
            if retry_after:
                try:
                    return float(retry_after)
                except ValueError:
                    pass
        return self.retry_backoff * (2 ** attempt)

    async def _request(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """GET with retries on transport errors, rate limits and 5xx responses."""
        last_error = None
        for attempt in range(self.retry_attempts):
            response = None
            try:
                response = await self.client.get(url, params=params)
                if response.status_code not in RETRYABLE_STATUS:
                    return response
                last_error = f"HTTP {response.status_code}"
            except httpx.RequestError as e:
                last_error = f"{type(e).__name__}: {e}"

            if attempt < self.retry_attempts - 1:
                delay = self._retry_delay(response, attempt)
                logger.warning(f"GitHub request {url} failed ({last_error}), retrying in {delay:.1f}s")
                await asyncio.sleep(delay)

        status_code = response.status_code if response is not None else None
        raise FetchError(
            f"GitHub request failed after {self.retry_attempts} attempts: {last_error}",
            status_code=status_code,
        )

    @staticmethod
    def _error_for(response: httpx.Response, action: str) -> FetchError:
        try:
            detail = response.json().get("message", "")
        except (ValueError, AttributeError):
            detail = response.text[:200]
        return FetchError(
            f"GitHub API error {response.status_code} {action}: {detail}".rstrip(": "),
            status_code=response.status_code,
        )

    async def list_commits_since(self, owner: str, name: str, since: datetime) -> List[FetchedCommit]:
        url: Optional[str] = f"/repos/{owner}/{name}/commits"
        params: Optional[Dict[str, Any]] = {"since": _format_since(since), "per_page": self.per_page}
        commits: List[FetchedCommit] = []
        pages = 0

        while url and pages < self.max_pages:
            response = await self._request(url, params=params)
            if response.status_code != 200:
                raise self._error_for(response, f"listing commits for {owner}/{name}")

            try:
                body = response.json()
            except ValueError:
                raise FetchError(f"GitHub returned invalid JSON for {owner}/{name} commits")
            if not isinstance(body, list):
                raise FetchError(f"Unexpected commit list payload for {owner}/{name}")

            for item in body:
                try:
                    commits.append(GitHubCommitPayload.model_validate(item).to_fetched())
                except (ValidationError, ValueError) as e:
                    logger.warning(f"Skipping malformed commit entry in {owner}/{name}: {e}")

            pages += 1
            url = response.links.get("next", {}).get("url")
            params = None

        if url:
            logger.warning(f"Stopped listing {owner}/{name} after {self.max_pages} pages")
        logger.info(f"Fetched {len(commits)} commits for {owner}/{name} since {_format_since(since)}")
        return commits

    async def get_commit_detail(self, owner: str, name: str, sha: str) -> FetchedCommit:
        response = await self._request(f"/repos/{owner}/{name}/commits/{sha}")
        if response.status_code != 200:
            raise self._error_for(response, f"fetching commit {sha[:7]} of {owner}/{name}")

        try:
            return GitHubCommitPayload.model_validate(response.json()).to_fetched()
        except (ValidationError, ValueError) as e:
            raise FetchError(f"Malformed commit detail for {sha[:7]} of {owner}/{name}: {e}")

    async def repository_exists(self, owner: str, name: str) -> bool:
        response = await self._request(f"/repos/{owner}/{name}")
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        raise self._error_for(response, f"checking {owner}/{name}")


def build_github_client(settings: GitHubSettings) -> GitHubClient:
    """Factory used by the app; raises ``SetupError`` without a token."""
    return GitHubClient.from_settings(settings)


__all__ = [
    "FetchedCommit",
    "HistoryFetcher",
    "GitHubCommitPayload",
    "GitHubClient",
    "build_github_client",
]
