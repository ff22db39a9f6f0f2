"""
Shared fixtures for the devlog bot test suite.

Every test gets its own SQLite database under ``tmp_path``; GitHub, OpenAI
and Hive are replaced by in-memory fakes.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from config.settings import (
    DatabaseSettings,
    FileSettings,
    GitHubSettings,
    HiveSettings,
    OpenAISettings,
    RedisSettings,
    Settings,
)
from services.commit_sync.github_client import FetchedCommit, HistoryFetcher
from services.devlog_writer.summary_generator import SummaryGenerator
from services.hive_publisher.publisher import Publisher
from shared.database import init_database
from shared.errors import FetchError
from shared.models import PostDraft, PublishResult, SummaryResult


NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeHistoryFetcher(HistoryFetcher):
    """In-memory history provider keyed by ``owner/name``."""

    def __init__(self, commits: Optional[Dict[str, List[FetchedCommit]]] = None):
        self.commits = commits or {}
        self.failing_details = set()
        self.failing_repositories = set()
        self.missing_repositories = set()
        self.list_calls: List[Tuple[str, datetime]] = []
        self.detail_calls: List[str] = []
        self.closed = 0
        self.ignore_since = False

    def add(self, full_name: str, sha: str, date: datetime, **kwargs) -> FetchedCommit:
        commit = FetchedCommit(
            sha=sha,
            message=kwargs.pop("message", f"commit {sha}"),
            author_name=kwargs.pop("author_name", "Alice"),
            author_date=date,
            **kwargs,
        )
        self.commits.setdefault(full_name, []).append(commit)
        return commit

    async def list_commits_since(self, owner: str, name: str, since: datetime) -> List[FetchedCommit]:
        full_name = f"{owner}/{name}"
        self.list_calls.append((full_name, since))
        if full_name in self.failing_repositories:
            raise FetchError(f"GitHub API error 500 listing commits for {full_name}", status_code=500)
        commits = self.commits.get(full_name, [])
        if self.ignore_since:
            return list(commits)
        return [c for c in commits if c.author_date >= since]

    async def get_commit_detail(self, owner: str, name: str, sha: str) -> FetchedCommit:
        self.detail_calls.append(sha)
        if sha in self.failing_details:
            raise FetchError(f"GitHub API error 502 fetching commit {sha[:7]}", status_code=502)
        for commit in self.commits.get(f"{owner}/{name}", []):
            if commit.sha == sha:
                return commit.model_copy(update={"additions": 10, "deletions": 2, "changed_files": 1})
        raise FetchError(f"GitHub API error 404 fetching commit {sha[:7]}", status_code=404)

    async def repository_exists(self, owner: str, name: str) -> bool:
        return f"{owner}/{name}" not in self.missing_repositories

    async def close(self) -> None:
        self.closed += 1


class FakeSummaryGenerator(SummaryGenerator):
    def __init__(self, result: Optional[SummaryResult] = None):
        self.result = result or SummaryResult(
            title="Weekly Update",
            content="## acme/widgets\n- Shipped things",
            summary="Things shipped.",
            tags=["devlog", "widgets"],
            tokens_used=321,
        )
        self.calls = []

    async def generate(self, commits_by_repository, time_range) -> SummaryResult:
        self.calls.append((commits_by_repository, time_range))
        return self.result

    async def enhance(self, content: str, instructions: str) -> str:
        return f"{content}\n\n({instructions})"


class FakePublisher(Publisher):
    def __init__(self, result: Optional[PublishResult] = None):
        self.result = result or PublishResult(
            success=True,
            post_id="abc123trx",
            url="https://hive.blog/@devbot/weekly-update-1705320000000",
            permlink="weekly-update-1705320000000",
        )
        self.drafts: List[PostDraft] = []

    async def publish(self, draft: PostDraft) -> PublishResult:
        self.drafts.append(draft)
        return self.result


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every file at ``tmp_path``; no integration credentials."""
    return Settings(
        environment="testing",
        database=DatabaseSettings(url=f"sqlite+aiosqlite:///{tmp_path / 'devlog.db'}"),
        redis=RedisSettings(url=None),
        github=GitHubSettings(token=None),
        openai=OpenAISettings(api_key=None),
        hive=HiveSettings(username="devbot", posting_key=None),
        file=FileSettings(
            config_path=str(tmp_path / "config.json"),
            repositories_path=str(tmp_path / "repos.json"),
        ),
    )


@pytest.fixture
async def db_and_store(settings):
    db, store = await init_database(settings.database)
    yield db, store
    await db.close()


@pytest.fixture
def store(db_and_store):
    return db_and_store[1]


@pytest.fixture
def fetcher():
    return FakeHistoryFetcher()


@pytest.fixture
def recent(now):
    """Timestamps inside the default lookback window."""
    return lambda hours: now - timedelta(hours=hours)
