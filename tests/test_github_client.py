"""
Unit tests for the GitHub history client.

Uses ``httpx.MockTransport`` so no request leaves the process.
"""

from datetime import datetime, timezone

import httpx
import pytest

from config.settings import GitHubSettings
from services.commit_sync.github_client import GitHubClient, GitHubCommitPayload, build_github_client
from shared.errors import FetchError, SetupError

SINCE = datetime(2024, 1, 8, tzinfo=timezone.utc)


def commit_payload(sha, date="2024-01-10T10:00:00Z", **extra):
    payload = {
        "sha": sha,
        "html_url": f"https://github.com/acme/widgets/commit/{sha}",
        "commit": {
            "message": f"Fix {sha}",
            "author": {"name": "Alice", "email": "alice@example.com", "date": date},
            "committer": {"name": "GitHub", "date": date},
        },
    }
    payload.update(extra)
    return payload


def make_client(handler, **kwargs):
    kwargs.setdefault("retry_backoff", 0)
    return GitHubClient("token", transport=httpx.MockTransport(handler), **kwargs)


class TestGitHubCommitPayload:
    def test_to_fetched(self):
        fetched = GitHubCommitPayload.model_validate(commit_payload(
            "abc",
            stats={"additions": 5, "deletions": 2, "total": 7},
            files=[{"filename": "a.py"}, {"filename": "b.py"}],
        )).to_fetched()

        assert fetched.sha == "abc"
        assert fetched.author_name == "Alice"
        assert fetched.author_date == datetime(2024, 1, 10, 10, 0, tzinfo=timezone.utc)
        assert (fetched.additions, fetched.deletions, fetched.changed_files) == (5, 2, 2)

    def test_missing_date_rejected(self):
        payload = commit_payload("abc")
        payload["commit"]["author"]["date"] = None
        payload["commit"]["committer"]["date"] = None

        with pytest.raises(ValueError):
            GitHubCommitPayload.model_validate(payload).to_fetched()


class TestGitHubClient:
    """Test cases for GitHubClient."""

    def test_from_settings_requires_token(self):
        with pytest.raises(SetupError):
            build_github_client(GitHubSettings(token=None))

    async def test_list_commits_paginates(self):
        seen = []

        def handler(request: httpx.Request):
            seen.append(request)
            if request.url.params.get("page") == "2":
                return httpx.Response(200, json=[commit_payload("bbb")])
            return httpx.Response(
                200,
                json=[commit_payload("aaa")],
                headers={"Link": '<https://api.github.com/repos/acme/widgets/commits?page=2>; rel="next"'},
            )

        async with make_client(handler) as client:
            commits = await client.list_commits_since("acme", "widgets", SINCE)

        assert [c.sha for c in commits] == ["aaa", "bbb"]
        assert seen[0].url.params["since"] == "2024-01-08T00:00:00Z"
        assert seen[0].headers["Authorization"] == "Bearer token"

    async def test_list_commits_stops_at_max_pages(self):
        def handler(request):
            return httpx.Response(
                200,
                json=[commit_payload("aaa")],
                headers={"Link": '<https://api.github.com/repos/acme/widgets/commits?page=9>; rel="next"'},
            )

        async with make_client(handler, max_pages=2) as client:
            commits = await client.list_commits_since("acme", "widgets", SINCE)

        assert len(commits) == 2

    async def test_list_commits_skips_malformed_entries(self):
        def handler(request):
            return httpx.Response(200, json=[{"sha": "bad"}, commit_payload("good")])

        async with make_client(handler) as client:
            commits = await client.list_commits_since("acme", "widgets", SINCE)

        assert [c.sha for c in commits] == ["good"]

    async def test_list_commits_error_status(self):
        def handler(request):
            return httpx.Response(401, json={"message": "Bad credentials"})

        async with make_client(handler) as client:
            with pytest.raises(FetchError) as exc_info:
                await client.list_commits_since("acme", "widgets", SINCE)

        assert exc_info.value.status_code == 401
        assert "Bad credentials" in str(exc_info.value)

    async def test_retries_server_errors(self):
        responses = iter([httpx.Response(502), httpx.Response(200, json=commit_payload("abc"))])

        async with make_client(lambda request: next(responses)) as client:
            commit = await client.get_commit_detail("acme", "widgets", "abc")

        assert commit.sha == "abc"

    async def test_gives_up_after_retry_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        async with make_client(handler, retry_attempts=3) as client:
            with pytest.raises(FetchError) as exc_info:
                await client.get_commit_detail("acme", "widgets", "abc")

        assert len(calls) == 3
        assert exc_info.value.status_code == 503

    async def test_transport_errors_become_fetch_errors(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with make_client(handler, retry_attempts=2) as client:
            with pytest.raises(FetchError, match="ConnectError"):
                await client.get_commit_detail("acme", "widgets", "abc")

    async def test_malformed_detail(self):
        async with make_client(lambda request: httpx.Response(200, json={"sha": "abc"})) as client:
            with pytest.raises(FetchError, match="Malformed"):
                await client.get_commit_detail("acme", "widgets", "abc")

    async def test_repository_exists(self):
        def handler(request):
            if request.url.path == "/repos/acme/widgets":
                return httpx.Response(200, json={"full_name": "acme/widgets"})
            if request.url.path == "/repos/acme/missing":
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(403, json={"message": "Forbidden"})

        async with make_client(handler) as client:
            assert await client.repository_exists("acme", "widgets") is True
            assert await client.repository_exists("acme", "missing") is False
            with pytest.raises(FetchError):
                await client.repository_exists("acme", "secret")
