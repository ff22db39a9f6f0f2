"""
Unit tests for shared database module.

Runs the store against a temporary SQLite database.
"""

import asyncio
from datetime import timedelta

import pytest

from config.settings import DatabaseSettings
from shared.database import CommitStore, DatabaseManager
from shared.models import (
    BlogPostCreate,
    BlogPostUpdate,
    CommitCreate,
    PostStatus,
    RepositoryConfig,
    RepositoryCreate,
)


def commit_data(repository_id, sha, date, **kwargs):
    return CommitCreate(
        repository_id=repository_id,
        sha=sha,
        message=kwargs.pop("message", f"commit {sha}"),
        author=kwargs.pop("author", "Alice"),
        date=date,
        **kwargs,
    )


class TestDatabaseManager:
    """Test cases for DatabaseManager."""

    async def test_health_check_healthy(self, db_and_store):
        db, _ = db_and_store
        health = await db.health_check()

        assert health["status"] == "healthy"
        assert health["backend"] == "sqlite"

    async def test_creates_sqlite_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "devlog.db"
        db = DatabaseManager(DatabaseSettings(url=f"sqlite:///{path}"))

        await db.create_tables()
        try:
            assert path.parent.is_dir()
        finally:
            await db.close()

    async def test_session_rolls_back_on_error(self, db_and_store):
        db, store = db_and_store

        with pytest.raises(RuntimeError):
            async with db.get_async_session() as session:
                session.add(store.repositories.model_class(owner="acme", name="widgets"))
                await session.flush()
                raise RuntimeError("boom")

        assert await store.get_repositories() == []


class TestRepositories:
    """Repository operations of the store."""

    async def test_create_and_lookup(self, store):
        repo = await store.create_repository(
            RepositoryCreate(owner="acme", name="widgets", description="Widgets")
        )

        assert repo.id is not None
        assert repo.full_name == "acme/widgets"
        assert repo.last_sync_time is None
        assert (await store.get_repository_by_name("ACME", "Widgets")).id == repo.id

    async def test_create_from_dict_validates(self, store):
        with pytest.raises(ValueError):
            await store.create_repository({"owner": "", "name": "widgets"})

    async def test_update_missing_returns_none(self, store):
        assert await store.update_repository(999, {"is_active": False}) is None

    async def test_active_filter(self, store):
        await store.create_repository(RepositoryCreate(owner="acme", name="one"))
        await store.create_repository(RepositoryCreate(owner="acme", name="two", is_active=False))

        active = await store.get_active_repositories()

        assert [r.name for r in active] == ["one"]

    async def test_delete_detaches_commits(self, store, now):
        repo = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))
        commit = await store.create_commit(commit_data(repo.id, "aaa", now))

        assert await store.delete_repository(repo.id) is True
        assert await store.delete_repository(repo.id) is False

        orphan = await store.get_commit_by_sha("aaa")
        assert orphan.id == commit.id
        assert orphan.repository_id is None

    async def test_set_repositories_upserts(self, store, now):
        repo = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))
        await store.update_repository(repo.id, {"last_sync_time": now})

        result = await store.set_repositories([
            RepositoryConfig(owner="acme", name="widgets", is_active=False),
            RepositoryConfig(owner="acme", name="gadgets", description="New"),
        ])

        assert [(r.name, r.is_active) for r in result] == [("widgets", False), ("gadgets", True)]
        assert result[0].last_sync_time == now


class TestCommits:
    """Commit operations of the store."""

    async def test_dedup_gate(self, store, now):
        repo = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))
        assert await store.get_commit_by_sha("aaa") is None

        created = await store.create_commit(commit_data(repo.id, "aaa", now, additions=3))

        found = await store.get_commit_by_sha("aaa")
        assert found.id == created.id
        assert found.additions == 3
        assert found.processed is False

    async def test_create_commit_from_dict_rejects_missing_fields(self, store):
        with pytest.raises(ValueError, match="sha"):
            await store.create_commit({"author": "Alice", "date": "2024-01-01T00:00:00Z"})

    async def test_commits_since_boundary_and_filter(self, store, now):
        widgets = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))
        gadgets = await store.create_repository(RepositoryCreate(owner="acme", name="gadgets"))
        since = now - timedelta(days=7)
        await store.create_commit(commit_data(widgets.id, "edge", since))
        await store.create_commit(commit_data(widgets.id, "before", since - timedelta(seconds=1)))
        await store.create_commit(commit_data(widgets.id, "later", now))
        await store.create_commit(commit_data(gadgets.id, "other", now - timedelta(hours=1)))

        everything = await store.get_commits_since(since)
        only_widgets = await store.get_commits_since(since, repository_id=widgets.id)

        assert [c.sha for c in everything] == ["later", "other", "edge"]
        assert [c.sha for c in only_widgets] == ["later", "edge"]

    async def test_commits_since_with_repo_skips_orphans(self, store, now):
        repo = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))
        await store.create_commit(commit_data(repo.id, "new", now - timedelta(days=1)))
        await store.create_commit(commit_data(repo.id, "old", now - timedelta(days=30)))
        await store.create_commit(commit_data(None, "orphan", now - timedelta(hours=1)))

        pairs = await store.get_commits_since_with_repo(now - timedelta(days=7))

        assert [(c.sha, r.full_name) for c, r in pairs] == [("new", "acme/widgets")]

    async def test_recent_commits_with_repo(self, store, now):
        repo = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))
        for i in range(3):
            await store.create_commit(commit_data(repo.id, f"sha{i}", now - timedelta(hours=i)))

        recent = await store.get_recent_commits_with_repo(limit=2)

        assert [c.sha for c in recent] == ["sha0", "sha1"]
        assert recent[0].repository.full_name == "acme/widgets"

    async def test_mark_processed_exact_ids(self, store, now):
        repo = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))
        commits = [
            await store.create_commit(commit_data(repo.id, f"sha{i}", now - timedelta(hours=i)))
            for i in range(5)
        ]
        target = [commits[0].id, commits[1].id, commits[2].id]

        assert await store.mark_commits_as_processed(target + [999]) == 3

        processed = {c.id: c.processed for c in await store.get_commits(repo.id)}
        assert processed == {c.id: c.id in target for c in commits}
        assert [c.sha for c in await store.get_unprocessed_commits()] == ["sha3", "sha4"]

    async def test_mark_processed_empty(self, store):
        assert await store.mark_commits_as_processed([]) == 0

    async def test_concurrent_writes_serialized(self, store, now):
        repo = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))

        await asyncio.gather(*[
            store.create_commit(commit_data(repo.id, f"sha{i}", now)) for i in range(10)
        ])

        assert len(await store.get_commits(repo.id)) == 10


class TestBlogPosts:
    """Blog post operations of the store."""

    async def test_create_and_update(self, store):
        post = await store.create_blog_post(BlogPostCreate(
            title="Weekly",
            content="Body",
            tags=["devlog"],
            commits_included=[{"id": 1}, 2],
            ai_tokens_used=100,
        ))

        assert post.status == PostStatus.DRAFT
        assert post.commits_included == [1, 2]

        updated = await store.update_blog_post(post.id, BlogPostUpdate(title="Weekly #2"))
        assert updated.title == "Weekly #2"
        assert updated.content == "Body"

    async def test_update_missing_returns_none(self, store):
        assert await store.update_blog_post(42, BlogPostUpdate(title="x")) is None

    async def test_publish_path_sets_status(self, store, now):
        post = await store.create_blog_post(BlogPostCreate(title="Weekly", content="Body"))

        updated = await store.update_blog_post(post.id, {
            "status": PostStatus.PUBLISHED,
            "published_at": now,
            "hive_post_id": "trx",
        })

        assert updated.is_published
        assert updated.published_at == now


class TestConfigAndStats:
    async def test_config_upsert(self, store):
        await store.set_config("lastSyncTime", "a")
        await store.set_config("lastSyncTime", "b")

        assert await store.get_config("lastSyncTime") == "b"
        assert await store.get_config("missing") is None
        assert await store.get_all_config() == {"lastSyncTime": "b"}

    async def test_dashboard_stats(self, store, now):
        repo = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))
        await store.create_repository(RepositoryCreate(owner="acme", name="old", is_active=False))
        await store.create_commit(commit_data(repo.id, "new", now - timedelta(days=1)))
        await store.create_commit(commit_data(repo.id, "old", now - timedelta(days=10)))
        post = await store.create_blog_post(BlogPostCreate(title="t", content="c", ai_tokens_used=50))
        await store.create_blog_post(BlogPostCreate(title="t2", content="c", ai_tokens_used=25))
        await store.update_blog_post(post.id, {"status": "published"})

        stats = await store.get_dashboard_stats(now=now)

        assert stats.model_dump(by_alias=True) == {
            "activeRepos": 1,
            "newCommits": 1,
            "postsPublished": 1,
            "aiUsage": 75,
        }

    async def test_commits_summary(self, store, now):
        repo = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))
        await store.create_commit(commit_data(repo.id, "a", now - timedelta(hours=2), additions=5, deletions=1))
        await store.create_commit(commit_data(repo.id, "b", now - timedelta(hours=1), additions=2))

        summary = await store.get_commits_summary(now - timedelta(days=1), now)

        assert summary.total_commits == 2
        assert summary.total_additions == 7
        assert summary.total_deletions == 1
        assert summary.repositories == ["acme/widgets"]
