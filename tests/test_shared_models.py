"""
Unit tests for shared models module.
"""

from datetime import datetime, timezone, timedelta

import pytest
from pydantic import ValidationError

from shared.models import (
    BlogPostCreate,
    BlogPostUpdate,
    BotConfigData,
    CommitCreate,
    ModelValidator,
    PostStatus,
    RepositoryCreate,
    SyncResult,
    TimeRange,
    ensure_utc,
    normalize_commit_ids,
)


class TestHelpers:
    def test_ensure_utc_naive(self):
        value = ensure_utc(datetime(2024, 1, 1, 12, 0))
        assert value.tzinfo == timezone.utc
        assert value.hour == 12

    def test_ensure_utc_converts_offset(self):
        value = ensure_utc(datetime(2024, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2))))
        assert value == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)

    def test_ensure_utc_none(self):
        assert ensure_utc(None) is None

    def test_normalize_commit_ids_accepts_objects(self):
        assert normalize_commit_ids([1, "2", {"id": 3}]) == [1, 2, 3]

    @pytest.mark.parametrize("value", [[True], [{"name": "x"}], ["abc"], "1,2"])
    def test_normalize_commit_ids_rejects(self, value):
        with pytest.raises(ValueError):
            normalize_commit_ids(value)


class TestRepositoryModels:
    def test_repository_create_strips_names(self):
        repo = RepositoryCreate(owner=" acme ", name="widgets.js")
        assert (repo.owner, repo.name) == ("acme", "widgets.js")

    def test_repository_create_rejects_bad_names(self):
        with pytest.raises(ValidationError):
            RepositoryCreate(owner="acme", name="wid gets")

    def test_camel_case_input(self):
        repo = RepositoryCreate.model_validate({"owner": "acme", "name": "w", "isActive": False})
        assert repo.is_active is False


class TestCommitModels:
    def test_commit_defaults(self):
        commit = CommitCreate(sha="abc", author="Alice", date=datetime(2024, 1, 1))
        assert commit.additions == 0
        assert commit.deletions == 0
        assert commit.files_changed == 0
        assert commit.date.tzinfo == timezone.utc

    def test_negative_counts_rejected(self):
        with pytest.raises(ValidationError):
            CommitCreate(sha="abc", author="Alice", date=datetime(2024, 1, 1), additions=-1)


class TestBlogPostModels:
    def test_cannot_create_published(self):
        with pytest.raises(ValidationError):
            BlogPostCreate(title="t", content="c", status=PostStatus.PUBLISHED)

    def test_cannot_update_to_published(self):
        with pytest.raises(ValidationError):
            BlogPostUpdate(status="published")

    def test_tags_cleaned(self):
        post = BlogPostCreate(title="t", content="c", tags=[" devlog ", "", "hive"])
        assert post.tags == ["devlog", "hive"]

    def test_commits_included_alias(self):
        post = BlogPostCreate.model_validate(
            {"title": "t", "content": "c", "commitsIncluded": [{"id": 4}]}
        )
        assert post.commits_included == [4]


class TestResponseShapes:
    def test_sync_result_omits_errors_when_empty(self):
        result = SyncResult(new_commits=2, repositories_processed=1)
        assert result.to_response() == {
            "success": True,
            "newCommits": 2,
            "repositoriesProcessed": 1,
        }

    def test_sync_result_errors_listed(self):
        result = SyncResult(errors=["acme/widgets: boom"])
        assert result.to_response()["errors"] == ["acme/widgets: boom"]

    def test_time_range_aliases(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        end = datetime(2024, 1, 8, tzinfo=timezone.utc)
        dumped = TimeRange(start=start, end=end).model_dump(by_alias=True)
        assert dumped == {"from": start, "to": end}

    def test_bot_config_defaults(self):
        config = BotConfigData()
        assert config.sync_interval == 6
        assert config.ai_model == "gpt-4o"
        assert "lastSyncTime" in config.model_dump(by_alias=True)


class TestModelValidator:
    def test_validate_commit_data(self):
        errors = ModelValidator.validate_commit_data({"sha": "a", "author": "b", "additions": -1})
        assert "Missing required field: date" in errors
        assert "additions must be a non-negative integer" in errors

    def test_validate_repository_data(self):
        assert ModelValidator.validate_repository_data({"owner": "acme", "name": "widgets"}) == []
        assert ModelValidator.validate_repository_data({"owner": "a b", "name": ""}) == [
            "Invalid characters in owner",
            "Missing required field: name",
        ]

    def test_validate_blog_post_data(self):
        errors = ModelValidator.validate_blog_post_data({"title": "t", "status": "bogus"})
        assert errors == ["Missing required field: content", "Invalid status: bogus"]
