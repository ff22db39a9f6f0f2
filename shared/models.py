"""
Data models for the devlog bot.

This module provides:
- SQLAlchemy tables backing the commit store
- Pydantic models exchanged between services and over the HTTP API
- Conversion and validation helpers between the two
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy import (
    Column, String, DateTime, JSON, Text, Integer, Boolean, ForeignKey, Index
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

Base = declarative_base()

GITHUB_NAME_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_.")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """DateTime column that stores UTC and always returns aware values."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return ensure_utc(value)

    def process_result_value(self, value, dialect):
        return ensure_utc(value)


class PostStatus(str, Enum):
    """Blog post lifecycle states."""
    DRAFT = "draft"
    PUBLISHED = "published"
    SCHEDULED = "scheduled"


# Pydantic models for services and the API
class ApiModel(BaseModel):
    """Base model serialized with camelCase keys; accepts either casing."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class RepositoryCreate(ApiModel):
    """Model for registering a repository."""

    owner: str = Field(..., min_length=1, max_length=255, description="Repository owner")
    name: str = Field(..., min_length=1, max_length=255, description="Repository name")
    description: Optional[str] = Field(None, max_length=1000, description="Description")
    is_active: bool = Field(default=True, description="Whether sync includes this repository")

    @field_validator("owner", "name")
    @classmethod
    def validate_github_name(cls, v):
        v = v.strip()
        if not v or not set(v) <= GITHUB_NAME_CHARS:
            raise ValueError("Owner and name may only contain letters, digits, '-', '_' and '.'")
        return v


class RepositoryUpdate(ApiModel):
    """Model for editing a repository."""
    description: Optional[str] = Field(None, max_length=1000)
    is_active: Optional[bool] = None


class Repository(ApiModel):
    """Stored repository with its sync checkpoint."""

    id: int
    owner: str
    name: str
    description: Optional[str] = None
    is_active: bool = True
    last_sync_time: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class CommitCreate(ApiModel):
    """Commit in storage shape, before it receives an identifier."""

    repository_id: Optional[int] = Field(None, description="Owning repository")
    sha: str = Field(..., min_length=1, max_length=64, description="VCS commit hash")
    message: str = Field(default="", description="Commit message")
    author: str = Field(..., min_length=1, max_length=255, description="Author name")
    author_email: Optional[str] = Field(None, max_length=255)
    date: datetime = Field(..., description="Authorship timestamp")
    additions: int = Field(default=0, ge=0, description="Lines added")
    deletions: int = Field(default=0, ge=0, description="Lines deleted")
    files_changed: int = Field(default=0, ge=0, description="Files changed")
    url: Optional[str] = Field(None, description="Link to the commit")

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return ensure_utc(v)


class Commit(CommitCreate):
    """Stored commit."""

    id: int
    processed: bool = False
    created_at: Optional[datetime] = None


class CommitWithRepository(Commit):
    """Commit with its repository embedded, for the dashboard feed."""
    repository: Repository


def normalize_commit_ids(value: Any) -> Optional[List[int]]:
    """Accept commit ids as integers or as objects/dicts carrying an ``id``."""
    if value is None:
        return None
    if not isinstance(value, (list, tuple)):
        raise ValueError("commitsIncluded must be a list")
    ids = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("id")
        elif not isinstance(item, (int, str)):
            item = getattr(item, "id", None)
        if isinstance(item, bool) or item is None:
            raise ValueError("Each included commit needs an integer id")
        try:
            ids.append(int(item))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid commit id: {item!r}")
    return ids


def _clean_tags(value: Optional[List[str]]) -> Optional[List[str]]:
    if value is None:
        return None
    return [tag.strip() for tag in value if isinstance(tag, str) and tag.strip()]


class BlogPostCreate(ApiModel):
    """Model for creating a post. Posts are created as draft or scheduled."""

    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)
    summary: Optional[str] = None
    tags: Optional[List[str]] = None
    status: PostStatus = PostStatus.DRAFT
    commits_included: Optional[List[int]] = None
    ai_tokens_used: int = Field(default=0, ge=0)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v == PostStatus.PUBLISHED:
            raise ValueError("Posts can only become published through the publish operation")
        return v

    @field_validator("commits_included", mode="before")
    @classmethod
    def validate_commits_included(cls, v):
        return normalize_commit_ids(v)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v):
        return _clean_tags(v)


class BlogPostUpdate(ApiModel):
    """Model for editing a draft."""

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    content: Optional[str] = Field(None, min_length=1)
    summary: Optional[str] = None
    tags: Optional[List[str]] = None
    status: Optional[PostStatus] = None
    commits_included: Optional[List[int]] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v == PostStatus.PUBLISHED:
            raise ValueError("Posts can only become published through the publish operation")
        return v

    @field_validator("commits_included", mode="before")
    @classmethod
    def validate_commits_included(cls, v):
        return normalize_commit_ids(v)

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v):
        return _clean_tags(v)


class BlogPost(ApiModel):
    """Stored post."""

    id: int
    title: str
    content: str
    summary: Optional[str] = None
    tags: Optional[List[str]] = None
    status: PostStatus = PostStatus.DRAFT
    hive_post_id: Optional[str] = None
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    commits_included: Optional[List[int]] = None
    ai_tokens_used: int = 0

    @property
    def is_published(self) -> bool:
        return self.status == PostStatus.PUBLISHED


class BotConfigEntry(ApiModel):
    """Key/value configuration entry."""
    key: str
    value: str
    updated_at: Optional[datetime] = None


class TimeRange(ApiModel):
    """Closed time window, serialized as ``{from, to}``."""

    start: datetime = Field(..., alias="from")
    end: datetime = Field(..., alias="to")


class SyncResult(ApiModel):
    """Aggregate outcome of one sync invocation."""

    success: bool = True
    new_commits: int = 0
    repositories_processed: int = 0
    errors: List[str] = Field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        """API shape: the ``errors`` key is present only when something failed."""
        payload = self.model_dump(by_alias=True, mode="json")
        if not self.errors:
            payload.pop("errors")
        return payload


class DashboardStats(ApiModel):
    active_repos: int = 0
    new_commits: int = 0
    posts_published: int = 0
    ai_usage: int = 0


class CommitSummary(ApiModel):
    total_commits: int = 0
    total_additions: int = 0
    total_deletions: int = 0
    repositories: List[str] = Field(default_factory=list)
    time_range: TimeRange


class SummaryResult(ApiModel):
    """Structured devlog produced by the summary generator."""

    title: str
    content: str = ""
    summary: str = ""
    tags: List[str] = Field(default_factory=list)
    tokens_used: int = 0


class PostDraft(BaseModel):
    """What the publisher needs to write a post."""

    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    tags: List[str] = Field(default_factory=list)


class PublishResult(ApiModel):
    """Publisher outcome. Failures are values, never exceptions."""

    success: bool
    post_id: Optional[str] = None
    url: Optional[str] = None
    permlink: Optional[str] = None
    error: Optional[str] = None


# File-backed config documents
class BotConfigData(ApiModel):
    """Bot settings document (``config.json``)."""

    hive_username: str = ""
    sync_interval: int = Field(default=6, ge=1, description="Hours between suggested syncs")
    auto_publish: bool = False
    last_sync_time: Optional[str] = None
    ai_model: str = "gpt-4o"
    max_tokens_per_summary: int = Field(default=2000, ge=1)


class RepositoryConfig(ApiModel):
    """Entry of the repository list document (``repos.json``)."""

    owner: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    is_active: bool = True


# API request models
class GenerateSummaryRequest(ApiModel):
    since_date: Optional[datetime] = None
    save_draft: bool = False

    @field_validator("since_date")
    @classmethod
    def validate_since_date(cls, v):
        return ensure_utc(v)


class EnhanceContentRequest(ApiModel):
    content: Optional[str] = None
    instructions: Optional[str] = None


class ConfigUpdateRequest(ApiModel):
    config: Optional[BotConfigData] = None
    repositories: Optional[List[RepositoryConfig]] = None


# SQLAlchemy models for the database
class RepositoryModel(Base):
    """SQLAlchemy model for tracked repositories."""

    __tablename__ = "repositories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_sync_time = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index('idx_repositories_owner_name', 'owner', 'name', unique=True),
        Index('idx_repositories_active', 'is_active'),
    )


class CommitModel(Base):
    """SQLAlchemy model for commits. ``sha`` is indexed, not unique."""

    __tablename__ = "commits"

    id = Column(Integer, primary_key=True, autoincrement=True)
    repository_id = Column(
        Integer, ForeignKey("repositories.id", ondelete="SET NULL"), nullable=True
    )
    sha = Column(String(64), nullable=False)
    message = Column(Text, nullable=False, default="")
    author = Column(String(255), nullable=False)
    author_email = Column(String(255), nullable=True)
    date = Column(UTCDateTime, nullable=False)
    additions = Column(Integer, nullable=False, default=0)
    deletions = Column(Integer, nullable=False, default=0)
    files_changed = Column(Integer, nullable=False, default=0)
    url = Column(Text, nullable=True)
    processed = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index('idx_commits_sha', 'sha'),
        Index('idx_commits_repository_date', 'repository_id', 'date'),
        Index('idx_commits_date', 'date'),
        Index('idx_commits_processed', 'processed'),
    )


class BlogPostModel(Base):
    """SQLAlchemy model for generated posts."""

    __tablename__ = "blog_posts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(500), nullable=False)
    content = Column(Text, nullable=False)
    summary = Column(Text, nullable=True)
    tags = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default=PostStatus.DRAFT.value)
    hive_post_id = Column(String(255), nullable=True)
    published_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    commits_included = Column(JSON, nullable=True)
    ai_tokens_used = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index('idx_blog_posts_status', 'status'),
    )


class BotConfigModel(Base):
    """SQLAlchemy model for key/value bot configuration."""

    __tablename__ = "bot_config"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(255), nullable=False, unique=True)
    value = Column(Text, nullable=False)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now, onupdate=utc_now)


# Model conversion utilities
class ModelConverter:
    """Converts between SQLAlchemy rows and pydantic models."""

    @staticmethod
    def model_to_repository(model: RepositoryModel) -> Repository:
        return Repository.model_validate(model)

    @staticmethod
    def model_to_commit(model: CommitModel) -> Commit:
        return Commit.model_validate(model)

    @staticmethod
    def commit_to_model(commit: CommitCreate) -> CommitModel:
        return CommitModel(**commit.model_dump())

    @staticmethod
    def model_to_blog_post(model: BlogPostModel) -> BlogPost:
        return BlogPost.model_validate(model)

    @staticmethod
    def blog_post_to_model(post: BlogPostCreate) -> BlogPostModel:
        data = post.model_dump()
        data["status"] = post.status.value
        return BlogPostModel(**data)

    @staticmethod
    def model_to_config_entry(model: BotConfigModel) -> BotConfigEntry:
        return BotConfigEntry.model_validate(model)


# Model validation utilities
class ModelValidator:
    """Validation of raw dictionaries before they reach the models."""

    @staticmethod
    def validate_commit_data(data: Dict[str, Any]) -> List[str]:
        """Validate commit data and return list of errors."""
        errors = []

        for field in ['sha', 'author', 'date']:
            if field not in data or not data[field]:
                errors.append(f"Missing required field: {field}")

        for field in ['additions', 'deletions', 'files_changed']:
            value = data.get(field)
            if value is not None and (not isinstance(value, int) or value < 0):
                errors.append(f"{field} must be a non-negative integer")

        if 'message' in data and not isinstance(data['message'], str):
            errors.append("Commit message must be a string")

        return errors

    @staticmethod
    def validate_repository_data(data: Dict[str, Any]) -> List[str]:
        """Validate repository data and return list of errors."""
        errors = []

        for field in ['owner', 'name']:
            value = data.get(field)
            if not value or not isinstance(value, str) or not value.strip():
                errors.append(f"Missing required field: {field}")
            elif not set(value.strip()) <= GITHUB_NAME_CHARS:
                errors.append(f"Invalid characters in {field}")

        return errors

    @staticmethod
    def validate_blog_post_data(data: Dict[str, Any]) -> List[str]:
        """Validate blog post data and return list of errors."""
        errors = []

        for field in ['title', 'content']:
            value = data.get(field)
            if not value or not str(value).strip():
                errors.append(f"Missing required field: {field}")

        status = data.get('status')
        if status is not None and status not in {s.value for s in PostStatus}:
            errors.append(f"Invalid status: {status}")

        return errors


__all__ = [
    'Base', 'utc_now', 'ensure_utc', 'UTCDateTime', 'PostStatus', 'ApiModel',
    'RepositoryCreate', 'RepositoryUpdate', 'Repository',
    'CommitCreate', 'Commit', 'CommitWithRepository', 'normalize_commit_ids',
    'BlogPostCreate', 'BlogPostUpdate', 'BlogPost', 'BotConfigEntry',
    'TimeRange', 'SyncResult', 'DashboardStats', 'CommitSummary',
    'SummaryResult', 'PostDraft', 'PublishResult',
    'BotConfigData', 'RepositoryConfig',
    'GenerateSummaryRequest', 'EnhanceContentRequest', 'ConfigUpdateRequest',
    'RepositoryModel', 'CommitModel', 'BlogPostModel', 'BotConfigModel',
    'ModelConverter', 'ModelValidator',
]
