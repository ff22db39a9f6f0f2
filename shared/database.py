"""
Database layer for the devlog bot.

This module provides:
- ``DatabaseManager``: async engine, session and health management
- Repository classes with the common CRUD operations per table
- ``CommitStore``: the storage facade used by the sync pipeline and the API

Nothing here is a module-level singleton. The application constructs one
``DatabaseManager`` and one ``CommitStore`` at startup and passes them on.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from functools import wraps
from pathlib import Path
from typing import Optional, List, Dict, Any, Union, AsyncGenerator, Iterable, Tuple

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.sql import select, update, func

from config.settings import DatabaseSettings
from shared.models import (
    Base,
    RepositoryModel,
    CommitModel,
    BlogPostModel,
    BotConfigModel,
    Repository,
    RepositoryCreate,
    RepositoryConfig,
    Commit,
    CommitCreate,
    CommitWithRepository,
    BlogPost,
    BlogPostCreate,
    BlogPostUpdate,
    BotConfigEntry,
    DashboardStats,
    CommitSummary,
    PostStatus,
    TimeRange,
    ModelConverter,
    ModelValidator,
    utc_now,
)

logger = logging.getLogger(__name__)

DASHBOARD_WINDOW_DAYS = 7


class DatabaseManager:
    """Database connection and session management."""

    def __init__(self, settings: DatabaseSettings):
        self.settings = settings
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self._initialized = False

    def initialize(self):
        """Create the async engine and session factory."""
        if self._initialized:
            return

        engine_kwargs: Dict[str, Any] = {"echo": self.settings.echo}
        if self.settings.is_sqlite:
            self._ensure_sqlite_directory()
        else:
            engine_kwargs.update(
                pool_size=self.settings.pool_size,
                max_overflow=self.settings.max_overflow,
                pool_timeout=self.settings.pool_timeout,
                pool_recycle=self.settings.pool_recycle,
                pool_pre_ping=True,
            )

        self.engine = create_async_engine(self.settings.url, **engine_kwargs)
        self.session_factory = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

        self._initialized = True
        logger.info(f"Database manager initialized ({make_url(self.settings.url).get_backend_name()})")

    def _ensure_sqlite_directory(self):
        database = make_url(self.settings.url).database
        if database and database != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)

    async def create_tables(self):
        """Create all database tables."""
        if not self._initialized:
            self.initialize()

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session that commits on success and rolls back on error."""
        if not self._initialized:
            self.initialize()

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def health_check(self) -> Dict[str, Any]:
        """Perform database health check."""
        try:
            async with self.get_async_session() as session:
                result = await session.execute(text("SELECT 1"))
                result.fetchone()

            return {
                "status": "healthy",
                "backend": self.engine.dialect.name,
                "pool_status": self.engine.pool.status(),
                "timestamp": utc_now().isoformat(),
            }
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "error": str(e), "timestamp": utc_now().isoformat()}

    async def close(self):
        """Dispose the engine and its connections."""
        if self.engine:
            await self.engine.dispose()
        self._initialized = False
        logger.info("Database connections closed")


def database_transaction(func):
    """Run the wrapped repository method in a session of its manager.

    A caller that already holds a session can pass it as ``session=`` to make
    the call part of its transaction.
    """

    @wraps(func)
    async def wrapper(self, *args, session: Optional[AsyncSession] = None, **kwargs):
        if session is not None:
            return await func(self, *args, session=session, **kwargs)
        async with self.db.get_async_session() as new_session:
            try:
                return await func(self, *args, session=new_session, **kwargs)
            except SQLAlchemyError as e:
                logger.error(f"Database transaction failed: {e}")
                raise

    return wrapper


class BaseRepository:
    """Base repository class with common database operations."""

    def __init__(self, db: DatabaseManager, model_class):
        self.db = db
        self.model_class = model_class

    @database_transaction
    async def create(self, data: Dict[str, Any], session: AsyncSession) -> Any:
        """Create a new record."""
        try:
            instance = self.model_class(**data)
            session.add(instance)
            await session.flush()
            await session.refresh(instance)
            return instance
        except IntegrityError as e:
            logger.error(f"Integrity error creating {self.model_class.__name__}: {e}")
            raise

    @database_transaction
    async def add(self, instance: Any, session: AsyncSession) -> Any:
        """Persist an already built model instance."""
        session.add(instance)
        await session.flush()
        await session.refresh(instance)
        return instance

    @database_transaction
    async def get_by_id(self, record_id: int, session: AsyncSession) -> Optional[Any]:
        """Get record by ID."""
        return await session.get(self.model_class, record_id)

    @database_transaction
    async def get_all(self, limit: Optional[int] = None, session: AsyncSession = None) -> List[Any]:
        """Get all records, newest first."""
        query = select(self.model_class).order_by(
            self.model_class.created_at.desc(), self.model_class.id.desc()
        )
        if limit is not None:
            query = query.limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())

    @database_transaction
    async def update(
        self, record_id: int, data: Dict[str, Any], session: AsyncSession
    ) -> Optional[Any]:
        """Merge ``data`` into a record; None when the record does not exist."""
        instance = await session.get(self.model_class, record_id)
        if instance is None:
            return None
        for field, value in data.items():
            setattr(instance, field, value)
        await session.flush()
        await session.refresh(instance)
        return instance

    @database_transaction
    async def delete(self, record_id: int, session: AsyncSession) -> bool:
        """Delete a record."""
        instance = await session.get(self.model_class, record_id)
        if instance is None:
            return False
        await session.delete(instance)
        return True


class RepoRepository(BaseRepository):
    """Repository for tracked GitHub repositories."""

    def __init__(self, db: DatabaseManager):
        super().__init__(db, RepositoryModel)

    @database_transaction
    async def get_all(self, limit: Optional[int] = None, session: AsyncSession = None):
        """Get repositories in registration order."""
        query = select(RepositoryModel).order_by(RepositoryModel.id)
        if limit is not None:
            query = query.limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())

    @database_transaction
    async def get_active(self, session: AsyncSession) -> List[RepositoryModel]:
        result = await session.execute(
            select(RepositoryModel)
            .where(RepositoryModel.is_active.is_(True))
            .order_by(RepositoryModel.id)
        )
        return list(result.scalars().all())

    @database_transaction
    async def get_by_name(
        self, owner: str, name: str, session: AsyncSession
    ) -> Optional[RepositoryModel]:
        result = await session.execute(
            select(RepositoryModel).where(
                func.lower(RepositoryModel.owner) == owner.lower(),
                func.lower(RepositoryModel.name) == name.lower(),
            )
        )
        return result.scalars().first()

    @database_transaction
    async def count_active(self, session: AsyncSession) -> int:
        result = await session.execute(
            select(func.count(RepositoryModel.id)).where(RepositoryModel.is_active.is_(True))
        )
        return result.scalar() or 0


class CommitRepository(BaseRepository):
    """Repository for commit operations."""

    def __init__(self, db: DatabaseManager):
        super().__init__(db, CommitModel)

    @database_transaction
    async def get_by_sha(self, sha: str, session: AsyncSession) -> Optional[CommitModel]:
        """Get the first stored commit with this hash."""
        result = await session.execute(
            select(CommitModel).where(CommitModel.sha == sha).order_by(CommitModel.id).limit(1)
        )
        return result.scalars().first()

    @database_transaction
    async def get_recent(
        self,
        repository_id: Optional[int] = None,
        limit: Optional[int] = None,
        session: AsyncSession = None,
    ) -> List[CommitModel]:
        """Get commits newest first, optionally for one repository."""
        query = select(CommitModel).order_by(CommitModel.date.desc(), CommitModel.id.desc())
        if repository_id is not None:
            query = query.where(CommitModel.repository_id == repository_id)
        if limit is not None:
            query = query.limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())

    @database_transaction
    async def get_since(
        self,
        since: datetime,
        repository_id: Optional[int] = None,
        session: AsyncSession = None,
    ) -> List[CommitModel]:
        """Get commits authored at or after ``since``."""
        query = (
            select(CommitModel)
            .where(CommitModel.date >= since)
            .order_by(CommitModel.date.desc(), CommitModel.id.desc())
        )
        if repository_id is not None:
            query = query.where(CommitModel.repository_id == repository_id)
        result = await session.execute(query)
        return list(result.scalars().all())

    @database_transaction
    async def get_with_repository(
        self,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
        session: AsyncSession = None,
    ) -> List[Tuple[CommitModel, RepositoryModel]]:
        """Commits joined with their repository; orphaned commits are left out."""
        query = (
            select(CommitModel, RepositoryModel)
            .join(RepositoryModel, CommitModel.repository_id == RepositoryModel.id)
            .order_by(CommitModel.date.desc(), CommitModel.id.desc())
        )
        if since is not None:
            query = query.where(CommitModel.date >= since)
        if limit is not None:
            query = query.limit(limit)
        result = await session.execute(query)
        return [(row[0], row[1]) for row in result.all()]

    @database_transaction
    async def get_unprocessed(self, session: AsyncSession) -> List[CommitModel]:
        result = await session.execute(
            select(CommitModel)
            .where(CommitModel.processed.is_(False))
            .order_by(CommitModel.date.desc())
        )
        return list(result.scalars().all())

    @database_transaction
    async def mark_processed(self, ids: List[int], session: AsyncSession) -> int:
        if not ids:
            return 0
        result = await session.execute(
            update(CommitModel).where(CommitModel.id.in_(ids)).values(processed=True)
        )
        return result.rowcount or 0

    @database_transaction
    async def detach_repository(self, repository_id: int, session: AsyncSession) -> int:
        """Keep a deleted repository's commits as orphans."""
        result = await session.execute(
            update(CommitModel)
            .where(CommitModel.repository_id == repository_id)
            .values(repository_id=None)
        )
        return result.rowcount or 0

    @database_transaction
    async def count_since(self, since: datetime, session: AsyncSession) -> int:
        result = await session.execute(
            select(func.count(CommitModel.id)).where(CommitModel.date >= since)
        )
        return result.scalar() or 0


class BlogPostRepository(BaseRepository):
    """Repository for blog post operations."""

    def __init__(self, db: DatabaseManager):
        super().__init__(db, BlogPostModel)

    @database_transaction
    async def count_published(self, session: AsyncSession) -> int:
        result = await session.execute(
            select(func.count(BlogPostModel.id)).where(
                BlogPostModel.status == PostStatus.PUBLISHED.value
            )
        )
        return result.scalar() or 0

    @database_transaction
    async def total_tokens(self, session: AsyncSession) -> int:
        result = await session.execute(select(func.sum(BlogPostModel.ai_tokens_used)))
        return result.scalar() or 0


class BotConfigRepository(BaseRepository):
    """Repository for key/value configuration."""

    def __init__(self, db: DatabaseManager):
        super().__init__(db, BotConfigModel)

    @database_transaction
    async def get_by_key(self, key: str, session: AsyncSession) -> Optional[BotConfigModel]:
        result = await session.execute(select(BotConfigModel).where(BotConfigModel.key == key))
        return result.scalar_one_or_none()

    @database_transaction
    async def upsert(self, key: str, value: str, session: AsyncSession) -> BotConfigModel:
        """Insert or overwrite a key; the last write wins."""
        entry = await self.get_by_key(key, session=session)
        if entry is None:
            entry = BotConfigModel(key=key, value=value, updated_at=utc_now())
            session.add(entry)
        else:
            entry.value = value
            entry.updated_at = utc_now()
        await session.flush()
        await session.refresh(entry)
        return entry

    @database_transaction
    async def get_all(self, limit: Optional[int] = None, session: AsyncSession = None):
        query = select(BotConfigModel).order_by(BotConfigModel.key)
        if limit is not None:
            query = query.limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())


def serialized_write(func):
    """Run a store write while holding the store's single-writer lock."""

    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        async with self._write_lock:
            return await func(self, *args, **kwargs)

    return wrapper


class CommitStore:
    """
    Storage facade for repositories, commits, posts and bot configuration.

    Reads return pydantic models. Writes are serialized through one lock so
    the sync pipeline and the publish path never interleave, and each write
    runs in its own transaction.
    """

    def __init__(self, db: DatabaseManager):
        self.db = db
        self.repositories = RepoRepository(db)
        self.commits = CommitRepository(db)
        self.blog_posts = BlogPostRepository(db)
        self.config = BotConfigRepository(db)
        self._write_lock = asyncio.Lock()

    # Repositories

    async def get_repositories(self) -> List[Repository]:
        models = await self.repositories.get_all()
        return [ModelConverter.model_to_repository(m) for m in models]

    async def get_active_repositories(self) -> List[Repository]:
        models = await self.repositories.get_active()
        return [ModelConverter.model_to_repository(m) for m in models]

    async def get_repository(self, repository_id: int) -> Optional[Repository]:
        model = await self.repositories.get_by_id(repository_id)
        return ModelConverter.model_to_repository(model) if model else None

    async def get_repository_by_name(self, owner: str, name: str) -> Optional[Repository]:
        model = await self.repositories.get_by_name(owner, name)
        return ModelConverter.model_to_repository(model) if model else None

    @serialized_write
    async def create_repository(self, data: Union[RepositoryCreate, Dict[str, Any]]) -> Repository:
        """Register a repository. New repositories have no checkpoint."""
        if isinstance(data, dict):
            errors = ModelValidator.validate_repository_data(data)
            if errors:
                raise ValueError(f"Invalid repository data: {errors}")
            data = RepositoryCreate.model_validate(data)

        model = await self.repositories.create(data.model_dump())
        logger.info(f"Registered repository {model.owner}/{model.name}")
        return ModelConverter.model_to_repository(model)

    @serialized_write
    async def update_repository(
        self, repository_id: int, data: Dict[str, Any]
    ) -> Optional[Repository]:
        """Merge fields into a repository; None when it does not exist."""
        model = await self.repositories.update(repository_id, data)
        return ModelConverter.model_to_repository(model) if model else None

    @serialized_write
    async def delete_repository(self, repository_id: int) -> bool:
        async with self.db.get_async_session() as session:
            deleted = await self.repositories.delete(repository_id, session=session)
            if deleted:
                await self.commits.detach_repository(repository_id, session=session)
        if deleted:
            logger.info(f"Deleted repository {repository_id}")
        return deleted

    @serialized_write
    async def set_repositories(self, entries: Iterable[RepositoryConfig]) -> List[Repository]:
        """Upsert repositories by owner/name from a repository list document.

        Repositories missing from ``entries`` are kept; checkpoints are never
        touched here.
        """
        async with self.db.get_async_session() as session:
            for entry in entries:
                existing = await self.repositories.get_by_name(
                    entry.owner, entry.name, session=session
                )
                if existing is None:
                    await self.repositories.create(
                        RepositoryCreate.model_validate(entry.model_dump()).model_dump(),
                        session=session,
                    )
                else:
                    existing.is_active = entry.is_active
                    if entry.description is not None:
                        existing.description = entry.description
            await session.flush()
            models = await self.repositories.get_all(session=session)
        return [ModelConverter.model_to_repository(m) for m in models]

    # Commits

    async def get_commits(
        self, repository_id: Optional[int] = None, limit: Optional[int] = 50
    ) -> List[Commit]:
        models = await self.commits.get_recent(repository_id=repository_id, limit=limit)
        return [ModelConverter.model_to_commit(m) for m in models]

    async def get_unprocessed_commits(self) -> List[Commit]:
        models = await self.commits.get_unprocessed()
        return [ModelConverter.model_to_commit(m) for m in models]

    async def get_commit_by_sha(self, sha: str) -> Optional[Commit]:
        """The dedup gate: the stored commit with this hash, if any."""
        model = await self.commits.get_by_sha(sha)
        return ModelConverter.model_to_commit(model) if model else None

    async def get_commits_since(
        self, since: datetime, repository_id: Optional[int] = None
    ) -> List[Commit]:
        models = await self.commits.get_since(since, repository_id=repository_id)
        return [ModelConverter.model_to_commit(m) for m in models]

    async def get_commits_since_with_repo(
        self, since: datetime
    ) -> List[Tuple[Commit, Repository]]:
        """Commits since ``since`` paired with their repository, orphans skipped."""
        rows = await self.commits.get_with_repository(since=since)
        return [
            (ModelConverter.model_to_commit(c), ModelConverter.model_to_repository(r))
            for c, r in rows
        ]

    async def get_recent_commits_with_repo(self, limit: int = 10) -> List[CommitWithRepository]:
        rows = await self.commits.get_with_repository(limit=limit)
        return [
            CommitWithRepository(
                **ModelConverter.model_to_commit(c).model_dump(),
                repository=ModelConverter.model_to_repository(r),
            )
            for c, r in rows
        ]

    @serialized_write
    async def create_commit(self, data: Union[CommitCreate, Dict[str, Any]]) -> Commit:
        """Insert one commit. Hash uniqueness is the caller's responsibility."""
        if isinstance(data, dict):
            errors = ModelValidator.validate_commit_data(data)
            if errors:
                raise ValueError(f"Invalid commit data: {errors}")
            data = CommitCreate.model_validate(data)

        model = await self.commits.add(ModelConverter.commit_to_model(data))
        return ModelConverter.model_to_commit(model)

    @serialized_write
    async def mark_commits_as_processed(self, ids: Iterable[int]) -> int:
        """Flip ``processed`` on the given commits. Unknown ids are ignored."""
        ids = sorted(set(ids))
        updated = await self.commits.mark_processed(ids)
        logger.info(f"Marked {updated} of {len(ids)} commits as processed")
        return updated

    # Blog posts

    async def get_blog_posts(self) -> List[BlogPost]:
        models = await self.blog_posts.get_all()
        return [ModelConverter.model_to_blog_post(m) for m in models]

    async def get_blog_post(self, post_id: int) -> Optional[BlogPost]:
        model = await self.blog_posts.get_by_id(post_id)
        return ModelConverter.model_to_blog_post(model) if model else None

    @serialized_write
    async def create_blog_post(self, data: Union[BlogPostCreate, Dict[str, Any]]) -> BlogPost:
        if isinstance(data, dict):
            errors = ModelValidator.validate_blog_post_data(data)
            if errors:
                raise ValueError(f"Invalid blog post data: {errors}")
            data = BlogPostCreate.model_validate(data)

        model = await self.blog_posts.add(ModelConverter.blog_post_to_model(data))
        return ModelConverter.model_to_blog_post(model)

    @serialized_write
    async def update_blog_post(
        self, post_id: int, data: Union[BlogPostUpdate, Dict[str, Any]]
    ) -> Optional[BlogPost]:
        """Merge fields into a post; None when it does not exist.

        Plain dictionaries are trusted as-is, which is how the publish path
        records the ``published`` status.
        """
        if isinstance(data, BlogPostUpdate):
            data = data.model_dump(exclude_unset=True)
        if isinstance(data.get("status"), PostStatus):
            data = {**data, "status": data["status"].value}
        model = await self.blog_posts.update(post_id, data)
        return ModelConverter.model_to_blog_post(model) if model else None

    @serialized_write
    async def delete_blog_post(self, post_id: int) -> bool:
        return await self.blog_posts.delete(post_id)

    # Bot configuration

    async def get_config(self, key: str) -> Optional[str]:
        entry = await self.config.get_by_key(key)
        return entry.value if entry else None

    @serialized_write
    async def set_config(self, key: str, value: str) -> BotConfigEntry:
        entry = await self.config.upsert(key, value)
        return ModelConverter.model_to_config_entry(entry)

    async def get_all_config(self) -> Dict[str, str]:
        entries = await self.config.get_all()
        return {entry.key: entry.value for entry in entries}

    # Aggregates

    async def get_dashboard_stats(self, now: Optional[datetime] = None) -> DashboardStats:
        """Counts for the dashboard; commits are counted over the trailing week."""
        now = now or utc_now()
        async with self.db.get_async_session() as session:
            return DashboardStats(
                active_repos=await self.repositories.count_active(session=session),
                new_commits=await self.commits.count_since(
                    now - timedelta(days=DASHBOARD_WINDOW_DAYS), session=session
                ),
                posts_published=await self.blog_posts.count_published(session=session),
                ai_usage=await self.blog_posts.total_tokens(session=session),
            )

    async def get_commits_summary(
        self, since: datetime, until: Optional[datetime] = None
    ) -> CommitSummary:
        rows = await self.commits.get_with_repository(since=since)
        repositories: List[str] = []
        total_additions = 0
        total_deletions = 0
        for commit, repository in rows:
            total_additions += commit.additions or 0
            total_deletions += commit.deletions or 0
            full_name = f"{repository.owner}/{repository.name}"
            if full_name not in repositories:
                repositories.append(full_name)

        return CommitSummary(
            total_commits=len(rows),
            total_additions=total_additions,
            total_deletions=total_deletions,
            repositories=repositories,
            time_range=TimeRange(start=since, end=until or utc_now()),
        )


async def init_database(settings: DatabaseSettings) -> Tuple[DatabaseManager, CommitStore]:
    """Initialize the database and return the manager with its store."""
    db = DatabaseManager(settings)
    db.initialize()
    await db.create_tables()
    logger.info("Database initialized successfully")
    return db, CommitStore(db)


__all__ = [
    "DatabaseManager",
    "database_transaction",
    "BaseRepository",
    "RepoRepository",
    "CommitRepository",
    "BlogPostRepository",
    "BotConfigRepository",
    "CommitStore",
    "init_database",
]
