"""
Dashboard API for the devlog bot.

Serves the dashboard: repository management, commit sync, summary
generation, draft editing, Hive publishing and the file-backed config
documents. Every route lives under ``/api`` and errors come back as
``{"error": "..."}``.

All collaborators (store, orchestrator, integration factories) are built
per application in the lifespan and kept on ``app.state``.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.settings import (
    Settings,
    configure_logging,
    export_config,
    get_settings,
    validate_configuration,
)
from services.commit_sync.checkpoints import CheckpointManager
from services.commit_sync.github_client import HistoryFetcher, build_github_client
from services.commit_sync.orchestrator import SyncOrchestrator
from services.dashboard_api.config_manager import ConfigManager
from services.devlog_writer.summary_generator import (
    SummaryGenerator,
    build_summary_generator,
    group_commits_by_repository,
)
from services.hive_publisher.publisher import Publisher, build_publisher
from shared.database import CommitStore, init_database
from shared.errors import FetchError, SetupError, SummaryError
from shared.locks import LockProvider, build_lock_provider
from shared.models import (
    BlogPost,
    BlogPostCreate,
    BlogPostUpdate,
    CommitWithRepository,
    ConfigUpdateRequest,
    DashboardStats,
    EnhanceContentRequest,
    GenerateSummaryRequest,
    PostDraft,
    PostStatus,
    Repository,
    RepositoryConfig,
    RepositoryCreate,
    RepositoryUpdate,
    TimeRange,
    utc_now,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


def get_store(request: Request) -> CommitStore:
    return request.app.state.store


def get_config_manager(request: Request) -> ConfigManager:
    return request.app.state.config_manager


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _setup_error(prefix: str, error: SetupError) -> HTTPException:
    logger.error(f"{prefix}: {error}")
    return HTTPException(status_code=500, detail=f"{prefix}: {error}")


async def _seed_repositories(store: CommitStore, config_manager: ConfigManager) -> None:
    """Load ``repos.json`` into an empty store."""
    if await store.get_repositories():
        return
    entries = config_manager.load_repositories()
    if entries:
        await store.set_repositories(entries)
        logger.info(f"Seeded {len(entries)} repositories from {config_manager.repositories_path}")


def _format_validation_error(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "Invalid request: " + "; ".join(messages)


def create_app(
    settings: Optional[Settings] = None,
    fetcher_factory: Optional[Callable[[], HistoryFetcher]] = None,
    summary_generator_factory: Optional[Callable[[], SummaryGenerator]] = None,
    publisher_factory: Optional[Callable[[], Publisher]] = None,
    lock_provider: Optional[LockProvider] = None,
) -> FastAPI:
    """
    Build the dashboard application.

    The factories are called per request so missing credentials surface as
    a setup error on the route that needs them, not at startup.
    """
    settings = settings or get_settings()
    fetcher_factory = fetcher_factory or (lambda: build_github_client(settings.github))
    summary_generator_factory = summary_generator_factory or (
        lambda: build_summary_generator(settings.openai)
    )
    publisher_factory = publisher_factory or (lambda: build_publisher(settings.hive))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)

        db, store = await init_database(settings.database)

        config_manager = ConfigManager.from_settings(settings.file, settings.hive.username)
        await _seed_repositories(store, config_manager)

        locks = lock_provider or build_lock_provider(settings.redis)
        checkpoints = CheckpointManager(
            store,
            settings.sync.checkpoint_policy,
            settings.sync.default_lookback_days,
            config_manager,
        )

        app.state.settings = settings
        app.state.db = db
        app.state.store = store
        app.state.config_manager = config_manager
        app.state.checkpoints = checkpoints
        app.state.orchestrator = SyncOrchestrator(store, checkpoints, fetcher_factory, locks)
        app.state.fetcher_factory = fetcher_factory
        app.state.summary_generator_factory = summary_generator_factory
        app.state.publisher_factory = publisher_factory
        app.state.publish_lock = asyncio.Lock()
        logger.info("Dashboard API started")

        try:
            yield
        finally:
            await locks.close()
            await db.close()
            logger.info("Dashboard API stopped")

    app = FastAPI(
        title="Devlog Bot API",
        description="Commit sync, AI devlog drafting and Hive publishing",
        version=settings.version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.service.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _format_validation_error(exc)})

    app.include_router(router)
    return app


# Health

@router.get("/health")
async def health_check(
    request: Request,
    deep: bool = Query(False, description="Also contact Hive to check the account"),
):
    """Database status plus which integrations are configured."""
    settings = request.app.state.settings
    db_health = await request.app.state.db.health_check()
    configuration = validate_configuration(settings)
    services: Dict[str, Any] = dict(configuration["services"])

    if deep and services.get("hive") == "configured":
        try:
            publisher = request.app.state.publisher_factory()
            services["hive"] = "connected" if await publisher.validate_account() else "error"
        except SetupError as e:
            logger.warning(f"Hive check skipped: {e}")
            services["hive"] = "missing"

    healthy = db_health.get("status") == "healthy"
    payload = {
        "status": "ok" if healthy else "unhealthy",
        "timestamp": utc_now().isoformat(),
        "version": settings.version,
        "database": db_health,
        "services": services,
        "configuration": {
            "valid": configuration["valid"],
            "errors": configuration["errors"],
            "warnings": configuration["warnings"],
        },
    }
    if not healthy:
        return JSONResponse(status_code=503, content=payload)
    return payload


# Dashboard

@router.get("/dashboard/stats", response_model=DashboardStats)
async def dashboard_stats(store: CommitStore = Depends(get_store)):
    try:
        return await store.get_dashboard_stats()
    except Exception as e:
        logger.error(f"Error fetching dashboard stats: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch dashboard stats")


# Repositories

@router.get("/repositories", response_model=List[Repository])
async def list_repositories(store: CommitStore = Depends(get_store)):
    return await store.get_repositories()


@router.post("/repositories", response_model=Repository)
async def add_repository(
    request: Request,
    repository: RepositoryCreate,
    store: CommitStore = Depends(get_store),
    config_manager: ConfigManager = Depends(get_config_manager),
):
    """Register a repository after checking that GitHub can see it."""
    if await store.get_repository_by_name(repository.owner, repository.name) is not None:
        raise HTTPException(status_code=409, detail="Repository already registered")

    try:
        fetcher = request.app.state.fetcher_factory()
    except SetupError as e:
        raise _setup_error("Failed to add repository", e)

    try:
        exists = await fetcher.repository_exists(repository.owner, repository.name)
    except FetchError as e:
        logger.error(f"Error validating {repository.owner}/{repository.name}: {e}")
        raise HTTPException(status_code=502, detail=f"Could not validate repository: {e}")
    finally:
        await fetcher.close()

    if not exists:
        raise HTTPException(status_code=400, detail="Repository not found or not accessible")

    created = await store.create_repository(repository)
    try:
        config_manager.upsert_repository(RepositoryConfig.model_validate(repository.model_dump()))
    except OSError as e:
        logger.warning(f"Could not update {config_manager.repositories_path}: {e}")
    return created


@router.patch("/repositories/{repository_id}", response_model=Repository)
async def update_repository(
    repository_id: int,
    update: RepositoryUpdate,
    store: CommitStore = Depends(get_store),
    config_manager: ConfigManager = Depends(get_config_manager),
):
    updated = await store.update_repository(repository_id, update.model_dump(exclude_unset=True))
    if updated is None:
        raise HTTPException(status_code=404, detail="Repository not found")

    try:
        config_manager.upsert_repository(RepositoryConfig(
            owner=updated.owner,
            name=updated.name,
            description=updated.description,
            is_active=updated.is_active,
        ))
    except OSError as e:
        logger.warning(f"Could not update {config_manager.repositories_path}: {e}")
    return updated


@router.delete("/repositories/{repository_id}")
async def delete_repository(
    repository_id: int,
    store: CommitStore = Depends(get_store),
    config_manager: ConfigManager = Depends(get_config_manager),
):
    repository = await store.get_repository(repository_id)
    if repository is None or not await store.delete_repository(repository_id):
        raise HTTPException(status_code=404, detail="Repository not found")

    try:
        config_manager.remove_repository(repository.owner, repository.name)
    except OSError as e:
        logger.warning(f"Could not update {config_manager.repositories_path}: {e}")
    return {"success": True}


# Commits and sync

@router.get("/commits", response_model=List[CommitWithRepository])
async def recent_commits(
    limit: int = Query(10, ge=1, le=500),
    store: CommitStore = Depends(get_store),
):
    return await store.get_recent_commits_with_repo(limit=limit)


@router.post("/sync")
async def sync_commits(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Run one sync invocation over all active repositories."""
    try:
        result = await orchestrator.sync_all()
    except SetupError as e:
        raise _setup_error("Sync failed", e)
    except Exception as e:
        logger.error(f"Sync failed: {e}")
        raise HTTPException(status_code=500, detail=f"Sync failed: {e}")
    return result.to_response()


@router.get("/sync/status")
async def sync_status(request: Request, store: CommitStore = Depends(get_store)):
    last_sync = await request.app.state.checkpoints.get_global()
    repositories = await store.get_repositories()
    return {
        "lastSyncTime": last_sync.isoformat() if last_sync else None,
        "repositories": [
            {
                "id": repo.id,
                "fullName": repo.full_name,
                "isActive": repo.is_active,
                "lastSyncTime": repo.last_sync_time.isoformat() if repo.last_sync_time else None,
            }
            for repo in repositories
        ],
    }


# Summaries

@router.post("/generate-summary")
async def generate_summary(
    request: Request,
    body: Optional[GenerateSummaryRequest] = Body(default=None),
    store: CommitStore = Depends(get_store),
):
    """
    Draft a devlog post from the commits since ``sinceDate``.

    The window defaults to the last seven days. With ``saveDraft`` the result
    is also stored as a draft post.
    """
    body = body or GenerateSummaryRequest()
    now = utc_now()
    since = body.since_date or now - timedelta(days=request.app.state.settings.sync.default_lookback_days)

    pairs = await store.get_commits_since_with_repo(since)
    if not pairs:
        raise HTTPException(status_code=400, detail="No commits found for the specified time range")

    try:
        generator = request.app.state.summary_generator_factory()
        summary = await generator.generate(
            group_commits_by_repository(pairs), TimeRange(start=since, end=now)
        )
    except SetupError as e:
        raise _setup_error("Failed to generate summary", e)
    except SummaryError as e:
        raise HTTPException(status_code=502, detail=str(e))

    commit_ids = [commit.id for commit, _ in pairs]
    payload = summary.model_dump(by_alias=True)
    payload["commitsIncluded"] = commit_ids

    if body.save_draft:
        post = await store.create_blog_post(BlogPostCreate(
            title=summary.title,
            content=summary.content or summary.summary or summary.title,
            summary=summary.summary,
            tags=summary.tags,
            commits_included=commit_ids,
            ai_tokens_used=summary.tokens_used,
        ))
        payload["postId"] = post.id
    return payload


@router.post("/enhance-content")
async def enhance_content(request: Request, body: EnhanceContentRequest):
    if not body.content or not body.instructions:
        raise HTTPException(status_code=400, detail="Content and instructions are required")

    try:
        generator = request.app.state.summary_generator_factory()
        enhanced = await generator.enhance(body.content, body.instructions)
    except SetupError as e:
        raise _setup_error("Failed to enhance content", e)
    except SummaryError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"content": enhanced}


# Blog posts

@router.get("/blog-posts", response_model=List[BlogPost])
async def list_blog_posts(store: CommitStore = Depends(get_store)):
    return await store.get_blog_posts()


@router.post("/blog-posts", response_model=BlogPost)
async def create_blog_post(post: BlogPostCreate, store: CommitStore = Depends(get_store)):
    try:
        return await store.create_blog_post(post)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/blog-posts/{post_id}", response_model=BlogPost)
async def get_blog_post(post_id: int, store: CommitStore = Depends(get_store)):
    post = await store.get_blog_post(post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Blog post not found")
    return post


@router.patch("/blog-posts/{post_id}", response_model=BlogPost)
async def update_blog_post(
    post_id: int,
    update: BlogPostUpdate,
    store: CommitStore = Depends(get_store),
):
    post = await store.get_blog_post(post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Blog post not found")
    if post.is_published:
        raise HTTPException(status_code=409, detail="Published posts cannot be edited")
    return await store.update_blog_post(post_id, update)


@router.delete("/blog-posts/{post_id}")
async def delete_blog_post(post_id: int, store: CommitStore = Depends(get_store)):
    if not await store.delete_blog_post(post_id):
        raise HTTPException(status_code=404, detail="Blog post not found")
    return {"success": True}


@router.post("/publish/{post_id}")
async def publish_post(
    request: Request,
    post_id: int,
    store: CommitStore = Depends(get_store),
):
    """
    Publish a stored post to Hive.

    On success the post becomes ``published`` and the commits it covers are
    marked processed. A failed broadcast leaves the post untouched.
    """
    async with request.app.state.publish_lock:
        post = await store.get_blog_post(post_id)
        if post is None:
            raise HTTPException(status_code=404, detail="Blog post not found")
        if post.is_published:
            raise HTTPException(status_code=409, detail="Blog post already published")

        try:
            publisher = request.app.state.publisher_factory()
        except SetupError as e:
            raise _setup_error("Failed to publish post", e)

        result = await publisher.publish(PostDraft(
            title=post.title,
            content=post.content,
            tags=post.tags or request.app.state.settings.openai.default_tags,
        ))
        if not result.success:
            raise HTTPException(status_code=502, detail=result.error or "Failed to publish post")

        await store.update_blog_post(post_id, {
            "status": PostStatus.PUBLISHED.value,
            "published_at": utc_now(),
            "hive_post_id": result.post_id,
        })
        marked = await store.mark_commits_as_processed(post.commits_included or [])
        logger.info(f"Published post {post_id} as {result.post_id}; {marked} commits processed")

    return {"success": True, "postUrl": result.url, "hivePostId": result.post_id}


# Config documents

@router.get("/config")
async def get_config(
    config_manager: ConfigManager = Depends(get_config_manager),
    settings: Settings = Depends(get_app_settings),
):
    return {
        "config": config_manager.load_config().model_dump(by_alias=True),
        "repositories": [
            repo.model_dump(by_alias=True) for repo in config_manager.load_repositories()
        ],
        "runtime": export_config(settings),
    }


@router.post("/config")
async def update_config(
    update: ConfigUpdateRequest,
    store: CommitStore = Depends(get_store),
    config_manager: ConfigManager = Depends(get_config_manager),
):
    """Save whichever documents are present; repositories are also upserted into the store."""
    try:
        if update.config is not None:
            config_manager.save_config(update.config)
        if update.repositories is not None:
            config_manager.save_repositories(update.repositories)
    except OSError as e:
        logger.error(f"Error saving config: {e}")
        raise HTTPException(status_code=500, detail="Failed to save configuration")

    if update.repositories:
        try:
            await store.set_repositories(update.repositories)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    return {"success": True}


__all__ = ["create_app", "router"]
