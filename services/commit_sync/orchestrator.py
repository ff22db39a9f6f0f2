"""
Sync orchestrator.

One invocation walks every active repository in turn:

1. take the repository's sync guard
2. fetch commits since its checkpoint
3. skip hashes already in the store, fetch detail for the rest and insert them
4. advance the repository checkpoint according to the checkpoint policy

A failure inside one repository is recorded as ``"owner/name: message"`` and
the next repository proceeds. Only a failure to build the fetcher or to load
the repository list fails the whole call. The global checkpoint is advanced
once every repository has been attempted.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from services.commit_sync.checkpoints import CheckpointManager
from services.commit_sync.github_client import HistoryFetcher
from shared.database import CommitStore
from shared.errors import FetchError
from shared.locks import LockProvider, LocalLockProvider
from shared.models import Repository, SyncResult, utc_now

logger = logging.getLogger(__name__)


class RepositorySyncReport(BaseModel):
    """Outcome of one repository pass."""

    repository: str
    inserted: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    checkpoint_advanced: bool = False


class SyncOrchestrator:
    """Brings stored commit history up to date for all active repositories."""

    def __init__(
        self,
        store: CommitStore,
        checkpoints: CheckpointManager,
        fetcher_factory: Callable[[], HistoryFetcher],
        lock_provider: Optional[LockProvider] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.checkpoints = checkpoints
        self.fetcher_factory = fetcher_factory
        self.lock_provider = lock_provider or LocalLockProvider()
        self.clock = clock

    async def sync_all(self) -> SyncResult:
        """Run one sync invocation over every active repository."""
        fetcher = self.fetcher_factory()
        try:
            repositories = await self.store.get_active_repositories()
            logger.info(f"Starting sync of {len(repositories)} active repositories")

            result = SyncResult(repositories_processed=len(repositories))
            for repository in repositories:
                report = RepositorySyncReport(repository=repository.full_name)
                try:
                    await self.sync_repository(fetcher, repository, report)
                except Exception as e:
                    message = f"{repository.full_name}: {e}"
                    logger.warning(f"Sync failed for {message}")
                    report.errors.append(message)
                # Rows inserted before a failure stay stored, so they count.
                result.new_commits += report.inserted
                result.errors.extend(report.errors)

            await self.checkpoints.advance_global(self.clock())
            logger.info(
                f"Sync finished: {result.new_commits} new commits, "
                f"{len(result.errors)} errors"
            )
            return result
        finally:
            await fetcher.close()

    async def sync_repository(
        self,
        fetcher: HistoryFetcher,
        repository: Repository,
        report: Optional[RepositorySyncReport] = None,
    ) -> RepositorySyncReport:
        """Sync one repository while holding its guard.

        Counts are written into ``report`` as work happens, so a caller that
        passes one in keeps them when the pass raises.
        """
        if report is None:
            report = RepositorySyncReport(repository=repository.full_name)
        async with self.lock_provider.guard(f"repository:{repository.id}"):
            # Re-read under the guard so a pass that waited sees the checkpoint
            # written by the pass it waited for.
            current = await self.store.get_repository(repository.id)
            if current is None or not current.is_active:
                logger.info(f"Skipping {repository.full_name}: no longer active")
                return report

            since = self.checkpoints.effective_since(current, self.clock())
            candidates = await fetcher.list_commits_since(current.owner, current.name, since)

            for candidate in candidates:
                if await self.store.get_commit_by_sha(candidate.sha) is not None:
                    report.skipped += 1
                    continue

                try:
                    detail = await fetcher.get_commit_detail(current.owner, current.name, candidate.sha)
                except FetchError as e:
                    report.failed += 1
                    message = f"{current.full_name}: commit {candidate.sha[:7]}: {e}"
                    report.errors.append(message)
                    logger.warning(f"Detail fetch failed for {message}")
                    continue

                await self.store.create_commit(detail.to_commit_create(current.id))
                report.inserted += 1

            updated = await self.checkpoints.advance_repository(
                current, self.clock(), had_failures=report.failed > 0
            )
            report.checkpoint_advanced = updated is not None

        logger.info(
            f"Synced {report.repository}: {report.inserted} inserted, "
            f"{report.skipped} already stored, {report.failed} failed"
        )
        return report


__all__ = ["SyncOrchestrator", "RepositorySyncReport"]
