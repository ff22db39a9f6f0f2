"""
Sync checkpoints.

Two checkpoints exist: ``last_sync_time`` on each repository, which bounds the
next fetch window, and a global ``lastSyncTime`` entry in the bot config,
which is only shown to users. Both only ever move forward.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, TYPE_CHECKING

from config.settings import CheckpointPolicy
from shared.database import CommitStore
from shared.models import Repository, ensure_utc

if TYPE_CHECKING:
    from services.dashboard_api.config_manager import ConfigManager

logger = logging.getLogger(__name__)

GLOBAL_CHECKPOINT_KEY = "lastSyncTime"


class CheckpointManager:
    """Reads and advances sync checkpoints through the commit store."""

    def __init__(
        self,
        store: CommitStore,
        policy: CheckpointPolicy = CheckpointPolicy.ADVANCE_ALWAYS,
        lookback_days: int = 7,
        config_manager: Optional["ConfigManager"] = None,
    ):
        self.store = store
        self.policy = policy
        self.lookback_days = lookback_days
        self.config_manager = config_manager

    def effective_since(self, repository: Repository, now: datetime) -> datetime:
        """Lower bound of the next fetch for ``repository``."""
        if repository.last_sync_time is not None:
            return ensure_utc(repository.last_sync_time)
        return ensure_utc(now) - timedelta(days=self.lookback_days)

    def should_advance(self, had_failures: bool) -> bool:
        if self.policy == CheckpointPolicy.ADVANCE_ON_SUCCESS:
            return not had_failures
        return True

    async def advance_repository(
        self, repository: Repository, now: datetime, had_failures: bool = False
    ) -> Optional[Repository]:
        """Move the repository checkpoint to ``now`` if the policy allows it.

        Returns the updated repository, or None when nothing was written.
        """
        if not self.should_advance(had_failures):
            logger.info(
                f"Keeping checkpoint of {repository.full_name} after failed commits "
                f"(policy {self.policy.value})"
            )
            return None

        target = ensure_utc(now)
        if repository.last_sync_time is not None:
            target = max(target, ensure_utc(repository.last_sync_time))
        return await self.store.update_repository(repository.id, {"last_sync_time": target})

    async def get_global(self) -> Optional[datetime]:
        value = await self.store.get_config(GLOBAL_CHECKPOINT_KEY)
        if not value:
            return None
        try:
            return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            logger.warning(f"Ignoring unparseable {GLOBAL_CHECKPOINT_KEY} value: {value!r}")
            return None

    async def advance_global(self, now: datetime) -> datetime:
        """Record the end of a full sync invocation."""
        target = ensure_utc(now)
        previous = await self.get_global()
        if previous is not None:
            target = max(target, previous)

        await self.store.set_config(GLOBAL_CHECKPOINT_KEY, target.isoformat())
        if self.config_manager is not None:
            # The store entry is authoritative; config.json only mirrors it.
            try:
                self.config_manager.update_last_sync_time(target)
            except OSError as e:
                logger.warning(f"Could not mirror {GLOBAL_CHECKPOINT_KEY} to config file: {e}")
        return target


__all__ = ["CheckpointManager", "GLOBAL_CHECKPOINT_KEY"]
