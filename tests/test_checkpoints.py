"""
Unit tests for sync checkpoints.
"""

from datetime import timedelta

from config.settings import CheckpointPolicy
from services.commit_sync.checkpoints import GLOBAL_CHECKPOINT_KEY, CheckpointManager
from services.dashboard_api.config_manager import ConfigManager
from shared.models import RepositoryCreate


class TestCheckpointManager:
    """Test cases for CheckpointManager."""

    async def test_effective_since_without_checkpoint(self, store, now):
        repo = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))
        manager = CheckpointManager(store, lookback_days=3)

        assert manager.effective_since(repo, now) == now - timedelta(days=3)

    async def test_effective_since_uses_checkpoint(self, store, now):
        repo = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))
        repo = await store.update_repository(repo.id, {"last_sync_time": now - timedelta(hours=1)})

        assert CheckpointManager(store).effective_since(repo, now) == now - timedelta(hours=1)

    def test_should_advance_policies(self, store):
        always = CheckpointManager(store, CheckpointPolicy.ADVANCE_ALWAYS)
        on_success = CheckpointManager(store, CheckpointPolicy.ADVANCE_ON_SUCCESS)

        assert always.should_advance(had_failures=True) is True
        assert on_success.should_advance(had_failures=False) is True
        assert on_success.should_advance(had_failures=True) is False

    async def test_advance_repository_is_monotonic(self, store, now):
        repo = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))
        manager = CheckpointManager(store)

        repo = await manager.advance_repository(repo, now)
        repo = await manager.advance_repository(repo, now - timedelta(days=1))

        assert repo.last_sync_time == now

    async def test_advance_repository_blocked_by_policy(self, store, now):
        repo = await store.create_repository(RepositoryCreate(owner="acme", name="widgets"))
        manager = CheckpointManager(store, CheckpointPolicy.ADVANCE_ON_SUCCESS)

        assert await manager.advance_repository(repo, now, had_failures=True) is None
        assert (await store.get_repository(repo.id)).last_sync_time is None

    async def test_global_checkpoint_round_trip(self, store, now):
        manager = CheckpointManager(store)
        assert await manager.get_global() is None

        await manager.advance_global(now)
        await manager.advance_global(now - timedelta(hours=5))

        assert await manager.get_global() == now

    async def test_unparseable_global_checkpoint_ignored(self, store):
        await store.set_config(GLOBAL_CHECKPOINT_KEY, "yesterday-ish")
        assert await CheckpointManager(store).get_global() is None

    async def test_global_checkpoint_mirrored_to_config_document(self, store, now, tmp_path):
        config_manager = ConfigManager(
            str(tmp_path / "config.json"), str(tmp_path / "repos.json")
        )
        manager = CheckpointManager(store, config_manager=config_manager)

        await manager.advance_global(now)

        assert config_manager.load_config().last_sync_time == "2024-01-15T12:00:00Z"

    async def test_unwritable_config_document_keeps_store_checkpoint(self, store, now, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        config_manager = ConfigManager(
            str(blocker / "config.json"), str(tmp_path / "repos.json")
        )
        manager = CheckpointManager(store, config_manager=config_manager)

        assert await manager.advance_global(now) == now
        assert await manager.get_global() == now
