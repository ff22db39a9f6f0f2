"""
File-backed config documents.

``config.json`` holds the bot settings and the last sync time;
``repos.json`` holds the ordered repository list. Both are read and written
as whole documents with camelCase keys.
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from pydantic import ValidationError

from config.settings import FileSettings
from shared.models import BotConfigData, RepositoryConfig, ensure_utc

logger = logging.getLogger(__name__)


class ConfigManager:
    """Reads and writes the bot settings and repository list documents."""

    def __init__(
        self,
        config_path: str = "config.json",
        repositories_path: str = "repos.json",
        default_hive_username: Optional[str] = None,
    ):
        self.config_path = Path(config_path)
        self.repositories_path = Path(repositories_path)
        self.default_hive_username = default_hive_username or ""

    @classmethod
    def from_settings(
        cls, settings: FileSettings, default_hive_username: Optional[str] = None
    ) -> "ConfigManager":
        return cls(settings.config_path, settings.repositories_path, default_hive_username)

    def _read_json(self, path: Path) -> Optional[Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            logger.info(f"{path} not found, using defaults")
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read {path}, using defaults: {e}")
        return None

    def _write_json(self, path: Path, data: Any) -> None:
        """Replace ``path`` atomically with ``data``."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(tmp_name, path)
        except Exception:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def default_config(self) -> BotConfigData:
        return BotConfigData(hive_username=self.default_hive_username)

    def load_config(self) -> BotConfigData:
        data = self._read_json(self.config_path)
        if not isinstance(data, dict):
            return self.default_config()
        try:
            config = BotConfigData.model_validate(data)
        except ValidationError as e:
            logger.warning(f"Invalid {self.config_path}, using defaults: {e}")
            return self.default_config()
        if not config.hive_username:
            config.hive_username = self.default_hive_username
        return config

    def save_config(self, config: BotConfigData) -> None:
        self._write_json(self.config_path, config.model_dump(by_alias=True, exclude_none=True))
        logger.info(f"Saved bot config to {self.config_path}")

    def load_repositories(self) -> List[RepositoryConfig]:
        data = self._read_json(self.repositories_path)
        if not isinstance(data, list):
            return []

        repositories = []
        for entry in data:
            try:
                repositories.append(RepositoryConfig.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Skipping invalid entry in {self.repositories_path}: {e}")
        return repositories

    def save_repositories(self, repositories: List[RepositoryConfig]) -> None:
        self._write_json(
            self.repositories_path,
            [repo.model_dump(by_alias=True, exclude_none=True) for repo in repositories],
        )
        logger.info(f"Saved {len(repositories)} repositories to {self.repositories_path}")

    @staticmethod
    def _key(owner: str, name: str):
        return owner.lower(), name.lower()

    def upsert_repository(self, repository: RepositoryConfig) -> List[RepositoryConfig]:
        """Replace the entry with the same owner/name, or append a new one."""
        repositories = self.load_repositories()
        key = self._key(repository.owner, repository.name)
        for index, existing in enumerate(repositories):
            if self._key(existing.owner, existing.name) == key:
                repositories[index] = repository
                break
        else:
            repositories.append(repository)
        self.save_repositories(repositories)
        return repositories

    def remove_repository(self, owner: str, name: str) -> List[RepositoryConfig]:
        repositories = self.load_repositories()
        remaining = [r for r in repositories if self._key(r.owner, r.name) != self._key(owner, name)]
        if len(remaining) != len(repositories):
            self.save_repositories(remaining)
        return remaining

    def update_last_sync_time(self, timestamp: datetime) -> BotConfigData:
        config = self.load_config()
        config.last_sync_time = ensure_utc(timestamp).isoformat().replace("+00:00", "Z")
        self.save_config(config)
        return config


__all__ = ["ConfigManager"]
