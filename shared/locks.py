"""
Mutual exclusion for sync passes.

A repository is only synced by one pass at a time, so the dedup check and the
insert that follows it cannot race. ``LocalLockProvider`` covers a single
process; ``RedisLockProvider`` covers several workers sharing one database.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Dict, AsyncIterator

import redis.asyncio as redis
from redis.exceptions import LockError

from config.settings import RedisSettings
from shared.errors import LockTimeoutError

logger = logging.getLogger(__name__)


class LockProvider(ABC):
    """Hands out a guard per key."""

    @abstractmethod
    def guard(self, key: str) -> AsyncIterator[None]:
        """Async context manager held for the duration of the guarded work."""

    async def close(self) -> None:
        return None


class LocalLockProvider(LockProvider):
    """In-process locks; waiters queue up behind the holder."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def guard(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            logger.info(f"Waiting for sync lock {key}")
        async with lock:
            yield


class RedisLockProvider(LockProvider):
    """Redis locks with a lease so a crashed worker cannot hold a key forever."""

    def __init__(
        self,
        client: redis.Redis,
        timeout: float = 600,
        blocking_timeout: float = 30,
        prefix: str = "devlog:lock",
    ):
        self.client = client
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout
        self.prefix = prefix

    @classmethod
    def from_settings(cls, settings: RedisSettings) -> "RedisLockProvider":
        client = redis.from_url(
            settings.url,
            decode_responses=True,
            socket_connect_timeout=settings.socket_connect_timeout,
            socket_timeout=settings.socket_timeout,
        )
        return cls(client, timeout=settings.lock_timeout, blocking_timeout=settings.blocking_timeout)

    @asynccontextmanager
    async def guard(self, key: str):
        lock = self.client.lock(
            f"{self.prefix}:{key}", timeout=self.timeout, blocking_timeout=self.blocking_timeout
        )
        if not await lock.acquire():
            raise LockTimeoutError(
                f"Could not acquire sync lock {key} within {self.blocking_timeout}s"
            )
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                logger.warning(f"Sync lock {key} expired before release: {e}")

    async def close(self) -> None:
        await self.client.aclose()


def build_lock_provider(settings: RedisSettings) -> LockProvider:
    """Redis locks when ``REDIS_URL`` is configured, in-process locks otherwise."""
    if settings.url:
        logger.info("Using Redis sync locks")
        return RedisLockProvider.from_settings(settings)
    return LocalLockProvider()


__all__ = ["LockProvider", "LocalLockProvider", "RedisLockProvider", "build_lock_provider"]
