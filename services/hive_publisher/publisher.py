"""
Hive publisher.

A post is one ``comment`` operation plus a ``comment_options`` operation,
signed with the account's posting key and broadcast through lighthive.
lighthive is synchronous, so every call runs in a worker thread bounded by
the configured timeout.

``publish`` never raises: any failure comes back as
``PublishResult(success=False, error=...)`` so the draft survives.
"""

import asyncio
import json
import logging
import re
import unicodedata
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from lighthive.client import Client
from lighthive.datastructures import Operation

from config.settings import HiveSettings
from shared.errors import SetupError
from shared.models import PostDraft, PublishResult, utc_now

logger = logging.getLogger(__name__)

PERMLINK_SLUG_LENGTH = 35
FALLBACK_SLUG = "devlog-update"
MAX_TAGS = 10


class Publisher(ABC):
    """Writes finished posts to an external network."""

    @abstractmethod
    async def publish(self, draft: PostDraft) -> PublishResult:
        """Publish ``draft``; failures are returned, not raised."""

    async def validate_account(self) -> bool:
        return True


def generate_permlink(title: str, now: Optional[datetime] = None) -> str:
    """URL-safe slug of ``title`` plus a millisecond timestamp suffix."""
    now = now or utc_now()
    slug = unicodedata.normalize("NFD", title.lower())
    slug = "".join(ch for ch in slug if not unicodedata.combining(ch))
    slug = re.sub(r"[^a-z0-9\s-]", "", slug).strip()
    slug = re.sub(r"\s+", "-", slug).strip("-")
    slug = re.sub(r"-+", "-", slug)
    slug = slug[:PERMLINK_SLUG_LENGTH].rstrip("-") or FALLBACK_SLUG

    timestamp = int(now.timestamp() * 1000)
    return re.sub(r"[^a-z0-9-]", "", f"{slug}-{timestamp}")


def normalize_tags(tags: List[str]) -> List[str]:
    """Hive tags: lowercase, hyphenated, unique, at most ten."""
    normalized: List[str] = []
    for tag in tags:
        tag = re.sub(r"\s+", "-", tag.strip().lstrip("#").lower())
        tag = re.sub(r"[^a-z0-9-]", "", tag).strip("-")
        if tag and tag not in normalized:
            normalized.append(tag)
    return normalized[:MAX_TAGS]


def _describe(error: Exception) -> str:
    return str(error) or type(error).__name__


class HivePublisher(Publisher):
    """Publisher for the Hive blockchain."""

    def __init__(
        self,
        username: str,
        client: Client,
        app_name: str = "devlog-bot/1.0.0",
        community_tag: str = "devlog",
        frontend_url: str = "https://hive.blog",
        beneficiaries: Optional[List[Dict[str, Any]]] = None,
        max_attempts: int = 3,
        timeout: float = 30.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.username = username
        self.client = client
        self.app_name = app_name
        self.community_tag = community_tag
        self.frontend_url = frontend_url.rstrip("/")
        self.beneficiaries = beneficiaries or []
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: HiveSettings, client: Optional[Client] = None) -> "HivePublisher":
        if not settings.username:
            raise SetupError("Hive username not configured (set HIVE_USERNAME)")
        if settings.posting_key is None or not settings.posting_key.get_secret_value().strip():
            raise SetupError("Hive posting key not configured (set HIVE_POSTING_KEY)")
        if client is None:
            client = Client(
                nodes=[settings.api_url],
                keys=[settings.posting_key.get_secret_value()],
            )
        return cls(
            username=settings.username,
            client=client,
            app_name=settings.app_name,
            community_tag=settings.community_tag,
            frontend_url=settings.frontend_url,
            beneficiaries=settings.beneficiaries,
            max_attempts=settings.permlink_max_attempts,
            timeout=settings.timeout,
        )

    async def _call(self, func, *args):
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)

    def post_url(self, permlink: str) -> str:
        return f"{self.frontend_url}/@{self.username}/{permlink}"

    async def permlink_exists(self, permlink: str) -> bool:
        content = await self._call(self.client.get_content, self.username, permlink)
        return bool(content and content.get("author"))

    async def reserve_permlink(self, title: str) -> str:
        """First permlink for ``title`` that the account has not used yet."""
        base = generate_permlink(title, self.clock())
        candidate = base
        for attempt in range(1, self.max_attempts + 1):
            if not await self.permlink_exists(candidate):
                return candidate
            logger.warning(f"Permlink {candidate} already taken")
            candidate = f"{base}-{attempt}"
        raise ValueError(f"No free permlink for {title!r} after {self.max_attempts} attempts")

    def build_operations(self, draft: PostDraft, permlink: str) -> List[Operation]:
        tags = normalize_tags(draft.tags) or [self.community_tag]
        comment = Operation("comment", {
            "parent_author": "",
            "parent_permlink": tags[0],
            "author": self.username,
            "permlink": permlink,
            "title": draft.title,
            "body": draft.content,
            "json_metadata": json.dumps({
                "tags": tags,
                "app": self.app_name,
                "format": "markdown",
            }),
        })
        extensions = []
        if self.beneficiaries:
            extensions = [[0, {"beneficiaries": [
                {"account": b["account"], "weight": int(b["weight"])} for b in self.beneficiaries
            ]}]]
        options = Operation("comment_options", {
            "author": self.username,
            "permlink": permlink,
            "max_accepted_payout": "1000000.000 HBD",
            "percent_hbd": 10000,
            "allow_votes": True,
            "allow_curation_rewards": True,
            "extensions": extensions,
        })
        return [comment, options]

    async def publish(self, draft: PostDraft) -> PublishResult:
        try:
            permlink = await self.reserve_permlink(draft.title)
            operations = self.build_operations(draft, permlink)
            result = await self._call(self.client.broadcast, operations)
        except Exception as e:
            logger.error(f"Error publishing to Hive: {_describe(e)}")
            return PublishResult(success=False, error=f"Failed to publish to Hive: {_describe(e)}")

        post_id = None
        if isinstance(result, dict):
            post_id = result.get("id") or result.get("trx_id")
        post_id = post_id or f"@{self.username}/{permlink}"

        logger.info(f"Published @{self.username}/{permlink}")
        return PublishResult(
            success=True,
            post_id=str(post_id),
            url=self.post_url(permlink),
            permlink=permlink,
        )

    async def validate_account(self) -> bool:
        """Whether the publishing account exists on chain."""
        try:
            accounts = await self._call(self.client.get_accounts, [self.username])
        except Exception as e:
            logger.warning(f"Error fetching Hive account {self.username}: {_describe(e)}")
            return False
        return bool(accounts)


def build_publisher(settings: HiveSettings) -> HivePublisher:
    """Factory used by the app; raises ``SetupError`` without credentials."""
    return HivePublisher.from_settings(settings)


__all__ = [
    "Publisher",
    "HivePublisher",
    "generate_permlink",
    "normalize_tags",
    "build_publisher",
]
