"""
Config persistence backends.

A backend stores one shared config for the whole fleet. ``fetch`` returning
``None`` means nothing was seeded yet; ``upsert`` raises ``ConfigSyncError``
when the write did not happen. There is no locking between processes; the
last write wins.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import redis.asyncio as redis

from shared.errors import ConfigSyncError
from shared.logging import get_logger
from .config import SessionConfig


class ConfigDB(ABC):
    """Interface for syncing the session config across processes."""

    @abstractmethod
    async def fetch(self) -> Optional[SessionConfig]:
        """Return the stored config, or None if none was stored yet."""

    @abstractmethod
    async def upsert(self, config: SessionConfig) -> None:
        """Insert or replace the stored config."""


class InMemoryConfigDB(ConfigDB):
    """Process-local backend; several schedulers may share one instance."""

    def __init__(self, config: Optional[SessionConfig] = None):
        self._document: Optional[Dict[str, Any]] = config.to_document() if config else None
        self._lock = asyncio.Lock()
        self.upserts = 0

    async def fetch(self) -> Optional[SessionConfig]:
        async with self._lock:
            if self._document is None:
                return None
            return SessionConfig.from_document(self._document)

    async def upsert(self, config: SessionConfig) -> None:
        async with self._lock:
            self._document = config.to_document()
            self.upserts += 1


class RedisConfigDB(ConfigDB):
    """Stores the config document as JSON under a single Redis key."""

    def __init__(self, redis_url: str, key: str = "secure-session:config",
                 client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.key = key
        self.redis: Optional[redis.Redis] = client
        self.logger = get_logger("session.persistence.redis")

    def _client(self) -> redis.Redis:
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
            )
        return self.redis

    async def close(self):
        """Close the Redis connection."""
        if self.redis is not None:
            await self.redis.close()
            self.redis = None
            self.logger.info("Redis config backend closed")

    async def fetch(self) -> Optional[SessionConfig]:
        try:
            raw = await self._client().get(self.key)
        except redis.RedisError as e:
            raise ConfigSyncError("Failed to fetch config from Redis", details={"error": str(e)})
        if raw is None:
            return None
        try:
            document = json.loads(raw)
        except ValueError as e:
            raise ConfigSyncError("Stored config is not valid JSON", details={"error": str(e)})
        return SessionConfig.from_document(document)

    async def upsert(self, config: SessionConfig) -> None:
        try:
            await self._client().set(self.key, json.dumps(config.to_document()))
        except redis.RedisError as e:
            raise ConfigSyncError("Failed to store config in Redis", details={"error": str(e)})
