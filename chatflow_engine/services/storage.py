"""
Key-value storage services.

InMemoryStore serves tests and single-process use; RedisStore keeps values as
JSON in Redis so executor state (memory, caches, rate limits) survives
restarts and is shared between workers.
"""

import copy
import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from chatflow_engine.config import get_settings
from chatflow_engine.config.settings import Settings, StorageBackend
from chatflow_engine.services.base import StorageError

logger = logging.getLogger(__name__)


class InMemoryStore:
    """KeyValueStore held in a dict. Values are copied on read and write."""

    def __init__(self, initial: Optional[dict[str, Any]] = None):
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, key: str) -> Any:
        return copy.deepcopy(self._data.get(key))

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


class RedisStore:
    """
    KeyValueStore backed by Redis.

    Values are JSON encoded; every key gets the configured prefix.
    """

    def __init__(
        self,
        client: redis.Redis,
        key_prefix: str = "chatflow:",
        ttl: Optional[int] = None,
    ):
        self.client = client
        self.key_prefix = key_prefix
        self.ttl = ttl

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Any:
        try:
            data = await self.client.get(self._key(key))
        except RedisError as e:
            raise StorageError(f"Failed to read '{key}': {e}") from e

        if data is None:
            return None
        try:
            return json.loads(data)
        except ValueError:
            logger.warning(f"Discarding non-JSON value stored at '{key}'")
            return None

    async def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value, default=str)
        try:
            if self.ttl:
                await self.client.setex(self._key(key), self.ttl, payload)
            else:
                await self.client.set(self._key(key), payload)
        except RedisError as e:
            raise StorageError(f"Failed to write '{key}': {e}") from e

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(self._key(key))
        except RedisError as e:
            raise StorageError(f"Failed to delete '{key}': {e}") from e


def create_redis_client(settings: Optional[Settings] = None) -> redis.Redis:
    """Create a Redis client from settings (connection is lazy)."""
    settings = settings or get_settings()
    return redis.from_url(
        settings.redis.url,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=True,
    )


def create_store(settings: Optional[Settings] = None):
    """Build the configured KeyValueStore."""
    settings = settings or get_settings()
    if settings.storage.backend == StorageBackend.REDIS:
        return RedisStore(
            create_redis_client(settings),
            key_prefix=settings.redis.key_prefix,
            ttl=settings.redis.default_ttl,
        )
    return InMemoryStore()
