"""Redis-backed cache provider using ``redis.asyncio``.

Values are stored as JSON strings so that any process sharing the Redis
instance can read them.  Every ``redis.RedisError`` (connection refused,
timeout, server error) and every undecodable payload is re-raised as
:class:`~src.utils.errors.CacheError`; the engine treats that as a miss.
"""

from __future__ import annotations

import json
from typing import Any

import structlog
from redis import asyncio as aioredis
from redis.exceptions import RedisError

from src.interfaces.cache_provider import ICacheProvider
from src.utils.errors import CacheError

logger = structlog.get_logger(logger_name=__name__)


class RedisCacheProvider(ICacheProvider):
    """Shared cache in Redis.

    Parameters
    ----------
    url:
        Redis connection URL, e.g. ``redis://localhost:6379/0``.
    ttl:
        Default time-to-live in seconds when ``set`` is called without one.
    client:
        Pre-built ``redis.asyncio.Redis`` client.  When given, *url* is
        ignored; tests pass a mock here.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        ttl: int = 300,
        client: aioredis.Redis | None = None,
    ) -> None:
        self._default_ttl = ttl
        self._client = client or aioredis.from_url(url, decode_responses=True, encoding="utf-8")

    async def get(self, key: str) -> Any | None:
        try:
            raw = await self._client.get(key)
        except RedisError as exc:
            raise CacheError(message=f"GET {key} failed: {exc}", component="redis") from exc
        if raw is None:
            logger.debug("cache_miss", key=key)
            return None
        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise CacheError(
                message=f"Undecodable payload under {key}: {exc}", component="redis"
            ) from exc
        logger.debug("cache_hit", key=key)
        return value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        effective_ttl = self._default_ttl if ttl is None else ttl
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            raise CacheError(
                message=f"Value for {key} is not JSON-serialisable: {exc}", component="redis"
            ) from exc
        try:
            if effective_ttl > 0:
                await self._client.set(key, payload, ex=effective_ttl)
            else:
                await self._client.delete(key)
        except RedisError as exc:
            raise CacheError(message=f"SET {key} failed: {exc}", component="redis") from exc
        logger.debug("cache_set", key=key, ttl=effective_ttl)

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(key)
        except RedisError as exc:
            raise CacheError(message=f"DEL {key} failed: {exc}", component="redis") from exc

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self._client.exists(key))
        except RedisError as exc:
            raise CacheError(message=f"EXISTS {key} failed: {exc}", component="redis") from exc

    async def close(self) -> None:
        """Release the underlying connection pool."""
        await self._client.aclose()
