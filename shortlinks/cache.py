"""Redis client management and the link cache layer.

This module provides a lazily created Redis client plus ``RedisLinkCache``,
the disposable projection of servable links used to accelerate redirects.

Keyspace Layout
===============
::
    url:{code}      → target URL            (SET ... EX ttl)
    clicks:{code}   → integer click counter (INCR, no TTL)

Flow Diagram — Redis Operations
=============================
::
    ┌─────────────┐
    │  Engine     │
    │  operation  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ RedisLink-  │
    │ Cache call  │
    └──────┬──────┘
     OK?   │
    ┌──────┴──────┐
    │ NO          │ YES
    ▼             ▼
┌──────────┐  ┌─────────┐
│ raise    │  │ return  │
│CacheError│  │ value   │
└──────────┘  └─────────┘

How to Use
===========
**Step 1 — Build from the shared client**::
    cache = RedisLinkCache(await get_redis())

**Step 2 — Write-through after a create**::
    await cache.set(link.code, link.target, settings.CACHE_TTL_SECONDS)

**Step 3 — Cleanup on shutdown**::
    await close_redis()

Key Behaviours
===============
- A miss never means "no such link"; callers fall back to the record store.
- The engine is the only writer; last write wins per key.
- Every ``redis.RedisError`` is re-raised as ``CacheError`` so callers can
  swallow cache failures without importing redis.

Functions:
    get_redis():  FastAPI dependency for the shared Redis client.
    close_redis():  Cleanup function for shutdown.
"""

import redis.asyncio as redis
from redis.exceptions import RedisError

from shortlinks.config import get_settings
from shortlinks.errors import CacheError

__all__ = ["RedisLinkCache", "clicks_key", "close_redis", "get_redis", "url_key"]

settings = get_settings()

redis_client: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global redis_client
    if redis_client is None:
        redis_client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
    return redis_client


async def close_redis() -> None:
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None


def url_key(code: str) -> str:
    return f"url:{code}"


def clicks_key(code: str) -> str:
    return f"clicks:{code}"


class RedisLinkCache:
    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    async def ping(self) -> None:
        try:
            await self._client.ping()
        except RedisError as exc:
            raise CacheError(f"redis ping failed: {exc}") from exc

    async def set(self, code: str, target: str, ttl: int) -> None:
        assert ttl > 0, f"ttl must be positive, got {ttl!r}"
        try:
            await self._client.set(url_key(code), target, ex=ttl)
        except RedisError as exc:
            raise CacheError(f"failed to cache {code!r}: {exc}") from exc

    async def get(self, code: str) -> str | None:
        try:
            return await self._client.get(url_key(code))
        except RedisError as exc:
            raise CacheError(f"failed to read cached {code!r}: {exc}") from exc

    async def delete(self, code: str) -> None:
        try:
            await self._client.delete(url_key(code))
        except RedisError as exc:
            raise CacheError(f"failed to evict {code!r}: {exc}") from exc

    async def incr_count(self, code: str) -> int:
        try:
            return int(await self._client.incr(clicks_key(code)))
        except RedisError as exc:
            raise CacheError(f"failed to increment clicks for {code!r}: {exc}") from exc

    async def get_count(self, code: str) -> int:
        try:
            value = await self._client.get(clicks_key(code))
        except RedisError as exc:
            raise CacheError(f"failed to read clicks for {code!r}: {exc}") from exc
        return int(value) if value else 0

    async def forget_count(self, code: str) -> None:
        """Drop the click counter; used when the link itself is deleted."""
        try:
            await self._client.delete(clicks_key(code))
        except RedisError as exc:
            raise CacheError(f"failed to drop clicks for {code!r}: {exc}") from exc
