"""
Best-effort caching and rate limiting.

Code depends on the `Cache` interface. When Redis is not configured or cannot
be reached, `NullCache` stands in: every read misses, every write is dropped,
and the rate limiter lets every request through. No Redis failure ever blocks
or fails a request.
"""
import json
import logging
import time
from typing import Any, List, NamedTuple, Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class Cache:
    """Async key/value interface. Implementations must not raise."""

    available = False

    async def get(self, key: str) -> Optional[Any]:
        return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        return False

    async def delete(self, key: str) -> bool:
        return False

    async def exists(self, key: str) -> bool:
        return False

    async def expire(self, key: str, ttl: int) -> bool:
        return False

    async def ttl(self, key: str) -> int:
        return -1

    async def incr(self, key: str) -> Optional[int]:
        return None

    async def keys(self, pattern: str) -> List[str]:
        return []

    async def delete_pattern(self, pattern: str) -> int:
        removed = 0
        for key in await self.keys(pattern):
            if await self.delete(key):
                removed += 1
        return removed

    async def ping(self) -> bool:
        return False

    async def close(self) -> None:
        return None


class NullCache(Cache):
    pass


class RedisCache(Cache):
    """JSON-serialising wrapper around a `redis.asyncio` client."""

    available = True

    def __init__(self, client):
        self._client = client

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._client.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except Exception as e:
            logger.error(f"Redis GET error for {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: int = 3600) -> bool:
        try:
            payload = json.dumps(value, default=str)
            if ttl > 0:
                await self._client.setex(key, ttl, payload)
            else:
                await self._client.set(key, payload)
            return True
        except Exception as e:
            logger.error(f"Redis SET error for {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._client.delete(key)
            return True
        except Exception as e:
            logger.error(f"Redis DEL error for {key}: {e}")
            return False

    async def exists(self, key: str) -> bool:
        try:
            return await self._client.exists(key) == 1
        except Exception as e:
            logger.error(f"Redis EXISTS error for {key}: {e}")
            return False

    async def expire(self, key: str, ttl: int) -> bool:
        try:
            await self._client.expire(key, ttl)
            return True
        except Exception as e:
            logger.error(f"Redis EXPIRE error for {key}: {e}")
            return False

    async def ttl(self, key: str) -> int:
        try:
            return await self._client.ttl(key)
        except Exception as e:
            logger.error(f"Redis TTL error for {key}: {e}")
            return -1

    async def incr(self, key: str) -> Optional[int]:
        try:
            return await self._client.incr(key)
        except Exception as e:
            logger.error(f"Redis INCR error for {key}: {e}")
            return None

    async def keys(self, pattern: str) -> List[str]:
        try:
            found = []
            async for key in self._client.scan_iter(match=pattern):
                found.append(key.decode() if isinstance(key, bytes) else key)
            return found
        except Exception as e:
            logger.error(f"Redis SCAN error for {pattern}: {e}")
            return []

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as e:
            logger.error(f"Redis PING error: {e}")
            return False

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")


async def connect_cache(url: str) -> Cache:
    if not url:
        logger.info("REDIS_URL not set; caching and rate limiting disabled")
        return NullCache()
    try:
        client = aioredis.from_url(url, socket_connect_timeout=5, socket_timeout=5, decode_responses=True)
        await client.ping()
        logger.info(f"Redis connected: {url}")
        return RedisCache(client)
    except Exception as e:
        logger.error(f"Redis connection error, continuing without cache: {e}")
        return NullCache()


class RateLimitResult(NamedTuple):
    exceeded: bool
    remaining: int
    reset_time: float  # epoch seconds


class RateLimiter:
    def __init__(self, cache: Cache, prefix: str = "rate_limit:"):
        self.cache = cache
        self.prefix = prefix

    async def is_exceeded(self, identifier: str, limit: int, window: int) -> RateLimitResult:
        reset_time = time.time() + window
        key = f"{self.prefix}{identifier}"
        current = await self.cache.incr(key)
        if current is None:
            return RateLimitResult(exceeded=False, remaining=limit, reset_time=reset_time)
        if current == 1:
            await self.cache.expire(key, window)
        else:
            remaining_ttl = await self.cache.ttl(key)
            if remaining_ttl > 0:
                reset_time = time.time() + remaining_ttl
        return RateLimitResult(
            exceeded=current > limit,
            remaining=max(0, limit - current),
            reset_time=reset_time,
        )
