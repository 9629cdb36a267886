import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Callable

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

import config
from cache import Cache, NullCache, RateLimiter

logger = logging.getLogger(__name__)


def get_cache(request: Request) -> Cache:
    return getattr(request.app.state, "cache", None) or NullCache()


async def rate_limit_middleware(request: Request, call_next):
    if not request.url.path.startswith("/api/"):
        return await call_next(request)

    limit, window = config.RATE_LIMIT_MAX, config.RATE_LIMIT_WINDOW
    identifier = request.client.host if request.client else "unknown"
    result = await RateLimiter(get_cache(request)).is_exceeded(identifier, limit, window)
    headers = {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": datetime.fromtimestamp(result.reset_time, tz=timezone.utc).isoformat(),
    }
    if result.exceeded:
        retry_after = max(1, math.ceil(result.reset_time - time.time()))
        logger.warning(f"Rate limit exceeded for {identifier} on {request.url.path}")
        return JSONResponse(
            status_code=429,
            headers={**headers, "Retry-After": str(retry_after)},
            content={
                "error": "Too Many Requests",
                "message": f"Rate limit exceeded. Try again in {retry_after} seconds.",
                "retry_after": retry_after,
            },
        )

    response = await call_next(request)
    response.headers.update(headers)
    return response


def cache_key(request: Request) -> str:
    query = request.url.query
    return f"cache:{request.url.path}" + (f"?{query}" if query else "")


async def cached_json(request: Request, producer: Callable[[], Any], ttl: int = config.CACHE_TTL) -> JSONResponse:
    """Serve a GET body from cache, or produce it and store it for `ttl` seconds."""
    cache = get_cache(request)
    key = cache_key(request)
    hit = await cache.get(key)
    if hit is not None:
        return JSONResponse(content=hit, headers={"X-Cache": "HIT", "X-Cache-TTL": str(await cache.ttl(key))})

    data = producer()
    body = jsonable_encoder(data)
    await cache.set(key, body, ttl)
    return JSONResponse(content=body, headers={"X-Cache": "MISS", "X-Cache-TTL": str(ttl)})


async def invalidate(request: Request, *prefixes: str) -> None:
    cache = get_cache(request)
    for prefix in prefixes:
        await cache.delete_pattern(f"cache:{prefix}*")
