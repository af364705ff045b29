import json
from typing import Any, Awaitable, Callable
from urllib.parse import quote

import redis.asyncio as redis
from fastapi import Request
from loguru import logger

from core.config import CACHE_TTL_SECONDS, REDIS_URL


def create_redis_client(url: str = REDIS_URL) -> redis.Redis:
    return redis.Redis.from_url(url, decode_responses=True)


def build_cache_key(discriminator: str, *parts) -> str:
    """Join an endpoint discriminator and parameter values into one key.

    Values are percent-encoded so the ``:`` and ``,`` delimiters only ever
    come from the key layout itself. Lists are joined with ``,``.
    """
    def encode(value) -> str:
        if isinstance(value, (list, tuple)):
            return ",".join(encode(v) for v in value)
        return quote(str(value), safe="")

    return ":".join([discriminator, *(encode(p) for p in parts)])


class ReadThroughCache:
    """JSON read-through cache on top of Redis.

    Redis failures are not treated as misses: they propagate to the caller so
    an outage surfaces as an error instead of silently recomputing.
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int = CACHE_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    async def get_or_compute(self, key: str, compute: Callable[[], Awaitable[Any]]) -> Any:
        cached = await self.client.get(key)
        if cached is not None:
            try:
                value = json.loads(cached)
            except json.JSONDecodeError:
                # Invalid cache, recompute
                logger.warning("Discarding unreadable cache entry {}", key)
            else:
                logger.debug("Cache hit: {}", key)
                return value

        logger.debug("Cache miss: {}", key)
        result = await compute()
        await self.client.setex(key, self.ttl_seconds, json.dumps(result))
        return result


def get_cache(request: Request) -> ReadThroughCache:
    return ReadThroughCache(request.app.state.redis)
