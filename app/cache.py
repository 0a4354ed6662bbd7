import json
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger
from redis.asyncio import Redis

from app.settings import AVAILABILITY_CACHE_TTL, REDIS_URL

_redis: Redis | None = None


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(REDIS_URL, decode_responses=True)
    return _redis


def _version_key(venue: str) -> str:
    return f"availability:version:{venue}"


def _availability_key(venue: str, version: str, parts: tuple) -> str:
    return ":".join(["availability", venue, version, *(str(p) for p in parts)])


async def _current_version(venue: str) -> str:
    version = await get_redis().get(_version_key(venue))
    return version or "0"


async def read_through(
    venue: str,
    parts: tuple,
    loader: Callable[[], Awaitable[Any]],
) -> Any:
    """
    Return the cached JSON payload for ``parts`` or call ``loader`` and cache
    its result for AVAILABILITY_CACHE_TTL seconds. Keys embed the venue's
    write version, so anything cached before the last hold/booking write for
    the venue is never served again. Redis errors fall through to ``loader``.
    """
    key = None
    try:
        key = _availability_key(venue, await _current_version(venue), parts)
        data = await get_redis().get(key)
        if data:
            logger.debug("Cache hit for availability: {}", key)
            return json.loads(data)
    except Exception:
        logger.warning("Redis get failed, skipping availability cache", exc_info=True)

    logger.debug("Cache miss for availability: venue={} parts={}", venue, parts)
    payload = await loader()

    if key is not None:
        try:
            await get_redis().setex(key, AVAILABILITY_CACHE_TTL, json.dumps(payload))
        except Exception:
            logger.warning("Redis set failed, skipping availability cache", exc_info=True)
    return payload


async def invalidate_availability_cache(venue: str) -> None:
    try:
        await get_redis().incr(_version_key(venue))
    except Exception:
        logger.warning("Redis invalidate failed for availability cache", exc_info=True)
