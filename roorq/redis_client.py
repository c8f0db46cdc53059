import logging
from dataclasses import dataclass

import redis.asyncio as redis
from redis.exceptions import RedisError

from roorq.config import settings

logger = logging.getLogger(__name__)

_redis: redis.Redis | None = None


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    retry_after: int | None = None


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


async def apply_rate_limit(
    identifier: str,
    limit_type: str,
    max_attempts: int,
    window_seconds: int,
    *,
    block_seconds: int | None = None,
    increment: int = 1,
) -> RateLimitResult:
    """
    Fixed-window counter: INCRBY the key, start the window (EXPIRE) on the first hit.
    Over max_attempts -> not allowed, retry_after = remaining TTL. With block_seconds the
    identifier is also locked out for that long, even once the window rolls over.
    increment=0 only checks the current count (used before verifying a code).
    Fails open if Redis is unreachable.
    """
    key = f"ratelimit:{limit_type}:{identifier}"
    block_key = f"ratelimit:blocked:{limit_type}:{identifier}"
    try:
        r = await get_redis()
        if block_seconds:
            blocked_ttl = await r.ttl(block_key)
            if blocked_ttl and blocked_ttl > 0:
                return RateLimitResult(allowed=False, retry_after=blocked_ttl)

        if increment:
            count = await r.incrby(key, increment)
            if count == increment:
                await r.expire(key, window_seconds)
        else:
            count = int(await r.get(key) or 0)

        if count > max_attempts:
            if block_seconds:
                await r.set(block_key, "1", ex=block_seconds)
                return RateLimitResult(allowed=False, retry_after=block_seconds)
            ttl = await r.ttl(key)
            return RateLimitResult(allowed=False, retry_after=ttl if ttl and ttl > 0 else window_seconds)
    except RedisError as e:
        logger.warning("Rate limit check skipped for %s (redis error: %s)", key, e)
    return RateLimitResult(allowed=True)


async def clear_rate_limit(identifier: str, limit_type: str) -> None:
    try:
        r = await get_redis()
        await r.delete(f"ratelimit:{limit_type}:{identifier}", f"ratelimit:blocked:{limit_type}:{identifier}")
    except RedisError as e:
        logger.warning("Could not clear rate limit %s:%s (redis error: %s)", limit_type, identifier, e)
