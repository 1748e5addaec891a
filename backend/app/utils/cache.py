"""Redis caching utilities for CoffeeTrack reports.

Report endpoints are expensive aggregations over the whole ledger, so
their results are cached in Redis for a short TTL.  Keys are namespaced
by the caller's access scope so a region-scoped caller never reads an
unscoped (or another region's) cached report.

Key layout: r:<region|*>:<prefix>:<function_name>:<args_hash>
"""

import functools
import hashlib
import json
import logging
from datetime import date, datetime
from typing import Callable, Optional

import redis.asyncio as redis
from app.config import settings
from app.database import after_commit
from app.services.scope import get_current_scope_key

logger = logging.getLogger(__name__)

# Global Redis connection pool
_redis_client: Optional[redis.Redis] = None


async def get_redis() -> redis.Redis:
    """Get or create Redis client connection."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=50,
        )
    return _redis_client


async def close_redis():
    """Close Redis connection (call on app shutdown)."""
    global _redis_client
    if _redis_client:
        await _redis_client.close()
        _redis_client = None


def cache_key(*args, **kwargs) -> str:
    """Deterministic hash of the (simple) call arguments."""
    if not args and not kwargs:
        return "default"

    key_data = json.dumps({"args": args, "kwargs": kwargs}, sort_keys=True)
    return hashlib.md5(key_data.encode()).hexdigest()


def _scoped(key: str) -> str:
    return f"r:{get_current_scope_key() or '*'}:{key}"


def _serialize(result):
    if hasattr(result, "model_dump"):
        return result.model_dump(mode="json")
    if isinstance(result, list) and result and hasattr(result[0], "model_dump"):
        return [item.model_dump(mode="json") for item in result]
    return result


def cached(ttl: Optional[int] = None, prefix: str = "reports"):
    """Decorator to cache an endpoint's result in Redis.

    Only simple keyword arguments (query parameters) take part in the
    key; injected dependencies (sessions, callers) and anything starting
    with an underscore are skipped.  When caching is disabled or Redis
    is unavailable the wrapped function is simply called.

    Example:
        @cached(prefix="reports")
        async def payment_analytics(start: date | None = None, db=Depends(get_db)):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            if not settings.cache_enabled:
                return await func(*args, **kwargs)

            cache_kwargs = {}
            for k, v in kwargs.items():
                if k.startswith("_"):
                    continue
                if isinstance(v, (int, str, bool, float, type(None))):
                    cache_kwargs[k] = v
                elif isinstance(v, (date, datetime)):
                    cache_kwargs[k] = v.isoformat()
            key = _scoped(f"{prefix}:{func.__name__}:{cache_key(**cache_kwargs)}")

            try:
                redis_client = await get_redis()
                cached_value = await redis_client.get(key)
                if cached_value:
                    logger.debug("Cache HIT: %s", key)
                    return json.loads(cached_value)
                logger.debug("Cache MISS: %s", key)
            except redis.RedisError as e:
                logger.warning("Redis error (falling back to uncached): %s", e)
                return await func(*args, **kwargs)

            result = await func(*args, **kwargs)
            try:
                await redis_client.setex(
                    key, ttl or settings.report_cache_ttl, json.dumps(_serialize(result)),
                )
            except redis.RedisError as e:
                logger.warning("Redis error while storing %s: %s", key, e)
            return result

        return wrapper

    return decorator


async def invalidate_cache(pattern: str = "reports:*"):
    """Invalidate cached keys matching `pattern` in EVERY scope.

    A ledger write in one region changes the unscoped reports too, so
    invalidation is never limited to the writer's own namespace.

    Example:
        await invalidate_cache("reports:*")
    """
    if not settings.cache_enabled:
        return
    scoped_pattern = f"r:*:{pattern}"
    try:
        redis_client = await get_redis()
        keys = [key async for key in redis_client.scan_iter(match=scoped_pattern)]
        if keys:
            await redis_client.delete(*keys)
            logger.info("Invalidated %d cache keys matching %s", len(keys), scoped_pattern)
    except redis.RedisError as e:
        logger.warning("Failed to invalidate cache: %s", e)


def invalidate_after_commit(db, pattern: str = "reports:*") -> None:
    """Queue invalidate_cache(pattern) to run once `db` has committed."""
    after_commit(db, lambda: invalidate_cache(pattern))
