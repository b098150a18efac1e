"""
Redis client management for the opphub API server.

Holds the async Redis client and the cache of resolved user role sets.
Follows the same lifecycle pattern as db/session.py.
"""

import json

import redis.asyncio as aioredis

from opphub.config import settings
from opphub.logging_config import get_logger

logger = get_logger(__name__)

USER_ROLES_PREFIX = "opphub:user_roles:"

# Module-level client reference, initialized in lifespan
_redis: aioredis.Redis | None = None


async def init_redis() -> None:
    """Initialize Redis connection pool."""
    global _redis  # noqa: PLW0603
    logger.info("Initializing Redis connection")
    _redis = aioredis.from_url(
        str(settings.redis_url),
        decode_responses=True,
    )
    await _redis.ping()
    logger.info("Redis connection established")


async def close_redis() -> None:
    """Close Redis connection pool."""
    global _redis  # noqa: PLW0603
    if _redis is not None:
        logger.info("Closing Redis connection pool")
        await _redis.aclose()
        _redis = None


def get_redis_client() -> aioredis.Redis:
    """Return the Redis client. Raises if not initialized."""
    if _redis is None:
        raise RuntimeError("Redis client not initialized — call init_redis() first")
    return _redis


async def get_cached_roles(email: str) -> list[str] | None:
    cached = await get_redis_client().get(USER_ROLES_PREFIX + email)
    if cached is None:
        return None
    return json.loads(cached)


async def cache_roles(email: str, roles: list[str]) -> None:
    await get_redis_client().set(
        USER_ROLES_PREFIX + email,
        json.dumps(roles),
        ex=settings.auth.role_cache_ttl_seconds,
    )


async def invalidate_roles(email: str) -> None:
    """Drop a user's cached role set after their memberships change."""
    await get_redis_client().delete(USER_ROLES_PREFIX + email)


async def get_redis_health() -> bool:
    """Check Redis health for readiness probe."""
    try:
        if _redis is None:
            return False
        await _redis.ping()
        return True
    except Exception as e:
        logger.error("Redis health check failed", error=str(e))
        return False
