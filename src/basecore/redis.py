"""
Redis client utilities for basecore.

Provides lazy-initialized Redis client to avoid import-time connections.
"""

import functools

import redis

from basecore.settings import get_settings


@functools.lru_cache()
def get_redis_client() -> redis.Redis | None:
    """
    Get Redis client (cached).

    Returns None when REDIS_URL is not configured; callers treat Redis-backed
    features as disabled in that case.
    """
    settings = get_settings()
    url = settings.REDIS_URL
    if not url:
        return None
    return redis.from_url(
        url,
        decode_responses=True,
        socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
        socket_timeout=settings.REDIS_SOCKET_TIMEOUT_SECONDS,
    )
