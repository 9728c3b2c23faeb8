"""Redis clients for the receipt task queue"""
import asyncio
import logging

import redis
import redis.asyncio as aioredis

from payhook.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None
_async_client = None


def get_redis_client():
    """Get or create Redis client (lazy initialization)

    This prevents connection attempts during import, allowing mocks to be applied first.
    """
    global _client
    if _client is None:
        _client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _client


def get_async_redis_client():
    """Get or create async Redis client (lazy initialization)

    Recreates the client if it is bound to a different event loop, which
    happens when tests create new event loops.
    """
    global _async_client

    try:
        current_loop = asyncio.get_running_loop()
    except RuntimeError:
        return None

    if _async_client is not None:
        client_loop = getattr(_async_client.connection_pool, '_loop', None)
        if client_loop is not current_loop:
            _async_client = None

    if _async_client is None:
        _async_client = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=20
        )
        _async_client.connection_pool._loop = current_loop

    return _async_client


def ping() -> bool:
    """Check Redis connectivity without raising"""
    try:
        return bool(get_redis_client().ping())
    except redis.RedisError as e:
        logger.error(f"Redis connection failed: {e}")
        return False
