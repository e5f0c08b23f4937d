"""
Redis Cache Module

Read-through cache for order lookups. The cache never decides an outcome:
when Redis is not initialized or a command fails, reads miss, writes are
dropped and callers go to the database.
"""

import json
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from storefront.config import get_settings

logger = structlog.get_logger(__name__)

_redis_pool: Optional[ConnectionPool] = None
_redis_client: Optional[Redis] = None


async def init_redis() -> Redis:
    """Connect to Redis and verify the connection with a PING."""
    global _redis_pool, _redis_client

    if _redis_client is not None:
        return _redis_client

    settings = get_settings().redis
    pool = ConnectionPool.from_url(
        settings.get_url(),
        max_connections=settings.max_connections,
        socket_timeout=settings.socket_timeout,
        decode_responses=True,
    )
    client = Redis(connection_pool=pool)
    try:
        await client.ping()
    except RedisError:
        await pool.disconnect()
        raise

    _redis_pool, _redis_client = pool, client
    logger.info("Redis connection established", max_connections=settings.max_connections)
    return client


async def close_redis() -> None:
    global _redis_pool, _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
    if _redis_pool is not None:
        await _redis_pool.disconnect()
    _redis_pool = _redis_client = None


def get_redis() -> Redis:
    """
    Raises:
        RuntimeError: If ``init_redis`` has not run (or failed)
    """
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def set_redis(client: Optional[Redis]) -> None:
    """Install (or with None, remove) the client used by the cache."""
    global _redis_client
    _redis_client = client


class CacheManager:
    """
    JSON values under ``<namespace>:<key>`` with a default TTL.

    Example:
        cache = CacheManager("orders", default_ttl=300)
        order = await cache.get_or_set("GP202501150001", load_order)
    """

    def __init__(self, namespace: str, default_ttl: int = 3600):
        self.namespace = namespace
        self.default_ttl = default_ttl

    def key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        """Cached value, or None on a miss or when Redis is unavailable."""
        if _redis_client is None:
            return None
        try:
            raw = await _redis_client.get(self.key(key))
        except RedisError as e:
            logger.warning("Cache read failed", key=self.key(key), error=str(e))
            return None
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[Union[int, timedelta]] = None) -> bool:
        """Store ``value``; True if it reached Redis."""
        if _redis_client is None:
            return False

        ttl = ttl or self.default_ttl
        if isinstance(ttl, timedelta):
            ttl = int(ttl.total_seconds())
        try:
            await _redis_client.setex(self.key(key), ttl, json.dumps(value, default=str))
        except RedisError as e:
            logger.warning("Cache write failed", key=self.key(key), error=str(e))
            return False
        return True

    async def delete(self, key: str) -> bool:
        if _redis_client is None:
            return False
        try:
            return await _redis_client.delete(self.key(key)) > 0
        except RedisError as e:
            logger.warning("Cache delete failed", key=self.key(key), error=str(e))
            return False

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> Any:
        """
        Cached value, or the result of ``factory`` which is then cached.

        Errors raised by ``factory`` propagate and nothing is cached.
        """
        value = await self.get(key)
        if value is None:
            value = await factory()
            await self.set(key, value, ttl)
        return value


# Order lookups by order number, invalidated on every status change
orders_cache = CacheManager("orders", default_ttl=300)
