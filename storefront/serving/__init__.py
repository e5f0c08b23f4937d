"""
Serving Module
"""
from .cache import init_redis, close_redis, get_redis, set_redis, CacheManager, orders_cache

__all__ = [
    "init_redis",
    "close_redis",
    "get_redis",
    "set_redis",
    "CacheManager",
    "orders_cache",
]
