# swrcache: stale-while-revalidate cache coordinator
# subscribe → dedup fetch → store → broadcast, with focus/reconnect/polling revalidation

from .cache import (
    CacheManager,
    CacheRecord,
    RevalidateOptions,
    Subscription,
    get_cache_manager,
    reset_cache_manager,
    with_middleware,
)

__version__ = "0.1.0"

__all__ = [
    "CacheManager",
    "CacheRecord",
    "RevalidateOptions",
    "Subscription",
    "get_cache_manager",
    "reset_cache_manager",
    "with_middleware",
]
