"""
Stale-while-revalidate cache engine: shared records, request dedup,
broadcast to subscribers, and revalidation on mount, focus, reconnect and
polling.
"""
from .core import CacheRecord, EMPTY_RECORD, UNSET
from .errors import CacheError, InvalidKeyError, KeyResolutionError, ListenerError
from .keys import NormalizedKey, clear_identities, normalize_key, serialize_args
from .middleware import Middleware, call_fetcher, compose, with_middleware
from .store import CacheStore
from .broadcaster import Broadcaster, SubscriptionHandle
from .coalescer import InFlightRequest, RequestCoalescer
from .environment import AsyncioTimers, DefaultEnvironment, Environment, Timers
from .options import RevalidateOptions, default_compare
from .retry import RetryController, backoff_delay
from .scheduler import RevalidationScheduler, SequenceCounter, Subscription
from .manager import CacheManager, get_cache_manager, reset_cache_manager

__all__ = [
    # Core types
    "CacheRecord",
    "EMPTY_RECORD",
    "UNSET",
    # Errors
    "CacheError",
    "InvalidKeyError",
    "KeyResolutionError",
    "ListenerError",
    # Keys
    "NormalizedKey",
    "clear_identities",
    "normalize_key",
    "serialize_args",
    # Middleware
    "Middleware",
    "call_fetcher",
    "compose",
    "with_middleware",
    # Storage and fan-out
    "CacheStore",
    "Broadcaster",
    "SubscriptionHandle",
    # Coalescing
    "InFlightRequest",
    "RequestCoalescer",
    # Host capabilities
    "AsyncioTimers",
    "DefaultEnvironment",
    "Environment",
    "Timers",
    # Options
    "RevalidateOptions",
    "default_compare",
    # Scheduling and retries
    "RetryController",
    "backoff_delay",
    "RevalidationScheduler",
    "SequenceCounter",
    "Subscription",
    # Manager
    "CacheManager",
    "get_cache_manager",
    "reset_cache_manager",
]
