"""
Exceptions raised inside the cache engine.

Fetch errors are not wrapped: whatever the fetcher raised is stored as-is in
the record's ``error`` field so callers can match on their own types.
"""
from typing import Any


class CacheError(Exception):
    """Base class for cache engine errors."""
    pass


class KeyResolutionError(CacheError):
    """Raised when a key-producing function fails."""

    def __init__(self, key_fn: Any, cause: BaseException):
        self.key_fn = key_fn
        self.cause = cause
        name = getattr(key_fn, "__name__", repr(key_fn))
        super().__init__(f"Key function {name} raised {type(cause).__name__}: {cause}")


class ListenerError(CacheError):
    """A subscriber callback raised while a record was being broadcast."""

    def __init__(self, key: str, listener: Any, cause: BaseException):
        self.key = key
        self.listener = listener
        self.cause = cause
        super().__init__(f"Listener failed for {key}: {type(cause).__name__}: {cause}")


class InvalidKeyError(CacheError, ValueError):
    """A key that can be normalized but must not be used."""

    def __init__(self, key: Any, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid key {key!r}: {reason}")
