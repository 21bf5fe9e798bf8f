"""
Core cache data structures.
"""
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class CacheRecord:
    """
    Last-known state of one serialized key.

    Records are immutable; every write produces a new record so listeners
    can never observe a partially-applied update.
    """
    data: Any = None
    error: Optional[BaseException] = None
    is_validating: bool = False
    updated_at: Optional[float] = None  # epoch seconds of last data write
    retry_count: int = 0                # retries spent on the current failure streak

    @property
    def has_data(self) -> bool:
        return self.data is not None

    @property
    def has_error(self) -> bool:
        return self.error is not None

    def merge(self, **changes: Any) -> "CacheRecord":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        result = {
            "data": self.data,
            "error": None,
            "isValidating": self.is_validating,
            "updatedAt": None,
            "retryCount": self.retry_count,
        }
        if self.error is not None:
            result["error"] = {
                "type": type(self.error).__name__,
                "message": str(self.error),
            }
        if self.updated_at is not None:
            result["updatedAt"] = datetime.fromtimestamp(self.updated_at, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
        return result


EMPTY_RECORD = CacheRecord()


class _Unset:
    """Marker for "no value passed", distinct from None."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET = _Unset()
