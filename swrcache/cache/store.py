"""
Process-wide record store.

A flat mapping from serialized key to CacheRecord. The store is passive: it
never fetches and never broadcasts, other components write to it.
"""
import logging
from typing import Any, Dict, List, Optional

from .core import CacheRecord

logger = logging.getLogger("swrcache.store")


class CacheStore:
    """
    Single flat key-value store of cache records.

    All operations are synchronous and O(1). There is no TTL or size based
    eviction; records live until deleted or the store is cleared.
    """

    def __init__(self):
        self._records: Dict[str, CacheRecord] = {}

    def get(self, key: str) -> Optional[CacheRecord]:
        """Return the record for ``key`` or None if it was never written."""
        return self._records.get(key)

    def set(self, key: str, **changes: Any) -> CacheRecord:
        """
        Merge ``changes`` onto the record for ``key``, creating it if absent.

        Only the fields passed are replaced, so ``set(key, error=None)``
        clears the error while keeping the cached data.

        Returns:
            The new record
        """
        current = self._records.get(key)
        record = current.merge(**changes) if current is not None else CacheRecord(**changes)
        self._records[key] = record
        return record

    def delete(self, key: str) -> bool:
        """
        Remove the record for ``key``.

        Returns:
            True if a record was found and removed
        """
        if key in self._records:
            del self._records[key]
            logger.info(f"Deleted cache record: {key}")
            return True
        return False

    def clear(self) -> int:
        """
        Remove every record.

        Returns:
            Number of records cleared
        """
        count = len(self._records)
        self._records.clear()
        logger.info(f"Cleared {count} cache records")
        return count

    def keys(self) -> List[str]:
        return list(self._records.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)
