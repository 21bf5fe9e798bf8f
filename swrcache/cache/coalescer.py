"""
Request coalescing to prevent duplicate fetches.

When several callers revalidate the same key inside the dedup window, only
one fetch runs and every caller shares its outcome.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger("swrcache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks a fetch that is running or settled inside its dedup window."""
    key: str
    sequence: int
    task: "asyncio.Future[Any]"
    started_at: float
    settled_at: Optional[float] = None
    waiter_count: int = 0

    @property
    def is_settled(self) -> bool:
        return self.settled_at is not None


class RequestCoalescer:
    """
    Ensures callers inside the dedup window share one fetch per key.

    Pattern:
    - First caller for a key starts the fetch as a task
    - Later callers join the task while it runs, and for ``deduping_interval``
      seconds after it resolves successfully
    - Failed fetches are forgotten as soon as they settle
    - A dedup window of 0 disables sharing entirely

    Usage:
        coalescer = RequestCoalescer()
        data = await coalescer.fetch_once(
            "user:1",
            lambda: load_user(1),
            deduping_interval=2.0,
            sequence=1,
        )
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the coalescer.

        Args:
            clock: Monotonic time source in seconds
        """
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._clock = clock

    def find(
        self,
        key: str,
        deduping_interval: float,
        sequence: Optional[int] = None,
    ) -> Optional[InFlightRequest]:
        """
        Return the request a new caller may join, if any.

        Args:
            key: Serialized cache key
            deduping_interval: Caller's dedup window in seconds
            sequence: Only join a request issued under this sequence token
        """
        if not deduping_interval or deduping_interval <= 0:
            return None

        entry = self._in_flight.get(key)
        if entry is None:
            return None

        if entry.is_settled and self._clock() - entry.settled_at >= deduping_interval:
            del self._in_flight[key]
            return None

        if sequence is not None and entry.sequence != sequence:
            return None

        return entry

    def start(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
        sequence: int,
    ) -> InFlightRequest:
        """Start a new fetch for ``key``, replacing any previous entry."""
        task = asyncio.ensure_future(fetch_fn())
        entry = InFlightRequest(
            key=key,
            sequence=sequence,
            task=task,
            started_at=self._clock(),
        )
        self._in_flight[key] = entry
        task.add_done_callback(lambda t: self._settle(entry, t))
        logger.debug(f"Initiating fetch for {key} (sequence {sequence})")
        return entry

    async def join(self, entry: InFlightRequest) -> Any:
        """Wait for an existing request and return its result."""
        entry.waiter_count += 1
        logger.debug(
            f"Coalescing request for {entry.key} "
            f"(waiters: {entry.waiter_count})"
        )
        return await asyncio.shield(entry.task)

    async def fetch_once(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
        deduping_interval: float,
        sequence: int,
    ) -> Any:
        """
        Either join a live request for ``key`` or initiate a new one.

        Raises:
            Exception: Any error from fetch_fn is propagated to every caller
        """
        entry = self.find(key, deduping_interval)
        if entry is not None:
            return await self.join(entry)
        entry = self.start(key, fetch_fn, sequence)
        return await asyncio.shield(entry.task)

    def _settle(self, entry: InFlightRequest, task: "asyncio.Future[Any]") -> None:
        if self._in_flight.get(entry.key) is not entry:
            return
        if task.cancelled() or task.exception() is not None:
            del self._in_flight[entry.key]
            return
        entry.settled_at = self._clock()

    def forget(self, key: str) -> bool:
        """Drop the entry for ``key`` so the next caller fetches again."""
        return self._in_flight.pop(key, None) is not None

    def clear(self) -> None:
        for entry in self._in_flight.values():
            if not entry.task.done():
                entry.task.cancel()
        self._in_flight.clear()

    @property
    def active_requests(self) -> int:
        """Number of fetches currently running."""
        return sum(1 for entry in self._in_flight.values() if not entry.is_settled)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": self.active_requests,
            "active_keys": [
                key for key, entry in self._in_flight.items() if not entry.is_settled
            ],
            "dedup_window_keys": len(self._in_flight),
        }
