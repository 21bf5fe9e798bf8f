"""
Error retry scheduling.

On a failed fetch the controller decides whether and when to revalidate the
key again. Backoff delays come from tenacity's wait strategies so the
retry curve matches what the rest of the code uses for upstream calls.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from tenacity import RetryCallState, wait_exponential, wait_random

from .environment import Environment, Timers
from .options import RevalidateOptions

logger = logging.getLogger("swrcache.retry")

# Backoff grows as 2**attempt up to this exponent, then stays flat
MAX_BACKOFF_EXPONENT = 8

Revalidator = Callable[..., Any]


def backoff_delay(attempt: int, interval: float) -> float:
    """
    Delay in seconds before retry number ``attempt`` (1-based).

    Exponential in the attempt count, capped at ``interval * 2**8``, plus up
    to one ``interval`` of jitter.
    """
    wait = wait_exponential(
        multiplier=interval,
        max=interval * 2 ** MAX_BACKOFF_EXPONENT,
    ) + wait_random(0, interval)
    state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
    state.attempt_number = max(1, attempt)
    return wait(state)


class RetryController:
    """
    Schedules retries for failing keys.

    Each scheduled retry carries the sequence token of the fetch that failed.
    If another fetch for the key starts before the timer fires, the retry is
    stale and is dropped instead of run.
    """

    def __init__(
        self,
        timers: Timers,
        environment: Environment,
        latest_sequence: Callable[[str], int],
    ):
        """
        Args:
            timers: Timer service used for backoff delays
            environment: Visibility oracle; hidden documents are not retried
            latest_sequence: Returns the newest sequence token issued for a key
        """
        self._timers = timers
        self._environment = environment
        self._latest_sequence = latest_sequence
        self._pending: Dict[str, List[Any]] = {}
        self._stats = {"scheduled": 0, "executed": 0, "discarded": 0}

    def handle_failure(
        self,
        error: BaseException,
        key: str,
        options: RevalidateOptions,
        attempt: int,
        token: int,
        revalidate: Revalidator,
    ) -> bool:
        """
        React to a failed fetch.

        Args:
            error: What the fetcher raised
            key: Serialized key
            options: Options of the revalidation that failed
            attempt: Number of the retry that would run next (1-based)
            token: Sequence token of the failed fetch
            revalidate: Callable re-running revalidation, accepting
                ``dedupe`` and ``retry_count`` keyword arguments

        Returns:
            True if a retry was scheduled or handed to a custom policy
        """
        if not options.should_retry_on_error:
            return False

        guarded = self._guard(key, token, attempt, revalidate)

        if options.on_error_retry is not None:
            try:
                options.on_error_retry(error, key, attempt, guarded)
            except Exception:
                logger.exception(f"Custom retry policy failed for {key}")
                return False
            return True

        if not self._environment.is_document_visible():
            logger.debug(f"Not retrying {key} while document is hidden")
            return False

        if options.error_retry_count is not None and attempt > options.error_retry_count:
            logger.info(f"Retry limit reached for {key} after {attempt - 1} retries")
            return False

        delay = backoff_delay(attempt, options.error_retry_interval)
        self.schedule(key, delay, guarded)
        logger.info(f"Retrying {key} in {delay:.2f}s (attempt {attempt}): {error}")
        return True

    def schedule(self, key: str, delay: float, callback: Callable[[], Any]) -> Any:
        """Run ``callback`` after ``delay`` unless the key's retries are cancelled."""
        handles = self._pending.setdefault(key, [])
        handle = None

        def fire() -> None:
            if handle in handles:
                handles.remove(handle)
            if not handles:
                self._pending.pop(key, None)
            callback()

        handle = self._timers.schedule(delay, fire)
        handles.append(handle)
        self._stats["scheduled"] += 1
        return handle

    def _guard(self, key: str, token: int, attempt: int, revalidate: Revalidator) -> Revalidator:
        def run(**options: Any) -> Optional[Any]:
            if self._latest_sequence(key) != token:
                self._stats["discarded"] += 1
                logger.debug(f"Discarding stale retry for {key} (sequence {token})")
                return None
            self._stats["executed"] += 1
            options.setdefault("dedupe", True)
            options.setdefault("retry_count", attempt)
            return revalidate(**options)

        return run

    def cancel(self, key: str) -> int:
        """Cancel pending retries for ``key``; returns how many were cancelled."""
        handles = self._pending.pop(key, [])
        for handle in handles:
            self._timers.cancel(handle)
        return len(handles)

    def cancel_all(self) -> int:
        return sum(self.cancel(key) for key in list(self._pending))

    def pending_count(self, key: Optional[str] = None) -> int:
        if key is not None:
            return len(self._pending.get(key, ()))
        return sum(len(handles) for handles in self._pending.values())

    def get_stats(self) -> Dict[str, Any]:
        return {**self._stats, "pending": self.pending_count()}
