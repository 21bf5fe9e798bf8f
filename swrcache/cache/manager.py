"""
Main cache orchestration: stale-while-revalidate with broadcast.

Ties the store, broadcaster, coalescer, scheduler and retry controller
together behind subscribe / revalidate / mutate.
"""
import asyncio
import inspect
import logging
import time
from collections import defaultdict
from typing import Any, Callable, Dict, Optional, Set, Tuple

from .broadcaster import Broadcaster, Listener
from .coalescer import RequestCoalescer
from .core import EMPTY_RECORD, UNSET, CacheRecord
from .environment import AsyncioTimers, DefaultEnvironment, Environment, Timers
from .errors import ListenerError
from .keys import KeyInput, clear_identities, normalize_key
from .middleware import call_fetcher, compose
from .options import RevalidateOptions
from .retry import RetryController
from .scheduler import RevalidationScheduler, SequenceCounter, Subscription
from .store import CacheStore

logger = logging.getLogger("swrcache.manager")


class CacheManager:
    """
    Main cache orchestration with:
    - One shared record per key, served immediately to every subscriber
    - Request deduplication inside a configurable window
    - Revalidation on mount, manual call, focus, reconnect and polling
    - Last-initiated-wins ordering via per-key sequence tokens
    - Automatic error retries with backoff
    - Direct mutation with optional revalidation

    Must be used from a running asyncio event loop.
    """

    def __init__(
        self,
        options: Optional[RevalidateOptions] = None,
        *,
        environment: Optional[Environment] = None,
        timers: Optional[Timers] = None,
        clock: Callable[[], float] = time.monotonic,
        on_listener_error: Optional[Callable[[ListenerError], None]] = None,
    ):
        """
        Initialize the cache manager.

        Args:
            options: Default options for every subscription and manual call
            environment: Visibility / connectivity oracle and event source
            timers: Timer service for polling, retries and slow-loading notices
            clock: Monotonic time source for dedup windows and throttling
            on_listener_error: Diagnostic callback for failing listeners
        """
        self.options = options or RevalidateOptions.from_settings()
        self.environment = environment or DefaultEnvironment()
        self.timers = timers or AsyncioTimers()
        self._clock = clock

        self.store = CacheStore()
        self.broadcaster = Broadcaster(on_listener_error=on_listener_error)
        self.coalescer = RequestCoalescer(clock=clock)
        self.sequences = SequenceCounter()
        self.scheduler = RevalidationScheduler(
            self._trigger, self.timers, self.environment, clock
        )
        self.retries = RetryController(self.timers, self.environment, self.sequences.latest)

        self._pending: Dict[str, int] = defaultdict(int)
        self._mutating: Dict[str, int] = defaultdict(int)
        self._tasks: Set[asyncio.Task] = set()
        self._unregister = [
            self.environment.on_focus(self.scheduler.handle_focus),
            self.environment.on_reconnect(self.scheduler.handle_reconnect),
        ]

        # Stats tracking
        self._stats = {
            "fetches": 0,
            "deduped": 0,
            "superseded": 0,
            "errors": 0,
            "mutations": 0,
        }

    # ── Subscriptions ────────────────────────────────────────

    def subscribe(
        self,
        key: KeyInput,
        listener: Optional[Listener] = None,
        **options: Any,
    ) -> Subscription:
        """
        Subscribe to a key.

        Args:
            key: String, argument list, or function returning either
            listener: Called with every new CacheRecord for the key
            **options: RevalidateOptions overrides for this subscription

        Returns:
            Subscription handle; inert if the key resolved to nothing
        """
        resolved_options = self.options.merged(**options)
        resolved = normalize_key(key)
        if resolved.is_absent:
            logger.debug("Subscribed with absent key; nothing to fetch")
            return Subscription(self, None, (), resolved_options, listener)

        cache_key = resolved.key
        handle = self.broadcaster.subscribe(cache_key, listener or _ignore)
        subscription = Subscription(
            self, cache_key, resolved.args, resolved_options, listener, handle
        )

        record = self.store.get(cache_key)
        if resolved_options.initial_data is not None and (record is None or not record.has_data):
            self.store.set(cache_key, data=resolved_options.initial_data)

        self.scheduler.attach(subscription)
        if resolved_options.should_revalidate_on_mount():
            self._trigger(subscription, True)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """
        Release a subscription.

        An in-flight fetch keeps running and still updates the cache; the
        subscription's timers and callbacks are cancelled.
        """
        if subscription.handle is None or not subscription.active:
            return False
        subscription.active = False
        self.broadcaster.unsubscribe(subscription.handle)
        self.scheduler.detach(subscription)
        if not self.broadcaster.has_subscribers(subscription.key):
            self.retries.cancel(subscription.key)
        return True

    def get_snapshot(self, key: KeyInput) -> CacheRecord:
        """Current record for a key; an empty record if absent or unknown."""
        cache_key = _record_key(key)
        if cache_key is None:
            return EMPTY_RECORD
        return self.store.get(cache_key) or EMPTY_RECORD

    # ── Revalidation ─────────────────────────────────────────

    async def revalidate(self, key: KeyInput, *, dedupe: bool = False, **options: Any) -> bool:
        """
        Manually revalidate a key.

        Uses the options of the key's first active subscription, or the
        manager defaults when nobody is subscribed.

        Returns:
            True if a fetch result was applied (or shared with a live request)
        """
        resolved = normalize_key(key)
        if resolved.is_absent:
            return False

        subscriptions = self.scheduler.subscriptions_for(resolved.key)
        owner = subscriptions[0] if subscriptions else None
        base = owner.options if owner is not None else self.options
        return await self._revalidate(
            resolved.key,
            owner.args if owner is not None else resolved.args,
            base.merged(**options),
            dedupe=dedupe,
            owner=owner,
        )

    async def revalidate_subscription(self, subscription: Subscription, dedupe: bool = False) -> bool:
        return await self._revalidate(
            subscription.key,
            subscription.args,
            subscription.options,
            dedupe=dedupe,
            owner=subscription,
        )

    def _trigger(self, subscription: Subscription, dedupe: bool) -> "asyncio.Task[bool]":
        return self._spawn(self.revalidate_subscription(subscription, dedupe=dedupe))

    async def _revalidate(
        self,
        key: str,
        args: Tuple[Any, ...],
        options: RevalidateOptions,
        *,
        dedupe: bool = False,
        retry_count: int = 0,
        owner: Optional[Subscription] = None,
    ) -> bool:
        if owner is not None and not owner.active:
            return False

        fetcher = options.fetcher
        if fetcher is None:
            logger.warning(f"No fetcher configured for {key}; skipping revalidation")
            return False

        if dedupe:
            entry = self.coalescer.find(key, options.deduping_interval, self.sequences.latest(key))
            if entry is not None:
                self._stats["deduped"] += 1
                try:
                    await self.coalescer.join(entry)
                except Exception:
                    # The initiating call records the error
                    return False
                return True

        sequence = self.sequences.next(key)
        self._pending[key] += 1
        self._stats["fetches"] += 1
        self._write(key, is_validating=True)
        self.scheduler.watch_loading(key, sequence, options, owner)

        fetch = compose(fetcher, options.middlewares) if options.middlewares else fetcher
        entry = self.coalescer.start(key, lambda: call_fetcher(fetch, args), sequence)
        try:
            data = await asyncio.shield(entry.task)
        except asyncio.CancelledError:
            self._finish(key, sequence)
            raise
        except Exception as error:
            self._finish(key, sequence)
            self._apply_failure(key, args, options, sequence, error, retry_count, owner)
            return False

        self._finish(key, sequence)
        return self._apply_success(key, options, sequence, data, owner)

    def _finish(self, key: str, sequence: int) -> None:
        self._pending[key] -= 1
        if self._pending[key] <= 0:
            del self._pending[key]
        self.scheduler.release_loading(key, sequence)

    def _is_current(self, key: str, sequence: int) -> bool:
        return self.sequences.is_current(key, sequence) and not self._mutating.get(key)

    def _drop_superseded(self, key: str, sequence: int) -> bool:
        self._stats["superseded"] += 1
        logger.debug(f"Dropping superseded result for {key} (sequence {sequence})")
        if key not in self._pending:
            self._write(key, is_validating=False)
        return False

    def _apply_success(
        self,
        key: str,
        options: RevalidateOptions,
        sequence: int,
        data: Any,
        owner: Optional[Subscription],
    ) -> bool:
        if not self._is_current(key, sequence):
            return self._drop_superseded(key, sequence)

        changes: Dict[str, Any] = {
            "error": None,
            "is_validating": key in self._pending,
            "updated_at": time.time(),
            "retry_count": 0,
        }
        previous = self.store.get(key)
        if previous is None or not previous.has_data or not options.compare(previous.data, data):
            changes["data"] = data
        self._write(key, **changes)
        self._emit(owner, options.on_success, data, key)
        return True

    def _apply_failure(
        self,
        key: str,
        args: Tuple[Any, ...],
        options: RevalidateOptions,
        sequence: int,
        error: BaseException,
        retry_count: int,
        owner: Optional[Subscription],
    ) -> None:
        if not self._is_current(key, sequence):
            self._drop_superseded(key, sequence)
            return

        self._stats["errors"] += 1
        logger.warning(f"Fetch failed for {key}: {error}")
        self._write(
            key,
            error=error,
            is_validating=key in self._pending,
            retry_count=retry_count,
        )
        self._emit(owner, options.on_error, error, key)

        if owner is not None and not owner.active:
            return
        if not self.broadcaster.has_subscribers(key):
            return

        next_attempt = retry_count + 1

        def retry(dedupe: bool = True, retry_count: int = next_attempt) -> "asyncio.Task[bool]":
            return self._spawn(self._revalidate(
                key, args, options, dedupe=dedupe, retry_count=retry_count, owner=owner,
            ))

        self.retries.handle_failure(error, key, options, next_attempt, sequence, retry)

    def _write(self, key: str, **changes: Any) -> CacheRecord:
        record = self.store.set(key, **changes)
        self.broadcaster.notify(key, record)
        return record

    @staticmethod
    def _emit(owner: Optional[Subscription], callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None or (owner is not None and not owner.active):
            return
        try:
            callback(*args)
        except Exception:
            logger.exception(f"Lifecycle callback {getattr(callback, '__name__', callback)} failed")

    # ── Mutation ─────────────────────────────────────────────

    async def mutate(
        self,
        key: KeyInput,
        data: Any = UNSET,
        should_revalidate: bool = True,
    ) -> Any:
        """
        Write data for a key directly and broadcast it.

        Args:
            key: Key to mutate
            data: New value, a function of the current value, or an
                awaitable producing the value. Leave unset to only revalidate.
            should_revalidate: Refetch the key after writing

        Returns:
            The key's data after the mutation (and revalidation, if any)

        Raises:
            Exception: Whatever an awaited value raised, after it has been
                stored as the key's error and broadcast
        """
        resolved = normalize_key(key)
        if resolved.is_absent:
            return None
        cache_key = resolved.key

        if data is not UNSET:
            self._stats["mutations"] += 1
            # Fetches started before this point can no longer win
            self.sequences.next(cache_key)

            if callable(data):
                data = data(self.get_snapshot(cache_key).data)

            if inspect.isawaitable(data):
                self._mutating[cache_key] += 1
                try:
                    data = await data
                except Exception as error:
                    self._write(cache_key, error=error)
                    raise
                finally:
                    self._mutating[cache_key] -= 1
                    if not self._mutating[cache_key]:
                        del self._mutating[cache_key]
                    self.sequences.next(cache_key)

            self._write(cache_key, data=data, error=None, updated_at=time.time())
            logger.debug(f"Mutated {cache_key}")

        if should_revalidate:
            await self.revalidate(cache_key)

        return self.get_snapshot(cache_key).data

    # ── Lifecycle ────────────────────────────────────────────

    def _spawn(self, coro: Any) -> "asyncio.Task[Any]":
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background revalidation crashed: {error}", exc_info=error)

    async def drain(self) -> None:
        """Wait for revalidations currently running in the background."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def delete(self, key: KeyInput) -> bool:
        """
        Remove a key's record.

        String keys are taken as already serialized, so argument-list
        records can be addressed by the key listed in the store.

        Returns:
            True if a record was found and removed
        """
        cache_key = _record_key(key)
        if cache_key is None:
            return False
        self.coalescer.forget(cache_key)
        self.retries.cancel(cache_key)
        return self.store.delete(cache_key)

    def reset(self) -> None:
        """Drop all records, subscriptions, timers and background work."""
        self.scheduler.clear()
        self.broadcaster.clear()
        self.retries.cancel_all()
        self.coalescer.clear()
        for task in list(self._tasks):
            task.cancel()
        self.sequences.clear()
        self._pending.clear()
        self._mutating.clear()
        self.store.clear()
        clear_identities()

    async def close(self) -> None:
        """Reset and detach from the environment's event sources."""
        tasks = list(self._tasks)
        self.reset()
        for unregister in self._unregister:
            unregister()
        self._unregister = []
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "entries": len(self.store),
            "subscribed_keys": len(self.broadcaster.keys()),
            "subscriptions": len(self.scheduler.all_subscriptions()),
            **self._stats,
            "coalescer": self.coalescer.get_stats(),
            "retries": self.retries.get_stats(),
            "validating_keys": sorted(self._pending),
        }


def _ignore(record: CacheRecord) -> None:
    pass


def _record_key(key: KeyInput) -> Optional[str]:
    """Store key for reads and deletes; strings are used as-is."""
    if isinstance(key, str):
        return key or None
    return normalize_key(key).key


# Global cache manager instance
_cache_manager: Optional[CacheManager] = None


def get_cache_manager() -> CacheManager:
    """Get or create the global cache manager."""
    global _cache_manager
    if _cache_manager is None:
        _cache_manager = CacheManager()
    return _cache_manager


def reset_cache_manager(manager: Optional[CacheManager] = None) -> Optional[CacheManager]:
    """
    Replace the global cache manager.

    Resets the current instance (if any) and installs ``manager``, or leaves
    the slot empty so the next ``get_cache_manager()`` builds a fresh one.

    Returns:
        The previous instance
    """
    global _cache_manager
    previous = _cache_manager
    if previous is not None and previous is not manager:
        previous.reset()
    _cache_manager = manager
    return previous
