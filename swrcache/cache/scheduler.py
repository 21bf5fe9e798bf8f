"""
Revalidation scheduling: when fetches start and which results count.

- SequenceCounter hands out per-key tokens; only the newest token's result
  is applied, so the most recently initiated fetch always wins
- Subscription is a consumer's handle on a key and carries its options
- RevalidationScheduler turns mount, focus, reconnect and polling into
  revalidation calls and owns the polling and slow-loading timers
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from .broadcaster import Listener, SubscriptionHandle
from .core import UNSET, CacheRecord
from .environment import Environment, Timers
from .options import RevalidateOptions

logger = logging.getLogger("swrcache.scheduler")

FOCUS = "focus"
RECONNECT = "reconnect"


class SequenceCounter:
    """Monotonically increasing token per key."""

    def __init__(self):
        self._latest: Dict[str, int] = {}

    def next(self, key: str) -> int:
        value = self._latest.get(key, 0) + 1
        self._latest[key] = value
        return value

    def latest(self, key: str) -> int:
        return self._latest.get(key, 0)

    def is_current(self, key: str, sequence: int) -> bool:
        return self._latest.get(key, 0) == sequence

    def clear(self) -> None:
        self._latest.clear()


class Subscription:
    """
    One consumer's interest in a key.

    Returned by ``CacheManager.subscribe``; release it with ``unsubscribe()``
    or by using it as a context manager. A subscription whose key resolved
    to nothing is inert: it never fetches and its snapshot is empty.
    """

    def __init__(
        self,
        manager: Any,
        key: Optional[str],
        args: Tuple[Any, ...],
        options: RevalidateOptions,
        listener: Optional[Listener] = None,
        handle: Optional[SubscriptionHandle] = None,
    ):
        self.key = key
        self.args = args
        self.options = options
        self.listener = listener
        self.handle = handle
        self.active = key is not None
        self._manager = manager
        self._last_trigger: Dict[str, float] = {}
        self._poll_handle: Any = None

    @property
    def snapshot(self) -> CacheRecord:
        return self._manager.get_snapshot(self.key)

    @property
    def data(self) -> Any:
        return self.snapshot.data

    @property
    def error(self) -> Optional[BaseException]:
        return self.snapshot.error

    @property
    def is_validating(self) -> bool:
        return self.snapshot.is_validating

    async def revalidate(self) -> bool:
        """Manually refetch this subscription's key."""
        if not self.active:
            return False
        return await self._manager.revalidate_subscription(self)

    async def mutate(self, data: Any = UNSET, should_revalidate: bool = True) -> Any:
        """Mutate this subscription's key; see ``CacheManager.mutate``."""
        if self.key is None:
            return None
        return await self._manager.mutate(self.key, data, should_revalidate=should_revalidate)

    def update(self, **changes: Any) -> RevalidateOptions:
        """Change options at runtime (e.g. ``refresh_interval``)."""
        return self._manager.scheduler.reconfigure(self, **changes)

    def unsubscribe(self) -> bool:
        return self._manager.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        state = "active" if self.active else "inactive"
        return f"<Subscription key={self.key!r} {state}>"


Trigger = Callable[[Subscription, bool], "asyncio.Future[bool]"]


class RevalidationScheduler:
    """
    Decides when subscriptions revalidate.

    Triggers:
    - mount (handled by the manager when subscribing)
    - focus / reconnect events, throttled per subscription and event kind
    - polling every ``refresh_interval`` seconds while subscribed
    """

    def __init__(
        self,
        trigger: Trigger,
        timers: Timers,
        environment: Environment,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            trigger: Starts a revalidation for a subscription; the bool is
                whether it may join a deduplicated request
            timers: Timer service for polling and slow-loading notices
            environment: Visibility / connectivity oracle
            clock: Monotonic time source used for focus throttling
        """
        self._trigger = trigger
        self._timers = timers
        self._environment = environment
        self._clock = clock
        self._subscriptions: Dict[str, List[Subscription]] = {}
        self._loading: Dict[Tuple[str, int], Tuple[Any, Optional[Subscription]]] = {}

    # ── Registry ─────────────────────────────────────────────

    def attach(self, subscription: Subscription) -> None:
        self._subscriptions.setdefault(subscription.key, []).append(subscription)
        self._schedule_poll(subscription)

    def detach(self, subscription: Subscription) -> None:
        subs = self._subscriptions.get(subscription.key)
        if subs and subscription in subs:
            subs.remove(subscription)
            if not subs:
                del self._subscriptions[subscription.key]
        self._cancel_poll(subscription)
        for loading_key, (handle, owner) in list(self._loading.items()):
            if owner is subscription:
                self._timers.cancel(handle)
                del self._loading[loading_key]

    def subscriptions_for(self, key: str) -> List[Subscription]:
        return list(self._subscriptions.get(key, ()))

    def all_subscriptions(self) -> List[Subscription]:
        return [sub for subs in self._subscriptions.values() for sub in subs]

    # ── Focus / reconnect ────────────────────────────────────

    def handle_focus(self) -> int:
        """Revalidate every subscription accepting a focus trigger now."""
        return sum(1 for sub in self.all_subscriptions() if self._accept_trigger(sub, FOCUS))

    def handle_reconnect(self) -> int:
        """Revalidate every subscription accepting a reconnect trigger now."""
        return sum(1 for sub in self.all_subscriptions() if self._accept_trigger(sub, RECONNECT))

    def _accept_trigger(self, subscription: Subscription, kind: str) -> bool:
        options = subscription.options
        enabled = options.revalidate_on_focus if kind == FOCUS else options.revalidate_on_reconnect
        if not subscription.active or not enabled:
            return False

        now = self._clock()
        last = subscription._last_trigger.get(kind)
        if last is not None and now - last < options.focus_throttle_interval:
            logger.debug(f"Throttled {kind} revalidation for {subscription.key}")
            return False

        subscription._last_trigger[kind] = now
        self._trigger(subscription, True)
        return True

    # ── Polling ──────────────────────────────────────────────

    def _schedule_poll(self, subscription: Subscription) -> None:
        if not subscription.active or subscription._poll_handle is not None:
            return
        interval = subscription.options.refresh_interval
        if interval and interval > 0:
            subscription._poll_handle = self._timers.schedule(
                interval, lambda: self._on_poll_tick(subscription)
            )

    def _cancel_poll(self, subscription: Subscription) -> None:
        if subscription._poll_handle is not None:
            self._timers.cancel(subscription._poll_handle)
            subscription._poll_handle = None

    def _on_poll_tick(self, subscription: Subscription) -> None:
        subscription._poll_handle = None
        if not subscription.active:
            return

        options = subscription.options
        visible = options.refresh_when_hidden or self._environment.is_document_visible()
        online = options.refresh_when_offline or self._environment.is_online()
        if not (visible and online):
            logger.debug(f"Skipping poll for {subscription.key} (visible={visible}, online={online})")
            self._schedule_poll(subscription)
            return

        task = self._trigger(subscription, True)
        task.add_done_callback(lambda _: self._schedule_poll(subscription))

    def reconfigure(self, subscription: Subscription, **changes: Any) -> RevalidateOptions:
        """
        Apply option changes to a live subscription.

        Throttle intervals and trigger flags are read at event time, so only
        a changed ``refresh_interval`` needs the polling timer rescheduled.
        """
        previous = subscription.options
        subscription.options = previous.merged(**changes)
        if subscription.options.refresh_interval != previous.refresh_interval:
            self._cancel_poll(subscription)
            self._schedule_poll(subscription)
        return subscription.options

    # ── Slow loading ─────────────────────────────────────────

    def watch_loading(
        self,
        key: str,
        sequence: int,
        options: RevalidateOptions,
        owner: Optional[Subscription],
    ) -> None:
        """Arrange a single ``on_loading_slow`` call if the fetch is still running."""
        callback = options.on_loading_slow
        if not options.loading_timeout or callback is None:
            return

        def fire() -> None:
            if self._loading.pop((key, sequence), None) is None:
                return
            if owner is not None and not owner.active:
                return
            logger.info(f"Loading slow for {key} (> {options.loading_timeout}s)")
            try:
                callback(key)
            except Exception:
                logger.exception(f"on_loading_slow failed for {key}")

        handle = self._timers.schedule(options.loading_timeout, fire)
        self._loading[(key, sequence)] = (handle, owner)

    def release_loading(self, key: str, sequence: int) -> None:
        entry = self._loading.pop((key, sequence), None)
        if entry is not None:
            self._timers.cancel(entry[0])

    def clear(self) -> None:
        for sub in self.all_subscriptions():
            sub.active = False
            self._cancel_poll(sub)
        self._subscriptions.clear()
        for handle, _ in self._loading.values():
            self._timers.cancel(handle)
        self._loading.clear()
