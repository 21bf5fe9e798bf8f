"""
Per-key listener registry with synchronous fan-out.
"""
import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .core import CacheRecord
from .errors import ListenerError

logger = logging.getLogger("swrcache.broadcaster")

Listener = Callable[[CacheRecord], None]


@dataclass(frozen=True)
class SubscriptionHandle:
    """Opaque token returned by ``Broadcaster.subscribe``."""
    key: str
    token: int


class Broadcaster:
    """
    Pushes every state transition of a key to all of its listeners.

    - Listeners run synchronously, in registration order
    - A failing listener is reported and skipped; the rest still run
    - Listeners removed while a broadcast is running are not called
    """

    def __init__(self, on_listener_error: Optional[Callable[[ListenerError], None]] = None):
        """
        Args:
            on_listener_error: Diagnostic callback receiving ListenerError
        """
        self._listeners: Dict[str, Dict[int, Listener]] = {}
        self._tokens = itertools.count(1)
        self._on_listener_error = on_listener_error

    def subscribe(self, key: str, listener: Listener) -> SubscriptionHandle:
        """Register ``listener`` for ``key``."""
        handle = SubscriptionHandle(key=key, token=next(self._tokens))
        self._listeners.setdefault(key, {})[handle.token] = listener
        logger.debug(f"Subscribed to {key} (listeners: {len(self._listeners[key])})")
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        """
        Remove a listener.

        Returns:
            True if the handle was registered
        """
        listeners = self._listeners.get(handle.key)
        if not listeners or handle.token not in listeners:
            return False
        del listeners[handle.token]
        if not listeners:
            del self._listeners[handle.key]
        logger.debug(f"Unsubscribed from {handle.key}")
        return True

    def notify(self, key: str, record: CacheRecord) -> int:
        """
        Deliver ``record`` to every live listener of ``key``.

        Returns:
            Number of listeners that received the record without raising
        """
        listeners = self._listeners.get(key)
        if not listeners:
            return 0

        delivered = 0
        for token, listener in list(listeners.items()):
            if token not in listeners:
                continue
            try:
                listener(record)
                delivered += 1
            except Exception as e:
                self._report(ListenerError(key, listener, e))
        return delivered

    def _report(self, error: ListenerError) -> None:
        logger.warning(str(error), exc_info=error.cause)
        if self._on_listener_error is None:
            return
        try:
            self._on_listener_error(error)
        except Exception:
            logger.exception("Listener error handler failed")

    def subscriber_count(self, key: str) -> int:
        return len(self._listeners.get(key, ()))

    def has_subscribers(self, key: str) -> bool:
        return bool(self._listeners.get(key))

    def keys(self) -> List[str]:
        return list(self._listeners.keys())

    def clear(self) -> None:
        self._listeners.clear()
