"""
Capabilities the engine consumes from its host.

- Timers: schedule a callback after a delay, cancel it
- Environment: online / visible oracle plus focus and reconnect events

The defaults suit a plain asyncio process: timers run on the running loop
and the environment always reports online and visible until an adapter says
otherwise.
"""
import asyncio
import logging
from typing import Any, Callable, List, Protocol

logger = logging.getLogger("swrcache.environment")

Callback = Callable[[], None]


class Timers(Protocol):
    def schedule(self, delay: float, callback: Callback) -> Any: ...

    def cancel(self, handle: Any) -> None: ...


class Environment(Protocol):
    def is_online(self) -> bool: ...

    def is_document_visible(self) -> bool: ...

    def on_focus(self, callback: Callback) -> Callback: ...

    def on_reconnect(self, callback: Callback) -> Callback: ...


class AsyncioTimers:
    """Timer service backed by ``loop.call_later`` on the running loop."""

    def schedule(self, delay: float, callback: Callback) -> asyncio.TimerHandle:
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, delay), callback)

    def cancel(self, handle: asyncio.TimerHandle) -> None:
        if handle is not None:
            handle.cancel()


class DefaultEnvironment:
    """
    Environment that adapters drive explicitly.

    A UI or network adapter calls ``emit_focus`` / ``emit_reconnect`` (or
    flips ``set_visible`` / ``set_online``) when the host reports the
    corresponding event. Without an adapter nothing is ever emitted and the
    process is treated as visible and online.
    """

    def __init__(self, online: bool = True, visible: bool = True):
        self._online = online
        self._visible = visible
        self._focus_callbacks: List[Callback] = []
        self._reconnect_callbacks: List[Callback] = []

    def is_online(self) -> bool:
        return self._online

    def is_document_visible(self) -> bool:
        return self._visible

    def on_focus(self, callback: Callback) -> Callback:
        """Register a focus callback; returns a function that unregisters it."""
        return self._register(self._focus_callbacks, callback)

    def on_reconnect(self, callback: Callback) -> Callback:
        """Register a reconnect callback; returns a function that unregisters it."""
        return self._register(self._reconnect_callbacks, callback)

    def set_online(self, online: bool) -> None:
        """Record connectivity; going from offline to online emits reconnect."""
        was_online = self._online
        self._online = online
        if online and not was_online:
            self.emit_reconnect()

    def set_visible(self, visible: bool) -> None:
        """Record visibility; becoming visible counts as a focus event."""
        was_visible = self._visible
        self._visible = visible
        if visible and not was_visible:
            self.emit_focus()

    def emit_focus(self) -> None:
        self._emit("focus", self._focus_callbacks)

    def emit_reconnect(self) -> None:
        self._emit("reconnect", self._reconnect_callbacks)

    @staticmethod
    def _register(callbacks: List[Callback], callback: Callback) -> Callback:
        callbacks.append(callback)

        def unregister() -> None:
            if callback in callbacks:
                callbacks.remove(callback)

        return unregister

    @staticmethod
    def _emit(event: str, callbacks: List[Callback]) -> None:
        logger.debug(f"Emitting {event} to {len(callbacks)} callbacks")
        for callback in list(callbacks):
            try:
                callback()
            except Exception:
                logger.exception(f"{event} callback failed")
