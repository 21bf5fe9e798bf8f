"""
Shared fixtures: scripted fetchers, manual timers and managers built from
explicit options so local .env files never leak into the tests.
"""
import asyncio
from typing import Any, Callable, List, Optional, Tuple

import pytest

from swrcache.cache import CacheManager, DefaultEnvironment, RevalidateOptions


class ScriptedFetcher:
    """
    Async fetcher that records calls.

    Each call takes the next (delay, outcome) step; the last step repeats.
    An outcome that is an exception instance is raised, a callable is called
    with the call number, anything else is returned.
    """

    def __init__(self, *steps: Tuple[float, Any]):
        self.steps = list(steps) or [(0.0, "data")]
        self.calls: List[Tuple[Any, ...]] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def __call__(self, *args: Any) -> Any:
        self.calls.append(args)
        index = min(len(self.calls), len(self.steps)) - 1
        delay, outcome = self.steps[index]
        if delay:
            await asyncio.sleep(delay)
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(len(self.calls))
        return outcome


class TimerHandle:
    def __init__(self):
        self.cancelled = False


class ManualTimers:
    """Timer service that only fires when told to."""

    def __init__(self):
        self.scheduled: List[Tuple[float, Callable[[], None], TimerHandle]] = []

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle()
        self.scheduled.append((delay, callback, handle))
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is not None:
            handle.cancelled = True

    @property
    def pending(self) -> List[Tuple[float, Callable[[], None], TimerHandle]]:
        return [entry for entry in self.scheduled if not entry[2].cancelled]

    def fire_all(self) -> int:
        ready, self.scheduled = self.pending, []
        for _, callback, handle in ready:
            handle.cancelled = True
            callback()
        return len(ready)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def base_options(**overrides: Any) -> RevalidateOptions:
    values = dict(
        deduping_interval=2.0,
        refresh_interval=0.0,
        focus_throttle_interval=5.0,
        error_retry_interval=0.005,
        error_retry_count=None,
        loading_timeout=3.0,
    )
    values.update(overrides)
    return RevalidateOptions(**values)


@pytest.fixture
def scripted():
    """The ScriptedFetcher class, for tests that need custom steps."""
    return ScriptedFetcher


@pytest.fixture
def fetcher():
    return ScriptedFetcher((0.0, lambda n: {"n": n}))


@pytest.fixture
def environment():
    return DefaultEnvironment()


@pytest.fixture
def manual_timers():
    return ManualTimers()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
async def make_manager(environment):
    """Factory building managers that are closed after the test."""
    managers: List[CacheManager] = []

    def factory(fetcher: Any = None, **kwargs: Any) -> CacheManager:
        manager_kwargs = {
            name: kwargs.pop(name)
            for name in ("timers", "clock", "on_listener_error")
            if name in kwargs
        }
        manager = CacheManager(
            base_options(fetcher=fetcher, **kwargs),
            environment=environment,
            **manager_kwargs,
        )
        managers.append(manager)
        return manager

    yield factory

    for manager in managers:
        await manager.close()
