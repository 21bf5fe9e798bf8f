"""
Request coalescing tests
"""
import asyncio

import pytest

from swrcache.cache import RequestCoalescer


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_fetch(scripted):
    """Callers inside the window get the same result from one fetch"""
    fetcher = scripted((0.01, "shared"))
    coalescer = RequestCoalescer()

    results = await asyncio.gather(*[
        coalescer.fetch_once("k", fetcher, deduping_interval=2.0, sequence=1)
        for _ in range(5)
    ])

    assert results == ["shared"] * 5
    assert fetcher.call_count == 1


@pytest.mark.asyncio
async def test_zero_window_disables_sharing(scripted):
    fetcher = scripted((0.01, "value"))
    coalescer = RequestCoalescer()

    await asyncio.gather(
        coalescer.fetch_once("k", fetcher, deduping_interval=0, sequence=1),
        coalescer.fetch_once("k", fetcher, deduping_interval=0, sequence=2),
    )

    assert fetcher.call_count == 2


@pytest.mark.asyncio
async def test_settled_request_joinable_until_window_expires(scripted, fake_clock):
    fetcher = scripted((0.0, lambda n: n))
    coalescer = RequestCoalescer(clock=fake_clock)

    assert await coalescer.fetch_once("k", fetcher, 2.0, sequence=1) == 1

    fake_clock.advance(1.0)
    assert await coalescer.fetch_once("k", fetcher, 2.0, sequence=2) == 1
    assert fetcher.call_count == 1

    fake_clock.advance(1.5)
    assert await coalescer.fetch_once("k", fetcher, 2.0, sequence=3) == 2
    assert fetcher.call_count == 2


@pytest.mark.asyncio
async def test_failed_request_is_forgotten(scripted):
    """Errors are shared with live waiters but never cached"""
    fetcher = scripted((0.0, ValueError("boom")), (0.0, "ok"))
    coalescer = RequestCoalescer()

    with pytest.raises(ValueError):
        await coalescer.fetch_once("k", fetcher, 2.0, sequence=1)

    assert coalescer.find("k", 2.0) is None
    assert await coalescer.fetch_once("k", fetcher, 2.0, sequence=2) == "ok"


@pytest.mark.asyncio
async def test_error_propagates_to_every_waiter(scripted):
    fetcher = scripted((0.01, RuntimeError("down")))
    coalescer = RequestCoalescer()

    results = await asyncio.gather(
        coalescer.fetch_once("k", fetcher, 2.0, sequence=1),
        coalescer.fetch_once("k", fetcher, 2.0, sequence=1),
        return_exceptions=True,
    )

    assert all(isinstance(r, RuntimeError) for r in results)
    assert fetcher.call_count == 1


@pytest.mark.asyncio
async def test_find_requires_matching_sequence(scripted):
    fetcher = scripted((0.01, "v"))
    coalescer = RequestCoalescer()
    entry = coalescer.start("k", fetcher, sequence=4)

    assert coalescer.find("k", 2.0, sequence=4) is entry
    assert coalescer.find("k", 2.0, sequence=5) is None
    await coalescer.join(entry)
    assert entry.waiter_count == 1


@pytest.mark.asyncio
async def test_stats_and_forget(scripted):
    fetcher = scripted((0.01, "v"))
    coalescer = RequestCoalescer()
    entry = coalescer.start("k", fetcher, sequence=1)

    stats = coalescer.get_stats()
    assert stats["active_requests"] == 1
    assert stats["active_keys"] == ["k"]

    await entry.task
    assert coalescer.active_requests == 0
    assert coalescer.get_stats()["dedup_window_keys"] == 1

    assert coalescer.forget("k") is True
    assert coalescer.forget("k") is False


@pytest.mark.asyncio
async def test_clear_cancels_running_fetches(scripted):
    fetcher = scripted((10.0, "never"))
    coalescer = RequestCoalescer()
    entry = coalescer.start("k", fetcher, sequence=1)
    await asyncio.sleep(0)

    coalescer.clear()
    with pytest.raises(asyncio.CancelledError):
        await entry.task
    assert coalescer.active_requests == 0
