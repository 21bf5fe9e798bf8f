"""
Interval polling tests
"""
import asyncio

import pytest


@pytest.mark.asyncio
async def test_polls_while_subscribed(make_manager, fetcher):
    manager = make_manager(fetcher, deduping_interval=0, refresh_interval=0.02)
    sub = manager.subscribe("k")

    await asyncio.sleep(0.15)

    assert fetcher.call_count >= 3
    assert sub.data["n"] >= 3


@pytest.mark.asyncio
async def test_zero_interval_never_polls(make_manager, fetcher):
    manager = make_manager(fetcher, deduping_interval=0, refresh_interval=0)
    manager.subscribe("k")
    await asyncio.sleep(0.05)
    assert fetcher.call_count == 1


@pytest.mark.asyncio
async def test_unsubscribe_stops_polling(make_manager, fetcher):
    manager = make_manager(fetcher, deduping_interval=0, refresh_interval=0.01)
    sub = manager.subscribe("k")
    await asyncio.sleep(0.05)

    sub.unsubscribe()
    await manager.drain()
    count = fetcher.call_count
    await asyncio.sleep(0.05)

    assert fetcher.call_count == count


@pytest.mark.asyncio
async def test_interval_change_takes_effect(make_manager, fetcher):
    """Changing refresh_interval at runtime reschedules the polling timer"""
    manager = make_manager(fetcher, deduping_interval=0, refresh_interval=60.0)
    sub = manager.subscribe("k")
    await manager.drain()
    assert fetcher.call_count == 1

    sub.update(refresh_interval=0.01)
    await asyncio.sleep(0.06)
    assert fetcher.call_count >= 3

    sub.update(refresh_interval=0)
    await manager.drain()
    count = fetcher.call_count
    await asyncio.sleep(0.05)
    assert fetcher.call_count == count


@pytest.mark.asyncio
async def test_hidden_document_skips_polls(make_manager, fetcher, environment):
    environment.set_visible(False)
    manager = make_manager(
        fetcher, deduping_interval=0, refresh_interval=0.01, revalidate_on_mount=False
    )
    manager.subscribe("k")
    await asyncio.sleep(0.05)
    assert fetcher.call_count == 0


@pytest.mark.asyncio
async def test_refresh_when_hidden(make_manager, fetcher, environment):
    environment.set_visible(False)
    manager = make_manager(
        fetcher,
        deduping_interval=0,
        refresh_interval=0.01,
        refresh_when_hidden=True,
        revalidate_on_mount=False,
    )
    manager.subscribe("k")
    await asyncio.sleep(0.06)
    assert fetcher.call_count >= 2


@pytest.mark.asyncio
async def test_offline_skips_polls_until_allowed(make_manager, fetcher, environment):
    environment.set_online(False)
    manager = make_manager(
        fetcher,
        deduping_interval=0,
        refresh_interval=0.01,
        revalidate_on_mount=False,
        revalidate_on_reconnect=False,
    )
    sub = manager.subscribe("k")
    await asyncio.sleep(0.05)
    assert fetcher.call_count == 0

    sub.update(refresh_when_offline=True)
    await asyncio.sleep(0.05)
    assert fetcher.call_count >= 2


@pytest.mark.asyncio
async def test_polling_continues_after_errors(make_manager, scripted):
    fetcher = scripted((0.0, RuntimeError("down")))
    manager = make_manager(
        fetcher, deduping_interval=0, refresh_interval=0.01, should_retry_on_error=False
    )
    sub = manager.subscribe("k")
    await asyncio.sleep(0.06)
    assert fetcher.call_count >= 3
    assert isinstance(sub.error, RuntimeError)


@pytest.mark.asyncio
async def test_polls_are_per_subscription(make_manager, fetcher):
    manager = make_manager(fetcher, deduping_interval=0)
    manager.subscribe("k", refresh_interval=0.01, revalidate_on_mount=False)
    manager.subscribe("k", revalidate_on_mount=False)
    await asyncio.sleep(0.05)

    polled = fetcher.call_count
    assert polled >= 2
    assert manager.get_stats()["subscriptions"] == 2
