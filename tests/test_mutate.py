"""
Direct mutation tests
"""
import asyncio

import pytest

from swrcache.cache import UNSET


@pytest.mark.asyncio
async def test_mutate_broadcasts_to_key_only(make_manager):
    """Only subscribers of the mutated key are notified"""
    manager = make_manager()
    seen_a, seen_b = [], []
    manager.subscribe("a", seen_a.append, revalidate_on_mount=False)
    manager.subscribe("b", seen_b.append, revalidate_on_mount=False)

    result = await manager.mutate("a", {"name": "new"}, should_revalidate=False)

    assert result == {"name": "new"}
    assert [r.data for r in seen_a] == [{"name": "new"}]
    assert seen_b == []


@pytest.mark.asyncio
async def test_mutate_writes_before_first_suspension(make_manager):
    """The local write is visible as soon as mutate starts running"""
    manager = make_manager()
    seen = []
    manager.subscribe("k", seen.append, revalidate_on_mount=False)

    task = asyncio.ensure_future(manager.mutate("k", 1, should_revalidate=False))
    await asyncio.sleep(0)

    assert [r.data for r in seen] == [1]
    await task


@pytest.mark.asyncio
async def test_updater_function_receives_current_data(make_manager):
    manager = make_manager()
    await manager.mutate("count", 1, should_revalidate=False)
    await manager.mutate("count", lambda current: current + 1, should_revalidate=False)
    assert manager.get_snapshot("count").data == 2


@pytest.mark.asyncio
async def test_awaitable_value(make_manager):
    manager = make_manager()

    async def save():
        await asyncio.sleep(0.01)
        return {"saved": True}

    assert await manager.mutate("k", save(), should_revalidate=False) == {"saved": True}


@pytest.mark.asyncio
async def test_async_updater(make_manager):
    manager = make_manager()
    await manager.mutate("todos", ["a"], should_revalidate=False)

    async def append(current):
        return current + ["b"]

    await manager.mutate("todos", append, should_revalidate=False)
    assert manager.get_snapshot("todos").data == ["a", "b"]


@pytest.mark.asyncio
async def test_failed_awaitable_stores_error_and_raises(make_manager):
    """The error is recorded and broadcast, the old data kept, and the error re-raised"""
    manager = make_manager()
    seen = []
    manager.subscribe("k", seen.append, revalidate_on_mount=False)
    await manager.mutate("k", "old", should_revalidate=False)

    async def save():
        raise ValueError("rejected")

    with pytest.raises(ValueError):
        await manager.mutate("k", save(), should_revalidate=False)

    record = manager.get_snapshot("k")
    assert record.data == "old"
    assert isinstance(record.error, ValueError)
    assert isinstance(seen[-1].error, ValueError)


@pytest.mark.asyncio
async def test_mutate_then_revalidate(make_manager, fetcher):
    manager = make_manager(fetcher)
    seen = []
    manager.subscribe("k", seen.append, revalidate_on_mount=False)

    result = await manager.mutate("k", {"optimistic": True})

    assert fetcher.call_count == 1
    assert result == {"n": 1}
    assert seen[0].data == {"optimistic": True}
    assert seen[-1].data == {"n": 1}


@pytest.mark.asyncio
async def test_unset_data_only_revalidates(make_manager, fetcher):
    manager = make_manager(fetcher)
    assert await manager.mutate("k") == {"n": 1}
    assert await manager.mutate("k", UNSET) == {"n": 2}
    assert manager.get_stats()["mutations"] == 0


@pytest.mark.asyncio
async def test_mutation_supersedes_inflight_fetch(make_manager, scripted):
    """A fetch started before a mutation cannot overwrite it"""
    fetcher = scripted((0.03, "server"))
    manager = make_manager(fetcher)
    sub = manager.subscribe("k")
    await asyncio.sleep(0)

    await manager.mutate("k", "local", should_revalidate=False)
    await manager.drain()

    assert sub.data == "local"
    assert sub.is_validating is False
    assert manager.get_stats()["superseded"] == 1


@pytest.mark.asyncio
async def test_fetch_during_async_mutation_is_dropped(make_manager, scripted):
    fetcher = scripted((0.0, "server"))
    manager = make_manager(fetcher, deduping_interval=0)
    sub = manager.subscribe("k", revalidate_on_mount=False)
    release = asyncio.Event()

    async def save():
        await release.wait()
        return "saved"

    mutation = asyncio.ensure_future(manager.mutate("k", save(), should_revalidate=False))
    await asyncio.sleep(0)
    await sub.revalidate()
    release.set()
    await mutation

    assert fetcher.call_count == 1
    assert sub.data == "saved"


@pytest.mark.asyncio
async def test_equal_result_keeps_existing_object(make_manager, scripted):
    """compare() deciding the data is unchanged keeps the previous reference"""
    fetcher = scripted((0.0, lambda n: {"v": 1}))
    manager = make_manager(fetcher)
    original = {"v": 1}
    await manager.mutate("k", original, should_revalidate=False)

    await manager.revalidate("k")
    assert manager.get_snapshot("k").data is original


@pytest.mark.asyncio
async def test_custom_compare(make_manager, scripted):
    fetcher = scripted((0.0, lambda n: {"v": 1}))
    manager = make_manager(fetcher, compare=lambda previous, current: False)
    original = {"v": 1}
    await manager.mutate("k", original, should_revalidate=False)

    await manager.revalidate("k")
    data = manager.get_snapshot("k").data
    assert data == original
    assert data is not original


@pytest.mark.asyncio
async def test_subscription_mutate(make_manager):
    manager = make_manager()
    sub = manager.subscribe("k", revalidate_on_mount=False)
    assert await sub.mutate("x", should_revalidate=False) == "x"
    assert sub.data == "x"


@pytest.mark.asyncio
async def test_absent_key_mutation_is_noop(make_manager):
    manager = make_manager()
    assert await manager.mutate(None, "x") is None
    assert len(manager.store) == 0
