import asyncio
from datetime import timedelta

import pytest

from rowqueue.exceptions import InvalidArgument
from rowqueue.models import ItemStatus
from rowqueue.util.time import now_utc


@pytest.mark.asyncio
async def test_memory_store_lifecycle(mem_store):
    a = await mem_store.enqueue("k", b"payload", b"meta")
    b = await mem_store.enqueue("other")
    assert (a, b) == (1, 2)

    item = await mem_store.claim("k")
    assert item.id == a and item.status == ItemStatus.in_progress
    assert item.content == b"payload" and item.metadata == b"meta"
    assert await mem_store.claim("k") is None

    # Returned items are copies; mutating them does not touch the store
    item.status = ItemStatus.new
    assert (await mem_store.query("k"))[0].status == ItemStatus.in_progress

    await mem_store.set_status([a, 42], ItemStatus.failed, "boom")
    failed = await mem_store.query(status="failed")
    assert [i.id for i in failed] == [a] and failed[0].error == "boom" and failed[0].completed_at

    await mem_store.set_status([a], ItemStatus.new)
    reset = (await mem_store.query("k"))[0]
    assert reset.status == ItemStatus.new and reset.error is None and reset.completed_at is None

    assert [i.id for i in await mem_store.query(limit=1)] == [a]
    await mem_store.close()


@pytest.mark.asyncio
async def test_memory_store_concurrent_claims(mem_store):
    ids = [await mem_store.enqueue("a" if i % 3 else "b") for i in range(30)]
    results = await asyncio.gather(*(mem_store.claim() for _ in range(30)))
    assert sorted(r.id for r in results) == ids


@pytest.mark.asyncio
async def test_memory_store_validation(mem_store):
    with pytest.raises(InvalidArgument):
        await mem_store.enqueue("")
    with pytest.raises(InvalidArgument):
        await mem_store.set_status([1], -1)
    await mem_store.set_status([], -1)


@pytest.mark.asyncio
async def test_memory_store_query_limit(mem_store):
    for _ in range(3):
        await mem_store.enqueue("l")
    assert await mem_store.query(limit=0) == []
    assert [i.id for i in await mem_store.query(limit=2)] == [1, 2]
    with pytest.raises(InvalidArgument):
        await mem_store.query(limit=-1)


@pytest.mark.asyncio
async def test_memory_store_recovery_is_status_guarded(mem_store):
    stale = await mem_store.enqueue("s")
    fresh = await mem_store.enqueue("s")
    done = await mem_store.enqueue("s")
    failed = await mem_store.enqueue("s")
    for _ in range(4):
        await mem_store.claim("s")
    await mem_store.set_status([done], ItemStatus.completed)
    await mem_store.set_status([failed], ItemStatus.failed, "boom")

    # Only the stale claim is older than the cutoff; the others were claimed just now
    hour_ago = now_utc() - timedelta(hours=1)
    for item_id in (stale, done, failed):
        mem_store._rows[item_id].claimed_at = now_utc() - timedelta(hours=2)
    mem_store._rows[fresh].created_at = now_utc() - timedelta(hours=2)

    assert await mem_store.requeue_stale(hour_ago) == 1
    by_id = {i.id: i for i in await mem_store.query("s")}
    assert by_id[stale].status == ItemStatus.new and by_id[stale].claimed_at is None
    assert by_id[fresh].status == ItemStatus.in_progress
    assert by_id[done].status == ItemStatus.completed

    assert await mem_store.reset_failed("s") == 1
    by_id = {i.id: i for i in await mem_store.query("s")}
    assert by_id[failed].status == ItemStatus.new and by_id[failed].error is None
    assert by_id[done].status == ItemStatus.completed
