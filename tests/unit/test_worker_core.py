import asyncio

import pytest

from conftest import wait_for
from rowqueue.handlers import HandlerRegistry, SyncHandlerAdapter
from rowqueue.models import ItemStatus
from rowqueue.worker import Worker


class RecordingHandler:
    def __init__(self):
        self.seen = []

    async def handle(self, item):
        self.seen.append(item.id)


class BoomHandler:
    async def handle(self, item):
        raise ValueError("oh no")


class SlowHandler:
    async def handle(self, item):
        await asyncio.sleep(5)


@pytest.mark.asyncio
async def test_worker_end_to_end_variants(store):
    reg = HandlerRegistry()
    ok = RecordingHandler()
    reg.add("ok", ok)
    reg.add("boom", BoomHandler())
    events = []

    wk = Worker(store, reg, on_event=events.append, poll_interval=0.01)
    # start idempotence
    t1 = wk.start()
    t2 = wk.start()
    assert t1 is t2

    ok_id = await store.enqueue("ok", b"1")
    boom_id = await store.enqueue("boom")
    orphan_id = await store.enqueue("nobody-listens")

    async def all_done():
        items = await store.query()
        return all(i.status.is_terminal() for i in items)

    assert await wait_for(all_done, timeout=5.0)
    await wk.stop()

    by_id = {i.id: i for i in await store.query()}
    assert by_id[ok_id].status == ItemStatus.completed and by_id[ok_id].error is None
    assert by_id[boom_id].status == ItemStatus.failed and by_id[boom_id].error == "oh no"
    assert by_id[orphan_id].status == ItemStatus.failed
    assert "No handler registered" in by_id[orphan_id].error
    assert ok.seen == [ok_id]

    kinds = [(e.etype, e.item_id) for e in events]
    assert ("claimed", ok_id) in kinds and ("completed", ok_id) in kinds
    assert ("failed", boom_id) in kinds and ("failed", orphan_id) in kinds


@pytest.mark.asyncio
async def test_worker_run_once_with_routing_key_and_fallback(mem_store):
    reg = HandlerRegistry()
    calls = []
    reg.set_fallback(SyncHandlerAdapter(lambda item: calls.append(item.routing_key)))

    await mem_store.enqueue("skip-me")
    wanted = await mem_store.enqueue("mine")

    wk = Worker(mem_store, reg, routing_key="mine")
    handled = await wk.run_once()
    assert handled.id == wanted and calls == ["mine"]
    assert await wk.run_once() is None

    statuses = {i.routing_key: i.status for i in await mem_store.query()}
    assert statuses == {"skip-me": ItemStatus.new, "mine": ItemStatus.completed}


@pytest.mark.asyncio
async def test_worker_handler_timeout_marks_failed(mem_store):
    reg = HandlerRegistry()
    reg.add("slow", SlowHandler())
    item_id = await mem_store.enqueue("slow")

    wk = Worker(mem_store, reg, handler_timeout=0.05)
    await wk.run_once()
    item = (await mem_store.query())[0]
    assert item.id == item_id and item.status == ItemStatus.failed
    assert "timeout" in item.error


@pytest.mark.asyncio
async def test_worker_stop_abandons_item_after_grace(mem_store):
    reg = HandlerRegistry()
    reg.add("slow", SlowHandler())
    await mem_store.enqueue("slow")

    wk = Worker(mem_store, reg, poll_interval=0.01)
    wk.start()
    assert await wait_for(lambda: wk._current_item_id is not None)
    await wk.stop(grace_seconds=0.05)

    # Abandoned claims stay in progress until someone resets them
    item = (await mem_store.query())[0]
    assert item.status == ItemStatus.in_progress


@pytest.mark.asyncio
async def test_worker_survives_store_errors(mem_store):
    class FlakyStore:
        def __init__(self, inner):
            self.inner = inner
            self.calls = 0

        async def claim(self, routing_key=None):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("db hiccup")
            return await self.inner.claim(routing_key)

        async def set_status(self, ids, status, error=None):
            await self.inner.set_status(ids, status, error)

    reg = HandlerRegistry()
    reg.add("k", RecordingHandler())
    await mem_store.enqueue("k")
    flaky = FlakyStore(mem_store)

    wk = Worker(flaky, reg, poll_interval=0.01)
    wk.start()

    async def completed():
        return (await mem_store.query())[0].status == ItemStatus.completed

    assert await wait_for(completed)
    await wk.stop()
    assert flaky.calls >= 2


@pytest.mark.asyncio
async def test_registry_basics():
    reg = HandlerRegistry()
    h = RecordingHandler()
    reg.add("a", h)
    assert reg.get("a") is h and reg.get("b") is None
    assert reg.routing_keys() == ["a"]
    with pytest.raises(ValueError):
        reg.add("", h)
    adapter = SyncHandlerAdapter(len)
    assert adapter.name == "len"
