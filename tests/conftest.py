# tests/conftest.py
import asyncio
import os
import typing as t
from pathlib import Path

import pytest

from rowqueue.handlers import HandlerRegistry
from rowqueue.store.memory import MemoryItemStore
from rowqueue.store.sqlite import SqliteItemStore


@pytest.fixture()
def tmp_db_path(tmp_path: Path) -> str:
    return str(tmp_path / "queue.db")


@pytest.fixture()
async def store(tmp_db_path: str):
    s = SqliteItemStore(db_path=tmp_db_path)
    await s.init_schema()
    try:
        yield s
    finally:
        await s.close()


@pytest.fixture()
def mem_store():
    return MemoryItemStore()


@pytest.fixture()
def registry():
    return HandlerRegistry()


@pytest.fixture()
def pg_dsn():
    dsn = os.environ.get("ROWQUEUE_TEST_PG_DSN")
    if not dsn:
        pytest.skip("ROWQUEUE_TEST_PG_DSN not set")
    return dsn


async def wait_for(
    predicate: t.Callable[[], t.Awaitable[bool]] | t.Callable[[], bool], timeout=2.0, interval=0.01
):
    end = asyncio.get_event_loop().time() + timeout
    while asyncio.get_event_loop().time() < end:
        res = await predicate() if asyncio.iscoroutinefunction(predicate) else predicate()
        if res:
            return True
        await asyncio.sleep(interval)
    return False
