"""
MemoryItemStore: asyncio.Lock-based item store for tests and development.

Rows live in a dict keyed by id. Claims use the same conditional update as
the SQLite backend (only a row still in New status can be moved to
InProgress), so the claim protocol behaves identically for concurrent
coroutines in one event loop. NOT shared across processes or threads.
"""

from __future__ import annotations

import asyncio
import builtins
import dataclasses
import logging
from collections.abc import Iterable
from datetime import datetime

from ..models import Item, ItemStatus
from ..util.checks import check_ids, check_limit, check_payload, check_routing_key, check_status
from ..util.time import now_utc, to_utc
from .base import ItemStore

logger = logging.getLogger("rowqueue.store.memory")


class MemoryItemStore(ItemStore):
    """In-process item store."""

    def __init__(self) -> None:
        self._rows: dict[int, Item] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def enqueue(
        self,
        routing_key: str,
        content: bytes | None = None,
        metadata: bytes | None = None,
    ) -> int:
        routing_key = check_routing_key(routing_key)
        content = check_payload("content", content)
        metadata = check_payload("metadata", metadata)
        async with self._lock:
            item_id = self._next_id
            self._next_id += 1
            self._rows[item_id] = Item(
                id=item_id,
                routing_key=routing_key,
                content=content,
                metadata=metadata,
            )
        logger.debug(f"Enqueued item {item_id} for {routing_key}")
        return item_id

    async def claim(self, routing_key: str | None = None) -> Item | None:
        async with self._lock:
            for item_id in sorted(self._rows):
                row = self._rows[item_id]
                if row.status != ItemStatus.new:
                    continue
                if routing_key and row.routing_key != routing_key:
                    continue
                row.status = ItemStatus.in_progress
                row.claimed_at = now_utc()
                logger.debug(f"Claimed item {item_id} ({row.routing_key})")
                return dataclasses.replace(row)
        return None

    async def set_status(
        self,
        ids: Iterable[int],
        status: ItemStatus | int | str,
        error: str | None = None,
    ) -> None:
        id_list = check_ids(ids)
        if not id_list:
            return
        status = check_status(status)
        completed_at = now_utc() if status.is_terminal() else None
        async with self._lock:
            for item_id in id_list:
                row = self._rows.get(item_id)
                if row is None:
                    continue
                row.status = status
                row.completed_at = completed_at
                row.error = error

    async def query(
        self,
        routing_key: str | None = None,
        status: ItemStatus | int | str | None = None,
        *,
        created_before: datetime | None = None,
        limit: int | None = None,
    ) -> builtins.list[Item]:
        limit = check_limit(limit)
        wanted = ItemStatus.parse(status) if status is not None else None
        before = to_utc(created_before)
        out: list[Item] = []
        async with self._lock:
            for item_id in sorted(self._rows):
                if limit is not None and len(out) >= limit:
                    break
                row = self._rows[item_id]
                if routing_key and row.routing_key != routing_key:
                    continue
                if wanted is not None and row.status != wanted:
                    continue
                if before is not None and not row.created_at < before:
                    continue
                out.append(dataclasses.replace(row))
        return out

    async def requeue_stale(
        self,
        claimed_before: datetime,
        routing_key: str | None = None,
    ) -> int:
        before = to_utc(claimed_before)
        count = 0
        async with self._lock:
            for row in self._rows.values():
                if row.status != ItemStatus.in_progress:
                    continue
                if routing_key and row.routing_key != routing_key:
                    continue
                if row.claimed_at is None or not row.claimed_at < before:
                    continue
                row.status = ItemStatus.new
                row.completed_at = None
                row.error = None
                row.claimed_at = None
                count += 1
        if count > 0:
            logger.warning(f"Requeued {count} stale in-progress items")
        return count

    async def reset_failed(
        self,
        routing_key: str | None = None,
        created_before: datetime | None = None,
    ) -> int:
        before = to_utc(created_before)
        count = 0
        async with self._lock:
            for row in self._rows.values():
                if row.status != ItemStatus.failed:
                    continue
                if routing_key and row.routing_key != routing_key:
                    continue
                if before is not None and not row.created_at < before:
                    continue
                row.status = ItemStatus.new
                row.completed_at = None
                row.error = None
                count += 1
        if count > 0:
            logger.info(f"Reset {count} failed items to new")
        return count

    async def close(self) -> None:
        return None
