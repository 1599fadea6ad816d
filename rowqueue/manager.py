from __future__ import annotations

import builtins
from collections.abc import Iterable
from datetime import timedelta

from .exceptions import InvalidArgument
from .models import Item, ItemStatus
from .store.base import ItemStore
from .util.time import cutoff


def _as_ids(item_ids: int | Iterable[int]) -> list[int]:
    if isinstance(item_ids, int) and not isinstance(item_ids, bool):
        return [item_ids]
    return list(item_ids)


class QueueManager:
    """Monitoring and manual-retry API over an ItemStore."""

    def __init__(self, store: ItemStore):
        if store is None:
            raise InvalidArgument("store is required")
        self._store = store

    def store(self) -> ItemStore:
        """Get store instance."""
        return self._store

    async def get_items(
        self,
        routing_key: str | None = None,
        status: ItemStatus | int | str | None = None,
        *,
        limit: int | None = None,
    ) -> builtins.list[Item]:
        """List items with filters."""
        return await self._store.query(routing_key, status, limit=limit)

    async def update_status(
        self,
        item_ids: int | Iterable[int],
        status: ItemStatus | int | str,
        error: str | None = None,
    ) -> None:
        """Set status for one id or many."""
        await self._store.set_status(_as_ids(item_ids), status, error)

    async def complete(self, item_ids: int | Iterable[int]) -> None:
        await self.update_status(item_ids, ItemStatus.completed)

    async def fail(self, item_ids: int | Iterable[int], error: str | None) -> None:
        await self.update_status(item_ids, ItemStatus.failed, error)

    async def retry(self, item_ids: int | Iterable[int]) -> None:
        """Reset items to New, clearing completed_at and error."""
        await self.update_status(item_ids, ItemStatus.new)

    async def retry_failed(
        self,
        routing_key: str | None = None,
        older_than: timedelta | None = None,
    ) -> int:
        """Reset Failed items to New, optionally only those older than ``older_than``."""
        before = cutoff(older_than) if older_than is not None else None
        return await self._store.reset_failed(routing_key, created_before=before)

    async def requeue_stale(self, max_age_seconds: int = 3600, routing_key: str | None = None) -> int:
        """Reset InProgress items claimed more than ``max_age_seconds`` ago to New.

        Items finalized between the decision and the write are left alone.
        """
        if max_age_seconds < 0:
            raise InvalidArgument("max_age_seconds must be >= 0")
        before = cutoff(timedelta(seconds=max_age_seconds))
        return await self._store.requeue_stale(before, routing_key)

    async def counts(self, routing_key: str | None = None) -> dict[ItemStatus, int]:
        """Number of items per status."""
        out = {s: 0 for s in ItemStatus}
        for item in await self._store.query(routing_key):
            out[item.status] += 1
        return out
