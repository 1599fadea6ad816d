from __future__ import annotations

import abc
from collections.abc import Iterable
from datetime import datetime

from ..models import Item, ItemStatus


class ItemStore(abc.ABC):
    """Abstract base for item persistence and the claim protocol."""

    @abc.abstractmethod
    async def enqueue(
        self,
        routing_key: str,
        content: bytes | None = None,
        metadata: bytes | None = None,
    ) -> int:
        """Append a new item in New status and return its id."""
        ...

    @abc.abstractmethod
    async def claim(self, routing_key: str | None = None) -> Item | None:
        """Move the oldest New item to InProgress and return it, or None."""
        ...

    @abc.abstractmethod
    async def set_status(
        self,
        ids: Iterable[int],
        status: ItemStatus | int | str,
        error: str | None = None,
    ) -> None:
        """Set status, completed_at and error for every existing id in one statement."""
        ...

    @abc.abstractmethod
    async def query(
        self,
        routing_key: str | None = None,
        status: ItemStatus | int | str | None = None,
        *,
        created_before: datetime | None = None,
        limit: int | None = None,
    ) -> list[Item]:
        """List items ascending by id."""
        ...

    @abc.abstractmethod
    async def requeue_stale(
        self,
        claimed_before: datetime,
        routing_key: str | None = None,
    ) -> int:
        """Reset InProgress items claimed before ``claimed_before`` to New.

        One conditional update: an item finalized concurrently is left alone.
        """
        ...

    @abc.abstractmethod
    async def reset_failed(
        self,
        routing_key: str | None = None,
        created_before: datetime | None = None,
    ) -> int:
        """Reset Failed items to New in one conditional update."""
        ...

    async def init_schema(self) -> None:
        """Create the backing table and indexes if the backend needs them."""
        return None

    @abc.abstractmethod
    async def close(self) -> None:
        """Close store connections."""
        ...

    async def __aenter__(self) -> ItemStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
