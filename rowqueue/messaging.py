from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .codec import JsonBase64Codec, PayloadCodec
from .exceptions import InvalidArgument
from .models import Item, ItemStatus
from .store.base import ItemStore

logger = logging.getLogger("rowqueue.messaging")


@dataclass
class Message:
    """A claimed item with decoded payloads."""

    id: int
    routing_key: str
    status: ItemStatus
    created_at: datetime
    completed_at: datetime | None
    content: Any
    metadata: Any
    error: str | None = None

    @classmethod
    def from_item(cls, item: Item, codec: PayloadCodec) -> Message:
        return cls(
            id=item.id,
            routing_key=item.routing_key,
            status=item.status,
            created_at=item.created_at,
            completed_at=item.completed_at,
            content=codec.decode(item.content),
            metadata=codec.decode(item.metadata),
            error=item.error,
        )


class Sender:
    """Encodes Python values and enqueues them."""

    def __init__(self, store: ItemStore, codec: PayloadCodec | None = None):
        if store is None:
            raise InvalidArgument("store is required")
        self._store = store
        self._codec = codec or JsonBase64Codec()

    async def send(self, routing_key: str, content: Any, metadata: Any = None) -> int:
        """Enqueue ``content`` (and optional ``metadata``) under ``routing_key``."""
        return await self._store.enqueue(
            routing_key,
            content=self._codec.encode(content),
            metadata=self._codec.encode(metadata),
        )


class Receiver:
    """Claims items and decodes their payloads."""

    def __init__(self, store: ItemStore, codec: PayloadCodec | None = None):
        if store is None:
            raise InvalidArgument("store is required")
        self._store = store
        self._codec = codec or JsonBase64Codec()

    async def receive(self, routing_key: str | None = None) -> Message | None:
        """Claim the next item, or return None when nothing is waiting."""
        item = await self._store.claim(routing_key)
        if item is None:
            return None
        return Message.from_item(item, self._codec)
