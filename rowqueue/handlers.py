from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any, Protocol

from .exceptions import InvalidArgument
from .models import Item

logger = logging.getLogger("rowqueue.handlers")


class ItemHandler(Protocol):
    """Protocol for item processing."""

    async def handle(self, item: Item) -> None:
        """Process one claimed item; raise to mark it failed."""
        ...


class HandlerRegistry:
    """Registry of handlers keyed by routing key."""

    def __init__(self) -> None:
        self._map: dict[str, ItemHandler] = {}
        self._fallback: ItemHandler | None = None

    def add(self, routing_key: str, handler: ItemHandler) -> None:
        """Register a handler for a routing key."""
        if not routing_key:
            raise InvalidArgument("Routing key cannot be null or empty")
        self._map[routing_key] = handler
        logger.info(f"Registered handler: {routing_key}")

    def set_fallback(self, handler: ItemHandler | None) -> None:
        """Handler used when no routing key matches."""
        self._fallback = handler

    def get(self, routing_key: str) -> ItemHandler | None:
        """Get handler by routing key."""
        return self._map.get(routing_key, self._fallback)

    def routing_keys(self) -> list[str]:
        """List all registered routing keys."""
        return list(self._map.keys())


class SyncHandlerAdapter:
    """Adapter to run synchronous callables as async handlers."""

    def __init__(self, fn: Callable[[Item], Any], *, name: str | None = None):
        self.fn = fn
        self.name = name or getattr(fn, "__name__", "sync_handler")

    async def handle(self, item: Item) -> None:
        """Run the function in a worker thread."""
        await asyncio.to_thread(self.fn, item)
