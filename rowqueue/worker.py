from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from .events import ItemEvent
from .handlers import HandlerRegistry
from .models import Item, ItemStatus
from .store.base import ItemStore

logger = logging.getLogger("rowqueue.worker")


class Worker:
    """Polls the store, dispatches claimed items by routing key and finalizes them."""

    def __init__(
        self,
        store: ItemStore,
        registry: HandlerRegistry,
        *,
        routing_key: str | None = None,
        worker_id: str | None = None,
        on_event: Callable[[ItemEvent], None] | None = None,
        poll_interval: float = 1.0,
        handler_timeout: float | None = None,
    ):
        self._store = store
        self._registry = registry
        self._routing_key = routing_key
        self._worker_id = worker_id or f"worker-{id(self)}"
        self._on_event = on_event
        self._poll_interval = poll_interval
        self._handler_timeout = handler_timeout

        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self._current_item_id: int | None = None

    @property
    def worker_id(self) -> str:
        return self._worker_id

    def start(self) -> asyncio.Task[None]:
        """Start worker."""
        if self._task and not self._task.done():
            return self._task

        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name=f"rowqueue-{self._worker_id}")
        logger.info(f"Worker {self._worker_id} started")
        return self._task

    async def stop(self, grace_seconds: float = 30) -> None:
        """Stop polling; let an in-flight item finish within ``grace_seconds``."""
        self._stop_event.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=grace_seconds)
        except asyncio.TimeoutError:
            if self._current_item_id is not None:
                logger.warning(
                    f"Worker {self._worker_id} abandoned item {self._current_item_id} in progress"
                )
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        logger.info(f"Worker {self._worker_id} stopped")

    async def run_once(self) -> Item | None:
        """Claim and handle at most one item. Returns the item handled."""
        item = await self._store.claim(self._routing_key)
        if item is None:
            return None
        await self._handle_item(item)
        return item

    async def _run(self) -> None:
        """Main worker loop."""
        while not self._stop_event.is_set():
            try:
                item = await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception(f"Worker loop error: {e}")
                item = None

            if item is None:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._poll_interval)

    async def _handle_item(self, item: Item) -> None:
        """Dispatch a claimed item and record the outcome."""
        self._current_item_id = item.id
        self._emit("claimed", item, ItemStatus.in_progress)
        try:
            handler = self._registry.get(item.routing_key)
            if handler is None:
                await self._fail_item(item, f"No handler registered for routing key: {item.routing_key}")
                return

            try:
                if self._handler_timeout:
                    await asyncio.wait_for(handler.handle(item), timeout=self._handler_timeout)
                else:
                    await handler.handle(item)
            except asyncio.TimeoutError:
                await self._fail_item(item, f"Handler exceeded timeout of {self._handler_timeout}s")
                return
            except Exception as e:
                await self._fail_item(item, str(e) or type(e).__name__)
                return

            await self._store.set_status([item.id], ItemStatus.completed)
            self._emit("completed", item, ItemStatus.completed)
            logger.info(f"Item {item.id} completed")
        finally:
            self._current_item_id = None

    async def _fail_item(self, item: Item, error: str) -> None:
        """Mark item as failed."""
        await self._store.set_status([item.id], ItemStatus.failed, error)
        self._emit("failed", item, ItemStatus.failed, {"error": error})
        logger.error(f"Item {item.id} failed: {error}")

    def _emit(self, etype, item: Item, status: ItemStatus, data: dict | None = None) -> None:
        if self._on_event:
            self._on_event(
                ItemEvent(
                    etype=etype,
                    item_id=item.id,
                    routing_key=item.routing_key,
                    status=status,
                    data=data,
                    timestamp=datetime.now(UTC).isoformat(),
                )
            )
