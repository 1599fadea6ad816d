from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from ..connect import open_store
from ..handlers import HandlerRegistry
from ..manager import QueueManager
from ..store.base import ItemStore
from ..store.sqlite import SqliteItemStore
from ..worker import Worker

logger = logging.getLogger("rowqueue.lifecycle")

MANAGER_STATE_KEY = "rowqueue_manager"
WORKER_STATE_KEY = "rowqueue_workers"


def setup_rowqueue(
    app: FastAPI,
    *,
    db_path: str | None = None,
    dsn: str | None = None,
    store: ItemStore | None = None,
    registry: HandlerRegistry | None = None,
    worker_count: int = 0,
    routing_key: str | None = None,
    poll_interval: float = 1.0,
    init_schema: bool = True,
    include_router: bool = True,
    prefix: str = "/api/v1",
) -> QueueManager:
    """Setup rowqueue in a FastAPI application."""
    if store is None:
        if dsn:
            store = open_store(dsn)
        elif db_path:
            store = SqliteItemStore(db_path=db_path)
        else:
            raise ValueError("Provide `store`, `dsn` or `db_path`")

    if worker_count and registry is None:
        raise ValueError("Workers need a `registry` of handlers")

    mgr = QueueManager(store)
    setattr(app.state, MANAGER_STATE_KEY, mgr)

    @asynccontextmanager
    async def _lifespan(app_: FastAPI):
        if init_schema:
            await store.init_schema()

        workers = []
        for i in range(worker_count):
            worker = Worker(
                store,
                registry,
                routing_key=routing_key,
                worker_id=f"worker-{i}",
                poll_interval=poll_interval,
            )
            worker.start()
            workers.append(worker)

        setattr(app_.state, WORKER_STATE_KEY, workers)
        if workers:
            logger.info(f"Started {len(workers)} workers")

        try:
            yield
        finally:
            logger.info("Shutting down rowqueue...")

            for worker in workers:
                try:
                    await worker.stop()
                except Exception:
                    logger.exception("Failed to stop worker")

            try:
                await store.close()
            except Exception:
                logger.exception("Failed to close store")

            logger.info("rowqueue shutdown complete")

    # Compose with existing lifespan
    existing = app.router.lifespan_context
    if existing is None:
        app.router.lifespan_context = _lifespan
    else:

        @asynccontextmanager
        async def _composed(app_: FastAPI):
            async with existing(app_):
                async with _lifespan(app_):
                    yield

        app.router.lifespan_context = _composed

    if include_router:
        from .router import get_router

        app.include_router(get_router(), prefix=prefix)

    return mgr
