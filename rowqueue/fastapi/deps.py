from fastapi import Depends, Request

from ..manager import QueueManager
from ..store.base import ItemStore
from .lifecycle import MANAGER_STATE_KEY


def get_queue_manager(request: Request) -> QueueManager:
    """QueueManager stored on app state by setup_rowqueue()."""
    mgr = getattr(request.app.state, MANAGER_STATE_KEY, None)
    if mgr is None:
        raise RuntimeError("QueueManager not initialized. Did you call setup_rowqueue()?")
    return mgr


def get_item_store(manager: QueueManager = Depends(get_queue_manager)) -> ItemStore:
    """Store behind the app's QueueManager, for producer and consumer routes."""
    return manager.store()
