"""
rowqueue - Durable work-item queue on a single relational table.

Usage:
    from rowqueue import SqliteItemStore, Sender, Receiver, ItemStatus

    store = SqliteItemStore(db_path="./queue.db")
    await store.init_schema()

    item_id = await Sender(store).send("orders.created", {"order": 42})

    msg = await Receiver(store).receive("orders.created")
    if msg is not None:
        await store.set_status([msg.id], ItemStatus.completed)
"""

from .codec import JsonBase64Codec, PayloadCodec
from .connect import open_store
from .events import ItemEvent
from .exceptions import InvalidArgument, RowQueueError, StoreUnavailable
from .handlers import HandlerRegistry, ItemHandler, SyncHandlerAdapter
from .manager import QueueManager
from .messaging import Message, Receiver, Sender
from .models import Item, ItemStatus
from .store.base import ItemStore
from .store.memory import MemoryItemStore
from .store.postgres import PostgresItemStore
from .store.sqlite import SqliteItemStore
from .version import __version__
from .worker import Worker

__all__ = [
    # Version
    "__version__",
    # Core
    "Item",
    "ItemStatus",
    # Store
    "ItemStore",
    "SqliteItemStore",
    "MemoryItemStore",
    "PostgresItemStore",
    "open_store",
    # Messaging
    "Sender",
    "Receiver",
    "Message",
    "PayloadCodec",
    "JsonBase64Codec",
    # Manager
    "QueueManager",
    # Dispatch
    "HandlerRegistry",
    "ItemHandler",
    "SyncHandlerAdapter",
    "Worker",
    "ItemEvent",
    # Exceptions
    "RowQueueError",
    "InvalidArgument",
    "StoreUnavailable",
]
