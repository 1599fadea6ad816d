from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from .models import ItemStatus


@dataclass
class ItemEvent:
    """Event emitted by a worker while handling an item."""

    etype: Literal["claimed", "completed", "failed"]
    item_id: int
    routing_key: str
    status: ItemStatus
    data: dict[str, Any] | None = None
    timestamp: str | None = None
