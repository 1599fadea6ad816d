from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import Base64Bytes, BaseModel, Field, StrictInt, StringConstraints

from ..models import MAX_ROUTING_KEY_LENGTH

RoutingKeyStr = Annotated[str, StringConstraints(min_length=1, max_length=MAX_ROUTING_KEY_LENGTH)]


class EnqueueRequest(BaseModel):
    """Request to append a new item. Payloads are base64 strings."""

    routing_key: RoutingKeyStr
    content: Base64Bytes | None = None
    metadata: Base64Bytes | None = None


class EnqueueResponse(BaseModel):
    """Response after enqueueing an item."""

    id: int
    links: dict[str, str]


class ItemResponse(BaseModel):
    """Stored item. Payloads are base64 strings."""

    id: int
    routing_key: str
    status: str
    created_at: datetime
    completed_at: datetime | None = None
    claimed_at: datetime | None = None
    metadata: str | None = None
    content: str | None = None
    error: str | None = None


class ListItemsResponse(BaseModel):
    """Items matching the filters, ascending by id."""

    items: list[ItemResponse]
    total: int


class SetStatusRequest(BaseModel):
    """Batch status update."""

    ids: list[int] = Field(default_factory=list)
    status: StrictInt | str
    error: str | None = None


class CountsResponse(BaseModel):
    """Number of items per status."""

    new: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0
