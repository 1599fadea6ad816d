from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any

from .exceptions import InvalidArgument
from .util.time import iso, now_utc

TABLE_NAME_PATTERN = r"^[A-Za-z_][A-Za-z0-9_]{0,62}$"

DEFAULT_TABLE_NAME = "rowqueue_items"

MAX_ROUTING_KEY_LENGTH = 255


class ItemStatus(IntEnum):
    """Item lifecycle states. The integer codes are persisted as-is."""

    new = 0
    in_progress = 1
    completed = 2
    failed = 3

    def is_terminal(self) -> bool:
        """Check if status is terminal (completed or failed)."""
        return self in (ItemStatus.completed, ItemStatus.failed)

    @classmethod
    def parse(cls, value: ItemStatus | int | str) -> ItemStatus:
        """Accept a member, its integer code or its name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise InvalidArgument(f"Unrecognized item status: {value!r}")
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise InvalidArgument(f"Unrecognized item status: {value!r}") from None
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_")
            if key.isdigit():
                return cls.parse(int(key))
            key = _STATUS_ALIASES.get(key, key)
            try:
                return cls[key]
            except KeyError:
                raise InvalidArgument(f"Unrecognized item status: {value!r}") from None
        raise InvalidArgument(f"Unrecognized item status: {value!r}")


_STATUS_ALIASES = {"inprogress": "in_progress"}


@dataclass
class Item:
    """One unit of work stored as a row."""

    id: int
    routing_key: str
    status: ItemStatus = ItemStatus.new
    created_at: datetime = field(default_factory=now_utc)
    completed_at: datetime | None = None
    claimed_at: datetime | None = None
    metadata: bytes | None = None
    content: bytes | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        return {
            "id": self.id,
            "routing_key": self.routing_key,
            "status": self.status.name,
            "created_at": iso(self.created_at),
            "completed_at": iso(self.completed_at),
            "claimed_at": iso(self.claimed_at),
            "metadata": _b64(self.metadata),
            "content": _b64(self.content),
            "error": self.error,
        }


def _b64(data: bytes | None) -> str | None:
    if data is None:
        return None
    return base64.b64encode(data).decode("ascii")
