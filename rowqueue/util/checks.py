"""Argument checks shared by every store backend."""

from __future__ import annotations

import re
from collections.abc import Iterable

from ..exceptions import InvalidArgument
from ..models import MAX_ROUTING_KEY_LENGTH, TABLE_NAME_PATTERN, ItemStatus

_TABLE_NAME_RE = re.compile(TABLE_NAME_PATTERN)


def check_routing_key(routing_key: str | None) -> str:
    if not isinstance(routing_key, str) or not routing_key:
        raise InvalidArgument("Routing key cannot be null or empty")
    if len(routing_key) > MAX_ROUTING_KEY_LENGTH:
        raise InvalidArgument(f"Routing key longer than {MAX_ROUTING_KEY_LENGTH} characters")
    return routing_key


def check_payload(name: str, data: bytes | None) -> bytes | None:
    if data is None:
        return None
    if isinstance(data, (bytearray, memoryview)):
        return bytes(data)
    if not isinstance(data, bytes):
        raise InvalidArgument(f"{name} must be bytes or None, got {type(data).__name__}")
    return data


def check_ids(ids: Iterable[int] | None) -> list[int]:
    """Normalize an id collection to a de-duplicated list, preserving order."""
    if ids is None:
        return []
    out: list[int] = []
    seen: set[int] = set()
    for i in ids:
        if isinstance(i, bool) or not isinstance(i, int):
            raise InvalidArgument(f"Item ids must be integers, got {i!r}")
        if i not in seen:
            seen.add(i)
            out.append(i)
    return out


def check_status(status: ItemStatus | int | str | None) -> ItemStatus:
    if status is None:
        raise InvalidArgument("Status is required")
    return ItemStatus.parse(status)


def check_table_name(table_name: str | None) -> str:
    if not table_name or not _TABLE_NAME_RE.match(table_name):
        raise InvalidArgument(f"Invalid table name: {table_name!r}")
    return table_name


def check_limit(limit: int | None) -> int | None:
    if limit is None:
        return None
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 0:
        raise InvalidArgument(f"limit must be a non-negative integer, got {limit!r}")
    return limit
