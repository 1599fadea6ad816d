"""
Payload codec: JSON documents carried as base64 text.

The store treats ``content`` and ``metadata`` as opaque bytes. Producers and
consumers that exchange plain Python values agree on this encoding:

    obj -> json.dumps -> UTF-8 -> base64 -> bytes

``None`` is passed through untouched so an absent payload stays NULL in the
table rather than becoming the JSON literal ``null``.
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any, Protocol

from .exceptions import InvalidArgument


class PayloadCodec(Protocol):
    """Protocol for payload encoders."""

    def encode(self, obj: Any) -> bytes | None: ...

    def decode(self, data: bytes | None) -> Any: ...


def encode(obj: Any) -> bytes | None:
    """Encode a JSON-serializable value to base64 bytes."""
    if obj is None:
        return None
    try:
        text = json.dumps(obj, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise InvalidArgument(f"Payload is not JSON serializable: {e}") from e
    return base64.b64encode(text.encode("utf-8"))


def decode(data: bytes | None) -> Any:
    """Decode base64 bytes produced by :func:`encode`."""
    if not data:
        return None
    try:
        raw = base64.b64decode(data, validate=True)
        return json.loads(raw.decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidArgument(f"Malformed payload: {e}") from e


class JsonBase64Codec:
    """Default codec used by Sender and Receiver."""

    def encode(self, obj: Any) -> bytes | None:
        return encode(obj)

    def decode(self, data: bytes | None) -> Any:
        return decode(data)
