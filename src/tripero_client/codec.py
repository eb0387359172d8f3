"""Wire encoding for outbound events and parsing of inbound payloads.

Outbound::

    PositionEvent / IgnitionEvent  → camelCase dict, ``None`` fields omitted → JSON
    plain mapping                  → JSON as is

Inbound::

    raw string
      ├─ JSON parse failure → MalformedPayloadError
      ├─ not a JSON object  → MalformedPayloadError
      └─ valid              → dict
"""

from __future__ import annotations

import dataclasses
from typing import Any, Mapping, Union

import orjson

from tripero_client.errors import MalformedPayloadError

# Maximum bytes of raw payload preserved on a MalformedPayloadError.
MAX_RAW_PAYLOAD_BYTES = 4096


def to_wire(event: Any) -> dict[str, Any]:
    """Return the wire dict for a dataclass event or a plain mapping."""
    if dataclasses.is_dataclass(event) and not isinstance(event, type):
        out: dict[str, Any] = {}
        for f in dataclasses.fields(event):
            value = getattr(event, f.name)
            if value is None:
                continue
            out[f.metadata.get("wire", f.name)] = value
        return out
    if isinstance(event, Mapping):
        return dict(event)
    raise TypeError(f"Cannot serialize {type(event).__name__} as a Tripero event")


def from_wire(cls: type, data: Mapping[str, Any]) -> Any:
    """Build a dataclass event of type *cls* from its wire dict."""
    kwargs = {}
    for f in dataclasses.fields(cls):
        key = f.metadata.get("wire", f.name)
        if key in data:
            kwargs[f.name] = data[key]
    return cls(**kwargs)


def encode_event(event: Any) -> str:
    """Serialize *event* to the JSON text published on a channel."""
    return orjson.dumps(to_wire(event)).decode()


def decode_payload(raw: Union[str, bytes]) -> dict[str, Any]:
    """Parse an inbound message payload.

    Raises
    ------
    MalformedPayloadError
        When *raw* is not valid JSON or not a JSON object.
    """
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise _malformed(f"Invalid JSON: {exc}", raw) from exc
    if not isinstance(data, dict):
        raise _malformed(f"Expected a JSON object, got {type(data).__name__}", raw)
    return data


def _malformed(message: str, raw: Union[str, bytes]) -> MalformedPayloadError:
    """Build a :class:`MalformedPayloadError` with truncation handling."""
    raw_bytes = raw.encode("utf-8") if isinstance(raw, str) else raw
    truncated = len(raw_bytes) > MAX_RAW_PAYLOAD_BYTES
    raw_str = raw_bytes[:MAX_RAW_PAYLOAD_BYTES].decode("utf-8", errors="replace")
    return MalformedPayloadError(message, raw_payload=raw_str, truncated=truncated)
