"""
Frame codec shared by the phases and the reflector.

Every unit on the wire starts with a one-byte tag::

    C{json}     control message  (hello, welcome, ping, download, stop)
    D<filler>   data unit used for throughput phases

Ping frames are echoed back verbatim by the far end, so the embedded
send timestamp comes back untouched and no request/response correlation
is needed from the transport.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict

from .errors import ProtocolError

CONTROL_TAG = b"C"
DATA_TAG = b"D"

HELLO = "hello"
WELCOME = "welcome"
PING = "ping"
DOWNLOAD = "download"
STOP = "stop"

CONTROL_TYPES = frozenset({HELLO, WELCOME, PING, DOWNLOAD, STOP})


@dataclass(frozen=True)
class Frame:
    """A decoded unit: either a control message or a data unit."""

    type: str
    fields: Dict[str, Any] = field(default_factory=dict)
    size: int = 0

    @property
    def is_data(self) -> bool:
        return self.type == "data"


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

def encode_control(msg_type: str, **fields: Any) -> bytes:
    if msg_type not in CONTROL_TYPES:
        raise ValueError(f"Unknown control message type: {msg_type!r}")
    body = {"type": msg_type, **fields}
    return CONTROL_TAG + json.dumps(body, separators=(",", ":")).encode("utf-8")


def encode_ping(seq: int, timestamp: float) -> bytes:
    return encode_control(PING, seq=seq, ts=timestamp)


def encode_download(duration_ms: float, payload_size: int, interval_ms: float) -> bytes:
    return encode_control(
        DOWNLOAD,
        duration_ms=duration_ms,
        payload_size=payload_size,
        interval_ms=interval_ms,
    )


def make_data_unit(size: int) -> bytes:
    """Build a random data unit of exactly *size* bytes (tag included)."""
    if size < 1:
        raise ValueError("data unit size must be at least 1 byte")
    return DATA_TAG + os.urandom(size - 1)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def decode(payload: bytes) -> Frame:
    """Decode one received unit.  Raises ``ProtocolError`` on garbage."""
    if not payload:
        raise ProtocolError("empty frame")

    tag = payload[:1]
    if tag == DATA_TAG:
        return Frame(type="data", size=len(payload))

    if tag != CONTROL_TAG:
        raise ProtocolError(f"unknown frame tag {tag!r}")

    try:
        body = json.loads(payload[1:].decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ProtocolError(f"bad control frame: {exc}") from exc

    if not isinstance(body, dict) or body.get("type") not in CONTROL_TYPES:
        raise ProtocolError(f"bad control frame: {str(body)[:50]}")

    msg_type = body.pop("type")
    return Frame(type=msg_type, fields=body, size=len(payload))
