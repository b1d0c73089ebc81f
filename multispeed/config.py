"""
Run configuration and the user configuration file.

``SpeedTestConfig`` is handed to the engine once and never changes
afterwards.  The file at ``~/.multispeed/config.json`` only supplies
defaults for the CLI.

Supported keys::

    host = "127.0.0.1"          # reflector host
    protocols = ["auto"]        # preferred transport order
    compare = false             # run every available transport
    relay = false               # reach the datagram side through the HTTP relay
    ping_count = 10
    ping_interval_ms = 100
    duration_ms = 10000         # download / upload window
    payload_size = 16384
    timeout_ms = 5000           # per-phase inactivity timeout
    connect_timeout_ms = 5000
    csv_file = ""               # auto-append CSV path
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Sequence, Tuple

from .constants import (
    DEFAULT_COMPARISON_PAUSE_MS,
    DEFAULT_CONNECT_TIMEOUT_MS,
    DEFAULT_DURATION_MS,
    DEFAULT_HOST,
    DEFAULT_PACKET_INTERVAL_MS,
    DEFAULT_PAYLOAD_SIZE,
    DEFAULT_PHASE_TIMEOUT_MS,
    DEFAULT_PING_COUNT,
    DEFAULT_PING_INTERVAL_MS,
    MAX_DURATION_MS,
    MAX_INTERVAL_MS,
    MAX_PAYLOAD_SIZE,
    MAX_PING_COUNT,
    MAX_TIMEOUT_MS,
    MIN_DURATION_MS,
    MIN_PAYLOAD_SIZE,
    MIN_PING_COUNT,
    MIN_TIMEOUT_MS,
)
from .models import TransportKind

logger = logging.getLogger(__name__)

_CONFIG_DIR = os.path.join(Path.home(), ".multispeed")
_CONFIG_FILE = "config.json"

DATAGRAM_BACKENDS = ("udp", "relay")


def _config_path() -> str:
    return os.path.join(_CONFIG_DIR, _CONFIG_FILE)


# ---------------------------------------------------------------------------
# Run configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SpeedTestConfig:
    """Everything the engine needs to know about one run."""

    preferred_order: Tuple[TransportKind, ...] = (TransportKind.AUTO,)
    comparison_mode: bool = False
    phase_duration_ms: float = DEFAULT_DURATION_MS
    ping_sample_count: int = DEFAULT_PING_COUNT
    ping_interval_ms: float = DEFAULT_PING_INTERVAL_MS
    payload_size: int = DEFAULT_PAYLOAD_SIZE
    per_phase_timeout_ms: float = DEFAULT_PHASE_TIMEOUT_MS
    establishment_timeout_ms: float = DEFAULT_CONNECT_TIMEOUT_MS
    packet_interval_ms: float = DEFAULT_PACKET_INTERVAL_MS
    comparison_pause_ms: float = DEFAULT_COMPARISON_PAUSE_MS
    datagram_backend: str = "udp"

    def __post_init__(self) -> None:
        # Accept plain strings and lists from callers and config files.
        order = tuple(TransportKind(k) for k in self.preferred_order)
        object.__setattr__(self, "preferred_order", order)

    # -- Derived values in seconds -----------------------------------------

    @property
    def phase_duration(self) -> float:
        return self.phase_duration_ms / 1000

    @property
    def phase_timeout(self) -> float:
        return self.per_phase_timeout_ms / 1000

    @property
    def establishment_timeout(self) -> float:
        return self.establishment_timeout_ms / 1000

    @property
    def ping_interval(self) -> float:
        return self.ping_interval_ms / 1000

    @property
    def ping_reply_timeout(self) -> float:
        """How long one echo request may stay unanswered before it is skipped."""
        return self.phase_timeout / max(self.ping_sample_count, 1)

    @property
    def packet_interval(self) -> float:
        return self.packet_interval_ms / 1000

    @property
    def comparison_pause(self) -> float:
        return self.comparison_pause_ms / 1000

    # -- Validation ---------------------------------------------------------

    def validate(self) -> None:
        """Raise ``ValueError`` if any parameter is out of range."""
        if not self.preferred_order:
            raise ValueError("At least one preferred transport is required")
        if not MIN_PING_COUNT <= self.ping_sample_count <= MAX_PING_COUNT:
            raise ValueError(f"Ping count must be between {MIN_PING_COUNT} and {MAX_PING_COUNT}")
        if not MIN_DURATION_MS <= self.phase_duration_ms <= MAX_DURATION_MS:
            raise ValueError(
                f"Phase duration must be between {MIN_DURATION_MS} and {MAX_DURATION_MS} ms"
            )
        if not MIN_PAYLOAD_SIZE <= self.payload_size <= MAX_PAYLOAD_SIZE:
            raise ValueError(
                f"Payload size must be between {MIN_PAYLOAD_SIZE} and {MAX_PAYLOAD_SIZE} bytes"
            )
        for name in ("per_phase_timeout_ms", "establishment_timeout_ms"):
            value = getattr(self, name)
            if not MIN_TIMEOUT_MS <= value <= MAX_TIMEOUT_MS:
                raise ValueError(f"{name} must be between {MIN_TIMEOUT_MS} and {MAX_TIMEOUT_MS} ms")
        for name in ("ping_interval_ms", "packet_interval_ms", "comparison_pause_ms"):
            value = getattr(self, name)
            if not 0 <= value <= MAX_INTERVAL_MS:
                raise ValueError(f"{name} must be between 0 and {MAX_INTERVAL_MS} ms")
        if self.datagram_backend not in DATAGRAM_BACKENDS:
            raise ValueError(f"Datagram backend must be one of {', '.join(DATAGRAM_BACKENDS)}")

    # -- Conversion ---------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SpeedTestConfig:
        """Build from the config-file shape (see module docstring)."""
        protocols: Sequence[str] = data.get("protocols") or ["auto"]
        return cls(
            preferred_order=tuple(TransportKind(p) for p in protocols),
            comparison_mode=bool(data.get("compare", False)),
            phase_duration_ms=float(data.get("duration_ms", DEFAULT_DURATION_MS)),
            ping_sample_count=int(data.get("ping_count", DEFAULT_PING_COUNT)),
            ping_interval_ms=float(data.get("ping_interval_ms", DEFAULT_PING_INTERVAL_MS)),
            payload_size=int(data.get("payload_size", DEFAULT_PAYLOAD_SIZE)),
            per_phase_timeout_ms=float(data.get("timeout_ms", DEFAULT_PHASE_TIMEOUT_MS)),
            establishment_timeout_ms=float(
                data.get("connect_timeout_ms", DEFAULT_CONNECT_TIMEOUT_MS)
            ),
            packet_interval_ms=float(data.get("packet_interval_ms", DEFAULT_PACKET_INTERVAL_MS)),
            comparison_pause_ms=float(
                data.get("comparison_pause_ms", DEFAULT_COMPARISON_PAUSE_MS)
            ),
            datagram_backend="relay" if data.get("relay") else "udp",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "protocols": [k.value for k in self.preferred_order],
            "compare": self.comparison_mode,
            "relay": self.datagram_backend == "relay",
            "ping_count": self.ping_sample_count,
            "ping_interval_ms": self.ping_interval_ms,
            "duration_ms": self.phase_duration_ms,
            "payload_size": self.payload_size,
            "timeout_ms": self.per_phase_timeout_ms,
            "connect_timeout_ms": self.establishment_timeout_ms,
            "packet_interval_ms": self.packet_interval_ms,
            "comparison_pause_ms": self.comparison_pause_ms,
        }

    def with_overrides(self, **changes: Any) -> SpeedTestConfig:
        return replace(self, **changes)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULTS: Dict[str, Any] = {
    "host": DEFAULT_HOST,
    **SpeedTestConfig().to_dict(),
    "csv_file": "",
}


# ---------------------------------------------------------------------------
# Read / Write
# ---------------------------------------------------------------------------

def load_config() -> Dict[str, Any]:
    """Load config from disk, returning defaults for missing keys."""
    path = _config_path()
    config = dict(DEFAULTS)

    if not os.path.isfile(path):
        return config

    try:
        with open(path, encoding="utf-8") as fh:
            user = json.load(fh)
        if isinstance(user, dict):
            config.update(user)
    except (json.JSONDecodeError, IOError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", path, exc)

    return config


def save_config(config: Dict[str, Any]) -> str:
    """Write *config* to disk.  Returns the file path."""
    path = _config_path()
    os.makedirs(os.path.dirname(path), exist_ok=True)

    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config, fh, indent=2, ensure_ascii=False)

    return path


def get_config_value(key: str) -> Any:
    """Get a single config value."""
    return load_config().get(key, DEFAULTS.get(key))


def set_config_value(key: str, value: Any) -> str:
    """Set a single config value and persist.  Returns file path."""
    config = load_config()
    config[key] = value
    return save_config(config)


def config_path() -> str:
    """Return the config file path (for display purposes)."""
    return _config_path()
