"""
Where the far end lives.

One ``Endpoint`` describes a reflector host and the port each transport
reaches it on.  Transports derive their addresses from it.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple

from .constants import (
    DEFAULT_HOST,
    DEFAULT_HTTP_PORT,
    DEFAULT_QUIC_PORT,
    DEFAULT_UDP_PORT,
    DEFAULT_WS_PORT,
)


@dataclass(frozen=True)
class Endpoint:
    """A multispeed reflector."""

    host: str = DEFAULT_HOST
    udp_port: int = DEFAULT_UDP_PORT
    ws_port: int = DEFAULT_WS_PORT
    http_port: int = DEFAULT_HTTP_PORT
    quic_port: int = DEFAULT_QUIC_PORT
    secure: bool = False
    # Accept self-signed certificates (QUIC always needs TLS).
    insecure: bool = True

    # -- Constructors -------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict) -> Endpoint:
        host_raw = str(data.get("host", DEFAULT_HOST))
        return cls(
            host=host_raw.split(":")[0] or DEFAULT_HOST,
            udp_port=int(data.get("udp_port", DEFAULT_UDP_PORT)),
            ws_port=int(data.get("ws_port", DEFAULT_WS_PORT)),
            http_port=int(data.get("http_port", DEFAULT_HTTP_PORT)),
            quic_port=int(data.get("quic_port", DEFAULT_QUIC_PORT)),
            secure=bool(data.get("secure", False)),
            insecure=bool(data.get("insecure", True)),
        )

    # -- Derived addresses --------------------------------------------------

    @property
    def ws_url(self) -> str:
        scheme = "wss" if self.secure else "ws"
        return f"{scheme}://{self.host}:{self.ws_port}/"

    @property
    def relay_url(self) -> str:
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.host}:{self.http_port}/udp-relay"

    @property
    def udp_address(self) -> Tuple[str, int]:
        return (self.host, self.udp_port)

    @property
    def quic_address(self) -> Tuple[str, int]:
        return (self.host, self.quic_port)

    # -- Serialisation ------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "host": self.host,
            "udp_port": self.udp_port,
            "ws_port": self.ws_port,
            "http_port": self.http_port,
            "quic_port": self.quic_port,
            "secure": self.secure,
            "insecure": self.insecure,
        }
