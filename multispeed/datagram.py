"""
Unreliable, unordered datagram transport over plain UDP.

There is no connection to set up, so establishment is a reachability
probe: ``hello`` datagrams are sent every ``HELLO_INTERVAL`` until the
reflector answers ``welcome`` or the establishment window closes.  After
that every datagram is one unit, delivered as it arrives, lost or not.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .constants import HELLO_INTERVAL, MAX_UDP_DATAGRAM
from .endpoint import Endpoint
from .errors import ProtocolError, SendFailed, TransportUnavailable
from .models import TransportKind
from .protocol import HELLO, WELCOME, decode, encode_control
from .transport import Transport, udp_socket_available

logger = logging.getLogger(__name__)


class _ClientProtocol(asyncio.DatagramProtocol):
    """Feeds datagrams from the event loop into the owning transport."""

    def __init__(self, owner: DatagramTransport) -> None:
        self.owner = owner

    def datagram_received(self, data: bytes, addr) -> None:  # noqa: ANN001
        self.owner._on_datagram(data)

    def error_received(self, exc: Exception) -> None:
        self.owner._on_error(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None:
            self.owner._mark_lost(f"socket closed: {exc}")


class DatagramTransport(Transport):
    """Connected UDP socket to the reflector."""

    kind = TransportKind.DATAGRAM
    max_payload_size = MAX_UDP_DATAGRAM

    def __init__(self, endpoint: Endpoint) -> None:
        super().__init__()
        self.endpoint = endpoint
        self._udp: Optional[asyncio.DatagramTransport] = None
        self._welcome: Optional[asyncio.Event] = None
        self._last_error: Optional[Exception] = None

    @classmethod
    def is_capable(cls) -> bool:
        return udp_socket_available()

    # -- Event-loop callbacks ----------------------------------------------

    def _on_datagram(self, data: bytes) -> None:
        if self._welcome is not None and not self._welcome.is_set():
            try:
                frame = decode(data)
            except ProtocolError:
                return
            if frame.type == WELCOME:
                self._welcome.set()
            return
        self._deliver(data)

    def _on_error(self, exc: Exception) -> None:
        # ICMP port unreachable and friends surface here.
        self._last_error = exc
        if self.is_ready:
            self._mark_lost(f"socket error: {exc}")
        else:
            logger.debug("UDP error during establishment: %s", exc)

    # -- Hooks --------------------------------------------------------------

    async def _open(self) -> None:
        loop = asyncio.get_running_loop()
        self._welcome = asyncio.Event()
        self._udp, _ = await loop.create_datagram_endpoint(
            lambda: _ClientProtocol(self),
            remote_addr=self.endpoint.udp_address,
        )

        hello = encode_control(HELLO)
        while not self._welcome.is_set():
            if self._last_error is not None and isinstance(self._last_error, ConnectionRefusedError):
                raise TransportUnavailable(self.kind, f"reflector refused: {self._last_error}")
            self._udp.sendto(hello)
            try:
                await asyncio.wait_for(self._welcome.wait(), timeout=HELLO_INTERVAL)
            except asyncio.TimeoutError:
                continue

    async def _send(self, payload: bytes) -> None:
        if self._udp is None or self._udp.is_closing():
            raise SendFailed("UDP socket is closed")
        try:
            self._udp.sendto(payload)
        except OSError as exc:
            raise SendFailed(str(exc)) from exc
        # sendto() never blocks; give the loop a chance to flush.
        await asyncio.sleep(0)

    async def _close(self) -> None:
        if self._udp is not None:
            udp, self._udp = self._udp, None
            udp.close()
