"""
Unreliable, unordered messages multiplexed over one QUIC connection.

Units travel as QUIC DATAGRAM frames (RFC 9221): no retransmission, no
ordering, but a single established connection with congestion control
and encryption.  The TLS handshake makes establishment noticeably more
expensive than plain UDP.  A failed handshake is reported as-is; retrying
is the engine's decision.
"""
from __future__ import annotations

import contextlib
import logging
import ssl
from typing import Optional

from aioquic.asyncio import connect
from aioquic.asyncio.protocol import QuicConnectionProtocol
from aioquic.quic.configuration import QuicConfiguration
from aioquic.quic.events import ConnectionTerminated, DatagramFrameReceived

from .constants import MAX_QUIC_DATAGRAM, QUIC_ALPN
from .endpoint import Endpoint
from .errors import SendFailed
from .models import TransportKind
from .transport import Transport, udp_socket_available

logger = logging.getLogger(__name__)


class DatagramClientProtocol(QuicConnectionProtocol):
    """QUIC client protocol that hands DATAGRAM frames to its owner."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.owner: Optional[MultiplexedUnreliableTransport] = None

    def quic_event_received(self, event):
        if self.owner is None:
            return
        if isinstance(event, DatagramFrameReceived):
            self.owner._deliver(event.data)
        elif isinstance(event, ConnectionTerminated):
            self.owner._mark_lost(
                f"connection terminated (error {event.error_code}): {event.reason_phrase}"
            )

    def send_datagram(self, data: bytes) -> None:
        self._quic.send_datagram_frame(data)
        self.transmit()


class MultiplexedUnreliableTransport(Transport):
    """QUIC connection carrying unreliable datagram frames."""

    kind = TransportKind.MULTIPLEXED
    max_payload_size = MAX_QUIC_DATAGRAM

    def __init__(self, endpoint: Endpoint) -> None:
        super().__init__()
        self.endpoint = endpoint
        self._stack: Optional[contextlib.AsyncExitStack] = None
        self._protocol: Optional[DatagramClientProtocol] = None

    @classmethod
    def is_capable(cls) -> bool:
        return udp_socket_available()

    def _configuration(self) -> QuicConfiguration:
        configuration = QuicConfiguration(
            is_client=True,
            alpn_protocols=[QUIC_ALPN],
            server_name=self.endpoint.host,
            max_datagram_frame_size=65536,
        )
        # Lab reflectors usually run with self-signed certificates.
        if self.endpoint.insecure:
            configuration.verify_mode = ssl.CERT_NONE
        return configuration

    def _create_protocol(self, *args, **kwargs) -> DatagramClientProtocol:
        protocol = DatagramClientProtocol(*args, **kwargs)
        protocol.owner = self
        return protocol

    async def _open(self) -> None:
        host, port = self.endpoint.quic_address
        self._stack = contextlib.AsyncExitStack()
        self._protocol = await self._stack.enter_async_context(
            connect(
                host,
                port,
                configuration=self._configuration(),
                create_protocol=self._create_protocol,
                wait_connected=True,
            )
        )

    async def _send(self, payload: bytes) -> None:
        if self._protocol is None:
            raise SendFailed("QUIC connection is closed")
        try:
            self._protocol.send_datagram(payload)
        except (OSError, ValueError) as exc:
            raise SendFailed(str(exc)) from exc

    async def _close(self) -> None:
        self._protocol = None
        if self._stack is not None:
            stack, self._stack = self._stack, None
            await stack.aclose()
