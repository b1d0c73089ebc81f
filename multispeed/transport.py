"""
Transport abstraction.

A transport is a capability set: establish, send, deliver received units,
close, and report liveness.  The phases and the engine only ever talk to
this base class; the concrete variants live in ``stream``, ``datagram``,
``relay`` and ``multiplexed``.

Lifecycle::

    IDLE --establish()--> CONNECTING --ok--> READY --lost/close()--> CLOSED
                                     \\--error/timeout--> CLOSED
"""
from __future__ import annotations

import abc
import asyncio
import enum
import logging
import socket
import time
from typing import Callable, List, Optional

from .errors import (
    EstablishmentTimeout,
    IllegalStateError,
    SendFailed,
    TransportUnavailable,
)
from .models import TransportKind

logger = logging.getLogger(__name__)

ReceiveCallback = Callable[[bytes, float], None]


class TransportState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"


def udp_socket_available() -> bool:
    """True when this environment can open a UDP socket at all."""
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    except OSError:
        return False
    sock.close()
    return True


class Transport(abc.ABC):
    """Base class for every transport variant."""

    kind: TransportKind
    max_payload_size: int

    def __init__(self) -> None:
        self._state = TransportState.IDLE
        self._subscribers: List[ReceiveCallback] = []
        self._lost: Optional[asyncio.Event] = None
        self._closed = False
        self.lost_reason: Optional[str] = None

    # -- Capability probe ---------------------------------------------------

    @classmethod
    def is_capable(cls) -> bool:
        """Can this environment instantiate the variant at all?"""
        return True

    # -- Liveness -----------------------------------------------------------

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is TransportState.READY

    def _lost_event(self) -> asyncio.Event:
        # Created lazily so the event binds to the running loop.
        if self._lost is None:
            self._lost = asyncio.Event()
        return self._lost

    async def wait_lost(self) -> None:
        """Return once the transport has left ``READY``."""
        await self._lost_event().wait()

    # -- Establishment ------------------------------------------------------

    async def establish(self, timeout: float) -> None:
        """Bring the transport to ``READY`` within *timeout* seconds.

        Raises ``TransportUnavailable`` (or its subclass
        ``EstablishmentTimeout``).  Never retries.
        """
        if self._state is not TransportState.IDLE:
            raise IllegalStateError(
                f"establish() called on a {self._state.value} {self.kind.value} transport"
            )

        self._lost_event()
        self._state = TransportState.CONNECTING
        started = time.perf_counter()
        logger.debug("Establishing %s transport (timeout %.1f s)", self.kind.value, timeout)

        try:
            await asyncio.wait_for(self._open(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._abandon()
            raise EstablishmentTimeout(self.kind, timeout) from None
        except TransportUnavailable:
            await self._abandon()
            raise
        except asyncio.CancelledError:
            await self._abandon()
            raise
        except (OSError, ConnectionError) as exc:
            await self._abandon()
            raise TransportUnavailable(self.kind, str(exc) or type(exc).__name__) from exc

        if self._state is not TransportState.CONNECTING:
            # Closed or lost while the handshake was finishing.
            await self._abandon()
            raise TransportUnavailable(self.kind, self.lost_reason or "closed during establishment")

        self._state = TransportState.READY
        logger.info(
            "%s transport ready in %.0f ms",
            self.kind.value, (time.perf_counter() - started) * 1000,
        )

    async def _abandon(self) -> None:
        self._state = TransportState.CLOSED
        self._lost_event().set()
        try:
            await self._close()
        except (OSError, ConnectionError) as exc:
            logger.debug("Error while abandoning %s transport: %s", self.kind.value, exc)

    # -- Data path ----------------------------------------------------------

    async def send(self, payload: bytes) -> None:
        """Send one unit.  Raises ``SendFailed`` unless ``READY``."""
        if self._state is not TransportState.READY:
            raise SendFailed(f"{self.kind.value} transport is {self._state.value}")
        if len(payload) > self.max_payload_size:
            raise SendFailed(
                f"payload of {len(payload)} bytes exceeds the "
                f"{self.max_payload_size}-byte {self.kind.value} limit"
            )
        await self._send(payload)

    def on_receive(self, callback: ReceiveCallback) -> Callable[[], None]:
        """Subscribe *callback*; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _deliver(self, payload: bytes) -> None:
        """Called by variants for every received unit."""
        if self._state is not TransportState.READY:
            return
        arrival = time.perf_counter()
        for callback in list(self._subscribers):
            callback(payload, arrival)

    def _mark_lost(self, reason: str) -> None:
        """Called by variants when the underlying channel goes away."""
        if self._state is TransportState.CLOSED:
            return
        logger.warning("%s transport lost: %s", self.kind.value, reason)
        self.lost_reason = reason
        self._state = TransportState.CLOSED
        self._lost_event().set()

    # -- Teardown -----------------------------------------------------------

    async def close(self) -> None:
        """Release every resource.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._state is not TransportState.CLOSED:
            self.lost_reason = self.lost_reason or "closed"
        self._state = TransportState.CLOSED
        self._lost_event().set()
        self._subscribers.clear()
        try:
            await self._close()
        except (OSError, ConnectionError) as exc:
            logger.debug("Error while closing %s transport: %s", self.kind.value, exc)

    # -- Variant hooks ------------------------------------------------------

    @abc.abstractmethod
    async def _open(self) -> None:
        """Perform the variant's handshake; return when usable."""

    @abc.abstractmethod
    async def _send(self, payload: bytes) -> None:
        """Write one unit; raise ``SendFailed`` on failure."""

    @abc.abstractmethod
    async def _close(self) -> None:
        """Release the variant's resources.  Must tolerate repeated calls."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._state.value}>"
