"""
Maps transport kinds to their implementations.

The selector asks ``capability_probes()`` whether a kind can be instantiated
here at all; the engine asks ``create_transport`` for a fresh instance per
attempt.
"""
from __future__ import annotations

from typing import Callable, Dict, Type

from .config import SpeedTestConfig
from .datagram import DatagramTransport
from .endpoint import Endpoint
from .models import TransportKind
from .multiplexed import MultiplexedUnreliableTransport
from .relay import RelayDatagramTransport
from .stream import StreamTransport
from .transport import Transport

CapabilityProbe = Callable[[], bool]
TransportFactory = Callable[[TransportKind], Transport]


def transport_class(kind: TransportKind, config: SpeedTestConfig) -> Type[Transport]:
    """The variant used for *kind* under *config*."""
    if kind is TransportKind.STREAM:
        return StreamTransport
    if kind is TransportKind.DATAGRAM:
        if config.datagram_backend == "relay":
            return RelayDatagramTransport
        return DatagramTransport
    if kind is TransportKind.MULTIPLEXED:
        return MultiplexedUnreliableTransport
    raise ValueError(f"No transport implements {kind.value!r}")


def create_transport(kind: TransportKind, endpoint: Endpoint, config: SpeedTestConfig) -> Transport:
    return transport_class(kind, config)(endpoint)


def capability_probes(config: SpeedTestConfig) -> Dict[TransportKind, CapabilityProbe]:
    """One probe per concrete kind, honouring the datagram backend choice."""
    return {
        kind: transport_class(kind, config).is_capable
        for kind in (TransportKind.DATAGRAM, TransportKind.MULTIPLEXED, TransportKind.STREAM)
    }


def default_factory(endpoint: Endpoint, config: SpeedTestConfig) -> TransportFactory:
    def _factory(kind: TransportKind) -> Transport:
        return create_transport(kind, endpoint, config)

    return _factory
