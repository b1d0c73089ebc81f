"""
Protocol selection and fallback policy.

Availability is a property of the environment (can a UDP socket be opened,
is the QUIC stack importable), never of the network: an unreachable peer
shows up later as an establishment error and is handled by ``fallback``.

Global priority is ``datagram > multiplexed > stream``: the least overhead
and the most realistic path first.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from .config import SpeedTestConfig
from .models import KIND_PRIORITY, TransportKind
from .registry import CapabilityProbe, capability_probes

logger = logging.getLogger(__name__)


class ProtocolSelector:
    """Resolves the preferred order against what this environment can run."""

    def __init__(
        self,
        config: SpeedTestConfig,
        probes: Optional[Dict[TransportKind, CapabilityProbe]] = None,
    ) -> None:
        self.config = config
        self._probes = probes if probes is not None else capability_probes(config)
        self._available: Optional[Tuple[TransportKind, ...]] = None

    # -- Availability -------------------------------------------------------

    def _probe(self, kind: TransportKind) -> bool:
        probe = self._probes.get(kind)
        if probe is None:
            return False
        try:
            return bool(probe())
        except Exception as exc:  # noqa: BLE001
            logger.warning("Capability probe for %s failed: %s", kind.value, exc)
            return False

    def available(self) -> Tuple[TransportKind, ...]:
        """Capability-available kinds in global priority order (cached)."""
        if self._available is None:
            self._available = tuple(k for k in KIND_PRIORITY if self._probe(k))
            logger.debug("Available transports: %s", [k.value for k in self._available])
        return self._available

    def is_available(self, kind: TransportKind) -> bool:
        return kind in self.available()

    # -- Resolution ---------------------------------------------------------

    def _preferred(self) -> List[TransportKind]:
        """``preferred_order`` with ``auto`` expanded and unavailable kinds dropped."""
        available = self.available()
        kinds: List[TransportKind] = []
        for kind in self.config.preferred_order:
            candidates = available if kind is TransportKind.AUTO else (kind,)
            for candidate in candidates:
                if candidate in available and candidate not in kinds:
                    kinds.append(candidate)
        return kinds

    def fallback_chain(self) -> Tuple[TransportKind, ...]:
        """Every kind Single mode may attempt, in attempt order.

        Preferred kinds first, then the remaining available kinds by
        priority.  The chain stops at ``stream``.
        """
        chain = self._preferred()
        chain += [k for k in self.available() if k not in chain]
        if TransportKind.STREAM in chain:
            chain = chain[: chain.index(TransportKind.STREAM) + 1]
        return tuple(chain)

    def resolve(self) -> List[TransportKind]:
        """Kinds the engine should start with, in attempt order."""
        if self.config.comparison_mode:
            return list(self.available())
        chain = self.fallback_chain()
        return [chain[0]] if chain else []

    def fallback(self, failed_kind: TransportKind) -> Optional[TransportKind]:
        """The kind to try after *failed_kind* did not establish, or ``None``."""
        chain = self.fallback_chain()
        if failed_kind not in chain:
            return None
        index = chain.index(failed_kind) + 1
        return chain[index] if index < len(chain) else None
