"""
Upload throughput phase.

Sends pre-generated fixed-size data units every ``packet_interval_ms``
until the duration elapses.  Bytes are counted when they are handed to
the transport: unreliable transports give no acknowledgement, so this is
the offered load, not what the far end received.
"""
from __future__ import annotations

import asyncio
import logging
import time

from .models import PhaseKind
from .phase import PhaseRunner
from .protocol import make_data_unit

logger = logging.getLogger(__name__)


class UploadPhase(PhaseRunner):
    """Client-to-peer throughput measurement."""

    kind = PhaseKind.UPLOAD
    idle_watch_throughout = False

    def __init__(self, transport, config) -> None:  # noqa: ANN001
        super().__init__(transport, config)
        # Pre-generate once; random bytes are expensive at high rates.
        self._unit = make_data_unit(self.payload_size)

    async def _drive(self) -> None:
        interval = self.config.packet_interval
        unit = self._unit
        failures = 0

        while self._remaining() > 0:
            tick = time.perf_counter()
            self._activate()

            sent_at = await self._try_send(unit)
            self.collector.record_attempt()
            if sent_at is None:
                failures += 1
            else:
                self.collector.record_bytes(len(unit), sent_at)
                self.collector.mark_window_end(
                    min(sent_at + interval, self._started + self.config.phase_duration)
                )
                self._touch()

            pause = min(interval - (time.perf_counter() - tick), self._remaining())
            await asyncio.sleep(max(pause, 0))

        if failures:
            logger.info("%d upload units were not sent over %s", failures, self.transport.kind.value)
