"""
Download throughput phase.

Asks the far end to stream fixed-size data units for the configured
duration and counts every unit that actually arrives.  The clock starts
with the request frame (the first byte this phase puts on the wire), so
slow starts count against throughput; the phase ends when the duration
has elapsed, after which the peer is told to stop.
"""
from __future__ import annotations

import asyncio
import logging

from .errors import SendFailed
from .models import PhaseKind
from .phase import PhaseRunner
from .protocol import DATA_TAG, STOP, encode_control, encode_download

logger = logging.getLogger(__name__)


class DownloadPhase(PhaseRunner):
    """Peer-to-client throughput measurement."""

    kind = PhaseKind.DOWNLOAD
    idle_watch_throughout = False

    async def _drive(self) -> None:
        request = encode_download(
            duration_ms=self.config.phase_duration_ms,
            payload_size=self.payload_size,
            interval_ms=self.config.packet_interval_ms,
        )
        sent_at = await self._try_send(request)
        if sent_at is None:
            logger.warning("Download request over %s was not sent", self.transport.kind.value)
        else:
            self.collector.mark_first_byte(sent_at)

        remaining = self._remaining()
        if remaining > 0:
            await asyncio.sleep(remaining)

    def _on_receive(self, payload: bytes, arrival: float) -> None:
        if payload[:1] != DATA_TAG:
            return
        self.collector.record_bytes(len(payload), arrival)
        self._touch()

    async def _wind_down(self) -> None:
        if not self.transport.is_ready:
            return
        try:
            await self.transport.send(encode_control(STOP))
        except SendFailed as exc:
            logger.debug("Could not send stop after download: %s", exc)
