"""
Round-trip latency phase.

Protocol flow::

    1. Send     C{"type":"ping","seq":n,"ts":<send time, ms>}
    2. Receive  the same frame, echoed verbatim by the far end
    3. latency = arrival - ts
    4. Repeat every ping_interval_ms, ping_sample_count times.

Each request waits on its own for ``per_phase_timeout_ms /
ping_sample_count``.  An unanswered request is skipped, never retried:
on a lossy path the loss is part of the measurement.  Echoes that arrive
after their request was given up are ignored.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from .errors import ProtocolError
from .models import PhaseKind, Sample
from .phase import PhaseRunner
from .protocol import PING, decode, encode_ping

logger = logging.getLogger(__name__)


class PingPhase(PhaseRunner):
    """Echo-based latency and jitter measurement."""

    kind = PhaseKind.PING

    def __init__(self, transport, config) -> None:  # noqa: ANN001
        super().__init__(transport, config)
        self._waiting_seq: Optional[int] = None
        self._reply: Optional[asyncio.Future] = None
        self._sent = 0

    # -- Driver -------------------------------------------------------------

    async def _drive(self) -> None:
        count = self.config.ping_sample_count
        interval = self.config.ping_interval
        reply_timeout = self.config.ping_reply_timeout
        loop = asyncio.get_running_loop()

        for seq in range(count):
            cycle_start = time.perf_counter()
            self._activate()

            send_ms = time.perf_counter() * 1000
            self._reply = loop.create_future()
            self._waiting_seq = seq
            sent_at = await self._try_send(encode_ping(seq, send_ms))

            if sent_at is not None:
                self._sent += 1
                self.collector.record_attempt()
                self.collector.mark_first_byte(sent_at)
                try:
                    await asyncio.wait_for(self._reply, timeout=reply_timeout)
                except asyncio.TimeoutError:
                    logger.debug("Ping %d unanswered after %.0f ms, skipped", seq, reply_timeout * 1000)

            self._waiting_seq = None

            if seq < count - 1:
                pause = interval - (time.perf_counter() - cycle_start)
                if pause > 0:
                    await asyncio.sleep(pause)

    # -- Receive path -------------------------------------------------------

    def _on_receive(self, payload: bytes, arrival: float) -> None:
        try:
            frame = decode(payload)
        except ProtocolError as exc:
            logger.debug("Ignoring undecodable frame during ping: %s", exc)
            return
        if frame.type != PING:
            return

        seq = frame.fields.get("seq")
        reply = self._reply
        if seq != self._waiting_seq or reply is None or reply.done():
            logger.debug("Ignoring stale echo for ping %s", seq)
            return

        try:
            latency = arrival * 1000 - float(frame.fields["ts"])
        except (KeyError, TypeError, ValueError):
            return
        if latency < 0:
            return

        self.collector.record_latency(Sample(timestamp=arrival, value=latency))
        self._touch()
        reply.set_result(latency)
        self._emit_progress()

    def _fraction(self) -> float:
        return min(self._sent / max(self.config.ping_sample_count, 1), 1.0)
