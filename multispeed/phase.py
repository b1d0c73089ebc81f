"""
Phase state machine shared by ping, download and upload.

::

    IDLE -> REQUESTING -> ACTIVE -> COMPLETED
                                 -> TIMED_OUT   (no activity for per_phase_timeout_ms;
                                                 transfers only until the first unit)
                                 -> FAILED      (transport left READY)
                                 -> ABORTED     (abort() from the engine)

The phase-specific driver (``_drive``) runs as a task and is raced
against the inactivity watchdog, the transport's liveness signal and the
abort event.  Ping keeps the watchdog armed throughout; download and
upload disarm it once the first unit has moved, after which only the
configured duration, transport loss or abort end them.  Whatever ends the phase, the collected samples are
finalized into a ``PhaseResult``; transport errors never escape ``run()``.
"""
from __future__ import annotations

import abc
import asyncio
import dataclasses
import enum
import logging
import time
from typing import Callable, Optional, Tuple

from .config import SpeedTestConfig
from .constants import EMA_ALPHA, MAX_REASONABLE_SPEED, SAMPLE_INTERVAL
from .errors import IllegalStateError, PhaseTimeout, SendFailed, TransportLost
from .models import PhaseKind, PhaseProgress, PhaseResult, PhaseStatus
from .stats import StatisticsCollector
from .transport import Transport

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PhaseProgress], None]


class PhaseState(enum.Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    ACTIVE = "active"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in _STATUS_FOR_STATE


_STATUS_FOR_STATE = {
    PhaseState.COMPLETED: PhaseStatus.COMPLETED,
    PhaseState.TIMED_OUT: PhaseStatus.TIMED_OUT,
    PhaseState.FAILED: PhaseStatus.FAILED,
    PhaseState.ABORTED: PhaseStatus.ABORTED,
}


class PhaseRunner(abc.ABC):
    """Drives one phase over one transport to a terminal ``PhaseResult``."""

    kind: PhaseKind
    # False: the inactivity watchdog only covers the wait for the first unit.
    idle_watch_throughout = True

    def __init__(self, transport: Transport, config: SpeedTestConfig) -> None:
        self.transport = transport
        self.config = config
        self.collector = StatisticsCollector(self.kind)
        self.state = PhaseState.IDLE
        self.payload_size = min(config.payload_size, transport.max_payload_size)
        self.on_progress: Optional[ProgressCallback] = None

        self._aborted = False
        self._abort_event: Optional[asyncio.Event] = None
        self._started = 0.0
        self._last_activity = 0.0
        self._seen_activity = False
        self._smoothed = 0.0
        self._prev_bytes = 0
        self._prev_time = 0.0

    # -- Public API ---------------------------------------------------------

    def abort(self) -> None:
        """Stop the phase as soon as possible; it finalizes as ``ABORTED``."""
        self._aborted = True
        if self._abort_event is not None:
            self._abort_event.set()

    async def run(self) -> PhaseResult:
        if self.state is not PhaseState.IDLE:
            raise IllegalStateError(f"{self.kind.value} phase already {self.state.value}")

        self._abort_event = asyncio.Event()
        if self._aborted:
            self._abort_event.set()

        self._started = self._last_activity = time.perf_counter()
        self._prev_time = self._started
        self.state = PhaseState.REQUESTING
        logger.debug("%s phase requesting over %s", self.kind.value, self.transport.kind.value)

        unsubscribe = self.transport.on_receive(self._on_receive)
        reporter = asyncio.create_task(self._report_progress())
        try:
            final_state, reason = await self._supervise()
        except PhaseTimeout as exc:
            final_state, reason = PhaseState.TIMED_OUT, str(exc)
        finally:
            unsubscribe()
            reporter.cancel()
            try:
                await reporter
            except asyncio.CancelledError:
                pass

        await self._wind_down()
        self.state = final_state
        result = self.collector.finalize(_STATUS_FOR_STATE[final_state], reason)
        logger.info(
            "%s phase over %s: %s (%d samples, %.0f ms)%s",
            self.kind.value, self.transport.kind.value, result.status.value,
            result.sample_count, result.elapsed_ms,
            f" -- {reason}" if reason else "",
        )
        return result

    # -- Supervision --------------------------------------------------------

    async def _supervise(self) -> Tuple[PhaseState, Optional[str]]:
        if self._aborted:
            return PhaseState.ABORTED, "aborted before start"
        if not self.transport.is_ready:
            return PhaseState.FAILED, f"TransportLost: {self.transport.lost_reason or 'not ready'}"

        driver = asyncio.create_task(self._drive())
        lost = asyncio.create_task(self.transport.wait_lost())
        aborted = asyncio.create_task(self._abort_event.wait())
        watched = {driver, lost, aborted}
        timeout = self.config.phase_timeout

        try:
            while True:
                idle_left: Optional[float] = None
                if self.idle_watch_throughout or not self._seen_activity:
                    idle_left = self._last_activity + timeout - time.perf_counter()
                    if idle_left <= 0:
                        raise PhaseTimeout(f"no activity for {timeout:.1f} s")

                done, _ = await asyncio.wait(
                    watched, timeout=idle_left, return_when=asyncio.FIRST_COMPLETED
                )

                if self._aborted:
                    return PhaseState.ABORTED, "aborted"
                if driver in done:
                    return self._driver_outcome(driver)
                if lost in done:
                    return PhaseState.FAILED, f"TransportLost: {self.transport.lost_reason}"
        finally:
            for task in watched:
                task.cancel()
            await asyncio.gather(*watched, return_exceptions=True)

    def _driver_outcome(self, driver: asyncio.Task) -> Tuple[PhaseState, Optional[str]]:
        exc = driver.exception()
        if exc is None:
            return PhaseState.COMPLETED, None
        if isinstance(exc, TransportLost):
            return PhaseState.FAILED, f"TransportLost: {exc}"
        if isinstance(exc, PhaseTimeout):
            return PhaseState.TIMED_OUT, str(exc)
        raise exc

    # -- Helpers for drivers ------------------------------------------------

    def _activate(self) -> None:
        if self.state is PhaseState.REQUESTING:
            self.state = PhaseState.ACTIVE

    def _touch(self) -> None:
        """Record activity for the inactivity watchdog."""
        self._last_activity = time.perf_counter()
        self._seen_activity = True
        self._activate()

    async def _try_send(self, payload: bytes) -> Optional[float]:
        """Send one unit.  Returns the send time, or None if it failed."""
        if not self.transport.is_ready:
            raise TransportLost(self.transport.lost_reason or "transport not ready")
        sent_at = time.perf_counter()
        try:
            await self.transport.send(payload)
        except SendFailed as exc:
            logger.debug("%s send failed: %s", self.kind.value, exc)
            if not self.transport.is_ready:
                raise TransportLost(self.transport.lost_reason or str(exc)) from exc
            return None
        return sent_at

    def _remaining(self) -> float:
        return self._started + self.config.phase_duration - time.perf_counter()

    # -- Progress -----------------------------------------------------------

    def _fraction(self) -> float:
        if self.config.phase_duration <= 0:
            return 1.0
        elapsed = time.perf_counter() - self._started
        return min(elapsed / self.config.phase_duration, 1.0)

    def _emit_progress(self) -> None:
        if self.on_progress is None or self.collector.finalized:
            return
        snap = self.collector.snapshot()
        now = time.perf_counter()
        live = None

        if self.kind is not PhaseKind.PING:
            dt = now - self._prev_time
            if dt >= 0.05 and snap.bytes_total > self._prev_bytes:
                mbps = ((snap.bytes_total - self._prev_bytes) * 8) / dt / 1_000_000
                self._prev_bytes = snap.bytes_total
                self._prev_time = now
                if mbps <= MAX_REASONABLE_SPEED:
                    self._smoothed = (
                        mbps if self._smoothed == 0.0
                        else EMA_ALPHA * mbps + (1 - EMA_ALPHA) * self._smoothed
                    )
            live = self._smoothed or None

        self.on_progress(
            dataclasses.replace(snap, fraction=self._fraction(), live_mbps=live)
        )

    async def _report_progress(self) -> None:
        while True:
            await asyncio.sleep(SAMPLE_INTERVAL)
            self._emit_progress()

    # -- Phase-specific hooks -----------------------------------------------

    @abc.abstractmethod
    async def _drive(self) -> None:
        """Run the phase until its own completion condition."""

    def _on_receive(self, payload: bytes, arrival: float) -> None:
        """Handle one received unit.  Default: ignore."""

    async def _wind_down(self) -> None:
        """Best-effort cleanup after the phase ends (e.g. tell the peer to stop)."""
