"""
Speed test orchestration.

For every transport the selector hands out: establish it, run ping,
download and upload strictly one after another, close it, and append an
immutable ``TransportResult``.  Comparison runs visit every available
transport with a short pause in between; single runs walk the fallback
chain until one transport establishes.

Nothing that happens to a single phase or transport stops the run.  Only
``abort()`` does, and even then the report is assembled from what was
measured so far.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Type

from .config import SpeedTestConfig
from .download import DownloadPhase
from .endpoint import Endpoint
from .errors import IllegalStateError, TransportUnavailable
from .latency import PingPhase
from .models import (
    PHASE_ORDER,
    PhaseKind,
    PhaseProgress,
    PhaseResult,
    Report,
    RunMode,
    TransportKind,
    TransportResult,
)
from .phase import PhaseRunner
from .registry import TransportFactory, default_factory
from .selector import ProtocolSelector
from .transport import Transport
from .upload import UploadPhase

logger = logging.getLogger(__name__)

PHASE_CLASSES: Dict[PhaseKind, Type[PhaseRunner]] = {
    PhaseKind.PING: PingPhase,
    PhaseKind.DOWNLOAD: DownloadPhase,
    PhaseKind.UPLOAD: UploadPhase,
}

ABORTED_REASON = "aborted during establishment"


class SpeedTestEngine:
    """Runs one speed test and returns its ``Report``."""

    def __init__(
        self,
        config: SpeedTestConfig,
        endpoint: Optional[Endpoint] = None,
        transport_factory: Optional[TransportFactory] = None,
        selector: Optional[ProtocolSelector] = None,
    ) -> None:
        config.validate()
        self.config = config
        self.endpoint = endpoint or Endpoint()
        self.selector = selector or ProtocolSelector(config)
        self._factory = transport_factory or default_factory(self.endpoint, config)

        # Subscriber hooks (all optional)
        self.on_transport_start: Optional[Callable[[TransportKind], None]] = None
        self.on_phase_start: Optional[Callable[[TransportKind, PhaseKind], None]] = None
        self.on_progress: Optional[Callable[[TransportKind, PhaseProgress], None]] = None
        self.on_phase_result: Optional[Callable[[TransportKind, PhaseResult], None]] = None
        self.on_transport_result: Optional[Callable[[TransportResult], None]] = None

        self._started = False
        self._aborted = False
        self._abort_event: Optional[asyncio.Event] = None
        self._runner: Optional[PhaseRunner] = None
        self._transport: Optional[Transport] = None
        self._closing: Optional[asyncio.Task] = None
        self._results: List[TransportResult] = []

    @property
    def mode(self) -> RunMode:
        return RunMode.COMPARISON if self.config.comparison_mode else RunMode.SINGLE

    @property
    def aborted(self) -> bool:
        return self._aborted

    # ------------------------------------------------------------------
    # Abort
    # ------------------------------------------------------------------

    def abort(self) -> None:
        """Stop the run; ``run()`` returns the partial report right away."""
        if self._aborted:
            return
        self._aborted = True
        logger.warning("Speed test aborted")

        if self._runner is not None:
            self._runner.abort()
        if self._abort_event is not None:
            self._abort_event.set()
        if self._transport is not None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            self._closing = loop.create_task(self._transport.close())

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> Report:
        if self._started:
            raise IllegalStateError("SpeedTestEngine.run() may only be called once")
        self._started = True

        self._abort_event = asyncio.Event()
        if self._aborted:
            self._abort_event.set()

        kinds = self.selector.resolve()
        logger.info(
            "Starting %s run over %s",
            self.mode.value, ", ".join(k.value for k in kinds) or "no transport",
        )

        if self.mode is RunMode.COMPARISON:
            await self._run_comparison(kinds)
        else:
            await self._run_single(kinds)

        if self._closing is not None:
            await self._closing

        return self._assemble()

    async def _run_single(self, kinds: List[TransportKind]) -> None:
        kind: Optional[TransportKind] = kinds[0] if kinds else None
        while kind is not None and not self._aborted:
            result = await self._run_transport(kind)
            if result.established or self._aborted:
                return
            kind = self.selector.fallback(kind)
            if kind is not None:
                logger.info("Falling back to %s", kind.value)

    async def _run_comparison(self, kinds: List[TransportKind]) -> None:
        for index, kind in enumerate(kinds):
            if index:
                await self._pause()
            if self._aborted:
                return
            await self._run_transport(kind)

    async def _pause(self) -> None:
        """Sleep between transports, waking early on abort."""
        try:
            await asyncio.wait_for(self._abort_event.wait(), timeout=self.config.comparison_pause)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------
    # One transport
    # ------------------------------------------------------------------

    async def _run_transport(self, kind: TransportKind) -> TransportResult:
        self._notify(self.on_transport_start, kind)
        transport = self._factory(kind)
        self._transport = transport

        try:
            error = await self._establish(transport)
            if error is not None:
                result = TransportResult(kind=kind, establishment_error=error, aborted=self._aborted)
            else:
                phases: Dict[str, PhaseResult] = {}
                for phase_kind in PHASE_ORDER:
                    if self._aborted:
                        break
                    phases[phase_kind.value] = await self._run_phase(transport, phase_kind)
                result = TransportResult(kind=kind, aborted=self._aborted, **phases)
        finally:
            self._transport = None
            await transport.close()

        self._results.append(result)
        self._notify(self.on_transport_result, result)
        return result

    async def _establish(self, transport: Transport) -> Optional[str]:
        """Establish *transport*.  Returns an error description, or None."""
        establishing = asyncio.ensure_future(
            transport.establish(self.config.establishment_timeout)
        )
        stop = asyncio.ensure_future(self._abort_event.wait())
        try:
            await asyncio.wait({establishing, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()

        if not establishing.done():
            establishing.cancel()
            try:
                await establishing
            except (asyncio.CancelledError, TransportUnavailable):
                pass
            return ABORTED_REASON

        try:
            establishing.result()
        except TransportUnavailable as exc:
            if self._aborted:
                return ABORTED_REASON
            logger.warning("%s", exc)
            return str(exc)
        return None

    async def _run_phase(self, transport: Transport, phase_kind: PhaseKind) -> PhaseResult:
        kind = transport.kind
        runner = PHASE_CLASSES[phase_kind](transport, self.config)
        if self.on_progress is not None:
            runner.on_progress = lambda progress: self._notify(self.on_progress, kind, progress)

        self._runner = runner
        self._notify(self.on_phase_start, kind, phase_kind)
        try:
            result = await runner.run()
        finally:
            self._runner = None

        self._notify(self.on_phase_result, kind, result)
        return result

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def _assemble(self) -> Report:
        selected = next((r.kind for r in self._results if r.established), None)
        report = Report(
            transport_results=tuple(self._results),
            selected_transport=selected,
            mode=self.mode,
            aborted=self._aborted,
        )
        logger.info(
            "Run finished: %d transport(s) attempted, selected %s%s",
            len(report.transport_results),
            selected.value if selected else "none",
            " (aborted)" if report.aborted else "",
        )
        return report

    @staticmethod
    def _notify(callback: Optional[Callable], *args) -> None:  # noqa: ANN002
        if callback is not None:
            callback(*args)
