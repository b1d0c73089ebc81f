"""
Network measurement statistics.

Pure helper functions plus the per-phase ``StatisticsCollector``.  The
helpers have no I/O and no side effects; everything here is deterministic
and easy to unit-test.
"""
from __future__ import annotations

import statistics
from typing import List, Optional, Sequence

from .errors import IllegalStateError
from .models import PhaseKind, PhaseProgress, PhaseResult, PhaseStatus, Sample


# ---------------------------------------------------------------------------
# Pure helper functions
# ---------------------------------------------------------------------------

def calculate_jitter(samples: Sequence[float]) -> Optional[float]:
    """Mean absolute difference between consecutive samples.

    Undefined (``None``) for fewer than two samples.
    """
    if len(samples) < 2:
        return None
    diffs = [abs(samples[i] - samples[i - 1]) for i in range(1, len(samples))]
    return statistics.mean(diffs)


def calculate_throughput_mbps(total_bytes: int, elapsed_seconds: float) -> Optional[float]:
    """``(bytes * 8) / (seconds * 1e6)``; ``None`` when no time has elapsed."""
    if elapsed_seconds <= 0:
        return None
    return (total_bytes * 8) / (elapsed_seconds * 1_000_000)


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def format_speed(speed_mbps: Optional[float]) -> str:
    """Human-readable speed string."""
    if speed_mbps is None:
        return "N/A"
    if speed_mbps >= 1000:
        return f"{speed_mbps / 1000:.2f} Gbps"
    if 0 < speed_mbps < 0.1:
        return f"{speed_mbps * 1000:.1f} Kbps"
    return f"{speed_mbps:.2f} Mbps"


def format_latency(latency_ms: Optional[float]) -> str:
    """Human-readable latency string."""
    if latency_ms is None:
        return "N/A"
    if latency_ms >= 1000:
        return f"{latency_ms / 1000:.2f} s"
    return f"{latency_ms:.1f} ms"


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------

class StatisticsCollector:
    """
    Accumulates the samples of one running phase.

    The logs are append-only; ``snapshot()`` only reads them, so the
    reporting path can poll while the phase's callbacks keep recording.
    ``finalize()`` turns the collector read-only and drops the samples.
    """

    def __init__(self, kind: PhaseKind) -> None:
        self.kind = kind
        self._latencies: List[Sample] = []
        self._transfers: List[Sample] = []
        self._attempts = 0
        self._origin: Optional[float] = None
        self._window_end: Optional[float] = None
        self._result: Optional[PhaseResult] = None

    @property
    def finalized(self) -> bool:
        return self._result is not None

    # -- Recording ----------------------------------------------------------

    def _check_open(self, op: str) -> None:
        if self._result is not None:
            raise IllegalStateError(
                f"{op}() called on a finalized {self.kind.value} collector",
                result=self._result,
            )

    def record_latency(self, sample: Sample) -> None:
        self._check_open("record_latency")
        self._latencies.append(sample)

    def record_bytes(self, n: int, at: float) -> None:
        self._check_open("record_bytes")
        self._transfers.append(Sample(timestamp=at, value=n))

    def record_attempt(self) -> None:
        self._check_open("record_attempt")
        self._attempts += 1

    def mark_first_byte(self, at: float) -> None:
        """Note when the phase first put bytes on the wire.

        The elapsed window starts at the earlier of this mark and the
        first recorded sample.  Later calls are ignored.
        """
        self._check_open("mark_first_byte")
        if self._origin is None:
            self._origin = at

    def mark_window_end(self, at: float) -> None:
        """Extend the elapsed window to at least *at*.

        A unit sent at a fixed cadence occupies the slot after its send
        time, so the sender marks the end of that slot.
        """
        self._check_open("mark_window_end")
        if self._window_end is None or at > self._window_end:
            self._window_end = at

    # -- Reading ------------------------------------------------------------

    def _elapsed_seconds(self, samples: Sequence[Sample]) -> float:
        if not samples:
            return 0.0
        start = samples[0].timestamp
        if self._origin is not None:
            start = min(start, self._origin)
        end = samples[-1].timestamp
        if self._window_end is not None:
            end = max(end, self._window_end)
        return max(end - start, 0.0)

    def snapshot(self) -> PhaseProgress:
        """Partial metrics for progress reporting.  Never mutates state."""
        if self.kind is PhaseKind.PING:
            latencies = list(self._latencies)
            values = [s.value for s in latencies]
            elapsed = self._elapsed_seconds(latencies)
            return PhaseProgress(
                kind=self.kind,
                sample_count=len(values),
                elapsed_ms=elapsed * 1000,
                average=statistics.mean(values) if values else None,
                jitter=calculate_jitter(values),
                last_latency=values[-1] if values else None,
            )

        transfers = list(self._transfers)
        total = int(sum(s.value for s in transfers))
        elapsed = self._elapsed_seconds(transfers)
        mbps = calculate_throughput_mbps(total, elapsed)
        return PhaseProgress(
            kind=self.kind,
            sample_count=len(transfers),
            elapsed_ms=elapsed * 1000,
            bytes_total=total,
            average=mbps,
            throughput_mbps=mbps,
        )

    def finalize(self, status: PhaseStatus, reason: Optional[str] = None) -> PhaseResult:
        """Produce the phase's result.  Exactly once per collector."""
        if self._result is not None:
            raise IllegalStateError(
                f"{self.kind.value} collector already finalized", result=self._result
            )

        if self.kind is PhaseKind.PING:
            result = self._finalize_ping(status, reason)
        else:
            result = self._finalize_transfer(status, reason)

        self._result = result
        self._latencies = []
        self._transfers = []
        return result

    def _finalize_ping(self, status: PhaseStatus, reason: Optional[str]) -> PhaseResult:
        values = [s.value for s in self._latencies]
        attempts = max(self._attempts, len(values))
        elapsed = self._elapsed_seconds(self._latencies)
        loss = None
        if attempts:
            loss = (attempts - len(values)) / attempts * 100

        return PhaseResult(
            kind=self.kind,
            status=status,
            reason=reason,
            average=statistics.mean(values) if values else None,
            jitter=calculate_jitter(values),
            sample_count=len(values),
            elapsed_ms=elapsed * 1000,
            attempts=attempts,
            min=min(values) if values else None,
            max=max(values) if values else None,
            median=statistics.median(values) if values else None,
            packet_loss=loss,
        )

    def _finalize_transfer(self, status: PhaseStatus, reason: Optional[str]) -> PhaseResult:
        total = int(sum(s.value for s in self._transfers))
        elapsed = self._elapsed_seconds(self._transfers)
        mbps = calculate_throughput_mbps(total, elapsed)

        return PhaseResult(
            kind=self.kind,
            status=status,
            reason=reason,
            average=mbps,
            throughput_mbps=mbps,
            sample_count=len(self._transfers),
            elapsed_ms=elapsed * 1000,
            bytes_total=total,
            attempts=max(self._attempts, len(self._transfers)),
        )
