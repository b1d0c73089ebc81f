"""
Data model shared by the engine, the phases and the reporting layer.

Results are frozen dataclasses: once a phase or a run has been assembled
nothing downstream can change it.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TransportKind(str, enum.Enum):
    STREAM = "stream"
    DATAGRAM = "datagram"
    MULTIPLEXED = "multiplexed"
    # Only meaningful inside ``SpeedTestConfig.preferred_order``.
    AUTO = "auto"

    @property
    def label(self) -> str:
        return _KIND_LABELS[self]


_KIND_LABELS = {
    TransportKind.STREAM: "Stream (WebSocket)",
    TransportKind.DATAGRAM: "Datagram (UDP)",
    TransportKind.MULTIPLEXED: "Multiplexed (QUIC datagrams)",
    TransportKind.AUTO: "Auto",
}

# Least overhead and most realistic first.
KIND_PRIORITY: Tuple[TransportKind, ...] = (
    TransportKind.DATAGRAM,
    TransportKind.MULTIPLEXED,
    TransportKind.STREAM,
)


class PhaseKind(str, enum.Enum):
    PING = "ping"
    DOWNLOAD = "download"
    UPLOAD = "upload"


PHASE_ORDER: Tuple[PhaseKind, ...] = (PhaseKind.PING, PhaseKind.DOWNLOAD, PhaseKind.UPLOAD)


class PhaseStatus(str, enum.Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    ABORTED = "aborted"


class RunMode(str, enum.Enum):
    SINGLE = "single"
    COMPARISON = "comparison"


# ---------------------------------------------------------------------------
# Samples and progress
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Sample:
    """One recorded observation: latency in ms, or a byte count."""

    timestamp: float
    value: float


@dataclass(frozen=True)
class PhaseProgress:
    """Partial metrics of a running phase."""

    kind: PhaseKind
    sample_count: int = 0
    elapsed_ms: float = 0.0
    bytes_total: int = 0
    average: Optional[float] = None
    jitter: Optional[float] = None
    throughput_mbps: Optional[float] = None
    last_latency: Optional[float] = None
    # Filled in by the runner, not the collector.
    fraction: float = 0.0
    live_mbps: Optional[float] = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

def _r(value: Optional[float], ndigits: int = 3) -> Optional[float]:
    return None if value is None else round(value, ndigits)


@dataclass(frozen=True)
class PhaseResult:
    """Terminal result of one phase."""

    kind: PhaseKind
    status: PhaseStatus
    average: Optional[float] = None
    jitter: Optional[float] = None
    throughput_mbps: Optional[float] = None
    sample_count: int = 0
    elapsed_ms: float = 0.0
    reason: Optional[str] = None
    bytes_total: int = 0
    attempts: int = 0
    min: Optional[float] = None
    max: Optional[float] = None
    median: Optional[float] = None
    packet_loss: Optional[float] = None

    @property
    def ok(self) -> bool:
        return self.status is PhaseStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "kind": self.kind.value,
            "status": self.status.value,
            "average": _r(self.average),
            "sample_count": self.sample_count,
            "elapsed_ms": round(self.elapsed_ms, 2),
            "attempts": self.attempts,
        }
        if self.reason:
            result["reason"] = self.reason
        if self.kind is PhaseKind.PING:
            result.update({
                "jitter": _r(self.jitter),
                "min": _r(self.min),
                "max": _r(self.max),
                "median": _r(self.median),
                "packet_loss": _r(self.packet_loss, 1),
            })
        else:
            result.update({
                "throughput_mbps": _r(self.throughput_mbps, 4),
                "bytes_total": self.bytes_total,
            })
        return result


@dataclass(frozen=True)
class TransportResult:
    """Everything measured (or not) over one transport."""

    kind: TransportKind
    ping: Optional[PhaseResult] = None
    download: Optional[PhaseResult] = None
    upload: Optional[PhaseResult] = None
    establishment_error: Optional[str] = None
    aborted: bool = False

    def __post_init__(self) -> None:
        if self.establishment_error is not None and self.phases:
            raise ValueError("a transport that never established has no phase results")

    @property
    def established(self) -> bool:
        return self.establishment_error is None

    @property
    def phases(self) -> Tuple[PhaseResult, ...]:
        return tuple(p for p in (self.ping, self.download, self.upload) if p is not None)

    def phase(self, kind: PhaseKind) -> Optional[PhaseResult]:
        return {
            PhaseKind.PING: self.ping,
            PhaseKind.DOWNLOAD: self.download,
            PhaseKind.UPLOAD: self.upload,
        }[kind]

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "transport": self.kind.value,
            "established": self.established,
            "aborted": self.aborted,
        }
        if self.establishment_error is not None:
            result["establishment_error"] = self.establishment_error
        for kind in PHASE_ORDER:
            phase = self.phase(kind)
            result[kind.value] = phase.to_dict() if phase else None
        return result


@dataclass(frozen=True)
class Report:
    """Outcome of one engine run, in attempt order."""

    transport_results: Tuple[TransportResult, ...]
    selected_transport: Optional[TransportKind]
    mode: RunMode
    aborted: bool = False
    started_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def result_for(self, kind: TransportKind) -> Optional[TransportResult]:
        for tr in self.transport_results:
            if tr.kind is kind:
                return tr
        return None

    @property
    def selected_result(self) -> Optional[TransportResult]:
        if self.selected_transport is None:
            return None
        return self.result_for(self.selected_transport)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.started_at,
            "mode": self.mode.value,
            "selected_transport": (
                self.selected_transport.value if self.selected_transport else None
            ),
            "aborted": self.aborted,
            "transports": [tr.to_dict() for tr in self.transport_results],
        }
