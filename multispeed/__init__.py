"""multispeed -- multi-transport latency and throughput measurement."""

from .comparison import best_transport, compare_transports, format_delta
from .config import SpeedTestConfig
from .endpoint import Endpoint
from .engine import SpeedTestEngine
from .errors import (
    EstablishmentTimeout,
    IllegalStateError,
    PhaseTimeout,
    ProtocolError,
    SendFailed,
    SpeedTestError,
    TransportLost,
    TransportUnavailable,
)
from .models import (
    PhaseKind,
    PhaseProgress,
    PhaseResult,
    PhaseStatus,
    Report,
    RunMode,
    Sample,
    TransportKind,
    TransportResult,
)
from .selector import ProtocolSelector
from .stats import (
    StatisticsCollector,
    calculate_jitter,
    calculate_throughput_mbps,
    format_latency,
    format_speed,
)
from .transport import Transport, TransportState

__version__ = "0.1.0"

__all__ = [
    "Endpoint",
    "EstablishmentTimeout",
    "IllegalStateError",
    "PhaseKind",
    "PhaseProgress",
    "PhaseResult",
    "PhaseStatus",
    "PhaseTimeout",
    "ProtocolError",
    "ProtocolSelector",
    "Report",
    "RunMode",
    "Sample",
    "SendFailed",
    "SpeedTestConfig",
    "SpeedTestEngine",
    "SpeedTestError",
    "StatisticsCollector",
    "Transport",
    "TransportKind",
    "TransportLost",
    "TransportResult",
    "TransportState",
    "TransportUnavailable",
    "best_transport",
    "calculate_jitter",
    "calculate_throughput_mbps",
    "compare_transports",
    "format_delta",
    "format_latency",
    "format_speed",
]
