"""
Error taxonomy.

Transport-level errors are raised by the transports and caught at the
phase boundary; they never escape a ``PhaseRunner``.  Only the engine's
``abort()`` cuts a run short.
"""
from __future__ import annotations

from typing import Any, Optional


class SpeedTestError(Exception):
    """Base class for every multispeed error."""


class TransportUnavailable(SpeedTestError):
    """The transport could not be brought to ``READY``.

    Not retried; triggers selector fallback in single mode.
    """

    def __init__(self, kind: Any, reason: str) -> None:
        super().__init__(f"{getattr(kind, 'value', kind)} unavailable: {reason}")
        self.kind = kind
        self.reason = reason


class EstablishmentTimeout(TransportUnavailable):
    """Establishment did not finish within ``establishment_timeout_ms``."""

    def __init__(self, kind: Any, timeout: float) -> None:
        super().__init__(kind, f"establishment timed out after {timeout:.1f} s")
        self.timeout = timeout


class SendFailed(SpeedTestError):
    """The channel was not ready (or refused the write) at send time."""


class TransportLost(SpeedTestError):
    """The transport left ``READY`` in the middle of a phase."""


class PhaseTimeout(SpeedTestError):
    """No activity within the phase window."""


class IllegalStateError(SpeedTestError, RuntimeError):
    """An operation was attempted in a state that does not allow it."""

    def __init__(self, message: str, result: Optional[Any] = None) -> None:
        super().__init__(message)
        self.result = result


class ProtocolError(SpeedTestError, ValueError):
    """A received frame could not be decoded."""
