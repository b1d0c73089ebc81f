"""
Cross-transport comparison helpers.

Given a comparison report, express every transport's numbers as deltas
against a baseline transport (the reliable stream by default), and pick
the best transport per metric.
"""
from __future__ import annotations

from typing import Dict, Optional

from .models import PhaseKind, Report, TransportKind, TransportResult


# ---------------------------------------------------------------------------
# Metric extraction
# ---------------------------------------------------------------------------

# metric -> (phase, attribute, lower_is_better)
METRICS = {
    "latency": (PhaseKind.PING, "average", True),
    "jitter": (PhaseKind.PING, "jitter", True),
    "download": (PhaseKind.DOWNLOAD, "throughput_mbps", False),
    "upload": (PhaseKind.UPLOAD, "throughput_mbps", False),
}


def metric_value(result: TransportResult, metric: str) -> Optional[float]:
    """The value of *metric* measured over *result*, or None."""
    phase_kind, attr, _ = METRICS[metric]
    phase = result.phase(phase_kind)
    if phase is None:
        return None
    return getattr(phase, attr)


# ---------------------------------------------------------------------------
# Delta comparison
# ---------------------------------------------------------------------------

def compare_transports(
    report: Report,
    baseline: TransportKind = TransportKind.STREAM,
) -> Optional[Dict[TransportKind, Dict[str, Optional[float]]]]:
    """
    Compare every established transport in *report* with *baseline*.

    Returns ``{kind: {"latency_delta", "jitter_delta", "download_delta",
    "upload_delta"}}`` (native units, ``other - baseline``), or None when
    the baseline never established.  A delta is None when either side
    lacks the metric.
    """
    base = report.result_for(baseline)
    if base is None or not base.established:
        return None

    deltas: Dict[TransportKind, Dict[str, Optional[float]]] = {}
    for result in report.transport_results:
        if result.kind is baseline or not result.established:
            continue
        row: Dict[str, Optional[float]] = {}
        for metric in METRICS:
            ours = metric_value(result, metric)
            theirs = metric_value(base, metric)
            row[f"{metric}_delta"] = (
                None if ours is None or theirs is None else ours - theirs
            )
        deltas[result.kind] = row
    return deltas


def best_transport(report: Report, metric: str) -> Optional[TransportKind]:
    """The transport with the best *metric*, or None if nobody measured it."""
    _, _, lower_is_better = METRICS[metric]
    candidates = []
    for result in report.transport_results:
        value = metric_value(result, metric)
        if value is not None:
            candidates.append((value, result.kind))
    if not candidates:
        return None
    pick = min if lower_is_better else max
    return pick(candidates, key=lambda c: c[0])[1]


def format_delta(value: Optional[float], unit: str, invert: bool = False) -> str:
    """
    Format a delta value with a +/- prefix and color hint.

    *invert*: True for metrics where lower is better (latency, jitter).
    """
    if value is None:
        return "[dim]n/a[/dim]"
    if abs(value) < 0.01:
        return "[dim](same)[/dim]"

    sign = "+" if value > 0 else ""
    is_good = (value < 0) if invert else (value > 0)
    color = "green" if is_good else "red"

    return f"[{color}]{sign}{value:.1f} {unit}[/{color}]"
