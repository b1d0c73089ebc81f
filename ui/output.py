"""
Output formatting -- JSON export, plain text, and CSV.
"""
from __future__ import annotations

import json
import os
from typing import Any, Dict, List, Optional

from multispeed.comparison import compare_transports
from multispeed.config import SpeedTestConfig
from multispeed.endpoint import Endpoint
from multispeed.models import PhaseKind, Report, RunMode, TransportResult
from multispeed.stats import format_latency, format_speed


def create_report_json(
    report: Report,
    config: Optional[SpeedTestConfig] = None,
    endpoint: Optional[Endpoint] = None,
) -> Dict[str, Any]:
    """Build the JSON document for one run."""
    result = report.to_dict()

    if endpoint is not None:
        result["endpoint"] = endpoint.to_dict()
    if config is not None:
        result["config"] = config.to_dict()

    if report.mode is RunMode.COMPARISON:
        deltas = compare_transports(report)
        if deltas is not None:
            result["comparison"] = {
                "baseline": "stream",
                "deltas": {
                    kind.value: {k: None if v is None else round(v, 3) for k, v in row.items()}
                    for kind, row in deltas.items()
                },
            }

    return result


def save_json(result: Dict[str, Any], filepath: str) -> None:
    """Write *result* to *filepath* atomically (write-tmp then rename)."""
    dir_path = os.path.dirname(filepath) or "."
    tmp = os.path.join(dir_path, f".tmp_{os.path.basename(filepath)}")

    try:
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(result, fh, indent=2, ensure_ascii=False)
        os.replace(tmp, filepath)
    except (IOError, OSError) as exc:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise IOError(f"Failed to save JSON to {filepath}: {exc}") from exc


# ---------------------------------------------------------------------------
# Plain-text helpers
# ---------------------------------------------------------------------------

def _phase_line(result: TransportResult, kind: PhaseKind) -> str:
    phase = result.phase(kind)
    if phase is None:
        return "-"
    if kind is PhaseKind.PING:
        text = f"{format_latency(phase.average)} (jitter: {format_latency(phase.jitter)})"
    else:
        text = format_speed(phase.throughput_mbps)
    if not phase.ok:
        text += f" [{phase.status.value}]"
    return text


def format_text_result(report: Report) -> str:
    sep = "=" * 50
    mid = "-" * 50
    lines = [sep, "Multi-Transport Speed Test Results", sep, f"Mode: {report.mode.value}"]
    if report.selected_transport is not None:
        lines.append(f"Selected: {report.selected_transport.label}")
    if report.aborted:
        lines.append("Run was aborted; results are partial.")

    for result in report.transport_results:
        lines.append(mid)
        lines.append(result.kind.label)
        if not result.established:
            lines.append(f"  Not established: {result.establishment_error}")
            continue
        lines.append(f"  Ping: {_phase_line(result, PhaseKind.PING)}")
        lines.append(f"  Download: {_phase_line(result, PhaseKind.DOWNLOAD)}")
        lines.append(f"  Upload: {_phase_line(result, PhaseKind.UPLOAD)}")

    if not report.transport_results:
        lines.append(mid)
        lines.append("No transport was attempted.")
    lines.append(sep)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# CSV helpers
# ---------------------------------------------------------------------------

def _csv_escape(value: str) -> str:
    """Quote *value* if it contains a comma, quote or newline."""
    if any(ch in value for ch in ',"\n\r'):
        return '"' + value.replace('"', '""') + '"'
    return value


def _num(value: Optional[float], fmt: str) -> str:
    return "" if value is None else format(value, fmt)


def format_csv_header() -> str:
    return (
        "timestamp,mode,transport,established,ping_ms,jitter_ms,packet_loss,"
        "download_mbps,upload_mbps,status,error"
    )


def format_csv_row(report: Report, result: TransportResult) -> str:
    ping = result.ping
    download = result.download
    upload = result.upload

    statuses = [p.status.value for p in result.phases if not p.ok]
    status = "aborted" if result.aborted else ("partial" if statuses else "ok")
    if not result.established:
        status = "unavailable"

    fields = [
        report.started_at,
        report.mode.value,
        result.kind.value,
        "yes" if result.established else "no",
        _num(ping.average if ping else None, ".1f"),
        _num(ping.jitter if ping else None, ".2f"),
        _num(ping.packet_loss if ping else None, ".1f"),
        _num(download.throughput_mbps if download else None, ".2f"),
        _num(upload.throughput_mbps if upload else None, ".2f"),
        status,
        _csv_escape(result.establishment_error or ""),
    ]
    return ",".join(fields)


def format_csv_rows(report: Report) -> List[str]:
    """One CSV row per attempted transport, in attempt order."""
    return [format_csv_row(report, result) for result in report.transport_results]
