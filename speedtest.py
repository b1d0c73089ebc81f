#!/usr/bin/env python3
"""
multispeed CLI -- latency, jitter and throughput over several transports.

Usage::

    python speedtest.py                          # rich dashboard, best transport
    python speedtest.py --compare                # every available transport
    python speedtest.py --protocol stream        # force one transport
    python speedtest.py -p multiplexed -p stream # preference order
    python speedtest.py --relay                  # datagrams through the HTTP relay
    python speedtest.py --simple                 # plain text
    python speedtest.py --json                   # JSON to stdout
    python speedtest.py -o result.json           # save to file
    python speedtest.py --csv log.csv            # append one CSV row per transport
    python speedtest.py --serve                  # run the reflector
    python speedtest.py --serve --cert c.pem --key k.pem   # ... with QUIC
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from typing import Any, Dict, Optional

from multispeed.config import SpeedTestConfig, load_config
from multispeed.constants import (
    DEFAULT_HTTP_PORT,
    DEFAULT_QUIC_PORT,
    DEFAULT_UDP_PORT,
    DEFAULT_WS_PORT,
)
from multispeed.endpoint import Endpoint
from multispeed.engine import SpeedTestEngine
from multispeed.logging_setup import configure_logging
from multispeed.models import PhaseKind, PhaseProgress, PhaseResult, Report, RunMode, TransportKind, TransportResult
from multispeed.reflector import Reflector
from ui.dashboard import (
    ProgressDisplay,
    console,
    print_comparison,
    print_final_results,
    print_header,
    print_latency_details,
    print_plan,
    print_speed_result,
    print_transport_result,
    print_transport_start,
)
from ui.output import create_report_json, format_csv_header, format_csv_rows, format_text_result, save_json

logger = logging.getLogger("multispeed.cli")

PROTOCOL_CHOICES = [k.value for k in (
    TransportKind.AUTO, TransportKind.DATAGRAM, TransportKind.MULTIPLEXED, TransportKind.STREAM,
)]

_PHASE_TITLES = {
    PhaseKind.PING: "Measuring latency",
    PhaseKind.DOWNLOAD: "Downloading",
    PhaseKind.UPLOAD: "Uploading",
}


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _pick(value: Any, fallback: Any) -> Any:
    return fallback if value is None else value


def build_config(args: argparse.Namespace, file_config: Dict[str, Any]) -> SpeedTestConfig:
    """Merge CLI flags over the config file.  Raises ``ValueError`` if invalid."""

    def _ms(seconds: Optional[float], key: str) -> float:
        return file_config[key] if seconds is None else seconds * 1000

    merged = dict(file_config)
    merged.update({
        "protocols": _pick(args.protocol, file_config["protocols"]),
        "compare": args.compare or file_config["compare"],
        "relay": args.relay or file_config["relay"],
        "ping_count": _pick(args.ping_count, file_config["ping_count"]),
        "ping_interval_ms": _pick(args.ping_interval, file_config["ping_interval_ms"]),
        "duration_ms": _ms(args.duration, "duration_ms"),
        "payload_size": _pick(args.payload_size, file_config["payload_size"]),
        "timeout_ms": _ms(args.timeout, "timeout_ms"),
        "connect_timeout_ms": _ms(args.connect_timeout, "connect_timeout_ms"),
    })
    config = SpeedTestConfig.from_dict(merged)
    config.validate()
    return config


def build_endpoint(args: argparse.Namespace, file_config: Dict[str, Any]) -> Endpoint:
    data: Dict[str, Any] = {
        "host": _pick(args.host, file_config["host"]),
        "insecure": not args.verify_cert,
    }
    for name in ("udp_port", "ws_port", "http_port", "quic_port"):
        value = _pick(getattr(args, name), file_config.get(name))
        if value is not None:
            data[name] = value
    return Endpoint.from_dict(data)


# ---------------------------------------------------------------------------
# Core test runner
# ---------------------------------------------------------------------------

def _attach_dashboard(engine: SpeedTestEngine) -> None:
    """Wire the engine's events to the rich dashboard."""
    progress = ProgressDisplay()

    def _on_phase_start(kind: TransportKind, phase: PhaseKind) -> None:
        progress.start(_PHASE_TITLES[phase])

    def _on_progress(kind: TransportKind, update: PhaseProgress) -> None:
        progress.update(update)

    def _on_phase_result(kind: TransportKind, result: PhaseResult) -> None:
        progress.stop()
        if result.kind is PhaseKind.PING:
            print_latency_details(result)
        elif result.kind is PhaseKind.DOWNLOAD:
            print_speed_result(result, "Download Results", "green", progress.speed_samples)
        else:
            print_speed_result(result, "Upload Results", "blue", progress.speed_samples)

    def _on_transport_result(result: TransportResult) -> None:
        if not result.established:
            print_transport_result(result)

    engine.on_transport_start = print_transport_start
    engine.on_phase_start = _on_phase_start
    engine.on_progress = _on_progress
    engine.on_phase_result = _on_phase_result
    engine.on_transport_result = _on_transport_result


async def run_speedtest(
    config: SpeedTestConfig,
    endpoint: Endpoint,
    *,
    json_output: bool = False,
    output_file: Optional[str] = None,
    csv_file: Optional[str] = None,
    simple: bool = False,
) -> Report:
    """Run one test, render it, and return the report."""

    show_ui = not json_output and not simple
    engine = SpeedTestEngine(config, endpoint)

    if show_ui:
        print_header()
        print_plan(endpoint, engine.selector.resolve(), engine.selector.fallback_chain())
        _attach_dashboard(engine)

    # Ctrl-C aborts the engine instead of killing the process, so the
    # partial report still gets rendered.
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, engine.abort)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False

    try:
        report = await engine.run()
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)

    # -- Summary ------------------------------------------------------------
    if show_ui:
        if report.mode is RunMode.COMPARISON:
            console.print()
            print_comparison(report)
        print_final_results(report)
    elif simple:
        print(format_text_result(report))

    # -- JSON result --------------------------------------------------------
    result_json = create_report_json(report, config=config, endpoint=endpoint)

    if json_output:
        print(json.dumps(result_json, indent=2))

    if output_file:
        save_json(result_json, output_file)
        if not json_output:
            console.print(f"\n[green]Results saved to:[/green] {output_file}")

    # -- CSV append ---------------------------------------------------------
    if csv_file:
        _append_csv(csv_file, report)
        if not json_output:
            console.print(f"[green]CSV rows appended to:[/green] {csv_file}")

    return report


def _append_csv(path: str, report: Report) -> None:
    """Append one row per transport, writing the header if the file is new."""
    write_header = not os.path.isfile(path) or os.path.getsize(path) == 0
    with open(path, "a", encoding="utf-8") as fh:
        if write_header:
            fh.write(format_csv_header() + "\n")
        for row in format_csv_rows(report):
            fh.write(row + "\n")


# ---------------------------------------------------------------------------
# Reflector
# ---------------------------------------------------------------------------

def run_reflector(args: argparse.Namespace) -> None:
    """Serve every transport until interrupted."""
    if bool(args.cert) != bool(args.key):
        raise ValueError("--cert and --key must be given together")

    reflector = Reflector(
        host=args.host or "0.0.0.0",
        udp_port=_pick(args.udp_port, DEFAULT_UDP_PORT),
        ws_port=_pick(args.ws_port, DEFAULT_WS_PORT),
        http_port=_pick(args.http_port, DEFAULT_HTTP_PORT),
        quic_port=_pick(args.quic_port, DEFAULT_QUIC_PORT) if args.cert else None,
        cert=args.cert,
        key=args.key,
    )
    console.print(
        f"[bold cyan]Reflector[/bold cyan] on {reflector.host} "
        f"[dim](Ctrl-C to stop)[/dim]"
    )
    try:
        asyncio.run(reflector.serve_forever())
    except KeyboardInterrupt:
        console.print("\n[yellow]Reflector stopped[/yellow]")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="multispeed -- network speed testing over several transports",
    )
    # Output modes
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    parser.add_argument("--output", "-o", type=str, metavar="FILE", help="Save results to JSON file")
    parser.add_argument("--csv", type=str, metavar="FILE", help="Append results as CSV rows")
    parser.add_argument("--simple", "-s", action="store_true", help="Simple output mode (no dashboard)")

    # Transport selection
    parser.add_argument("--protocol", "-p", action="append", choices=PROTOCOL_CHOICES, help="Preferred transport; repeat to set an order (default: auto)")
    parser.add_argument("--compare", "-c", action="store_true", default=False, help="Test every available transport and compare")
    parser.add_argument("--relay", action="store_true", default=False, help="Reach the datagram side through the HTTP relay")

    # Reflector address
    parser.add_argument("--host", type=str, metavar="HOST", help="Reflector host (default: 127.0.0.1)")
    parser.add_argument("--udp-port", type=int, metavar="PORT", help=f"UDP port (default: {DEFAULT_UDP_PORT})")
    parser.add_argument("--ws-port", type=int, metavar="PORT", help=f"WebSocket port (default: {DEFAULT_WS_PORT})")
    parser.add_argument("--http-port", type=int, metavar="PORT", help=f"HTTP relay port (default: {DEFAULT_HTTP_PORT})")
    parser.add_argument("--quic-port", type=int, metavar="PORT", help=f"QUIC port (default: {DEFAULT_QUIC_PORT})")
    parser.add_argument("--verify-cert", action="store_true", help="Verify the reflector's QUIC certificate")

    # Test parameters
    parser.add_argument("--ping-count", type=int, metavar="N", help="Number of ping samples (default: 10)")
    parser.add_argument("--ping-interval", type=float, metavar="MS", help="Milliseconds between pings (default: 100)")
    parser.add_argument("--duration", type=float, metavar="SECS", help="Download / upload duration in seconds (default: 10)")
    parser.add_argument("--payload-size", type=int, metavar="BYTES", help="Data unit size (default: 16384)")
    parser.add_argument("--timeout", type=float, metavar="SECS", help="Per-phase inactivity timeout (default: 5)")
    parser.add_argument("--connect-timeout", type=float, metavar="SECS", help="Transport establishment timeout (default: 5)")

    # Reflector mode
    parser.add_argument("--serve", action="store_true", help="Run the reflector instead of a test")
    parser.add_argument("--cert", type=str, metavar="FILE", help="TLS certificate for the QUIC reflector")
    parser.add_argument("--key", type=str, metavar="FILE", help="TLS private key for the QUIC reflector")

    # Logging
    parser.add_argument("--verbose", "-v", action="count", default=0, help="More log output (-vv for debug)")
    parser.add_argument("--log-file", type=str, metavar="FILE", help="Also write a rotating debug log")
    return parser


def main() -> None:
    args = build_parser().parse_args()

    level = {0: logging.WARNING, 1: logging.INFO}.get(args.verbose, logging.DEBUG)
    configure_logging(level, args.log_file)

    if args.serve:
        try:
            run_reflector(args)
        except (ValueError, OSError) as exc:
            console.print(f"[red]Error: {exc}[/red]")
            sys.exit(1)
        return

    file_config = load_config()
    try:
        config = build_config(args, file_config)
        endpoint = build_endpoint(args, file_config)
    except ValueError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        sys.exit(1)

    try:
        report = asyncio.run(
            run_speedtest(
                config,
                endpoint,
                json_output=args.json,
                output_file=args.output,
                csv_file=args.csv or file_config.get("csv_file") or None,
                simple=args.simple,
            )
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Test cancelled by user[/yellow]")
        sys.exit(1)
    except (IOError, OSError) as exc:
        console.print(f"\n[red]Error: {exc}[/red]")
        sys.exit(1)

    if report.aborted:
        console.print("[yellow]Test cancelled by user -- partial results shown[/yellow]")
        sys.exit(1)
    if report.selected_transport is None:
        sys.exit(1)


if __name__ == "__main__":
    main()
