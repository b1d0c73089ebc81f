"""
Rich-based terminal dashboard for multispeed results.

All formatting helpers live in ``multispeed.stats`` -- this module only
does presentation via the ``rich`` library.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from multispeed.comparison import best_transport, compare_transports, format_delta
from multispeed.endpoint import Endpoint
from multispeed.models import (
    PhaseKind,
    PhaseProgress,
    PhaseResult,
    PhaseStatus,
    Report,
    TransportKind,
    TransportResult,
)
from multispeed.stats import format_latency, format_speed

console = Console()

_STATUS_STYLE = {
    PhaseStatus.COMPLETED: "green",
    PhaseStatus.TIMED_OUT: "yellow",
    PhaseStatus.FAILED: "red",
    PhaseStatus.ABORTED: "magenta",
}


# ---------------------------------------------------------------------------
# Histogram helper
# ---------------------------------------------------------------------------

_BARS = "▁▂▃▄▅▆▇█"


def create_histogram(values: List[float], height: int = 5) -> str:
    """Return a single-line Unicode bar-chart."""
    if not values:
        return "No data"

    lo, hi = min(values), max(values)
    span = hi - lo if hi > lo else 1.0
    norm = [(v - lo) / span * height for v in values]
    return "".join(_BARS[min(int(n * (len(_BARS) - 1) / height), len(_BARS) - 1)] for n in norm)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header() -> None:
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]multispeed[/bold cyan]\n"
            "[dim]Latency, jitter and throughput over every transport[/dim]",
            border_style="cyan",
        )
    )
    console.print()


def print_plan(endpoint: Endpoint, kinds: Sequence[TransportKind], chain: Sequence[TransportKind]) -> None:
    """Show where the test goes and which transports it will try."""
    table = Table(show_header=False, box=None, padding=(0, 1))
    table.add_column(style="dim")
    table.add_column(style="bold")
    table.add_row("Reflector:", endpoint.host)
    table.add_row("Transports:", ", ".join(k.label for k in kinds) or "none available")
    if len(chain) > 1:
        table.add_row("Fallback:", " -> ".join(k.value for k in chain))
    console.print(Panel(table, title="[bold]Test Plan[/bold]", border_style="blue"))


def print_transport_start(kind: TransportKind) -> None:
    console.print(f"\n[bold cyan]{kind.label}[/bold cyan]")


def _status_text(phase: PhaseResult) -> str:
    style = _STATUS_STYLE[phase.status]
    text = f"[{style}]{phase.status.value}[/{style}]"
    if phase.reason:
        text += f" [dim]({phase.reason})[/dim]"
    return text


def print_latency_details(phase: PhaseResult) -> None:
    """Print detailed latency statistics for one ping phase."""
    table = Table(title="Latency Details", box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Average", format_latency(phase.average))
    table.add_row("Min", format_latency(phase.min))
    table.add_row("Max", format_latency(phase.max))
    table.add_row("Median", format_latency(phase.median))
    table.add_row("Jitter", format_latency(phase.jitter))
    table.add_row("Replies", f"{phase.sample_count}/{phase.attempts}")
    if phase.packet_loss is not None:
        table.add_row("Packet Loss", f"{phase.packet_loss:.1f}%")
    table.add_row("Status", _status_text(phase))
    console.print(table)


def print_speed_result(
    phase: PhaseResult,
    title: str,
    color: str = "green",
    samples: Optional[List[float]] = None,
) -> None:
    """Print a download or upload result panel."""
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Speed", f"[bold {color}]{format_speed(phase.throughput_mbps)}[/bold {color}]")
    table.add_row("Data Transferred", f"{phase.bytes_total / 1_000_000:.2f} MB")
    table.add_row("Units", str(phase.sample_count))
    table.add_row("Duration", f"{phase.elapsed_ms / 1000:.1f} s")
    table.add_row("Status", _status_text(phase))
    console.print(table)

    if samples:
        console.print(
            Panel(
                f"[{color}]{create_histogram(samples)}[/{color}]\n"
                f"[dim]Min: {min(samples):.1f} Mbps  "
                f"Max: {max(samples):.1f} Mbps[/dim]",
                title="Speed Over Time",
            )
        )


def print_transport_result(result: TransportResult) -> None:
    """Compact per-transport summary table."""
    if not result.established:
        console.print(
            f"  [red]Not established:[/red] {result.establishment_error}"
        )
        return

    table = Table(title=result.kind.label, box=box.SIMPLE)
    table.add_column("Phase", style="bold")
    table.add_column("Result", justify="right")
    table.add_column("Samples", justify="right")
    table.add_column("Status")

    for phase in result.phases:
        if phase.kind is PhaseKind.PING:
            value = f"{format_latency(phase.average)} [dim]± {format_latency(phase.jitter)}[/dim]"
        else:
            value = format_speed(phase.throughput_mbps)
        table.add_row(phase.kind.value.title(), value, str(phase.sample_count), _status_text(phase))
    console.print(table)


def print_comparison(report: Report) -> None:
    """Side-by-side table of every attempted transport."""
    best = {
        metric: best_transport(report, metric)
        for metric in ("latency", "jitter", "download", "upload")
    }
    deltas = compare_transports(report) or {}

    table = Table(title="Transport Comparison", box=box.ROUNDED)
    table.add_column("Transport", style="bold")
    table.add_column("Latency", justify="right")
    table.add_column("Jitter", justify="right")
    table.add_column("Download", justify="right")
    table.add_column("Upload", justify="right")
    table.add_column("vs Stream", justify="right")

    for result in report.transport_results:
        if not result.established:
            table.add_row(result.kind.label, "[dim]unavailable[/dim]", "", "", "", "")
            continue

        def _cell(metric: str, text: str) -> str:
            return f"[bold green]{text}[/bold green]" if best[metric] is result.kind else text

        ping = result.ping
        download = result.download
        upload = result.upload
        delta: Dict[str, Optional[float]] = deltas.get(result.kind, {})
        delta_text = ""
        if delta:
            delta_text = (
                f"{format_delta(delta['latency_delta'], 'ms', invert=True)} / "
                f"{format_delta(delta['download_delta'], 'Mbps')}"
            )

        table.add_row(
            result.kind.label,
            _cell("latency", format_latency(ping.average if ping else None)),
            _cell("jitter", format_latency(ping.jitter if ping else None)),
            _cell("download", format_speed(download.throughput_mbps if download else None)),
            _cell("upload", format_speed(upload.throughput_mbps if upload else None)),
            delta_text,
        )

    console.print(table)


def print_final_results(report: Report) -> None:
    console.print()
    selected = report.selected_result
    if selected is None:
        console.print(
            Panel.fit(
                "[bold red]No transport could be established.[/bold red]",
                title="[bold]Results[/bold]",
                border_style="red",
            )
        )
        console.print()
        return

    ping = selected.ping
    download = selected.download
    upload = selected.upload
    body = (
        f"[bold cyan]Transport:[/bold cyan] {selected.kind.label}\n\n"
        f"[bold white]   Ping:[/bold white]  "
        f"[bold yellow]{format_latency(ping.average if ping else None)}[/bold yellow]  "
        f"[dim](jitter: {format_latency(ping.jitter if ping else None)})[/dim]\n"
        f"[bold white]   Download:[/bold white]  "
        f"[bold green]{format_speed(download.throughput_mbps if download else None)}[/bold green]\n"
        f"[bold white]   Upload:[/bold white]  "
        f"[bold blue]{format_speed(upload.throughput_mbps if upload else None)}[/bold blue]"
    )
    if report.aborted:
        body += "\n\n[magenta]Aborted -- results are partial[/magenta]"
    console.print(
        Panel.fit(body, title="[bold]Results[/bold]", border_style="cyan")
    )
    console.print()


# ---------------------------------------------------------------------------
# Progress display
# ---------------------------------------------------------------------------

class ProgressDisplay:
    """Manages a ``rich`` progress bar while a phase runs."""

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[bold cyan]{task.fields[metric]}[/bold cyan]"),
            TimeElapsedColumn(),
            console=console,
        )
        self._task_id = None
        self._last_prog = 0.0
        self._last_metric = ""
        self.speed_samples: List[float] = []

    def start(self, description: str) -> None:
        self.progress.start()
        self._task_id = self.progress.add_task(description, total=100, metric="")
        self._last_prog = 0.0
        self._last_metric = ""
        self.speed_samples = []

    def update(self, progress: PhaseProgress) -> None:
        if self._task_id is None:
            return
        if progress.kind is PhaseKind.PING:
            metric = format_latency(progress.last_latency) if progress.last_latency else "..."
        else:
            if progress.live_mbps:
                self.speed_samples.append(progress.live_mbps)
            metric = format_speed(progress.live_mbps) if progress.live_mbps else "..."
        # Debounce: only update when values change noticeably
        if abs(progress.fraction - self._last_prog) < 0.01 and metric == self._last_metric:
            return
        self.progress.update(self._task_id, completed=progress.fraction * 100, metric=metric)
        self._last_prog = progress.fraction
        self._last_metric = metric

    def stop(self) -> None:
        if self._task_id is None:
            self.progress.stop()
            return
        self.progress.update(self._task_id, completed=100)
        self.progress.stop()
        # The bar stays on screen; drop it so the next phase starts clean.
        self.progress.remove_task(self._task_id)
        self._task_id = None
