from __future__ import annotations

from typing import Any, Dict, List, Optional

from rich import box
from rich.columns import Columns
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from ledger_oracle.domain.errors import ComparisonError, OracleError, pretty_json


def _format_bytes(value: Optional[int]) -> str:
    if not value:
        return "N/A"
    return f"{value / (1024 * 1024):.2f}"


def print_reports(runs: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    """
    Render archived soak runs as a rich table, oldest first.

    Each entry is an archived run payload (see `orchestrator.persist_report`).
    """
    console = console or Console()

    if not runs:
        console.print("[yellow]No reports to display.[/yellow]")
        return

    table = Table(
        title="Ledger Oracle Soak Reports",
        box=box.ROUNDED,
        caption="Throughput is transactions per slot",
    )

    table.add_column("Timestamp", style="dim", no_wrap=True)
    table.add_column("Phase", style="cyan", no_wrap=True)
    table.add_column("Txs", justify="right", style="magenta")
    table.add_column("Slots", justify="right", style="magenta")
    table.add_column("Throughput (tx/slot)", justify="right", style="bold green")
    table.add_column("Duration (s)", justify="right", style="green")
    table.add_column("Harness Peak (MB)", justify="right", style="yellow")
    table.add_column("Rollup Peak (MB)", justify="right", style="yellow")

    for run in runs:
        profile = run.get("profile") or {}
        duration = profile.get("duration_seconds")
        table.add_row(
            str(run.get("timestamp", "")),
            str(run.get("phase", "unknown")),
            f"{run.get('num_txs', 0):,}",
            f"{run.get('num_slots', 0):,}",
            f"{run.get('throughput_txs_per_slot', 0.0):,.2f}",
            f"{duration:.1f}" if duration is not None else "N/A",
            _format_bytes(profile.get("peak_rss_bytes")),
            _format_bytes(profile.get("service_peak_rss_bytes")),
        )

    console.print(table)


def print_failure(exc: OracleError, console: Optional[Console] = None) -> None:
    """
    Render a fatal oracle error.

    Comparison failures show both sides as pretty-printed JSON next to each
    other, followed by a unified diff.
    """
    console = console or Console(stderr=True)
    title = f"[bold red]{type(exc).__name__}[/bold red]"

    if not isinstance(exc, ComparisonError):
        console.print(Panel(str(exc), title=title, border_style="red"))
        return

    panels = [
        Panel(
            Syntax(pretty_json(value), "json", word_wrap=True),
            title=label,
            border_style="yellow",
        )
        for label, value in exc.sides()
    ]
    console.print(Panel(exc.description, title=title, border_style="red"))
    console.print(Columns(panels, equal=True, expand=True))
    diff = exc.diff()
    if diff:
        console.print(Syntax(diff, "diff", word_wrap=True))
