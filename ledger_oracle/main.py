from __future__ import annotations

import asyncio
import sys
from typing import Optional

import typer

from ledger_oracle.checks.cross_path import CrossPathFetcher
from ledger_oracle.checks.snapshots import SnapshotStore
from ledger_oracle.checks.stream_monitor import StreamMonitor
from ledger_oracle.config import Settings, get_settings
from ledger_oracle.domain.errors import OracleError
from ledger_oracle.domain.models import SnapshotBehavior
from ledger_oracle.infrastructure.api_client import LedgerClient
from ledger_oracle.orchestrator import cleanup_infrastructure, load_archived_runs, run_phase
from ledger_oracle.reporter import print_failure, print_reports
from ledger_oracle.utils.logging import configure_logging

app = typer.Typer(help="Ledger read-API consistency oracle and soak harness.")


def _setup_logging(settings: Settings) -> None:
    configure_logging(level=settings.log_level, json_logs=settings.json_logs)


def _fail(exc: OracleError) -> None:
    print_failure(exc)
    raise typer.Exit(code=1)


def _store_for(settings: Settings, behavior: SnapshotBehavior) -> Optional[SnapshotStore]:
    if behavior is SnapshotBehavior.SKIP:
        return None
    return SnapshotStore(settings.snapshots_dir)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"API={settings.api_url} WS={settings.websocket_url} | "
        f"output={settings.output_dir} snapshots={settings.snapshots_dir}"
    )
    typer.echo(
        f"workers={settings.num_workers} batches={settings.num_soak_batches} "
        f"full_every={settings.full_slot_save_interval} "
        f"tolerance={settings.end_of_run_tolerance_batches} "
        f"ratio={settings.throughput_regression_ratio}"
    )
    typer.echo(
        f"rollup='{settings.rollup_command}' cwd={settings.rollup_workdir} "
        f"config={settings.rollup_config_path} genesis={settings.genesis_path}"
    )


def _run_phase_command(phase: str) -> None:
    settings = get_settings()
    _setup_logging(settings)
    try:
        report = run_phase(phase, settings)
    except OracleError as exc:
        _fail(exc)
    finally:
        cleanup_infrastructure(settings)
    typer.echo(
        f"{phase}: {report.num_txs} txs in {report.num_slots} slots "
        f"({report.throughput:.2f} txs/slot)"
    )


@app.command()
def setup() -> None:
    """
    First phase: consistency checks, then a soak that records snapshots and a throughput report.
    """
    _run_phase_command("setup")


@app.command()
def accept() -> None:
    """
    Second phase: replay recorded snapshots after a restart, soak again and gate on throughput.
    """
    _run_phase_command("accept")


async def _watch(settings: Settings, count: int, behavior: SnapshotBehavior) -> None:
    async with LedgerClient.from_settings(settings) as client:
        async with await StreamMonitor.open(client, _store_for(settings, behavior)) as monitor:
            while count == 0 or monitor.ticks < count:
                tick = await monitor.next(behavior)
                typer.echo(
                    f"slot={tick.slot_with_children.number} "
                    f"batches={len(tick.slot_with_children.batches)} "
                    f"finalized={tick.finalized_slot.number}"
                )


@app.command()
def watch(
    count: int = typer.Option(
        0, "--count", "-n", help="Stop after this many validated ticks (0 = run until interrupted)."
    ),
    behavior: SnapshotBehavior = typer.Option(
        SnapshotBehavior.SKIP, "--snapshots", "-s", help="Save, compare or skip snapshots."
    ),
) -> None:
    """
    Validate the four slot subscriptions tick by tick.
    """
    settings = get_settings()
    _setup_logging(settings)
    try:
        asyncio.run(_watch(settings, count, behavior))
    except OracleError as exc:
        _fail(exc)


async def _check(settings: Settings, start: int, end: int, behavior: SnapshotBehavior) -> int:
    async with LedgerClient.from_settings(settings) as client:
        fetcher = CrossPathFetcher(client, _store_for(settings, behavior))
        for number in range(start, end + 1):
            await fetcher.fetch_slot(number, behavior)
    return end - start + 1


@app.command()
def check(
    start: int = typer.Option(0, "--start", help="First slot number."),
    end: int = typer.Option(..., "--end", help="Last slot number (inclusive)."),
    behavior: SnapshotBehavior = typer.Option(
        SnapshotBehavior.SKIP, "--snapshots", "-s", help="Save, compare or skip snapshots."
    ),
) -> None:
    """
    Fetch a range of slots through every lookup path and check they agree.
    """
    if end < start:
        raise typer.BadParameter("--end must not be below --start")
    settings = get_settings()
    _setup_logging(settings)
    try:
        checked = asyncio.run(_check(settings, start, end, behavior))
    except OracleError as exc:
        _fail(exc)
    typer.echo(f"{checked} slots consistent across lookup paths.")


@app.command()
def report() -> None:
    """
    Show archived soak reports.
    """
    settings = get_settings()
    print_reports(load_archived_runs(settings.output_dir))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
