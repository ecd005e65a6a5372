"""
Orchestrator for the two acceptance phases, profiling each soak and
persisting throughput reports.

Usage (example from CLI):
    import asyncio
    from ledger_oracle.config import get_settings
    from ledger_oracle.orchestrator import run_acceptance, run_setup

    report = asyncio.run(run_setup(get_settings()))
    accepted = asyncio.run(run_acceptance(get_settings()))

Outputs are saved to the configured output directory:
- `throughput_report.json` (setup phase, read back by the acceptance phase)
- `accepted_throughput_report.json` (acceptance phase)
- `runs/run-<timestamp>.json` (timestamped archive with profiler stats)
- `snapshots/slot_NNNN_with_children.json` (regression baselines)
- `rollup.log` (stdout of the service under test)
"""

from __future__ import annotations

import asyncio
import json
import shlex
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ledger_oracle.checks.cross_path import CrossPathFetcher
from ledger_oracle.checks.snapshots import SnapshotStore
from ledger_oracle.checks.stream_monitor import StreamMonitor
from ledger_oracle.config import Settings
from ledger_oracle.domain.errors import ThroughputRegression
from ledger_oracle.domain.models import SnapshotBehavior, ThroughputReport
from ledger_oracle.infrastructure.api_client import LedgerClient, LedgerService
from ledger_oracle.infrastructure.process import RollupProcess, launch_rollup
from ledger_oracle.soak.resync import ResyncValidator
from ledger_oracle.soak.runner import SoakRunner
from ledger_oracle.soak.workers import PresignedTransactionFile
from ledger_oracle.utils.logging import get_logger
from ledger_oracle.utils.profiler import ProfileStats, profile_block

log = get_logger(__name__)

SETUP_EXTRA_HEIGHT = 10


def _round_float(value: float, decimals: int = 2) -> float:
    return round(value, decimals)


def _report_payload(
    phase: str, report: ThroughputReport, profile: Optional[ProfileStats] = None
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "phase": phase,
        **report.model_dump(),
        "throughput_txs_per_slot": _round_float(report.throughput),
    }
    if profile is not None:
        payload["profile"] = profile.as_dict()
    return payload


def persist_report(
    report: ThroughputReport,
    path: Path,
    phase: str,
    profile: Optional[ProfileStats] = None,
) -> Path:
    """
    Write `report` to `path` and a timestamped archive next to it.

    `path` holds only `num_txs` and `num_slots` so a later phase can read it
    back as a ThroughputReport; the archive carries the profiler stats too.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    runs_dir = path.parent / "runs"
    runs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    archive_path = runs_dir / f"run-{timestamp}-{phase}.json"

    with path.open("w", encoding="utf-8") as f:
        json.dump(report.model_dump(), f)
    with archive_path.open("w", encoding="utf-8") as f:
        json.dump(_report_payload(phase, report, profile), f, indent=2, sort_keys=True)

    log.info("Report persisted", extra={"report": str(path), "archive": str(archive_path)})
    return archive_path


def load_report(path: Path) -> ThroughputReport:
    with path.open("r", encoding="utf-8") as f:
        return ThroughputReport.model_validate(json.load(f))


def load_archived_runs(output_dir: Path) -> List[Dict[str, Any]]:
    """Archived run payloads, oldest first."""
    runs_dir = output_dir / "runs"
    if not runs_dir.is_dir():
        return []
    payloads = []
    for archive in sorted(runs_dir.glob("run-*.json")):
        with archive.open("r", encoding="utf-8") as f:
            payloads.append(json.load(f))
    return payloads


def check_throughput(
    previous: ThroughputReport, current: ThroughputReport, ratio: float = 0.9
) -> None:
    """Raise ThroughputRegression if `current` falls below `ratio` of `previous`."""
    if current.throughput < previous.throughput * ratio:
        raise ThroughputRegression(previous.throughput, current.throughput, ratio)
    log.info(
        "Throughput within bounds",
        extra={
            "previous": _round_float(previous.throughput),
            "current": _round_float(current.throughput),
            "ratio": ratio,
        },
    )


def cleanup_infrastructure(settings: Settings) -> None:
    """Best-effort teardown of auxiliary infrastructure; never raises."""
    if not settings.cleanup_command:
        return
    log.info("Cleaning up infrastructure", extra={"command": settings.cleanup_command})
    try:
        completed = subprocess.run(
            shlex.split(settings.cleanup_command),
            capture_output=True,
            text=True,
            timeout=settings.shutdown_timeout_seconds,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        log.warning("Cleanup command failed to run", extra={"error": str(exc)})
        return
    if completed.returncode != 0:
        log.warning(
            "Cleanup command failed",
            extra={"returncode": completed.returncode, "stderr": completed.stderr.strip()},
        )


async def run_consistency_checks(
    client: LedgerService, store: SnapshotStore, ticks: int
) -> int:
    """
    Watch `ticks` validated ticks and save each, then re-fetch every slot up
    to the last one through all lookup paths.

    Slots before the first observed tick are saved, observed ones are compared
    against what the monitor just recorded. Returns the last observed number.
    """
    if ticks < 1:
        raise ValueError("ticks must be at least 1")
    async with await StreamMonitor.open(client, store) as monitor:
        tick = await monitor.next(SnapshotBehavior.SAVE)
        first = last = tick.slot_with_children.number
        for _ in range(ticks - 1):
            tick = await monitor.next(SnapshotBehavior.SAVE)
            last = tick.slot_with_children.number

    log.info("Stream checks passed, checking lookup paths", extra={"first": first, "last": last})
    fetcher = CrossPathFetcher(client, store)
    for number in range(first):
        await fetcher.fetch_slot(number, SnapshotBehavior.SAVE)
    for number in range(first, last + 1):
        await fetcher.fetch_slot(number, SnapshotBehavior.COMPARE)
    log.info("Lookup paths consistent", extra={"slots": last + 1})
    return last


def _transaction_source(settings: Settings, offset: int = 0) -> PresignedTransactionFile:
    if settings.transactions_path is None:
        raise ValueError("TRANSACTIONS_PATH must point at a file of signed transactions")
    return PresignedTransactionFile(settings.transactions_path, offset=offset)


async def _soak(
    settings: Settings,
    client: LedgerService,
    store: SnapshotStore,
    process: RollupProcess,
    *,
    label: str,
    num_previous_batches: int,
    save_snapshots: bool,
    offset: int,
) -> tuple[ThroughputReport, ProfileStats]:
    runner = SoakRunner(
        client,
        store,
        _transaction_source(settings, offset),
        process,
        num_previous_batches=num_previous_batches,
        target_batches=settings.num_soak_batches,
        num_workers=settings.num_workers,
        save_snapshots=save_snapshots,
        full_slot_save_interval=settings.full_slot_save_interval,
        end_of_run_tolerance=settings.end_of_run_tolerance_batches,
    )
    log.info(f"[SOAK START] {label}", extra={"previous_batches": num_previous_batches})
    with profile_block(label, pid=process.pid) as stats:
        report = await runner.run()
    log.info(
        f"[SOAK COMPLETE] {label}",
        extra={
            "txs": report.num_txs,
            "slots": report.num_slots,
            "submitted": runner.submitted_txs,
            "duration": _round_float(stats.duration_seconds),
        },
    )
    return report, stats


async def run_setup(settings: Settings) -> ThroughputReport:
    """First phase: consistency checks plus a recorded soak."""
    store = SnapshotStore(settings.snapshots_dir)
    process = launch_rollup(settings, settings.num_soak_batches + SETUP_EXTRA_HEIGHT)
    try:
        async with LedgerClient.from_settings(settings) as client:
            log.info("Rollup started, waiting for sequencer to be ready")
            await client.wait_until_ready(settings.readiness_timeout_seconds)
            await run_consistency_checks(client, store, settings.consistency_ticks)
            report, stats = await _soak(
                settings,
                client,
                store,
                process,
                label="setup-soak",
                num_previous_batches=settings.setup_previous_batches,
                save_snapshots=True,
                offset=settings.transactions_offset,
            )
    finally:
        await process.shutdown(settings.shutdown_timeout_seconds)
    persist_report(report, settings.report_path, "setup", stats)
    return report


async def run_acceptance(settings: Settings) -> ThroughputReport:
    """Second phase: restart on the same data, replay the snapshots, soak again."""
    previous = load_report(settings.report_path)
    store = SnapshotStore(settings.snapshots_dir)
    process = launch_rollup(settings, 2 * settings.num_soak_batches)
    try:
        async with LedgerClient.from_settings(settings) as client:
            await client.wait_until_ready(settings.readiness_timeout_seconds)
            validator = ResyncValidator(
                client,
                store,
                target_batches=settings.num_soak_batches,
                skew_slots=settings.resync_skew_slots,
            )
            latest_batch = await validator.replay()
            report, stats = await _soak(
                settings,
                client,
                store,
                process,
                label="acceptance-soak",
                num_previous_batches=latest_batch,
                save_snapshots=False,
                offset=settings.transactions_offset + previous.num_txs,
            )
    finally:
        await process.shutdown(settings.shutdown_timeout_seconds)
    check_throughput(previous, report, settings.throughput_regression_ratio)
    persist_report(report, settings.accepted_report_path, "acceptance", stats)
    return report


def run_phase(phase: str, settings: Settings) -> ThroughputReport:
    """Synchronous entry point for the CLI."""
    phases = {"setup": run_setup, "accept": run_acceptance}
    if phase not in phases:
        raise ValueError(f"Unknown phase '{phase}'. Available: {', '.join(phases)}")
    log.info(f"{'=' * 60}")
    log.info(f"[PHASE] {phase.upper()}", extra={"phase": phase})
    log.info(f"{'=' * 60}")
    return asyncio.run(phases[phase](settings))


__all__ = [
    "check_throughput",
    "cleanup_infrastructure",
    "load_archived_runs",
    "load_report",
    "persist_report",
    "run_acceptance",
    "run_consistency_checks",
    "run_phase",
    "run_setup",
]
