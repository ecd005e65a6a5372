"""
Both acceptance phases against a simulated rollup.

The first phase records snapshots for every slot while a soak drives the
ledger forward. The second restarts on the same ledger, replays the live
stream against those snapshots and soaks again; its throughput must stay
within the accepted ratio of the first.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from ledger_oracle.checks.cross_path import CrossPathFetcher
from ledger_oracle.checks.snapshots import SnapshotStore
from ledger_oracle.domain.errors import SnapshotMismatch
from ledger_oracle.domain.models import SnapshotBehavior
from ledger_oracle.orchestrator import check_throughput, load_report, persist_report
from ledger_oracle.soak.resync import ResyncValidator
from ledger_oracle.soak.runner import SoakRunner
from tests.fakes import FakeLedger, FakeProcess, ListSource, SimulatedRollup

NUM_SOAK_BATCHES = 10
TXS_PER_SLOT = 3


async def _setup_phase(ledger: FakeLedger, store: SnapshotStore, report_path: Path) -> None:
    process = FakeProcess()
    rollup = SimulatedRollup(
        ledger, process, txs_per_slot=TXS_PER_SLOT, slots_to_produce=NUM_SOAK_BATCHES
    )
    fetcher = CrossPathFetcher(rollup, store)
    for number in range(len(ledger.slots)):
        await fetcher.fetch_slot(number, SnapshotBehavior.SAVE)

    runner = SoakRunner(
        rollup,
        store,
        ListSource(NUM_SOAK_BATCHES * TXS_PER_SLOT, prefix="setup"),
        process,
        num_previous_batches=3,
        target_batches=NUM_SOAK_BATCHES,
        num_workers=3,
        full_slot_save_interval=5,
        end_of_run_tolerance=2,
        stop_signals=(),
    )
    report = await runner.run()
    persist_report(report, report_path, "setup")


@pytest.mark.asyncio
async def test_setup_then_acceptance(tmp_path: Path, ledger: FakeLedger, store: SnapshotStore) -> None:
    report_path = tmp_path / "throughput_report.json"
    await _setup_phase(ledger, store, report_path)

    previous = load_report(report_path)
    assert (previous.num_txs, previous.num_slots) == (30, 10)
    assert all(store.exists(n) for n in range(15))

    # the restarted rollup produces one empty slot before accepting transactions
    ledger.add_slot([])
    process = FakeProcess()
    rollup = SimulatedRollup(
        ledger,
        process,
        txs_per_slot=TXS_PER_SLOT,
        slots_to_produce=NUM_SOAK_BATCHES,
        emit_head_on_subscribe=True,
    )

    validator = ResyncValidator(rollup, store, target_batches=NUM_SOAK_BATCHES)
    latest_batch = await validator.replay()

    assert latest_batch == 13
    assert validator.caught_up_at == 15
    assert validator.replayed == 15

    runner = SoakRunner(
        rollup,
        store,
        ListSource(NUM_SOAK_BATCHES * TXS_PER_SLOT, prefix="accept"),
        process,
        num_previous_batches=latest_batch,
        target_batches=NUM_SOAK_BATCHES,
        num_workers=3,
        save_snapshots=False,
        end_of_run_tolerance=2,
        stop_signals=(),
    )
    report = await runner.run()

    assert runner.num_previous_txs == 38
    assert (report.num_txs, report.num_slots) == (30, 10)
    assert not store.exists(16)
    check_throughput(previous, report)


@pytest.mark.asyncio
async def test_acceptance_detects_rewritten_history(
    tmp_path: Path, ledger: FakeLedger, store: SnapshotStore
) -> None:
    await _setup_phase(ledger, store, tmp_path / "throughput_report.json")

    ledger.slots[7]["state_root"] = "0xrewritten"
    ledger.add_slot([])
    rollup = SimulatedRollup(ledger, FakeProcess(), emit_head_on_subscribe=True)

    with pytest.raises(SnapshotMismatch) as excinfo:
        await ResyncValidator(rollup, store, target_batches=NUM_SOAK_BATCHES).replay()
    assert excinfo.value.description == "slot_7"
