from __future__ import annotations

import json

import pytest

from ledger_oracle.checks.snapshots import SnapshotStore
from ledger_oracle.domain.errors import MissingSnapshot, SnapshotMismatch
from ledger_oracle.domain.models import IncludeChildren, SnapshotBehavior, Slot
from tests.fakes import FakeLedger, make_slot, slot_view


def test_save_uses_zero_padded_name_and_pretty_json(store: SnapshotStore, ledger: FakeLedger) -> None:
    slot = make_slot(ledger.slots[3])
    path = store.save(slot)

    assert path.name == "slot_0003_with_children.json"
    text = path.read_text(encoding="utf-8")
    assert text.startswith("{\n  ")
    assert json.loads(text) == slot.to_json()


def test_load_reproduces_what_was_saved(store: SnapshotStore, ledger: FakeLedger) -> None:
    slot = make_slot(ledger.slots[2])
    store.save(slot)
    assert store.load(2) == slot.to_json()
    assert store.exists(2)
    assert not store.exists(3)


def test_load_missing_snapshot(store: SnapshotStore) -> None:
    with pytest.raises(MissingSnapshot) as excinfo:
        store.load(42)
    assert excinfo.value.number == 42


def test_saving_identical_content_twice_is_silent(store: SnapshotStore, ledger: FakeLedger) -> None:
    slot = make_slot(ledger.slots[1])
    store.save(slot)
    store.save(slot)
    store.validate(slot, "slot 1")


def test_differing_rewrite_is_detected_by_compare(store: SnapshotStore, ledger: FakeLedger) -> None:
    original = make_slot(ledger.slots[1])
    store.save(original)

    changed = slot_view(ledger.slots[1], IncludeChildren.FULL)
    changed["state_root"] = "0xrewritten"
    store.save(Slot.from_payload(changed))

    with pytest.raises(SnapshotMismatch) as excinfo:
        store.validate(original, "slot 1")
    assert excinfo.value.expected["state_root"] == "0xrewritten"
    assert excinfo.value.actual["state_root"] == ledger.slots[1]["state_root"]
    assert "0xrewritten" in excinfo.value.report()


def test_compare_can_exclude_children(store: SnapshotStore, ledger: FakeLedger) -> None:
    baseline = make_slot(ledger.slots[2]).to_json()
    bare = make_slot(ledger.slots[2], IncludeChildren.NONE)

    with pytest.raises(SnapshotMismatch):
        SnapshotStore.compare(bare, baseline, "slot 2")
    SnapshotStore.compare(bare, baseline, "slot 2", exclude_children=True)


def test_apply_dispatches_on_behavior(store: SnapshotStore, ledger: FakeLedger) -> None:
    slot = make_slot(ledger.slots[4])

    store.apply(SnapshotBehavior.SKIP, slot, "skip")
    assert not store.exists(4)

    with pytest.raises(MissingSnapshot):
        store.apply(SnapshotBehavior.COMPARE, slot, "compare before save")

    store.apply(SnapshotBehavior.SAVE, slot, "save")
    store.apply(SnapshotBehavior.COMPARE, slot, "compare after save")
