"""
Append-only store of slot snapshots used as regression baselines.

One pretty-printed JSON file per slot number, named with a fixed-width
zero-padded number. Snapshots hold the with-children projection exactly as the
service sent it. Rewriting a number with identical content is harmless;
rewriting it with different content is a caller bug that a later `compare`
exposes.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict

from ledger_oracle.domain.errors import MissingSnapshot, SnapshotMismatch
from ledger_oracle.domain.models import SnapshotBehavior, Slot
from ledger_oracle.utils.logging import get_logger

log = get_logger(__name__)

SNAPSHOT_FILENAME = "slot_{number:04d}_with_children.json"


class SnapshotStore:
    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def path_for(self, number: int) -> Path:
        return self.directory / SNAPSHOT_FILENAME.format(number=number)

    def exists(self, number: int) -> bool:
        return self.path_for(number).is_file()

    def save(self, slot: Slot) -> Path:
        path = self.path_for(slot.number)
        path.write_text(json.dumps(slot.to_json(), indent=2), encoding="utf-8")
        log.debug("Saved snapshot", extra={"slot": slot.number, "path": str(path)})
        return path

    def load(self, number: int) -> Dict[str, Any]:
        path = self.path_for(number)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise MissingSnapshot(number, path) from exc
        return json.loads(text)

    @staticmethod
    def compare(
        slot: Slot,
        baseline: Dict[str, Any],
        description: str,
        exclude_children: bool = False,
    ) -> None:
        """Raise SnapshotMismatch (with both sides attached) unless JSON is identical."""
        actual = slot.to_json(exclude_children=exclude_children)
        expected = dict(baseline)
        if exclude_children:
            expected.pop(Slot.children_field, None)
        if actual != expected:
            raise SnapshotMismatch(description, actual=actual, expected=expected)

    def validate(self, slot: Slot, description: str) -> None:
        """Compare `slot` against its stored baseline; MissingSnapshot if there is none."""
        self.compare(slot, self.load(slot.number), description)

    def apply(self, behavior: SnapshotBehavior, slot: Slot, description: str) -> None:
        if behavior is SnapshotBehavior.SAVE:
            self.save(slot)
        elif behavior is SnapshotBehavior.COMPARE:
            self.validate(slot, description)


__all__ = ["SNAPSHOT_FILENAME", "SnapshotStore"]
