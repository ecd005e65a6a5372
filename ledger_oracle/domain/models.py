"""
Domain models for the ledger oracle.

Typed views of the records served by the ledger API (slots, batches and
transactions) plus the small value types shared by the checks and the soak
harness. Wire records keep the JSON payload they were parsed from: the typed
fields are what the comparisons reason about, the payload is what the service
actually sent, and the equivalence checks look at both.
"""
from __future__ import annotations

import copy
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, Field, PrivateAttr


class FinalityStatus(str, Enum):
    PENDING = "pending"
    FINALIZED = "finalized"


class IncludeChildren(Enum):
    """
    Retrieval mode for point lookups.

    NONE omits the `children` query parameter entirely, THIN asks for `0`
    and FULL asks for `1` (nested batches and transactions inlined).
    """

    NONE = None
    THIN = "0"
    FULL = "1"


class SnapshotBehavior(str, Enum):
    """What to do with the with-children record once it has been validated."""

    SAVE = "save"
    COMPARE = "compare"
    SKIP = "skip"


class SequenceRange(BaseModel):
    """Half-open interval `[start, end)` of sequence numbers."""

    start: int = Field(..., ge=0)
    end: int = Field(..., ge=0)

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    @property
    def last(self) -> int:
        """Last number covered by the range, saturating at zero."""
        return max(self.end - 1, 0)

    @property
    def size(self) -> int:
        return max(self.end - self.start, 0)


class WireRecord(BaseModel):
    """
    Base for records that round-trip through the ledger API.

    Subclasses name their nested collection in `children_field`; that field is
    the only thing allowed to differ between the with-children and
    without-children representations of the same record.
    """

    children_field: ClassVar[str] = ""

    _payload: Optional[Dict[str, Any]] = PrivateAttr(default=None)

    model_config = {
        "frozen": True,
        "populate_by_name": True,
        "extra": "allow",
    }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]):
        record = cls.model_validate(payload)
        record._payload = copy.deepcopy(payload)
        record._attach_child_payloads(payload)
        return record

    def _attach_child_payloads(self, payload: Dict[str, Any]) -> None:
        if not self.children_field:
            return
        raw_children = payload.get(self.children_field) or []
        for child, raw in zip(getattr(self, self.children_field), raw_children):
            child._payload = copy.deepcopy(raw)
            child._attach_child_payloads(raw)

    @property
    def children(self) -> List["WireRecord"]:
        if not self.children_field:
            return []
        return list(getattr(self, self.children_field))

    @property
    def has_children(self) -> bool:
        return bool(self.children)

    def to_json(self, exclude_children: bool = False) -> Dict[str, Any]:
        """
        JSON projection of the record.

        Uses the payload received from the service when available so that the
        projection reflects the wire encoding rather than the typed model.
        """
        if self._payload is not None:
            data = copy.deepcopy(self._payload)
        else:
            data = self.model_dump(mode="json", by_alias=True)
        if exclude_children and self.children_field:
            data.pop(self.children_field, None)
        return data

    def typed_fields(self, *exclude: str) -> Dict[str, Any]:
        """Typed field values, children and any `exclude`d fields removed."""
        skip = set(exclude)
        if self.children_field:
            skip.add(self.children_field)
        return self.model_dump(mode="json", exclude=skip)


class LedgerTransaction(WireRecord):
    number: int
    id: str
    events: List[Dict[str, Any]] = Field(default_factory=list)
    receipt: Optional[Dict[str, Any]] = None


class LedgerBatch(WireRecord):
    children_field: ClassVar[str] = "txs"

    number: int
    hash: str
    tx_range: SequenceRange
    txs: List[LedgerTransaction] = Field(default_factory=list)


class Slot(WireRecord):
    children_field: ClassVar[str] = "batches"

    number: int
    hash: str
    batch_range: SequenceRange
    finality_status: FinalityStatus
    state_root: str
    timestamp: int
    type_: str = Field("slot", alias="type")
    batches: List[LedgerBatch] = Field(default_factory=list)


class ThroughputReport(BaseModel):
    """Transactions and slots observed over one bounded soak window."""

    num_txs: int = Field(0, ge=0)
    num_slots: int = Field(0, ge=0)

    model_config = {"frozen": True}

    @property
    def throughput(self) -> float:
        """Average transactions per slot."""
        return self.num_txs / self.num_slots if self.num_slots else 0.0


__all__ = [
    "FinalityStatus",
    "IncludeChildren",
    "LedgerBatch",
    "LedgerTransaction",
    "SequenceRange",
    "SnapshotBehavior",
    "Slot",
    "ThroughputReport",
    "WireRecord",
]
