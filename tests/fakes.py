"""
In-memory stand-ins for the ledger service and the rollup process.

FakeLedger builds a coherent history (slot -> batches -> txs, with contiguous
numbering). FakeLedgerService serves point lookups from it and hands out
scripted subscriptions. SimulatedRollup goes further: every `txs_per_slot`
submitted transactions it seals a new slot and pushes it to live subscribers,
and after `slots_to_produce` slots it closes its streams and exits.
"""

from __future__ import annotations

import asyncio
import copy
import signal
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from ledger_oracle.domain.errors import SubscriptionError, TransientFetchError
from ledger_oracle.domain.models import IncludeChildren, LedgerBatch, Slot

RecordId = Union[int, str]
GENESIS_TIMESTAMP = 1_700_000_000


def tx_payload(number: int) -> Dict[str, Any]:
    return {
        "number": number,
        "id": f"0xtx{number:06d}",
        "events": [{"key": "Bank/TokenTransferred", "value": {"amount": number}}],
        "receipt": {"result": "successful", "data": {"gas_used": [21, 7]}},
    }


def _strip(payload: Dict[str, Any], field: str) -> Dict[str, Any]:
    data = copy.deepcopy(payload)
    data.pop(field, None)
    return data


def slot_view(payload: Dict[str, Any], children: IncludeChildren) -> Dict[str, Any]:
    if children is IncludeChildren.FULL:
        return copy.deepcopy(payload)
    return _strip(payload, "batches")


def batch_view(payload: Dict[str, Any], children: IncludeChildren) -> Dict[str, Any]:
    if children is IncludeChildren.FULL:
        return copy.deepcopy(payload)
    return _strip(payload, "txs")


def make_slot(payload: Dict[str, Any], children: IncludeChildren = IncludeChildren.FULL) -> Slot:
    return Slot.from_payload(slot_view(payload, children))


def with_status(payload: Dict[str, Any], status: str) -> Dict[str, Any]:
    data = copy.deepcopy(payload)
    data["finality_status"] = status
    return data


class FakeLedger:
    def __init__(self) -> None:
        self.slots: List[Dict[str, Any]] = []
        self.batches: List[Dict[str, Any]] = []
        self.next_tx = 0

    @property
    def head(self) -> Dict[str, Any]:
        return self.slots[-1]

    def add_slot(self, txs_per_batch: Sequence[int] = (), status: str = "finalized") -> Dict[str, Any]:
        number = len(self.slots)
        first_batch = len(self.batches)
        batches = []
        for count in txs_per_batch:
            batch_number = len(self.batches)
            batch = {
                "number": batch_number,
                "hash": f"0xbatch{batch_number:06d}",
                "tx_range": {"start": self.next_tx, "end": self.next_tx + count},
                "txs": [tx_payload(self.next_tx + i) for i in range(count)],
            }
            self.next_tx += count
            self.batches.append(batch)
            batches.append(batch)
        slot = {
            "number": number,
            "hash": f"0xslot{number:06d}",
            "batch_range": {"start": first_batch, "end": len(self.batches)},
            "finality_status": status,
            "state_root": f"0xroot{number:06d}",
            "timestamp": GENESIS_TIMESTAMP + number,
            "type": "slot",
            "batches": batches,
        }
        self.slots.append(slot)
        return slot

    def add_slots(self, count: int, txs_per_batch: Sequence[int] = (1,)) -> List[Dict[str, Any]]:
        return [self.add_slot(txs_per_batch) for _ in range(count)]


class ScriptedSubscription:
    """
    Yields a fixed list of items. Dict items are parsed as slots, exception
    instances are raised. With `hold_open`, iteration blocks after the script
    until the subscription is closed.
    """

    def __init__(self, items: Iterable[Any] = (), hold_open: bool = False) -> None:
        self._items = list(items)
        self._hold_open = hold_open
        self._closed_event = asyncio.Event()
        self.closed = False
        self.delivered = 0

    def __aiter__(self) -> "ScriptedSubscription":
        return self

    async def __anext__(self) -> Slot:
        if self._items:
            item = self._items.pop(0)
            await asyncio.sleep(0)
            if isinstance(item, BaseException):
                raise item
            self.delivered += 1
            return Slot.from_payload(item) if isinstance(item, dict) else item
        if self._hold_open and not self.closed:
            await self._closed_event.wait()
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self.closed = True
        self._closed_event.set()


class FakeLedgerService:
    def __init__(self, ledger: Optional[FakeLedger] = None) -> None:
        self.ledger = ledger or FakeLedger()
        self.streams: Dict[Tuple[bool, bool], List[ScriptedSubscription]] = defaultdict(list)
        self.slot_overrides: Dict[Tuple[RecordId, IncludeChildren], Dict[str, Any]] = {}
        self.batch_overrides: Dict[Tuple[RecordId, IncludeChildren], Dict[str, Any]] = {}
        self.failing_slots: Set[Tuple[RecordId, IncludeChildren]] = set()
        self.failing_batches: Set[RecordId] = set()
        self.failing_subscriptions: Set[Tuple[bool, bool]] = set()
        self.opened: List[Any] = []
        self.calls: List[Tuple[str, RecordId, IncludeChildren]] = []
        self.submitted: List[str] = []

    def script(
        self,
        items: Iterable[Any],
        *,
        with_children: bool = False,
        finalized_only: bool = False,
        hold_open: bool = False,
    ) -> ScriptedSubscription:
        subscription = ScriptedSubscription(items, hold_open=hold_open)
        self.streams[(finalized_only, with_children)].append(subscription)
        return subscription

    async def subscribe_slots(
        self, with_children: bool = False, finalized_only: bool = False
    ) -> Any:
        key = (finalized_only, with_children)
        if key in self.failing_subscriptions or not self.streams[key]:
            raise SubscriptionError(f"cannot subscribe (finalized={finalized_only}, children={with_children})")
        subscription = self.streams[key].pop(0)
        self.opened.append(subscription)
        return subscription

    @staticmethod
    def _find(records: List[Dict[str, Any]], record_id: RecordId) -> Dict[str, Any]:
        for record in records:
            if record["number"] == record_id or record["hash"] == record_id:
                return record
        raise TransientFetchError(f"{record_id} not found", status_code=404)

    async def get_slot(
        self, slot_id: RecordId, children: IncludeChildren = IncludeChildren.NONE
    ) -> Slot:
        self.calls.append(("slot", slot_id, children))
        if (slot_id, children) in self.failing_slots:
            raise TransientFetchError(f"slot {slot_id} unavailable", status_code=503)
        override = self.slot_overrides.get((slot_id, children))
        if override is not None:
            return Slot.from_payload(copy.deepcopy(override))
        return Slot.from_payload(slot_view(self._find(self.ledger.slots, slot_id), children))

    async def get_batch(
        self, batch_id: RecordId, children: IncludeChildren = IncludeChildren.NONE
    ) -> LedgerBatch:
        self.calls.append(("batch", batch_id, children))
        if batch_id in self.failing_batches:
            raise TransientFetchError(f"batch {batch_id} unavailable", status_code=503)
        override = self.batch_overrides.get((batch_id, children))
        if override is not None:
            return LedgerBatch.from_payload(copy.deepcopy(override))
        return LedgerBatch.from_payload(batch_view(self._find(self.ledger.batches, batch_id), children))

    async def submit_transaction(self, body: str) -> Dict[str, Any]:
        await asyncio.sleep(0)
        self.submitted.append(body)
        return {"id": f"0xsubmitted{len(self.submitted):06d}", "status": "submitted"}


class FakeProcess:
    """Rollup process stand-in; exits when told to, or on interrupt."""

    pid: Optional[int] = None

    def __init__(self, exit_on_interrupt: bool = True) -> None:
        self._exited = asyncio.Event()
        self._exit_on_interrupt = exit_on_interrupt
        self.returncode: Optional[int] = None
        self.interrupts = 0

    def exit(self, returncode: int) -> None:
        if self.returncode is None:
            self.returncode = returncode
            self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        assert self.returncode is not None
        return self.returncode

    def interrupt(self) -> bool:
        self.interrupts += 1
        if self.returncode is not None:
            return False
        if self._exit_on_interrupt:
            self.exit(-signal.SIGINT)
        return True


_END = object()


class QueueSubscription:
    def __init__(self, on_close: Callable[["QueueSubscription"], None], on_end: Callable[[], None]) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._on_close = on_close
        self._on_end = on_end
        self.closed = False

    def push(self, item: Any) -> None:
        self._queue.put_nowait(item)

    def __aiter__(self) -> "QueueSubscription":
        return self

    async def __anext__(self) -> Slot:
        item = await self._queue.get()
        if item is _END:
            self._on_end()
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return Slot.from_payload(item)

    async def aclose(self) -> None:
        if not self.closed:
            self.closed = True
            self._on_close(self)


class SimulatedRollup(FakeLedgerService):
    """
    A ledger that grows as transactions arrive.

    Live subscribers receive the without-children view of each sealed slot.
    Once `slots_to_produce` slots are sealed, every subscriber sees the stream
    end and the process exits cleanly as soon as one of them notices.
    """

    def __init__(
        self,
        ledger: FakeLedger,
        process: FakeProcess,
        *,
        txs_per_slot: int = 3,
        slots_to_produce: int = 10,
        emit_head_on_subscribe: bool = False,
    ) -> None:
        super().__init__(ledger)
        self.process = process
        self.txs_per_slot = txs_per_slot
        self.slots_to_produce = slots_to_produce
        self.emit_head_on_subscribe = emit_head_on_subscribe
        self.produced = 0
        self._pending: List[str] = []
        self._listeners: List[QueueSubscription] = []

    async def subscribe_slots(
        self, with_children: bool = False, finalized_only: bool = False
    ) -> QueueSubscription:
        subscription = QueueSubscription(self._listeners.remove, lambda: self.process.exit(0))
        if self.emit_head_on_subscribe and self.ledger.slots:
            subscription.push(slot_view(self.ledger.head, IncludeChildren.NONE))
        self._listeners.append(subscription)
        self.opened.append(subscription)
        return subscription

    async def submit_transaction(self, body: str) -> Dict[str, Any]:
        await asyncio.sleep(0)
        if self.produced >= self.slots_to_produce:
            raise TransientFetchError("rollup stopped accepting transactions", status_code=503)
        self.submitted.append(body)
        self._pending.append(body)
        if len(self._pending) >= self.txs_per_slot:
            self._pending.clear()
            slot = self.ledger.add_slot([self.txs_per_slot])
            self.produced += 1
            for listener in list(self._listeners):
                listener.push(slot_view(slot, IncludeChildren.NONE))
            if self.produced == self.slots_to_produce:
                for listener in list(self._listeners):
                    listener.push(_END)
        return {"id": f"0xsubmitted{len(self.submitted):06d}", "status": "submitted"}


class ListSource:
    """Transaction source over an in-memory list, recording who took what."""

    def __init__(self, count: int, prefix: str = "tx") -> None:
        self._bodies = [f"{prefix}-{i:04d}" for i in range(count)]
        self.taken_by: Dict[int, int] = defaultdict(int)

    async def next_transaction(self, worker_id: int) -> Optional[str]:
        if not self._bodies:
            return None
        self.taken_by[worker_id] += 1
        return self._bodies.pop(0)


class EndlessSource:
    async def next_transaction(self, worker_id: int) -> Optional[str]:
        await asyncio.sleep(0)
        return f"tx-{worker_id}"
