"""
StreamMonitor: four slot subscriptions joined into one validated tick.

The monitor holds the live and finalized slot streams, each with and without
children. `next()` waits until every stream has produced its next slot (the
four reads run concurrently, in no particular order) and then validates the
combined tick:

1. the with-children stream continues the expected numbering,
2. live slot and live slot-with-children agree apart from children,
3. finalized slot and finalized slot-with-children agree apart from children,
4. a finalized slot carrying batches matches the with-children slot held from
   the previous tick, children included: finalization must not rewrite history.

Any violation raises and the tick is not accepted.
"""

from __future__ import annotations

import asyncio
from typing import Any, NamedTuple, Optional

from ledger_oracle.checks.equivalence import (
    assert_children_match,
    assert_equivalent,
    assert_typed_match,
)
from ledger_oracle.checks.snapshots import SnapshotStore
from ledger_oracle.domain.errors import InconsistentView, SequenceViolation, SubscriptionError
from ledger_oracle.domain.models import FinalityStatus, SnapshotBehavior, Slot
from ledger_oracle.infrastructure.api_client import LedgerService, SlotStream
from ledger_oracle.utils.logging import get_logger

log = get_logger(__name__)


class SlotTick(NamedTuple):
    slot: Slot
    slot_with_children: Slot
    finalized_slot: Slot
    finalized_slot_with_children: Slot


class MonitorFeeds(NamedTuple):
    slots: SlotStream
    slots_with_children: SlotStream
    finalized_slots: SlotStream
    finalized_slots_with_children: SlotStream


async def _next_from(name: str, feed: SlotStream) -> Slot:
    try:
        return await anext(feed)
    except StopAsyncIteration:
        raise SubscriptionError(f"{name} subscription closed") from None


class StreamMonitor:
    def __init__(self, feeds: MonitorFeeds, store: Optional[SnapshotStore] = None) -> None:
        self._feeds = feeds
        self._store = store
        self.prev_slot_with_children: Optional[Slot] = None
        self.expected_next: Optional[int] = None
        self.ticks = 0

    @classmethod
    async def open(
        cls, client: LedgerService, store: Optional[SnapshotStore] = None
    ) -> "StreamMonitor":
        """Establish all four subscriptions; SubscriptionError if any of them fails."""
        opened: list[SlotStream] = []
        try:
            for finalized_only, with_children in (
                (False, False),
                (False, True),
                (True, False),
                (True, True),
            ):
                opened.append(
                    await client.subscribe_slots(
                        with_children=with_children, finalized_only=finalized_only
                    )
                )
        except BaseException:
            await asyncio.gather(*(feed.aclose() for feed in opened), return_exceptions=True)
            raise
        return cls(MonitorFeeds(*opened), store)

    async def aclose(self) -> None:
        await asyncio.gather(*(feed.aclose() for feed in self._feeds), return_exceptions=True)

    async def __aenter__(self) -> "StreamMonitor":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def next(self, behavior: SnapshotBehavior = SnapshotBehavior.SKIP) -> SlotTick:
        tick = SlotTick(
            *await asyncio.gather(
                *(_next_from(name, feed) for name, feed in self._feeds._asdict().items())
            )
        )
        self._check_sequence(tick.slot_with_children)

        assert_equivalent(tick.slot, tick.slot_with_children, "Next slot")
        assert_equivalent(
            tick.finalized_slot, tick.finalized_slot_with_children, "Finalized slot"
        )
        self._check_finalization(tick)

        if behavior is not SnapshotBehavior.SKIP:
            if self._store is None:
                raise ValueError(f"Snapshot behavior {behavior.value!r} needs a SnapshotStore")
            self._store.apply(behavior, tick.slot_with_children, "Next slot with children")

        self.prev_slot_with_children = tick.slot_with_children
        self.expected_next = tick.slot_with_children.number + 1
        self.ticks += 1
        log.debug(
            "Validated tick",
            extra={
                "slot": tick.slot_with_children.number,
                "finalized_slot": tick.finalized_slot.number,
            },
        )
        return tick

    def _check_sequence(self, slot: Slot) -> None:
        if self.expected_next is not None and slot.number != self.expected_next:
            raise SequenceViolation(self.expected_next, slot.number)

    def _check_finalization(self, tick: SlotTick) -> None:
        finalized = tick.finalized_slot
        previous = self.prev_slot_with_children
        if finalized.batch_range.is_empty or previous is None:
            return
        if (
            previous.finality_status is FinalityStatus.FINALIZED
            and finalized.finality_status is FinalityStatus.PENDING
        ):
            raise InconsistentView(
                "Finalized slot regressed to pending",
                finalized.typed_fields(),
                previous.typed_fields(),
            )
        assert_typed_match(
            finalized,
            previous,
            "Finalized slot should match previous slot with children",
            "finality_status",
        )
        assert_children_match(
            tick.finalized_slot_with_children.batches,
            previous.batches,
            "Previous slot with children should match newly finalized slot with children",
        )


__all__ = ["MonitorFeeds", "SlotTick", "StreamMonitor"]
