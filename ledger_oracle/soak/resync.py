"""
ResyncValidator: after a restart on the same persisted data, replay the live
slot stream against the snapshots recorded by the first phase.
"""

from __future__ import annotations

from typing import Optional

from ledger_oracle.checks.snapshots import SnapshotStore
from ledger_oracle.domain.errors import MissingSnapshot, SubscriptionError
from ledger_oracle.domain.models import IncludeChildren, Slot
from ledger_oracle.infrastructure.api_client import LedgerService
from ledger_oracle.utils.logging import get_logger

log = get_logger(__name__)


class ResyncValidator:
    """
    Walks slot numbers from 0 upward, driven by the live stream.

    Every slot up to the one the stream just delivered must match its
    snapshot exactly. A missing snapshot is tolerated for the first
    `skew_slots` numbers. Past that, it is fatal while the latest replayed
    batch is still below `target_batches`, and otherwise marks the point where
    replay has caught up with history that was never recorded.
    """

    def __init__(
        self,
        client: LedgerService,
        store: SnapshotStore,
        *,
        target_batches: int,
        skew_slots: int = 10,
    ) -> None:
        self._client = client
        self._store = store
        self._target_batches = target_batches
        self._skew_slots = skew_slots
        self.latest_batch_number = 0
        self.replayed = 0
        self.caught_up_at: Optional[int] = None

    async def replay(self) -> int:
        """Run the replay; returns the latest batch number found in the snapshots."""
        checked = 0
        subscription = await self._client.subscribe_slots(
            with_children=False, finalized_only=False
        )
        try:
            async for slot in subscription:
                for number in range(checked, slot.number + 1):
                    if not await self._check(number):
                        log.info(
                            f"Missing snapshot found at slot {number}. Finished resyncing.",
                            extra={"replayed": self.replayed},
                        )
                        self.caught_up_at = number
                        return self._finish()
                checked = slot.number + 1
        finally:
            await subscription.aclose()
        raise SubscriptionError("Slot subscription closed before resync caught up")

    async def _check(self, number: int) -> bool:
        """Compare slot `number` against its snapshot. False once replay has caught up."""
        try:
            snapshot = self._store.load(number)
        except MissingSnapshot:
            if number < self._skew_slots:
                log.debug("Tolerating missing snapshot during startup", extra={"slot": number})
                return True
            if self.latest_batch_number < self._target_batches:
                log.error(
                    f"Missing snapshot for slot {number}",
                    extra={"latest_batch": self.latest_batch_number},
                )
                raise
            return False

        recorded = Slot.from_payload(snapshot)
        self.latest_batch_number = recorded.batch_range.last
        # an empty child list has nothing to compare, whichever way it was encoded
        children = IncludeChildren.FULL if snapshot.get(Slot.children_field) else IncludeChildren.NONE
        slot = await self._client.get_slot(number, children)
        self._store.compare(
            slot, snapshot, f"slot_{number}", exclude_children=children is IncludeChildren.NONE
        )
        self.replayed += 1
        return True

    def _finish(self) -> int:
        log.info(
            "Rollup resync complete. All slots match their snapshots. "
            f"Found {self.latest_batch_number} batches.",
            extra={"replayed": self.replayed},
        )
        return self.latest_batch_number


__all__ = ["ResyncValidator"]
