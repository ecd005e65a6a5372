"""
CrossPathFetcher: fetch one record through every lookup path and prove the
answers agree.

A slot is looked up by number and by hash, each with and without children.
Every batch inside the with-children slot is checked the same way before the
slot is accepted, and must equal the copy embedded in the slot.
"""

from __future__ import annotations

from typing import Optional

from ledger_oracle.checks.equivalence import (
    assert_children_match,
    assert_equivalent,
    assert_identical,
)
from ledger_oracle.checks.snapshots import SnapshotStore
from ledger_oracle.domain.models import IncludeChildren, LedgerBatch, SnapshotBehavior, Slot
from ledger_oracle.infrastructure.api_client import LedgerService
from ledger_oracle.utils.logging import get_logger

log = get_logger(__name__)


class CrossPathFetcher:
    def __init__(self, client: LedgerService, store: Optional[SnapshotStore] = None) -> None:
        self._client = client
        self._store = store

    async def fetch_batch(self, number: int) -> LedgerBatch:
        """Single lookup by number, without children."""
        return await self._client.get_batch(number, IncludeChildren.NONE)

    async def fetch_and_compare_batch(self, number: int) -> LedgerBatch:
        """
        Check a batch across number/hash and with/without children.

        Returns the with-children representation fetched by hash.
        """
        batch = await self.fetch_batch(number)
        by_hash = await self._client.get_batch(batch.hash, IncludeChildren.THIN)
        with_children = await self._client.get_batch(number, IncludeChildren.FULL)
        by_hash_with_children = await self._client.get_batch(batch.hash, IncludeChildren.FULL)

        prefix = f"Batch {number}"
        assert_identical(batch, by_hash, f"{prefix}: by number vs by hash")
        assert_identical(
            with_children,
            by_hash_with_children,
            f"{prefix}: by number vs by hash (with children)",
        )
        assert_equivalent(with_children, batch, f"{prefix}: with vs without children")
        return by_hash_with_children

    async def fetch_slot(
        self, number: int, behavior: SnapshotBehavior = SnapshotBehavior.SKIP
    ) -> Slot:
        """
        Check a slot across all four lookup paths, recursing into its batches.

        Returns the with-children representation fetched by number.
        """
        with_children = await self._client.get_slot(number, IncludeChildren.FULL)
        without_children = await self._client.get_slot(number, IncludeChildren.THIN)
        by_hash = await self._client.get_slot(with_children.hash, IncludeChildren.NONE)
        by_hash_with_children = await self._client.get_slot(
            with_children.hash, IncludeChildren.FULL
        )

        for embedded in with_children.batches:
            fetched = await self.fetch_and_compare_batch(embedded.number)
            assert_identical(
                embedded, fetched, f"Slot {number}: embedded batch {embedded.number}"
            )

        self._compare_variations(
            number, with_children, without_children, by_hash, by_hash_with_children
        )

        if behavior is not SnapshotBehavior.SKIP:
            if self._store is None:
                raise ValueError(f"Snapshot behavior {behavior.value!r} needs a SnapshotStore")
            self._store.apply(behavior, with_children, f"Fetched slot {number}")

        log.debug(
            "Slot consistent across lookup paths",
            extra={"slot": number, "batches": len(with_children.batches)},
        )
        return with_children

    @staticmethod
    def _compare_variations(
        number: int,
        with_children: Slot,
        without_children: Slot,
        by_hash: Slot,
        by_hash_with_children: Slot,
    ) -> None:
        prefix = f"Slot {number}"
        assert_equivalent(
            with_children,
            by_hash_with_children,
            f"{prefix}: by number vs by hash (with children)",
        )
        assert_children_match(
            by_hash_with_children.batches, with_children.batches, f"{prefix}: batches"
        )
        assert_equivalent(
            without_children, by_hash, f"{prefix}: by number vs by hash (without children)"
        )
        assert_equivalent(
            with_children, without_children, f"{prefix}: with vs without children (by number)"
        )


__all__ = ["CrossPathFetcher"]
