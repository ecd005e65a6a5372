"""
SoakRunner: sustained synthetic load against a running service, with
throughput accounting taken from the live slot stream.

Lifecycle: STARTING -> RUNNING -> DRAINING -> STOPPED.

While RUNNING, a single selection point races the next slot from the
subscription, one waiter per stop signal (SIGINT, SIGTERM, SIGQUIT by default)
and the exit of the service process. Whichever fires first starts DRAINING:
the service gets a best-effort SIGINT, the workers see the stop flag and the
runner waits for all of them before reporting.
"""

from __future__ import annotations

import asyncio
import signal
from enum import Enum
from typing import Dict, Iterable, Optional

from ledger_oracle.checks.snapshots import SnapshotStore
from ledger_oracle.domain.errors import ProcessFailure, SubscriptionError, TransientFetchError
from ledger_oracle.domain.models import IncludeChildren, Slot, ThroughputReport
from ledger_oracle.infrastructure.api_client import LedgerService, SlotStream
from ledger_oracle.infrastructure.process import SupervisedProcess, is_clean_exit
from ledger_oracle.soak.workers import TransactionSource, WorkerPool
from ledger_oracle.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGQUIT)


class SoakState(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


async def _next_slot(subscription: SlotStream) -> Optional[Slot]:
    try:
        return await anext(subscription)
    except StopAsyncIteration:
        return None


class SoakRunner:
    """
    One soak phase.

    Parameters
    ----------
    num_previous_batches : int
        Batches that existed before this phase; throughput only counts what
        comes after them.
    target_batches : int
        Batches the service is expected to produce before it stops on its own.
    end_of_run_tolerance : int
        Within this many batches of `target_batches`, a failed last-batch
        lookup is read as the service having shut down and ends the run.
    """

    def __init__(
        self,
        client: LedgerService,
        store: SnapshotStore,
        source: TransactionSource,
        process: Optional[SupervisedProcess],
        *,
        num_previous_batches: int,
        target_batches: int,
        num_workers: int = 20,
        save_snapshots: bool = True,
        full_slot_save_interval: int = 25,
        end_of_run_tolerance: int = 15,
        stop_signals: Iterable[int] = DEFAULT_STOP_SIGNALS,
    ) -> None:
        self._client = client
        self._store = store
        self._source = source
        self._process = process
        self._num_previous_batches = num_previous_batches
        self._target_batches = target_batches
        self._num_workers = num_workers
        self._save_snapshots = save_snapshots
        self._full_slot_save_interval = full_slot_save_interval
        self._end_of_run_tolerance = end_of_run_tolerance
        self._stop_signals = tuple(stop_signals)
        self._installed_signals: list[int] = []

        self.state = SoakState.STARTING
        self.stop_reason: Optional[str] = None
        self.num_previous_txs = 0
        self.num_soak_txs = 0
        self.num_soak_slots = 0
        self.num_soak_batches = 0
        self.submitted_txs = 0
        self._exit_observed = False
        self._process_failure: Optional[ProcessFailure] = None

    @property
    def report(self) -> ThroughputReport:
        return ThroughputReport(num_txs=self.num_soak_txs, num_slots=self.num_soak_slots)

    @property
    def near_end_of_run(self) -> bool:
        return self.num_soak_batches + self._end_of_run_tolerance > self._target_batches

    async def run(self) -> ThroughputReport:
        exit_task: Optional[asyncio.Task[int]] = None
        if self._process is not None:
            exit_task = asyncio.create_task(self._process.wait(), name="rollup-exit")
        subscription: Optional[SlotStream] = None
        pool: Optional[WorkerPool] = None
        signal_waiters: Dict[asyncio.Future, str] = {}
        try:
            subscription = await self._client.subscribe_slots(
                with_children=False, finalized_only=False
            )
            pool = WorkerPool(
                self._client, self._source, self._num_workers, salt=self._num_previous_batches
            )
            pool.start()
            signal_waiters = self._install_signal_handlers()
            self.num_previous_txs = await self._previous_tx_count()
            self.state = SoakState.RUNNING
            log.info("Workers started. Listening for slots")
            await self._consume(subscription, pool, exit_task, signal_waiters)
        finally:
            self.state = SoakState.DRAINING
            await self._drain(pool, subscription, signal_waiters, exit_task)
        self._check_pending_exit(exit_task)
        self.state = SoakState.STOPPED

        report = self.report
        log.info(
            f"Rollup process finished. Processed {report.num_txs} txs in {report.num_slots} slots. "
            f"Average throughput: {report.throughput:.2f} txs/slot",
            extra={"stop_reason": self.stop_reason, "submitted": self.submitted_txs},
        )
        if self._process_failure is not None:
            raise self._process_failure
        return report

    # -------------------------------------------------------------------------
    # Starting
    # -------------------------------------------------------------------------

    async def _previous_tx_count(self) -> int:
        try:
            batch = await self._client.get_batch(self._num_previous_batches, IncludeChildren.NONE)
        except TransientFetchError:
            log.error(
                "Failed to fetch previous batch",
                extra={"batch": self._num_previous_batches},
            )
            raise
        return batch.tx_range.end

    def _install_signal_handlers(self) -> Dict[asyncio.Future, str]:
        loop = asyncio.get_running_loop()
        waiters: Dict[asyncio.Future, str] = {}
        for sig in self._stop_signals:
            name = signal.Signals(sig).name
            future = loop.create_future()
            try:
                loop.add_signal_handler(sig, self._on_signal, future, sig)
            except (NotImplementedError, RuntimeError) as exc:
                log.warning(f"Cannot listen for {name}", extra={"error": str(exc)})
                continue
            self._installed_signals.append(sig)
            waiters[future] = name
        return waiters

    @staticmethod
    def _on_signal(future: asyncio.Future, sig: int) -> None:
        if not future.done():
            future.set_result(sig)

    # -------------------------------------------------------------------------
    # Running
    # -------------------------------------------------------------------------

    async def _consume(
        self,
        subscription: SlotStream,
        pool: WorkerPool,
        exit_task: Optional[asyncio.Task[int]],
        signal_waiters: Dict[asyncio.Future, str],
    ) -> None:
        next_slot: Optional[asyncio.Task] = asyncio.create_task(_next_slot(subscription))
        workers = set(pool.tasks)
        waiters = {next_slot, *signal_waiters, *workers}
        if exit_task is not None:
            waiters.add(exit_task)
        try:
            while True:
                done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

                for waiter in done:
                    if waiter in signal_waiters:
                        name = signal_waiters[waiter]
                        log.info(f"Received {name}, shutting down rollup")
                        self.stop_reason = name
                        return

                for worker in done & workers:
                    workers.discard(worker)
                    waiters.discard(worker)
                    if not worker.cancelled() and worker.exception() is not None:
                        log.error(f"Worker {worker.get_name()} failed, shutting down rollup")
                        self.stop_reason = "worker failed"
                        raise worker.exception()

                if next_slot is not None and next_slot in done:
                    waiters.discard(next_slot)
                    try:
                        slot = next_slot.result()
                    except SubscriptionError as exc:
                        if not self.near_end_of_run:
                            raise
                        log.warning(
                            "Slot subscription dropped very near the end of the test. "
                            "Assuming the rollup shut down.",
                            extra={"error": str(exc)},
                        )
                        self.stop_reason = "subscription dropped"
                        return
                    next_slot = None
                    if slot is None:
                        if exit_task is None:
                            self.stop_reason = "subscription closed"
                            return
                        log.info("Slot subscription closed, waiting for rollup to exit")
                        continue
                    if not await self._account(slot):
                        self.stop_reason = "end of run"
                        return
                    next_slot = asyncio.create_task(_next_slot(subscription))
                    waiters.add(next_slot)
                    continue

                if exit_task is not None and exit_task in done:
                    self._on_process_exit(exit_task)
                    return
        finally:
            if next_slot is not None and not next_slot.done():
                next_slot.cancel()
                await asyncio.wait({next_slot})

    async def _account(self, slot: Slot) -> bool:
        """Update the counters for one slot. False ends the run."""
        if not slot.batch_range.is_empty:
            batch_number = slot.batch_range.end - 1
            try:
                batch = await self._client.get_batch(batch_number, IncludeChildren.NONE)
            except TransientFetchError as exc:
                if self.near_end_of_run:
                    log.warning(
                        "Encountered an error very near the end of the test. "
                        "Assuming the rollup shut down.",
                        extra={"batch": batch_number, "error": str(exc)},
                    )
                    return False
                log.error(f"Failed to fetch batch {batch_number}", extra={"error": str(exc)})
                raise
            self.num_soak_txs = max(batch.tx_range.end - self.num_previous_txs, 0)
            if slot.batch_range.end > self._num_previous_batches:
                self.num_soak_batches += 1

        if self.num_soak_batches == 0:
            self._save_snapshot(slot)
            return True

        self.num_soak_slots += 1
        log.info(
            f"Received new slot. Rollup has processed {self.num_soak_txs} txs in "
            f"{self.num_soak_slots} slots. Average throughput: {self.report.throughput:.2f} txs/slot",
            extra={"slot": slot.number, "batches": self.num_soak_batches},
        )
        if self.num_soak_slots % self._full_slot_save_interval == 0:
            await self._save_full_snapshot(slot)
        else:
            self._save_snapshot(slot)
        return True

    def _save_snapshot(self, slot: Slot) -> None:
        if not self._save_snapshots:
            return
        if self._store.exists(slot.number):
            log.debug("Snapshot already recorded", extra={"slot": slot.number})
            return
        self._store.save(slot)

    async def _save_full_snapshot(self, slot: Slot) -> None:
        if not self._save_snapshots or self._store.exists(slot.number):
            return
        try:
            full_slot = await self._client.get_slot(slot.number, IncludeChildren.FULL)
        except TransientFetchError as exc:
            log.error(f"Failed to fetch full slot {slot.number}: {exc}.")
            full_slot = slot
        self._store.save(full_slot)

    def _on_process_exit(self, exit_task: asyncio.Task[int]) -> None:
        self._exit_observed = True
        self.stop_reason = "rollup exited"
        try:
            returncode = exit_task.result()
        except Exception as exc:
            log.error("Failed to receive rollup process result", extra={"error": str(exc)})
            self._process_failure = ProcessFailure(None, str(exc))
            return
        if is_clean_exit(returncode):
            log.info(f"Rollup process finished with status: {returncode}")
        else:
            log.error(f"Rollup process failed with status: {returncode}")
            self._process_failure = ProcessFailure(returncode)

    # -------------------------------------------------------------------------
    # Draining
    # -------------------------------------------------------------------------

    async def _drain(
        self,
        pool: Optional[WorkerPool],
        subscription: Optional[SlotStream],
        signal_waiters: Dict[asyncio.Future, str],
        exit_task: Optional[asyncio.Task[int]],
    ) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._installed_signals:
            loop.remove_signal_handler(sig)
        self._installed_signals.clear()
        for waiter in signal_waiters:
            if not waiter.done():
                waiter.cancel()

        if self._process is not None and not self._exit_observed:
            self._process.interrupt()
        try:
            if pool is not None:
                pool.stop()
                self.submitted_txs = await pool.join()
        finally:
            if subscription is not None:
                await subscription.aclose()
            if exit_task is not None and not exit_task.done():
                exit_task.cancel()

    def _check_pending_exit(self, exit_task: Optional[asyncio.Task[int]]) -> None:
        """Consult an exit result that arrived but was not selected; never blocks."""
        if exit_task is None or self._exit_observed:
            return
        if not exit_task.done() or exit_task.cancelled():
            return
        self._exit_observed = True
        try:
            returncode = exit_task.result()
        except Exception as exc:
            raise ProcessFailure(None, str(exc)) from exc
        if not is_clean_exit(returncode):
            log.error(f"Rollup process failed with status: {returncode}")
            raise ProcessFailure(returncode)
        log.info("Rollup process finished successfully")


__all__ = ["DEFAULT_STOP_SIGNALS", "SoakRunner", "SoakState"]
