"""
Synthetic-load worker pool.

Each worker is an asyncio task that pulls a signed transaction from a
TransactionSource and submits it to the sequencer, in a loop, until the shared
stop flag is set or the source runs dry. Transaction generation and signing
happen outside this package; a source only hands out ready-to-send bodies.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Iterator, List, Optional, Protocol, runtime_checkable

from ledger_oracle.domain.errors import TransientFetchError
from ledger_oracle.infrastructure.api_client import LedgerService
from ledger_oracle.utils.logging import get_logger

log = get_logger(__name__)


@runtime_checkable
class TransactionSource(Protocol):
    async def next_transaction(self, worker_id: int) -> Optional[str]:
        """Next base64 transaction body for `worker_id`, or None when exhausted."""
        ...


class PresignedTransactionFile:
    """
    Transactions signed ahead of time, one base64 body per line.

    Blank lines and `#` comments are skipped. Workers share a single cursor,
    so every body is handed out once; `offset` skips bodies already consumed
    by an earlier phase.
    """

    def __init__(self, path: Path | str, offset: int = 0) -> None:
        self.path = Path(path)
        bodies = [
            line.strip()
            for line in self.path.read_text(encoding="utf-8").splitlines()
            if line.strip() and not line.lstrip().startswith("#")
        ]
        self.total = len(bodies)
        self._cursor: Iterator[str] = iter(bodies[offset:])
        self.handed_out = 0

    async def next_transaction(self, worker_id: int) -> Optional[str]:
        body = next(self._cursor, None)
        if body is not None:
            self.handed_out += 1
        return body


class WorkerPool:
    """
    Fixed-size pool of submitting workers sharing one stop flag.

    Worker ids start at `salt` so a later phase does not reuse the identities
    of an earlier one.
    """

    def __init__(
        self,
        client: LedgerService,
        source: TransactionSource,
        num_workers: int,
        salt: int = 0,
        error_backoff_seconds: float = 0.5,
    ) -> None:
        if num_workers < 1:
            raise ValueError("num_workers must be at least 1")
        self._client = client
        self._source = source
        self.num_workers = num_workers
        self.salt = salt
        self._error_backoff = error_backoff_seconds
        self._stop = asyncio.Event()
        self._tasks: List[asyncio.Task[int]] = []

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    @property
    def tasks(self) -> List[asyncio.Task[int]]:
        return list(self._tasks)

    def start(self) -> None:
        log.info(f"Starting {self.num_workers} workers", extra={"salt": self.salt})
        self._tasks = [
            asyncio.create_task(self._work(self.salt + index), name=f"soak-worker-{index}")
            for index in range(self.num_workers)
        ]

    def stop(self) -> None:
        self._stop.set()

    async def join(self) -> int:
        """Wait for every worker to finish; returns the number of submitted transactions."""
        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        submitted = 0
        failures: List[BaseException] = []
        for result in results:
            if isinstance(result, BaseException):
                failures.append(result)
            else:
                submitted += result
        for failure in failures:
            log.error("Worker failed", exc_info=failure)
        if failures:
            raise failures[0]
        log.info("Workers stopped", extra={"submitted": submitted})
        return submitted

    async def _work(self, worker_id: int) -> int:
        submitted = 0
        while not self._stop.is_set():
            body = await self._source.next_transaction(worker_id)
            if body is None:
                log.info("Transaction source exhausted", extra={"worker": worker_id})
                break
            try:
                await self._client.submit_transaction(body)
            except TransientFetchError as exc:
                log.warning(
                    "Transaction submission failed",
                    extra={"worker": worker_id, "error": str(exc)},
                )
                await asyncio.sleep(self._error_backoff)
                continue
            submitted += 1
        return submitted


__all__ = ["PresignedTransactionFile", "TransactionSource", "WorkerPool"]
