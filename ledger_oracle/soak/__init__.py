"""
Load generation, throughput accounting and post-restart replay.
"""

from ledger_oracle.soak.resync import ResyncValidator
from ledger_oracle.soak.runner import DEFAULT_STOP_SIGNALS, SoakRunner, SoakState
from ledger_oracle.soak.workers import PresignedTransactionFile, TransactionSource, WorkerPool

__all__ = [
    "DEFAULT_STOP_SIGNALS",
    "PresignedTransactionFile",
    "ResyncValidator",
    "SoakRunner",
    "SoakState",
    "TransactionSource",
    "WorkerPool",
]
