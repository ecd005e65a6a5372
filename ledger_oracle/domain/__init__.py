"""
Domain package for the ledger oracle.

Exports the wire records, value types and failure taxonomy shared by the
checks, the soak harness and the orchestrator. Keep this package free of I/O.
"""

from ledger_oracle.domain.errors import (
    ComparisonError,
    InconsistentView,
    MissingSnapshot,
    OracleError,
    ProcessFailure,
    SequenceViolation,
    SnapshotMismatch,
    SubscriptionError,
    ThroughputRegression,
    TransientFetchError,
)
from ledger_oracle.domain.models import (
    FinalityStatus,
    IncludeChildren,
    LedgerBatch,
    LedgerTransaction,
    SequenceRange,
    SnapshotBehavior,
    Slot,
    ThroughputReport,
)

__all__ = [
    "ComparisonError",
    "FinalityStatus",
    "IncludeChildren",
    "InconsistentView",
    "LedgerBatch",
    "LedgerTransaction",
    "MissingSnapshot",
    "OracleError",
    "ProcessFailure",
    "SequenceRange",
    "SequenceViolation",
    "SnapshotBehavior",
    "SnapshotMismatch",
    "Slot",
    "SubscriptionError",
    "ThroughputRegression",
    "ThroughputReport",
    "TransientFetchError",
]
