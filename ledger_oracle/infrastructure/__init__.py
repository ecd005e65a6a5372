"""
Infrastructure package for the ledger oracle.

Centralizes I/O with the service under test: the ledger API client and the
supervision of the service process. Keep this layer focused on transport and
resource management, decoupled from the checks and the soak logic.
"""

from ledger_oracle.infrastructure.api_client import (
    LedgerClient,
    LedgerService,
    SlotStream,
    SlotSubscription,
)
from ledger_oracle.infrastructure.process import (
    RollupProcess,
    SupervisedProcess,
    build_rollup_command,
    is_clean_exit,
    launch_rollup,
)

__all__ = [
    "LedgerClient",
    "LedgerService",
    "RollupProcess",
    "SlotStream",
    "SlotSubscription",
    "SupervisedProcess",
    "build_rollup_command",
    "is_clean_exit",
    "launch_rollup",
]
