"""
Ledger Oracle - read-API consistency oracle and soak harness for a rollup node.

This package checks that a streaming ledger service tells the same story
through every way of asking, and that it keeps its throughput across restarts:

- Four slot subscriptions joined into validated, strictly ordered ticks
- Redundant point lookups (by number, by hash, with and without children)
- JSON snapshots of slots as regression baselines
- A worker pool that submits signed transactions while throughput is measured
- Replay of the recorded snapshots after a restart
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from ledger_oracle.checks import CrossPathFetcher, SnapshotStore, StreamMonitor
from ledger_oracle.config import Settings, get_settings
from ledger_oracle.infrastructure.api_client import LedgerClient, LedgerService
from ledger_oracle.orchestrator import run_acceptance, run_consistency_checks, run_setup
from ledger_oracle.soak import ResyncValidator, SoakRunner, WorkerPool
from ledger_oracle.utils.logging import configure_logging, get_logger
from ledger_oracle.utils.profiler import ProfileStats, profile_block

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Service access
    "LedgerClient",
    "LedgerService",
    # Checks
    "CrossPathFetcher",
    "SnapshotStore",
    "StreamMonitor",
    # Soak
    "ResyncValidator",
    "SoakRunner",
    "WorkerPool",
    # Orchestration
    "run_acceptance",
    "run_consistency_checks",
    "run_setup",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
]
