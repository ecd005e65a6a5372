"""
Consistency checks over the ledger read API.

Re-exports the snapshot store and the two checkers so downstream code can
import from `ledger_oracle.checks` directly.
"""

from ledger_oracle.checks.cross_path import CrossPathFetcher
from ledger_oracle.checks.snapshots import SnapshotStore
from ledger_oracle.checks.stream_monitor import MonitorFeeds, SlotTick, StreamMonitor

__all__ = [
    "CrossPathFetcher",
    "MonitorFeeds",
    "SlotTick",
    "SnapshotStore",
    "StreamMonitor",
]
