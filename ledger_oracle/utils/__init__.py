"""
Utilities package for the ledger oracle.

Exports shared helpers for logging and profiling. Keep this package
lightweight and free of ledger-specific logic.
"""

from ledger_oracle.utils.logging import configure_logging, get_logger
from ledger_oracle.utils.profiler import ProfileStats, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
