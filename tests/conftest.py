"""
Pytest configuration for the ledger oracle.

Provides fixtures for:
- Settings isolated from the developer's environment
- An empty snapshot store per test
- An in-memory ledger with a short history
"""

from __future__ import annotations

from pathlib import Path
from typing import Generator

import pytest

from ledger_oracle.checks.snapshots import SnapshotStore
from ledger_oracle.config import Settings, get_settings
from tests.fakes import FakeLedger, FakeLedgerService


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """
    Settings fixture with test-specific overrides.

    Everything the harness writes lands under the test's tmp_path.
    """
    return Settings(
        api_url="http://ledger.test:12348",
        output_dir=tmp_path / "acceptance-test-data",
        num_workers=3,
        num_soak_batches=10,
        full_slot_save_interval=5,
        end_of_run_tolerance_batches=2,
        log_level="DEBUG",
    )


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "snapshots")


@pytest.fixture
def ledger() -> FakeLedger:
    """
    Five slots: an empty genesis slot, then four slots with one batch each
    (two transactions per batch).
    """
    ledger = FakeLedger()
    ledger.add_slot([])
    ledger.add_slots(4, txs_per_batch=(2,))
    return ledger


@pytest.fixture
def service(ledger: FakeLedger) -> FakeLedgerService:
    return FakeLedgerService(ledger)
