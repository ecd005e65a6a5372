"""
Configuration settings for the ledger oracle.

Uses Pydantic Settings to load environment variables for the service endpoints,
network timeouts, soak/resync tuning and the launch of the service under test.
"""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Service endpoints
    api_url: str = Field("http://localhost:12348", alias="API_URL")
    ws_url: Optional[str] = Field(None, alias="WS_URL")

    # Network timeouts
    connect_timeout_seconds: float = Field(60.0, alias="CONNECT_TIMEOUT")
    read_timeout_seconds: float = Field(120.0, alias="READ_TIMEOUT")
    request_timeout_seconds: float = Field(600.0, alias="REQUEST_TIMEOUT")
    readiness_timeout_seconds: float = Field(240.0, alias="READINESS_TIMEOUT")

    # Persisted state
    output_dir: Path = Field(Path("acceptance-test-data"), alias="OUTPUT_DIR")
    snapshots_dir_override: Optional[Path] = Field(None, alias="SNAPSHOTS_DIR")

    # Soak
    num_workers: int = Field(20, alias="SOAK_NUM_WORKERS")
    num_soak_batches: int = Field(1000, alias="SOAK_NUM_BATCHES")
    full_slot_save_interval: int = Field(25, alias="SOAK_FULL_SLOT_INTERVAL")
    end_of_run_tolerance_batches: int = Field(15, alias="SOAK_END_TOLERANCE")
    setup_previous_batches: int = Field(3, alias="SOAK_SETUP_PREVIOUS_BATCHES")
    transactions_path: Optional[Path] = Field(None, alias="TRANSACTIONS_PATH")
    transactions_offset: int = Field(0, alias="TRANSACTIONS_OFFSET")

    # Consistency and resync
    consistency_ticks: int = Field(10, alias="CONSISTENCY_TICKS")
    resync_skew_slots: int = Field(10, alias="RESYNC_SKEW_SLOTS")
    throughput_regression_ratio: float = Field(0.9, alias="THROUGHPUT_RATIO")

    # Service under test
    rollup_command: str = Field("cargo run --release --", alias="ROLLUP_COMMAND")
    rollup_workdir: Path = Field(Path("."), alias="ROLLUP_WORKDIR")
    rollup_config_path: Path = Field(Path("rollup_config.toml"), alias="ROLLUP_CONFIG_PATH")
    genesis_path: Path = Field(Path("genesis.json"), alias="GENESIS_PATH")
    shutdown_timeout_seconds: float = Field(60.0, alias="SHUTDOWN_TIMEOUT")
    cleanup_command: Optional[str] = Field(None, alias="CLEANUP_COMMAND")

    # Application
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    json_logs: bool = Field(False, alias="JSON_LOGS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def websocket_url(self) -> str:
        """Websocket base URL, derived from the HTTP one unless set explicitly."""
        if self.ws_url:
            return self.ws_url.rstrip("/")
        if self.api_url.startswith("https://"):
            return "wss://" + self.api_url[len("https://") :].rstrip("/")
        return "ws://" + self.api_url.removeprefix("http://").rstrip("/")

    @property
    def snapshots_dir(self) -> Path:
        return self.snapshots_dir_override or self.output_dir / "snapshots"

    @property
    def report_path(self) -> Path:
        return self.output_dir / "throughput_report.json"

    @property
    def accepted_report_path(self) -> Path:
        return self.output_dir / "accepted_throughput_report.json"

    @property
    def rollup_log_path(self) -> Path:
        return self.output_dir / "rollup.log"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
