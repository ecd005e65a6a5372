"""
Profiling utilities for soak phases.

A soak phase runs for many minutes, so start/end snapshots say little about
memory. `profile_block` samples resident memory on a background thread for
the harness itself and, when given a pid, for the service under test.

Usage:
    from ledger_oracle.utils.profiler import profile_block

    with profile_block("setup-soak", pid=rollup.pid) as stats:
        report = await runner.run()

    print(stats.duration_seconds, stats.peak_rss_bytes, stats.service_peak_rss_bytes)
"""

from __future__ import annotations

import contextlib
import threading
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Generator, Optional

import psutil


@dataclass
class ProfileStats:
    """
    Container for profiling measurements.
    """

    label: str
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    peak_rss_bytes: Optional[int] = field(default=None)
    service_peak_rss_bytes: Optional[int] = field(default=None)
    cpu_percent: Optional[float] = field(default=None)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["duration_seconds"] = round(self.duration_seconds, 2)
        if self.cpu_percent is not None:
            data["cpu_percent"] = round(self.cpu_percent, 1)
        return data


def _process(pid: Optional[int]) -> Optional[psutil.Process]:
    try:
        return psutil.Process(pid) if pid is not None else psutil.Process()
    except psutil.Error:
        return None


def _rss(process: Optional[psutil.Process]) -> int:
    if process is None:
        return 0
    try:
        return process.memory_info().rss
    except psutil.Error:
        # The service may exit while the phase is still draining.
        return 0


@contextlib.contextmanager
def profile_block(
    label: str, pid: Optional[int] = None, sample_interval_ms: int = 500
) -> Generator[ProfileStats, None, None]:
    """
    Profile a block of code.

    Parameters
    ----------
    label : str
        Human-friendly label for the profiled phase.
    pid : int, optional
        Process id of the service under test; its RSS is sampled alongside ours.
    sample_interval_ms : int
        Interval in milliseconds between RSS samples.
    """
    stats = ProfileStats(label=label)
    harness = _process(None)
    service = _process(pid) if pid is not None else None
    peaks = {"harness": _rss(harness), "service": _rss(service)}
    stop_sampling = threading.Event()

    def _sample() -> None:
        while not stop_sampling.is_set():
            peaks["harness"] = max(peaks["harness"], _rss(harness))
            peaks["service"] = max(peaks["service"], _rss(service))
            stop_sampling.wait(timeout=sample_interval_ms / 1000.0)

    if harness is not None:
        harness.cpu_percent(interval=None)

    sampler = threading.Thread(target=_sample, name=f"profile-{label}", daemon=True)
    sampler.start()

    stats.start_ts = time.perf_counter()
    try:
        yield stats
    finally:
        stats.end_ts = time.perf_counter()
        stats.duration_seconds = stats.end_ts - stats.start_ts

        stop_sampling.set()
        sampler.join(timeout=1.0)

        stats.peak_rss_bytes = peaks["harness"] or None
        stats.service_peak_rss_bytes = peaks["service"] or None
        if harness is not None:
            stats.cpu_percent = harness.cpu_percent(interval=None)


__all__ = ["ProfileStats", "profile_block"]
