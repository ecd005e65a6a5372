"""
Supervision of the service under test as a child process.

The service runs as a genuine OS process. Waiting on it is a blocking call,
so it is pushed onto a worker thread and exposed as an awaitable that can sit
in the soak runner's selection next to the slot stream and signal waiters.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import signal
import subprocess
from pathlib import Path
from typing import IO, Mapping, Optional, Protocol, Sequence, runtime_checkable

from ledger_oracle.config import Settings
from ledger_oracle.utils.logging import get_logger

log = get_logger(__name__)


def is_clean_exit(returncode: Optional[int]) -> bool:
    """Exit 0, or death by the SIGINT the harness itself sends during draining."""
    return returncode == 0 or returncode == -signal.SIGINT


@runtime_checkable
class SupervisedProcess(Protocol):
    @property
    def pid(self) -> Optional[int]: ...

    async def wait(self) -> int: ...

    def interrupt(self) -> bool: ...


class RollupProcess:
    """A launched service process with its stdout redirected to a log file."""

    def __init__(self, popen: subprocess.Popen, log_file: Optional[IO[bytes]] = None) -> None:
        self._popen = popen
        self._log_file = log_file

    @classmethod
    def launch(
        cls,
        command: Sequence[str],
        cwd: Path,
        log_path: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> "RollupProcess":
        log_file = None
        if log_path is not None:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            log_file = log_path.open("wb")
        merged_env = {**os.environ, "RUST_LOG": "info", **(env or {})}
        log.info(
            "Starting rollup",
            extra={"command": " ".join(command), "cwd": str(cwd), "log": str(log_path)},
        )
        try:
            popen = subprocess.Popen(
                list(command),
                cwd=cwd,
                env=merged_env,
                stdout=log_file if log_file is not None else None,
            )
        except OSError:
            if log_file is not None:
                log_file.close()
            raise
        return cls(popen, log_file)

    @property
    def pid(self) -> Optional[int]:
        return self._popen.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._popen.poll()

    async def wait(self) -> int:
        return await asyncio.to_thread(self._popen.wait)

    def interrupt(self) -> bool:
        """Send SIGINT. Failures are tolerated; returns whether the signal was delivered."""
        if self._popen.poll() is not None:
            return False
        try:
            self._popen.send_signal(signal.SIGINT)
        except OSError as exc:
            log.warning("Failed to interrupt rollup", extra={"pid": self.pid, "error": str(exc)})
            return False
        return True

    def _wait_or_kill(self, timeout: float) -> int:
        try:
            return self._popen.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            log.warning("Rollup ignored SIGINT, killing it", extra={"pid": self.pid})
            self._popen.kill()
            return self._popen.wait()

    async def shutdown(self, timeout: float) -> int:
        """Interrupt (if still running), wait up to `timeout`, then kill."""
        self.interrupt()
        try:
            returncode = await asyncio.to_thread(self._wait_or_kill, timeout)
        finally:
            if self._log_file is not None:
                self._log_file.close()
                self._log_file = None
        log.info("Rollup process stopped", extra={"returncode": returncode})
        return returncode


def build_rollup_command(settings: Settings, stop_height: int) -> list[str]:
    return [
        *shlex.split(settings.rollup_command),
        "--rollup-config-path",
        str(settings.rollup_config_path),
        "--genesis-path",
        str(settings.genesis_path),
        "--stop-at-rollup-height",
        str(stop_height),
    ]


def launch_rollup(settings: Settings, stop_height: int) -> RollupProcess:
    return RollupProcess.launch(
        build_rollup_command(settings, stop_height),
        cwd=settings.rollup_workdir,
        log_path=settings.rollup_log_path,
    )


__all__ = [
    "RollupProcess",
    "SupervisedProcess",
    "build_rollup_command",
    "is_clean_exit",
    "launch_rollup",
]
