from __future__ import annotations

import logging
import shutil
import subprocess
from typing import Protocol, Set

import psutil

LOGGER = logging.getLogger("harness.process_table")


class ProcessTableError(RuntimeError):
    pass


class ProcessTable(Protocol):
    def enumerate_descendants(self, pid: int) -> Set[int]:
        ...


def _parse_pid_lines(raw: str) -> Set[int]:
    pids: Set[int] = set()
    for line in raw.splitlines():
        text = line.strip()
        if not text:
            continue
        try:
            pid = int(text)
        except ValueError:
            LOGGER.warning("Unable to convert %r to a pid", text)
            continue
        if pid != 0:
            pids.add(pid)
    return pids


class PgrepProcessTable:
    """Direct children of a pid, as reported by ``pgrep -P``."""

    def __init__(self, pgrep_bin: str | None = None) -> None:
        self.pgrep_bin = pgrep_bin or shutil.which("pgrep") or "pgrep"

    def enumerate_descendants(self, pid: int) -> Set[int]:
        LOGGER.info("running: pgrep -P %s", pid)
        try:
            result = subprocess.run(
                [self.pgrep_bin, "-P", str(pid)],
                text=True,
                capture_output=True,
                check=False,
            )
        except OSError as exc:
            raise ProcessTableError(f"unable to run pgrep: {exc}") from exc
        # pgrep exits 1 when nothing matched
        if result.returncode not in (0, 1):
            raise ProcessTableError(
                f"pgrep -P {pid} failed with exit code {result.returncode}: {result.stderr.strip()}"
            )
        return _parse_pid_lines(result.stdout)


class PsutilProcessTable:
    """Fallback for hosts without procps: ask psutil for the direct children."""

    def enumerate_descendants(self, pid: int) -> Set[int]:
        try:
            return {child.pid for child in psutil.Process(pid).children()}
        except psutil.NoSuchProcess as exc:
            raise ProcessTableError(f"no process with pid {pid}") from exc
        except psutil.Error as exc:
            raise ProcessTableError(f"unable to list children of {pid}: {exc}") from exc


def default_process_table() -> ProcessTable:
    if shutil.which("pgrep"):
        return PgrepProcessTable()
    LOGGER.info("pgrep not found; falling back to psutil")
    return PsutilProcessTable()
