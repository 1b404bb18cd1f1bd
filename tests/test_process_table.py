from __future__ import annotations

import subprocess
import sys
import time
from pathlib import Path

import psutil
import pytest

from harness_lib.process_table import (
    PgrepProcessTable,
    ProcessTableError,
    PsutilProcessTable,
    _parse_pid_lines,
    default_process_table,
)
from tests._harness_test_helpers import requires_pgrep


@pytest.fixture()
def parent_with_child():
    code = "import subprocess, sys, time; subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(60)']); time.sleep(60)"
    parent = subprocess.Popen([sys.executable, "-c", code])
    try:
        yield parent
    finally:
        try:
            children = psutil.Process(parent.pid).children()
        except psutil.NoSuchProcess:
            children = []
        for child in children:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass
        parent.kill()
        parent.wait(timeout=10)


def _wait_for_children(table, pid: int) -> set[int]:
    deadline = time.monotonic() + 10
    while time.monotonic() < deadline:
        children = table.enumerate_descendants(pid)
        if children:
            return children
        time.sleep(0.1)
    return set()


def test_parse_pid_lines_skips_noise() -> None:
    assert _parse_pid_lines("12\n\n  34 \nnot-a-pid\n0\n") == {12, 34}


@requires_pgrep
def test_pgrep_finds_direct_child(parent_with_child) -> None:
    children = _wait_for_children(PgrepProcessTable(), parent_with_child.pid)
    assert len(children) == 1


def test_psutil_agrees_with_process_tree(parent_with_child) -> None:
    children = _wait_for_children(PsutilProcessTable(), parent_with_child.pid)
    assert len(children) == 1
    assert parent_with_child.pid not in children


def _script(tmp_path: Path, body: str) -> str:
    target = tmp_path / "pgrep"
    target.write_text("#!/bin/sh\n" + body + "\n", encoding="utf-8")
    target.chmod(0o755)
    return str(target)


def test_pgrep_no_match_is_empty(tmp_path: Path) -> None:
    table = PgrepProcessTable(_script(tmp_path, "exit 1"))
    assert table.enumerate_descendants(1) == set()


def test_pgrep_output_garbage_is_ignored(tmp_path: Path) -> None:
    table = PgrepProcessTable(_script(tmp_path, "printf '101\\nbogus\\n\\n102\\n'"))
    assert table.enumerate_descendants(1) == {101, 102}


def test_pgrep_error_exit_raises(tmp_path: Path) -> None:
    table = PgrepProcessTable(_script(tmp_path, "echo 'pgrep: bad option' >&2; exit 2"))
    with pytest.raises(ProcessTableError, match="bad option"):
        table.enumerate_descendants(1)


def test_pgrep_missing_binary_raises(tmp_path: Path) -> None:
    table = PgrepProcessTable(str(tmp_path / "no-pgrep"))
    with pytest.raises(ProcessTableError):
        table.enumerate_descendants(1)


def test_psutil_exited_pid_raises() -> None:
    finished = subprocess.Popen([sys.executable, "-c", "pass"])
    finished.wait(timeout=10)
    with pytest.raises(ProcessTableError, match="no process"):
        PsutilProcessTable().enumerate_descendants(finished.pid)


def test_psutil_access_errors_are_wrapped(monkeypatch: pytest.MonkeyPatch) -> None:
    def denied(pid: int):
        raise psutil.AccessDenied(pid)

    monkeypatch.setattr("harness_lib.process_table.psutil.Process", denied)
    with pytest.raises(ProcessTableError, match="unable to list children of 7"):
        PsutilProcessTable().enumerate_descendants(7)


def test_default_table_falls_back_without_pgrep(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("harness_lib.process_table.shutil.which", lambda name: None)
    assert isinstance(default_process_table(), PsutilProcessTable)
