from __future__ import annotations

import os
from pathlib import Path

import pytest

from harness_lib.errors import InvocationFailed, SpawnFailure
from harness_lib.runner import SessionRunner
from tests._harness_test_helpers import fake_config, write_fake_binary


@pytest.fixture()
def runner(tmp_path: Path) -> SessionRunner:
    binary = write_fake_binary(tmp_path)
    return SessionRunner(fake_config(tmp_path, binary=binary))


def test_run_captures_output_and_exit_code(runner: SessionRunner) -> None:
    session = runner.run(["exit", "3"])
    exit_code, timed_out = session.wait(20)

    assert (exit_code, timed_out) == (3, False)
    assert session.exit_code == 3
    assert session.output_lines() == ["stdout-marker"]
    assert session.error_lines() == ["stderr-marker"]
    result = session.result()
    assert result.status == "failed"
    with pytest.raises(InvocationFailed) as excinfo:
        result.check()
    assert "exit code 3" in str(excinfo.value)


def test_successful_result_checks_clean(runner: SessionRunner) -> None:
    result = runner.run_and_wait(["version"])
    assert result.check() is result
    assert result.status == "ok"
    assert "9.9.9-fake" in result.stdout


def test_exit_code_is_unset_until_wait(runner: SessionRunner) -> None:
    session = runner.run(["sleep", "0.2"])
    assert session.exit_code is None
    session.wait_with_default_timeout()
    assert session.exit_code == 0


def test_wait_timeout_leaves_child_running(runner: SessionRunner) -> None:
    session = runner.run(["sleep", "30"])
    try:
        exit_code, timed_out = session.wait(0.2)
        assert exit_code is None
        assert timed_out is True
        assert session.timed_out is True
        assert session.exit_code is None
        assert session.is_running()
        assert session.result().status == "timeout"
    finally:
        session.kill()
    assert not session.is_running()


def test_spawn_failure_is_raised(tmp_path: Path) -> None:
    runner = SessionRunner(fake_config(tmp_path, binary=tmp_path / "does-not-exist"))
    with pytest.raises(SpawnFailure) as excinfo:
        runner.run(["info"])
    assert excinfo.value.exit_code == 125
    assert "does-not-exist" in str(excinfo.value)


def test_environment_layers_config_and_call_env(tmp_path: Path, monkeypatch) -> None:
    binary = write_fake_binary(tmp_path)
    monkeypatch.setenv("HARNESS_PARENT_ONLY", "parent")
    config = fake_config(tmp_path, binary=binary, env={"REGISTRIES_CONFIG_PATH": "/from/config"})
    runner = SessionRunner(config)

    assert runner.run_and_wait(["env", "REGISTRIES_CONFIG_PATH"]).stdout.strip() == "/from/config"
    assert runner.run_and_wait(["env", "HARNESS_PARENT_ONLY"]).stdout.strip() == "parent"
    override = runner.run(["env", "REGISTRIES_CONFIG_PATH"], env={"REGISTRIES_CONFIG_PATH": "/per-call"})
    override.wait(20)
    assert override.out_text.strip() == "/per-call"
    assert "REGISTRIES_CONFIG_PATH" not in os.environ


def test_extra_files_are_passed_through(runner: SessionRunner, tmp_path: Path) -> None:
    target = tmp_path / "extra.txt"
    with target.open("w", encoding="utf-8") as handle:
        session = runner.run(["write-fd", str(handle.fileno()), "hello"], extra_files=[handle])
        exit_code, _ = session.wait(20)
    assert exit_code == 0
    assert target.read_text(encoding="utf-8") == "hello"


def test_uncaptured_session_has_empty_buffers(runner: SessionRunner) -> None:
    session = runner.run(["version"], capture=False)
    session.wait(20)
    assert session.exit_code == 0
    assert session.out_text == ""
