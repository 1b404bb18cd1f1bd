from __future__ import annotations

from pathlib import Path

from harness_lib.options import build_options, global_options, remote_args
from tests._harness_test_helpers import fake_config


def test_build_options_orders_segments(tmp_path: Path) -> None:
    config = fake_config(tmp_path)
    argv = build_options(config, ["info"], environ={"HOOK_OPTION": "--hooks-dir=/hooks"})

    assert argv[:12] == [
        "--root",
        str(tmp_path / "root"),
        "--runroot",
        str(tmp_path / "runroot"),
        "--runtime",
        "crun",
        "--conmon",
        "/usr/libexec/podman/conmon",
        "--cni-config-dir",
        "/etc/cni/net.d",
        "--cgroup-manager",
        "cgroupfs",
    ]
    assert argv[12:] == ["--hooks-dir=/hooks", "--storage-driver", "vfs", "info"]


def test_build_options_is_deterministic(tmp_path: Path) -> None:
    config = fake_config(tmp_path)
    environ = {"HOOK_OPTION": "--hooks-dir=/a"}
    assert build_options(config, ["ps", "-a"], environ=environ) == build_options(config, ["ps", "-a"], environ=environ)


def test_hook_option_only_changes_its_own_segment(tmp_path: Path) -> None:
    config = fake_config(tmp_path)
    without = build_options(config, ["ps"], environ={})
    with_hook = build_options(config, ["ps"], environ={"HOOK_OPTION": "--hooks-dir=/x"})
    empty_hook = build_options(config, ["ps"], environ={"HOOK_OPTION": ""})

    assert empty_hook == without
    assert len(with_hook) == len(without) + 1
    hook_index = len(global_options(config))
    assert with_hook[hook_index] == "--hooks-dir=/x"
    assert with_hook[:hook_index] + with_hook[hook_index + 1 :] == without


def test_build_options_reads_process_env_by_default(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("HOOK_OPTION", "--hooks-dir=/from-env")
    argv = build_options(fake_config(tmp_path), ["info"])
    assert "--hooks-dir=/from-env" in argv


def test_storage_options_split_on_whitespace(tmp_path: Path) -> None:
    config = fake_config(tmp_path, storage_options="  --storage-driver   overlay --storage-opt x=y ")
    argv = build_options(config, [], environ={})
    assert argv[len(global_options(config)) :] == ["--storage-driver", "overlay", "--storage-opt", "x=y"]


def test_empty_storage_options_add_nothing(tmp_path: Path) -> None:
    config = fake_config(tmp_path, storage_options="")
    assert build_options(config, ["info"], environ={}) == global_options(config) + ["info"]


def test_remote_args_prefix_connection_flags(tmp_path: Path) -> None:
    config = fake_config(tmp_path)
    assert remote_args(config, ["version"]) == ["--remote", "--url", config.socket_address, "version"]
