from __future__ import annotations

import dataclasses
import os
import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

DEFAULT_WAIT_TIMEOUT = 90.0
DEFAULT_IMAGE_CACHE_DIR = Path("/tmp/podman/imagecachedir")
DEFAULT_CACHE_TAR_DIR = Path("/tmp")
PRIVILEGED_SERVICE_DIR = Path("/run/podman")

DEBUG_SERVICE_VAR = "DEBUG_SERVICE"
HOOK_OPTION_VAR = "HOOK_OPTION"
REGISTRIES_CONFIG_VAR = "REGISTRIES_CONFIG_PATH"

HARNESS_ENV_VARS = (
    "PODMAN_BINARY",
    "OCI_RUNTIME",
    "CONMON_BINARY",
    "CNI_CONFIG_DIR",
    "CGROUP_MANAGER",
    "STORAGE_OPTIONS",
    "IMAGE_CACHE_DIR",
    "INTEGRATION_ROOT",
    "ROOTLESS",
    DEBUG_SERVICE_VAR,
    HOOK_OPTION_VAR,
    REGISTRIES_CONFIG_VAR,
)


@lru_cache(maxsize=1)
def integration_root() -> Path:
    env = os.getenv("INTEGRATION_ROOT")
    if env:
        base = Path(env).expanduser()
        if not base.is_absolute():
            raise ValueError(f"INTEGRATION_ROOT must be absolute, got {base}")
        return base
    return Path(__file__).resolve().parents[1]


def coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "y", "on"}:
            return True
        if normalized in {"0", "false", "no", "n", "off"}:
            return False
    return None


def debug_service_enabled(environ: Mapping[str, str] | None = None) -> bool:
    """Presence of DEBUG_SERVICE is enough, whatever its value."""
    env = os.environ if environ is None else environ
    return DEBUG_SERVICE_VAR in env


def is_rootless(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    overridden = coerce_bool(env.get("ROOTLESS"))
    if overridden is not None:
        return overridden
    return os.geteuid() != 0


def socket_path(address: str) -> Path:
    """Return the filesystem path of a ``unix:<path>`` socket address."""

    scheme, sep, rest = address.partition(":")
    if not sep:
        return Path(address)
    if scheme != "unix":
        raise ValueError(f"Unsupported socket address {address!r}; expected unix:<path>")
    # tolerate unix:///run/x.sock as well as unix:/run/x.sock
    if rest.startswith("//"):
        rest = rest[2:]
    return Path(rest)


def unique_socket_address(directory: Path) -> str:
    return f"unix:{directory / f'podman-{uuid.uuid4().hex[:12]}.sock'}"


@dataclass(frozen=True)
class InvocationConfig:
    binary: str
    root: Path
    run_root: Path
    runtime: str
    conmon: str
    network_config_dir: Path
    cgroup_manager: str
    storage_options: str
    socket_address: str
    image_cache_dir: Path = DEFAULT_IMAGE_CACHE_DIR
    temp_dir: Path | None = None
    # read-only view, left out of the hash
    env: Mapping[str, str] = field(default_factory=dict, hash=False)
    default_timeout: float = DEFAULT_WAIT_TIMEOUT

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def socket_path(self) -> Path:
        return socket_path(self.socket_address)

    def with_root(self, root: Path) -> "InvocationConfig":
        return dataclasses.replace(self, root=Path(root))

    def with_env(self, values: Mapping[str, str]) -> "InvocationConfig":
        merged = dict(self.env)
        merged.update({key: str(value) for key, value in values.items()})
        return dataclasses.replace(self, env=merged)

    @classmethod
    def from_env(
        cls,
        temp_dir: Path,
        *,
        socket_address: str | None = None,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> "InvocationConfig":
        """Build the per-instance config for ``temp_dir`` from harness env vars."""

        env = os.environ if environ is None else environ
        temp_dir = Path(temp_dir)
        rootless = is_rootless(env)
        binary = env.get("PODMAN_BINARY") or str(integration_root() / "bin" / "podman")
        cgroup_default = "cgroupfs" if rootless else "systemd"
        if socket_address is None:
            socket_dir = temp_dir if rootless else PRIVILEGED_SERVICE_DIR
            socket_address = unique_socket_address(socket_dir)
        values: dict[str, Any] = {
            "binary": binary,
            "root": temp_dir / "root",
            "run_root": temp_dir / "runroot",
            "runtime": env.get("OCI_RUNTIME") or "crun",
            "conmon": env.get("CONMON_BINARY") or "/usr/libexec/podman/conmon",
            "network_config_dir": Path(env.get("CNI_CONFIG_DIR") or "/etc/cni/net.d"),
            "cgroup_manager": env.get("CGROUP_MANAGER") or cgroup_default,
            "storage_options": env.get("STORAGE_OPTIONS", ""),
            "socket_address": socket_address,
            "image_cache_dir": Path(env.get("IMAGE_CACHE_DIR") or DEFAULT_IMAGE_CACHE_DIR),
            "temp_dir": temp_dir,
        }
        values.update(overrides)
        return cls(**values)
