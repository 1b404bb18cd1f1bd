"""Registries configuration for spawned invocations.

The path is handed to children through an explicit environment map merged
into ``InvocationConfig.env``; the harness process environment is left alone
so concurrently running harness instances cannot see each other's file.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict

from .config import REGISTRIES_CONFIG_VAR, integration_root
from .fileio import atomic_write_bytes

REGISTRIES_FILENAME = "registries.conf"


def default_registries_env(root: Path | None = None) -> Dict[str, str]:
    base = root or integration_root()
    return {REGISTRIES_CONFIG_VAR: str(base / "test" / REGISTRIES_FILENAME)}


def write_registries_config(temp_dir: Path, content: bytes) -> Dict[str, str]:
    outfile = Path(temp_dir) / REGISTRIES_FILENAME
    atomic_write_bytes(outfile, content)
    return {REGISTRIES_CONFIG_VAR: str(outfile)}


def reset_registries_env() -> Dict[str, str]:
    return {REGISTRIES_CONFIG_VAR: ""}
