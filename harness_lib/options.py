from __future__ import annotations

import os
from typing import List, Mapping, Sequence

from .config import HOOK_OPTION_VAR, InvocationConfig


def global_options(config: InvocationConfig) -> List[str]:
    return [
        "--root",
        str(config.root),
        "--runroot",
        str(config.run_root),
        "--runtime",
        str(config.runtime),
        "--conmon",
        str(config.conmon),
        "--cni-config-dir",
        str(config.network_config_dir),
        "--cgroup-manager",
        str(config.cgroup_manager),
    ]


def build_options(
    config: InvocationConfig,
    args: Sequence[str],
    *,
    environ: Mapping[str, str] | None = None,
) -> List[str]:
    """Assemble the full argv (minus the binary) for one invocation.

    Order is fixed: global options, the ``HOOK_OPTION`` value when non-empty,
    the whitespace-split storage options, then ``args``.
    """

    env = os.environ if environ is None else environ
    hook_option = env.get(HOOK_OPTION_VAR, "")
    options = global_options(config)
    if hook_option:
        options.append(hook_option)
    options.extend(config.storage_options.split())
    options.extend(args)
    return options


def remote_args(config: InvocationConfig, args: Sequence[str]) -> List[str]:
    return ["--remote", "--url", config.socket_address, *args]
