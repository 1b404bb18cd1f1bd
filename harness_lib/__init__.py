from __future__ import annotations

from .artifacts import ArtifactCacheLoader, ArtifactRestore, SeedReport, cache_file_for
from .config import InvocationConfig
from .errors import HarnessError, InvocationFailed, ReadinessTimeout, ServiceStateError, SpawnFailure
from .harness import RemoteHarness
from .options import build_options, remote_args
from .process_table import PgrepProcessTable, ProcessTable, ProcessTableError, PsutilProcessTable
from .runner import SessionHandle, SessionResult, SessionRunner
from .service import ServiceHandle, ServiceLifecycleManager, ServiceState, ShutdownReport

__all__ = [
    "ArtifactCacheLoader",
    "ArtifactRestore",
    "SeedReport",
    "cache_file_for",
    "InvocationConfig",
    "HarnessError",
    "InvocationFailed",
    "ReadinessTimeout",
    "ServiceStateError",
    "SpawnFailure",
    "RemoteHarness",
    "build_options",
    "remote_args",
    "PgrepProcessTable",
    "ProcessTable",
    "ProcessTableError",
    "PsutilProcessTable",
    "SessionHandle",
    "SessionResult",
    "SessionRunner",
    "ServiceHandle",
    "ServiceLifecycleManager",
    "ServiceState",
    "ShutdownReport",
]
