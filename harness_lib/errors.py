from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .runner import SessionResult

SPAWN_FAILURE_EXIT_CODE = 125


class HarnessError(RuntimeError):
    """Base class for failures of the harness itself (not of the command under test)."""


class SpawnFailure(HarnessError):
    def __init__(self, command: list[str], reason: str):
        cmd = " ".join(command)
        super().__init__(f"Unable to start '{cmd}': {reason}")
        self.command = command
        self.reason = reason
        self.exit_code = SPAWN_FAILURE_EXIT_CODE


class ReadinessTimeout(HarnessError):
    def __init__(self, socket_address: str, attempts: int, last_exit_code: int | None, detail: str = ""):
        message = f"Service not detected on {socket_address} after {attempts} attempt(s)"
        if last_exit_code is not None:
            message += f" (last probe exit code {last_exit_code})"
        if detail:
            message += f"; {detail}"
        super().__init__(message)
        self.socket_address = socket_address
        self.attempts = attempts
        self.last_exit_code = last_exit_code


class ServiceStateError(HarnessError):
    pass


class InvocationFailed(HarnessError):
    def __init__(self, result: "SessionResult"):
        cmd = " ".join(result.command)
        super().__init__(f"Command '{cmd}' failed with exit code {result.exit_code}")
        self.result = result
