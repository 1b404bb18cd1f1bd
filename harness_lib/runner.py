from __future__ import annotations

import logging
import os
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import IO, List, Mapping, Sequence, Tuple

from .config import InvocationConfig
from .errors import InvocationFailed, SpawnFailure

LOGGER = logging.getLogger("harness.runner")

READER_JOIN_TIMEOUT = 5.0


@dataclass
class SessionResult:
    command: List[str]
    exit_code: int | None
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def status(self) -> str:
        if self.timed_out:
            return "timeout"
        return "ok" if self.exit_code == 0 else "failed"

    def check(self) -> "SessionResult":
        if self.exit_code != 0:
            raise InvocationFailed(self)
        return self


class _StreamCollector:
    """Drain one child pipe on a daemon thread so output is readable while it runs."""

    def __init__(self, stream: IO[str], name: str) -> None:
        self._stream = stream
        self._chunks: list[str] = []
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._drain, name=name, daemon=True)
        self._thread.start()

    def _drain(self) -> None:
        try:
            for line in self._stream:
                with self._lock:
                    self._chunks.append(line)
        except ValueError:
            # pipe closed underneath us after kill()
            pass
        finally:
            try:
                self._stream.close()
            except OSError:
                pass

    def text(self) -> str:
        with self._lock:
            return "".join(self._chunks)

    def join(self, timeout: float) -> None:
        self._thread.join(timeout)


class SessionHandle:
    """One invocation of the controlled binary.

    ``exit_code`` stays ``None`` until :meth:`wait` observes the exit. A wait
    that times out leaves the child running; callers that need a hard bound
    call :meth:`kill` themselves.
    """

    def __init__(
        self,
        command: List[str],
        process: subprocess.Popen[str],
        *,
        captured: bool,
        default_timeout: float,
    ) -> None:
        self.command = command
        self.process = process
        self.default_timeout = default_timeout
        self.exit_code: int | None = None
        self.timed_out = False
        self._stdout = _StreamCollector(process.stdout, f"session-{process.pid}-out") if captured and process.stdout else None
        self._stderr = _StreamCollector(process.stderr, f"session-{process.pid}-err") if captured and process.stderr else None

    @property
    def pid(self) -> int:
        return self.process.pid

    def wait(self, timeout: float | None) -> Tuple[int | None, bool]:
        try:
            returncode = self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self.timed_out = True
            LOGGER.warning("Command did not exit within %ss: %s", timeout, " ".join(self.command))
            return None, True
        self.timed_out = False
        self.exit_code = returncode
        for collector in (self._stdout, self._stderr):
            if collector:
                collector.join(READER_JOIN_TIMEOUT)
        return returncode, False

    def wait_with_default_timeout(self) -> Tuple[int | None, bool]:
        return self.wait(self.default_timeout)

    def is_running(self) -> bool:
        return self.process.poll() is None

    def kill(self) -> None:
        if self.process.poll() is not None:
            return
        self.process.kill()
        self.process.wait()

    @property
    def out_text(self) -> str:
        return self._stdout.text() if self._stdout else ""

    @property
    def err_text(self) -> str:
        return self._stderr.text() if self._stderr else ""

    def output_lines(self) -> List[str]:
        return [line for line in self.out_text.splitlines() if line]

    def error_lines(self) -> List[str]:
        return [line for line in self.err_text.splitlines() if line]

    def result(self) -> SessionResult:
        return SessionResult(
            command=list(self.command),
            exit_code=self.exit_code,
            stdout=self.out_text,
            stderr=self.err_text,
            timed_out=self.timed_out,
        )


class SessionRunner:
    def __init__(self, config: InvocationConfig):
        self.config = config

    def environment(self, env: Mapping[str, str] | None = None) -> dict[str, str]:
        merged_env = os.environ.copy()
        merged_env.update(self.config.env)
        if env:
            merged_env.update(env)
        return merged_env

    def run(
        self,
        argv: Sequence[str],
        *,
        extra_files: Sequence[IO] | None = None,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        capture: bool = True,
        new_session: bool = False,
    ) -> SessionHandle:
        """Start ``binary argv`` and return without waiting for it to exit.

        ``capture=False`` wires the child to the harness's own stdout/stderr.
        ``extra_files`` are inherited by the child under their current
        descriptor numbers. ``new_session`` makes the child a process-group
        leader so the group can be signaled as a whole.
        """

        command = [self.config.binary, *argv]
        pass_fds = tuple(handle.fileno() for handle in extra_files or ())
        pipe = subprocess.PIPE if capture else None
        LOGGER.info("Running: %s", " ".join(command))
        try:
            proc = subprocess.Popen(
                command,
                cwd=str(cwd) if cwd else None,
                env=self.environment(env),
                stdin=subprocess.DEVNULL,
                stdout=pipe,
                stderr=pipe,
                text=True,
                encoding="utf-8",
                errors="replace",
                pass_fds=pass_fds,
                start_new_session=new_session,
            )
        except OSError as exc:
            LOGGER.error("Unable to start %s: %s", command[0], exc)
            raise SpawnFailure(command, str(exc)) from exc
        return SessionHandle(command, proc, captured=capture, default_timeout=self.config.default_timeout)

    def run_and_wait(self, argv: Sequence[str], *, timeout: float | None = None, **kwargs) -> SessionResult:
        handle = self.run(argv, **kwargs)
        handle.wait(self.config.default_timeout if timeout is None else timeout)
        return handle.result()
