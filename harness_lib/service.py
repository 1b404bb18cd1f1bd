from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Mapping

from .config import PRIVILEGED_SERVICE_DIR, InvocationConfig, debug_service_enabled, is_rootless, socket_path
from .errors import ReadinessTimeout, ServiceStateError
from .options import build_options, remote_args
from .probe import describe_socket, socket_ping
from .process_table import ProcessTable, ProcessTableError, default_process_table
from .runner import SessionHandle, SessionRunner

LOGGER = logging.getLogger("harness.service")

PROBE_ATTEMPTS = 5
PROBE_INTERVAL = 2.0
STOP_WAIT_TIMEOUT = 10.0


class ServiceState(str, Enum):
    NOT_STARTED = "not_started"
    STARTING = "starting"
    READY = "ready"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass
class ServiceHandle:
    session: SessionHandle
    socket_address: str
    start_error: Exception | None = None
    stopped: bool = False

    @property
    def pid(self) -> int:
        return self.session.pid

    @property
    def process(self) -> subprocess.Popen:
        return self.session.process


@dataclass
class ShutdownReport:
    strategy: str
    signaled: List[int] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    socket_removed: bool = False
    already_stopped: bool = False
    already_exited: bool = False

    @property
    def clean(self) -> bool:
        return not self.errors


def service_args(socket_address: str, *, debug: bool = False) -> List[str]:
    args: List[str] = []
    if debug:
        args.extend(["--log-level", "debug"])
    args.extend(["system", "service", "--time", "0", socket_address])
    return args


class ServiceLifecycleManager:
    """Own the background service for one harness instance.

    ``start`` spawns the service and blocks until a client ``info`` call
    through the socket succeeds or the probe budget is spent. ``stop`` is
    best-effort and safe to repeat.
    """

    def __init__(
        self,
        config: InvocationConfig,
        *,
        runner: SessionRunner | None = None,
        process_table: ProcessTable | None = None,
        privileged: bool | None = None,
        attempts: int = PROBE_ATTEMPTS,
        interval: float = PROBE_INTERVAL,
        probe_timeout: float | None = None,
        stop_timeout: float = STOP_WAIT_TIMEOUT,
        service_run_dir: Path = PRIVILEGED_SERVICE_DIR,
        environ: Mapping[str, str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        kill: Callable[[int, int], None] = os.kill,
        describe: Callable[[str], str] = describe_socket,
        ping: Callable[[str], bool] = socket_ping,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.config = config
        self.runner = runner or SessionRunner(config)
        self.process_table = process_table or default_process_table()
        self.privileged = (not is_rootless(environ)) if privileged is None else privileged
        self.attempts = attempts
        self.interval = interval
        self.probe_timeout = config.default_timeout if probe_timeout is None else probe_timeout
        self.stop_timeout = stop_timeout
        self.service_run_dir = service_run_dir
        self._environ = environ
        self._sleep = sleep
        self._kill = kill
        self._describe = describe
        self._ping = ping
        self.state = ServiceState.NOT_STARTED
        self.handle: ServiceHandle | None = None
        self.probe_attempts = 0

    @property
    def socket_address(self) -> str:
        return self.config.socket_address

    @property
    def is_ready(self) -> bool:
        return self.state is ServiceState.READY

    # start ------------------------------------------------------------------
    def start(self) -> ServiceHandle:
        if self.state is not ServiceState.NOT_STARTED:
            raise ServiceStateError(f"Service on {self.socket_address} already {self.state.value}; create a new manager")
        if self.privileged:
            try:
                self.service_run_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
            except OSError as exc:
                LOGGER.warning("Unable to create %s: %s", self.service_run_dir, exc)
        self._remove_stale_socket()
        environ = os.environ if self._environ is None else self._environ
        args = service_args(self.socket_address, debug=debug_service_enabled(environ))
        argv = build_options(self.config, args, environ=environ)
        self.state = ServiceState.STARTING
        try:
            session = self.runner.run(argv, capture=False, new_session=True)
        except Exception:
            self.state = ServiceState.FAILED
            raise
        self.handle = ServiceHandle(session=session, socket_address=self.socket_address)
        LOGGER.info("Service started with pid %s on %s", session.pid, self.socket_address)
        try:
            self.wait_until_ready()
        except ReadinessTimeout as exc:
            self.handle.start_error = exc
            raise
        return self.handle

    def _remove_stale_socket(self) -> None:
        path = self.config.socket_path
        if not path.exists():
            return
        if self._ping(self.socket_address):
            raise ServiceStateError(f"Socket {path} is answering; another service is still listening on it")
        LOGGER.warning("Removing stale socket %s before start", path)
        try:
            path.unlink()
        except OSError as exc:
            LOGGER.warning("Unable to remove stale socket %s: %s", path, exc)

    def probe(self) -> int | None:
        """Run one ``info`` call through the socket and return its exit code."""

        session = self.runner.run(remote_args(self.config, ["info"]))
        exit_code, timed_out = session.wait(self.probe_timeout)
        if timed_out:
            session.kill()
            return None
        return exit_code

    def wait_until_ready(self) -> None:
        if self.state is not ServiceState.STARTING:
            raise ServiceStateError(f"Cannot probe a service that is {self.state.value}")
        last_exit_code: int | None = None
        for attempt in range(1, self.attempts + 1):
            self.probe_attempts = attempt
            try:
                last_exit_code = self.probe()
            except Exception:
                self.state = ServiceState.FAILED
                raise
            if last_exit_code == 0:
                self.state = ServiceState.READY
                LOGGER.info("Service on %s ready after %d attempt(s)", self.socket_address, attempt)
                return
            LOGGER.info(
                "Service on %s not ready (attempt %d/%d, exit code %s)",
                self.socket_address,
                attempt,
                self.attempts,
                last_exit_code,
            )
            if attempt < self.attempts:
                self._sleep(self.interval)
        self.state = ServiceState.FAILED
        detail = self._describe(self.socket_address)
        error = ReadinessTimeout(self.socket_address, self.attempts, last_exit_code, detail)
        LOGGER.error("%s", error)
        raise error

    # stop -------------------------------------------------------------------
    def stop(self) -> ShutdownReport:
        handle = self.handle
        if handle is None or handle.stopped:
            LOGGER.info("Service on %s is not running; nothing to stop", self.socket_address)
            report = ShutdownReport(strategy="none", already_stopped=True)
            if handle is not None:
                self.state = ServiceState.STOPPED
            return report
        if self.privileged:
            report = self._stop_privileged(handle)
        else:
            report = self._stop_unprivileged(handle)
        report.socket_removed = self._remove_socket(report)
        handle.stopped = True
        self.state = ServiceState.STOPPED
        for message in report.errors:
            LOGGER.warning("service stop: %s", message)
        return report

    def _reaped(self, handle: ServiceHandle, report: ShutdownReport) -> bool:
        # once reaped the pid may belong to an unrelated process
        returncode = handle.process.poll()
        if returncode is None:
            return False
        LOGGER.info("Service pid %s already exited with %s; not signaling", handle.pid, returncode)
        report.already_exited = True
        return True

    def _stop_privileged(self, handle: ServiceHandle) -> ShutdownReport:
        report = ShutdownReport(strategy="privileged")
        if self._reaped(handle, report):
            return report
        process = handle.process
        try:
            process.kill()
            report.signaled.append(handle.pid)
        except OSError as exc:
            report.errors.append(f"error on remote stop-kill {exc!r}")
        try:
            process.wait(timeout=self.stop_timeout)
        except (subprocess.TimeoutExpired, OSError) as exc:
            report.errors.append(f"error on remote stop-wait {exc!r}")
        return report

    def _stop_unprivileged(self, handle: ServiceHandle) -> ShutdownReport:
        report = ShutdownReport(strategy="unprivileged")
        if self._reaped(handle, report):
            return report
        parent = handle.pid
        pids: List[int] = []
        try:
            pids.extend(sorted(self.process_table.enumerate_descendants(parent)))
        except (ProcessTableError, OSError) as exc:
            report.errors.append(f"unable to find remote pid children of {parent}: {exc}")
        pids.append(parent)
        for pid in pids:
            try:
                self._kill(pid, signal.SIGKILL)
                report.signaled.append(pid)
            except ProcessLookupError:
                LOGGER.info("pid %s already exited", pid)
            except OSError as exc:
                report.errors.append(f"unable to kill pid {pid}: {exc}")
        try:
            handle.process.wait(timeout=self.stop_timeout)
        except (subprocess.TimeoutExpired, OSError) as exc:
            report.errors.append(f"unable to reap pid {parent}: {exc!r}")
        return report

    def _remove_socket(self, report: ShutdownReport) -> bool:
        try:
            path = socket_path(self.socket_address)
        except ValueError as exc:
            report.errors.append(str(exc))
            return False
        try:
            path.unlink()
        except FileNotFoundError:
            return True
        except OSError as exc:
            report.errors.append(f"unable to remove socket {path}: {exc}")
            return False
        return True
