#!/usr/bin/env python3
"""Start the service on a fresh socket, run one client call, tear it down."""

from __future__ import annotations

import argparse
import logging
import sys
import tempfile
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from harness_lib.config import InvocationConfig, debug_service_enabled  # noqa: E402
from harness_lib.errors import HarnessError, ReadinessTimeout  # noqa: E402
from harness_lib.harness import RemoteHarness  # noqa: E402
from harness_lib.options import build_options  # noqa: E402
from harness_lib.service import ServiceLifecycleManager, service_args  # noqa: E402

LOGGER = logging.getLogger("harness.smoke")

EXIT_OK = 0
EXIT_CLIENT_FAILED = 1
EXIT_NOT_READY = 2


def configure_logging(debug: bool) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
    root = logging.getLogger("harness")
    root.handlers = [handler]
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    root.propagate = False


def build_config(args: argparse.Namespace, workspace: Path) -> InvocationConfig:
    overrides = {"default_timeout": float(args.timeout)}
    if args.binary:
        overrides["binary"] = args.binary
    return InvocationConfig.from_env(workspace, socket_address=args.socket, **overrides)


def run_smoke(args: argparse.Namespace, workspace: Path) -> int:
    config = build_config(args, workspace)
    if args.plan_only:
        service_argv = build_options(config, service_args(config.socket_address, debug=debug_service_enabled()))
        print("Plan-only mode: no commands will be executed.")
        print(f"[plan] workspace: {workspace}")
        print(f"[plan] socket: {config.socket_address}")
        print(f"[plan] service: {config.binary} {' '.join(service_argv)}")
        print(f"[plan] probe attempts: {args.attempts} every {args.interval}s")
        return EXIT_OK
    manager = ServiceLifecycleManager(config, attempts=args.attempts, interval=args.interval)
    harness = RemoteHarness(config, manager=manager)
    exit_code = EXIT_OK
    try:
        try:
            harness.start_service()
        except ReadinessTimeout as exc:
            LOGGER.error("%s", exc)
            return EXIT_NOT_READY
        if args.seed:
            report = harness.seed_images()
            print(f"Seeded images: {report.summary()}")
        session = harness.podman(["version"])
        session.wait_with_default_timeout()
        print(session.out_text, end="")
        print(f"version exit code: {session.exit_code}")
        if session.exit_code != 0:
            LOGGER.error("client call failed: %s", session.err_text.strip())
            exit_code = EXIT_CLIENT_FAILED
    finally:
        report = harness.stop_service()
        for message in report.errors:
            print(f"[stop] {message}", file=sys.stderr)
    if config.socket_path.exists():
        LOGGER.error("socket %s still present after stop", config.socket_path)
        exit_code = exit_code or EXIT_CLIENT_FAILED
    return exit_code


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Smoke-test a socket-served CLI through start, one call, and stop")
    parser.add_argument("--binary", help="Controlled binary (default: $PODMAN_BINARY or <integration root>/bin/podman)")
    parser.add_argument("--socket", help="Socket address, e.g. unix:/tmp/test.sock (default: unique per workspace)")
    parser.add_argument("--workspace", help="Directory for storage roots (default: a fresh temp dir)")
    parser.add_argument("--attempts", type=int, default=5, help="Readiness probe attempts (default: 5)")
    parser.add_argument("--interval", type=float, default=2.0, help="Seconds between probe attempts (default: 2)")
    parser.add_argument("--timeout", type=float, default=90.0, help="Per-invocation wait timeout in seconds (default: 90)")
    parser.add_argument("--seed", action="store_true", help="Restore cached images into the store before the client call")
    parser.add_argument("--plan-only", action="store_true", help="Print the service command line and exit")
    parser.add_argument("--debug", action="store_true", help="Verbose harness logging")
    args = parser.parse_args(argv)
    if args.attempts < 1:
        parser.error("--attempts must be at least 1")
    if args.interval < 0:
        parser.error("--interval cannot be negative")
    if args.timeout <= 0:
        parser.error("--timeout must be greater than zero")
    return args


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.debug)
    try:
        if args.workspace:
            workspace = Path(args.workspace).expanduser().resolve()
            workspace.mkdir(parents=True, exist_ok=True)
            return run_smoke(args, workspace)
        with tempfile.TemporaryDirectory(prefix="remote-smoke-") as tmp:
            return run_smoke(args, Path(tmp))
    except HarnessError as exc:
        LOGGER.error("%s", exc)
        return EXIT_NOT_READY


if __name__ == "__main__":
    sys.exit(main())
