"""REST-level check that something answers on the service socket.

This is a diagnostic only: readiness is decided by a client invocation, never
by this ping.
"""

from __future__ import annotations

import logging

import httpx

from .config import socket_path

LOGGER = logging.getLogger("harness.probe")

PING_URL = "http://d/_ping"


def socket_ping(
    address: str,
    *,
    timeout: float = 2.0,
    transport: httpx.BaseTransport | None = None,
) -> bool:
    if transport is None:
        path = socket_path(address)
        if not path.exists():
            return False
        transport = httpx.HTTPTransport(uds=str(path))
    try:
        with httpx.Client(transport=transport, timeout=httpx.Timeout(timeout)) as client:
            response = client.get(PING_URL)
    except httpx.HTTPError as exc:
        LOGGER.debug("ping on %s failed: %s", address, exc)
        return False
    return response.status_code == 200


def describe_socket(address: str, *, timeout: float = 2.0) -> str:
    try:
        path = socket_path(address)
    except ValueError as exc:
        return str(exc)
    if not path.exists():
        return f"socket {path} does not exist"
    if socket_ping(address, timeout=timeout):
        return f"socket {path} answers /_ping"
    return f"socket {path} exists but does not answer /_ping"
