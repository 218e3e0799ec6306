"""Port and health probes against a local worker."""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass

import httpx

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
BIND_HOST = "127.0.0.1"
DEFAULT_HEALTH_PATH = "/global/health"
DEFAULT_DISPOSE_PATH = "/instance/dispose"


@dataclass(frozen=True, slots=True)
class HealthResult:
    """Outcome of a single liveness query."""

    healthy: bool
    version: str | None = None


def worker_url(port: int, *, host: str = DEFAULT_HOST) -> str:
    return f"http://{host}:{port}"


async def is_port_open(port: int, *, host: str = DEFAULT_HOST, timeout: float = 0.5) -> bool:
    """Return True when something accepts TCP connections on ``port``."""

    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    except (OSError, OverflowError, asyncio.TimeoutError):
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


def can_bind_port(port: int, *, host: str = BIND_HOST) -> bool:
    """Return True when ``port`` can be bound locally, i.e. it is free."""

    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind((host, port))
    except (OSError, OverflowError):
        return False
    return True


async def port_is_free(port: int, *, timeout: float = 0.5) -> bool:
    """Free means bindable and nobody answering on any local address."""

    if not can_bind_port(port):
        return False
    return not await is_port_open(port, timeout=timeout)


async def check_health(
    port: int,
    timeout: float = 2.0,
    *,
    host: str = DEFAULT_HOST,
    path: str = DEFAULT_HEALTH_PATH,
    transport: httpx.AsyncBaseTransport | None = None,
) -> HealthResult:
    """Query the worker liveness endpoint.

    Connection failures, timeouts, non-2xx statuses and malformed payloads all
    read as unhealthy. The request is cancelled once ``timeout`` elapses.
    """

    url = worker_url(port, host=host) + path
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport, trust_env=False) as client:
            response = await asyncio.wait_for(client.get(url), timeout)
    except (httpx.HTTPError, OSError, asyncio.TimeoutError) as exc:
        logger.debug("Health probe failed", extra={"port": port, "error": repr(exc)})
        return HealthResult(healthy=False)

    if not response.is_success:
        logger.debug("Health probe returned error status", extra={"port": port, "status": response.status_code})
        return HealthResult(healthy=False)

    try:
        payload = response.json()
    except ValueError:
        return HealthResult(healthy=False)

    if not isinstance(payload, dict):
        return HealthResult(healthy=False)
    healthy = payload.get("healthy")
    version = payload.get("version")
    if not isinstance(healthy, bool) or not isinstance(version, str):
        return HealthResult(healthy=False)
    return HealthResult(healthy=healthy, version=version)


async def graceful_dispose(
    port: int,
    timeout: float = 2.0,
    *,
    host: str = DEFAULT_HOST,
    path: str = DEFAULT_DISPOSE_PATH,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Ask the worker to exit cleanly; True when the request was accepted."""

    url = worker_url(port, host=host) + path
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport, trust_env=False) as client:
            response = await asyncio.wait_for(client.post(url), timeout)
    except (httpx.HTTPError, OSError, asyncio.TimeoutError) as exc:
        logger.debug("Dispose request failed", extra={"port": port, "error": repr(exc)})
        return False
    return response.is_success


async def touch_session(
    port: int,
    session_id: str | None,
    timeout: float = 2.0,
    *,
    host: str = DEFAULT_HOST,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Report client activity to the worker so its idle timer restarts."""

    url = worker_url(port, host=host) + "/session/touch"
    body = {"sessionId": session_id} if session_id else {}
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport, trust_env=False) as client:
            response = await asyncio.wait_for(client.post(url, json=body), timeout)
    except (httpx.HTTPError, OSError, asyncio.TimeoutError):
        return False
    return response.is_success


class WorkerProbe:
    """The probes above bound to one endpoint layout and timeout budget."""

    def __init__(
        self,
        *,
        host: str = DEFAULT_HOST,
        health_path: str = DEFAULT_HEALTH_PATH,
        dispose_path: str = DEFAULT_DISPOSE_PATH,
        health_timeout: float = 2.0,
        port_timeout: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.host = host
        self.health_path = health_path
        self.dispose_path = dispose_path
        self.health_timeout = health_timeout
        self.port_timeout = port_timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings) -> "WorkerProbe":
        return cls(
            health_path=settings.health_path,
            dispose_path=settings.dispose_path,
            health_timeout=settings.health_timeout,
            port_timeout=settings.port_probe_timeout,
        )

    async def check_health(self, port: int, timeout: float | None = None) -> HealthResult:
        return await check_health(
            port,
            timeout if timeout is not None else self.health_timeout,
            host=self.host,
            path=self.health_path,
            transport=self._transport,
        )

    async def dispose(self, port: int) -> bool:
        return await graceful_dispose(
            port,
            self.health_timeout,
            host=self.host,
            path=self.dispose_path,
            transport=self._transport,
        )

    async def touch(self, port: int, session_id: str | None) -> bool:
        return await touch_session(
            port, session_id, self.health_timeout, host=self.host, transport=self._transport
        )

    async def is_port_open(self, port: int) -> bool:
        return await is_port_open(port, host=self.host, timeout=self.port_timeout)

    async def is_port_free(self, port: int) -> bool:
        return await port_is_free(port, timeout=self.port_timeout)


__all__ = [
    "HealthResult",
    "WorkerProbe",
    "touch_session",
    "can_bind_port",
    "check_health",
    "graceful_dispose",
    "is_port_open",
    "port_is_free",
    "worker_url",
]
