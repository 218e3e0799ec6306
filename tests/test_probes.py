from __future__ import annotations

import asyncio
import socket
import time

import httpx

from slipstream.lifecycle.probes import (
    HealthResult,
    WorkerProbe,
    can_bind_port,
    check_health,
    graceful_dispose,
    is_port_open,
    touch_session,
)


def _listener() -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    sock.bind(("127.0.0.1", 0))
    sock.listen(8)
    return sock


def _unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_is_port_open_detects_listener() -> None:
    sock = _listener()
    port = sock.getsockname()[1]
    try:
        assert asyncio.run(is_port_open(port, host="127.0.0.1")) is True
        assert can_bind_port(port) is False
    finally:
        sock.close()


def test_is_port_open_false_without_listener() -> None:
    port = _unused_port()
    assert asyncio.run(is_port_open(port, host="127.0.0.1")) is False
    assert can_bind_port(port) is True


def test_check_health_reports_version() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"healthy": True, "version": "1.0.0"})

    result = asyncio.run(check_health(4096, transport=httpx.MockTransport(handler)))

    assert result == HealthResult(healthy=True, version="1.0.0")
    assert seen[0].method == "GET"
    assert str(seen[0].url) == "http://localhost:4096/global/health"


def test_check_health_treats_error_status_as_unhealthy() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(503, json={"healthy": True, "version": "1"}))
    result = asyncio.run(check_health(4096, transport=transport))
    assert result == HealthResult(healthy=False)


def test_check_health_rejects_malformed_payloads() -> None:
    payloads = [
        httpx.Response(200, json={"healthy": True}),
        httpx.Response(200, json={"healthy": "yes", "version": "1.0.0"}),
        httpx.Response(200, json=["healthy"]),
        httpx.Response(200, text="ok"),
    ]
    for response in payloads:
        transport = httpx.MockTransport(lambda request, response=response: response)
        assert asyncio.run(check_health(4096, transport=transport)).healthy is False


def test_check_health_handles_connection_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = asyncio.run(check_health(4096, transport=httpx.MockTransport(handler)))
    assert result.healthy is False
    assert result.version is None


def test_check_health_against_closed_port() -> None:
    port = _unused_port()
    result = asyncio.run(check_health(port, timeout=0.5, host="127.0.0.1"))
    assert result.healthy is False


def test_check_health_gives_up_after_timeout() -> None:
    sock = _listener()
    port = sock.getsockname()[1]
    try:
        started = time.monotonic()
        result = asyncio.run(check_health(port, timeout=0.2, host="127.0.0.1"))
        elapsed = time.monotonic() - started
    finally:
        sock.close()

    assert result.healthy is False
    assert elapsed < 1.5


def test_graceful_dispose_posts_to_dispose_endpoint() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"disposed": True})

    assert asyncio.run(graceful_dispose(4100, transport=httpx.MockTransport(handler))) is True
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/instance/dispose"


def test_graceful_dispose_reports_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert asyncio.run(graceful_dispose(4100, transport=httpx.MockTransport(handler))) is False


def test_touch_session_sends_session_id() -> None:
    bodies: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(request.content)
        return httpx.Response(200, json={"active": True})

    assert asyncio.run(touch_session(4096, "slip-_dev_pts_3", transport=httpx.MockTransport(handler))) is True
    assert b"slip-_dev_pts_3" in bodies[0]


def test_worker_probe_uses_configured_paths() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={"healthy": True, "version": "2.1.0"})

    probe = WorkerProbe(health_path="/healthz", dispose_path="/quit", transport=httpx.MockTransport(handler))

    async def scenario():
        health = await probe.check_health(5000)
        disposed = await probe.dispose(5000)
        return health, disposed

    health, disposed = asyncio.run(scenario())
    assert health.version == "2.1.0"
    assert disposed is True
    assert paths == ["/healthz", "/quit"]
