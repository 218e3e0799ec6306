"""FastMCP worker bootstrap for Slipstream."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Any, Callable, Optional

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from .. import __version__
from ..config import SlipstreamSettings, get_settings
from ..logs import configure_logging
from ..preferences import load_user_config
from ..sessions import IdleSessionSupervisor
from .runtime import WorkerRuntime
from .tools import register_tools

logger = logging.getLogger(__name__)

DEFAULT_BIND_HOST = "127.0.0.1"
DISPOSE_GRACE_SECONDS = 0.1


async def _read_session_id(request: Request) -> str | None:
    body = await request.body()
    if not body:
        return None
    try:
        payload = json.loads(body)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    session_id = payload.get("sessionId")
    return session_id if isinstance(session_id, str) and session_id.strip() else None


def create_worker(
    settings: Optional[SlipstreamSettings] = None,
    *,
    idle_timeout: float = 3600,
    supervisor: IdleSessionSupervisor | None = None,
    shutdown: Callable[[], None] | None = None,
) -> FastMCP:
    """Instantiate the worker server with health, dispose and session routes."""

    settings = settings or get_settings()
    supervisor = supervisor or IdleSessionSupervisor(idle_timeout)
    runtime = WorkerRuntime(supervisor, shutdown=shutdown)
    session = supervisor.create_session()

    server = FastMCP(
        name="Slipstream Worker",
        version=__version__,
        instructions=(
            "Slipstream keeps this worker warm between command-line invocations. "
            "Use the session tools to inspect or reset the active session."
        ),
    )

    @server.custom_route(settings.health_path, methods=["GET"])
    async def health(request: Request) -> JSONResponse:
        return JSONResponse(runtime.health_payload())

    @server.custom_route(settings.dispose_path, methods=["POST"])
    async def dispose(request: Request) -> JSONResponse:
        asyncio.get_running_loop().call_later(
            DISPOSE_GRACE_SECONDS, runtime.request_shutdown, "dispose"
        )
        return JSONResponse({"disposed": True})

    @server.custom_route("/session", methods=["GET"])
    async def session_info(request: Request) -> JSONResponse:
        return JSONResponse(runtime.describe_session())

    @server.custom_route("/session/touch", methods=["POST"])
    async def session_touch(request: Request) -> JSONResponse:
        return JSONResponse(runtime.touch(await _read_session_id(request)))

    @server.custom_route("/session/new", methods=["POST"])
    async def session_new(request: Request) -> JSONResponse:
        return JSONResponse(runtime.new_session(await _read_session_id(request)))

    handles = register_tools(server, runtime=runtime)

    logger.debug("Worker created", extra={"session_id": session.id, "idle_timeout": supervisor.idle_timeout})

    setattr(server, "runtime", runtime)
    setattr(server, "tool_handles", handles)
    return server


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Slipstream background worker")
    parser.add_argument("--port", type=int, required=True, help="Port to listen on")
    parser.add_argument("--host", default=DEFAULT_BIND_HOST, help="Interface to bind")
    parser.add_argument(
        "--idle-timeout",
        type=int,
        default=None,
        help="Seconds of inactivity before shutting down (defaults to the user config)",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Entry point for running the worker via CLI."""

    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.log_level)

    preferences = load_user_config(settings.user_config_file)
    idle_timeout = args.idle_timeout or preferences.daemon.idle_timeout

    server = create_worker(settings, idle_timeout=idle_timeout)
    runtime: WorkerRuntime = getattr(server, "runtime")
    details: dict[str, Any] = {
        "version": __version__,
        "port": args.port,
        "idle_timeout": idle_timeout,
    }
    logger.info("Launching Slipstream worker", extra=details)
    try:
        server.run(transport="streamable-http", host=args.host, port=args.port)
    finally:
        runtime.close()
        logger.info("Worker shutdown complete", extra={"reason": runtime.shutdown_reason})


if __name__ == "__main__":
    main()
