"""MCP tool registration for the Slipstream worker."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP

from .runtime import WorkerRuntime

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    session_status: Any
    new_session: Any
    touch_session: Any


def register_tools(server: FastMCP, *, runtime: WorkerRuntime) -> ToolHandles:
    """Register the worker's session tools on the server.

    Every tool call counts as activity and postpones the idle deadline.
    """

    def _session_status(context: Context | None = None) -> dict[str, Any]:
        """Describe the live session and when it will expire."""

        return runtime.touch()

    def _new_session(session_id: str | None = None, context: Context | None = None) -> dict[str, Any]:
        """Replace the live session with a fresh one."""

        payload = runtime.new_session(session_id)
        logger.info("Session replaced via tool", extra={"session_id": payload.get("id")})
        return payload

    def _touch_session(context: Context | None = None) -> dict[str, Any]:
        """Mark the session as active without doing any other work."""

        return runtime.touch()

    tool_status = server.tool(
        name="session_status",
        description="Describe the worker's live session and its idle deadline.",
    )(_session_status)

    tool_new = server.tool(
        name="new_session",
        description="Start a new session, discarding the current one.",
    )(_new_session)

    tool_touch = server.tool(
        name="touch_session",
        description="Record activity so the worker does not shut down for idleness.",
    )(_touch_session)

    return ToolHandles(
        session_status=tool_status,
        new_session=tool_new,
        touch_session=tool_touch,
    )


__all__ = ["ToolHandles", "register_tools"]
