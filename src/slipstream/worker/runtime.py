"""State shared by the worker's HTTP routes and MCP tools."""

from __future__ import annotations

import logging
import os
import signal
import threading
from typing import Any, Callable

from .. import __version__
from ..sessions import IdleSession, IdleSessionSupervisor

logger = logging.getLogger(__name__)


def _terminate_self() -> None:
    os.kill(os.getpid(), signal.SIGTERM)


def _session_payload(session: IdleSession | None, supervisor: IdleSessionSupervisor) -> dict[str, Any]:
    if session is None:
        return {"active": False, "idleTimeout": supervisor.idle_timeout}
    deadline = supervisor.deadline
    return {
        "active": True,
        "id": session.id,
        "createdAt": session.created_at.isoformat(),
        "lastActiveAt": session.last_active_at.isoformat(),
        "expiresAt": deadline.isoformat() if deadline else None,
        "idleTimeout": supervisor.idle_timeout,
    }


class WorkerRuntime:
    """Owns the idle supervisor and the one-shot shutdown trigger."""

    def __init__(
        self,
        supervisor: IdleSessionSupervisor,
        *,
        shutdown: Callable[[], None] | None = None,
    ) -> None:
        self.supervisor = supervisor
        self._shutdown = shutdown or _terminate_self
        self._shutdown_lock = threading.Lock()
        self.shutdown_reason: str | None = None
        supervisor.on_idle(lambda: self.request_shutdown("idle_timeout"))

    @property
    def shutting_down(self) -> bool:
        return self.shutdown_reason is not None

    def health_payload(self) -> dict[str, Any]:
        return {"healthy": not self.shutting_down, "version": __version__}

    def describe_session(self) -> dict[str, Any]:
        return _session_payload(self.supervisor.current_session, self.supervisor)

    def touch(self, session_id: str | None = None) -> dict[str, Any]:
        """Record activity, starting a session if the previous one expired."""

        if not self.supervisor.touch():
            self.supervisor.create_session(session_id)
        return self.describe_session()

    def new_session(self, session_id: str | None = None) -> dict[str, Any]:
        self.supervisor.create_session(session_id)
        return self.describe_session()

    def request_shutdown(self, reason: str) -> bool:
        """Trigger an orderly exit once; later requests are ignored."""

        with self._shutdown_lock:
            if self.shutdown_reason is not None:
                return False
            self.shutdown_reason = reason
        logger.info("Worker shutting down", extra={"reason": reason})
        self._shutdown()
        return True

    def close(self) -> None:
        self.supervisor.destroy()


__all__ = ["WorkerRuntime"]
