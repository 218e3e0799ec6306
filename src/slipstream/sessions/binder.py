"""Bind terminals to stable session identifiers."""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Callable

from ..state import SessionBinding, StateStore

logger = logging.getLogger(__name__)

SESSION_PREFIX = "slip"


def session_id_from_terminal(terminal_path: str | None) -> str:
    """Derive the session id for a terminal path.

    Without a terminal the id falls back to the current process id, which is
    unique per invocation but not reused by later ones.
    """

    if not terminal_path or not terminal_path.strip():
        return f"{SESSION_PREFIX}-pid-{os.getpid()}"
    sanitized = terminal_path.strip().replace("/", "_").replace("\\", "_")
    return f"{SESSION_PREFIX}-{sanitized}"


def current_terminal() -> str | None:
    """Return the terminal attached to stdin, if any."""

    try:
        return os.ttyname(sys.stdin.fileno())
    except (AttributeError, OSError, ValueError):
        return None


def display_name(session_id: str) -> str:
    for prefix in (f"{SESSION_PREFIX}-_dev_", f"{SESSION_PREFIX}-"):
        if session_id.startswith(prefix):
            return session_id[len(prefix):]
    return session_id


class SessionBinder:
    """Looks up and refreshes terminal bindings in the state store."""

    def __init__(
        self,
        store: StateStore,
        *,
        terminal_lookup: Callable[[], str | None] = current_terminal,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._terminal_lookup = terminal_lookup
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def bind(self, terminal_path: str | None) -> SessionBinding:
        """Return the binding for ``terminal_path``, refreshing it on disk.

        Without a terminal the pid-based binding is returned but never stored.
        """

        session_id = session_id_from_terminal(terminal_path)
        if not terminal_path or not terminal_path.strip():
            return SessionBinding(terminal_key=session_id, session_id=session_id, updated_at=self._clock())

        key = terminal_path.strip()
        binding = self._store.record_binding(key, session_id)
        logger.debug("Session bound", extra={"terminal_key": key, "session_id": session_id})
        return binding

    def bind_current(self) -> SessionBinding:
        return self.bind(self._terminal_lookup())

    def list_bindings(self) -> list[SessionBinding]:
        bindings = self._store.load_bindings().values()
        return sorted(bindings, key=lambda binding: binding.updated_at, reverse=True)


__all__ = [
    "SESSION_PREFIX",
    "SessionBinder",
    "current_terminal",
    "display_name",
    "session_id_from_terminal",
]
