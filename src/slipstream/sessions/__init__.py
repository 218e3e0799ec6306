"""Terminal session binding and worker-side idle tracking."""

from .binder import SessionBinder, current_terminal, display_name, session_id_from_terminal
from .idle import IdleSession, IdleSessionSupervisor

__all__ = [
    "IdleSession",
    "IdleSessionSupervisor",
    "SessionBinder",
    "current_terminal",
    "display_name",
    "session_id_from_terminal",
]
