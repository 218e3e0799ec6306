"""Persisted lifecycle state for Slipstream."""

from .models import SessionBinding, WorkerRecord
from .store import StateStore

__all__ = ["SessionBinding", "StateStore", "WorkerRecord"]
