"""Worker-side idle tracking for the single live session."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable
from uuid import uuid4

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class IdleSession:
    id: str
    created_at: datetime
    last_active_at: datetime


class IdleSessionSupervisor:
    """Fire an eviction callback once the session has been idle long enough.

    The deadline is measured from the last ``touch()``. Every re-arm bumps a
    generation counter so a timer that was already running when it got
    cancelled cannot fire its callback.
    """

    def __init__(
        self,
        idle_timeout_seconds: float = 3600,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if idle_timeout_seconds <= 0:
            raise ValueError("idle_timeout_seconds must be > 0")
        self._idle_timeout = float(idle_timeout_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._session: IdleSession | None = None
        self._timer: threading.Timer | None = None
        self._generation = 0
        self._callback: Callable[[], None] | None = None
        self._destroyed = False

    @property
    def idle_timeout(self) -> float:
        return self._idle_timeout

    @property
    def current_session(self) -> IdleSession | None:
        return self._session

    @property
    def deadline(self) -> datetime | None:
        session = self._session
        if session is None:
            return None
        return session.last_active_at + timedelta(seconds=self._idle_timeout)

    def create_session(self, session_id: str | None = None) -> IdleSession:
        now = self._clock()
        with self._lock:
            if self._destroyed:
                raise RuntimeError("Supervisor has been destroyed")
            self._session = IdleSession(
                id=session_id or self._generate_session_id(),
                created_at=now,
                last_active_at=now,
            )
            self._arm_locked()
            session = self._session
        logger.info("Session created", extra={"session_id": session.id, "idle_timeout": self._idle_timeout})
        return session

    def touch(self) -> bool:
        """Record activity; returns False when there is no live session."""

        now = self._clock()
        with self._lock:
            if self._destroyed or self._session is None:
                return False
            if now > self._session.last_active_at:
                self._session.last_active_at = now
            self._arm_locked()
        return True

    def on_idle(self, callback: Callable[[], None]) -> None:
        self._callback = callback

    def destroy(self) -> None:
        with self._lock:
            self._destroyed = True
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._session = None

    def _arm_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._generation += 1
        timer = threading.Timer(self._idle_timeout, self._expire, args=(self._generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _expire(self, generation: int) -> None:
        with self._lock:
            if self._destroyed or generation != self._generation:
                return
            session = self._session
            self._session = None
            self._timer = None
            self._generation += 1
            callback = self._callback

        logger.info("Idle timeout reached", extra={"session_id": session.id if session else None})
        if callback is not None:
            callback()

    @staticmethod
    def _generate_session_id() -> str:
        return f"session-{int(time.time() * 1000)}-{uuid4().hex[:9]}"


__all__ = ["IdleSession", "IdleSessionSupervisor"]
