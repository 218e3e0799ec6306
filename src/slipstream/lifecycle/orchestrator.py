"""Decide whether to attach to, adopt, or spawn the background worker."""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable

from ..config import SlipstreamSettings, get_settings
from ..errors import NoPortAvailableError, ProcessSpawnFailedError, StartupTimeoutError
from ..state import StateStore, WorkerRecord
from .launcher import WorkerLauncher, terminate_workers
from .ports import find_available_port
from .probes import HealthResult, WorkerProbe

logger = logging.getLogger(__name__)


class WorkerState(enum.Enum):
    NO_RECORD = "no_record"
    RECORD_HEALTHY = "record_healthy"
    RECORD_STALE = "record_stale"
    PORT_OCCUPIED_BY_OTHER = "port_occupied_by_other"
    SPAWNING = "spawning"
    READY = "ready"
    FAILED = "failed"


@dataclass(slots=True)
class StopOutcome:
    """How ``stop_worker`` got rid of the worker."""

    port: int | None
    method: str
    terminated: list[int] = field(default_factory=list)

    @property
    def graceful(self) -> bool:
        return self.method == "graceful"


@dataclass(slots=True)
class WorkerStatus:
    record: WorkerRecord | None
    health: HealthResult | None

    @property
    def healthy(self) -> bool:
        return self.health is not None and self.health.healthy


class WorkerOrchestrator:
    """Guarantee that exactly one healthy worker is in use for this invocation.

    The orchestrator holds no state between invocations; everything it knows
    comes from the state store and the probes. The fast path, a healthy
    recorded worker, costs a single health check.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        settings: SlipstreamSettings | None = None,
        probe: WorkerProbe | None = None,
        launcher: WorkerLauncher | None = None,
        terminate: Callable[[str], list[int]] = terminate_workers,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._probe = probe or WorkerProbe.from_settings(self._settings)
        self._launcher = launcher or WorkerLauncher(self._settings.worker_command)
        self._terminate = terminate
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.state = WorkerState.NO_RECORD

    def _transition(self, state: WorkerState, **details) -> None:
        self.state = state
        logger.debug("Worker lifecycle transition", extra={"state": state.value, **details})

    @property
    def worker_match(self) -> str:
        return self._settings.worker_match or self._launcher.match_pattern

    async def ensure_worker(self, preferred_port: int) -> int:
        """Return the port of a healthy worker, spawning one when needed."""

        record = self._store.load_worker()
        if record is not None:
            health = await self._probe.check_health(record.port)
            if health.healthy:
                self._transition(WorkerState.RECORD_HEALTHY, port=record.port)
                self._transition(WorkerState.READY, port=record.port)
                logger.info("Worker healthy", extra={"port": record.port, "version": health.version})
                return record.port

            self._transition(WorkerState.RECORD_STALE, port=record.port)
            logger.warning("Stale worker state, cleaning up", extra={"port": record.port})
            await self._probe.dispose(record.port)
            self._store.clear_worker()

        self._transition(WorkerState.NO_RECORD, port=preferred_port)
        port = preferred_port
        if await self._probe.is_port_open(preferred_port):
            health = await self._probe.check_health(preferred_port)
            if health.healthy:
                self._store.save_worker(WorkerRecord(port=preferred_port))
                self._transition(WorkerState.READY, port=preferred_port)
                logger.info("Adopted running worker", extra={"port": preferred_port, "version": health.version})
                return preferred_port

            self._transition(WorkerState.PORT_OCCUPIED_BY_OTHER, port=preferred_port)
            logger.warning("Preferred port in use, finding alternative", extra={"port": preferred_port})
            try:
                port = await find_available_port(
                    preferred_port + 1,
                    self._settings.port_scan_attempts,
                    is_free=self._probe.is_port_free,
                )
            except NoPortAvailableError:
                self._transition(WorkerState.FAILED, reason="no_port_available")
                raise

        return await self._spawn_and_wait(port)

    async def _spawn_and_wait(self, port: int) -> int:
        self._transition(WorkerState.SPAWNING, port=port)
        try:
            worker = self._launcher.spawn(port)
        except ProcessSpawnFailedError:
            self._transition(WorkerState.FAILED, reason="process_spawn_failed")
            raise

        budget = self._settings.startup_timeout
        deadline = time.monotonic() + budget
        while True:
            remaining = deadline - time.monotonic()
            probe_timeout = max(min(self._settings.poll_probe_timeout, remaining), 0.05)
            health = await self._probe.check_health(port, timeout=probe_timeout)
            if health.healthy:
                self._store.save_worker(WorkerRecord(port=port, pid=worker.pid, started_at=self._clock()))
                self._transition(WorkerState.READY, port=port)
                logger.info("Worker ready", extra={"port": port, "pid": worker.pid, "version": health.version})
                return port

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            await self._sleep(min(self._settings.poll_interval, remaining))

        self._transition(WorkerState.FAILED, reason="startup_timeout")
        raise StartupTimeoutError(port, budget)

    async def stop_worker(self) -> StopOutcome:
        """Stop the worker, gracefully if possible. Never raises."""

        record = self._store.load_worker()
        try:
            if record is not None and await self._probe.dispose(record.port):
                outcome = StopOutcome(port=record.port, method="graceful")
            else:
                pids = await asyncio.to_thread(self._terminate, self.worker_match)
                outcome = StopOutcome(
                    port=record.port if record is not None else None,
                    method="forced" if record is not None else "sweep",
                    terminated=pids,
                )
        finally:
            self._store.clear_worker()

        logger.info(
            "Worker stopped",
            extra={"port": outcome.port, "method": outcome.method, "pids": outcome.terminated},
        )
        return outcome

    async def restart_worker(self, port: int) -> int:
        record = self._store.load_worker()
        if record is not None:
            await self._probe.dispose(record.port)
            self._store.clear_worker()
            await self._sleep(self._settings.restart_delay)
        return await self.ensure_worker(port)

    async def status(self) -> WorkerStatus:
        record = self._store.load_worker()
        if record is None:
            return WorkerStatus(record=None, health=None)
        return WorkerStatus(record=record, health=await self._probe.check_health(record.port))


__all__ = ["StopOutcome", "WorkerOrchestrator", "WorkerState", "WorkerStatus"]
