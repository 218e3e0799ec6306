"""Worker discovery, spawning and teardown."""

from .launcher import FakeWorkerLauncher, SpawnedWorker, WorkerLauncher, terminate_workers
from .orchestrator import StopOutcome, WorkerOrchestrator, WorkerState, WorkerStatus
from .ports import find_available_port
from .probes import (
    HealthResult,
    WorkerProbe,
    can_bind_port,
    check_health,
    graceful_dispose,
    is_port_open,
)

__all__ = [
    "FakeWorkerLauncher",
    "HealthResult",
    "SpawnedWorker",
    "StopOutcome",
    "WorkerLauncher",
    "WorkerOrchestrator",
    "WorkerProbe",
    "WorkerState",
    "WorkerStatus",
    "can_bind_port",
    "check_health",
    "find_available_port",
    "graceful_dispose",
    "is_port_open",
    "terminate_workers",
]
