"""Error taxonomy for the worker lifecycle."""

from __future__ import annotations

from pathlib import Path


class LifecycleError(RuntimeError):
    """Base class for worker lifecycle errors surfaced to the caller."""


class NoPortAvailableError(LifecycleError):
    """Raised when the port allocator exhausts its scan budget."""

    def __init__(self, start: int, attempts: int) -> None:
        self.start = start
        self.attempts = attempts
        end = start + max(attempts - 1, 0)
        super().__init__(f"No available port found in range {start}-{end} ({attempts} attempts)")


class StartupTimeoutError(LifecycleError):
    """Raised when a spawned worker never reports healthy within the wait budget."""

    def __init__(self, port: int, waited: float) -> None:
        self.port = port
        self.waited = waited
        super().__init__(f"Worker on port {port} failed to become healthy within {waited:.1f}s")


class ProcessSpawnFailedError(LifecycleError):
    """Raised when the operating system refuses to launch the worker."""


class StateCorruptError(RuntimeError):
    """Raised internally when a persisted state file cannot be decoded.

    Never escapes the state store: readers treat it as "no state".
    """

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        super().__init__(f"Unreadable state file {path}: {reason}")


__all__ = [
    "LifecycleError",
    "NoPortAvailableError",
    "ProcessSpawnFailedError",
    "StartupTimeoutError",
    "StateCorruptError",
]
