"""Launching and terminating the background worker process."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass
from typing import Callable, Mapping, Sequence

import psutil

from ..errors import ProcessSpawnFailedError

logger = logging.getLogger(__name__)

PORT_PLACEHOLDER = "{port}"
DEFAULT_WORKER_MATCH = "slipstream.worker"
_INTERPRETER_VARS = ("PYTHONHOME", "PYTHONPATH", "VIRTUAL_ENV", "PIP_RESPECT_VIRTUALENV")
DEFAULT_WORKER_COMMAND: tuple[str, ...] = (
    sys.executable,
    "-m",
    "slipstream.worker",
    "--port",
    PORT_PLACEHOLDER,
)


def worker_environment(
    extra: Mapping[str, str] | None = None,
    *,
    keep_python: bool = False,
) -> dict[str, str]:
    """Environment for a worker process.

    A foreign worker binary must not inherit this interpreter's search paths,
    while the bundled worker module needs them to import slipstream.
    """

    env = dict(os.environ)
    if not keep_python:
        for key in _INTERPRETER_VARS:
            env.pop(key, None)
    env.update(extra or {})
    return env


@dataclass(slots=True)
class SpawnedWorker:
    """A worker process that was started and deliberately not waited on."""

    args: tuple[str, ...]
    pid: int
    port: int


class WorkerLauncher:
    """Start the worker as a detached process that outlives the caller."""

    def __init__(
        self,
        command: str | Sequence[str] | None = None,
        *,
        extra_env: Mapping[str, str] | None = None,
    ) -> None:
        self._uses_default = command is None
        self._template = self._resolve_template(command)
        self._extra_env = dict(extra_env or {})

    @staticmethod
    def _resolve_template(command: str | Sequence[str] | None) -> tuple[str, ...]:
        if command is None:
            return DEFAULT_WORKER_COMMAND
        parts = shlex.split(command) if isinstance(command, str) else [str(part) for part in command]
        if not parts:
            raise ProcessSpawnFailedError("Worker command is empty")
        if not any(PORT_PLACEHOLDER in part for part in parts):
            parts.extend(["--port", PORT_PLACEHOLDER])
        return tuple(parts)

    @property
    def template(self) -> tuple[str, ...]:
        return self._template

    @property
    def match_pattern(self) -> str:
        """Command line fragment shared by every worker this launcher starts.

        This is the template up to the port placeholder. The bundled worker
        is matched by its module name.
        """

        if self._uses_default:
            return DEFAULT_WORKER_MATCH
        parts: list[str] = []
        for part in self._template:
            if PORT_PLACEHOLDER in part:
                parts.append(part.split(PORT_PLACEHOLDER, 1)[0])
                break
            parts.append(part)
        return " ".join(parts).strip()

    def command_for(self, port: int) -> list[str]:
        return [part.replace(PORT_PLACEHOLDER, str(port)) for part in self._template]

    def _resolve_executable(self, name: str) -> str:
        binary = shutil.which(name)
        if binary is None:
            raise ProcessSpawnFailedError(f"Worker executable '{name}' not found on PATH")
        return binary

    def spawn(self, port: int) -> SpawnedWorker:
        """Launch the worker on ``port`` in its own session.

        The child is never joined; readiness is observed only through the
        health endpoint.
        """

        cmd = self.command_for(port)
        cmd[0] = self._resolve_executable(cmd[0])
        env = worker_environment(self._extra_env, keep_python=self._uses_default)
        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=env,
                close_fds=True,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            raise ProcessSpawnFailedError(f"Failed to launch worker: {exc}") from exc

        logger.info("Spawned worker", extra={"pid": process.pid, "port": port, "command": cmd})
        return SpawnedWorker(args=tuple(cmd), pid=process.pid, port=port)


class FakeWorkerLauncher(WorkerLauncher):
    """Test double that records spawns instead of launching processes."""

    def __init__(  # type: ignore[override]
        self,
        on_spawn: Callable[[int], None] | None = None,
        *,
        fail_with: Exception | None = None,
    ) -> None:
        self._uses_default = True
        self._template = DEFAULT_WORKER_COMMAND
        self._extra_env = {}
        self._on_spawn = on_spawn
        self._fail_with = fail_with
        self._spawned: list[SpawnedWorker] = []

    def spawn(self, port: int) -> SpawnedWorker:  # type: ignore[override]
        if self._fail_with is not None:
            raise self._fail_with
        worker = SpawnedWorker(args=tuple(self.command_for(port)), pid=40000 + len(self._spawned), port=port)
        self._spawned.append(worker)
        if self._on_spawn is not None:
            self._on_spawn(port)
        return worker

    @property
    def spawned(self) -> list[SpawnedWorker]:
        return self._spawned


def _current_username() -> str | None:
    try:
        return psutil.Process().username()
    except psutil.Error:
        return None


def terminate_workers(pattern: str, *, grace: float = 3.0) -> list[int]:
    """Forcefully stop every process of this user whose command line contains ``pattern``.

    Processes get SIGTERM first and SIGKILL once ``grace`` seconds pass.
    Returns the pids that were signalled. Never raises.
    """

    if not pattern.strip():
        return []

    own_pids = {os.getpid(), os.getppid()}
    username = _current_username()
    targets: list[psutil.Process] = []
    try:
        candidates = list(psutil.process_iter(["pid", "cmdline", "username"]))
    except psutil.Error as exc:
        logger.warning("Process listing failed during termination sweep", extra={"error": str(exc)})
        return []

    for proc in candidates:
        try:
            if proc.pid in own_pids:
                continue
            proc_user = proc.info.get("username")
            if username and proc_user and proc_user != username:
                continue
            cmdline = " ".join(proc.info.get("cmdline") or [])
            if pattern not in cmdline:
                continue
            proc.terminate()
            targets.append(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue

    if not targets:
        return []

    _, alive = psutil.wait_procs(targets, timeout=grace)
    for proc in alive:
        try:
            proc.kill()
        except psutil.Error:
            continue
    if alive:
        psutil.wait_procs(alive, timeout=grace)

    pids = [proc.pid for proc in targets]
    logger.info("Termination sweep finished", extra={"pattern": pattern, "pids": pids, "killed": len(alive)})
    return pids


__all__ = [
    "DEFAULT_WORKER_COMMAND",
    "DEFAULT_WORKER_MATCH",
    "FakeWorkerLauncher",
    "SpawnedWorker",
    "WorkerLauncher",
    "terminate_workers",
    "worker_environment",
]
