"""The long-lived worker process the CLI attaches to."""

from .app import create_worker, main
from .runtime import WorkerRuntime

__all__ = ["WorkerRuntime", "create_worker", "main"]
