"""JSON-file persistence for the worker record and session bindings."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from pydantic import ValidationError

from ..config import SlipstreamSettings
from ..errors import StateCorruptError
from .models import SessionBinding, WorkerRecord

logger = logging.getLogger(__name__)


class StateStore:
    """Reads and writes the small state files shared by CLI invocations.

    Writes go to a temporary file in the target directory and are renamed into
    place, so readers never observe a partial document. Any unreadable or
    invalid file reads as absent.
    """

    def __init__(
        self,
        state_file: Path,
        sessions_file: Path,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._state_file = Path(state_file)
        self._sessions_file = Path(sessions_file)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(cls, settings: SlipstreamSettings) -> "StateStore":
        return cls(settings.state_file, settings.sessions_file)

    @property
    def state_file(self) -> Path:
        return self._state_file

    @property
    def sessions_file(self) -> Path:
        return self._sessions_file

    def load_worker(self) -> WorkerRecord | None:
        try:
            document = self._read_json(self._state_file)
        except StateCorruptError as exc:
            logger.warning("Discarding corrupt worker state", extra={"path": str(exc.path), "error": str(exc)})
            return None
        if document is None:
            return None

        try:
            return WorkerRecord.model_validate(document)
        except ValidationError as exc:
            logger.warning(
                "Discarding invalid worker state",
                extra={"path": str(self._state_file), "error": str(exc)},
            )
            return None

    def save_worker(self, record: WorkerRecord) -> None:
        try:
            self._write_json(self._state_file, record.to_json())
        except OSError as exc:
            logger.warning(
                "Failed to persist worker state",
                extra={"path": str(self._state_file), "port": record.port, "error": str(exc)},
            )

    def clear_worker(self) -> None:
        try:
            self._state_file.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to clear worker state", extra={"path": str(self._state_file), "error": str(exc)})

    def load_bindings(self) -> dict[str, SessionBinding]:
        try:
            document = self._read_json(self._sessions_file)
        except StateCorruptError as exc:
            logger.warning("Discarding corrupt session bindings", extra={"path": str(exc.path), "error": str(exc)})
            return {}
        if not isinstance(document, dict):
            return {}

        bindings: dict[str, SessionBinding] = {}
        for terminal_key, entry in document.items():
            if not isinstance(entry, dict):
                continue
            try:
                bindings[terminal_key] = SessionBinding.model_validate({**entry, "terminal_key": terminal_key})
            except ValidationError:
                logger.debug("Skipping invalid session binding", extra={"terminal_key": terminal_key})
        return bindings

    def get_binding(self, terminal_key: str) -> SessionBinding | None:
        return self.load_bindings().get(terminal_key)

    def record_binding(self, terminal_key: str, session_id: str) -> SessionBinding:
        """Create or refresh the binding for ``terminal_key``."""

        bindings = self.load_bindings()
        binding = SessionBinding(
            terminal_key=terminal_key,
            session_id=session_id,
            updated_at=self._clock(),
        )
        bindings[terminal_key] = binding
        payload = {key: value.to_json() for key, value in bindings.items()}
        try:
            self._write_json(self._sessions_file, payload)
        except OSError as exc:
            logger.warning(
                "Failed to persist session binding",
                extra={"path": str(self._sessions_file), "terminal_key": terminal_key, "error": str(exc)},
            )
        return binding

    @staticmethod
    def _read_json(path: Path) -> Any:
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise StateCorruptError(path, str(exc)) from exc
        try:
            return json.loads(content)
        except ValueError as exc:
            raise StateCorruptError(path, str(exc)) from exc

    @staticmethod
    def _write_json(path: Path, payload: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", delete=False, dir=str(path.parent), prefix=f".{path.name}.", encoding="utf-8"
        ) as tmp:
            json.dump(payload, tmp, indent=2)
            tmp.flush()
            os.fsync(tmp.fileno())
            tmp_name = tmp.name
        try:
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise


__all__ = ["StateStore"]
