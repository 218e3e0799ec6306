"""Loading of user preferences from disk."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import UserConfig

logger = logging.getLogger(__name__)


class UserConfigError(RuntimeError):
    """Raised when the user config file cannot be parsed or validated."""


class UserConfigLoader:
    """Loads :class:`UserConfig` from a YAML (or JSON) file."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> UserConfig:
        """Parse the config file.

        A missing or empty file yields the defaults; anything unreadable raises
        :class:`UserConfigError`.
        """

        if not self._path.exists():
            return UserConfig()

        try:
            document = yaml.safe_load(self._path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            raise UserConfigError(f"Failed to read config in {self._path}: {exc}") from exc

        if document is None:
            return UserConfig()
        if not isinstance(document, dict):
            raise UserConfigError(f"Config in {self._path} must be a mapping")

        try:
            return UserConfig.model_validate(document)
        except ValidationError as exc:
            raise UserConfigError(f"Config validation error in {self._path}: {exc}") from exc


def load_user_config(path: Path) -> UserConfig:
    """Return the user config, falling back to defaults when it is invalid."""

    try:
        return UserConfigLoader(path).load()
    except UserConfigError as exc:
        logger.warning("Ignoring invalid user config", extra={"path": str(path), "error": str(exc)})
        return UserConfig()


__all__ = ["UserConfigError", "UserConfigLoader", "load_user_config"]
