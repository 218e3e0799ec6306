"""Configuration management for Slipstream."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_DIR = Path("~/.config/slipstream")
STATE_FILE_NAME = "server-state.json"
SESSIONS_FILE_NAME = "sessions.json"
USER_CONFIG_FILE_NAME = "config.yaml"


class SlipstreamSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    config_dir: Path = Field(default=DEFAULT_CONFIG_DIR, validation_alias="SLIPSTREAM_CONFIG_DIR")
    cache_dir: Path | None = Field(default=None, validation_alias="SLIPSTREAM_CACHE_DIR")
    log_level: str = Field(default="WARNING", validation_alias="SLIPSTREAM_LOG_LEVEL")

    health_path: str = Field(default="/global/health", validation_alias="SLIPSTREAM_HEALTH_PATH")
    dispose_path: str = Field(default="/instance/dispose", validation_alias="SLIPSTREAM_DISPOSE_PATH")
    health_timeout: float = Field(default=2.0, validation_alias="SLIPSTREAM_HEALTH_TIMEOUT")
    port_probe_timeout: float = Field(default=0.5, validation_alias="SLIPSTREAM_PORT_PROBE_TIMEOUT")

    startup_timeout: float = Field(default=10.0, validation_alias="SLIPSTREAM_STARTUP_TIMEOUT")
    poll_interval: float = Field(default=0.5, validation_alias="SLIPSTREAM_POLL_INTERVAL")
    poll_probe_timeout: float = Field(default=1.0, validation_alias="SLIPSTREAM_POLL_PROBE_TIMEOUT")
    restart_delay: float = Field(default=1.0, validation_alias="SLIPSTREAM_RESTART_DELAY")
    port_scan_attempts: int = Field(default=100, validation_alias="SLIPSTREAM_PORT_SCAN_ATTEMPTS")

    # The attach command is an opencode client. Pair it with
    # SLIPSTREAM_WORKER_COMMAND="opencode serve" to attach to a real opencode
    # server; the bundled worker only serves lifecycle and session endpoints.
    worker_command: str | None = Field(default=None, validation_alias="SLIPSTREAM_WORKER_COMMAND")
    worker_match: str | None = Field(default=None, validation_alias="SLIPSTREAM_WORKER_MATCH")
    attach_command: str = Field(
        default="opencode run --attach {url} --agent {agent}",
        validation_alias="SLIPSTREAM_ATTACH_COMMAND",
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "SLIPSTREAM_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("health_path", "dispose_path")
    @classmethod
    def _normalize_endpoint_path(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Worker endpoint paths must not be empty")
        if not normalized.startswith("/"):
            normalized = "/" + normalized
        return normalized

    @field_validator(
        "health_timeout",
        "port_probe_timeout",
        "startup_timeout",
        "poll_interval",
        "poll_probe_timeout",
    )
    @classmethod
    def _validate_positive_duration(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeouts and intervals must be > 0 seconds")
        return value

    @field_validator("restart_delay")
    @classmethod
    def _validate_restart_delay(cls, value: float) -> float:
        if value < 0:
            raise ValueError("SLIPSTREAM_RESTART_DELAY must be >= 0")
        return value

    @field_validator("port_scan_attempts")
    @classmethod
    def _validate_port_scan_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("SLIPSTREAM_PORT_SCAN_ATTEMPTS must be >= 1")
        return value

    @property
    def resolved_cache_dir(self) -> Path:
        return self.cache_dir if self.cache_dir is not None else self.config_dir / "cache"

    @property
    def state_file(self) -> Path:
        return self.resolved_cache_dir / STATE_FILE_NAME

    @property
    def sessions_file(self) -> Path:
        return self.resolved_cache_dir / SESSIONS_FILE_NAME

    @property
    def user_config_file(self) -> Path:
        return self.config_dir / USER_CONFIG_FILE_NAME


@lru_cache(maxsize=1)
def get_settings() -> SlipstreamSettings:
    """Return cached settings instance."""

    settings = SlipstreamSettings()
    settings.config_dir = settings.config_dir.expanduser().resolve()
    if settings.cache_dir is not None:
        settings.cache_dir = settings.cache_dir.expanduser().resolve()
    return settings


__all__ = ["SlipstreamSettings", "get_settings"]
