"""User preference models loaded from the Slipstream config file."""

from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

MIN_IDLE_TIMEOUT_SECONDS = 60
DEFAULT_IDLE_TIMEOUT_SECONDS = 3600
MIN_PORT = 1024
MAX_PORT = 65535
DEFAULT_PORT = 4096


class DaemonPreferences(BaseModel):
    """Where the worker listens and how long it may sit idle."""

    port: int = Field(default=DEFAULT_PORT, ge=MIN_PORT, le=MAX_PORT)
    idle_timeout: int = Field(
        default=DEFAULT_IDLE_TIMEOUT_SECONDS,
        ge=MIN_IDLE_TIMEOUT_SECONDS,
        description="Seconds of inactivity before the worker shuts itself down.",
    )


class UiPreferences(BaseModel):
    verbose: bool = False


class UserConfig(BaseModel):
    """Configuration stored in ``config.yaml`` under the Slipstream config directory."""

    model: str | None = Field(default=None, description="Model passed to the attach command.")
    agent: str = Field(default="slipstream", description="Agent used for prompts.")
    learner_agent: str = Field(default="slipstream/learner", description="Agent used by `slip learn`.")
    daemon: DaemonPreferences = Field(default_factory=DaemonPreferences)
    ui: UiPreferences = Field(default_factory=UiPreferences)

    @field_validator("agent", "learner_agent")
    @classmethod
    def _normalize_agent(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Agent name must not be empty")
        return normalized


__all__ = ["DaemonPreferences", "UiPreferences", "UserConfig"]
