"""Data models for persisted lifecycle state."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class WorkerRecord(BaseModel):
    """The worker the orchestrator currently trusts."""

    model_config = ConfigDict(populate_by_name=True)

    port: int = Field(..., ge=1, le=65535)
    pid: int | None = Field(default=None, ge=1)
    started_at: datetime | None = Field(default=None, alias="startedAt")

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SessionBinding(BaseModel):
    """Maps a terminal to the session identifier it converses on."""

    model_config = ConfigDict(populate_by_name=True)

    terminal_key: str = Field(..., min_length=1, exclude=True)
    session_id: str = Field(..., min_length=1, alias="sessionId")
    updated_at: datetime = Field(..., alias="updatedAt")

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


__all__ = ["SessionBinding", "WorkerRecord"]
