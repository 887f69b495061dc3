from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


FollowupStep = Literal["5m", "24h", "3d"]
FollowupStatus = Literal["pending", "sent", "failed", "paused", "canceled"]
FollowupAction = Literal["pause", "resume", "cancel"]


class FollowupJobRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    contact_id: UUID
    step: FollowupStep | str
    status: FollowupStatus | str
    scheduled_at: datetime
    processed_at: datetime | None
    attempts: int
    error: str | None


class FollowupActionRequest(BaseModel):
    action: FollowupAction


class FollowupActionResult(BaseModel):
    ok: bool = True
    action: FollowupAction
    affected: int


class FollowupSettingsRead(BaseModel):
    tenant_id: str
    enabled: bool
    step_5m_template: str
    step_24h_template: str
    step_3d_template: str


class FollowupSettingsUpdate(BaseModel):
    enabled: bool | None = None
    step_5m_template: str | None = Field(default=None, min_length=1, max_length=1000)
    step_24h_template: str | None = Field(default=None, min_length=1, max_length=1000)
    step_3d_template: str | None = Field(default=None, min_length=1, max_length=1000)


class FollowupProcessResult(BaseModel):
    processed: int = 0
    sent: int = 0
    failed: int = 0
    retried: int = 0
    skipped: int = 0
