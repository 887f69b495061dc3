from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from leadops.billing.schemas import SeatCapacityAlertRead, SeatUsageRead


MemberRole = Literal["owner", "manager", "assistant", "broker"]
InviteRole = Literal["broker", "assistant", "manager"]


class MemberRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    full_name: str | None
    email: str | None
    role: MemberRole | str
    is_active: bool
    last_lead_assigned_at: datetime | None
    created_at: datetime


class InviteCreate(BaseModel):
    email: EmailStr
    role: InviteRole = "broker"


class InviteRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    email: str
    role: str
    status: str
    token: str
    expires_at: datetime
    created_at: datetime


class InviteAccept(BaseModel):
    full_name: str | None = Field(default=None, max_length=255)


class MemberStatusUpdate(BaseModel):
    user_id: str = Field(min_length=1, max_length=128)
    is_active: bool


class MemberStatusResult(BaseModel):
    ok: bool = True
    unchanged: bool = False
    member: MemberRead


class TeamOverviewRead(BaseModel):
    members: list[MemberRead] = Field(default_factory=list)
    pending_invites: list[InviteRead] = Field(default_factory=list)
    usage: SeatUsageRead
    alert: SeatCapacityAlertRead | None = None
