from __future__ import annotations

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field


LeadSource = Literal["site", "portal_zap", "portal_olx", "portal_imovelweb", "email_capture", "whatsapp"]
DistributionMode = Literal["round_robin"]


class LeadWebhookPayload(BaseModel):
    source: LeadSource | None = None
    external_id: str | None = Field(default=None, min_length=1, max_length=200)
    name: str = Field(min_length=1, max_length=120)
    phone: str = Field(min_length=4, max_length=80)
    email: EmailStr | None = None
    message: str | None = Field(default=None, max_length=2000)
    property_id: UUID | None = None


class LeadWebhookResponse(BaseModel):
    contact_id: UUID


class WhatsAppWebhookResponse(BaseModel):
    ok: bool = True
    received: int
    ingested: int
    skipped: int
    contacts: list[UUID] = Field(default_factory=list)


class DistributionSettingsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    enabled: bool
    mode: DistributionMode | str
    sla_minutes: int
    redistribute_overdue: bool


class DistributionSettingsUpdate(BaseModel):
    enabled: bool | None = None
    mode: DistributionMode | None = None
    sla_minutes: int | None = Field(default=None, ge=1, le=1440)
    redistribute_overdue: bool | None = None


class RedistributionResult(BaseModel):
    checked: int = 0
    reassigned: int = 0
    skipped: int = 0
