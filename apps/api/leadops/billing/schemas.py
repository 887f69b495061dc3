from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


SeatChangeAction = Literal["upgrade", "downgrade"]
SeatChangeStatus = Literal["scheduled", "applied", "blocked", "canceled"]


class SeatPlanRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    broker_seat_limit: int
    billing_interval: str
    cycle_anchor_at: datetime
    unit_price_cents: int
    currency_code: str


class SeatUsageRead(BaseModel):
    used: int
    seat_limit: int
    available: int


class BillingCycleRead(BaseModel):
    start: datetime
    end: datetime
    interval: str
    total_days: int
    remaining_days: int


class SeatCapacityAlertRead(BaseModel):
    level: Literal["warning", "limit"]
    threshold: int
    message: str


class SeatPlanChangeRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    action: SeatChangeAction | str
    status: SeatChangeStatus | str
    old_limit: int
    new_limit: int
    effective_at: datetime
    applied_at: datetime | None
    seats_delta: int
    unit_price_cents: int
    prorated_amount_cents: int
    cycle_total_days: int | None
    cycle_remaining_days: int | None
    currency_code: str
    notes: str | None
    requested_by: str | None
    created_at: datetime


class SeatOverviewRead(BaseModel):
    ok: bool = True
    plan: SeatPlanRead
    usage: SeatUsageRead
    cycle: BillingCycleRead
    alert: SeatCapacityAlertRead | None = None
    pending_change: SeatPlanChangeRead | None = None
    history: list[SeatPlanChangeRead] = Field(default_factory=list)


class SeatChangeRequest(BaseModel):
    action: SeatChangeAction
    new_limit: int = Field(ge=0, le=1_000_000)
    unit_price_cents: int | None = Field(default=None, ge=0, le=10_000_000)
    currency_code: str | None = Field(default=None, pattern=r"^[A-Za-z]{3}$")
    notes: str | None = Field(default=None, max_length=2000)


class SeatChangeResponse(BaseModel):
    ok: bool = True
    mode: Literal["upgrade_applied", "downgrade_scheduled"]
    change: SeatPlanChangeRead
    usage: SeatUsageRead


class SeatSweepResult(BaseModel):
    scanned: int = 0
    applied: int = 0
    blocked: int = 0
    skipped: int = 0
