from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from leadops.core.database import Base
from leadops.platform.timeutils import utcnow


class SeatPlan(Base):
    __tablename__ = "seat_plan"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    broker_seat_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    billing_interval: Mapped[str] = mapped_column(String(16), nullable=False, default="monthly", server_default="monthly")
    cycle_anchor_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False, default="BRL", server_default="BRL")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (UniqueConstraint("tenant_id", name="uq_seat_plan_tenant"),)


class SeatPlanChange(Base):
    __tablename__ = "seat_plan_change"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    old_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    new_limit: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    effective_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_evaluated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    seats_delta: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    prorated_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    cycle_total_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cycle_remaining_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False, default="BRL", server_default="BRL")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    requested_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_seat_plan_change_status_effective", "status", "effective_at"),
        Index("ix_seat_plan_change_tenant_created", "tenant_id", "created_at"),
    )
