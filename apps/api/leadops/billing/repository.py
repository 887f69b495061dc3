from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Select, select, update
from sqlalchemy.orm import Session

from leadops.billing.models import SeatPlan, SeatPlanChange

OUTSTANDING_DOWNGRADE_STATUSES = ("scheduled", "blocked")


class SeatPlanRepository:
    def get(self, session: Session, tenant_id: str) -> SeatPlan | None:
        return session.scalar(select(SeatPlan).where(SeatPlan.tenant_id == tenant_id))

    @staticmethod
    def locked_plan_query(tenant_id: str) -> Select[tuple[SeatPlan]]:
        return (
            select(SeatPlan)
            .where(SeatPlan.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )

    def get_for_update(self, session: Session, tenant_id: str) -> SeatPlan | None:
        """Load the plan row locked until the caller's transaction ends; seat checks serialize on it."""
        return session.scalar(self.locked_plan_query(tenant_id))

    def add(self, session: Session, plan: SeatPlan) -> SeatPlan:
        session.add(plan)
        session.flush()
        return plan


class SeatPlanChangeRepository:
    def get(self, session: Session, change_id: uuid.UUID) -> SeatPlanChange | None:
        return session.get(SeatPlanChange, change_id)

    def add(self, session: Session, change: SeatPlanChange) -> SeatPlanChange:
        session.add(change)
        session.flush()
        return change

    def get_outstanding_downgrade(self, session: Session, tenant_id: str) -> SeatPlanChange | None:
        return session.scalar(
            select(SeatPlanChange)
            .where(
                SeatPlanChange.tenant_id == tenant_id,
                SeatPlanChange.action == "downgrade",
                SeatPlanChange.status.in_(OUTSTANDING_DOWNGRADE_STATUSES),
            )
            .order_by(SeatPlanChange.effective_at.asc())
            .limit(1)
        )

    def list_recent(self, session: Session, tenant_id: str, limit: int = 10) -> list[SeatPlanChange]:
        return list(
            session.scalars(
                select(SeatPlanChange)
                .where(SeatPlanChange.tenant_id == tenant_id)
                .order_by(SeatPlanChange.created_at.desc(), SeatPlanChange.id.desc())
                .limit(limit)
            )
        )

    def list_due_downgrade_ids(
        self, session: Session, *, now: datetime, limit: int, tenant_id: str | None = None
    ) -> list[uuid.UUID]:
        stmt = select(SeatPlanChange.id).where(
            SeatPlanChange.action == "downgrade",
            SeatPlanChange.status.in_(OUTSTANDING_DOWNGRADE_STATUSES),
            SeatPlanChange.effective_at <= now,
        )
        if tenant_id is not None:
            stmt = stmt.where(SeatPlanChange.tenant_id == tenant_id)
        # changes never evaluated first, then the least recently evaluated
        stmt = stmt.order_by(
            SeatPlanChange.last_evaluated_at.asc().nulls_first(),
            SeatPlanChange.effective_at.asc(),
            SeatPlanChange.created_at.asc(),
        ).limit(limit)
        return list(session.scalars(stmt))

    def mark_if_outstanding(self, session: Session, change_id: uuid.UUID, *, status: str, now: datetime) -> bool:
        """Move an outstanding downgrade to ``status``; ``False`` if another sweep got there first."""
        values: dict[str, object] = {"status": status, "last_evaluated_at": now, "updated_at": now}
        if status == "applied":
            values["applied_at"] = now
        result = session.execute(
            update(SeatPlanChange)
            .where(SeatPlanChange.id == change_id, SeatPlanChange.status.in_(OUTSTANDING_DOWNGRADE_STATUSES))
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def cancel_outstanding_downgrades(self, session: Session, tenant_id: str, now: datetime) -> int:
        result = session.execute(
            update(SeatPlanChange)
            .where(
                SeatPlanChange.tenant_id == tenant_id,
                SeatPlanChange.action == "downgrade",
                SeatPlanChange.status.in_(OUTSTANDING_DOWNGRADE_STATUSES),
            )
            .values(status="canceled", last_evaluated_at=now, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)
