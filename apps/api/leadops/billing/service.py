from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadops.billing.models import SeatPlan, SeatPlanChange
from leadops.billing.repository import SeatPlanChangeRepository, SeatPlanRepository
from leadops.billing.schemas import (
    BillingCycleRead,
    SeatCapacityAlertRead,
    SeatChangeRequest,
    SeatChangeResponse,
    SeatOverviewRead,
    SeatPlanChangeRead,
    SeatPlanRead,
    SeatSweepResult,
    SeatUsageRead,
)
from leadops.billing.seats import (
    BillingCycle,
    SeatUsage,
    calculate_upgrade_proration,
    compute_current_billing_cycle,
    compute_seat_usage,
    get_seat_capacity_alert,
)
from leadops.core.config import get_settings
from leadops.metrics import observe_seat_downgrades
from leadops.platform.audit import AuditEntry, AuditTrail
from leadops.platform.errors import BusinessRuleError, ValidationFailure
from leadops.platform.security import AuthContext, AuthorizationError, can_manage_billing
from leadops.platform.timeutils import utcnow
from leadops.team.repository import AgentProfileRepository

logger = logging.getLogger("leadops.billing")


@dataclass(slots=True)
class SeatBillingService:
    plan_repository: SeatPlanRepository = SeatPlanRepository()
    change_repository: SeatPlanChangeRepository = SeatPlanChangeRepository()
    agent_repository: AgentProfileRepository = AgentProfileRepository()
    audit: AuditTrail = field(default_factory=AuditTrail)

    def ensure_plan(self, session: Session, tenant_id: str) -> SeatPlan:
        plan = self.plan_repository.get(session, tenant_id)
        if plan is not None:
            return plan
        settings = get_settings()
        return self.plan_repository.add(
            session,
            SeatPlan(
                tenant_id=tenant_id,
                broker_seat_limit=settings.default_broker_seat_limit,
                billing_interval="monthly",
                cycle_anchor_at=utcnow(),
                currency_code=settings.default_currency_code,
            ),
        )

    def get_usage(self, session: Session, tenant_id: str) -> SeatUsage:
        plan = self.ensure_plan(session, tenant_id)
        used = self.agent_repository.count_active_brokers(session, tenant_id)
        return compute_seat_usage(used, plan.broker_seat_limit)

    def lock_usage(self, session: Session, tenant_id: str) -> SeatUsage:
        """Seat usage counted while holding the tenant's plan row lock.

        Callers that activate a broker or lower the limit must write inside the
        same transaction; the lock is released on commit or rollback.
        """
        plan = self.plan_repository.get_for_update(session, tenant_id)
        if plan is None:
            self.ensure_plan(session, tenant_id)
            plan = self.plan_repository.get_for_update(session, tenant_id)
        used = self.agent_repository.count_active_brokers(session, tenant_id)
        return compute_seat_usage(used, plan.broker_seat_limit)

    def get_overview(self, session: Session, ctx: AuthContext, *, now: datetime | None = None) -> SeatOverviewRead:
        self._require_billing_role(ctx)
        plan = self.ensure_plan(session, ctx.tenant_id)
        session.commit()

        usage = self.get_usage(session, ctx.tenant_id)
        cycle = compute_current_billing_cycle(plan.cycle_anchor_at, plan.billing_interval, now)
        alert = get_seat_capacity_alert(usage, get_settings().seat_alert_threshold)
        pending = self.change_repository.get_outstanding_downgrade(session, ctx.tenant_id)
        history = self.change_repository.list_recent(session, ctx.tenant_id, limit=10)
        return SeatOverviewRead(
            plan=SeatPlanRead.model_validate(plan),
            usage=SeatUsageRead(**usage.as_dict()),
            cycle=self._cycle_read(cycle),
            alert=SeatCapacityAlertRead(level=alert.level, threshold=alert.threshold, message=alert.message) if alert else None,
            pending_change=SeatPlanChangeRead.model_validate(pending) if pending else None,
            history=[SeatPlanChangeRead.model_validate(item) for item in history],
        )

    def request_change(
        self,
        session: Session,
        ctx: AuthContext,
        payload: SeatChangeRequest,
        *,
        now: datetime | None = None,
    ) -> SeatChangeResponse:
        self._require_billing_role(ctx)
        current_time = now or utcnow()
        usage = self.lock_usage(session, ctx.tenant_id)
        plan = self.ensure_plan(session, ctx.tenant_id)
        current_limit = plan.broker_seat_limit
        cycle = compute_current_billing_cycle(plan.cycle_anchor_at, plan.billing_interval, current_time)
        unit_price_cents = payload.unit_price_cents if payload.unit_price_cents is not None else plan.unit_price_cents
        currency_code = (payload.currency_code or plan.currency_code or get_settings().default_currency_code).upper()
        notes = (payload.notes or "").strip() or None

        if payload.action == "upgrade":
            if payload.new_limit <= current_limit:
                raise ValidationFailure("upgrade requires a new limit greater than the current limit")
            proration = calculate_upgrade_proration(
                old_limit=current_limit,
                new_limit=payload.new_limit,
                unit_price_cents=unit_price_cents,
                cycle_total_days=cycle.total_days,
                cycle_remaining_days=cycle.remaining_days,
            )
            plan.broker_seat_limit = payload.new_limit
            canceled = self.change_repository.cancel_outstanding_downgrades(session, ctx.tenant_id, current_time)
            change = self.change_repository.add(
                session,
                SeatPlanChange(
                    tenant_id=ctx.tenant_id,
                    action="upgrade",
                    status="applied",
                    old_limit=current_limit,
                    new_limit=payload.new_limit,
                    effective_at=current_time,
                    applied_at=current_time,
                    seats_delta=proration.seats_delta,
                    unit_price_cents=proration.unit_price_cents,
                    prorated_amount_cents=proration.prorated_amount_cents,
                    cycle_total_days=proration.total_days,
                    cycle_remaining_days=proration.remaining_days,
                    currency_code=currency_code,
                    notes=notes,
                    requested_by=ctx.user_id,
                ),
            )
            session.commit()
            self.audit.dispatch(
                session,
                AuditEntry(
                    tenant_id=ctx.tenant_id,
                    actor_id=ctx.user_id,
                    target_id=str(change.id),
                    action="seat_upgrade_applied",
                    message="Seat upgrade applied with proration.",
                    metadata={
                        "old_limit": current_limit,
                        "new_limit": payload.new_limit,
                        "prorated_amount_cents": proration.prorated_amount_cents,
                        "currency_code": currency_code,
                        "canceled_downgrades": canceled,
                    },
                ),
            )
            return SeatChangeResponse(
                mode="upgrade_applied",
                change=SeatPlanChangeRead.model_validate(change),
                usage=SeatUsageRead(**compute_seat_usage(usage.used, payload.new_limit).as_dict()),
            )

        if payload.new_limit >= current_limit:
            raise ValidationFailure("downgrade requires a new limit lower than the current limit")
        if self.change_repository.get_outstanding_downgrade(session, ctx.tenant_id) is not None:
            raise BusinessRuleError("downgrade_already_scheduled", "A downgrade is already scheduled for this cycle.")

        change = self.change_repository.add(
            session,
            SeatPlanChange(
                tenant_id=ctx.tenant_id,
                action="downgrade",
                status="scheduled",
                old_limit=current_limit,
                new_limit=payload.new_limit,
                effective_at=cycle.end,
                seats_delta=0,
                unit_price_cents=unit_price_cents,
                prorated_amount_cents=0,
                cycle_total_days=cycle.total_days,
                cycle_remaining_days=cycle.remaining_days,
                currency_code=currency_code,
                notes=notes,
                requested_by=ctx.user_id,
            ),
        )
        session.commit()
        self.audit.dispatch(
            session,
            AuditEntry(
                tenant_id=ctx.tenant_id,
                actor_id=ctx.user_id,
                target_id=str(change.id),
                action="seat_downgrade_scheduled",
                message="Seat downgrade scheduled for the next billing cycle.",
                metadata={
                    "old_limit": current_limit,
                    "new_limit": payload.new_limit,
                    "effective_at": cycle.end.isoformat(),
                    "active_brokers": usage.used,
                },
            ),
        )
        return SeatChangeResponse(
            mode="downgrade_scheduled",
            change=SeatPlanChangeRead.model_validate(change),
            usage=SeatUsageRead(**usage.as_dict()),
        )

    def apply_due_downgrades(
        self,
        session: Session,
        *,
        limit: int,
        tenant_id: str | None = None,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> SeatSweepResult:
        current_time = now or utcnow()
        result = SeatSweepResult()

        for change_id in self.change_repository.list_due_downgrade_ids(
            session, now=current_time, limit=limit, tenant_id=tenant_id
        ):
            result.scanned += 1
            try:
                outcome, entry = self._evaluate_downgrade(session, change_id, current_time, actor_id)
            except SQLAlchemyError as exc:
                # left untouched for the next sweep
                session.rollback()
                result.skipped += 1
                logger.warning(
                    "billing.downgrade.item_failed",
                    extra={"change_id": str(change_id), "error": str(exc)[:500]},
                )
                continue
            if outcome == "blocked":
                result.blocked += 1
            elif outcome == "applied":
                result.applied += 1
            if entry is not None:
                self.audit.dispatch(session, entry)

        observe_seat_downgrades(result.applied, result.blocked)
        return result

    def _evaluate_downgrade(
        self, session: Session, change_id: uuid.UUID, now: datetime, actor_id: str | None
    ) -> tuple[str | None, AuditEntry | None]:
        """Block or apply one due downgrade. Only the move into ``blocked`` is audited."""
        change = self.change_repository.get(session, change_id)
        if change is None or change.status not in ("scheduled", "blocked"):
            return None, None
        plan = self.plan_repository.get_for_update(session, change.tenant_id)
        if plan is None:
            return None, None

        tenant_id = change.tenant_id
        new_limit = change.new_limit
        was_blocked = change.status == "blocked"
        used = self.agent_repository.count_active_brokers(session, tenant_id)

        if used > new_limit:
            if not self.change_repository.mark_if_outstanding(session, change_id, status="blocked", now=now):
                session.rollback()
                return None, None
            session.commit()
            if was_blocked:
                return "blocked", None
            return "blocked", AuditEntry(
                tenant_id=tenant_id,
                actor_id=actor_id,
                target_id=str(change_id),
                action="seat_downgrade_blocked",
                level="warning",
                message="Seat downgrade blocked: active brokers exceed the new limit.",
                metadata={"change_id": str(change_id), "used": used, "new_limit": new_limit},
            )

        if not self.change_repository.mark_if_outstanding(session, change_id, status="applied", now=now):
            session.rollback()
            return None, None
        old_limit = plan.broker_seat_limit
        plan.broker_seat_limit = new_limit
        session.commit()
        return "applied", AuditEntry(
            tenant_id=tenant_id,
            actor_id=actor_id,
            target_id=str(change_id),
            action="seat_downgrade_applied",
            level="info",
            message="Scheduled seat downgrade applied.",
            metadata={"change_id": str(change_id), "used": used, "old_limit": old_limit, "new_limit": new_limit},
        )

    @staticmethod
    def _require_billing_role(ctx: AuthContext) -> None:
        if not can_manage_billing(ctx.role):
            raise AuthorizationError("only owner or manager may manage seats")

    @staticmethod
    def _cycle_read(cycle: BillingCycle) -> BillingCycleRead:
        return BillingCycleRead(
            start=cycle.start,
            end=cycle.end,
            interval=cycle.interval,
            total_days=cycle.total_days,
            remaining_days=cycle.remaining_days,
        )


seat_billing_service = SeatBillingService()
