from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadops.core.config import get_settings
from leadops.leads.models import Contact, LeadDistributionSettings
from leadops.leads.repository import ContactRepository, DistributionSettingsRepository, OverdueCandidate
from leadops.leads.schemas import DistributionSettingsRead, DistributionSettingsUpdate, RedistributionResult
from leadops.metrics import observe_lead_reassignments
from leadops.platform.audit import AuditEntry, AuditTrail
from leadops.platform.security import AuthContext, AuthorizationError, can_manage_team
from leadops.platform.timeutils import as_utc, utcnow
from leadops.team.models import AgentProfile
from leadops.team.repository import AgentProfileRepository

logger = logging.getLogger("leadops.leads.distribution")

MIN_SLA_MINUTES = 1
MAX_SLA_MINUTES = 1440


def clamp_sla_minutes(value: int | None) -> int:
    if value is None:
        return get_settings().lead_default_sla_minutes
    return max(MIN_SLA_MINUTES, min(MAX_SLA_MINUTES, int(value)))


@dataclass(slots=True)
class LeadDistributionService:
    contact_repository: ContactRepository = ContactRepository()
    agent_repository: AgentProfileRepository = AgentProfileRepository()
    settings_repository: DistributionSettingsRepository = DistributionSettingsRepository()
    audit: AuditTrail = field(default_factory=AuditTrail)

    def resolve_settings(self, session: Session, tenant_id: str) -> DistributionSettingsRead:
        row = self.settings_repository.get(session, tenant_id)
        if row is None:
            return DistributionSettingsRead(
                tenant_id=tenant_id,
                enabled=True,
                mode="round_robin",
                sla_minutes=clamp_sla_minutes(None),
                redistribute_overdue=True,
            )
        return DistributionSettingsRead(
            tenant_id=row.tenant_id,
            enabled=row.enabled,
            mode=row.mode,
            sla_minutes=clamp_sla_minutes(row.sla_minutes),
            redistribute_overdue=row.redistribute_overdue,
        )

    def update_settings(
        self, session: Session, ctx: AuthContext, payload: DistributionSettingsUpdate
    ) -> DistributionSettingsRead:
        if not can_manage_team(ctx.role):
            raise AuthorizationError("only owner or manager may change lead distribution")

        row = self.settings_repository.get(session, ctx.tenant_id)
        if row is None:
            current = self.resolve_settings(session, ctx.tenant_id)
            row = LeadDistributionSettings(
                tenant_id=ctx.tenant_id,
                enabled=current.enabled,
                mode=current.mode,
                sla_minutes=current.sla_minutes,
                redistribute_overdue=current.redistribute_overdue,
            )
            self.settings_repository.add(session, row)

        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        for field_name, value in changes.items():
            setattr(row, field_name, value)
        session.commit()

        self.audit.dispatch(
            session,
            AuditEntry(
                tenant_id=ctx.tenant_id,
                actor_id=ctx.user_id,
                action="lead_distribution_updated",
                message="Lead distribution settings updated.",
                metadata=changes,
            ),
        )
        return self.resolve_settings(session, ctx.tenant_id)

    def pick_next_broker(
        self, session: Session, tenant_id: str, *, exclude_user_id: str | None = None
    ) -> AgentProfile | None:
        brokers = self.agent_repository.list_active_brokers_round_robin(session, tenant_id)
        if exclude_user_id is not None and len(brokers) > 1:
            others = [broker for broker in brokers if broker.user_id != exclude_user_id]
            if others:
                brokers = others
        return brokers[0] if brokers else None

    def assign_new_contact(self, session: Session, contact: Contact, *, now: datetime | None = None) -> str | None:
        """Give a freshly created contact to the next broker. The caller commits."""
        settings = self.resolve_settings(session, contact.tenant_id)
        if not settings.enabled:
            return None
        broker = self.pick_next_broker(session, contact.tenant_id)
        if broker is None:
            return None

        assigned_at = now or utcnow()
        contact.assigned_to = broker.user_id
        contact.assigned_at = assigned_at
        broker.last_lead_assigned_at = assigned_at
        session.flush()
        return broker.user_id

    def redistribute_overdue(
        self,
        session: Session,
        *,
        limit: int,
        tenant_id: str | None = None,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> RedistributionResult:
        current_time = now or utcnow()
        result = RedistributionResult()
        tenant_ids = [tenant_id] if tenant_id else self.contact_repository.list_tenants_with_unattended(session)

        for scoped_tenant_id in tenant_ids:
            remaining = limit - result.checked
            if remaining <= 0:
                break
            settings = self.resolve_settings(session, scoped_tenant_id)
            if not (settings.enabled and settings.redistribute_overdue):
                continue

            cutoff = current_time - timedelta(minutes=settings.sla_minutes)
            candidates = self.contact_repository.list_overdue(
                session, scoped_tenant_id, assigned_before=cutoff, limit=remaining
            )
            for candidate in candidates:
                result.checked += 1
                try:
                    entry = self._reassign_candidate(
                        session, candidate, cutoff=cutoff, now=current_time, actor_id=actor_id, sla_minutes=settings.sla_minutes
                    )
                except SQLAlchemyError as exc:
                    session.rollback()
                    result.skipped += 1
                    logger.warning(
                        "leads.redistribute.item_failed",
                        extra={"tenant_id": candidate.tenant_id, "contact_id": str(candidate.contact_id), "error": str(exc)[:500]},
                    )
                    continue
                if entry is None:
                    continue
                result.reassigned += 1
                self.audit.dispatch(session, entry)

        observe_lead_reassignments(result.reassigned)
        return result

    def _reassign_candidate(
        self,
        session: Session,
        candidate: OverdueCandidate,
        *,
        cutoff: datetime,
        now: datetime,
        actor_id: str | None,
        sla_minutes: int,
    ) -> AuditEntry | None:
        # state may have moved since the candidate query; re-read before touching it
        contact = self.contact_repository.get(session, candidate.tenant_id, candidate.contact_id)
        if contact is None or contact.status != "new" or contact.assigned_to != candidate.assigned_to:
            return None
        if contact.assigned_at is None or as_utc(contact.assigned_at) > cutoff:
            return None

        broker = self.pick_next_broker(session, contact.tenant_id, exclude_user_id=contact.assigned_to)
        if broker is None:
            return None

        moved = self.contact_repository.reassign_if_unchanged(
            session,
            tenant_id=contact.tenant_id,
            contact_id=contact.id,
            expected_owner=candidate.assigned_to,
            new_owner=broker.user_id,
            assigned_at=now,
        )
        if not moved:
            session.rollback()
            return None

        broker.last_lead_assigned_at = now
        session.commit()
        return AuditEntry(
            tenant_id=contact.tenant_id,
            actor_id=actor_id,
            target_id=str(contact.id),
            action="lead_reassigned_overdue",
            level="info",
            message=f"Lead reassigned after exceeding the {sla_minutes} minute SLA.",
            metadata={"from": candidate.assigned_to, "to": broker.user_id, "sla_minutes": sla_minutes},
        )


lead_distribution_service = LeadDistributionService()
