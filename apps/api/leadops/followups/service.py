from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadops.core.config import get_settings
from leadops.followups.models import FollowupJob, FollowupSettings
from leadops.followups.repository import FollowupJobRepository, FollowupSettingsRepository
from leadops.followups.schemas import (
    FollowupAction,
    FollowupActionResult,
    FollowupJobRead,
    FollowupProcessResult,
    FollowupSettingsRead,
    FollowupSettingsUpdate,
)
from leadops.followups.sender import LoggingMessageSender, MessageSender
from leadops.leads.models import Contact
from leadops.leads.repository import ContactRepository
from leadops.metrics import observe_followup_message
from leadops.platform.audit import AuditEntry, AuditTrail
from leadops.platform.errors import NotFoundError
from leadops.platform.security import AuthContext, AuthorizationError, can_manage_team
from leadops.platform.timeutils import as_utc, utcnow

logger = logging.getLogger("leadops.followups")

FOLLOWUP_STEPS: tuple[tuple[str, timedelta], ...] = (
    ("5m", timedelta(minutes=5)),
    ("24h", timedelta(hours=24)),
    ("3d", timedelta(days=3)),
)

DEFAULT_TEMPLATES = {
    "5m": "Hi {{first_name}}, thanks for getting in touch! How can I help you?",
    "24h": "Hi {{first_name}}, just checking in on your request. Are you still looking?",
    "3d": "Hi {{first_name}}, I'm still around if you want to talk about the property. Shall we schedule a visit?",
}

_PLACEHOLDER_RE = re.compile(r"\{\{\s*(first_name|name)\s*\}\}")


def render_template(template: str, contact_name: str) -> str:
    full_name = contact_name.strip()
    first_name = full_name.split()[0] if full_name else ""
    values = {"first_name": first_name, "name": full_name}
    return _PLACEHOLDER_RE.sub(lambda match: values[match.group(1)], template)


@dataclass(slots=True)
class FollowupScheduler:
    job_repository: FollowupJobRepository = FollowupJobRepository()
    settings_repository: FollowupSettingsRepository = FollowupSettingsRepository()
    contact_repository: ContactRepository = ContactRepository()
    sender: MessageSender = field(default_factory=LoggingMessageSender)
    audit: AuditTrail = field(default_factory=AuditTrail)

    def resolve_settings(self, session: Session, tenant_id: str) -> FollowupSettingsRead:
        row = self.settings_repository.get(session, tenant_id)
        if row is None:
            return FollowupSettingsRead(
                tenant_id=tenant_id,
                enabled=get_settings().followup_default_enabled,
                step_5m_template=DEFAULT_TEMPLATES["5m"],
                step_24h_template=DEFAULT_TEMPLATES["24h"],
                step_3d_template=DEFAULT_TEMPLATES["3d"],
            )
        return FollowupSettingsRead(
            tenant_id=row.tenant_id,
            enabled=row.enabled,
            step_5m_template=row.step_5m_template,
            step_24h_template=row.step_24h_template,
            step_3d_template=row.step_3d_template,
        )

    def update_settings(self, session: Session, ctx: AuthContext, payload: FollowupSettingsUpdate) -> FollowupSettingsRead:
        if not can_manage_team(ctx.role):
            raise AuthorizationError("only owner or manager may change follow-up settings")

        row = self.settings_repository.get(session, ctx.tenant_id)
        if row is None:
            current = self.resolve_settings(session, ctx.tenant_id)
            row = self.settings_repository.add(session, FollowupSettings(**current.model_dump()))

        for field_name, value in payload.model_dump(exclude_unset=True, exclude_none=True).items():
            setattr(row, field_name, value)
        session.commit()
        return self.resolve_settings(session, ctx.tenant_id)

    def schedule_for_contact(
        self, session: Session, tenant_id: str, contact_id: uuid.UUID, *, now: datetime | None = None
    ) -> list[FollowupJob]:
        """Create the three-step sequence for a contact. The caller commits."""
        if not self.resolve_settings(session, tenant_id).enabled:
            return []
        if self.job_repository.list_for_contact(session, tenant_id, contact_id):
            return []

        base = now or utcnow()
        jobs = [
            FollowupJob(
                tenant_id=tenant_id,
                contact_id=contact_id,
                step=step,
                status="pending",
                scheduled_at=base + offset,
            )
            for step, offset in FOLLOWUP_STEPS
        ]
        return self.job_repository.add_batch(session, jobs)

    def list_jobs(self, session: Session, ctx: AuthContext, contact_id: uuid.UUID) -> list[FollowupJobRead]:
        self._get_contact(session, ctx, contact_id)
        jobs = self.job_repository.list_for_contact(session, ctx.tenant_id, contact_id)
        return [FollowupJobRead.model_validate(job) for job in jobs]

    def apply_action(
        self,
        session: Session,
        ctx: AuthContext,
        contact_id: uuid.UUID,
        action: FollowupAction,
        *,
        now: datetime | None = None,
    ) -> FollowupActionResult:
        if not can_manage_team(ctx.role):
            raise AuthorizationError("only owner or manager may change follow-ups")
        contact = self._get_contact(session, ctx, contact_id)
        current_time = now or utcnow()

        if action == "pause":
            affected = self.job_repository.transition(
                session, ctx.tenant_id, contact.id, from_statuses=("pending",), to_status="paused", now=current_time
            )
        elif action == "cancel":
            affected = self.job_repository.transition(
                session, ctx.tenant_id, contact.id, from_statuses=("pending", "paused"), to_status="canceled", now=current_time
            )
        else:
            affected = self._resume(session, ctx.tenant_id, contact.id, current_time)
        # resume is a single transaction: an error above leaves every job paused
        session.commit()

        self.audit.dispatch(
            session,
            AuditEntry(
                tenant_id=ctx.tenant_id,
                actor_id=ctx.user_id,
                target_id=str(contact.id),
                action=f"followup_{action}",
                message=f"Follow-up sequence {action} affected {affected} job(s).",
                metadata={"affected": affected},
            ),
        )
        return FollowupActionResult(action=action, affected=affected)

    def _resume(self, session: Session, tenant_id: str, contact_id: uuid.UUID, now: datetime) -> int:
        earliest = now + timedelta(seconds=get_settings().followup_resume_buffer_seconds)
        jobs = self.job_repository.list_by_status(session, tenant_id, contact_id, ("paused",))
        for job in jobs:
            job.status = "pending"
            job.scheduled_at = max(as_utc(job.scheduled_at), earliest)
            job.error = None
        session.flush()
        return len(jobs)

    def process_due(
        self,
        session: Session,
        *,
        limit: int,
        tenant_id: str | None = None,
        now: datetime | None = None,
    ) -> FollowupProcessResult:
        settings = get_settings()
        current_time = now or utcnow()
        result = FollowupProcessResult()

        for job_id in self.job_repository.list_due_ids(session, now=current_time, limit=limit, tenant_id=tenant_id):
            if not self.job_repository.claim(session, job_id, current_time):
                session.rollback()
                continue
            session.commit()

            delivered = False
            try:
                job = self.job_repository.get(session, job_id)
                if job is None:
                    continue
                result.processed += 1

                contact = self.contact_repository.get(session, job.tenant_id, job.contact_id)
                tenant_settings = self.resolve_settings(session, job.tenant_id)
                if contact is None or not tenant_settings.enabled:
                    job.status = "canceled"
                    job.error = "contact missing" if contact is None else "follow-ups disabled"
                    session.commit()
                    continue

                body = render_template(getattr(tenant_settings, f"step_{job.step}_template"), contact.name)
                job.attempts += 1
                try:
                    self.sender.send(tenant_id=job.tenant_id, phone=contact.phone, body=body)
                except Exception as exc:
                    # every sender error counts as a failed delivery of the claimed job
                    self._record_delivery_failure(job, exc, current_time, settings.followup_max_attempts, settings.followup_retry_backoff_seconds)
                    outcome = "failed" if job.status == "failed" else "retried"
                    session.commit()
                    if outcome == "failed":
                        result.failed += 1
                    else:
                        result.retried += 1
                    observe_followup_message(outcome)
                    continue

                delivered = True
                job.error = None
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                if not delivered:
                    result.skipped += 1
                    self._release_claim(session, job_id, exc, current_time)
                    continue
                # the claim already stored the job as sent
                logger.warning("followups.finalize_failed", extra={"job_id": str(job_id), "error": str(exc)[:500]})

            result.sent += 1
            observe_followup_message("sent")

        return result

    def _release_claim(self, session: Session, job_id: uuid.UUID, exc: SQLAlchemyError, now: datetime) -> None:
        logger.warning("followups.item_failed", extra={"job_id": str(job_id), "error": str(exc)[:500]})
        try:
            self.job_repository.release(session, job_id, error=str(exc)[:2000], now=now)
            session.commit()
        except SQLAlchemyError as release_exc:
            session.rollback()
            logger.error("followups.release_failed", extra={"job_id": str(job_id), "error": str(release_exc)[:500]})

    @staticmethod
    def _record_delivery_failure(
        job: FollowupJob, exc: Exception, now: datetime, max_attempts: int, backoff_seconds: int
    ) -> None:
        job.error = str(exc)[:2000]
        if job.attempts >= max_attempts:
            job.status = "failed"
            logger.warning(
                "followups.delivery_failed",
                extra={"tenant_id": job.tenant_id, "contact_id": str(job.contact_id), "error": str(exc)[:500]},
            )
            return
        job.status = "pending"
        job.processed_at = None
        job.scheduled_at = now + timedelta(seconds=backoff_seconds * job.attempts)

    def _get_contact(self, session: Session, ctx: AuthContext, contact_id: uuid.UUID) -> Contact:
        contact = self.contact_repository.get(session, ctx.tenant_id, contact_id)
        if contact is None:
            raise NotFoundError("contact not found")
        return contact


followup_scheduler = FollowupScheduler()
