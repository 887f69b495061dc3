from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from leadops.followups.models import FollowupJob, FollowupSettings


class FollowupJobRepository:
    def list_for_contact(self, session: Session, tenant_id: str, contact_id: uuid.UUID) -> list[FollowupJob]:
        return list(
            session.scalars(
                select(FollowupJob)
                .where(FollowupJob.tenant_id == tenant_id, FollowupJob.contact_id == contact_id)
                .order_by(FollowupJob.scheduled_at.asc(), FollowupJob.id.asc())
            )
        )

    def list_by_status(
        self, session: Session, tenant_id: str, contact_id: uuid.UUID, statuses: tuple[str, ...]
    ) -> list[FollowupJob]:
        return list(
            session.scalars(
                select(FollowupJob)
                .where(
                    FollowupJob.tenant_id == tenant_id,
                    FollowupJob.contact_id == contact_id,
                    FollowupJob.status.in_(statuses),
                )
                .order_by(FollowupJob.scheduled_at.asc(), FollowupJob.id.asc())
            )
        )

    def add_batch(self, session: Session, jobs: list[FollowupJob]) -> list[FollowupJob]:
        session.add_all(jobs)
        session.flush()
        return jobs

    def transition(
        self,
        session: Session,
        tenant_id: str,
        contact_id: uuid.UUID,
        *,
        from_statuses: tuple[str, ...],
        to_status: str,
        now: datetime,
    ) -> int:
        result = session.execute(
            update(FollowupJob)
            .where(
                FollowupJob.tenant_id == tenant_id,
                FollowupJob.contact_id == contact_id,
                FollowupJob.status.in_(from_statuses),
            )
            .values(status=to_status, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)

    def list_due_ids(
        self, session: Session, *, now: datetime, limit: int, tenant_id: str | None = None
    ) -> list[uuid.UUID]:
        stmt = select(FollowupJob.id).where(FollowupJob.status == "pending", FollowupJob.scheduled_at <= now)
        if tenant_id is not None:
            stmt = stmt.where(FollowupJob.tenant_id == tenant_id)
        return list(session.scalars(stmt.order_by(FollowupJob.scheduled_at.asc(), FollowupJob.id.asc()).limit(limit)))

    def claim(self, session: Session, job_id: uuid.UUID, now: datetime) -> bool:
        """Take a due job for delivery; ``False`` when another worker already moved it."""
        result = session.execute(
            update(FollowupJob)
            .where(FollowupJob.id == job_id, FollowupJob.status == "pending")
            .values(status="sent", processed_at=now, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def release(self, session: Session, job_id: uuid.UUID, *, error: str, now: datetime) -> bool:
        """Hand a claimed, undelivered job back to ``pending`` for the next sweep."""
        result = session.execute(
            update(FollowupJob)
            .where(FollowupJob.id == job_id, FollowupJob.status == "sent")
            .values(status="pending", processed_at=None, error=error, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def get(self, session: Session, job_id: uuid.UUID) -> FollowupJob | None:
        return session.get(FollowupJob, job_id)


class FollowupSettingsRepository:
    def get(self, session: Session, tenant_id: str) -> FollowupSettings | None:
        return session.scalar(select(FollowupSettings).where(FollowupSettings.tenant_id == tenant_id))

    def add(self, session: Session, settings_row: FollowupSettings) -> FollowupSettings:
        session.add(settings_row)
        session.flush()
        return settings_row
