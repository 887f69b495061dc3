from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadops.context import get_correlation_id
from leadops.metrics import observe_audit_write_failure
from leadops.platform.audit.models import AuditEvent

logger = logging.getLogger("leadops.audit")

AuditLevel = Literal["info", "warning", "error"]


@dataclass(slots=True)
class AuditEntry:
    tenant_id: str
    action: str
    message: str
    level: AuditLevel = "info"
    actor_id: str | None = None
    target_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditEventRepository:
    def add(self, session: Session, entry: AuditEntry) -> AuditEvent:
        event = AuditEvent(
            tenant_id=entry.tenant_id,
            actor_id=entry.actor_id,
            target_id=entry.target_id,
            action=entry.action,
            level=entry.level,
            message=entry.message,
            details=dict(entry.metadata),
            correlation_id=get_correlation_id(),
        )
        session.add(event)
        session.flush()
        return event

    def list_for_tenant(self, session: Session, tenant_id: str, *, action: str | None = None) -> list[AuditEvent]:
        stmt = select(AuditEvent).where(AuditEvent.tenant_id == tenant_id)
        if action is not None:
            stmt = stmt.where(AuditEvent.action == action)
        return list(session.scalars(stmt.order_by(AuditEvent.created_at.asc())))


@dataclass(slots=True)
class AuditTrail:
    """Best-effort audit dispatch.

    Entries are written after the primary state change has been committed,
    each in its own transaction. A failed write is rolled back, logged and
    counted; it never reaches the caller.
    """

    repository: AuditEventRepository = AuditEventRepository()

    def dispatch(self, session: Session, *entries: AuditEntry) -> int:
        written = 0
        for entry in entries:
            try:
                self.repository.add(session, entry)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                observe_audit_write_failure()
                logger.warning(
                    "audit.write_failed",
                    extra={"tenant_id": entry.tenant_id, "action": entry.action, "error": str(exc)[:500]},
                )
                continue
            written += 1
        return written


