from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from leadops.leads.models import Contact, InboundMessage, LeadDistributionSettings, WebhookEndpoint


@dataclass(frozen=True, slots=True)
class OverdueCandidate:
    contact_id: uuid.UUID
    tenant_id: str
    assigned_to: str


class ContactRepository:
    def get(self, session: Session, tenant_id: str, contact_id: uuid.UUID) -> Contact | None:
        return session.scalar(select(Contact).where(Contact.tenant_id == tenant_id, Contact.id == contact_id))

    def get_by_phone(self, session: Session, tenant_id: str, phone: str) -> Contact | None:
        return session.scalar(select(Contact).where(Contact.tenant_id == tenant_id, Contact.phone == phone))

    def add(self, session: Session, contact: Contact) -> Contact:
        session.add(contact)
        session.flush()
        return contact

    def list_tenants_with_unattended(self, session: Session) -> list[str]:
        return list(
            session.scalars(
                select(Contact.tenant_id)
                .where(Contact.status == "new", Contact.assigned_to.is_not(None))
                .distinct()
                .order_by(Contact.tenant_id.asc())
            )
        )

    def list_overdue(self, session: Session, tenant_id: str, *, assigned_before: datetime, limit: int) -> list[OverdueCandidate]:
        rows = session.execute(
            select(Contact.id, Contact.tenant_id, Contact.assigned_to)
            .where(
                Contact.tenant_id == tenant_id,
                Contact.status == "new",
                Contact.assigned_to.is_not(None),
                Contact.assigned_at.is_not(None),
                Contact.assigned_at <= assigned_before,
            )
            .order_by(Contact.assigned_at.asc(), Contact.id.asc())
            .limit(limit)
        ).all()
        return [OverdueCandidate(contact_id=row[0], tenant_id=row[1], assigned_to=row[2]) for row in rows]

    def reassign_if_unchanged(
        self,
        session: Session,
        *,
        tenant_id: str,
        contact_id: uuid.UUID,
        expected_owner: str,
        new_owner: str,
        assigned_at: datetime,
    ) -> bool:
        """Move ownership only while the contact is still ``new`` and owned by ``expected_owner``."""
        result = session.execute(
            update(Contact)
            .where(
                Contact.tenant_id == tenant_id,
                Contact.id == contact_id,
                Contact.status == "new",
                Contact.assigned_to == expected_owner,
            )
            .values(assigned_to=new_owner, assigned_at=assigned_at, updated_at=assigned_at)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1


class InboundMessageRepository:
    def get_by_external_id(self, session: Session, tenant_id: str, external_id: str) -> InboundMessage | None:
        return session.scalar(
            select(InboundMessage).where(InboundMessage.tenant_id == tenant_id, InboundMessage.external_id == external_id)
        )

    def add(self, session: Session, message: InboundMessage) -> InboundMessage:
        session.add(message)
        session.flush()
        return message


class WebhookEndpointRepository:
    def get_active_by_token(self, session: Session, token: str) -> WebhookEndpoint | None:
        return session.scalar(
            select(WebhookEndpoint).where(WebhookEndpoint.token == token, WebhookEndpoint.is_active.is_(True))
        )


class DistributionSettingsRepository:
    def get(self, session: Session, tenant_id: str) -> LeadDistributionSettings | None:
        return session.scalar(select(LeadDistributionSettings).where(LeadDistributionSettings.tenant_id == tenant_id))

    def add(self, session: Session, settings_row: LeadDistributionSettings) -> LeadDistributionSettings:
        session.add(settings_row)
        session.flush()
        return settings_row
