from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from leadops import events
from leadops.followups.service import FollowupScheduler
from leadops.leads.distribution import LeadDistributionService
from leadops.leads.models import Contact, InboundMessage, WebhookEndpoint
from leadops.leads.normalizer import normalize_webhook_payload
from leadops.leads.repository import ContactRepository, InboundMessageRepository, WebhookEndpointRepository
from leadops.leads.schemas import LeadWebhookPayload, WhatsAppWebhookResponse
from leadops.metrics import observe_webhook_leads
from leadops.platform.errors import NotFoundError, ValidationFailure
from leadops.platform.timeutils import utcnow

logger = logging.getLogger("leadops.leads.ingestion")


@dataclass(frozen=True, slots=True)
class IngestionOutcome:
    contact_id: uuid.UUID
    created: bool
    duplicate: bool


@dataclass(slots=True)
class LeadIngestionService:
    endpoint_repository: WebhookEndpointRepository = WebhookEndpointRepository()
    contact_repository: ContactRepository = ContactRepository()
    message_repository: InboundMessageRepository = InboundMessageRepository()
    distribution: LeadDistributionService = field(default_factory=LeadDistributionService)
    followups: FollowupScheduler = field(default_factory=FollowupScheduler)

    def resolve_endpoint(self, session: Session, token: str) -> WebhookEndpoint:
        endpoint = self.endpoint_repository.get_active_by_token(session, token)
        if endpoint is None:
            raise NotFoundError("webhook endpoint not found")
        return endpoint

    def ingest_structured(self, session: Session, token: str, payload: LeadWebhookPayload) -> IngestionOutcome:
        endpoint = self.resolve_endpoint(session, token)
        if payload.source is not None and payload.source != endpoint.source:
            raise ValidationFailure("source does not match webhook endpoint")
        outcome = self.ingest(session, endpoint, payload, provider=endpoint.source)
        observe_webhook_leads(endpoint.source, 0 if outcome.duplicate else 1, 1 if outcome.duplicate else 0)
        return outcome

    def ingest_chat_webhook(
        self, session: Session, token: str, body: Any, provider_hint: str | None = None
    ) -> WhatsAppWebhookResponse:
        endpoint = self.resolve_endpoint(session, token)
        normalized = normalize_webhook_payload(body, provider_hint)

        skipped = normalized.skipped
        ingested = 0
        contact_ids: list[uuid.UUID] = []
        for lead in normalized.leads:
            try:
                payload = LeadWebhookPayload(
                    external_id=lead.external_id,
                    name=lead.name,
                    phone=lead.phone,
                    message=lead.message,
                )
            except ValidationError:
                skipped += 1
                continue
            outcome = self.ingest(session, endpoint, payload, provider=lead.provider)
            ingested += 1
            if outcome.contact_id not in contact_ids:
                contact_ids.append(outcome.contact_id)

        observe_webhook_leads(provider_hint or "auto", ingested, skipped)
        return WhatsAppWebhookResponse(
            received=len(normalized.leads),
            ingested=ingested,
            skipped=skipped,
            contacts=contact_ids,
        )

    def ingest(
        self,
        session: Session,
        endpoint: WebhookEndpoint,
        payload: LeadWebhookPayload,
        *,
        provider: str,
    ) -> IngestionOutcome:
        tenant_id = endpoint.tenant_id
        for attempt in range(2):
            if payload.external_id:
                existing = self.message_repository.get_by_external_id(session, tenant_id, payload.external_id)
                if existing is not None:
                    return IngestionOutcome(contact_id=existing.contact_id, created=False, duplicate=True)

            try:
                contact, created, message_stored = self._store(session, endpoint, payload, provider=provider)
                session.commit()
            except IntegrityError:
                # a concurrent delivery stored the same phone or external id first
                session.rollback()
                if attempt == 0:
                    continue
                raise
            break

        if created or message_stored:
            self._publish(tenant_id, contact, payload, created=created, provider=provider)
        return IngestionOutcome(contact_id=contact.id, created=created, duplicate=False)

    def _store(
        self,
        session: Session,
        endpoint: WebhookEndpoint,
        payload: LeadWebhookPayload,
        *,
        provider: str,
    ) -> tuple[Contact, bool, bool]:
        tenant_id = endpoint.tenant_id
        now = utcnow()
        contact = self.contact_repository.get_by_phone(session, tenant_id, payload.phone)
        created = contact is None
        if contact is None:
            contact = self.contact_repository.add(
                session,
                Contact(
                    tenant_id=tenant_id,
                    name=payload.name,
                    phone=payload.phone,
                    email=str(payload.email) if payload.email else None,
                    status="new",
                    source=endpoint.source,
                    property_id=payload.property_id,
                ),
            )
            self.distribution.assign_new_contact(session, contact, now=now)
            self.followups.schedule_for_contact(session, tenant_id, contact.id, now=now)

        message_stored = bool(payload.message or payload.external_id)
        if message_stored:
            self.message_repository.add(
                session,
                InboundMessage(
                    tenant_id=tenant_id,
                    contact_id=contact.id,
                    provider=provider,
                    external_id=payload.external_id,
                    body=payload.message,
                ),
            )
        return contact, created, message_stored

    @staticmethod
    def _publish(tenant_id: str, contact: Contact, payload: LeadWebhookPayload, *, created: bool, provider: str) -> None:
        envelope = events.publish(
            "lead.received" if created else "lead.message_received",
            tenant_id,
            {
                "contact_id": str(contact.id),
                "assigned_to": contact.assigned_to,
                "provider": provider,
                "external_id": payload.external_id,
            },
        )
        logger.info(
            envelope["event_type"],
            extra={"tenant_id": tenant_id, "contact_id": str(contact.id), "provider": provider},
        )


lead_ingestion_service = LeadIngestionService()
