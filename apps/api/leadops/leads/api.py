from __future__ import annotations

import json
from typing import Any
from urllib.parse import parse_qsl

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from leadops.core.config import get_settings
from leadops.core.database import get_db
from leadops.leads.distribution import lead_distribution_service
from leadops.leads.ingestion import lead_ingestion_service
from leadops.leads.schemas import (
    DistributionSettingsRead,
    DistributionSettingsUpdate,
    LeadWebhookPayload,
    LeadWebhookResponse,
    RedistributionResult,
    WhatsAppWebhookResponse,
)
from leadops.platform.errors import ValidationFailure
from leadops.platform.jobs import JobCaller, job_caller, parse_limit, run_sweep
from leadops.platform.security import AuthContext, get_auth_context


webhooks_router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
settings_router = APIRouter(prefix="/api/settings/leads", tags=["leads"])
jobs_router = APIRouter(prefix="/api/jobs/leads", tags=["jobs"])


class RedistributionJobResponse(BaseModel):
    ok: bool = True
    result: RedistributionResult


@webhooks_router.post("/leads/{token}", response_model=LeadWebhookResponse, status_code=status.HTTP_201_CREATED)
def receive_lead(token: str, payload: LeadWebhookPayload, db: Session = Depends(get_db)) -> LeadWebhookResponse:
    outcome = lead_ingestion_service.ingest_structured(db, token, payload)
    return LeadWebhookResponse(contact_id=outcome.contact_id)


@webhooks_router.get("/whatsapp/{token}", response_class=PlainTextResponse)
def verify_whatsapp_webhook(
    token: str,
    mode: str | None = Query(default=None, alias="hub.mode"),
    verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
) -> PlainTextResponse:
    if mode == "subscribe" and challenge and verify_token == token:
        return PlainTextResponse(challenge, status_code=status.HTTP_200_OK)
    return PlainTextResponse("Forbidden", status_code=status.HTTP_403_FORBIDDEN)


async def _read_webhook_body(request: Request) -> Any:
    raw = await request.body()
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/x-www-form-urlencoded"):
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValidationFailure("form body is not valid UTF-8") from exc
        return dict(parse_qsl(text, keep_blank_values=True))
    try:
        return json.loads(raw or b"null")
    except ValueError as exc:
        raise ValidationFailure("request body is not valid JSON") from exc


@webhooks_router.post("/whatsapp/{token}", response_model=WhatsAppWebhookResponse)
async def receive_whatsapp_webhook(
    token: str,
    request: Request,
    provider: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> WhatsAppWebhookResponse:
    body = await _read_webhook_body(request)
    return await run_in_threadpool(lead_ingestion_service.ingest_chat_webhook, db, token, body, provider)


@settings_router.get("/distribution", response_model=DistributionSettingsRead)
def get_distribution_settings(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> DistributionSettingsRead:
    return lead_distribution_service.resolve_settings(db, ctx.tenant_id)


@settings_router.put("/distribution", response_model=DistributionSettingsRead)
def update_distribution_settings(
    payload: DistributionSettingsUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> DistributionSettingsRead:
    return lead_distribution_service.update_settings(db, ctx, payload)


@jobs_router.post("/redistribute", response_model=RedistributionJobResponse)
def redistribute_overdue_leads(
    limit: str | None = Query(default=None),
    db: Session = Depends(get_db),
    caller: JobCaller = Depends(job_caller(lambda settings: settings.lead_redistribution_cron_secret)),
) -> RedistributionJobResponse:
    settings = get_settings()
    resolved_limit = parse_limit(
        limit, default=settings.redistribution_default_limit, maximum=settings.redistribution_max_limit
    )
    result = run_sweep(
        "lead_redistribution",
        "leads.redistribute_overdue",
        lambda: lead_distribution_service.redistribute_overdue(
            db, limit=resolved_limit, tenant_id=caller.tenant_id, actor_id=caller.actor_id
        ),
        tenant_id=caller.tenant_id,
    )
    return RedistributionJobResponse(result=result)
