from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from leadops.core.config import get_settings
from leadops.core.database import get_db
from leadops.followups.schemas import (
    FollowupActionRequest,
    FollowupActionResult,
    FollowupJobRead,
    FollowupProcessResult,
    FollowupSettingsRead,
    FollowupSettingsUpdate,
)
from leadops.followups.service import followup_scheduler
from leadops.platform.jobs import JobCaller, job_caller, parse_limit, run_sweep
from leadops.platform.security import AuthContext, get_auth_context


router = APIRouter(prefix="/api/followups", tags=["followups"])
settings_router = APIRouter(prefix="/api/settings/followups", tags=["followups"])
jobs_router = APIRouter(prefix="/api/jobs/followups", tags=["jobs"])


class FollowupProcessJobResponse(BaseModel):
    ok: bool = True
    result: FollowupProcessResult


@router.get("/contact/{contact_id}", response_model=list[FollowupJobRead])
def list_contact_followups(
    contact_id: uuid.UUID,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> list[FollowupJobRead]:
    return followup_scheduler.list_jobs(db, ctx, contact_id)


@router.post("/contact/{contact_id}", response_model=FollowupActionResult)
def change_contact_followups(
    contact_id: uuid.UUID,
    payload: FollowupActionRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> FollowupActionResult:
    return followup_scheduler.apply_action(db, ctx, contact_id, payload.action)


@settings_router.get("", response_model=FollowupSettingsRead)
def get_followup_settings(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> FollowupSettingsRead:
    return followup_scheduler.resolve_settings(db, ctx.tenant_id)


@settings_router.put("", response_model=FollowupSettingsRead)
def update_followup_settings(
    payload: FollowupSettingsUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> FollowupSettingsRead:
    return followup_scheduler.update_settings(db, ctx, payload)


@jobs_router.post("/process", response_model=FollowupProcessJobResponse)
def process_due_followups(
    limit: str | None = Query(default=None),
    db: Session = Depends(get_db),
    caller: JobCaller = Depends(job_caller(lambda settings: settings.followups_cron_secret)),
) -> FollowupProcessJobResponse:
    settings = get_settings()
    resolved_limit = parse_limit(
        limit, default=settings.followup_process_default_limit, maximum=settings.followup_process_max_limit
    )
    result = run_sweep(
        "followup_processing",
        "followups.process_due",
        lambda: followup_scheduler.process_due(db, limit=resolved_limit, tenant_id=caller.tenant_id),
        tenant_id=caller.tenant_id,
    )
    return FollowupProcessJobResponse(result=result)
