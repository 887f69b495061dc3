from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from leadops.billing.schemas import SeatChangeRequest, SeatChangeResponse, SeatOverviewRead, SeatSweepResult
from leadops.billing.service import seat_billing_service
from leadops.core.config import get_settings
from leadops.core.database import get_db
from leadops.platform.jobs import JobCaller, job_caller, parse_limit, run_sweep
from leadops.platform.security import AuthContext, get_auth_context


router = APIRouter(prefix="/api/settings/billing", tags=["billing"])
jobs_router = APIRouter(prefix="/api/jobs/billing", tags=["jobs"])


class SeatSweepJobResponse(BaseModel):
    ok: bool = True
    result: SeatSweepResult


@router.get("/seats", response_model=SeatOverviewRead)
def get_seat_overview(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SeatOverviewRead:
    return seat_billing_service.get_overview(db, ctx)


@router.post("/seats", response_model=SeatChangeResponse)
def request_seat_change(
    payload: SeatChangeRequest,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> SeatChangeResponse:
    return seat_billing_service.request_change(db, ctx, payload)


@jobs_router.post("/seats/apply-due", response_model=SeatSweepJobResponse)
def apply_due_seat_downgrades(
    limit: str | None = Query(default=None),
    db: Session = Depends(get_db),
    caller: JobCaller = Depends(job_caller(lambda settings: settings.billing_seats_cron_secret)),
) -> SeatSweepJobResponse:
    settings = get_settings()
    resolved_limit = parse_limit(limit, default=settings.seat_sweep_default_limit, maximum=settings.seat_sweep_max_limit)
    result = run_sweep(
        "seat_downgrade_sweep",
        "billing.apply_due_downgrades",
        lambda: seat_billing_service.apply_due_downgrades(
            db, limit=resolved_limit, tenant_id=caller.tenant_id, actor_id=caller.actor_id
        ),
        tenant_id=caller.tenant_id,
    )
    return SeatSweepJobResponse(result=result)
