from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel
from sqlalchemy.orm import Session

from leadops.billing.service import seat_billing_service
from leadops.context import correlation_scope, new_correlation_id
from leadops.core.celery_app import celery_app
from leadops.core.config import get_settings
from leadops.core.database import session_scope
from leadops.followups.service import followup_scheduler
from leadops.leads.distribution import lead_distribution_service
from leadops.platform.jobs import SCHEDULER_ACTOR, parse_limit, run_sweep


def _run_scheduled(
    job_type: str,
    span_name: str,
    tenant_id: str | None,
    operation: Callable[[Session], BaseModel],
) -> dict[str, Any]:
    with correlation_scope(new_correlation_id("celery")), session_scope() as session:
        result = run_sweep(job_type, span_name, lambda: operation(session), tenant_id=tenant_id)
    return result.model_dump()


@celery_app.task(name="leadops.tasks.redistribute_overdue_leads")
def redistribute_overdue_leads(limit: int | None = None, tenant_id: str | None = None) -> dict[str, Any]:
    settings = get_settings()
    resolved_limit = parse_limit(limit, default=settings.redistribution_default_limit, maximum=settings.redistribution_max_limit)
    return _run_scheduled(
        "lead_redistribution",
        "leads.redistribute_overdue",
        tenant_id,
        lambda session: lead_distribution_service.redistribute_overdue(
            session, limit=resolved_limit, tenant_id=tenant_id, actor_id=SCHEDULER_ACTOR
        ),
    )


@celery_app.task(name="leadops.tasks.apply_due_seat_downgrades")
def apply_due_seat_downgrades(limit: int | None = None, tenant_id: str | None = None) -> dict[str, Any]:
    settings = get_settings()
    resolved_limit = parse_limit(limit, default=settings.seat_sweep_default_limit, maximum=settings.seat_sweep_max_limit)
    return _run_scheduled(
        "seat_downgrade_sweep",
        "billing.apply_due_downgrades",
        tenant_id,
        lambda session: seat_billing_service.apply_due_downgrades(
            session, limit=resolved_limit, tenant_id=tenant_id, actor_id=SCHEDULER_ACTOR
        ),
    )


@celery_app.task(name="leadops.tasks.process_due_followups")
def process_due_followups(limit: int | None = None, tenant_id: str | None = None) -> dict[str, Any]:
    settings = get_settings()
    resolved_limit = parse_limit(
        limit, default=settings.followup_process_default_limit, maximum=settings.followup_process_max_limit
    )
    return _run_scheduled(
        "followup_processing",
        "followups.process_due",
        tenant_id,
        lambda session: followup_scheduler.process_due(session, limit=resolved_limit, tenant_id=tenant_id),
    )
