from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from leadops.billing.api import jobs_router as billing_jobs_router, router as billing_router
from leadops.core.config import get_settings
from leadops.followups.api import (
    jobs_router as followup_jobs_router,
    router as followups_router,
    settings_router as followup_settings_router,
)
from leadops.leads.api import (
    jobs_router as lead_jobs_router,
    settings_router as lead_settings_router,
    webhooks_router,
)
from leadops.metrics import generate_metrics_payload, metrics_content_type
from leadops.platform.security import AuthContext, get_auth_context
from leadops.team.api import invites_router, router as team_router

router = APIRouter()
router.include_router(webhooks_router)
router.include_router(lead_settings_router)
router.include_router(lead_jobs_router)
router.include_router(billing_router)
router.include_router(billing_jobs_router)
router.include_router(team_router)
router.include_router(invites_router)
router.include_router(followups_router)
router.include_router(followup_settings_router)
router.include_router(followup_jobs_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
def me(ctx: AuthContext = Depends(get_auth_context)) -> dict[str, str | None]:
    return {
        "user_id": ctx.user_id,
        "tenant_id": ctx.tenant_id,
        "role": ctx.role.value if ctx.role else None,
    }


@router.get("/metrics", tags=["system"])
def metrics() -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
