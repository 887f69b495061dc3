from __future__ import annotations

import hmac
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from fastapi import Depends, Query, Request
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy.exc import SQLAlchemyError

from leadops.context import get_correlation_id
from leadops.core.auth import AuthUser, get_current_user
from leadops.core.config import Settings, get_settings
from leadops.metrics import observe_job
from leadops.platform.errors import UnknownStoreError
from leadops.platform.security.errors import AuthenticationError, AuthorizationError
from leadops.platform.security.roles import can_run_automation, parse_role

logger = logging.getLogger("leadops.jobs")
tracer = trace.get_tracer("leadops.jobs")

T = TypeVar("T")

SCHEDULER_ACTOR = "scheduler"


@dataclass(slots=True)
class JobCaller:
    """Who triggered a sweep and which tenant it is confined to (``None`` for all)."""

    actor_id: str
    tenant_id: str | None
    trusted: bool = False


def parse_limit(raw: Any, *, default: int, maximum: int) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        value = int(float(raw))
    except (TypeError, ValueError, OverflowError):
        return default
    return max(1, min(maximum, value))


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    return auth_header[len("Bearer ") :].strip() if auth_header.startswith("Bearer ") else ""


def resolve_job_caller(
    request: Request,
    auth_user: AuthUser,
    *,
    secret: str,
    requested_tenant_id: str | None,
) -> JobCaller:
    token = _bearer_token(request)
    if secret and token and hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
        return JobCaller(actor_id=SCHEDULER_ACTOR, tenant_id=requested_tenant_id or None, trusted=True)

    if auth_user.is_anonymous:
        raise AuthenticationError("authentication required")
    if not auth_user.tenant_id:
        raise AuthorizationError("session is not bound to a tenant")
    if not can_run_automation(parse_role(auth_user.role)):
        raise AuthorizationError("only owner or manager may run automation jobs")
    return JobCaller(actor_id=auth_user.sub, tenant_id=auth_user.tenant_id)


def job_caller(secret_getter: Callable[[Settings], str]) -> Callable[..., JobCaller]:
    """Build a dependency accepting either the family's shared secret or a manager session."""

    def dependency(
        request: Request,
        tenant_id: str | None = Query(default=None),
        auth_user: AuthUser = Depends(get_current_user),
    ) -> JobCaller:
        return resolve_job_caller(
            request,
            auth_user,
            secret=secret_getter(get_settings()),
            requested_tenant_id=tenant_id,
        )

    return dependency


def run_sweep(
    job_type: str,
    span_name: str,
    operation: Callable[[], T],
    *,
    tenant_id: str | None = None,
) -> T:
    """Run one sweep under a span with ``job.started``/``job.finished`` logs and job metrics.

    A store failure outside per-item handling ends the sweep as ``Failed`` and is
    re-raised as :class:`UnknownStoreError`.
    """
    started = time.perf_counter()
    final_status = "Failed"
    with tracer.start_as_current_span(span_name) as span:
        span.set_attribute("job_type", job_type)
        span.set_attribute("tenant_id", tenant_id or "*")
        correlation_id = get_correlation_id()
        if correlation_id:
            span.set_attribute("correlation_id", correlation_id)
        logger.info(
            "job.started",
            extra={"job_type": job_type, "status": "Running", "duration_ms": 0.0, "tenant_id": tenant_id},
        )
        try:
            result = operation()
            final_status = "Succeeded"
        except SQLAlchemyError as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)[:500]))
            logger.error(
                "job.finished",
                extra={
                    "job_type": job_type,
                    "status": "Failed",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "tenant_id": tenant_id,
                    "error": str(exc)[:500],
                },
            )
            raise UnknownStoreError(f"{job_type} failed: {str(exc)[:500]}") from exc
        finally:
            observe_job(job_type=job_type, status=final_status, duration=time.perf_counter() - started)

        logger.info(
            "job.finished",
            extra={
                "job_type": job_type,
                "status": final_status,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "tenant_id": tenant_id,
                "result": result,
            },
        )
        return result
