from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

automation_jobs_total = Counter(
    "automation_jobs_total",
    "Total automation sweep runs by status",
    ["job_type", "status"],
)

automation_job_duration_seconds = Histogram(
    "automation_job_duration_seconds",
    "Automation sweep duration in seconds",
    ["job_type"],
)

lead_reassignments_total = Counter(
    "lead_reassignments_total",
    "Total overdue leads reassigned to another broker",
)

seat_downgrades_total = Counter(
    "seat_downgrades_total",
    "Total due seat downgrades by outcome",
    ["outcome"],
)

followup_messages_total = Counter(
    "followup_messages_total",
    "Total follow-up deliveries by outcome",
    ["outcome"],
)

webhook_leads_total = Counter(
    "webhook_leads_total",
    "Total inbound webhook leads by outcome",
    ["provider", "outcome"],
)

audit_write_failures_total = Counter(
    "audit_write_failures_total",
    "Total audit events that could not be persisted",
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        route_path = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return route_path
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_job(job_type: str, status: str, duration: float) -> None:
    automation_jobs_total.labels(job_type=job_type, status=status).inc()
    automation_job_duration_seconds.labels(job_type=job_type).observe(duration)


def observe_lead_reassignments(count: int) -> None:
    if count > 0:
        lead_reassignments_total.inc(count)


def observe_seat_downgrades(applied: int, blocked: int) -> None:
    if applied > 0:
        seat_downgrades_total.labels(outcome="applied").inc(applied)
    if blocked > 0:
        seat_downgrades_total.labels(outcome="blocked").inc(blocked)


def observe_followup_message(outcome: str) -> None:
    followup_messages_total.labels(outcome=outcome).inc()


def observe_webhook_leads(provider: str, ingested: int, skipped: int) -> None:
    if ingested > 0:
        webhook_leads_total.labels(provider=provider, outcome="ingested").inc(ingested)
    if skipped > 0:
        webhook_leads_total.labels(provider=provider, outcome="skipped").inc(skipped)


def observe_audit_write_failure() -> None:
    audit_write_failures_total.inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
