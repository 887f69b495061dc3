from __future__ import annotations

import logging
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadops.core.auth import ANONYMOUS, AuthUser, get_current_user
from leadops.core.config import get_settings
from leadops.core.database import Base, get_db
from leadops.leads.models import Contact
from leadops.main import app
from leadops.otel import setup_inmemory_otel
from leadops.platform.errors import UnknownStoreError
from leadops.platform.jobs import parse_limit, run_sweep
from leadops.team.models import AgentProfile

LEADS_SECRET = "leads-cron-secret"
SEATS_SECRET = "seats-cron-secret"
FOLLOWUPS_SECRET = "followups-cron-secret"


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("LEAD_REDISTRIBUTION_CRON_SECRET", LEADS_SECRET)
    monkeypatch.setenv("BILLING_SEATS_CRON_SECRET", SEATS_SECRET)
    monkeypatch.setenv("FOLLOWUPS_CRON_SECRET", FOLLOWUPS_SECRET)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def current_user() -> dict[str, AuthUser]:
    return {"user": ANONYMOUS}


@pytest.fixture()
def client(db_session: Session, current_user: dict[str, AuthUser]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return current_user["user"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("leadops-api")
    exporter.clear()
    return exporter


def _seed_overdue(session: Session) -> dict[str, Contact]:
    stale = datetime.now(timezone.utc) - timedelta(hours=2)
    contacts: dict[str, Contact] = {}
    for tenant_id in ("tenant-a", "tenant-b"):
        session.add(AgentProfile(tenant_id=tenant_id, user_id=f"{tenant_id}-broker-1", role="broker"))
        session.add(AgentProfile(tenant_id=tenant_id, user_id=f"{tenant_id}-broker-2", role="broker"))
        contact = Contact(
            tenant_id=tenant_id,
            name="Overdue",
            phone=f"+55119{tenant_id[-1]}",
            assigned_to=f"{tenant_id}-broker-1",
            assigned_at=stale,
        )
        session.add(contact)
        contacts[tenant_id] = contact
    session.commit()
    return contacts


def test_job_requires_credentials(client: TestClient) -> None:
    response = client.post("/api/jobs/leads/redistribute")

    assert response.status_code == 401
    assert response.json()["ok"] is False
    assert response.json()["code"] == "unauthorized"


def test_wrong_secret_is_not_trusted(client: TestClient) -> None:
    response = client.post("/api/jobs/leads/redistribute", headers={"Authorization": f"Bearer {SEATS_SECRET}"})

    assert response.status_code == 401


@pytest.mark.parametrize(
    "user",
    [
        AuthUser(sub="broker-1", tenant_id="tenant-a", role="broker"),
        AuthUser(sub="assistant-1", tenant_id="tenant-a", role="assistant"),
        AuthUser(sub="manager-without-tenant", tenant_id=None, role="manager"),
    ],
)
def test_job_rejects_sessions_without_automation_rights(
    client: TestClient, current_user: dict[str, AuthUser], user: AuthUser
) -> None:
    current_user["user"] = user

    response = client.post("/api/jobs/billing/seats/apply-due")

    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"


def test_shared_secret_runs_sweep_for_every_tenant(client: TestClient, db_session: Session) -> None:
    contacts = _seed_overdue(db_session)

    response = client.post("/api/jobs/leads/redistribute", headers={"Authorization": f"Bearer {LEADS_SECRET}"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "result": {"checked": 2, "reassigned": 2, "skipped": 0}}
    for tenant_id, contact in contacts.items():
        db_session.refresh(contact)
        assert contact.assigned_to == f"{tenant_id}-broker-2"


def test_shared_secret_can_scope_to_one_tenant(client: TestClient, db_session: Session) -> None:
    contacts = _seed_overdue(db_session)

    response = client.post(
        "/api/jobs/leads/redistribute",
        params={"tenant_id": "tenant-b"},
        headers={"Authorization": f"Bearer {LEADS_SECRET}"},
    )

    assert response.json()["result"]["reassigned"] == 1
    db_session.refresh(contacts["tenant-a"])
    assert contacts["tenant-a"].assigned_to == "tenant-a-broker-1"


def test_manager_session_is_confined_to_own_tenant(
    client: TestClient, db_session: Session, current_user: dict[str, AuthUser]
) -> None:
    contacts = _seed_overdue(db_session)
    current_user["user"] = AuthUser(sub="manager-a", tenant_id="tenant-a", role="manager")

    response = client.post("/api/jobs/leads/redistribute", params={"tenant_id": "tenant-b"})

    assert response.status_code == 200
    assert response.json()["result"]["reassigned"] == 1
    db_session.refresh(contacts["tenant-b"])
    assert contacts["tenant-b"].assigned_to == "tenant-b-broker-1"


def test_limit_query_is_parsed_leniently(client: TestClient, db_session: Session) -> None:
    _seed_overdue(db_session)

    response = client.post(
        "/api/jobs/leads/redistribute",
        params={"limit": "1.9"},
        headers={"Authorization": f"Bearer {LEADS_SECRET}"},
    )

    assert response.status_code == 200
    assert response.json()["result"]["checked"] == 1


def test_billing_and_followup_sweeps_accept_their_own_secret(client: TestClient) -> None:
    seats = client.post("/api/jobs/billing/seats/apply-due", headers={"Authorization": f"Bearer {SEATS_SECRET}"})
    followups = client.post("/api/jobs/followups/process", headers={"Authorization": f"Bearer {FOLLOWUPS_SECRET}"})
    crossed = client.post("/api/jobs/followups/process", headers={"Authorization": f"Bearer {SEATS_SECRET}"})

    assert seats.status_code == 200
    assert seats.json() == {"ok": True, "result": {"scanned": 0, "applied": 0, "blocked": 0, "skipped": 0}}
    assert followups.status_code == 200
    assert followups.json() == {"ok": True, "result": {"processed": 0, "sent": 0, "failed": 0, "retried": 0, "skipped": 0}}
    assert crossed.status_code == 401


def test_sweep_emits_span_and_job_logs(
    client: TestClient,
    span_exporter: InMemorySpanExporter,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(
        "/api/jobs/billing/seats/apply-due",
        headers={"Authorization": f"Bearer {SEATS_SECRET}", "X-Correlation-Id": "corr-sweep-1"},
    )
    assert response.status_code == 200

    spans = [span for span in span_exporter.get_finished_spans() if span.name == "billing.apply_due_downgrades"]
    assert spans
    assert spans[-1].attributes.get("job_type") == "seat_downgrade_sweep"
    assert spans[-1].attributes.get("correlation_id") == "corr-sweep-1"

    job_records = [record for record in caplog.records if record.name == "leadops.jobs"]
    assert [record.getMessage() for record in job_records] == ["job.started", "job.finished"]
    assert job_records[-1].status == "Succeeded"
    assert job_records[-1].job_type == "seat_downgrade_sweep"
    assert job_records[-1].correlation_id == "corr-sweep-1"


def test_store_failure_fails_the_sweep(span_exporter: InMemorySpanExporter) -> None:
    def broken() -> None:
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    with pytest.raises(UnknownStoreError) as exc_info:
        run_sweep("lead_redistribution", "leads.redistribute_overdue", broken)

    assert exc_info.value.status_code == 500
    assert exc_info.value.code == "unknown"
    failed = [span for span in span_exporter.get_finished_spans() if span.name == "leads.redistribute_overdue"]
    assert failed
    assert not failed[-1].status.is_ok


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, 50),
        ("", 50),
        ("abc", 50),
        (True, 50),
        ("10", 10),
        ("2.7", 2),
        (7.9, 7),
        ("0", 1),
        ("-5", 1),
        ("100000", 500),
        ("1e9", 500),
        ("inf", 50),
    ],
)
def test_parse_limit(raw: object, expected: int) -> None:
    assert parse_limit(raw, default=50, maximum=500) == expected
