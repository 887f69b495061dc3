from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadops.core.config import get_settings
from leadops.core.database import Base, get_db
from leadops.leads.models import WebhookEndpoint
from leadops.main import app

SECRET = "metrics-seat-secret"


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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    monkeypatch.setenv("BILLING_SEATS_CRON_SECRET", SECRET)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_health_reports_service(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint_exposes_http_job_and_webhook_metrics(client: TestClient, db_session: Session) -> None:
    db_session.add(WebhookEndpoint(tenant_id="tenant-a", token="tok-metrics", source="site", is_active=True))
    db_session.commit()

    assert client.get("/health").status_code == 200
    sweep = client.post("/api/jobs/billing/seats/apply-due", headers={"Authorization": f"Bearer {SECRET}"})
    assert sweep.status_code == 200
    webhook = client.post("/api/webhooks/leads/tok-metrics", json={"name": "Metric Lead", "phone": "+5511955554444"})
    assert webhook.status_code == 201

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "automation_jobs_total" in body
    assert "automation_job_duration_seconds" in body
    assert 'path="/health"' in body
    assert 'path="/api/webhooks/leads/{token}"' in body
    assert 'job_type="seat_downgrade_sweep"' in body
    assert 'webhook_leads_total{provider="site",outcome="ingested"}' in body


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")

    assert response.status_code == 404
