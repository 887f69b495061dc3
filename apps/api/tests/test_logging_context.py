from __future__ import annotations

import json
import logging
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadops.context import correlation_scope
from leadops.core.config import get_settings
from leadops.core.database import Base, get_db
from leadops.leads.models import WebhookEndpoint
from leadops.logging import JsonLogFormatter
from leadops.main import app


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
def reset_settings() -> Generator[None, None, None]:
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


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.post(
        "/api/webhooks/leads/unknown-token",
        json={"name": "Ana", "phone": "+5511900000000"},
        headers={"X-Correlation-Id": "abc-123"},
    )
    assert response.status_code == 404

    records = [
        record for record in caplog.records if record.name == "leadops.request" and record.getMessage() == "http.request"
    ]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "POST"
        and getattr(record, "path", None) == "/api/webhooks/leads/{token}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_ingestion_logs_carry_tenant_and_provider(
    client: TestClient, db_session: Session, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO)
    db_session.add(WebhookEndpoint(tenant_id="tenant-log", token="tok-log", source="portal_zap", is_active=True))
    db_session.commit()

    response = client.post(
        "/api/webhooks/leads/tok-log",
        json={"name": "Portal Lead", "phone": "+5511987654321"},
        headers={"X-Correlation-Id": "corr-log-1"},
    )
    assert response.status_code == 201

    lead_records = [record for record in caplog.records if record.name == "leadops.leads.ingestion" and record.getMessage() == "lead.received"]
    assert lead_records
    assert lead_records[-1].tenant_id == "tenant-log"
    assert lead_records[-1].provider == "portal_zap"
    assert getattr(lead_records[-1], "correlation_id", None) == "corr-log-1"


def test_json_formatter_keeps_known_fields_and_truncates_errors() -> None:
    with correlation_scope("corr-format-1"):
        record = logging.getLogger("leadops.jobs").makeRecord(
            "leadops.jobs",
            logging.ERROR,
            __file__,
            1,
            "job.finished",
            (),
            None,
            extra={
                "job_type": "lead_redistribution",
                "status": "Failed",
                "tenant_id": "tenant-a",
                "error": "x" * 800,
                "secret": "hidden",
            },
        )

    payload = json.loads(JsonLogFormatter(service="leadops-worker", environment="test").format(record))

    assert payload["logger"] == "leadops.jobs"
    assert payload["msg"] == "job.finished"
    assert payload["level"] == "ERROR"
    assert payload["service"] == "leadops-worker"
    assert payload["env"] == "test"
    assert payload["correlation_id"] == "corr-format-1"
    assert payload["tenant_id"] == "tenant-a"
    assert "tenant_id" not in payload["fields"]
    assert payload["fields"]["job_type"] == "lead_redistribution"
    assert payload["fields"]["status"] == "Failed"
    assert len(payload["fields"]["error"]) == 500
    assert "secret" not in payload["fields"]
