from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadops import events
from leadops.core.config import get_settings
from leadops.core.database import Base, get_db
from leadops.followups.models import FollowupJob
from leadops.leads.models import Contact, InboundMessage, WebhookEndpoint
from leadops.main import app
from leadops.team.models import AgentProfile


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
def clear_state() -> Generator[None, None, None]:
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def seeded(db_session: Session) -> None:
    db_session.add_all(
        [
            WebhookEndpoint(tenant_id="tenant-a", token="tok-site", source="site"),
            WebhookEndpoint(tenant_id="tenant-a", token="tok-wa", source="whatsapp"),
            WebhookEndpoint(tenant_id="tenant-a", token="tok-off", source="site", is_active=False),
            AgentProfile(tenant_id="tenant-a", user_id="broker-1", role="broker"),
            AgentProfile(tenant_id="tenant-a", user_id="broker-2", role="broker"),
        ]
    )
    db_session.commit()


@pytest.fixture()
def client(db_session: Session, seeded: None) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _lead(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "source": "site",
        "external_id": "form-1",
        "name": "Ana Lima",
        "phone": "+5511912345678",
        "email": "ana@example.com",
        "message": "I'd like to visit the flat on Rua Augusta.",
    }
    payload.update(overrides)
    return payload


def _meta_body(phone: str, message_id: str, text: str) -> dict[str, object]:
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "changes": [
                    {
                        "value": {
                            "contacts": [{"profile": {"name": "Carlos"}}],
                            "messages": [{"from": phone, "id": message_id, "text": {"body": text}}],
                        }
                    }
                ]
            }
        ],
    }


def test_structured_lead_creates_assigned_contact_with_followups(client: TestClient, db_session: Session) -> None:
    response = client.post("/api/webhooks/leads/tok-site", json=_lead(), headers={"X-Correlation-Id": "corr-lead-1"})

    assert response.status_code == 201
    contact = db_session.scalar(select(Contact).where(Contact.phone == "+5511912345678"))
    assert contact is not None
    assert str(contact.id) == response.json()["contact_id"]
    assert contact.status == "new"
    assert contact.source == "site"
    assert contact.assigned_to in {"broker-1", "broker-2"}
    assert contact.assigned_at is not None

    steps = db_session.scalars(select(FollowupJob.step).where(FollowupJob.contact_id == contact.id)).all()
    assert sorted(steps) == ["24h", "3d", "5m"]

    received = [item for item in events.published_events if item["event_type"] == "lead.received"]
    assert len(received) == 1
    assert received[0]["tenant_id"] == "tenant-a"
    assert received[0]["contact_id"] == str(contact.id)
    assert received[0]["correlation_id"] == "corr-lead-1"


def test_redelivered_external_id_is_idempotent(client: TestClient, db_session: Session) -> None:
    first = client.post("/api/webhooks/leads/tok-site", json=_lead())
    second = client.post("/api/webhooks/leads/tok-site", json=_lead())

    assert first.status_code == 201
    assert second.status_code == 201
    assert first.json()["contact_id"] == second.json()["contact_id"]
    assert db_session.scalar(select(func.count(Contact.id))) == 1
    assert db_session.scalar(select(func.count(InboundMessage.id))) == 1
    assert len(events.published_events) == 1


def test_new_message_from_known_phone_reuses_contact(client: TestClient, db_session: Session) -> None:
    first = client.post("/api/webhooks/leads/tok-site", json=_lead())
    second = client.post("/api/webhooks/leads/tok-site", json=_lead(external_id="form-2", message="Any news?"))

    assert first.json()["contact_id"] == second.json()["contact_id"]
    assert db_session.scalar(select(func.count(InboundMessage.id))) == 2
    assert [item["event_type"] for item in events.published_events] == ["lead.received", "lead.message_received"]
    assert db_session.scalar(select(func.count(FollowupJob.id))) == 3


def test_new_contacts_rotate_between_brokers(client: TestClient, db_session: Session) -> None:
    client.post("/api/webhooks/leads/tok-site", json=_lead())
    client.post("/api/webhooks/leads/tok-site", json=_lead(external_id="form-9", phone="+5511900000009"))

    owners = set(db_session.scalars(select(Contact.assigned_to)).all())
    assert owners == {"broker-1", "broker-2"}


def test_source_mismatch_is_rejected(client: TestClient) -> None:
    response = client.post("/api/webhooks/leads/tok-site", json=_lead(source="portal_zap"))

    assert response.status_code == 400
    assert response.json() == {"ok": False, "code": "validation_error", "message": "source does not match webhook endpoint"}


def test_invalid_payload_returns_validation_error(client: TestClient) -> None:
    response = client.post("/api/webhooks/leads/tok-site", json=_lead(phone="12"))

    assert response.status_code == 400
    body = response.json()
    assert body["ok"] is False
    assert body["code"] == "validation_error"
    assert body["errors"]


@pytest.mark.parametrize("token", ["tok-missing", "tok-off"])
def test_unknown_or_inactive_token_is_not_found(client: TestClient, token: str) -> None:
    response = client.post(f"/api/webhooks/leads/{token}", json=_lead())

    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_whatsapp_verification_handshake(client: TestClient) -> None:
    ok = client.get(
        "/api/webhooks/whatsapp/tok-wa",
        params={"hub.mode": "subscribe", "hub.verify_token": "tok-wa", "hub.challenge": "12345"},
    )
    denied = client.get(
        "/api/webhooks/whatsapp/tok-wa",
        params={"hub.mode": "subscribe", "hub.verify_token": "other", "hub.challenge": "12345"},
    )

    assert ok.status_code == 200
    assert ok.text == "12345"
    assert denied.status_code == 403
    assert denied.text == "Forbidden"


def test_whatsapp_meta_json_webhook_ingests_messages(client: TestClient, db_session: Session) -> None:
    response = client.post("/api/webhooks/whatsapp/tok-wa", json=_meta_body("5511977770000", "wamid.A", "Hi!"))

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["received"] == 1
    assert body["ingested"] == 1
    assert body["skipped"] == 0
    contact = db_session.scalar(select(Contact).where(Contact.phone == "5511977770000"))
    assert contact is not None
    assert contact.name == "Carlos"
    assert contact.source == "whatsapp"
    assert body["contacts"] == [str(contact.id)]

    again = client.post("/api/webhooks/whatsapp/tok-wa", json=_meta_body("5511977770000", "wamid.A", "Hi!"))
    assert again.json()["ingested"] == 1
    assert db_session.scalar(select(func.count(InboundMessage.id))) == 1


def test_whatsapp_twilio_form_webhook_ingests_message(client: TestClient, db_session: Session) -> None:
    response = client.post(
        "/api/webhooks/whatsapp/tok-wa",
        data={"From": "whatsapp:+5511966660000", "Body": "Hello", "MessageSid": "SM42", "ProfileName": "Bia"},
    )

    assert response.status_code == 200
    assert response.json()["ingested"] == 1
    message = db_session.scalar(select(InboundMessage).where(InboundMessage.external_id == "SM42"))
    assert message is not None
    assert message.provider == "twilio"
    assert message.body == "Hello"


def test_whatsapp_status_callback_is_acknowledged_without_leads(client: TestClient, db_session: Session) -> None:
    response = client.post(
        "/api/webhooks/whatsapp/tok-wa",
        json={"entry": [{"changes": [{"value": {"statuses": [{"status": "read"}]}}]}]},
    )

    assert response.status_code == 200
    assert response.json()["ingested"] == 0
    assert response.json()["skipped"] == 1
    assert db_session.scalar(select(func.count(Contact.id))) == 0


def test_whatsapp_rejects_invalid_json_and_unknown_token(client: TestClient) -> None:
    invalid = client.post(
        "/api/webhooks/whatsapp/tok-wa",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )
    unknown = client.post("/api/webhooks/whatsapp/tok-nope", json={"entry": []})

    assert invalid.status_code == 400
    assert invalid.json()["code"] == "validation_error"
    assert unknown.status_code == 404


def test_whatsapp_form_body_with_invalid_utf8_is_rejected(client: TestClient, db_session: Session) -> None:
    response = client.post(
        "/api/webhooks/whatsapp/tok-wa",
        content=b"From=whatsapp%3A%2B5511966660000&Body=\xff\xfe&MessageSid=SM77",
        headers={"content-type": "application/x-www-form-urlencoded"},
    )

    assert response.status_code == 400
    assert response.json() == {"ok": False, "code": "validation_error", "message": "form body is not valid UTF-8"}
    assert db_session.scalar(select(func.count(Contact.id))) == 0
