from __future__ import annotations

import logging
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadops.billing.models import SeatPlan, SeatPlanChange
from leadops.billing.service import SeatBillingService
from leadops.context import correlation_scope
from leadops.core.config import get_settings
from leadops.core.database import Base
from leadops.leads.distribution import LeadDistributionService
from leadops.leads.models import Contact
from leadops.platform.audit import AuditEntry, AuditEvent, AuditEventRepository, AuditTrail
from leadops.team.models import AgentProfile

NOW = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)


class BrokenAuditRepository(AuditEventRepository):
    def add(self, session: Session, entry: AuditEntry) -> AuditEvent:
        raise OperationalError("INSERT INTO audit_event", {}, Exception("disk I/O error"))


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


def _failures() -> float:
    return REGISTRY.get_sample_value("audit_write_failures_total") or 0.0


def test_dispatch_persists_entries_with_correlation_id(db_session: Session) -> None:
    with correlation_scope("corr-audit-1"):
        written = AuditTrail().dispatch(
            db_session,
            AuditEntry(tenant_id="tenant-a", action="first", message="First."),
            AuditEntry(tenant_id="tenant-a", action="second", message="Second.", level="warning", metadata={"n": 2}),
        )

    events = AuditEventRepository().list_for_tenant(db_session, "tenant-a")
    assert written == 2
    assert [event.action for event in events] == ["first", "second"]
    assert events[1].level == "warning"
    assert events[1].details == {"n": 2}
    assert all(event.correlation_id == "corr-audit-1" for event in events)


def test_failed_write_is_logged_and_counted_not_raised(
    db_session: Session, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.WARNING)
    before = _failures()

    written = AuditTrail(repository=BrokenAuditRepository()).dispatch(
        db_session, AuditEntry(tenant_id="tenant-a", action="lost", message="Lost.")
    )

    assert written == 0
    assert _failures() == before + 1
    records = [record for record in caplog.records if record.name == "leadops.audit"]
    assert records
    assert records[-1].getMessage() == "audit.write_failed"
    assert records[-1].action == "lost"


def test_reassignment_survives_audit_failure(db_session: Session) -> None:
    db_session.add_all(
        [
            AgentProfile(tenant_id="tenant-a", user_id="broker-1", role="broker"),
            AgentProfile(tenant_id="tenant-a", user_id="broker-2", role="broker"),
        ]
    )
    contact = Contact(
        tenant_id="tenant-a",
        name="Lead",
        phone="+5511900001111",
        assigned_to="broker-1",
        assigned_at=NOW - timedelta(hours=1),
    )
    db_session.add(contact)
    db_session.commit()

    service = LeadDistributionService(audit=AuditTrail(repository=BrokenAuditRepository()))
    result = service.redistribute_overdue(db_session, limit=10, now=NOW)

    assert result.reassigned == 1
    db_session.refresh(contact)
    assert contact.assigned_to == "broker-2"


def test_downgrade_transition_survives_audit_failure(db_session: Session) -> None:
    plan = SeatPlan(tenant_id="tenant-a", broker_seat_limit=3, cycle_anchor_at=NOW - timedelta(days=40))
    change = SeatPlanChange(
        tenant_id="tenant-a",
        action="downgrade",
        status="scheduled",
        old_limit=3,
        new_limit=2,
        effective_at=NOW - timedelta(minutes=1),
    )
    db_session.add_all([plan, change])
    db_session.commit()

    service = SeatBillingService(audit=AuditTrail(repository=BrokenAuditRepository()))
    result = service.apply_due_downgrades(db_session, limit=10, now=NOW)

    assert result.applied == 1
    db_session.refresh(plan)
    db_session.refresh(change)
    assert plan.broker_seat_limit == 2
    assert change.status == "applied"
