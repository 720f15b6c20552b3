from __future__ import annotations

from collections.abc import Generator
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.api import get_current_user as crm_get_current_user
from app.crm.service import ActorUser
from app.main import app


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
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_crm_user() -> ActorUser:
        return ActorUser(user_id="metrics-user", correlation_id="metrics-corr-1")

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[crm_get_current_user] = override_crm_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_crm_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    human = client.post("/api/crm/humans", json={"first_name": "Ada", "last_name": "Lovelace"})
    assert human.status_code == 201
    patched = client.patch(f"/api/crm/humans/{human.json()['id']}", json={"last_name": "King"})
    undo = client.post(f"/api/crm/audit-log/{patched.json()['audit_entry_id']}/undo")
    assert undo.status_code == 200

    opportunity = client.post("/api/crm/opportunities", json={})
    due = (date.today() + timedelta(days=1)).isoformat()
    moved = client.patch(
        f"/api/crm/opportunities/{opportunity.json()['id']}/stage",
        json={"stage": "qualified", "next_action": {"description": "Call", "due_date": due}},
    )
    assert moved.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "crm_audit_entries_total" in body
    assert "crm_undo_total" in body
    assert "crm_stage_transitions_total" in body
    assert "crm_display_ids_allocated_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/crm/audit-log/{id}/undo"' in body
    assert 'entity_type="human",outcome="applied"' in body
    assert 'from_stage="open",to_stage="qualified"' in body
    assert 'prefix="HUM"' in body


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")

    assert response.status_code == 404
