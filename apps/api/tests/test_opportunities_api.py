from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date, timedelta

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.crm.api import get_current_user
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


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(user_id="colleague-1", correlation_id=getattr(request.state, "correlation_id", None))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_opportunity(client: TestClient) -> dict:
    response = client.post("/api/crm/opportunities", json={"seats_requested": 3, "passenger_seats": 2})
    assert response.status_code == 201
    return response.json()


def _create_human(client: TestClient, first_name: str) -> dict:
    response = client.post("/api/crm/humans", json={"first_name": first_name, "last_name": "Traveller"})
    assert response.status_code == 201
    return response.json()


def _next_action(description: str = "Call about dates", days: int = 2) -> dict:
    return {
        "description": description,
        "type": "phone_call",
        "due_date": (date.today() + timedelta(days=days)).isoformat(),
    }


def test_stage_change_requires_next_action(client: TestClient) -> None:
    opportunity = _create_opportunity(client)

    response = client.patch(f"/api/crm/opportunities/{opportunity['id']}/stage", json={"stage": "qualified"})

    assert response.status_code == 400
    assert response.json()["code"] == "OPPORTUNITY_NEXT_ACTION_REQUIRED"
    assert response.json()["correlation_id"] == response.headers["x-correlation-id"]


def test_stage_change_with_inline_next_action(client: TestClient) -> None:
    opportunity = _create_opportunity(client)

    response = client.patch(
        f"/api/crm/opportunities/{opportunity['id']}/stage",
        json={"stage": "qualified", "next_action": _next_action()},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["data"]["stage"] == "qualified"
    assert body["data"]["next_action_owner_id"] == "colleague-1"
    assert body["audit_entry_id"]


def test_closed_lost_requires_loss_reason(client: TestClient) -> None:
    opportunity = _create_opportunity(client)

    missing = client.patch(f"/api/crm/opportunities/{opportunity['id']}/stage", json={"stage": "closed_lost"})
    assert missing.status_code == 400
    assert missing.json()["code"] == "OPPORTUNITY_LOSS_REASON_REQUIRED"

    closed = client.patch(
        f"/api/crm/opportunities/{opportunity['id']}/stage",
        json={"stage": "closed_lost", "loss_reason": "Dates moved"},
    )
    assert closed.status_code == 200
    assert closed.json()["data"]["loss_reason"] == "Dates moved"


def test_patch_cannot_blank_loss_reason_of_lost_opportunity(client: TestClient) -> None:
    opportunity = _create_opportunity(client)
    client.patch(
        f"/api/crm/opportunities/{opportunity['id']}/stage",
        json={"stage": "closed_lost", "loss_reason": "Dates moved"},
    )

    response = client.patch(f"/api/crm/opportunities/{opportunity['id']}", json={"loss_reason": "   "})

    assert response.status_code == 400
    assert response.json()["code"] == "OPPORTUNITY_LOSS_REASON_REQUIRED"
    assert client.get(f"/api/crm/opportunities/{opportunity['id']}").json()["loss_reason"] == "Dates moved"


def test_closing_with_next_action_payload_is_invalid(client: TestClient) -> None:
    opportunity = _create_opportunity(client)

    response = client.patch(
        f"/api/crm/opportunities/{opportunity['id']}/stage",
        json={"stage": "closed_flown", "next_action": _next_action()},
    )

    assert response.status_code == 422


def test_closed_flown_records_activity_in_detail(client: TestClient) -> None:
    opportunity = _create_opportunity(client)
    set_action = client.patch(
        f"/api/crm/opportunities/{opportunity['id']}/next-action",
        json=_next_action("Collect passports"),
    )
    assert set_action.status_code == 200

    flown = client.patch(f"/api/crm/opportunities/{opportunity['id']}/stage", json={"stage": "closed_flown"})
    assert flown.status_code == 200

    detail = client.get(f"/api/crm/opportunities/{opportunity['id']}")
    assert detail.status_code == 200
    assert detail.json()["next_action_description"] is None
    assert [activity["subject"] for activity in detail.json()["activities"]] == ["[Auto] Collect passports"]


def test_next_action_done_endpoint(client: TestClient) -> None:
    opportunity = _create_opportunity(client)

    none_yet = client.post(f"/api/crm/opportunities/{opportunity['id']}/next-action/done")
    assert none_yet.status_code == 400
    assert none_yet.json()["code"] == "OPPORTUNITY_NO_NEXT_ACTION"

    client.patch(f"/api/crm/opportunities/{opportunity['id']}/next-action", json=_next_action("Send invoice"))
    done = client.post(f"/api/crm/opportunities/{opportunity['id']}/next-action/done")
    assert done.status_code == 200
    assert done.json()["data"]["next_action_description"] is None

    entry = client.get(f"/api/crm/audit-log/{done.json()['audit_entry_id']}").json()
    assert entry["action"] == "NEXT_ACTION_DONE"
    assert entry["changes"] == {"next_action_description": {"old": "Send invoice", "new": None}}


def test_link_roles_and_primary_guard(client: TestClient) -> None:
    opportunity = _create_opportunity(client)
    lead = _create_human(client, "Lead")
    guest = _create_human(client, "Guest")

    first = client.post(f"/api/crm/opportunities/{opportunity['id']}/humans", json={"human_id": lead["id"], "role": "passenger"})
    assert first.status_code == 201
    assert first.json()["role_name"] == "primary"

    second = client.post(f"/api/crm/opportunities/{opportunity['id']}/humans", json={"human_id": guest["id"]})
    assert second.status_code == 201
    assert second.json()["role_name"] == "passenger"

    blocked = client.delete(f"/api/crm/opportunity-humans/{first.json()['id']}")
    assert blocked.status_code == 400
    assert blocked.json()["code"] == "OPPORTUNITY_PRIMARY_REQUIRED"

    promoted = client.patch(f"/api/crm/opportunity-humans/{second.json()['id']}", json={"role": "primary"})
    assert promoted.status_code == 200
    assert promoted.json()["role_name"] == "primary"

    detail = client.get(f"/api/crm/opportunities/{opportunity['id']}").json()
    roles = {link["human_id"]: link["role_name"] for link in detail["linked_humans"]}
    assert roles == {lead["id"]: "passenger", guest["id"]: "primary"}

    removed = client.delete(f"/api/crm/opportunity-humans/{first.json()['id']}")
    assert removed.status_code == 200
    assert removed.json() == {"status": "deleted"}


def test_link_unknown_human(client: TestClient) -> None:
    opportunity = _create_opportunity(client)

    response = client.post(f"/api/crm/opportunities/{opportunity['id']}/humans", json={"human_id": str(uuid.uuid4())})

    assert response.status_code == 404
    assert response.json()["code"] == "HUMAN_NOT_FOUND"


def test_list_overdue_and_delete(client: TestClient) -> None:
    late = _create_opportunity(client)
    fresh = _create_opportunity(client)
    client.patch(f"/api/crm/opportunities/{late['id']}/next-action", json=_next_action("Chase deposit", days=-1))
    client.patch(f"/api/crm/opportunities/{fresh['id']}/next-action", json=_next_action("Share quote", days=4))

    overdue = client.get("/api/crm/opportunities", params={"overdue_only": "true"})
    assert overdue.status_code == 200
    assert [item["id"] for item in overdue.json()] == [late["id"]]
    assert overdue.json()[0]["is_overdue"] is True

    deleted = client.delete(f"/api/crm/opportunities/{late['id']}")
    assert deleted.status_code == 200
    assert client.get(f"/api/crm/opportunities/{late['id']}").status_code == 404


def test_patch_opportunity_fields(client: TestClient) -> None:
    opportunity = _create_opportunity(client)

    response = client.patch(
        f"/api/crm/opportunities/{opportunity['id']}",
        json={"pet_seats": 1, "flight_id": "FL-100"},
    )

    assert response.status_code == 200
    assert response.json()["data"]["pet_seats"] == 1
    assert response.json()["data"]["flight_id"] == "FL-100"
    entry = client.get(f"/api/crm/audit-log/{response.json()['audit_entry_id']}").json()
    assert entry["changes"] == {
        "pet_seats": {"old": 0, "new": 1},
        "flight_id": {"old": None, "new": "FL-100"},
    }
