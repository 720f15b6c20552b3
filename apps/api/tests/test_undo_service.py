from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, models  # noqa: F401
from app.audit import AuditAction
from app.core.database import Base
from app.crm.errors import AuditEntryNotFound, HumanNotFound, NoChangesToUndo, UndoNotSupported
from app.crm.models import Human, HumanType, Opportunity
from app.crm.schemas import AccountCreate, AccountUpdate, HumanCreate, HumanUpdate, OpportunityCreate
from app.crm.service import AccountService, ActorUser, HumanService, OpportunityService
from app.crm.undo import UndoRegistry, UndoService, default_undo_registry
from app.models.audit import AuditLog


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
def actor() -> ActorUser:
    return ActorUser(user_id="colleague-1", correlation_id="corr-undo")


@pytest.fixture()
def undo_service() -> UndoService:
    return UndoService(default_undo_registry())


def _human_types(session: Session, human_id: uuid.UUID) -> list[str]:
    return sorted(session.scalars(select(HumanType.type).where(HumanType.human_id == human_id)).all())


def test_undo_scalar_change(db_session: Session, actor: ActorUser, undo_service: UndoService) -> None:
    humans = HumanService()
    created = humans.create_human(db_session, actor, HumanCreate(first_name="Ada", last_name="Lovelace"))
    updated = humans.update_human(db_session, actor, created.id, HumanUpdate(last_name="King"))
    assert updated.audit_entry_id is not None

    undo_entry_id = undo_service.undo(db_session, updated.audit_entry_id, "colleague-2")

    db_session.expire_all()
    human = db_session.get(Human, created.id)
    assert human is not None
    assert human.last_name == "Lovelace"

    undo_entry = db_session.get(AuditLog, undo_entry_id)
    assert undo_entry is not None
    assert undo_entry.action == AuditAction.UNDO
    assert undo_entry.actor_id == "colleague-2"
    assert undo_entry.entity_type == "human"
    assert undo_entry.entity_id == str(created.id)
    assert undo_entry.changes == {"last_name": {"old": "King", "new": "Lovelace"}}


def test_undo_relation_replaces_rows_wholesale(db_session: Session, actor: ActorUser, undo_service: UndoService) -> None:
    humans = HumanService()
    created = humans.create_human(
        db_session,
        actor,
        HumanCreate(first_name="Grace", last_name="Hopper", types=["client"]),
    )
    updated = humans.update_human(db_session, actor, created.id, HumanUpdate(types=["trainer", "client", "flight_broker"]))
    assert updated.audit_entry_id is not None
    assert _human_types(db_session, created.id) == ["client", "flight_broker", "trainer"]

    entry = db_session.get(AuditLog, updated.audit_entry_id)
    assert entry is not None
    assert entry.changes == {
        "types": {"old": ["client"], "new": ["client", "flight_broker", "trainer"]},
    }
    db_session.expire_all()
    stamp = db_session.get(Human, created.id).updated_at

    undo_service.undo(db_session, updated.audit_entry_id, actor.user_id)

    assert _human_types(db_session, created.id) == ["client"]
    db_session.expire_all()
    human = db_session.get(Human, created.id)
    assert human is not None
    assert human.first_name == "Grace"
    # relation-only revert leaves the scalar row untouched
    assert human.updated_at == stamp


def test_undo_relation_from_empty_list(db_session: Session, actor: ActorUser, undo_service: UndoService) -> None:
    humans = HumanService()
    created = humans.create_human(db_session, actor, HumanCreate(first_name="Alan", last_name="Turing"))
    updated = humans.update_human(db_session, actor, created.id, HumanUpdate(types=["client"]))
    assert updated.audit_entry_id is not None

    undo_service.undo(db_session, updated.audit_entry_id, actor.user_id)

    assert _human_types(db_session, created.id) == []


def test_undo_mixed_scalar_and_relation_for_account(
    db_session: Session,
    actor: ActorUser,
    undo_service: UndoService,
) -> None:
    accounts = AccountService()
    created = accounts.create_account(db_session, actor, AccountCreate(name="Acme", type_ids=["corporate"]))
    updated = accounts.update_account(
        db_session,
        actor,
        created.id,
        AccountUpdate(name="Acme Air", status="active", type_ids=["charter", "corporate"]),
    )
    assert updated.audit_entry_id is not None

    undo_service.undo(db_session, updated.audit_entry_id, actor.user_id)

    restored = accounts.get_account(db_session, created.id)
    assert restored.name == "Acme"
    assert restored.status == "open"
    assert restored.type_ids == ["corporate"]
    assert restored.updated_at >= created.updated_at


def test_undo_twice_is_a_redo(db_session: Session, actor: ActorUser, undo_service: UndoService) -> None:
    humans = HumanService()
    created = humans.create_human(db_session, actor, HumanCreate(first_name="Ada", last_name="Lovelace"))
    changed = humans.update_human_status(db_session, actor, created.id, "active")
    assert changed.audit_entry_id is not None

    first_undo = undo_service.undo(db_session, changed.audit_entry_id, actor.user_id)
    assert humans.get_human(db_session, created.id).status == "open"

    undo_service.undo(db_session, first_undo, actor.user_id)
    assert humans.get_human(db_session, created.id).status == "active"

    second_undo_of_change = undo_service.undo(db_session, changed.audit_entry_id, actor.user_id)
    assert second_undo_of_change != first_undo
    assert humans.get_human(db_session, created.id).status == "open"


def test_undo_unknown_entry(db_session: Session, undo_service: UndoService) -> None:
    with pytest.raises(AuditEntryNotFound):
        undo_service.undo(db_session, "does-not-exist", "colleague-1")


def test_undo_entry_without_changes(db_session: Session, actor: ActorUser, undo_service: UndoService) -> None:
    created = HumanService().create_human(db_session, actor, HumanCreate(first_name="Ada", last_name="Lovelace"))
    create_entry = db_session.scalar(
        select(AuditLog).where(AuditLog.entity_id == str(created.id), AuditLog.action == AuditAction.CREATE)
    )
    assert create_entry is not None

    with pytest.raises(NoChangesToUndo):
        undo_service.undo(db_session, create_entry.id, actor.user_id)


def test_undo_unsupported_entity_type_mutates_nothing(
    db_session: Session,
    actor: ActorUser,
    undo_service: UndoService,
) -> None:
    opportunities = OpportunityService()
    created = opportunities.create_opportunity(db_session, actor, OpportunityCreate(seats_requested=2))
    create_entry = db_session.scalar(select(AuditLog).where(AuditLog.entity_id == str(created.id)))
    assert create_entry is not None
    entries_before = len(db_session.scalars(select(AuditLog)).all())

    with pytest.raises(UndoNotSupported):
        undo_service.undo(db_session, create_entry.id, actor.user_id)

    assert len(db_session.scalars(select(AuditLog)).all()) == entries_before
    opportunity = db_session.get(Opportunity, created.id)
    assert opportunity is not None
    assert opportunity.display_id == created.display_id


def test_undo_unknown_field_is_rejected_before_writing(
    db_session: Session,
    actor: ActorUser,
    undo_service: UndoService,
) -> None:
    created = HumanService().create_human(db_session, actor, HumanCreate(first_name="Ada", last_name="Lovelace"))
    entry_id = audit.record(
        db_session,
        actor_id=actor.user_id,
        action=AuditAction.UPDATE,
        entity_type="human",
        entity_id=created.id,
        changes={"first_name": {"old": "Augusta", "new": "Ada"}, "shoe_size": {"old": 5, "new": 6}},
    )
    db_session.commit()

    with pytest.raises(UndoNotSupported):
        undo_service.undo(db_session, entry_id, actor.user_id)

    human = db_session.get(Human, created.id)
    assert human is not None
    assert human.first_name == "Ada"


def test_undo_for_missing_entity(db_session: Session, actor: ActorUser, undo_service: UndoService) -> None:
    entry_id = audit.record(
        db_session,
        actor_id=actor.user_id,
        action=AuditAction.UPDATE,
        entity_type="human",
        entity_id=uuid.uuid4(),
        changes={"first_name": {"old": "Ada", "new": "Grace"}},
    )
    db_session.commit()

    with pytest.raises(HumanNotFound):
        undo_service.undo(db_session, entry_id, actor.user_id)


def test_empty_registry_supports_nothing(db_session: Session, actor: ActorUser) -> None:
    humans = HumanService()
    created = humans.create_human(db_session, actor, HumanCreate(first_name="Ada", last_name="Lovelace"))
    updated = humans.update_human(db_session, actor, created.id, HumanUpdate(first_name="Grace"))
    assert updated.audit_entry_id is not None

    with pytest.raises(UndoNotSupported):
        UndoService(UndoRegistry()).undo(db_session, updated.audit_entry_id, actor.user_id)


def test_default_registry_covers_humans_and_accounts() -> None:
    assert default_undo_registry().entity_types() == ["account", "human"]
