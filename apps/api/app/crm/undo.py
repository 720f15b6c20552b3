"""Single-step revert of audited field changes.

An audit entry's ``changes`` hold ``{field: {"old", "new"}}``. Undo writes the
``old`` side back onto the entity through the applier registered for the
entry's ``entity_type`` and records a new ``UNDO`` entry whose changes are the
mirror image of the undone entry, so undoing that entry again re-applies it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from app import audit
from app.audit import AuditAction, ChangeSet
from app.crm.errors import (
    AccountNotFound,
    AuditEntryNotFound,
    CRMError,
    HumanNotFound,
    NoChangesToUndo,
    NotFound,
    UndoNotSupported,
)
from app.crm.models import Account, AccountType, Human, HumanType
from app.metrics import observe_undo
from app.models.audit import AuditLog
from app.otel import get_tracer, mark_span_error

logger = logging.getLogger("app.crm.undo")
tracer = get_tracer("app.crm.undo")


class RevertApplier(Protocol):
    def apply(self, session: Session, entity_id: str, revert_fields: dict[str, Any], now: datetime) -> None: ...


class ScalarWithRelationApplier:
    """Reverts plain columns on ``model`` plus one multi-valued child relation.

    The relation is addressed in change sets by ``relation_key`` and stored as
    one ``relation_model`` row per value, keyed by ``relation_fk``. Reverting it
    replaces every child row.
    """

    def __init__(
        self,
        model: type,
        *,
        scalar_fields: frozenset[str],
        relation_key: str,
        relation_model: type,
        relation_fk: str,
        relation_value: str,
        not_found: type[NotFound] = NotFound,
    ) -> None:
        self.model = model
        self.scalar_fields = scalar_fields
        self.relation_key = relation_key
        self.relation_model = relation_model
        self.relation_fk = relation_fk
        self.relation_value = relation_value
        self.not_found = not_found

    def apply(self, session: Session, entity_id: str, revert_fields: dict[str, Any], now: datetime) -> None:
        unknown = sorted(key for key in revert_fields if key not in self.scalar_fields and key != self.relation_key)
        if unknown:
            raise UndoNotSupported(
                f"Cannot undo field(s) {', '.join(unknown)} on {self.model.__tablename__}",
                details={"fields": unknown},
            )

        try:
            pk = uuid.UUID(entity_id)
        except ValueError as exc:
            raise self.not_found(f"{self.model.__name__} {entity_id} not found") from exc
        if session.get(self.model, pk) is None:
            raise self.not_found(f"{self.model.__name__} {entity_id} not found")

        if self.relation_key in revert_fields:
            values = revert_fields[self.relation_key] or []
            fk_column = getattr(self.relation_model, self.relation_fk)
            session.execute(delete(self.relation_model).where(fk_column == pk))
            for value in values:
                session.add(self.relation_model(**{self.relation_fk: pk, self.relation_value: value}))

        scalars = {key: value for key, value in revert_fields.items() if key in self.scalar_fields}
        if scalars:
            session.execute(
                update(self.model)
                .where(self.model.id == pk)
                .values(**scalars, updated_at=now)
                .execution_options(synchronize_session="fetch")
            )
        session.flush()


class UndoRegistry:
    def __init__(self) -> None:
        self._appliers: dict[str, RevertApplier] = {}

    def register(self, entity_type: str, applier: RevertApplier) -> None:
        self._appliers[entity_type] = applier

    def get(self, entity_type: str) -> RevertApplier:
        applier = self._appliers.get(entity_type)
        if applier is None:
            raise UndoNotSupported(f"Undo not supported for entity type: {entity_type}")
        return applier

    def entity_types(self) -> list[str]:
        return sorted(self._appliers)


def default_undo_registry() -> UndoRegistry:
    registry = UndoRegistry()
    registry.register(
        "human",
        ScalarWithRelationApplier(
            Human,
            scalar_fields=frozenset({"first_name", "middle_name", "last_name", "status"}),
            relation_key="types",
            relation_model=HumanType,
            relation_fk="human_id",
            relation_value="type",
            not_found=HumanNotFound,
        ),
    )
    registry.register(
        "account",
        ScalarWithRelationApplier(
            Account,
            scalar_fields=frozenset({"name", "status"}),
            relation_key="type_ids",
            relation_model=AccountType,
            relation_fk="account_id",
            relation_value="type_id",
            not_found=AccountNotFound,
        ),
    )
    return registry


def split_changes(changes: ChangeSet) -> tuple[dict[str, Any], ChangeSet]:
    """Return the values to write back and the change set describing that write."""
    revert_fields: dict[str, Any] = {}
    undo_changes: ChangeSet = {}
    for key, change in changes.items():
        revert_fields[key] = change.get("old")
        undo_changes[key] = {"old": change.get("new"), "new": change.get("old")}
    return revert_fields, undo_changes


class UndoService:
    def __init__(self, registry: UndoRegistry | None = None) -> None:
        self.registry = registry if registry is not None else default_undo_registry()

    def undo(self, session: Session, entry_id: str, actor_id: str | None) -> str:
        with tracer.start_as_current_span("audit.undo") as span:
            span.set_attribute("audit_entry_id", entry_id)
            entity_type = "unknown"
            try:
                entry = session.get(AuditLog, entry_id)
                if entry is None:
                    raise AuditEntryNotFound(f"Audit entry {entry_id} not found")
                entity_type = entry.entity_type
                span.set_attribute("entity_type", entity_type)
                span.set_attribute("entity_id", entry.entity_id)

                if not entry.changes:
                    raise NoChangesToUndo("This audit entry has no changes to undo")

                revert_fields, undo_changes = split_changes(entry.changes)
                applier = self.registry.get(entity_type)
                applier.apply(session, entry.entity_id, revert_fields, datetime.now(timezone.utc))

                undo_entry_id = audit.record(
                    session,
                    actor_id=actor_id,
                    action=AuditAction.UNDO,
                    entity_type=entity_type,
                    entity_id=entry.entity_id,
                    changes=undo_changes,
                )
                session.commit()
            except CRMError as exc:
                session.rollback()
                mark_span_error(span, exc)
                observe_undo(entity_type, "rejected")
                logger.info(
                    "audit.undo.rejected",
                    extra={"audit_entry_id": entry_id, "entity_type": entity_type, "error": exc.code},
                )
                raise

            observe_undo(entity_type, "applied")
            logger.info(
                "audit.undo.applied",
                extra={
                    "audit_entry_id": undo_entry_id,
                    "undone_entry_id": entry_id,
                    "entity_type": entity_type,
                    "entity_id": entry.entity_id,
                    "actor_id": actor_id,
                },
            )
            return undo_entry_id
