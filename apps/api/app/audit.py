"""Field-level audit trail.

``compute_diff`` turns a before/after pair of flat field maps into a sparse
change set and ``record`` appends it to ``audit_log``. Both are entity-agnostic:
callers decide which fields to compare and which entity the entry describes.
"""

from __future__ import annotations

import enum
import json
import logging
import uuid
from datetime import date, datetime, timezone
from collections.abc import Mapping
from typing import Any, TypedDict, Union

from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.metrics import observe_audit_entry
from app.models.audit import AuditLog

logger = logging.getLogger("app.crm.audit")

Scalar = Union[str, int, float, bool, None]
DiffValue = Union[Scalar, list[Scalar]]


class FieldDiff(TypedDict):
    old: DiffValue
    new: DiffValue


ChangeSet = dict[str, FieldDiff]


class AuditAction:
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    STATUS_CHANGE = "STATUS_CHANGE"
    STAGE_CHANGE = "STAGE_CHANGE"
    UNDO = "UNDO"
    NEXT_ACTION_DONE = "NEXT_ACTION_DONE"


def _normalize_scalar(value: Any) -> Scalar:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, enum.Enum):
        return _normalize_scalar(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    raise TypeError(f"unsupported audit value type: {type(value).__name__}")


def normalize_value(value: Any) -> DiffValue:
    """Coerce a field value into the scalar-or-ordered-list union stored in diffs."""
    if isinstance(value, (list, tuple)):
        return [_normalize_scalar(item) for item in value]
    return _normalize_scalar(value)


def serialize_value(value: Any) -> str:
    return json.dumps(normalize_value(value), separators=(",", ":"))


def compute_diff(old_values: Mapping[str, Any], new_values: Mapping[str, Any]) -> ChangeSet | None:
    # Only keys of new_values are compared; a missing key and None are the same.
    diff: ChangeSet = {}
    for key, new_value in new_values.items():
        old_value = old_values.get(key)
        if serialize_value(old_value) != serialize_value(new_value):
            diff[key] = {"old": normalize_value(old_value), "new": normalize_value(new_value)}
    return diff or None


def record(
    session: Session,
    *,
    actor_id: str | None,
    action: str,
    entity_type: str,
    entity_id: str | uuid.UUID,
    changes: ChangeSet | None,
    correlation_id: str | None = None,
) -> str:
    entry = AuditLog(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        changes=dict(changes) if changes is not None else None,
        correlation_id=correlation_id or get_correlation_id(),
        created_at=datetime.now(timezone.utc),
    )
    session.add(entry)
    session.flush()

    observe_audit_entry(entity_type, action)
    logger.info(
        "audit.recorded",
        extra={
            "audit_entry_id": entry.id,
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "action": action,
            "actor_id": actor_id,
        },
    )
    return entry.id
