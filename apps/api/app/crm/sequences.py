from __future__ import annotations

import logging

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.crm.display_id import format_display_id
from app.crm.models import DisplayIdCounter
from app.metrics import observe_display_id_allocated

logger = logging.getLogger("app.crm.sequences")

_UPSERT_INSERTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class SequenceAllocator:
    """Per-prefix monotonic counters backing display ids.

    Every call moves the stored counter forward by exactly one inside a single
    statement, so two callers never observe the same value even without a
    serializing transaction around them. On SQLite and PostgreSQL that
    statement is ``INSERT ... ON CONFLICT DO UPDATE ... RETURNING``; other
    dialects use ``UPDATE ... RETURNING`` and create the row under a savepoint.
    """

    def next(self, session: Session, prefix: str) -> int:
        insert = _UPSERT_INSERTS.get(session.get_bind().dialect.name)
        if insert is not None:
            stmt = (
                insert(DisplayIdCounter)
                .values(prefix=prefix, counter=1)
                .on_conflict_do_update(
                    index_elements=[DisplayIdCounter.prefix],
                    set_={"counter": DisplayIdCounter.counter + 1},
                )
                .returning(DisplayIdCounter.counter)
            )
            return session.execute(stmt).scalar_one()

        counter = self._increment(session, prefix)
        if counter is not None:
            return counter
        try:
            with session.begin_nested():
                session.add(DisplayIdCounter(prefix=prefix, counter=1))
            return 1
        except IntegrityError:
            # Another writer created the row first.
            counter = self._increment(session, prefix)
            if counter is None:
                raise
            return counter

    def allocate_display_id(self, session: Session, prefix: str) -> str:
        counter = self.next(session, prefix)
        display_id = format_display_id(prefix, counter)
        observe_display_id_allocated(prefix)
        logger.info(
            "display_id.allocated",
            extra={"prefix": prefix, "counter": counter, "display_id": display_id},
        )
        return display_id

    def current(self, session: Session, prefix: str) -> int:
        counter = session.scalar(select(DisplayIdCounter.counter).where(DisplayIdCounter.prefix == prefix))
        return counter or 0

    def _increment(self, session: Session, prefix: str) -> int | None:
        result = session.execute(
            update(DisplayIdCounter)
            .where(DisplayIdCounter.prefix == prefix)
            .values(counter=DisplayIdCounter.counter + 1)
            .returning(DisplayIdCounter.counter)
            .execution_options(synchronize_session=False)
        )
        return result.scalar_one_or_none()


sequence_allocator = SequenceAllocator()


def next_display_id(session: Session, prefix: str) -> str:
    return sequence_allocator.allocate_display_id(session, prefix)
