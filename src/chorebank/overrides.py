"""Per-date exceptions (add / remove / move) to the recurring chore plan."""

from __future__ import annotations

from datetime import date
from typing import Optional, Sequence, Tuple

from sqlmodel import Session, select

from .exceptions import NotFoundError, ValidationError
from .models import OverrideType
from .ops import StructuredLogger
from .persistence import ChoreDefinition, ChoreScheduleOverride, Database, utcnow


def _require_chore(session: Session, chore_id: int) -> ChoreDefinition:
    definition = session.get(ChoreDefinition, chore_id)
    if definition is None:
        raise NotFoundError("Chore not found.")
    return definition


def _existing(session: Session, chore_id: int, on_date: date) -> Optional[ChoreScheduleOverride]:
    return session.exec(
        select(ChoreScheduleOverride).where(
            ChoreScheduleOverride.chore_definition_id == chore_id,
            ChoreScheduleOverride.chore_date == on_date,
        )
    ).first()


def _write_add(
    session: Session,
    chore_id: int,
    on_date: date,
    creator: str,
    *,
    assignee: Optional[str],
    override_type: OverrideType,
) -> ChoreScheduleOverride:
    row = _existing(session, chore_id, on_date)
    if row is None:
        row = ChoreScheduleOverride(
            chore_definition_id=chore_id,
            chore_date=on_date,
            override_type=override_type,
            created_by=creator,
        )
    row.override_type = override_type
    if assignee is not None:
        row.override_assigned_user_id = assignee
    row.created_by = creator
    row.created_at = utcnow()
    session.add(row)
    session.flush()
    return row


def _write_remove(
    session: Session, chore_id: int, on_date: date, creator: str, *, keep_marker: bool = False
) -> Optional[ChoreScheduleOverride]:
    row = _existing(session, chore_id, on_date)
    if row is not None and row.override_type is OverrideType.ADD and not keep_marker:
        session.delete(row)
        session.flush()
        return None
    if row is None:
        row = ChoreScheduleOverride(
            chore_definition_id=chore_id,
            chore_date=on_date,
            override_type=OverrideType.REMOVE,
            created_by=creator,
        )
    row.override_type = OverrideType.REMOVE
    row.override_assigned_user_id = None
    row.created_by = creator
    row.created_at = utcnow()
    session.add(row)
    session.flush()
    return row


class ScheduleOverrideStore:
    """CRUD over override rows, one row per (chore, date)."""

    def __init__(self, database: Database, logger: StructuredLogger) -> None:
        self._database = database
        self._logger = logger

    def upsert_add(
        self,
        chore_id: int,
        on_date: date,
        creator: str,
        assignee: Optional[str] = None,
    ) -> ChoreScheduleOverride:
        def _add(session: Session) -> ChoreScheduleOverride:
            _require_chore(session, chore_id)
            return _write_add(session, chore_id, on_date, creator, assignee=assignee, override_type=OverrideType.ADD)

        row = self._database.run(_add)
        self._logger.log("override_added", chore_id=chore_id, date=on_date.isoformat(), actor=creator)
        return row

    def upsert_remove(self, chore_id: int, on_date: date, creator: str) -> Optional[ChoreScheduleOverride]:
        """Take a chore off ``on_date``.

        Returns the Remove row, or ``None`` when an ad-hoc Add was simply
        deleted.
        """

        def _remove(session: Session) -> Optional[ChoreScheduleOverride]:
            _require_chore(session, chore_id)
            return _write_remove(session, chore_id, on_date, creator)

        row = self._database.run(_remove)
        self._logger.log("override_removed", chore_id=chore_id, date=on_date.isoformat(), actor=creator)
        return row

    def move(self, chore_id: int, from_date: date, to_date: date, creator: str) -> ChoreScheduleOverride:
        """Move a chore between dates; both rows are written in one transaction."""

        if from_date == to_date:
            raise ValidationError("Cannot move to the same date.")

        def _move(session: Session) -> ChoreScheduleOverride:
            _require_chore(session, chore_id)
            # the source date always ends with a Remove row
            _write_remove(session, chore_id, from_date, creator, keep_marker=True)
            return _write_add(session, chore_id, to_date, creator, assignee=None, override_type=OverrideType.MOVE)

        row = self._database.run(_move)
        self._logger.log(
            "override_moved",
            chore_id=chore_id,
            from_date=from_date.isoformat(),
            to_date=to_date.isoformat(),
            actor=creator,
        )
        return row

    def list_for_range(self, start: date, end: date) -> Tuple[ChoreScheduleOverride, ...]:
        def _list(session: Session) -> Sequence[ChoreScheduleOverride]:
            return session.exec(
                select(ChoreScheduleOverride)
                .where(ChoreScheduleOverride.chore_date >= start, ChoreScheduleOverride.chore_date <= end)
                .order_by(ChoreScheduleOverride.chore_date, ChoreScheduleOverride.chore_definition_id)
            ).all()

        return tuple(self._database.read(_list))

    def list_for_date(self, on_date: date) -> Tuple[ChoreScheduleOverride, ...]:
        return self.list_for_range(on_date, on_date)

    def delete(self, override_id: int) -> None:
        def _delete(session: Session) -> None:
            row = session.get(ChoreScheduleOverride, override_id)
            if row is None:
                raise NotFoundError("Override not found.")
            session.delete(row)

        self._database.run(_delete)
        self._logger.log("override_deleted", override_id=override_id)


__all__ = ["ScheduleOverrideStore"]
