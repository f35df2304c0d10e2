"""ChoreLog lifecycle: lazy creation and the version-checked state machine."""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .clock import FamilyClock
from .config import SYSTEM_ACTOR
from .exceptions import ConcurrencyConflictError, NotFoundError, ValidationError
from .ledger import LedgerEngine
from .models import ALLOWED_TRANSITIONS, ChoreStatus
from .ops import StructuredLogger
from .persistence import ChoreDefinition, ChoreLog, Database, LedgerTransaction, versioned_update
from .schedule import ScheduleResolver


def _find_log(session: Session, chore_id: int, on_date: date) -> Optional[ChoreLog]:
    return session.exec(
        select(ChoreLog).where(ChoreLog.chore_definition_id == chore_id, ChoreLog.chore_date == on_date)
    ).first()


class ChoreLogService:
    """Move chore logs through their statuses and post the money they owe.

    ``Pending -> Completed | Missed | Skipped | Help``, ``Completed -> Approved``
    and ``Help -> Completed | Missed``; everything else is rejected. Each
    accepted transition bumps the log's version in the same statement that
    checks it.
    """

    def __init__(
        self,
        database: Database,
        resolver: ScheduleResolver,
        ledger: LedgerEngine,
        clock: FamilyClock,
        logger: StructuredLogger,
    ) -> None:
        self._database = database
        self._resolver = resolver
        self._ledger = ledger
        self._clock = clock
        self._logger = logger

    def get(self, log_id: int) -> ChoreLog:
        log = self._database.read(lambda session: session.get(ChoreLog, log_id))
        if log is None:
            raise NotFoundError("Chore log not found.")
        return log

    def logs_for_date(self, on_date: date) -> Tuple[ChoreLog, ...]:
        return tuple(
            self._database.read(
                lambda session: session.exec(select(ChoreLog).where(ChoreLog.chore_date == on_date)).all()
            )
        )

    def get_or_create(self, chore_id: int, on_date: date) -> ChoreLog:
        """Return the log for (chore, date), creating a Pending one on first use."""

        def _lookup(session: Session) -> Tuple[Optional[ChoreDefinition], Optional[ChoreLog]]:
            return session.get(ChoreDefinition, chore_id), _find_log(session, chore_id, on_date)

        definition, log = self._database.read(_lookup)
        if definition is None:
            raise NotFoundError("Chore not found.")
        if log is not None:
            return log
        if not self._resolver.is_scheduled(chore_id, on_date):
            raise ValidationError(f"{definition.name} is not scheduled on {on_date.isoformat()}.")

        def _create(session: Session) -> ChoreLog:
            created = ChoreLog(chore_definition_id=chore_id, chore_date=on_date)
            session.add(created)
            session.flush()
            session.refresh(created)
            return created

        try:
            log = self._database.run(_create)
        except IntegrityError:
            # another request created it first
            log = self._database.read(lambda session: _find_log(session, chore_id, on_date))
            if log is None:
                raise
            return log
        self._logger.log("chore_log_created", log_id=log.id, chore_id=chore_id, date=on_date.isoformat())
        return log

    def transition(
        self,
        log_id: int,
        new_status: ChoreStatus,
        actor: str,
        expected_version: int,
        *,
        notes: Optional[str] = None,
        help_reason: Optional[str] = None,
    ) -> Tuple[ChoreLog, Optional[LedgerTransaction]]:
        """Apply one status change and any resulting transaction atomically."""

        new_status = ChoreStatus(new_status)

        def _transition(session: Session) -> Tuple[ChoreLog, Optional[LedgerTransaction], ChoreStatus]:
            log = session.get(ChoreLog, log_id)
            if log is None:
                raise NotFoundError("Chore log not found.")
            if log.version != expected_version:
                raise ConcurrencyConflictError("ChoreLog", log_id, expected_version)
            previous = log.status
            if new_status not in ALLOWED_TRANSITIONS[previous]:
                raise ValidationError(f"Cannot change a {previous.value} chore to {new_status.value}.")
            definition = session.get(ChoreDefinition, log.chore_definition_id)
            if definition is None:
                raise NotFoundError("Chore not found.")

            values = self._values_for(new_status, actor, definition, previous=previous)
            if notes is not None:
                values["notes"] = notes
            if new_status is ChoreStatus.HELP:
                values["help_reason"] = help_reason
            versioned_update(session, ChoreLog, log_id, expected_version, **values)
            session.refresh(log)
            transaction = self._ledger.post_chore_outcome(session, log, definition)
            return log, transaction, previous

        log, transaction, previous = self._database.run(_transition)
        self._logger.log(
            "chore_status_changed",
            log_id=log_id,
            from_status=previous.value,
            to_status=log.status.value,
            actor=actor,
            version=log.version,
            transaction_id=transaction.id if transaction else None,
        )
        return log, transaction

    def _values_for(
        self, new_status: ChoreStatus, actor: str, definition: ChoreDefinition, *, previous: ChoreStatus
    ) -> Dict[str, Any]:
        now = self._clock.utcnow()
        values: Dict[str, Any] = {"status": new_status}
        if previous is ChoreStatus.HELP:
            values["help_responded_by"] = actor
        if new_status is ChoreStatus.COMPLETED:
            values.update(completed_by=actor, completed_at=now)
            if definition.auto_approve:
                values.update(status=ChoreStatus.APPROVED, approved_by=SYSTEM_ACTOR, approved_at=now)
        elif new_status is ChoreStatus.APPROVED:
            values.update(approved_by=actor, approved_at=now)
        elif new_status is ChoreStatus.HELP:
            values.update(help_requested_at=now)
        return values

    def history_for_user(self, user_id: str, *, start: Optional[date] = None) -> Sequence[Tuple[ChoreLog, ChoreDefinition]]:
        """Return the user's logs joined to their definitions, oldest first."""

        def _history(session: Session) -> Sequence[Tuple[ChoreLog, ChoreDefinition]]:
            statement = (
                select(ChoreLog, ChoreDefinition)
                .where(ChoreLog.chore_definition_id == ChoreDefinition.id)
                .where(ChoreDefinition.assigned_user_id == user_id)
            )
            if start is not None:
                statement = statement.where(ChoreLog.chore_date >= start)
            return session.exec(statement.order_by(ChoreLog.chore_date, ChoreLog.id)).all()

        return tuple(self._database.read(_history))


__all__ = ["ChoreLogService"]
