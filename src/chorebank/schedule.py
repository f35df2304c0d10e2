"""Resolve the effective chore list for a date and weekly quota progress."""

from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from .cache import ChoreDefinitionCache
from .models import ChoreStatus, OverrideType, ScheduleType, WeeklyProgress
from .overrides import ScheduleOverrideStore
from .persistence import ChoreDefinition, ChoreLog, Database
from .weeks import Weekday, is_flag_set, week_end, week_start


def is_chore_active_on_date(definition: ChoreDefinition, on_date: date) -> bool:
    """Return whether ``definition`` recurs on ``on_date`` (day flag plus bounds)."""

    if not is_flag_set(definition.active_days, on_date):
        return False
    if definition.start_date and on_date < definition.start_date:
        return False
    if definition.end_date and on_date > definition.end_date:
        return False
    return True


def _overlaps_week(definition: ChoreDefinition, start: date, end: date) -> bool:
    if definition.start_date and definition.start_date > end:
        return False
    if definition.end_date and definition.end_date < start:
        return False
    return True


def _sort_key(definition: ChoreDefinition) -> Tuple[int, str]:
    return (definition.sort_order, definition.name)


class ScheduleResolver:
    """Combine cached definitions with per-date overrides."""

    def __init__(
        self,
        database: Database,
        cache: ChoreDefinitionCache,
        overrides: ScheduleOverrideStore,
        *,
        week_start_day: Weekday = Weekday.MONDAY,
    ) -> None:
        self._database = database
        self._cache = cache
        self._overrides = overrides
        self.week_start_day = week_start_day

    # ------------------------------------------------------------------
    # Effective chores
    # ------------------------------------------------------------------
    def chores_for_date(self, on_date: date, user_id: Optional[str] = None) -> List[ChoreDefinition]:
        active = {definition.id: definition for definition in self._cache.get_active()}
        overrides = self._overrides.list_for_date(on_date)

        removed = {row.chore_definition_id for row in overrides if row.override_type is OverrideType.REMOVE}
        assignees = {
            row.chore_definition_id: row.override_assigned_user_id
            for row in overrides
            if row.override_assigned_user_id
        }

        effective: Dict[int, ChoreDefinition] = {
            chore_id: definition
            for chore_id, definition in active.items()
            if chore_id not in removed and is_chore_active_on_date(definition, on_date)
        }
        for row in overrides:
            if row.override_type not in (OverrideType.ADD, OverrideType.MOVE):
                continue
            definition = active.get(row.chore_definition_id)
            if definition is not None and definition.id not in effective:
                effective[definition.id] = definition

        chores = sorted(effective.values(), key=_sort_key)
        if user_id is not None:
            chores = [
                definition
                for definition in chores
                if assignees.get(definition.id, definition.assigned_user_id) == user_id
            ]
        return chores

    def chores_for_user_on_date(self, user_id: str, on_date: date) -> List[ChoreDefinition]:
        return self.chores_for_date(on_date, user_id=user_id)

    def is_scheduled(self, chore_id: int, on_date: date) -> bool:
        return any(definition.id == chore_id for definition in self.chores_for_date(on_date))

    # ------------------------------------------------------------------
    # Weekly frequency
    # ------------------------------------------------------------------
    def week_bounds(self, any_day: date) -> Tuple[date, date]:
        return week_start(any_day, self.week_start_day), week_end(any_day, self.week_start_day)

    def weekly_progress(self, user_id: str, any_day: date) -> Dict[int, WeeklyProgress]:
        """Return progress per weekly-frequency chore using one range read."""

        start, end = self.week_bounds(any_day)
        chores = [
            definition
            for definition in self._cache.get_active()
            if definition.schedule_type is ScheduleType.WEEKLY_FREQUENCY
            and definition.assigned_user_id == user_id
            and _overlaps_week(definition, start, end)
        ]
        if not chores:
            return {}
        progress = {
            definition.id: WeeklyProgress(
                chore_id=definition.id,
                chore_name=definition.name,
                week_start=start,
                week_end=end,
                target=definition.weekly_target_count,
            )
            for definition in sorted(chores, key=_sort_key)
        }
        for chore_id, status, count in self._database.read(
            lambda session: self._status_counts(session, list(progress), start, end)
        ):
            entry = progress[chore_id]
            entry.completed += count
            if status is ChoreStatus.APPROVED:
                entry.approved += count
        return progress

    @staticmethod
    def _status_counts(
        session: Session, chore_ids: Sequence[int], start: date, end: date
    ) -> List[Tuple[int, ChoreStatus, int]]:
        rows = session.exec(
            select(ChoreLog.chore_definition_id, ChoreLog.status, func.count(ChoreLog.id))
            .where(
                ChoreLog.chore_definition_id.in_(chore_ids),
                ChoreLog.chore_date >= start,
                ChoreLog.chore_date <= end,
                ChoreLog.status.in_([ChoreStatus.COMPLETED, ChoreStatus.APPROVED]),
            )
            .group_by(ChoreLog.chore_definition_id, ChoreLog.status)
        ).all()
        return [(chore_id, ChoreStatus(status), count) for chore_id, status, count in rows]


__all__ = ["ScheduleResolver", "is_chore_active_on_date"]
