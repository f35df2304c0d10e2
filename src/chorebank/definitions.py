"""Management of chore definitions (recurring task templates)."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from sqlmodel import Session

from .cache import ChoreDefinitionCache
from .exceptions import NotFoundError, ValidationError
from .models import ScheduleType
from .money import AmountLike, require_positive, to_cents, to_decimal
from .ops import StructuredLogger
from .persistence import ChoreDefinition, Database, utcnow
from .weeks import DayFlag

_MONEY_FIELDS = {"earn_value": "earn_cents", "penalty_value": "penalty_cents"}
_EDITABLE_FIELDS = frozenset(
    {
        "name",
        "icon",
        "description",
        "category",
        "assigned_user_id",
        "schedule_type",
        "active_days",
        "weekly_target_count",
        "start_date",
        "end_date",
        "auto_approve",
        "is_repeatable",
        "is_active",
        "sort_order",
    }
)


def _validate(definition: ChoreDefinition) -> None:
    if not definition.name or not definition.name.strip():
        raise ValidationError("Chore name is required.")
    if definition.earn_cents < 0 or definition.penalty_cents < 0:
        raise ValidationError("Earn and penalty values must be zero or greater.")
    if not DayFlag(definition.active_days) & DayFlag.ALL:
        raise ValidationError("At least one active day is required.")
    if definition.schedule_type is ScheduleType.WEEKLY_FREQUENCY and definition.weekly_target_count < 1:
        raise ValidationError("Weekly target must be at least 1.")
    if definition.start_date and definition.end_date and definition.end_date < definition.start_date:
        raise ValidationError("End date cannot be before start date.")


class ChoreDefinitionStore:
    """Create, edit and deactivate chore definitions.

    Every successful mutation invalidates the definition cache before
    returning.
    """

    def __init__(self, database: Database, cache: ChoreDefinitionCache, logger: StructuredLogger) -> None:
        self._database = database
        self._cache = cache
        self._logger = logger

    def create(
        self,
        name: str,
        *,
        assigned_user_id: Optional[str] = None,
        earn_value: AmountLike = 0,
        penalty_value: AmountLike = 0,
        schedule_type: ScheduleType = ScheduleType.SPECIFIC_DAYS,
        active_days: int = DayFlag.ALL,
        weekly_target_count: int = 1,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        auto_approve: bool = False,
        is_repeatable: bool = True,
        sort_order: int = 0,
        icon: Optional[str] = None,
        description: Optional[str] = None,
        category: Optional[str] = None,
    ) -> ChoreDefinition:
        earn = require_positive(to_decimal(earn_value), allow_zero=True)
        penalty = require_positive(to_decimal(penalty_value), allow_zero=True)
        definition = ChoreDefinition(
            name=name.strip(),
            icon=icon,
            description=description,
            category=category,
            assigned_user_id=assigned_user_id,
            earn_cents=to_cents(earn),
            penalty_cents=to_cents(penalty),
            schedule_type=ScheduleType(schedule_type),
            active_days=int(active_days),
            weekly_target_count=weekly_target_count,
            start_date=start_date,
            end_date=end_date,
            auto_approve=auto_approve,
            is_repeatable=is_repeatable,
            sort_order=sort_order,
        )
        _validate(definition)

        def _create(session: Session) -> ChoreDefinition:
            session.add(definition)
            session.flush()
            session.refresh(definition)
            return definition

        created = self._database.run(_create)
        self._invalidate()
        self._logger.log("chore_definition_created", chore_id=created.id, name=created.name)
        return created

    def update(self, chore_id: int, **changes: Any) -> ChoreDefinition:
        unknown = set(changes) - _EDITABLE_FIELDS - set(_MONEY_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown chore fields: {', '.join(sorted(unknown))}")

        def _update(session: Session) -> ChoreDefinition:
            definition = session.get(ChoreDefinition, chore_id)
            if definition is None:
                raise NotFoundError("Chore not found.")
            for key, value in changes.items():
                if key in _MONEY_FIELDS:
                    amount = require_positive(to_decimal(value), allow_zero=True)
                    setattr(definition, _MONEY_FIELDS[key], to_cents(amount))
                elif key == "schedule_type":
                    definition.schedule_type = ScheduleType(value)
                elif key == "active_days":
                    definition.active_days = int(value)
                else:
                    setattr(definition, key, value)
            _validate(definition)
            definition.updated_at = utcnow()
            session.add(definition)
            return definition

        updated = self._database.run(_update)
        self._invalidate()
        self._logger.log("chore_definition_updated", chore_id=chore_id, fields=sorted(changes))
        return updated

    def deactivate(self, chore_id: int) -> ChoreDefinition:
        """Soft-delete a definition; logs referencing it are kept."""

        return self.update(chore_id, is_active=False)

    def get(self, chore_id: int) -> ChoreDefinition:
        definition = self._database.read(lambda session: session.get(ChoreDefinition, chore_id))
        if definition is None:
            raise NotFoundError("Chore not found.")
        return definition

    def _invalidate(self) -> None:
        try:
            self._cache.invalidate()
        except Exception as exc:  # stale entries age out with the TTL
            self._logger.log("chore_cache_invalidation_failed", error=str(exc))


__all__ = ["ChoreDefinitionStore"]
