"""Achievement unlock conditions.

Each :class:`~chorebank.models.UnlockConditionType` has one parameter shape,
modelled here as a small dataclass. JSON only appears at the storage edge
(:func:`parse_condition` / :func:`dump_condition`); handlers receive typed
parameters plus an :class:`EvaluationContext` holding the user's history,
which is loaded once per evaluation pass.
"""

from __future__ import annotations

import json
from collections import defaultdict
from dataclasses import asdict, dataclass, field, fields
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple, Union

from .clock import FamilyClock
from .exceptions import ValidationError
from .models import ChoreStatus, ScheduleType, TransactionType, UnlockConditionType
from .money import ZERO, to_decimal
from .persistence import ChoreDefinition, ChoreLog, LedgerTransaction
from .weeks import Weekday, is_weekend, week_start

DONE = frozenset({ChoreStatus.COMPLETED, ChoreStatus.APPROVED})
GOOD = frozenset({ChoreStatus.COMPLETED, ChoreStatus.APPROVED, ChoreStatus.SKIPPED})
EARNING_TYPES = frozenset({TransactionType.CHORE_EARNING, TransactionType.BONUS})
STREAK_LOOKBACK_DAYS = 365
WEEK_STREAK_LOOKBACK = 52


# ---------------------------------------------------------------------------
# Parameter shapes
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class NoParams:
    pass


@dataclass(frozen=True, slots=True)
class CountParams:
    count: int


@dataclass(frozen=True, slots=True)
class DaysParams:
    days: int


@dataclass(frozen=True, slots=True)
class AmountParams:
    amount: Decimal


@dataclass(frozen=True, slots=True)
class SpecificChoreParams:
    chore_id: int
    count: int


@dataclass(frozen=True, slots=True)
class EarlyCompletionParams:
    before_hour: int
    count: int


@dataclass(frozen=True, slots=True)
class DayTypeParams:
    day_type: str  # "weekday" or "weekend"
    count: int


@dataclass(frozen=True, slots=True)
class WeekStreakParams:
    weeks: int


@dataclass(frozen=True, slots=True)
class AchievementRefParams:
    achievement_code: str


@dataclass(frozen=True, slots=True)
class CategoryParams:
    category: str
    count: int


@dataclass(frozen=True, slots=True)
class TimeOfDayParams:
    hour_start: int
    hour_end: int
    count: int


@dataclass(frozen=True, slots=True)
class CashOutParams:
    count: Optional[int] = None
    total_amount: Optional[Decimal] = None


ConditionParams = Union[
    NoParams,
    CountParams,
    DaysParams,
    AmountParams,
    SpecificChoreParams,
    EarlyCompletionParams,
    DayTypeParams,
    WeekStreakParams,
    AchievementRefParams,
    CategoryParams,
    TimeOfDayParams,
    CashOutParams,
]

PARAMETER_SHAPES: Dict[UnlockConditionType, type] = {
    UnlockConditionType.MANUAL: NoParams,
    UnlockConditionType.CHORES_COMPLETED: CountParams,
    UnlockConditionType.STREAK_DAYS: DaysParams,
    UnlockConditionType.TOTAL_EARNED: AmountParams,
    UnlockConditionType.BALANCE_REACHED: AmountParams,
    UnlockConditionType.PERFECT_DAYS: CountParams,
    UnlockConditionType.SPECIFIC_CHORE_COUNT: SpecificChoreParams,
    UnlockConditionType.EARLY_COMPLETION: EarlyCompletionParams,
    UnlockConditionType.FIRST_CHORE: NoParams,
    UnlockConditionType.FIRST_DOLLAR: NoParams,
    UnlockConditionType.WEEKLY_EARNINGS: AmountParams,
    UnlockConditionType.DAY_TYPE_COMPLETION: DayTypeParams,
    UnlockConditionType.WEEK_STREAK: WeekStreakParams,
    UnlockConditionType.ACCOUNT_AGE: DaysParams,
    UnlockConditionType.BONUS_CHORES_COMPLETED: CountParams,
    UnlockConditionType.CHORE_RECOVERY: CountParams,
    UnlockConditionType.HELP_REQUESTED: CountParams,
    UnlockConditionType.PENALTY_FREE: DaysParams,
    UnlockConditionType.ACHIEVEMENT_UNLOCKED: AchievementRefParams,
    UnlockConditionType.CATEGORY_MASTERY: CategoryParams,
    UnlockConditionType.TOTAL_ACHIEVEMENTS: CountParams,
    UnlockConditionType.TIME_OF_DAY_COMPLETION: TimeOfDayParams,
    UnlockConditionType.CASH_OUT: CashOutParams,
}

_DECIMAL_FIELDS = frozenset({"amount", "total_amount"})


def parse_condition(condition_type: UnlockConditionType, raw: Optional[str]) -> ConditionParams:
    """Decode the stored JSON parameters for ``condition_type``."""

    shape = PARAMETER_SHAPES[UnlockConditionType(condition_type)]
    try:
        payload = json.loads(raw) if raw else {}
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid parameters for {condition_type.value}: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValidationError(f"Parameters for {condition_type.value} must be an object.")

    kwargs = {}
    for shape_field in fields(shape):
        if shape_field.name not in payload:
            continue
        value = payload[shape_field.name]
        if value is not None and shape_field.name in _DECIMAL_FIELDS:
            value = to_decimal(value)
        kwargs[shape_field.name] = value
    try:
        params = shape(**kwargs)
    except TypeError as exc:
        raise ValidationError(f"Missing parameters for {condition_type.value}: {exc}") from exc
    if isinstance(params, CashOutParams) and params.count is None and params.total_amount is None:
        raise ValidationError("cash_out needs a count or a total_amount.")
    return params


def dump_condition(params: ConditionParams) -> str:
    payload = {key: (str(value) if isinstance(value, Decimal) else value) for key, value in asdict(params).items()}
    return json.dumps({key: value for key, value in payload.items() if value is not None}, sort_keys=True)


# ---------------------------------------------------------------------------
# Results and context
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class EvaluationResult:
    is_met: bool
    current: float
    target: float
    progress_percent: float
    applicable: bool = True

    @classmethod
    def from_counts(cls, current: Union[int, Decimal, float], target: Union[int, Decimal, float]) -> "EvaluationResult":
        current_value, target_value = float(current), float(target)
        if current_value >= target_value:
            return cls.met(current_value, target_value)
        return cls.not_met(current_value, target_value)

    @classmethod
    def met(cls, current: float, target: float) -> "EvaluationResult":
        return cls(True, current, target, 100.0)

    @classmethod
    def not_met(cls, current: float, target: float) -> "EvaluationResult":
        percent = min(100.0, current / target * 100) if target > 0 else 0.0
        return cls(False, current, target, round(percent, 2))

    @classmethod
    def not_applicable(cls) -> "EvaluationResult":
        return cls(False, 0.0, 0.0, 0.0, applicable=False)


@dataclass(slots=True)
class EvaluationContext:
    """The slice of a user's history every handler reads from."""

    user_id: str
    today: date
    clock: FamilyClock
    logs: Sequence[Tuple[ChoreLog, ChoreDefinition]]
    transactions: Sequence[LedgerTransaction]
    unlocked_codes: FrozenSet[str] = frozenset()
    account_opened: Optional[date] = None
    week_start_day: Weekday = Weekday.MONDAY
    achievement_categories: Mapping[str, Optional[str]] = field(default_factory=dict)
    _by_day: Optional[Dict[date, List[ChoreStatus]]] = field(default=None, init=False, repr=False)

    def done_logs(self) -> List[Tuple[ChoreLog, ChoreDefinition]]:
        return [(log, definition) for log, definition in self.logs if log.status in DONE]

    def statuses_by_day(self) -> Dict[date, List[ChoreStatus]]:
        if self._by_day is None:
            grouped: Dict[date, List[ChoreStatus]] = defaultdict(list)
            for log, _ in self.logs:
                grouped[log.chore_date].append(log.status)
            self._by_day = dict(grouped)
        return self._by_day

    def earned(self, *, start: Optional[date] = None) -> Decimal:
        return sum(
            (
                row.amount
                for row in self.transactions
                if row.type in EARNING_TYPES and (start is None or row.transaction_date >= start)
            ),
            ZERO,
        )

    def balance(self) -> Decimal:
        return sum((row.amount for row in self.transactions), ZERO)

    def is_perfect_day(self, day: date) -> bool:
        statuses = self.statuses_by_day().get(day, [])
        return bool(statuses) and all(status in GOOD for status in statuses) and any(s in DONE for s in statuses)


Handler = Callable[[ConditionParams, EvaluationContext], EvaluationResult]


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------
def _manual(params: NoParams, ctx: EvaluationContext) -> EvaluationResult:
    return EvaluationResult.not_applicable()


def _chores_completed(params: CountParams, ctx: EvaluationContext) -> EvaluationResult:
    return EvaluationResult.from_counts(len(ctx.done_logs()), params.count)


def current_streak(ctx: EvaluationContext) -> int:
    """Consecutive days with only finished chores, walking back from today.

    Days without chores neither extend nor break the streak; today's
    unfinished chores are ignored while the day is still running.
    """

    by_day = ctx.statuses_by_day()
    streak = 0
    for offset in range(STREAK_LOOKBACK_DAYS):
        day = ctx.today - timedelta(days=offset)
        statuses = by_day.get(day)
        if not statuses:
            continue
        if day == ctx.today:
            statuses = [status for status in statuses if status is not ChoreStatus.PENDING]
            if not statuses:
                continue
        if all(status in GOOD for status in statuses):
            streak += 1
        else:
            break
    return streak


def _streak_days(params: DaysParams, ctx: EvaluationContext) -> EvaluationResult:
    return EvaluationResult.from_counts(current_streak(ctx), params.days)


def _total_earned(params: AmountParams, ctx: EvaluationContext) -> EvaluationResult:
    return EvaluationResult.from_counts(ctx.earned(), params.amount)


def _balance_reached(params: AmountParams, ctx: EvaluationContext) -> EvaluationResult:
    return EvaluationResult.from_counts(max(ctx.balance(), ZERO), params.amount)


def _perfect_days(params: CountParams, ctx: EvaluationContext) -> EvaluationResult:
    perfect = sum(1 for day in ctx.statuses_by_day() if day <= ctx.today and ctx.is_perfect_day(day))
    return EvaluationResult.from_counts(perfect, params.count)


def _specific_chore(params: SpecificChoreParams, ctx: EvaluationContext) -> EvaluationResult:
    count = sum(1 for log, _ in ctx.done_logs() if log.chore_definition_id == params.chore_id)
    return EvaluationResult.from_counts(count, params.count)


def _early_completion(params: EarlyCompletionParams, ctx: EvaluationContext) -> EvaluationResult:
    """Days on which every finished chore was done before ``before_hour``."""

    finished: Dict[date, List[ChoreLog]] = defaultdict(list)
    for log, _ in ctx.logs:
        if log.completed_at is not None and log.chore_date <= ctx.today:
            finished[log.chore_date].append(log)
    early_days = sum(
        1
        for logs in finished.values()
        if all(log.status in DONE and ctx.clock.hour_of(log.completed_at) < params.before_hour for log in logs)
    )
    return EvaluationResult.from_counts(early_days, params.count)


def _first_chore(params: NoParams, ctx: EvaluationContext) -> EvaluationResult:
    return EvaluationResult.from_counts(min(len(ctx.done_logs()), 1), 1)


def _first_dollar(params: NoParams, ctx: EvaluationContext) -> EvaluationResult:
    return EvaluationResult.from_counts(min(ctx.earned(), Decimal("1.00")), Decimal("1.00"))


def _weekly_earnings(params: AmountParams, ctx: EvaluationContext) -> EvaluationResult:
    start = week_start(ctx.today, ctx.week_start_day)
    return EvaluationResult.from_counts(ctx.earned(start=start), params.amount)


def _day_type(params: DayTypeParams, ctx: EvaluationContext) -> EvaluationResult:
    kind = params.day_type.strip().lower()
    if kind not in {"weekday", "weekend"}:
        raise ValidationError(f"Unknown day type: {params.day_type!r}")
    want_weekend = kind == "weekend"
    count = sum(1 for log, _ in ctx.done_logs() if is_weekend(log.chore_date) == want_weekend)
    return EvaluationResult.from_counts(count, params.count)


def _week_qualifies(ctx: EvaluationContext, start: date) -> Optional[bool]:
    statuses = [
        status
        for offset in range(7)
        for status in ctx.statuses_by_day().get(start + timedelta(days=offset), [])
    ]
    if not statuses:
        return None
    return all(status in GOOD for status in statuses)


def _week_streak(params: WeekStreakParams, ctx: EvaluationContext) -> EvaluationResult:
    """Consecutive weeks, newest first, in which every chore was finished.

    An empty running week is skipped; any other empty week ends the streak.
    """

    current_week = week_start(ctx.today, ctx.week_start_day)
    streak = 0
    for index in range(WEEK_STREAK_LOOKBACK):
        qualifies = _week_qualifies(ctx, current_week - timedelta(weeks=index))
        if qualifies is None and index == 0:
            continue
        if not qualifies:
            break
        streak += 1
    return EvaluationResult.from_counts(streak, params.weeks)


def _account_age(params: DaysParams, ctx: EvaluationContext) -> EvaluationResult:
    if ctx.account_opened is None:
        return EvaluationResult.not_met(0, params.days)
    return EvaluationResult.from_counts((ctx.today - ctx.account_opened).days, params.days)


def bonus_completions(ctx: EvaluationContext) -> int:
    """Approved weekly-frequency completions beyond each week's target."""

    approved: Dict[Tuple[int, date], int] = defaultdict(int)
    targets: Dict[int, int] = {}
    for log, definition in ctx.logs:
        if definition.schedule_type is not ScheduleType.WEEKLY_FREQUENCY or log.status is not ChoreStatus.APPROVED:
            continue
        approved[(definition.id, week_start(log.chore_date, ctx.week_start_day))] += 1
        targets[definition.id] = definition.weekly_target_count
    return sum(max(0, count - targets[chore_id]) for (chore_id, _), count in approved.items())


def _bonus_chores(params: CountParams, ctx: EvaluationContext) -> EvaluationResult:
    return EvaluationResult.from_counts(bonus_completions(ctx), params.count)


def _chore_recovery(params: CountParams, ctx: EvaluationContext) -> EvaluationResult:
    days = sorted(ctx.statuses_by_day())
    recoveries = sum(
        1
        for previous, following in zip(days, days[1:])
        if ChoreStatus.MISSED in ctx.statuses_by_day()[previous] and ctx.is_perfect_day(following)
    )
    return EvaluationResult.from_counts(recoveries, params.count)


def _help_requested(params: CountParams, ctx: EvaluationContext) -> EvaluationResult:
    count = sum(1 for log, _ in ctx.logs if log.help_requested_at is not None)
    return EvaluationResult.from_counts(count, params.count)


def _penalty_free(params: DaysParams, ctx: EvaluationContext) -> EvaluationResult:
    penalties = [
        row.transaction_date
        for row in ctx.transactions
        if row.type in (TransactionType.CHORE_DEDUCTION, TransactionType.PENALTY)
    ]
    if penalties:
        since = max(penalties)
    elif ctx.logs:
        since = min(log.chore_date for log, _ in ctx.logs) - timedelta(days=1)
    else:
        return EvaluationResult.not_met(0, params.days)
    return EvaluationResult.from_counts(max(0, (ctx.today - since).days), params.days)


def _achievement_unlocked(params: AchievementRefParams, ctx: EvaluationContext) -> EvaluationResult:
    return EvaluationResult.from_counts(1 if params.achievement_code in ctx.unlocked_codes else 0, 1)


def _category_mastery(params: CategoryParams, ctx: EvaluationContext) -> EvaluationResult:
    """Unlocked achievements that belong to ``category``."""

    wanted = params.category.strip().lower()
    count = sum(
        1
        for code in ctx.unlocked_codes
        if (ctx.achievement_categories.get(code) or "").strip().lower() == wanted
    )
    return EvaluationResult.from_counts(count, params.count)


def _total_achievements(params: CountParams, ctx: EvaluationContext) -> EvaluationResult:
    return EvaluationResult.from_counts(len(ctx.unlocked_codes), params.count)


def _in_window(hour: int, start: int, end: int) -> bool:
    if start <= end:
        return start <= hour < end
    return hour >= start or hour < end


def _time_of_day(params: TimeOfDayParams, ctx: EvaluationContext) -> EvaluationResult:
    count = sum(
        1
        for log, _ in ctx.done_logs()
        if log.completed_at is not None
        and _in_window(ctx.clock.hour_of(log.completed_at), params.hour_start, params.hour_end)
    )
    return EvaluationResult.from_counts(count, params.count)


def _cash_out(params: CashOutParams, ctx: EvaluationContext) -> EvaluationResult:
    payouts = [row for row in ctx.transactions if row.type is TransactionType.PAYOUT]
    if params.total_amount is not None:
        total = sum((-row.amount for row in payouts), ZERO)
        return EvaluationResult.from_counts(total, params.total_amount)
    return EvaluationResult.from_counts(len(payouts), params.count or 0)


HANDLERS: Mapping[UnlockConditionType, Handler] = {
    UnlockConditionType.MANUAL: _manual,
    UnlockConditionType.CHORES_COMPLETED: _chores_completed,
    UnlockConditionType.STREAK_DAYS: _streak_days,
    UnlockConditionType.TOTAL_EARNED: _total_earned,
    UnlockConditionType.BALANCE_REACHED: _balance_reached,
    UnlockConditionType.PERFECT_DAYS: _perfect_days,
    UnlockConditionType.SPECIFIC_CHORE_COUNT: _specific_chore,
    UnlockConditionType.EARLY_COMPLETION: _early_completion,
    UnlockConditionType.FIRST_CHORE: _first_chore,
    UnlockConditionType.FIRST_DOLLAR: _first_dollar,
    UnlockConditionType.WEEKLY_EARNINGS: _weekly_earnings,
    UnlockConditionType.DAY_TYPE_COMPLETION: _day_type,
    UnlockConditionType.WEEK_STREAK: _week_streak,
    UnlockConditionType.ACCOUNT_AGE: _account_age,
    UnlockConditionType.BONUS_CHORES_COMPLETED: _bonus_chores,
    UnlockConditionType.CHORE_RECOVERY: _chore_recovery,
    UnlockConditionType.HELP_REQUESTED: _help_requested,
    UnlockConditionType.PENALTY_FREE: _penalty_free,
    UnlockConditionType.ACHIEVEMENT_UNLOCKED: _achievement_unlocked,
    UnlockConditionType.CATEGORY_MASTERY: _category_mastery,
    UnlockConditionType.TOTAL_ACHIEVEMENTS: _total_achievements,
    UnlockConditionType.TIME_OF_DAY_COMPLETION: _time_of_day,
    UnlockConditionType.CASH_OUT: _cash_out,
}


def evaluate_condition(
    condition_type: UnlockConditionType, params: ConditionParams, ctx: EvaluationContext
) -> EvaluationResult:
    return HANDLERS[UnlockConditionType(condition_type)](params, ctx)


__all__ = [
    "AchievementRefParams",
    "AmountParams",
    "CashOutParams",
    "CategoryParams",
    "ConditionParams",
    "CountParams",
    "DayTypeParams",
    "DaysParams",
    "EarlyCompletionParams",
    "EvaluationContext",
    "EvaluationResult",
    "HANDLERS",
    "NoParams",
    "PARAMETER_SHAPES",
    "SpecificChoreParams",
    "TimeOfDayParams",
    "WeekStreakParams",
    "bonus_completions",
    "current_streak",
    "dump_condition",
    "evaluate_condition",
    "parse_condition",
]
