"""Domain enums and value objects used by the ChoreBank package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Tuple

from .money import ZERO


class ScheduleType(str, Enum):
    """How a chore definition recurs."""

    SPECIFIC_DAYS = "specific_days"
    WEEKLY_FREQUENCY = "weekly_frequency"


class OverrideType(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    MOVE = "move"


class ChoreStatus(str, Enum):
    """Lifecycle states of a chore log."""

    PENDING = "pending"
    COMPLETED = "completed"
    APPROVED = "approved"
    MISSED = "missed"
    SKIPPED = "skipped"
    HELP = "help"


class TransactionType(str, Enum):
    """Enumerates the supported types of ledger transactions."""

    CHORE_EARNING = "chore_earning"
    CHORE_DEDUCTION = "chore_deduction"
    BONUS = "bonus"
    PENALTY = "penalty"
    ADJUSTMENT = "adjustment"
    PAYOUT = "payout"
    TRANSFER = "transfer"


class UnlockConditionType(str, Enum):
    """Rule families an achievement can be unlocked by."""

    MANUAL = "manual"
    CHORES_COMPLETED = "chores_completed"
    STREAK_DAYS = "streak_days"
    TOTAL_EARNED = "total_earned"
    BALANCE_REACHED = "balance_reached"
    PERFECT_DAYS = "perfect_days"
    SPECIFIC_CHORE_COUNT = "specific_chore_count"
    EARLY_COMPLETION = "early_completion"
    FIRST_CHORE = "first_chore"
    FIRST_DOLLAR = "first_dollar"
    WEEKLY_EARNINGS = "weekly_earnings"
    DAY_TYPE_COMPLETION = "day_type_completion"
    WEEK_STREAK = "week_streak"
    ACCOUNT_AGE = "account_age"
    BONUS_CHORES_COMPLETED = "bonus_chores_completed"
    CHORE_RECOVERY = "chore_recovery"
    HELP_REQUESTED = "help_requested"
    PENALTY_FREE = "penalty_free"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
    CATEGORY_MASTERY = "category_mastery"
    TOTAL_ACHIEVEMENTS = "total_achievements"
    TIME_OF_DAY_COMPLETION = "time_of_day_completion"
    CASH_OUT = "cash_out"


class AchievementBonusType(str, Enum):
    """Perks granted when an achievement unlocks."""

    NONE = "none"
    POINT_MULTIPLIER = "point_multiplier"
    ONE_TIME_FORGIVENESS = "one_time_forgiveness"
    REMINDER_SUPPRESSION = "reminder_suppression"
    DOUBLE_POINT_DAY = "double_point_day"
    TRUST_INCREASE = "trust_increase"
    BONUS_POINTS = "bonus_points"
    PENALTY_REDUCTION = "penalty_reduction"
    STREAK_PROTECTION = "streak_protection"
    EARLY_CASH_OUT = "early_cash_out"
    PROFILE_BADGE = "profile_badge"


class TriggerContext(str, Enum):
    """What caused an achievement evaluation."""

    CHORE_COMPLETED = "chore_completed"
    CHORE_APPROVED = "chore_approved"
    CHORE_MISSED = "chore_missed"
    HELP_REQUESTED = "help_requested"
    TRANSACTION = "transaction"
    MANUAL = "manual"


TERMINAL_STATUSES = frozenset({ChoreStatus.APPROVED, ChoreStatus.MISSED, ChoreStatus.SKIPPED})

ALLOWED_TRANSITIONS: Dict[ChoreStatus, frozenset] = {
    ChoreStatus.PENDING: frozenset(
        {ChoreStatus.COMPLETED, ChoreStatus.MISSED, ChoreStatus.SKIPPED, ChoreStatus.HELP}
    ),
    ChoreStatus.COMPLETED: frozenset({ChoreStatus.APPROVED}),
    ChoreStatus.HELP: frozenset({ChoreStatus.COMPLETED, ChoreStatus.MISSED}),
    ChoreStatus.APPROVED: frozenset(),
    ChoreStatus.MISSED: frozenset(),
    ChoreStatus.SKIPPED: frozenset(),
}


@dataclass(slots=True)
class WeeklyProgress:
    """Approved versus target completions of one weekly-frequency chore."""

    chore_id: int
    chore_name: str
    week_start: date
    week_end: date
    target: int
    completed: int = 0
    approved: int = 0

    @property
    def is_target_met(self) -> bool:
        return self.approved >= self.target

    @property
    def remaining(self) -> int:
        return max(0, self.target - self.approved)

    def as_dict(self) -> Dict[str, object]:
        return {
            "chore_id": self.chore_id,
            "chore_name": self.chore_name,
            "week_start": self.week_start.isoformat(),
            "week_end": self.week_end.isoformat(),
            "target": self.target,
            "completed": self.completed,
            "approved": self.approved,
            "remaining": self.remaining,
            "is_target_met": self.is_target_met,
        }


@dataclass(slots=True)
class TransactionStats:
    """Totals per transaction family for a user over a period."""

    total_earnings: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_bonuses: Decimal = ZERO
    total_penalties: Decimal = ZERO
    total_payouts: Decimal = ZERO
    total_adjustments: Decimal = ZERO
    total_transfers_in: Decimal = ZERO
    total_transfers_out: Decimal = ZERO
    net_total: Decimal = ZERO
    transaction_count: int = 0


@dataclass(slots=True)
class UnlockedAchievement:
    achievement_id: int
    code: str
    name: str
    unlocked_at: datetime
    bonus_type: AchievementBonusType = AchievementBonusType.NONE


@dataclass(slots=True)
class OutcomeResult:
    """What recording a chore outcome changed."""

    log_id: int
    status: ChoreStatus
    version: int
    transaction_id: Optional[int] = None
    amount: Optional[Decimal] = None
    unlocked: Tuple[UnlockedAchievement, ...] = field(default_factory=tuple)


@dataclass(slots=True)
class BonusSummary:
    """Combined effect of a user's active achievement bonuses."""

    point_multiplier: Decimal = Decimal("1.0")
    penalty_reduction: Decimal = ZERO
    forgiveness_tokens: int = 0
    streak_protections: int = 0
    double_point_days: int = 0
    reminders_suppressed: bool = False
    cash_out_threshold_reduction: Decimal = ZERO
    trust_level_bonus: int = 0
    badges: Tuple[str, ...] = field(default_factory=tuple)


__all__ = [
    "ALLOWED_TRANSITIONS",
    "AchievementBonusType",
    "BonusSummary",
    "ChoreStatus",
    "OutcomeResult",
    "OverrideType",
    "ScheduleType",
    "TERMINAL_STATUSES",
    "TransactionStats",
    "TransactionType",
    "TriggerContext",
    "UnlockConditionType",
    "UnlockedAchievement",
    "WeeklyProgress",
]
