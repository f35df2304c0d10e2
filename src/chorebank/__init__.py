"""ChoreBank: chore scheduling, allowance ledger and achievements for households."""

from .clock import FamilyClock
from .conditions import EvaluationResult
from .config import Settings
from .exceptions import (
    ChoreBankError,
    ConcurrencyConflictError,
    InsufficientFundsError,
    NotFoundError,
    StorageFailureError,
    ValidationError,
)
from .models import (
    AchievementBonusType,
    BonusSummary,
    ChoreStatus,
    OutcomeResult,
    OverrideType,
    ScheduleType,
    TransactionStats,
    TransactionType,
    TriggerContext,
    UnlockConditionType,
    UnlockedAchievement,
    WeeklyProgress,
)
from .notifications import Notification, NotificationCenter, NotificationType
from .ops import ActivityRegistry, QueryCounter, StructuredLogger
from .persistence import Database
from .service import ChoreBank
from .weeks import DayFlag, Weekday, day_flag, week_end, week_start

__all__ = [
    "AchievementBonusType",
    "ActivityRegistry",
    "BonusSummary",
    "ChoreBank",
    "ChoreBankError",
    "ChoreStatus",
    "ConcurrencyConflictError",
    "Database",
    "DayFlag",
    "EvaluationResult",
    "FamilyClock",
    "InsufficientFundsError",
    "NotFoundError",
    "Notification",
    "NotificationCenter",
    "NotificationType",
    "OutcomeResult",
    "OverrideType",
    "QueryCounter",
    "ScheduleType",
    "Settings",
    "StorageFailureError",
    "StructuredLogger",
    "TransactionStats",
    "TransactionType",
    "TriggerContext",
    "UnlockConditionType",
    "UnlockedAchievement",
    "ValidationError",
    "WeeklyProgress",
    "Weekday",
    "day_flag",
    "week_end",
    "week_start",
]
