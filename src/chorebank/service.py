"""High level service wiring the scheduling, ledger and achievement engines."""

from __future__ import annotations

import time
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .achievements import AchievementEvaluator
from .bonuses import AchievementBonusService
from .cache import ChoreDefinitionCache
from .chore_logs import ChoreLogService
from .clock import FamilyClock
from .conditions import ConditionParams
from .config import Settings
from .definitions import ChoreDefinitionStore
from .exceptions import ValidationError
from .ledger import LedgerEngine
from .models import (
    AchievementBonusType,
    BonusSummary,
    ChoreStatus,
    OutcomeResult,
    TransactionStats,
    TransactionType,
    TriggerContext,
    UnlockConditionType,
    UnlockedAchievement,
    WeeklyProgress,
)
from .money import AmountLike
from .notifications import Notification, NotificationCenter, NotificationSink, NotificationType
from .ops import ActivityRegistry, StructuredLogger
from .overrides import ScheduleOverrideStore
from .persistence import (
    Achievement,
    AchievementProgress,
    ChoreDefinition,
    ChoreLog,
    ChoreScheduleOverride,
    Database,
    LedgerAccount,
    LedgerTransaction,
)
from .schedule import ScheduleResolver

GUARDIAN_RECIPIENT = "guardians"

_TRIGGERS = {
    ChoreStatus.COMPLETED: TriggerContext.CHORE_COMPLETED,
    ChoreStatus.APPROVED: TriggerContext.CHORE_APPROVED,
    ChoreStatus.MISSED: TriggerContext.CHORE_MISSED,
    ChoreStatus.HELP: TriggerContext.HELP_REQUESTED,
}


class ChoreBank:
    """Facade over chore scheduling, the ledger and achievements."""

    __slots__ = (
        "settings",
        "database",
        "clock",
        "logger",
        "notifications",
        "registry",
        "cache",
        "definitions",
        "overrides",
        "resolver",
        "ledger",
        "logs",
        "bonuses",
        "achievements",
    )

    def __init__(
        self,
        database: Database,
        *,
        settings: Optional[Settings] = None,
        clock: Optional[FamilyClock] = None,
        logger: Optional[StructuredLogger] = None,
        notifications: Optional[NotificationSink] = None,
        registry: Optional[ActivityRegistry] = None,
        cache_clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or Settings()
        self.database = database
        self.clock = clock or FamilyClock(self.settings.timezone)
        self.logger = logger or StructuredLogger(path=self.settings.log_path)
        self.notifications = notifications if notifications is not None else NotificationCenter()
        self.registry = registry or ActivityRegistry()
        week_start_day = self.settings.week_start

        self.cache = ChoreDefinitionCache(
            database, ttl_seconds=self.settings.cache_ttl_seconds, clock=cache_clock, logger=self.logger
        )
        self.definitions = ChoreDefinitionStore(database, self.cache, self.logger)
        self.overrides = ScheduleOverrideStore(database, self.logger)
        self.resolver = ScheduleResolver(database, self.cache, self.overrides, week_start_day=week_start_day)
        self.ledger = LedgerEngine(database, self.clock, self.logger, week_start_day=week_start_day)
        self.logs = ChoreLogService(database, self.resolver, self.ledger, self.clock, self.logger)
        self.bonuses = AchievementBonusService(database, self.ledger, self.clock, self.logger)
        self.achievements = AchievementEvaluator(
            database,
            self.bonuses,
            self.clock,
            self.logger,
            self.notifications,
            week_start_day=week_start_day,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs: object) -> "ChoreBank":
        settings = settings or Settings.from_env()
        database = Database(
            settings.database_url,
            retries=settings.storage_retries,
            backoff_seconds=settings.storage_backoff_seconds,
        )
        database.create_all()
        return cls(database, settings=settings, **kwargs)  # type: ignore[arg-type]

    def today(self) -> date:
        return self.clock.today()

    # ------------------------------------------------------------------
    # Chore definitions
    # ------------------------------------------------------------------
    def create_chore(self, name: str, **fields: object) -> ChoreDefinition:
        return self.definitions.create(name, **fields)  # type: ignore[arg-type]

    def update_chore(self, chore_id: int, **changes: object) -> ChoreDefinition:
        return self.definitions.update(chore_id, **changes)

    def deactivate_chore(self, chore_id: int) -> ChoreDefinition:
        return self.definitions.deactivate(chore_id)

    # ------------------------------------------------------------------
    # Schedule
    # ------------------------------------------------------------------
    def get_chores_for_date(self, on_date: date) -> List[ChoreDefinition]:
        return self.resolver.chores_for_date(on_date)

    def get_chores_for_user_on_date(self, user_id: str, on_date: date) -> List[ChoreDefinition]:
        return self.resolver.chores_for_user_on_date(user_id, on_date)

    def get_weekly_progress(self, user_id: str, any_date_in_week: date) -> Dict[int, WeeklyProgress]:
        return self.resolver.weekly_progress(user_id, any_date_in_week)

    def add_override(
        self, chore_id: int, on_date: date, actor_id: str, *, assignee: Optional[str] = None
    ) -> ChoreScheduleOverride:
        return self.overrides.upsert_add(chore_id, on_date, actor_id, assignee)

    def remove_override(self, chore_id: int, on_date: date, actor_id: str) -> Optional[ChoreScheduleOverride]:
        return self.overrides.upsert_remove(chore_id, on_date, actor_id)

    def move_override(self, chore_id: int, from_date: date, to_date: date, actor_id: str) -> ChoreScheduleOverride:
        return self.overrides.move(chore_id, from_date, to_date, actor_id)

    def delete_override(self, override_id: int) -> None:
        self.overrides.delete(override_id)

    def overrides_for_range(self, start: date, end: date) -> Tuple[ChoreScheduleOverride, ...]:
        return self.overrides.list_for_range(start, end)

    # ------------------------------------------------------------------
    # Chore outcomes
    # ------------------------------------------------------------------
    def get_or_create_log(self, chore_id: int, on_date: date) -> ChoreLog:
        return self.logs.get_or_create(chore_id, on_date)

    def record_chore_outcome(
        self,
        chore_log_id: int,
        new_status: ChoreStatus,
        actor_id: str,
        expected_version: int,
        *,
        notes: Optional[str] = None,
    ) -> OutcomeResult:
        """Apply a status change, post its transaction, then evaluate achievements.

        Achievement evaluation runs after the outcome is committed; its
        failures are logged and never undo the outcome.
        """

        if ChoreStatus(new_status) is ChoreStatus.HELP:
            raise ValidationError("Use request_help to ask for help with a chore.")
        log, transaction = self.logs.transition(chore_log_id, new_status, actor_id, expected_version, notes=notes)
        return self._outcome(log, transaction)

    def request_help(self, chore_log_id: int, actor_id: str, reason: str, expected_version: int) -> OutcomeResult:
        log, transaction = self.logs.transition(
            chore_log_id, ChoreStatus.HELP, actor_id, expected_version, help_reason=reason
        )
        definition = self.definitions.get(log.chore_definition_id)
        self.notifications.queue(
            Notification(
                recipient=GUARDIAN_RECIPIENT,
                type=NotificationType.HELP_REQUESTED,
                subject=f"Help requested: {definition.name}",
                body=reason,
                metadata={"chore_log_id": str(log.id), "requested_by": actor_id},
            )
        )
        return self._outcome(log, transaction, definition=definition)

    def respond_to_help(self, chore_log_id: int, guardian_id: str, complete: bool, expected_version: int) -> OutcomeResult:
        status = ChoreStatus.COMPLETED if complete else ChoreStatus.MISSED
        log, transaction = self.logs.transition(chore_log_id, status, guardian_id, expected_version)
        definition = self.definitions.get(log.chore_definition_id)
        if definition.assigned_user_id:
            self.notifications.queue(
                Notification(
                    recipient=definition.assigned_user_id,
                    type=NotificationType.HELP_RESOLVED,
                    subject=f"{definition.name}: {'completed' if complete else 'missed'}",
                    body=f"{guardian_id} responded to your help request.",
                    metadata={"chore_log_id": str(log.id)},
                )
            )
        return self._outcome(log, transaction, definition=definition)

    def _outcome(
        self,
        log: ChoreLog,
        transaction: Optional[LedgerTransaction],
        *,
        definition: Optional[ChoreDefinition] = None,
    ) -> OutcomeResult:
        definition = definition or self.definitions.get(log.chore_definition_id)
        unlocked: Tuple[UnlockedAchievement, ...] = ()
        trigger = _TRIGGERS.get(log.status)
        if definition.assigned_user_id and trigger is not None:
            unlocked = self._evaluate_quietly(definition.assigned_user_id, trigger)
        return OutcomeResult(
            log_id=log.id,
            status=log.status,
            version=log.version,
            transaction_id=transaction.id if transaction else None,
            amount=transaction.amount if transaction else None,
            unlocked=unlocked,
        )

    def _evaluate_quietly(self, user_id: str, trigger: TriggerContext) -> Tuple[UnlockedAchievement, ...]:
        try:
            return self.achievements.evaluate(user_id, trigger)
        except Exception as exc:  # retried on the next trigger
            self.logger.log(
                "achievement_evaluation_failed",
                user_id=user_id,
                trigger=trigger.value,
                error=f"{type(exc).__name__}: {exc}",
            )
            return ()

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------
    def create_account(self, user_id: str, name: str = "Main", *, is_default: bool = True) -> LedgerAccount:
        return self.ledger.create_account(user_id, name, is_default=is_default)

    def create_manual_transaction(
        self,
        account_id: int,
        amount: AmountLike,
        transaction_type: TransactionType,
        description: str,
        *,
        actor_id: Optional[str] = None,
    ) -> LedgerTransaction:
        transaction = self.ledger.create_manual_transaction(
            account_id, amount, transaction_type, description, actor=actor_id
        )
        self._evaluate_quietly(transaction.user_id, TriggerContext.TRANSACTION)
        return transaction

    def transfer(
        self,
        from_account_id: int,
        to_account_id: int,
        amount: AmountLike,
        description: Optional[str] = None,
        *,
        actor_id: Optional[str] = None,
    ) -> Tuple[LedgerTransaction, LedgerTransaction]:
        return self.ledger.transfer(from_account_id, to_account_id, amount, description, actor=actor_id)

    def balance(self, account_id: int) -> Decimal:
        return self.ledger.balance(account_id)

    def transactions(
        self, account_id: int, *, start: Optional[date] = None, end: Optional[date] = None
    ) -> Tuple[LedgerTransaction, ...]:
        return self.ledger.transactions(account_id, start=start, end=end)

    def transaction_stats(
        self, user_id: str, *, start: Optional[date] = None, end: Optional[date] = None
    ) -> TransactionStats:
        return self.ledger.stats(user_id, start=start, end=end)

    # ------------------------------------------------------------------
    # Achievements
    # ------------------------------------------------------------------
    def evaluate_achievements(
        self, user_id: str, trigger: TriggerContext = TriggerContext.MANUAL
    ) -> Tuple[UnlockedAchievement, ...]:
        return self.achievements.evaluate(user_id, trigger)

    def create_achievement(
        self,
        code: str,
        name: str,
        condition_type: UnlockConditionType,
        params: Optional[ConditionParams] = None,
        **options: object,
    ) -> Achievement:
        return self.achievements.create_achievement(code, name, condition_type, params, **options)  # type: ignore[arg-type]

    def award_achievement(self, user_id: str, achievement_id: int, actor_id: str) -> Optional[UnlockedAchievement]:
        return self.achievements.award_manual(user_id, achievement_id, actor_id)

    def achievement_progress(self, user_id: str) -> Sequence[AchievementProgress]:
        return self.achievements.progress_for(user_id)

    def bonus_summary(self, user_id: str) -> BonusSummary:
        return self.bonuses.summary(user_id)

    def apply_point_multiplier(self, user_id: str, amount: AmountLike, *, double_points: bool = False) -> Decimal:
        return self.bonuses.apply_point_multiplier(user_id, amount, double_points=double_points)

    def apply_penalty_reduction(self, user_id: str, penalty: AmountLike) -> Decimal:
        return self.bonuses.apply_penalty_reduction(user_id, penalty)

    def use_one_time_bonus(self, user_id: str, bonus_type: AchievementBonusType) -> bool:
        return self.bonuses.use_one_time_bonus(user_id, bonus_type)

    def expire_bonuses(self) -> int:
        return self.bonuses.expire_old()

    # ------------------------------------------------------------------
    # Connected clients
    # ------------------------------------------------------------------
    def connect_client(self, user_id: str) -> int:
        count = self.registry.connect(user_id)
        self.logger.log("client_connected", user_id=user_id, connected=count)
        return count

    def disconnect_client(self, user_id: str) -> int:
        count = self.registry.disconnect(user_id)
        self.logger.log("client_disconnected", user_id=user_id, connected=count)
        return count


__all__ = ["ChoreBank", "GUARDIAN_RECIPIENT"]
