"""Evaluate data-driven achievement conditions against a user's history."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from .bonuses import AchievementBonusService
from .clock import FamilyClock
from .conditions import (
    ConditionParams,
    EvaluationContext,
    EvaluationResult,
    PARAMETER_SHAPES,
    dump_condition,
    evaluate_condition,
    parse_condition,
)
from .exceptions import ChoreBankError, NotFoundError, ValidationError
from .models import AchievementBonusType, TriggerContext, UnlockConditionType, UnlockedAchievement
from .notifications import Notification, NotificationSink, NotificationType
from .ops import StructuredLogger
from .persistence import (
    Achievement,
    AchievementProgress,
    ChoreDefinition,
    ChoreLog,
    Database,
    LedgerAccount,
    LedgerTransaction,
    UserAchievement,
)
from .weeks import Weekday


@dataclass(slots=True)
class _Snapshot:
    logs: Sequence[Tuple[ChoreLog, ChoreDefinition]]
    transactions: Sequence[LedgerTransaction]
    unlocked: Dict[int, str]
    categories: Dict[str, Optional[str]]
    account_opened: Optional[date]
    catalog: Sequence[Achievement]


def _already_unlocked(session: Session, user_id: str, achievement_id: int) -> bool:
    return (
        session.exec(
            select(UserAchievement.id).where(
                UserAchievement.user_id == user_id,
                UserAchievement.achievement_id == achievement_id,
            )
        ).first()
        is not None
    )


class AchievementEvaluator:
    """Dispatch each active achievement to its condition handler.

    History is read once per pass; progress rows are upserted and unlocks
    are inserted under the per-user uniqueness guard.
    """

    def __init__(
        self,
        database: Database,
        bonuses: AchievementBonusService,
        clock: FamilyClock,
        logger: StructuredLogger,
        notifications: NotificationSink,
        *,
        week_start_day: Weekday = Weekday.MONDAY,
    ) -> None:
        self._database = database
        self._bonuses = bonuses
        self._clock = clock
        self._logger = logger
        self._notifications = notifications
        self._week_start_day = week_start_day

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------
    def create_achievement(
        self,
        code: str,
        name: str,
        condition_type: UnlockConditionType,
        params: Optional[ConditionParams] = None,
        *,
        description: str = "",
        category: Optional[str] = None,
        bonus_type: AchievementBonusType = AchievementBonusType.NONE,
        bonus_value: Optional[Mapping[str, Any]] = None,
        sort_order: int = 0,
    ) -> Achievement:
        condition_type = UnlockConditionType(condition_type)
        shape = PARAMETER_SHAPES[condition_type]
        if params is None:
            params = shape()
        if not isinstance(params, shape):
            raise ValidationError(f"{condition_type.value} expects {shape.__name__} parameters.")
        raw = dump_condition(params)
        parse_condition(condition_type, raw)
        achievement = Achievement(
            code=code,
            name=name,
            description=description,
            category=category,
            unlock_condition_type=condition_type,
            unlock_condition_value=raw,
            bonus_type=AchievementBonusType(bonus_type),
            bonus_value=json.dumps(dict(bonus_value), sort_keys=True, default=str) if bonus_value else None,
            sort_order=sort_order,
        )

        def _create(session: Session) -> Achievement:
            if session.exec(select(Achievement).where(Achievement.code == code)).first() is not None:
                raise ValidationError(f"Achievement code {code!r} already exists.")
            session.add(achievement)
            session.flush()
            session.refresh(achievement)
            return achievement

        created = self._database.run(_create)
        self._logger.log("achievement_created", achievement_id=created.id, code=code)
        return created

    def catalog(self) -> Tuple[Achievement, ...]:
        return tuple(
            self._database.read(
                lambda session: session.exec(
                    select(Achievement).order_by(Achievement.sort_order, Achievement.id)
                ).all()
            )
        )

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------
    def evaluate(self, user_id: str, trigger: TriggerContext = TriggerContext.MANUAL) -> Tuple[UnlockedAchievement, ...]:
        trigger = TriggerContext(trigger)
        snapshot = self._database.read(lambda session: self._load(session, user_id))
        ctx = EvaluationContext(
            user_id=user_id,
            today=self._clock.today(),
            clock=self._clock,
            logs=snapshot.logs,
            transactions=snapshot.transactions,
            unlocked_codes=frozenset(snapshot.unlocked.values()),
            account_opened=snapshot.account_opened,
            week_start_day=self._week_start_day,
            achievement_categories=snapshot.categories,
        )

        pending = [item for item in snapshot.catalog if item.id not in snapshot.unlocked]
        progress: Dict[int, EvaluationResult] = {}
        newly_met: List[Achievement] = []
        # unlocks can satisfy achievement-based conditions, so repeat until stable
        changed = True
        while changed and pending:
            changed = False
            for achievement in list(pending):
                result = self._evaluate_one(achievement, ctx)
                if result is None or not result.applicable:
                    continue
                progress[achievement.id] = result
                if result.is_met:
                    newly_met.append(achievement)
                    pending.remove(achievement)
                    ctx.unlocked_codes = ctx.unlocked_codes | {achievement.code}
                    changed = True

        unlocked = self._database.run(lambda session: self._persist(session, user_id, progress, newly_met, trigger))
        for item in unlocked:
            self._announce(user_id, item)
        self._logger.log(
            "achievements_evaluated",
            user_id=user_id,
            trigger=trigger.value,
            evaluated=len(progress),
            unlocked=[item.code for item in unlocked],
        )
        return unlocked

    def _evaluate_one(self, achievement: Achievement, ctx: EvaluationContext) -> Optional[EvaluationResult]:
        try:
            params = parse_condition(achievement.unlock_condition_type, achievement.unlock_condition_value)
            return evaluate_condition(achievement.unlock_condition_type, params, ctx)
        except ChoreBankError as exc:
            self._logger.log("achievement_condition_invalid", achievement_id=achievement.id, error=str(exc))
            return None

    def _load(self, session: Session, user_id: str) -> _Snapshot:
        logs = session.exec(
            select(ChoreLog, ChoreDefinition)
            .where(ChoreLog.chore_definition_id == ChoreDefinition.id)
            .where(ChoreDefinition.assigned_user_id == user_id)
            .order_by(ChoreLog.chore_date, ChoreLog.id)
        ).all()
        transactions = session.exec(select(LedgerTransaction).where(LedgerTransaction.user_id == user_id)).all()
        earned = session.exec(
            select(UserAchievement.achievement_id, Achievement.code, Achievement.category)
            .where(UserAchievement.achievement_id == Achievement.id)
            .where(UserAchievement.user_id == user_id)
        ).all()
        unlocked = {achievement_id: code for achievement_id, code, _ in earned}
        categories = {code: category for _, code, category in earned}
        opened = session.exec(select(func.min(LedgerAccount.created_at)).where(LedgerAccount.user_id == user_id)).one()
        catalog = session.exec(
            select(Achievement)
            .where(Achievement.is_active == True)  # noqa: E712
            .order_by(Achievement.sort_order, Achievement.id)
        ).all()
        categories.update((item.code, item.category) for item in catalog)
        return _Snapshot(
            logs=[(log, definition) for log, definition in logs],
            transactions=list(transactions),
            unlocked=unlocked,
            categories=categories,
            account_opened=self._clock.localize(opened).date() if opened else None,
            catalog=list(catalog),
        )

    def _persist(
        self,
        session: Session,
        user_id: str,
        progress: Mapping[int, EvaluationResult],
        newly_met: Sequence[Achievement],
        trigger: TriggerContext,
    ) -> Tuple[UnlockedAchievement, ...]:
        now = self._clock.utcnow()
        existing = {
            row.achievement_id: row
            for row in session.exec(select(AchievementProgress).where(AchievementProgress.user_id == user_id)).all()
        }
        for achievement_id, result in progress.items():
            row = existing.get(achievement_id) or AchievementProgress(user_id=user_id, achievement_id=achievement_id)
            row.current_value = result.current
            row.target_value = result.target
            row.updated_at = now
            session.add(row)

        unlocked: List[UnlockedAchievement] = []
        for achievement in newly_met:
            awarded = self._award(session, user_id, achievement, trigger.value)
            if awarded is not None:
                unlocked.append(awarded)
        return tuple(unlocked)

    def _award(
        self, session: Session, user_id: str, achievement: Achievement, trigger: Optional[str]
    ) -> Optional[UnlockedAchievement]:
        if _already_unlocked(session, user_id, achievement.id):
            return None
        row = UserAchievement(
            user_id=user_id, achievement_id=achievement.id, trigger=trigger, earned_at=self._clock.utcnow()
        )
        try:
            with session.begin_nested():
                session.add(row)
        except IntegrityError:
            # a concurrent evaluation unlocked it first
            return None
        self._bonuses.grant(session, user_id, achievement)
        return UnlockedAchievement(
            achievement_id=achievement.id,
            code=achievement.code,
            name=achievement.name,
            unlocked_at=row.earned_at,
            bonus_type=AchievementBonusType(achievement.bonus_type),
        )

    def _announce(self, user_id: str, unlocked: UnlockedAchievement) -> None:
        self._notifications.queue(
            Notification(
                recipient=user_id,
                type=NotificationType.ACHIEVEMENT_UNLOCKED,
                subject=f"Achievement unlocked: {unlocked.name}",
                body=f"You earned the {unlocked.name} badge!",
                metadata={"achievement_code": unlocked.code},
            )
        )

    # ------------------------------------------------------------------
    # Manual awards and reads
    # ------------------------------------------------------------------
    def award_manual(self, user_id: str, achievement_id: int, actor: str) -> Optional[UnlockedAchievement]:
        """Hand out an achievement directly; ``None`` if the user already has it."""

        def _manual(session: Session) -> Optional[UnlockedAchievement]:
            achievement = session.get(Achievement, achievement_id)
            if achievement is None:
                raise NotFoundError("Achievement not found.")
            return self._award(session, user_id, achievement, f"manual:{actor}")

        unlocked = self._database.run(_manual)
        if unlocked is not None:
            self._announce(user_id, unlocked)
            self._logger.log("achievement_awarded", user_id=user_id, achievement_id=achievement_id, actor=actor)
        return unlocked

    def progress_for(self, user_id: str) -> Tuple[AchievementProgress, ...]:
        return tuple(
            self._database.read(
                lambda session: session.exec(
                    select(AchievementProgress)
                    .where(AchievementProgress.user_id == user_id)
                    .order_by(AchievementProgress.achievement_id)
                ).all()
            )
        )

    def unlocked_for(self, user_id: str) -> Tuple[UserAchievement, ...]:
        return tuple(
            self._database.read(
                lambda session: session.exec(
                    select(UserAchievement)
                    .where(UserAchievement.user_id == user_id)
                    .order_by(UserAchievement.earned_at, UserAchievement.id)
                ).all()
            )
        )


__all__ = ["AchievementEvaluator"]
