"""Perks granted by achievements: multipliers, forgiveness tokens and friends."""

from __future__ import annotations

import json
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence, Tuple

from sqlmodel import Session, select

from .clock import FamilyClock
from .exceptions import ValidationError
from .ledger import LedgerEngine
from .models import AchievementBonusType, BonusSummary
from .money import ZERO, AmountLike, from_cents, to_cents, to_decimal
from .ops import StructuredLogger
from .persistence import Achievement, Database, UserAchievementBonus

MAX_POINT_MULTIPLIER = Decimal("2.0")
MAX_PENALTY_REDUCTION = Decimal("0.75")
DEFAULT_DURATION_DAYS = 7

TEMPORARY_BONUSES = frozenset(
    {
        AchievementBonusType.POINT_MULTIPLIER,
        AchievementBonusType.REMINDER_SUPPRESSION,
        AchievementBonusType.PENALTY_REDUCTION,
        AchievementBonusType.EARLY_CASH_OUT,
    }
)
ONE_TIME_BONUSES = frozenset(
    {
        AchievementBonusType.ONE_TIME_FORGIVENESS,
        AchievementBonusType.DOUBLE_POINT_DAY,
        AchievementBonusType.STREAK_PROTECTION,
    }
)


def bonus_params(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Invalid bonus parameters: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Bonus parameters must be an object.")
    return payload


class AchievementBonusService:
    """Grant, summarise and consume achievement bonuses."""

    def __init__(
        self,
        database: Database,
        ledger: LedgerEngine,
        clock: FamilyClock,
        logger: StructuredLogger,
    ) -> None:
        self._database = database
        self._ledger = ledger
        self._clock = clock
        self._logger = logger

    # ------------------------------------------------------------------
    # Granting
    # ------------------------------------------------------------------
    def grant(self, session: Session, user_id: str, achievement: Achievement) -> Optional[UserAchievementBonus]:
        """Record the bonus ``achievement`` declares, inside ``session``."""

        bonus_type = AchievementBonusType(achievement.bonus_type)
        if bonus_type is AchievementBonusType.NONE:
            return None
        params = bonus_params(achievement.bonus_value)
        now = self._clock.utcnow()
        grant = UserAchievementBonus(
            user_id=user_id,
            achievement_id=achievement.id,
            bonus_type=bonus_type,
            bonus_value=achievement.bonus_value,
            granted_at=now,
        )
        if bonus_type is AchievementBonusType.BONUS_POINTS:
            amount = to_decimal(params.get("amount", 0))
            if amount > ZERO:
                self._ledger.post_bonus(session, user_id, amount, f"Achievement: {achievement.name}")
            grant.is_active = False
        elif bonus_type in TEMPORARY_BONUSES:
            days = int(params.get("duration_days", DEFAULT_DURATION_DAYS))
            grant.expires_at = now + timedelta(days=days)
            if params.get("max_earnings") is not None:
                grant.max_amount_cents = to_cents(params["max_earnings"])
        elif bonus_type in ONE_TIME_BONUSES:
            grant.remaining_uses = int(params.get("count", 1))
        session.add(grant)
        session.flush()
        self._logger.log(
            "achievement_bonus_granted",
            user_id=user_id,
            achievement_id=achievement.id,
            bonus_type=bonus_type.value,
        )
        return grant

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def active_bonuses(self, user_id: str) -> Tuple[UserAchievementBonus, ...]:
        now = self._clock.utcnow()
        return tuple(self._database.read(lambda session: self._active(session, user_id, now)))

    @staticmethod
    def _active(
        session: Session,
        user_id: str,
        now: datetime,
        bonus_type: Optional[AchievementBonusType] = None,
    ) -> Sequence[UserAchievementBonus]:
        statement = select(UserAchievementBonus).where(
            UserAchievementBonus.user_id == user_id,
            UserAchievementBonus.is_active == True,  # noqa: E712
        )
        if bonus_type is not None:
            statement = statement.where(UserAchievementBonus.bonus_type == bonus_type)
        rows = session.exec(statement.order_by(UserAchievementBonus.granted_at, UserAchievementBonus.id)).all()
        return [
            row
            for row in rows
            if (row.expires_at is None or row.expires_at > now)
            and (row.remaining_uses is None or row.remaining_uses > 0)
        ]

    def summary(self, user_id: str) -> BonusSummary:
        summary = BonusSummary()
        multiplier = Decimal("1.0")
        reduction = ZERO
        badges = []
        for row in self.active_bonuses(user_id):
            params = bonus_params(row.bonus_value)
            if row.bonus_type is AchievementBonusType.POINT_MULTIPLIER:
                multiplier *= Decimal(str(params.get("multiplier", 1)))
            elif row.bonus_type is AchievementBonusType.PENALTY_REDUCTION:
                reduction += Decimal(str(params.get("reduction_percent", 0))) / 100
            elif row.bonus_type is AchievementBonusType.ONE_TIME_FORGIVENESS:
                summary.forgiveness_tokens += row.remaining_uses or 0
            elif row.bonus_type is AchievementBonusType.STREAK_PROTECTION:
                summary.streak_protections += row.remaining_uses or 0
            elif row.bonus_type is AchievementBonusType.DOUBLE_POINT_DAY:
                summary.double_point_days += row.remaining_uses or 0
            elif row.bonus_type is AchievementBonusType.REMINDER_SUPPRESSION:
                summary.reminders_suppressed = True
            elif row.bonus_type is AchievementBonusType.EARLY_CASH_OUT:
                summary.cash_out_threshold_reduction += to_decimal(params.get("threshold_reduction", 0))
            elif row.bonus_type is AchievementBonusType.TRUST_INCREASE:
                summary.trust_level_bonus += int(params.get("level_increase", 1))
            elif row.bonus_type is AchievementBonusType.PROFILE_BADGE and params.get("badge_key"):
                badges.append(str(params["badge_key"]))
        summary.point_multiplier = min(multiplier, MAX_POINT_MULTIPLIER)
        summary.penalty_reduction = min(reduction, MAX_PENALTY_REDUCTION)
        summary.badges = tuple(badges)
        return summary

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------
    def apply_point_multiplier(self, user_id: str, amount: AmountLike, *, double_points: bool = False) -> Decimal:
        """Return ``amount`` boosted by active multipliers, honouring their caps.

        With ``double_points`` one Double Point Day use is spent and the
        multiplier doubles (still capped).
        """

        base = to_decimal(amount)
        now = self._clock.utcnow()

        def _apply(session: Session) -> Decimal:
            rows = self._active(session, user_id, now, AchievementBonusType.POINT_MULTIPLIER)
            multiplier = Decimal("1.0")
            for row in rows:
                multiplier *= Decimal(str(bonus_params(row.bonus_value).get("multiplier", 1)))
            if double_points and self._consume(session, user_id, AchievementBonusType.DOUBLE_POINT_DAY, now):
                multiplier *= 2
            multiplier = min(multiplier, MAX_POINT_MULTIPLIER)
            extra = to_decimal(base * (multiplier - 1))
            if extra <= ZERO:
                return base
            capped = [row for row in rows if row.max_amount_cents is not None]
            if capped:
                room = min(from_cents(row.max_amount_cents - row.used_amount_cents) for row in capped)
                extra = max(ZERO, min(extra, room))
                for row in capped:
                    row.used_amount_cents += to_cents(extra)
                    if row.used_amount_cents >= row.max_amount_cents:
                        row.is_active = False
                    session.add(row)
            return base + extra

        return self._database.run(_apply)

    def apply_penalty_reduction(self, user_id: str, penalty: AmountLike) -> Decimal:
        value = to_decimal(penalty)
        reduction = self.summary(user_id).penalty_reduction
        return to_decimal(value * (1 - reduction))

    def use_one_time_bonus(self, user_id: str, bonus_type: AchievementBonusType) -> bool:
        """Spend one use of the oldest matching bonus; ``False`` if none is left."""

        bonus_type = AchievementBonusType(bonus_type)
        if bonus_type not in ONE_TIME_BONUSES:
            raise ValidationError(f"{bonus_type.value} is not a one-time bonus.")
        now = self._clock.utcnow()
        used = self._database.run(lambda session: self._consume(session, user_id, bonus_type, now))
        if used:
            self._logger.log("achievement_bonus_used", user_id=user_id, bonus_type=bonus_type.value)
        return used

    def _consume(self, session: Session, user_id: str, bonus_type: AchievementBonusType, now: datetime) -> bool:
        rows = self._active(session, user_id, now, bonus_type)
        if not rows:
            return False
        row = rows[0]
        row.remaining_uses = (row.remaining_uses or 1) - 1
        if row.remaining_uses <= 0:
            row.is_active = False
        session.add(row)
        return True

    def expire_old(self) -> int:
        """Deactivate bonuses whose expiry has passed; return how many."""

        now = self._clock.utcnow()

        def _expire(session: Session) -> int:
            rows = session.exec(
                select(UserAchievementBonus).where(
                    UserAchievementBonus.is_active == True,  # noqa: E712
                    UserAchievementBonus.expires_at != None,  # noqa: E711
                    UserAchievementBonus.expires_at <= now,
                )
            ).all()
            for row in rows:
                row.is_active = False
                session.add(row)
            return len(rows)

        expired = self._database.run(_expire)
        if expired:
            self._logger.log("achievement_bonuses_expired", count=expired)
        return expired


__all__ = [
    "AchievementBonusService",
    "MAX_PENALTY_REDUCTION",
    "MAX_POINT_MULTIPLIER",
    "bonus_params",
]
