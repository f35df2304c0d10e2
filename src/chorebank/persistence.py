"""SQLModel tables and the storage adapter for ChoreBank."""
from __future__ import annotations

import time
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Iterator, Optional, Type, TypeVar

from sqlalchemy import UniqueConstraint, event, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import Field, Session, SQLModel, create_engine

from .exceptions import ConcurrencyConflictError, StorageFailureError
from .models import (
    AchievementBonusType,
    ChoreStatus,
    OverrideType,
    ScheduleType,
    TransactionType,
    UnlockConditionType,
)
from .money import from_cents
from .weeks import DayFlag

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
class ChoreDefinition(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    icon: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, index=True)
    assigned_user_id: Optional[str] = Field(default=None, index=True)
    earn_cents: int = 0
    penalty_cents: int = 0
    schedule_type: ScheduleType = ScheduleType.SPECIFIC_DAYS
    active_days: int = int(DayFlag.ALL)
    weekly_target_count: int = 1
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    auto_approve: bool = False
    is_repeatable: bool = True
    is_active: bool = Field(default=True, index=True)
    sort_order: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def earn_value(self) -> Decimal:
        return from_cents(self.earn_cents)

    @property
    def penalty_value(self) -> Decimal:
        return from_cents(self.penalty_cents)


class ChoreScheduleOverride(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("chore_definition_id", "chore_date", name="uq_override_chore_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    chore_definition_id: int = Field(foreign_key="choredefinition.id", index=True)
    chore_date: date = Field(index=True)
    override_type: OverrideType
    override_assigned_user_id: Optional[str] = None
    override_value_cents: Optional[int] = None
    created_by: str
    created_at: datetime = Field(default_factory=utcnow)


class ChoreLog(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("chore_definition_id", "chore_date", name="uq_chorelog_chore_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    chore_definition_id: int = Field(foreign_key="choredefinition.id", index=True)
    chore_date: date = Field(index=True)
    status: ChoreStatus = ChoreStatus.PENDING
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    help_reason: Optional[str] = None
    help_requested_at: Optional[datetime] = None
    help_responded_by: Optional[str] = None
    notes: Optional[str] = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class LedgerAccount(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    name: str
    is_default: bool = False
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class LedgerTransaction(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    ledger_account_id: int = Field(foreign_key="ledgeraccount.id", index=True)
    chore_log_id: Optional[int] = Field(default=None, foreign_key="chorelog.id", index=True)
    user_id: str = Field(index=True)
    transfer_group_id: Optional[str] = Field(default=None, index=True)
    amount_cents: int
    type: TransactionType
    description: str = ""
    transaction_date: date = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)


class Achievement(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True)
    name: str
    description: str = ""
    category: Optional[str] = None
    unlock_condition_type: UnlockConditionType = UnlockConditionType.MANUAL
    unlock_condition_value: Optional[str] = None  # JSON parameters
    bonus_type: AchievementBonusType = AchievementBonusType.NONE
    bonus_value: Optional[str] = None  # JSON parameters
    is_active: bool = True
    sort_order: int = 0


class UserAchievement(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "achievement_id", name="uq_user_achievement"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    achievement_id: int = Field(foreign_key="achievement.id")
    earned_at: datetime = Field(default_factory=utcnow)
    trigger: Optional[str] = None


class AchievementProgress(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("user_id", "achievement_id", name="uq_achievement_progress"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    achievement_id: int = Field(foreign_key="achievement.id")
    current_value: float = 0.0
    target_value: float = 0.0
    updated_at: datetime = Field(default_factory=utcnow)


class UserAchievementBonus(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    achievement_id: int = Field(foreign_key="achievement.id")
    bonus_type: AchievementBonusType
    bonus_value: Optional[str] = None
    granted_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    remaining_uses: Optional[int] = None
    max_amount_cents: Optional[int] = None
    used_amount_cents: int = 0
    is_active: bool = True


# ---------------------------------------------------------------------------
# Optimistic concurrency
# ---------------------------------------------------------------------------
def versioned_update(
    session: Session, model: Type[SQLModel], row_id: int, expected_version: int, **values: Any
) -> None:
    """Apply ``values`` only if the row still carries ``expected_version``.

    The version is bumped in the same statement. A stale version leaves the
    row untouched and raises :class:`ConcurrencyConflictError`.
    """

    table = model.__table__  # type: ignore[attr-defined]
    statement = (
        update(table)
        .where(table.c.id == row_id, table.c.version == expected_version)
        .values(version=table.c.version + 1, **values)
    )
    result = session.connection().execute(statement)
    if result.rowcount != 1:
        raise ConcurrencyConflictError(model.__name__, row_id, expected_version)


# ---------------------------------------------------------------------------
# Storage adapter
# ---------------------------------------------------------------------------
def _sqlite_transactions(engine: Engine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest inside the unit of work."""

    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(connection: Any) -> None:
        connection.exec_driver_sql("BEGIN")


class Database:
    """Own the engine and run units of work with bounded retries."""

    def __init__(
        self,
        url: str,
        *,
        retries: int = 3,
        backoff_seconds: float = 0.05,
        echo: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
        self.url = url
        self.engine = create_engine(url, echo=echo, connect_args=connect_args)
        if url.startswith("sqlite"):
            _sqlite_transactions(self.engine)
        self.retries = retries
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    def create_all(self) -> None:
        SQLModel.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        SQLModel.metadata.drop_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        with Session(self.engine, expire_on_commit=False) as session:
            yield session

    def read(self, operation: Callable[[Session], T]) -> T:
        """Run a read-only ``operation``; no commit is issued."""

        return self._attempt(operation, commit=False)

    def run(self, operation: Callable[[Session], T]) -> T:
        """Run ``operation`` in one transaction and commit it.

        Transient ``OperationalError`` failures are retried with a linear
        backoff; anything else propagates after the session rolls back.
        """

        return self._attempt(operation, commit=True)

    def _attempt(self, operation: Callable[[Session], T], *, commit: bool) -> T:
        attempt = 0
        while True:
            try:
                with self.session() as session:
                    result = operation(session)
                    if commit:
                        session.commit()
                    return result
            except OperationalError as exc:
                attempt += 1
                if attempt > self.retries:
                    raise StorageFailureError(f"Storage unavailable after {attempt} attempts: {exc}") from exc
                self._sleep(self.backoff_seconds * attempt)


__all__ = [
    "Achievement",
    "AchievementProgress",
    "ChoreDefinition",
    "ChoreLog",
    "ChoreScheduleOverride",
    "Database",
    "LedgerAccount",
    "LedgerTransaction",
    "UserAchievement",
    "UserAchievementBonus",
    "utcnow",
    "versioned_update",
]
