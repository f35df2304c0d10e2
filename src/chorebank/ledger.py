"""Ledger engine: signed transactions for chore outcomes and manual actions."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional, Sequence, Tuple
from uuid import uuid4

from sqlalchemy import func
from sqlmodel import Session, desc, select

from .clock import FamilyClock
from .exceptions import InsufficientFundsError, NotFoundError, ValidationError
from .models import ChoreStatus, ScheduleType, TransactionStats, TransactionType
from .money import ZERO, AmountLike, format_currency, from_cents, require_positive, to_cents, to_decimal
from .ops import StructuredLogger
from .persistence import (
    ChoreDefinition,
    ChoreLog,
    Database,
    LedgerAccount,
    LedgerTransaction,
    versioned_update,
)
from .weeks import Weekday, week_end, week_start

MANUAL_TYPES = frozenset(
    {TransactionType.BONUS, TransactionType.PENALTY, TransactionType.ADJUSTMENT, TransactionType.PAYOUT}
)
_DEBIT_TYPES = frozenset({TransactionType.PENALTY, TransactionType.PAYOUT})


def _balance_cents(session: Session, account_id: int) -> int:
    total = session.exec(
        select(func.coalesce(func.sum(LedgerTransaction.amount_cents), 0)).where(
            LedgerTransaction.ledger_account_id == account_id
        )
    ).one()
    return int(total)


def _require_account(session: Session, account_id: int) -> LedgerAccount:
    account = session.get(LedgerAccount, account_id)
    if account is None or not account.is_active:
        raise NotFoundError("Account not found.")
    return account


class LedgerEngine:
    """Append-only ledger keyed by accounts.

    Chore transactions are written inside the caller's session so a status
    change and its money movement commit together.
    """

    def __init__(
        self,
        database: Database,
        clock: FamilyClock,
        logger: StructuredLogger,
        *,
        week_start_day: Weekday = Weekday.MONDAY,
    ) -> None:
        self._database = database
        self._clock = clock
        self._logger = logger
        self._week_start_day = week_start_day

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def create_account(self, user_id: str, name: str = "Main", *, is_default: bool = True) -> LedgerAccount:
        if not name.strip():
            raise ValidationError("Account name is required.")

        def _create(session: Session) -> LedgerAccount:
            if is_default:
                for existing in session.exec(
                    select(LedgerAccount).where(LedgerAccount.user_id == user_id, LedgerAccount.is_default == True)  # noqa: E712
                ).all():
                    existing.is_default = False
                    session.add(existing)
            account = LedgerAccount(
                user_id=user_id, name=name.strip(), is_default=is_default, created_at=self._clock.utcnow()
            )
            session.add(account)
            session.flush()
            session.refresh(account)
            return account

        account = self._database.run(_create)
        self._logger.log("account_created", account_id=account.id, user_id=user_id, name=account.name)
        return account

    def get_account(self, account_id: int) -> LedgerAccount:
        return self._database.read(lambda session: _require_account(session, account_id))

    def accounts_for(self, user_id: str) -> Tuple[LedgerAccount, ...]:
        return tuple(
            self._database.read(
                lambda session: session.exec(
                    select(LedgerAccount)
                    .where(LedgerAccount.user_id == user_id, LedgerAccount.is_active == True)  # noqa: E712
                    .order_by(LedgerAccount.id)
                ).all()
            )
        )

    @staticmethod
    def default_account(session: Session, user_id: str) -> Optional[LedgerAccount]:
        return session.exec(
            select(LedgerAccount)
            .where(LedgerAccount.user_id == user_id, LedgerAccount.is_active == True)  # noqa: E712
            .order_by(desc(LedgerAccount.is_default), LedgerAccount.id)
        ).first()

    # ------------------------------------------------------------------
    # Chore outcomes
    # ------------------------------------------------------------------
    def post_chore_outcome(
        self, session: Session, log: ChoreLog, definition: ChoreDefinition
    ) -> Optional[LedgerTransaction]:
        """Write the earning or deduction owed for ``log``, at most once."""

        existing = session.exec(select(LedgerTransaction).where(LedgerTransaction.chore_log_id == log.id)).first()
        if existing is not None:
            return existing
        if not definition.assigned_user_id:
            return None

        if log.status is ChoreStatus.APPROVED and definition.earn_cents > 0:
            amount, description = self._earning_for(session, log, definition)
            transaction_type = TransactionType.CHORE_EARNING
        elif log.status is ChoreStatus.MISSED and definition.penalty_cents > 0:
            amount, description = -definition.penalty_value, f"Missed: {definition.name}"
            transaction_type = TransactionType.CHORE_DEDUCTION
        else:
            return None
        if amount == ZERO:
            return None

        account = self.default_account(session, definition.assigned_user_id)
        if account is None:
            raise NotFoundError(f"No active account for user {definition.assigned_user_id}.")
        transaction = LedgerTransaction(
            ledger_account_id=account.id,
            chore_log_id=log.id,
            user_id=definition.assigned_user_id,
            amount_cents=to_cents(amount),
            type=transaction_type,
            description=description,
            transaction_date=log.chore_date,
        )
        session.add(transaction)
        session.flush()
        self._logger.log(
            "chore_transaction_posted",
            log_id=log.id,
            transaction_id=transaction.id,
            type=transaction_type.value,
            amount=str(amount),
        )
        return transaction

    def _earning_for(self, session: Session, log: ChoreLog, definition: ChoreDefinition) -> Tuple[Decimal, str]:
        earn = definition.earn_value
        if definition.schedule_type is not ScheduleType.WEEKLY_FREQUENCY:
            return earn, f"Completed: {definition.name}"

        start = week_start(log.chore_date, self._week_start_day)
        end = week_end(log.chore_date, self._week_start_day)
        earlier = session.exec(
            select(func.count(ChoreLog.id)).where(
                ChoreLog.chore_definition_id == definition.id,
                ChoreLog.chore_date >= start,
                ChoreLog.chore_date <= end,
                ChoreLog.status == ChoreStatus.APPROVED,
                ChoreLog.id != log.id,
            )
        ).one()
        target = definition.weekly_target_count
        if earlier < target:
            return earn, f"Completed: {definition.name} ({earlier + 1}/{target})"
        extra = earlier - target + 1
        if not definition.is_repeatable:
            return ZERO, ""
        # each completion past the target is worth half the previous one
        return to_decimal(earn * (Decimal("0.5") ** extra)), f"Bonus: {definition.name} (+{extra} extra)"

    # ------------------------------------------------------------------
    # Manual transactions
    # ------------------------------------------------------------------
    def create_manual_transaction(
        self,
        account_id: int,
        amount: AmountLike,
        transaction_type: TransactionType,
        description: str,
        *,
        actor: Optional[str] = None,
        on_date: Optional[date] = None,
    ) -> LedgerTransaction:
        transaction_type = TransactionType(transaction_type)
        if transaction_type not in MANUAL_TYPES:
            raise ValidationError(f"{transaction_type.value} transactions cannot be created manually.")
        value = to_decimal(amount)
        if transaction_type is TransactionType.ADJUSTMENT:
            if value == ZERO:
                raise ValidationError("Adjustment amount cannot be zero.")
        else:
            require_positive(value)
            if transaction_type in _DEBIT_TYPES:
                value = -value

        def _create(session: Session) -> LedgerTransaction:
            account = _require_account(session, account_id)
            if transaction_type is TransactionType.PAYOUT and _balance_cents(session, account_id) + to_cents(value) < 0:
                raise InsufficientFundsError(
                    f"Account '{account.name}' has insufficient funds for {format_currency(-value)}."
                )
            transaction = LedgerTransaction(
                ledger_account_id=account.id,
                user_id=account.user_id,
                amount_cents=to_cents(value),
                type=transaction_type,
                description=description or transaction_type.value.replace("_", " ").title(),
                transaction_date=on_date or self._clock.today(),
            )
            session.add(transaction)
            session.flush()
            session.refresh(transaction)
            return transaction

        transaction = self._database.run(_create)
        self._logger.log(
            "manual_transaction_created",
            transaction_id=transaction.id,
            account_id=account_id,
            type=transaction_type.value,
            amount=str(value),
            actor=actor,
        )
        return transaction

    def post_bonus(self, session: Session, user_id: str, amount: Decimal, description: str) -> Optional[LedgerTransaction]:
        """Credit ``amount`` to the user's default account within ``session``."""

        account = self.default_account(session, user_id)
        if account is None:
            return None
        transaction = LedgerTransaction(
            ledger_account_id=account.id,
            user_id=user_id,
            amount_cents=to_cents(amount),
            type=TransactionType.BONUS,
            description=description,
            transaction_date=self._clock.today(),
        )
        session.add(transaction)
        session.flush()
        return transaction

    def transfer(
        self,
        from_account_id: int,
        to_account_id: int,
        amount: AmountLike,
        description: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> Tuple[LedgerTransaction, LedgerTransaction]:
        """Move money between accounts as two legs committed together."""

        if from_account_id == to_account_id:
            raise ValidationError("Cannot transfer to the same account.")
        value = require_positive(to_decimal(amount))
        group_id = str(uuid4())

        def _transfer(session: Session) -> Tuple[LedgerTransaction, LedgerTransaction]:
            source = _require_account(session, from_account_id)
            target = _require_account(session, to_account_id)
            if _balance_cents(session, source.id) < to_cents(value):
                raise InsufficientFundsError(
                    f"Account '{source.name}' has insufficient funds for {format_currency(value)}."
                )
            today = self._clock.today()
            outgoing = LedgerTransaction(
                ledger_account_id=source.id,
                user_id=source.user_id,
                transfer_group_id=group_id,
                amount_cents=-to_cents(value),
                type=TransactionType.TRANSFER,
                description=description or f"Transfer to {target.name}",
                transaction_date=today,
            )
            incoming = LedgerTransaction(
                ledger_account_id=target.id,
                user_id=target.user_id,
                transfer_group_id=group_id,
                amount_cents=to_cents(value),
                type=TransactionType.TRANSFER,
                description=description or f"Transfer from {source.name}",
                transaction_date=today,
            )
            session.add(outgoing)
            session.add(incoming)
            session.flush()
            session.refresh(outgoing)
            session.refresh(incoming)
            return outgoing, incoming

        outgoing, incoming = self._database.run(_transfer)
        self._logger.log(
            "transfer_created",
            transfer_group_id=group_id,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            amount=str(value),
            actor=actor,
        )
        return outgoing, incoming

    def correct_description(self, transaction_id: int, description: str, expected_version: int) -> LedgerTransaction:
        """Fix a transaction's description; amounts are never edited."""

        def _correct(session: Session) -> LedgerTransaction:
            transaction = session.get(LedgerTransaction, transaction_id)
            if transaction is None:
                raise NotFoundError("Transaction not found.")
            versioned_update(session, LedgerTransaction, transaction_id, expected_version, description=description)
            session.refresh(transaction)
            return transaction

        transaction = self._database.run(_correct)
        self._logger.log("transaction_corrected", transaction_id=transaction_id, version=transaction.version)
        return transaction

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def balance(self, account_id: int) -> Decimal:
        def _balance(session: Session) -> int:
            _require_account(session, account_id)
            return _balance_cents(session, account_id)

        return from_cents(self._database.read(_balance))

    def user_balance(self, user_id: str) -> Decimal:
        total = self._database.read(
            lambda session: session.exec(
                select(func.coalesce(func.sum(LedgerTransaction.amount_cents), 0)).where(
                    LedgerTransaction.user_id == user_id
                )
            ).one()
        )
        return from_cents(int(total))

    def transactions(
        self,
        account_id: int,
        *,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Tuple[LedgerTransaction, ...]:
        def _list(session: Session) -> Sequence[LedgerTransaction]:
            statement = select(LedgerTransaction).where(LedgerTransaction.ledger_account_id == account_id)
            if start is not None:
                statement = statement.where(LedgerTransaction.transaction_date >= start)
            if end is not None:
                statement = statement.where(LedgerTransaction.transaction_date <= end)
            return session.exec(
                statement.order_by(desc(LedgerTransaction.transaction_date), desc(LedgerTransaction.id))
            ).all()

        return tuple(self._database.read(_list))

    def transactions_for_log(self, log_id: int) -> Tuple[LedgerTransaction, ...]:
        return tuple(
            self._database.read(
                lambda session: session.exec(
                    select(LedgerTransaction).where(LedgerTransaction.chore_log_id == log_id)
                ).all()
            )
        )

    def stats(self, user_id: str, *, start: Optional[date] = None, end: Optional[date] = None) -> TransactionStats:
        def _rows(session: Session) -> Sequence[LedgerTransaction]:
            statement = select(LedgerTransaction).where(LedgerTransaction.user_id == user_id)
            if start is not None:
                statement = statement.where(LedgerTransaction.transaction_date >= start)
            if end is not None:
                statement = statement.where(LedgerTransaction.transaction_date <= end)
            return session.exec(statement).all()

        stats = TransactionStats()
        for row in self._database.read(_rows):
            amount = row.amount
            if row.type is TransactionType.CHORE_EARNING:
                stats.total_earnings += amount
            elif row.type is TransactionType.CHORE_DEDUCTION:
                stats.total_deductions += -amount
            elif row.type is TransactionType.BONUS:
                stats.total_bonuses += amount
            elif row.type is TransactionType.PENALTY:
                stats.total_penalties += -amount
            elif row.type is TransactionType.PAYOUT:
                stats.total_payouts += -amount
            elif row.type is TransactionType.ADJUSTMENT:
                stats.total_adjustments += amount
            elif row.type is TransactionType.TRANSFER:
                if amount >= ZERO:
                    stats.total_transfers_in += amount
                else:
                    stats.total_transfers_out += -amount
            stats.net_total += amount
            stats.transaction_count += 1
        return stats


__all__ = ["LedgerEngine", "MANUAL_TYPES"]
