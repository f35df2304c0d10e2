from datetime import date
from decimal import Decimal

import pytest

from chorebank import (
    ChoreStatus,
    ConcurrencyConflictError,
    DayFlag,
    InsufficientFundsError,
    NotFoundError,
    NotificationType,
    ScheduleType,
    TransactionType,
    ValidationError,
)

MONDAY = date(2024, 6, 3)


def test_approval_creates_exactly_one_linked_earning(bank) -> None:
    account = bank.create_account("ava")
    chore = bank.create_chore("Dishes", assigned_user_id="ava", earn_value="5.00")
    log = bank.get_or_create_log(chore.id, MONDAY)
    completed = bank.record_chore_outcome(log.id, ChoreStatus.COMPLETED, "ava", log.version)
    assert completed.transaction_id is None

    approved = bank.record_chore_outcome(log.id, ChoreStatus.APPROVED, "mom", completed.version)
    assert approved.amount == Decimal("5.00")

    # a second approver read the same version before the first one wrote
    with pytest.raises(ConcurrencyConflictError) as excinfo:
        bank.record_chore_outcome(log.id, ChoreStatus.APPROVED, "dad", completed.version)
    assert excinfo.value.retryable

    linked = bank.ledger.transactions_for_log(log.id)
    assert len(linked) == 1
    assert linked[0].type is TransactionType.CHORE_EARNING
    assert linked[0].amount == Decimal("5.00")
    assert linked[0].transaction_date == MONDAY
    assert linked[0].description == "Completed: Dishes"
    assert bank.balance(account.id) == Decimal("5.00")


def test_reapproving_an_approved_log_is_rejected(bank) -> None:
    bank.create_account("ava")
    chore = bank.create_chore("Dishes", assigned_user_id="ava", earn_value="5.00")
    log = bank.get_or_create_log(chore.id, MONDAY)
    completed = bank.record_chore_outcome(log.id, ChoreStatus.COMPLETED, "ava", log.version)
    approved = bank.record_chore_outcome(log.id, ChoreStatus.APPROVED, "mom", completed.version)

    with pytest.raises(ValidationError):
        bank.record_chore_outcome(log.id, ChoreStatus.APPROVED, "mom", approved.version)
    assert len(bank.ledger.transactions_for_log(log.id)) == 1


def test_stale_version_leaves_row_unchanged(bank) -> None:
    chore = bank.create_chore("Dishes", assigned_user_id="ava")
    log = bank.get_or_create_log(chore.id, MONDAY)
    bank.record_chore_outcome(log.id, ChoreStatus.COMPLETED, "ava", log.version)
    before = bank.logs.get(log.id)

    with pytest.raises(ConcurrencyConflictError):
        bank.record_chore_outcome(log.id, ChoreStatus.APPROVED, "mom", before.version - 1)

    after = bank.logs.get(log.id)
    assert after.status is ChoreStatus.COMPLETED
    assert after.version == before.version
    assert after.approved_by is None


def test_make_bed_missed_creates_single_deduction(bank) -> None:
    account = bank.create_account("ava")
    chore = bank.create_chore(
        "Make Bed",
        assigned_user_id="ava",
        schedule_type=ScheduleType.SPECIFIC_DAYS,
        active_days=DayFlag.ALL,
        earn_value="0",
        penalty_value="0.10",
        auto_approve=True,
    )
    log = bank.get_or_create_log(chore.id, date(2024, 6, 3))
    result = bank.record_chore_outcome(log.id, ChoreStatus.MISSED, "mom", log.version)

    rows = bank.transactions(account.id)
    assert len(rows) == 1
    assert rows[0].type is TransactionType.CHORE_DEDUCTION
    assert rows[0].amount == Decimal("-0.10")
    assert rows[0].transaction_date == date(2024, 6, 3)
    assert rows[0].description == "Missed: Make Bed"
    assert result.transaction_id == rows[0].id


def test_auto_approve_completion_goes_straight_to_approved(bank) -> None:
    bank.create_account("ava")
    chore = bank.create_chore("Brush teeth", assigned_user_id="ava", earn_value="0.25", auto_approve=True)
    log = bank.get_or_create_log(chore.id, MONDAY)
    result = bank.record_chore_outcome(log.id, ChoreStatus.COMPLETED, "ava", log.version)

    stored = bank.logs.get(log.id)
    assert result.status is ChoreStatus.APPROVED
    assert stored.approved_by == "system"
    assert stored.completed_by == "ava"
    assert stored.version == 1
    assert result.amount == Decimal("0.25")


def test_state_machine_rejects_illegal_moves(bank) -> None:
    chore = bank.create_chore("Dishes", assigned_user_id="ava")
    log = bank.get_or_create_log(chore.id, MONDAY)
    with pytest.raises(ValidationError):
        bank.record_chore_outcome(log.id, ChoreStatus.APPROVED, "mom", log.version)
    skipped = bank.record_chore_outcome(log.id, ChoreStatus.SKIPPED, "mom", log.version)
    with pytest.raises(ValidationError):
        bank.record_chore_outcome(log.id, ChoreStatus.COMPLETED, "ava", skipped.version)
    with pytest.raises(NotFoundError):
        bank.record_chore_outcome(12345, ChoreStatus.COMPLETED, "ava", 0)


def test_help_request_and_guardian_response(bank) -> None:
    bank.create_account("ava")
    chore = bank.create_chore("Clean room", assigned_user_id="ava", earn_value="1.00")
    log = bank.get_or_create_log(chore.id, MONDAY)

    helped = bank.request_help(log.id, "ava", "Can't reach the shelf", log.version)
    assert helped.status is ChoreStatus.HELP
    stored = bank.logs.get(log.id)
    assert stored.help_reason == "Can't reach the shelf"
    assert stored.help_requested_at is not None
    requests = bank.notifications.pending(notification_type=NotificationType.HELP_REQUESTED)
    assert len(requests) == 1 and requests[0].metadata["chore_log_id"] == str(log.id)

    resolved = bank.respond_to_help(log.id, "dad", True, helped.version)
    assert resolved.status is ChoreStatus.COMPLETED
    assert bank.logs.get(log.id).help_responded_by == "dad"
    approved = bank.record_chore_outcome(log.id, ChoreStatus.APPROVED, "dad", resolved.version)
    assert approved.amount == Decimal("1.00")


def test_help_can_end_in_a_miss(bank) -> None:
    bank.create_account("ava")
    chore = bank.create_chore("Clean room", assigned_user_id="ava", penalty_value="0.50")
    log = bank.get_or_create_log(chore.id, MONDAY)
    helped = bank.request_help(log.id, "ava", "Too tired", log.version)
    missed = bank.respond_to_help(log.id, "mom", False, helped.version)
    assert missed.status is ChoreStatus.MISSED
    assert missed.amount == Decimal("-0.50")


def test_unassigned_chore_posts_nothing(bank) -> None:
    chore = bank.create_chore("Family walk", earn_value="1.00")
    log = bank.get_or_create_log(chore.id, MONDAY)
    completed = bank.record_chore_outcome(log.id, ChoreStatus.COMPLETED, "ava", log.version)
    approved = bank.record_chore_outcome(log.id, ChoreStatus.APPROVED, "mom", completed.version)
    assert approved.transaction_id is None


def test_missing_account_rolls_back_the_status_change(bank) -> None:
    chore = bank.create_chore("Dishes", assigned_user_id="ava", earn_value="1.00", auto_approve=True)
    log = bank.get_or_create_log(chore.id, MONDAY)
    with pytest.raises(NotFoundError):
        bank.record_chore_outcome(log.id, ChoreStatus.COMPLETED, "ava", log.version)
    stored = bank.logs.get(log.id)
    assert stored.status is ChoreStatus.PENDING
    assert stored.version == 0


def test_logs_are_created_lazily_once(bank) -> None:
    chore = bank.create_chore("Dishes", active_days=DayFlag.WEEKDAYS)
    first = bank.get_or_create_log(chore.id, MONDAY)
    second = bank.get_or_create_log(chore.id, MONDAY)
    assert first.id == second.id
    assert first.status is ChoreStatus.PENDING
    with pytest.raises(ValidationError):
        bank.get_or_create_log(chore.id, date(2024, 6, 8))
    with pytest.raises(NotFoundError):
        bank.get_or_create_log(999, MONDAY)


def test_transfer_writes_two_balanced_legs(bank) -> None:
    spending = bank.create_account("ava", "Spending")
    savings = bank.create_account("ava", "Savings", is_default=False)
    bank.create_manual_transaction(spending.id, "25.00", TransactionType.BONUS, "Birthday")

    outgoing, incoming = bank.transfer(spending.id, savings.id, "10.00", actor_id="ava")

    assert outgoing.amount + incoming.amount == Decimal("0.00")
    assert outgoing.amount == Decimal("-10.00")
    assert outgoing.transfer_group_id and outgoing.transfer_group_id == incoming.transfer_group_id
    assert outgoing.type is incoming.type is TransactionType.TRANSFER
    assert bank.balance(spending.id) == Decimal("15.00")
    assert bank.balance(savings.id) == Decimal("10.00")


def test_failed_transfer_persists_no_legs(bank) -> None:
    spending = bank.create_account("ava", "Spending")
    savings = bank.create_account("ava", "Savings", is_default=False)
    with pytest.raises(InsufficientFundsError):
        bank.transfer(spending.id, savings.id, "10.00")
    with pytest.raises(ValidationError):
        bank.transfer(spending.id, spending.id, "1.00")
    with pytest.raises(ValidationError):
        bank.transfer(spending.id, savings.id, "-1.00")
    with pytest.raises(NotFoundError):
        bank.transfer(spending.id, 999, "1.00")
    assert bank.transactions(spending.id) == ()
    assert bank.transactions(savings.id) == ()


def test_manual_transactions_are_signed_by_type(bank) -> None:
    account = bank.create_account("ava")
    bonus = bank.create_manual_transaction(account.id, "3.00", TransactionType.BONUS, "Helped grandma")
    penalty = bank.create_manual_transaction(account.id, "0.50", TransactionType.PENALTY, "Rude")
    adjustment = bank.create_manual_transaction(account.id, "-0.25", TransactionType.ADJUSTMENT, "Fix")
    payout = bank.create_manual_transaction(account.id, "1.00", TransactionType.PAYOUT, "Cash")

    assert bonus.amount == Decimal("3.00")
    assert penalty.amount == Decimal("-0.50")
    assert adjustment.amount == Decimal("-0.25")
    assert payout.amount == Decimal("-1.00")
    assert bank.balance(account.id) == Decimal("1.25")

    with pytest.raises(ValidationError):
        bank.create_manual_transaction(account.id, "-3.00", TransactionType.BONUS, "Nope")
    with pytest.raises(ValidationError):
        bank.create_manual_transaction(account.id, "0", TransactionType.ADJUSTMENT, "Nope")
    with pytest.raises(ValidationError):
        bank.create_manual_transaction(account.id, "1.00", TransactionType.TRANSFER, "Nope")
    with pytest.raises(InsufficientFundsError):
        bank.create_manual_transaction(account.id, "50.00", TransactionType.PAYOUT, "Too much")
    with pytest.raises(NotFoundError):
        bank.create_manual_transaction(999, "1.00", TransactionType.BONUS, "Nobody")


def test_transaction_stats_by_family(bank, approve) -> None:
    main = bank.create_account("ava")
    jar = bank.create_account("ava", "Jar", is_default=False)
    chore = bank.create_chore("Dishes", assigned_user_id="ava", earn_value="2.00", penalty_value="0.50")
    approve(chore.id, MONDAY)
    log = bank.get_or_create_log(chore.id, date(2024, 6, 4))
    bank.record_chore_outcome(log.id, ChoreStatus.MISSED, "mom", log.version)
    bank.create_manual_transaction(main.id, "1.00", TransactionType.BONUS, "Nice")
    bank.create_manual_transaction(main.id, "0.20", TransactionType.PENALTY, "Oops")
    bank.transfer(main.id, jar.id, "1.00")

    stats = bank.transaction_stats("ava")
    assert stats.total_earnings == Decimal("2.00")
    assert stats.total_deductions == Decimal("0.50")
    assert stats.total_bonuses == Decimal("1.00")
    assert stats.total_penalties == Decimal("0.20")
    assert stats.total_transfers_in == Decimal("1.00")
    assert stats.total_transfers_out == Decimal("1.00")
    assert stats.net_total == Decimal("2.30")
    assert stats.transaction_count == 6

    june_third = bank.transaction_stats("ava", start=MONDAY, end=MONDAY)
    assert june_third.transaction_count == 1


def test_description_correction_is_version_checked(bank) -> None:
    account = bank.create_account("ava")
    row = bank.create_manual_transaction(account.id, "1.00", TransactionType.BONUS, "Typo")
    fixed = bank.ledger.correct_description(row.id, "Great job", row.version)
    assert fixed.description == "Great job"
    assert fixed.version == row.version + 1
    with pytest.raises(ConcurrencyConflictError):
        bank.ledger.correct_description(row.id, "Again", row.version)
    assert bank.transactions(account.id)[0].description == "Great job"


def test_help_goes_through_the_help_request_flow(bank) -> None:
    chore = bank.create_chore("Clean room", assigned_user_id="ava")
    log = bank.get_or_create_log(chore.id, MONDAY)

    with pytest.raises(ValidationError, match="request_help"):
        bank.record_chore_outcome(log.id, ChoreStatus.HELP, "ava", log.version)
    assert bank.logs.get(log.id).status is ChoreStatus.PENDING
    assert bank.notifications.pending(notification_type=NotificationType.HELP_REQUESTED) == ()
