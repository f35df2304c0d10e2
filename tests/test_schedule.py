from datetime import date, timedelta

import pytest

from chorebank import DayFlag, NotFoundError, OverrideType, ValidationError
from chorebank.weeks import day_flag, iter_days

MONDAY = date(2024, 6, 3)
SATURDAY = date(2024, 6, 8)


def _ids(chores) -> list:
    return [chore.id for chore in chores]


def test_specific_days_chore_follows_its_day_flags(bank) -> None:
    chore = bank.create_chore("Dishes", assigned_user_id="ava", active_days=DayFlag.WEEKDAYS)
    for day in iter_days(MONDAY, MONDAY + timedelta(days=20)):
        present = chore.id in _ids(bank.get_chores_for_date(day))
        assert present == bool(day_flag(day) & DayFlag.WEEKDAYS)


def test_date_bounds_limit_recurrence(bank) -> None:
    chore = bank.create_chore(
        "Water plants",
        active_days=DayFlag.ALL,
        start_date=date(2024, 6, 4),
        end_date=date(2024, 6, 6),
    )
    assert chore.id not in _ids(bank.get_chores_for_date(date(2024, 6, 3)))
    assert chore.id in _ids(bank.get_chores_for_date(date(2024, 6, 4)))
    assert chore.id in _ids(bank.get_chores_for_date(date(2024, 6, 6)))
    assert chore.id not in _ids(bank.get_chores_for_date(date(2024, 6, 7)))


def test_remove_override_hides_recurring_chore(bank) -> None:
    chore = bank.create_chore("Make bed", active_days=DayFlag.ALL)
    row = bank.remove_override(chore.id, MONDAY, "mom")
    assert row is not None and row.override_type is OverrideType.REMOVE
    assert chore.id not in _ids(bank.get_chores_for_date(MONDAY))
    assert chore.id in _ids(bank.get_chores_for_date(MONDAY + timedelta(days=1)))


def test_add_override_shows_chore_exactly_once(bank) -> None:
    recurring = bank.create_chore("Feed cat", active_days=DayFlag.ALL)
    weekend_only = bank.create_chore("Mow lawn", active_days=DayFlag.WEEKENDS)

    bank.add_override(recurring.id, MONDAY, "dad")
    bank.add_override(weekend_only.id, MONDAY, "dad")

    chores = _ids(bank.get_chores_for_date(MONDAY))
    assert chores.count(recurring.id) == 1
    assert chores.count(weekend_only.id) == 1


def test_removing_an_added_day_deletes_the_override(bank) -> None:
    chore = bank.create_chore("Mow lawn", active_days=DayFlag.WEEKENDS)
    bank.add_override(chore.id, MONDAY, "dad")
    assert bank.remove_override(chore.id, MONDAY, "dad") is None
    assert bank.overrides_for_range(MONDAY, MONDAY) == ()
    assert chore.id not in _ids(bank.get_chores_for_date(MONDAY))


def test_one_override_row_per_chore_and_date(bank) -> None:
    chore = bank.create_chore("Feed cat", active_days=DayFlag.ALL)
    bank.remove_override(chore.id, MONDAY, "mom")
    bank.add_override(chore.id, MONDAY, "dad", assignee="ben")
    rows = bank.overrides_for_range(MONDAY, MONDAY)
    assert len(rows) == 1
    assert rows[0].override_type is OverrideType.ADD
    assert rows[0].created_by == "dad"
    assert chore.id in _ids(bank.get_chores_for_date(MONDAY))


def test_move_excludes_source_and_includes_target(bank) -> None:
    chore = bank.create_chore("Vacuum", active_days=DayFlag.MONDAY)
    target = MONDAY + timedelta(days=2)
    row = bank.move_override(chore.id, MONDAY, target, "mom")

    assert row.override_type is OverrideType.MOVE
    assert chore.id not in _ids(bank.get_chores_for_date(MONDAY))
    assert chore.id in _ids(bank.get_chores_for_date(target))
    kinds = {item.chore_date: item.override_type for item in bank.overrides_for_range(MONDAY, target)}
    assert kinds == {MONDAY: OverrideType.REMOVE, target: OverrideType.MOVE}


def test_move_of_an_added_day_still_clears_the_source(bank) -> None:
    chore = bank.create_chore("Vacuum", active_days=DayFlag.ALL)
    bank.add_override(chore.id, MONDAY, "mom")
    bank.move_override(chore.id, MONDAY, SATURDAY, "mom")
    assert chore.id not in _ids(bank.get_chores_for_date(MONDAY))
    assert chore.id in _ids(bank.get_chores_for_date(SATURDAY))


def test_move_to_same_date_is_rejected(bank) -> None:
    chore = bank.create_chore("Vacuum")
    with pytest.raises(ValidationError, match="same date"):
        bank.move_override(chore.id, MONDAY, MONDAY, "mom")
    assert bank.overrides_for_range(MONDAY, MONDAY) == ()


def test_unknown_chore_is_not_found_and_writes_nothing(bank) -> None:
    with pytest.raises(NotFoundError):
        bank.add_override(999, MONDAY, "mom")
    with pytest.raises(NotFoundError):
        bank.remove_override(999, MONDAY, "mom")
    with pytest.raises(NotFoundError):
        bank.move_override(999, MONDAY, SATURDAY, "mom")
    assert bank.overrides_for_range(MONDAY, SATURDAY) == ()


def test_delete_override_by_id(bank) -> None:
    chore = bank.create_chore("Feed cat", active_days=DayFlag.ALL)
    row = bank.remove_override(chore.id, MONDAY, "mom")
    bank.delete_override(row.id)
    assert chore.id in _ids(bank.get_chores_for_date(MONDAY))
    with pytest.raises(NotFoundError):
        bank.delete_override(row.id)


def test_add_override_ignores_inactive_chores(bank) -> None:
    chore = bank.create_chore("Old chore", active_days=DayFlag.WEEKENDS)
    bank.add_override(chore.id, MONDAY, "mom")
    bank.deactivate_chore(chore.id)
    assert chore.id not in _ids(bank.get_chores_for_date(MONDAY))


def test_chores_sorted_by_sort_order_then_name(bank) -> None:
    bank.create_chore("Zebra", sort_order=1)
    bank.create_chore("Apple", sort_order=2)
    bank.create_chore("Mango", sort_order=1)
    names = [chore.name for chore in bank.get_chores_for_date(MONDAY)]
    assert names == ["Mango", "Zebra", "Apple"]


def test_user_filter_honours_override_assignee(bank) -> None:
    mine = bank.create_chore("Dishes", assigned_user_id="ava")
    theirs = bank.create_chore("Trash", assigned_user_id="ben")
    bank.add_override(theirs.id, MONDAY, "mom", assignee="ava")

    assert _ids(bank.get_chores_for_user_on_date("ava", MONDAY)) == [mine.id, theirs.id]
    assert _ids(bank.get_chores_for_user_on_date("ben", MONDAY)) == []
    assert _ids(bank.get_chores_for_user_on_date("ben", MONDAY + timedelta(days=1))) == [theirs.id]


def test_move_keeps_the_assignee_already_on_the_target_date(bank) -> None:
    chore = bank.create_chore("Trash", assigned_user_id="ben", active_days=DayFlag.MONDAY)
    target = MONDAY + timedelta(days=1)
    bank.add_override(chore.id, target, "mom", assignee="ava")

    row = bank.move_override(chore.id, MONDAY, target, "mom")
    assert row.override_type is OverrideType.MOVE
    assert row.override_assigned_user_id == "ava"
    assert _ids(bank.get_chores_for_user_on_date("ava", target)) == [chore.id]
