from datetime import date

import pytest

from chorebank.weeks import DayFlag, Weekday, day_flag, is_flag_set, iter_days, week_end, week_start


def test_day_flags_match_stored_bit_values() -> None:
    assert day_flag(date(2024, 6, 2)) is DayFlag.SUNDAY
    assert day_flag(date(2024, 6, 3)) is DayFlag.MONDAY
    assert day_flag(date(2024, 6, 8)) is DayFlag.SATURDAY
    assert int(DayFlag.SUNDAY) == 1
    assert int(DayFlag.SATURDAY) == 64
    assert int(DayFlag.ALL) == 127
    assert int(DayFlag.WEEKDAYS) == 62


def test_is_flag_set_checks_membership() -> None:
    assert is_flag_set(DayFlag.WEEKDAYS, date(2024, 6, 7))
    assert not is_flag_set(DayFlag.WEEKDAYS, date(2024, 6, 8))
    assert is_flag_set(DayFlag.WEEKENDS, date(2024, 6, 9))


def test_week_bounds_default_to_monday() -> None:
    wednesday = date(2024, 6, 5)
    assert week_start(wednesday) == date(2024, 6, 3)
    assert week_end(wednesday) == date(2024, 6, 9)
    assert week_start(date(2024, 6, 3)) == date(2024, 6, 3)
    assert week_start(date(2024, 6, 9)) == date(2024, 6, 3)


def test_week_bounds_follow_configured_start_day() -> None:
    wednesday = date(2024, 6, 5)
    assert week_start(wednesday, Weekday.SUNDAY) == date(2024, 6, 2)
    assert week_end(wednesday, Weekday.SUNDAY) == date(2024, 6, 8)
    assert week_start(wednesday, Weekday.SATURDAY) == date(2024, 6, 1)
    assert week_start(date(2024, 6, 1), Weekday.SATURDAY) == date(2024, 6, 1)


def test_week_bounds_cross_year_boundaries() -> None:
    new_year = date(2025, 1, 1)
    assert week_start(new_year) == date(2024, 12, 30)
    assert week_end(new_year) == date(2025, 1, 5)
    assert week_start(new_year, Weekday.SUNDAY) == date(2024, 12, 29)
    assert week_end(date(2024, 12, 31), Weekday.SUNDAY) == date(2025, 1, 4)


def test_every_day_of_a_week_shares_its_bounds() -> None:
    for start_day in Weekday:
        anchor = week_start(date(2023, 12, 28), start_day)
        for day in iter_days(anchor, week_end(anchor, start_day)):
            assert week_start(day, start_day) == anchor
            assert (week_end(day, start_day) - anchor).days == 6


def test_weekday_parse_accepts_names_and_numbers() -> None:
    assert Weekday.parse("sunday") is Weekday.SUNDAY
    assert Weekday.parse(" Monday ") is Weekday.MONDAY
    assert Weekday.parse(4) is Weekday.FRIDAY
    with pytest.raises(ValueError):
        Weekday.parse("funday")
