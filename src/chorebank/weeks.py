"""Calendar helpers: day-of-week flags and week boundaries."""

from __future__ import annotations

from datetime import date, timedelta
from enum import IntEnum, IntFlag
from typing import Iterator


class Weekday(IntEnum):
    """Days of the week, numbered like :meth:`datetime.date.weekday`."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def from_date(cls, day: date) -> "Weekday":
        return cls(day.weekday())

    @classmethod
    def parse(cls, value: "str | int | Weekday") -> "Weekday":
        if isinstance(value, Weekday):
            return value
        if isinstance(value, int):
            return cls(value)
        try:
            return cls[value.strip().upper()]
        except KeyError as exc:
            raise ValueError(f"Unknown weekday: {value!r}") from exc


class DayFlag(IntFlag):
    """Bitset of active days stored on chore definitions."""

    NONE = 0
    SUNDAY = 1
    MONDAY = 2
    TUESDAY = 4
    WEDNESDAY = 8
    THURSDAY = 16
    FRIDAY = 32
    SATURDAY = 64
    WEEKDAYS = MONDAY | TUESDAY | WEDNESDAY | THURSDAY | FRIDAY
    WEEKENDS = SATURDAY | SUNDAY
    ALL = WEEKDAYS | WEEKENDS


_FLAG_BY_WEEKDAY = {
    Weekday.MONDAY: DayFlag.MONDAY,
    Weekday.TUESDAY: DayFlag.TUESDAY,
    Weekday.WEDNESDAY: DayFlag.WEDNESDAY,
    Weekday.THURSDAY: DayFlag.THURSDAY,
    Weekday.FRIDAY: DayFlag.FRIDAY,
    Weekday.SATURDAY: DayFlag.SATURDAY,
    Weekday.SUNDAY: DayFlag.SUNDAY,
}


def day_flag(day: date) -> DayFlag:
    """Return the single :class:`DayFlag` bit for ``day``."""

    return _FLAG_BY_WEEKDAY[Weekday.from_date(day)]


def is_flag_set(active_days: int, day: date) -> bool:
    return bool(DayFlag(active_days) & day_flag(day))


def week_start(day: date, start_day: Weekday = Weekday.MONDAY) -> date:
    """Return the first date of the week containing ``day``."""

    offset = (day.weekday() - int(start_day) + 7) % 7
    return day - timedelta(days=offset)


def week_end(day: date, start_day: Weekday = Weekday.MONDAY) -> date:
    """Return the last date of the week containing ``day``."""

    return week_start(day, start_day) + timedelta(days=6)


def iter_days(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def is_weekend(day: date) -> bool:
    return bool(day_flag(day) & DayFlag.WEEKENDS)


__all__ = [
    "DayFlag",
    "Weekday",
    "day_flag",
    "is_flag_set",
    "is_weekend",
    "iter_days",
    "week_end",
    "week_start",
]
