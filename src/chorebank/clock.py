"""Family clock: what "now" and "today" mean for a household."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import ValidationError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FamilyClock:
    """Time provider bound to the family's IANA time zone."""

    __slots__ = ("_zone", "_now")

    def __init__(self, zone_name: str = "America/New_York", *, now: Optional[Callable[[], datetime]] = None) -> None:
        try:
            self._zone = ZoneInfo(zone_name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValidationError(f"Unknown time zone: {zone_name!r}") from exc
        self._now = now or _utcnow

    @property
    def zone(self) -> ZoneInfo:
        return self._zone

    def now(self) -> datetime:
        """Return the current moment in the family's zone."""

        return self.localize(self._now())

    def today(self) -> date:
        return self.now().date()

    def localize(self, moment: datetime) -> datetime:
        """Convert ``moment`` to local time; naive values are taken as UTC."""

        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self._zone)

    def utcnow(self) -> datetime:
        """Return the current moment as a naive UTC datetime for storage."""

        return self.now().astimezone(timezone.utc).replace(tzinfo=None)

    def hour_of(self, stored: datetime) -> int:
        return self.localize(stored).hour


__all__ = ["FamilyClock"]
