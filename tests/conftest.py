from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from chorebank import ChoreBank, ChoreStatus, Database, FamilyClock, Settings


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 1000.0

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


class MutableNow:
    """Stand-in for the wall clock; tests move it explicitly."""

    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


@pytest.fixture
def wall_clock() -> MutableNow:
    # Wednesday 2024-06-05, midday UTC
    return MutableNow(datetime(2024, 6, 5, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def cache_clock() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def database(tmp_path) -> Database:
    db = Database(f"sqlite:///{tmp_path / 'chorebank.db'}", backoff_seconds=0)
    db.create_all()
    yield db
    db.drop_all()
    db.engine.dispose()


@pytest.fixture
def bank(database: Database, wall_clock: MutableNow, cache_clock: FakeMonotonic) -> ChoreBank:
    settings = Settings(database_url=database.url, timezone="UTC", cache_ttl_seconds=300)
    return ChoreBank(
        database,
        settings=settings,
        clock=FamilyClock("UTC", now=wall_clock),
        cache_clock=cache_clock,
    )


def complete_and_approve(bank: ChoreBank, chore_id: int, on_date: date, *, kid: str = "kid", parent: str = "mom"):
    log = bank.get_or_create_log(chore_id, on_date)
    completed = bank.record_chore_outcome(log.id, ChoreStatus.COMPLETED, kid, log.version)
    if completed.status is ChoreStatus.APPROVED:
        return completed
    return bank.record_chore_outcome(log.id, ChoreStatus.APPROVED, parent, completed.version)


@pytest.fixture
def approve(bank: ChoreBank):
    def _approve(chore_id: int, on_date: date, **kwargs):
        return complete_and_approve(bank, chore_id, on_date, **kwargs)

    return _approve
