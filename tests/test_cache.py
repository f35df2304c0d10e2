from datetime import date

import pytest

from chorebank import ScheduleType, ValidationError
from chorebank.persistence import ChoreDefinition


def _insert_behind_cache(database, name: str) -> None:
    with database.session() as session:
        session.add(ChoreDefinition(name=name))
        session.commit()


def test_active_definitions_are_cached_until_ttl(bank, database, cache_clock) -> None:
    bank.create_chore("Dishes")
    assert [item.name for item in bank.cache.get_active()] == ["Dishes"]
    loads = bank.cache.loads

    _insert_behind_cache(database, "Sneaky")
    assert [item.name for item in bank.cache.get_active()] == ["Dishes"]
    assert bank.cache.loads == loads

    cache_clock.advance(301)
    assert sorted(item.name for item in bank.cache.get_active()) == ["Dishes", "Sneaky"]
    assert bank.cache.loads == loads + 1


def test_invalidate_drops_cached_rows_immediately(bank, database) -> None:
    bank.cache.get_active()
    _insert_behind_cache(database, "Sneaky")
    bank.cache.invalidate()
    assert [item.name for item in bank.cache.get_active()] == ["Sneaky"]


def test_definition_mutations_invalidate_before_returning(bank) -> None:
    chore = bank.create_chore("Dishes")
    assert bank.get_chores_for_date(date(2024, 6, 3))[0].name == "Dishes"

    bank.update_chore(chore.id, name="Dishes and counters", earn_value="0.50")
    refreshed = bank.get_chores_for_date(date(2024, 6, 3))[0]
    assert refreshed.name == "Dishes and counters"
    assert str(refreshed.earn_value) == "0.50"

    bank.deactivate_chore(chore.id)
    assert bank.get_chores_for_date(date(2024, 6, 3)) == []


def test_invalidation_failure_does_not_fail_the_mutation(bank, monkeypatch) -> None:
    chore = bank.create_chore("Dishes")

    def broken() -> None:
        raise RuntimeError("cache offline")

    monkeypatch.setattr(bank.cache, "invalidate", broken)
    updated = bank.update_chore(chore.id, name="Dishes!")

    assert updated.name == "Dishes!"
    failures = bank.logger.events("chore_cache_invalidation_failed")
    assert failures and failures[-1]["error"] == "cache offline"


def test_definition_validation(bank) -> None:
    with pytest.raises(ValidationError):
        bank.create_chore("  ")
    with pytest.raises(ValidationError):
        bank.create_chore("Dishes", earn_value="-1")
    with pytest.raises(ValidationError):
        bank.create_chore("Dishes", active_days=0)
    with pytest.raises(ValidationError):
        bank.create_chore("Dishes", schedule_type=ScheduleType.WEEKLY_FREQUENCY, weekly_target_count=0)
    with pytest.raises(ValidationError):
        bank.create_chore("Dishes", start_date=date(2024, 6, 5), end_date=date(2024, 6, 1))
    with pytest.raises(ValidationError):
        bank.update_chore(1, colour="blue")
