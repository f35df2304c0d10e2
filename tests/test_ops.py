import json
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from chorebank import ActivityRegistry, Database, FamilyClock, StorageFailureError, StructuredLogger, ValidationError


def _locked() -> OperationalError:
    return OperationalError("INSERT INTO chorelog", {}, Exception("database is locked"))


def test_structured_logger_writes_json_lines(tmp_path) -> None:
    path = tmp_path / "logs" / "chorebank.jsonl"
    logger = StructuredLogger(path=path)
    logger.log("chore_status_changed", log_id=1, to_status="approved")
    logger.log("transfer_created", amount="10.00")

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [entry["event"] for entry in lines] == ["chore_status_changed", "transfer_created"]
    assert lines[0]["log_id"] == 1
    assert logger.tail(1)[0]["event"] == "transfer_created"
    assert len(logger.events("transfer_created")) == 1


def test_activity_registry_is_scoped_to_its_instance() -> None:
    first = ActivityRegistry()
    second = ActivityRegistry()
    assert first.connect("ava") == 1
    assert first.connect("ava") == 2
    assert first.connect("ben") == 3
    assert second.count() == 0
    assert first.disconnect("ava") == 2
    assert first.disconnect("ava") == 1
    assert first.connected_users() == ("ben",)
    assert first.disconnect("nobody") == 1


def test_bank_tracks_connected_clients(bank) -> None:
    assert bank.connect_client("ava") == 1
    assert bank.disconnect_client("ava") == 0
    assert [entry["event"] for entry in bank.logger.tail(2)] == ["client_connected", "client_disconnected"]


def test_storage_retries_then_succeeds(tmp_path) -> None:
    delays: list = []
    database = Database(f"sqlite:///{tmp_path / 'retry.db'}", retries=3, backoff_seconds=0.1, sleep=delays.append)
    attempts = {"count": 0}

    def flaky(session):
        attempts["count"] += 1
        if attempts["count"] < 3:
            raise _locked()
        return "ok"

    assert database.run(flaky) == "ok"
    assert delays == [0.1, 0.2]


def test_storage_gives_up_after_bounded_retries(tmp_path) -> None:
    delays: list = []
    database = Database(f"sqlite:///{tmp_path / 'retry.db'}", retries=2, backoff_seconds=0.1, sleep=delays.append)

    def always_locked(session):
        raise _locked()

    with pytest.raises(StorageFailureError):
        database.run(always_locked)
    assert len(delays) == 2


def test_domain_errors_are_not_retried(tmp_path) -> None:
    delays: list = []
    database = Database(f"sqlite:///{tmp_path / 'retry.db'}", sleep=delays.append)

    def invalid(session):
        raise ValidationError("nope")

    with pytest.raises(ValidationError):
        database.run(invalid)
    assert delays == []


def test_family_clock_uses_the_configured_zone() -> None:
    moment = datetime(2024, 6, 3, 2, 30, tzinfo=timezone.utc)
    clock = FamilyClock("America/New_York", now=lambda: moment)
    assert clock.today().isoformat() == "2024-06-02"
    assert clock.hour_of(datetime(2024, 6, 3, 12, 0)) == 8
    assert clock.utcnow() == datetime(2024, 6, 3, 2, 30)
    with pytest.raises(ValidationError):
        FamilyClock("Mars/Olympus_Mons")
