"""Operational utilities: structured logging, activity and query counters."""

from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine

_TRANSACTION_CONTROL = ("BEGIN", "COMMIT", "ROLLBACK", "SAVEPOINT", "RELEASE")


class StructuredLogger:
    """Write JSON lines log entries for admin inspection."""

    def __init__(self, *, path: Path | None = None) -> None:
        self.path = path
        self._entries: list[dict] = []
        self._lock = threading.Lock()

    def log(self, event_type: str, **fields: object) -> dict:
        entry = {"timestamp": datetime.now(timezone.utc).isoformat(), "event": event_type, **fields}
        with self._lock:
            self._entries.append(entry)
            if self.path:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        return tuple(self._entries[-limit:])

    def events(self, event_type: str) -> tuple[dict, ...]:
        return tuple(entry for entry in self._entries if entry["event"] == event_type)


class ActivityRegistry:
    """Track connected client sessions for the lifetime of one service."""

    def __init__(self) -> None:
        self._connections: Dict[str, int] = {}
        self._lock = threading.Lock()

    def connect(self, user_id: str) -> int:
        with self._lock:
            self._connections[user_id] = self._connections.get(user_id, 0) + 1
            return self.count()

    def disconnect(self, user_id: str) -> int:
        with self._lock:
            remaining = self._connections.get(user_id, 0) - 1
            if remaining > 0:
                self._connections[user_id] = remaining
            else:
                self._connections.pop(user_id, None)
            return self.count()

    def count(self) -> int:
        return sum(self._connections.values())

    def connected_users(self) -> tuple[str, ...]:
        return tuple(sorted(self._connections))


class QueryCounter:
    """Count SQL statements executed against an engine, ignoring transaction control."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.count = 0
        self.statements: list[str] = []
        event.listen(engine, "before_cursor_execute", self._on_execute)

    def _on_execute(self, conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: bool) -> None:
        if statement.lstrip().upper().startswith(_TRANSACTION_CONTROL):
            return
        self.count += 1
        self.statements.append(statement)

    def reset(self) -> None:
        self.count = 0
        self.statements.clear()

    @contextmanager
    def measure(self) -> Iterator["QueryCounter"]:
        self.reset()
        yield self

    def selects(self, table: Optional[str] = None) -> int:
        matches = [sql for sql in self.statements if sql.lstrip().upper().startswith("SELECT")]
        if table is not None:
            matches = [sql for sql in matches if f"FROM {table}" in sql]
        return len(matches)

    def close(self) -> None:
        event.remove(self.engine, "before_cursor_execute", self._on_execute)


__all__ = ["ActivityRegistry", "QueryCounter", "StructuredLogger"]
