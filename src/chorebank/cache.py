"""Read-through cache of active chore definitions."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional, Tuple

from sqlmodel import Session, select

from .ops import StructuredLogger
from .persistence import ChoreDefinition, Database


class ChoreDefinitionCache:
    """Hold the active definitions for ``ttl_seconds`` or until invalidated.

    Both the loader and the clock are injectable so staleness windows can be
    exercised deterministically.
    """

    def __init__(
        self,
        database: Database,
        *,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self._database = database
        self._ttl = ttl_seconds
        self._clock = clock
        self._logger = logger
        self._lock = threading.Lock()
        self._entries: Optional[Tuple[ChoreDefinition, ...]] = None
        self._expires_at = 0.0
        self._generation = 0
        self.loads = 0

    def get_active(self) -> Tuple[ChoreDefinition, ...]:
        with self._lock:
            if self._entries is not None and self._clock() < self._expires_at:
                return self._entries
            generation = self._generation
        definitions = self._database.read(self._load)
        with self._lock:
            self.loads += 1
            # only cache when no invalidation happened during the load
            if generation == self._generation:
                self._entries = definitions
                self._expires_at = self._clock() + self._ttl
        return definitions

    def get(self, chore_id: int) -> Optional[ChoreDefinition]:
        for definition in self.get_active():
            if definition.id == chore_id:
                return definition
        return None

    def invalidate(self) -> None:
        with self._lock:
            self._entries = None
            self._expires_at = 0.0
            self._generation += 1
        if self._logger:
            self._logger.log("chore_cache_invalidated")

    @staticmethod
    def _load(session: Session) -> Tuple[ChoreDefinition, ...]:
        rows = session.exec(select(ChoreDefinition).where(ChoreDefinition.is_active == True)).all()  # noqa: E712
        return tuple(rows)


__all__ = ["ChoreDefinitionCache"]
