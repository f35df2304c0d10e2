"""Notification primitives handed to the delivery layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Protocol, Sequence


class NotificationType(str, Enum):
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
    HELP_REQUESTED = "help_requested"
    HELP_RESOLVED = "help_resolved"


@dataclass(slots=True)
class Notification:
    """Simple representation of a notification waiting to be delivered."""

    recipient: str
    type: NotificationType
    subject: str
    body: str
    metadata: Dict[str, str] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, str]:
        payload = {
            "recipient": self.recipient,
            "type": self.type.value,
            "subject": self.subject,
            "body": self.body,
            "created_at": self.created_at.isoformat(),
        }
        payload.update(self.metadata)
        return payload


class NotificationSink(Protocol):
    def queue(self, notification: Notification) -> None: ...


class NotificationCenter:
    """In-memory notification inbox used for tests and integrations."""

    def __init__(self) -> None:
        self._queue: List[Notification] = []
        self._sent: List[Notification] = []

    def queue(self, notification: Notification) -> None:
        self._queue.append(notification)

    def pending(self, *, notification_type: NotificationType | None = None) -> Sequence[Notification]:
        if notification_type is None:
            return tuple(self._queue)
        return tuple(item for item in self._queue if item.type is notification_type)

    def pop_all(self) -> Sequence[Notification]:
        pending = tuple(self._queue)
        self._queue.clear()
        self._sent.extend(pending)
        return pending

    def history(self) -> Sequence[Notification]:
        return tuple(self._sent)


__all__ = [
    "Notification",
    "NotificationCenter",
    "NotificationSink",
    "NotificationType",
]
