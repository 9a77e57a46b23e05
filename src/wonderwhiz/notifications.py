"""Child-facing notices: certificates, streak bonuses and unlocked badges."""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Deque, Dict, List, Sequence
from uuid import uuid4


class NotificationChannel(str, Enum):
    IN_APP = "in_app"
    PUSH = "push"
    EMAIL = "email"


class NotificationType(str, Enum):
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
    STREAK_BONUS = "streak_bonus"
    CERTIFICATE_ISSUED = "certificate_issued"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class Notification:
    recipient: str
    channel: NotificationChannel
    type: NotificationType
    subject: str
    body: str
    metadata: Dict[str, str] = field(default_factory=dict, compare=False)
    notification_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.notification_id,
            "recipient": self.recipient,
            "channel": self.channel.value,
            "type": self.type.value,
            "subject": self.subject,
            "body": self.body,
            "metadata": dict(self.metadata),
            "created_at": self.created_at.isoformat(),
        }


class NotificationCenter:
    """Per-child inboxes; delivered notices move to a bounded history."""

    def __init__(self, *, history_size: int = 200) -> None:
        if history_size <= 0:
            raise ValueError("history_size must be greater than zero.")
        self._inbox: Dict[str, List[Notification]] = defaultdict(list)
        self._delivered: Deque[Notification] = deque(maxlen=history_size)
        self._lock = Lock()

    def queue(self, notification: Notification) -> None:
        with self._lock:
            self._inbox[notification.recipient].append(notification)

    def pending(
        self,
        *,
        notification_type: NotificationType | None = None,
        recipient: str | None = None,
    ) -> Sequence[Notification]:
        with self._lock:
            if recipient is not None:
                items = list(self._inbox.get(recipient, ()))
            else:
                items = [item for inbox in self._inbox.values() for item in inbox]
        if notification_type is not None:
            items = [item for item in items if item.type is notification_type]
        return tuple(sorted(items, key=lambda item: item.created_at))

    def deliver(self, recipient: str) -> Sequence[Notification]:
        """Hand over everything waiting for ``recipient`` and clear the inbox."""

        with self._lock:
            delivered = tuple(self._inbox.pop(recipient, ()))
            self._delivered.extend(delivered)
        return delivered

    def history(self, recipient: str | None = None) -> Sequence[Notification]:
        with self._lock:
            items = list(self._delivered)
        if recipient is not None:
            items = [item for item in items if item.recipient == recipient]
        return tuple(items)


__all__ = [
    "Notification",
    "NotificationCenter",
    "NotificationChannel",
    "NotificationType",
]
