"""In-process publish/subscribe used to fan out changes to a child's sessions."""

from __future__ import annotations

from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Callable, Dict, List
from uuid import uuid4

from .ops import StructuredLogger


class SyncKind(str, Enum):
    TRANSACTION = "transaction"
    PROGRESS = "progress"


@dataclass(frozen=True, slots=True)
class SyncMessage:
    child_id: str
    kind: SyncKind
    payload: object
    message_id: str = field(default_factory=lambda: str(uuid4()))
    published_at: datetime = field(default_factory=datetime.utcnow)


Listener = Callable[[SyncMessage], None]


class Subscription:
    def __init__(self, hub: "SyncHub", child_id: str, listener: Listener) -> None:
        self._hub = hub
        self.child_id = child_id
        self.listener = listener
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self._hub.unsubscribe(self.child_id, self.listener)
            self.active = False


class SyncHub:
    """Synchronous broadcaster keyed by child identifier.

    Delivery is best effort: a listener that raises is logged and skipped, so
    the write that triggered the publish still stands.
    """

    def __init__(self, *, logger: StructuredLogger | None = None) -> None:
        self._logger = logger or StructuredLogger()
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._lock = Lock()

    def subscribe(self, child_id: str, listener: Listener) -> Subscription:
        with self._lock:
            self._listeners[child_id].append(listener)
        return Subscription(self, child_id, listener)

    def unsubscribe(self, child_id: str, listener: Listener) -> None:
        with self._lock:
            try:
                self._listeners[child_id].remove(listener)
            except ValueError:
                pass

    def subscriber_count(self, child_id: str) -> int:
        with self._lock:
            return len(self._listeners.get(child_id, ()))

    def publish(
        self,
        child_id: str,
        kind: SyncKind,
        payload: object,
        *,
        message_id: str | None = None,
    ) -> SyncMessage:
        message = SyncMessage(
            child_id=child_id,
            kind=SyncKind(kind),
            payload=payload,
            message_id=message_id or str(uuid4()),
        )
        with self._lock:
            listeners = list(self._listeners.get(child_id, ()))
        for listener in listeners:
            try:
                listener(message)
            except Exception as exc:
                self._logger.log(
                    "sync_listener_failed",
                    child=child_id,
                    kind=message.kind.value,
                    message_id=message.message_id,
                    error=f"{type(exc).__name__}: {exc}",
                )
        return message


class SyncInbox:
    """Idempotent consumer: delivers each ``message_id`` to ``handler`` once.

    Delivery upstream is at-least-once, so duplicates are expected and
    dropped. Only the most recent ``capacity`` identifiers are remembered.
    """

    def __init__(self, handler: Listener, *, capacity: int = 1024) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be greater than zero.")
        self._handler = handler
        self._capacity = capacity
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self._lock = Lock()
        self.duplicates = 0

    def __call__(self, message: SyncMessage) -> None:
        with self._lock:
            if message.message_id in self._seen:
                self.duplicates += 1
                return
            self._seen[message.message_id] = None
            while len(self._seen) > self._capacity:
                self._seen.popitem(last=False)
        self._handler(message)


__all__ = ["Listener", "Subscription", "SyncHub", "SyncInbox", "SyncKind", "SyncMessage"]
