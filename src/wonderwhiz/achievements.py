"""Achievement definitions, edge-triggered evaluation and celebration debouncing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Protocol, Sequence, Tuple

from .models import Achievement, AchievementSet, Celebration, Evaluation, Metrics
from .notifications import Notification, NotificationCenter, NotificationChannel, NotificationType

METRICS = ("balance", "streak_days", "explorations_count")
DEFAULT_CELEBRATION_COOLDOWN = timedelta(seconds=5)


@dataclass(frozen=True, slots=True)
class AchievementDefinition:
    """A badge earned once ``metric`` reaches ``threshold``."""

    achievement_id: str
    label: str
    metric: str
    threshold: int
    description: str = ""

    def __post_init__(self) -> None:
        if self.metric not in METRICS:
            raise ValueError(f"Unknown achievement metric: {self.metric}")
        if self.threshold <= 0:
            raise ValueError("Achievement thresholds must be greater than zero.")

    def earned(self, metrics: Metrics) -> bool:
        return metrics.value(self.metric) >= self.threshold

    def evaluate(self, metrics: Metrics) -> Achievement:
        value = max(0, min(metrics.value(self.metric), self.threshold))
        return Achievement(
            achievement_id=self.achievement_id,
            label=self.label,
            earned=self.earned(metrics),
            progress_numerator=value,
            progress_denominator=self.threshold,
            description=self.description,
        )


DEFAULT_ACHIEVEMENTS: Tuple[AchievementDefinition, ...] = (
    AchievementDefinition("first-exploration", "Curious Explorer", "explorations_count", 1,
                          "Started your first topic!"),
    AchievementDefinition("topics-10", "Knowledge Seeker", "explorations_count", 10,
                          "Explore 10 different topics"),
    AchievementDefinition("streak-7", "Learning Streak", "streak_days", 7,
                          "Learn something new for 7 days in a row"),
    AchievementDefinition("sparks-50", "Spark Collector", "balance", 50,
                          "You've started your sparks collection!"),
    AchievementDefinition("sparks-100", "Rising Star", "balance", 100,
                          "You're on your way to becoming a star!"),
    AchievementDefinition("sparks-250", "Bronze Medal", "balance", 250,
                          "You've earned the bronze medal for your efforts!"),
    AchievementDefinition("sparks-500", "Silver Medal", "balance", 500,
                          "You've achieved the silver medal rank!"),
    AchievementDefinition("sparks-1000", "Gold Trophy", "balance", 1000,
                          "You've reached the gold level! Amazing work!"),
)


def evaluate(
    previous: Optional[AchievementSet],
    current: Metrics,
    definitions: Sequence[AchievementDefinition] = DEFAULT_ACHIEVEMENTS,
) -> Evaluation:
    """Evaluate ``definitions`` and diff against ``previous``.

    An achievement is newly earned when it is earned now and was either not
    earned or absent in ``previous``.
    """

    snapshot = AchievementSet(tuple(definition.evaluate(current) for definition in definitions))
    before = previous.earned_ids() if previous is not None else frozenset()
    newly = tuple(item for item in snapshot if item.earned and item.achievement_id not in before)
    return Evaluation(all=snapshot, newly_earned=newly)


class AchievementStore(Protocol):
    """Earned achievement ids per child, kept across restarts."""

    def earned(self, child_id: str) -> FrozenSet[str]: ...

    def record(self, child_id: str, earned: Iterable[str]) -> FrozenSet[str]:
        """Store ``earned`` as the child's earned set; return the ids it added."""
        ...


class InMemoryAchievementStore:
    def __init__(self) -> None:
        self._earned: Dict[str, FrozenSet[str]] = {}
        self._lock = Lock()

    def earned(self, child_id: str) -> FrozenSet[str]:
        with self._lock:
            return self._earned.get(child_id, frozenset())

    def record(self, child_id: str, earned: Iterable[str]) -> FrozenSet[str]:
        current = frozenset(earned)
        with self._lock:
            before = self._earned.get(child_id, frozenset())
            self._earned[child_id] = current
        return current - before


class AchievementTracker:
    """Hold the last evaluated set per child so re-evaluation never re-fires.

    With a ``store`` the previous earned set is read from it on every update,
    so a restarted process, or a second one sharing the store, does not
    celebrate badges that were already announced. Only ids the store reports
    as added count as newly earned.
    """

    def __init__(
        self,
        definitions: Sequence[AchievementDefinition] = DEFAULT_ACHIEVEMENTS,
        *,
        store: AchievementStore | None = None,
    ) -> None:
        self._definitions = tuple(definitions)
        self._store = store
        self._last: Dict[str, AchievementSet] = {}
        self._lock = Lock()

    @property
    def definitions(self) -> Tuple[AchievementDefinition, ...]:
        return self._definitions

    def snapshot(self, child_id: str) -> Optional[AchievementSet]:
        with self._lock:
            return self._last.get(child_id)

    def prime(self, child_id: str, achievements: AchievementSet) -> None:
        """Seed the previous snapshot, e.g. from persisted state at session start."""

        with self._lock:
            self._last[child_id] = achievements

    def update(self, child_id: str, metrics: Metrics) -> Evaluation:
        with self._lock:
            previous = self._last.get(child_id)
            if self._store is not None:
                previous = self._restore(self._store.earned(child_id))
            result = evaluate(previous, metrics, self._definitions)
            if self._store is not None:
                added = self._store.record(child_id, result.all.earned_ids())
                result = Evaluation(
                    all=result.all,
                    newly_earned=tuple(item for item in result.newly_earned if item.achievement_id in added),
                )
            self._last[child_id] = result.all
        return result

    def _restore(self, earned_ids: FrozenSet[str]) -> AchievementSet:
        return AchievementSet(
            tuple(
                Achievement(
                    achievement_id=definition.achievement_id,
                    label=definition.label,
                    earned=True,
                    progress_numerator=definition.threshold,
                    progress_denominator=definition.threshold,
                    description=definition.description,
                )
                for definition in self._definitions
                if definition.achievement_id in earned_ids
            )
        )



class CelebrationDebouncer:
    """Coalesce bursts of unlocks into at most one celebration per cooldown."""

    def __init__(
        self,
        *,
        cooldown: timedelta = DEFAULT_CELEBRATION_COOLDOWN,
        notifications: NotificationCenter | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self.cooldown = cooldown
        self._notifications = notifications
        self._clock = clock
        self._last_fired: Dict[str, datetime] = {}
        self._pending: Dict[str, List[Achievement]] = {}
        self._lock = Lock()

    def offer(
        self,
        child_id: str,
        achievements: Sequence[Achievement],
        *,
        at: datetime | None = None,
    ) -> Optional[Celebration]:
        moment = at or self._clock()
        with self._lock:
            pending = self._pending.setdefault(child_id, [])
            known = {item.achievement_id for item in pending}
            pending.extend(item for item in achievements if item.achievement_id not in known)
            if not pending or not self._cooled_down(child_id, moment):
                return None
            return self._fire(child_id, moment)

    def flush(self, *, at: datetime | None = None) -> Tuple[Celebration, ...]:
        """Release buffered celebrations whose cooldown has expired."""

        moment = at or self._clock()
        fired: List[Celebration] = []
        with self._lock:
            for child_id in list(self._pending):
                if self._pending[child_id] and self._cooled_down(child_id, moment):
                    fired.append(self._fire(child_id, moment))
        return tuple(fired)

    def pending(self, child_id: str) -> Tuple[Achievement, ...]:
        with self._lock:
            return tuple(self._pending.get(child_id, ()))

    def _cooled_down(self, child_id: str, moment: datetime) -> bool:
        last = self._last_fired.get(child_id)
        return last is None or moment - last >= self.cooldown

    def _fire(self, child_id: str, moment: datetime) -> Celebration:
        celebration = Celebration(child_id=child_id, achievements=tuple(self._pending.pop(child_id)), fired_at=moment)
        self._last_fired[child_id] = moment
        if self._notifications is not None:
            labels = ", ".join(celebration.labels)
            self._notifications.queue(
                Notification(
                    recipient=child_id,
                    channel=NotificationChannel.IN_APP,
                    type=NotificationType.ACHIEVEMENT_UNLOCKED,
                    subject="New achievement unlocked!",
                    body=f"You earned: {labels}",
                    metadata={"achievements": ",".join(a.achievement_id for a in celebration.achievements)},
                )
            )
        return celebration


__all__ = [
    "AchievementDefinition",
    "AchievementStore",
    "AchievementTracker",
    "CelebrationDebouncer",
    "DEFAULT_ACHIEVEMENTS",
    "DEFAULT_CELEBRATION_COOLDOWN",
    "InMemoryAchievementStore",
    "evaluate",
]
