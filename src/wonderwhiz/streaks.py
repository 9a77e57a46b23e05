"""Consecutive-day streak tracking with a single-day freeze."""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from threading import Lock
from typing import Dict, Optional, Protocol

from .models import StreakState
from .ops import StructuredLogger

BONUS_INTERVAL = 3
FREEZE_BRIDGE_DAYS = 1


class StreakStore(Protocol):
    def get(self, child_id: str) -> Optional[StreakState]: ...

    def save(self, state: StreakState) -> StreakState: ...


class InMemoryStreakStore:
    def __init__(self) -> None:
        self._states: Dict[str, StreakState] = {}
        self._lock = Lock()

    def get(self, child_id: str) -> Optional[StreakState]:
        with self._lock:
            return self._states.get(child_id)

    def save(self, state: StreakState) -> StreakState:
        with self._lock:
            self._states[state.child_id] = state
        return state


def _as_date(moment: date | datetime) -> date:
    return moment.date() if isinstance(moment, datetime) else moment


def apply_activity(state: StreakState, activity: date | datetime) -> StreakState:
    """Return the streak after activity on ``activity``.

    Only one missed day can be bridged by a freeze; longer gaps reset the
    count to 1 and leave the freeze unspent.
    """

    day = _as_date(activity)
    last = state.last_activity
    if last is None:
        return replace(state, count=1, last_activity=day, freeze_used_today=False)
    if day <= last:
        return state
    gap = (day - last).days
    fresh = replace(state, freeze_used_today=False, last_activity=day)
    if gap == 1:
        return replace(fresh, count=state.count + 1)
    if gap - 1 <= FREEZE_BRIDGE_DAYS and state.freeze_available:
        return replace(fresh, freeze_available=False, freeze_used_today=True, freeze_used_on=day)
    return replace(fresh, count=1)


def state_on(state: StreakState, day: date | datetime) -> StreakState:
    """Read ``state`` as of ``day``; the freeze-used flag clears on a new day."""

    if state.freeze_used_today and state.freeze_used_on is not None and _as_date(day) > state.freeze_used_on:
        return replace(state, freeze_used_today=False)
    return state


def is_bonus_day(state: StreakState) -> bool:
    return state.count > 0 and state.count % BONUS_INTERVAL == 0


def days_until_bonus(state: StreakState) -> int:
    return BONUS_INTERVAL - (state.count % BONUS_INTERVAL)


class StreakCalculator:
    """Persist streak changes; each child's state moves at most once per day."""

    def __init__(self, store: StreakStore | None = None, *, logger: StructuredLogger | None = None) -> None:
        self._store = store if store is not None else InMemoryStreakStore()
        self._logger = logger or StructuredLogger()

    def current(self, child_id: str, *, on: date | datetime | None = None) -> StreakState:
        state = self._store.get(child_id) or StreakState(child_id=child_id)
        return state_on(state, on or datetime.utcnow())

    def record_activity(self, child_id: str, activity_date: date | datetime | None = None) -> StreakState:
        previous = self._store.get(child_id) or StreakState(child_id=child_id)
        updated = apply_activity(previous, activity_date or datetime.utcnow())
        if updated == previous:
            return updated
        self._store.save(updated)
        self._logger.log(
            "streak_updated",
            child=child_id,
            count=updated.count,
            previous=previous.count,
            freeze_used=updated.freeze_used_today,
        )
        return updated

    def grant_freeze(self, child_id: str, *, on: date | datetime | None = None) -> StreakState:
        """Make a freeze available again; not on the day one was consumed."""

        day = _as_date(on or datetime.utcnow())
        state = self._store.get(child_id) or StreakState(child_id=child_id)
        if state.freeze_used_on == day:
            raise ValueError("A streak freeze was already used today; try again tomorrow.")
        if state.freeze_available:
            return state
        updated = self._store.save(replace(state, freeze_available=True))
        self._logger.log("streak_freeze_granted", child=child_id)
        return updated

    @staticmethod
    def is_bonus_day(state: StreakState) -> bool:
        return is_bonus_day(state)


__all__ = [
    "BONUS_INTERVAL",
    "InMemoryStreakStore",
    "StreakCalculator",
    "StreakStore",
    "apply_activity",
    "days_until_bonus",
    "is_bonus_day",
    "state_on",
]
