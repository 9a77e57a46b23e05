from datetime import date, datetime, timedelta

import pytest

from wonderwhiz.models import StreakState
from wonderwhiz.ops import StructuredLogger
from wonderwhiz.streaks import (
    InMemoryStreakStore,
    StreakCalculator,
    apply_activity,
    days_until_bonus,
    is_bonus_day,
    state_on,
)

DAY = date(2024, 3, 10)


def test_first_activity_starts_streak() -> None:
    state = apply_activity(StreakState(child_id="kid"), DAY)

    assert state.count == 1
    assert state.last_activity == DAY


def test_consecutive_day_increments() -> None:
    state = StreakState(child_id="kid", count=4, last_activity=DAY)

    updated = apply_activity(state, DAY + timedelta(days=1))

    assert updated.count == 5
    assert updated.freeze_used_today is False


def test_same_day_and_earlier_dates_change_nothing() -> None:
    state = StreakState(child_id="kid", count=4, last_activity=DAY)

    assert apply_activity(state, DAY) == state
    assert apply_activity(state, datetime(2024, 3, 10, 22, 30)) == state
    assert apply_activity(state, DAY - timedelta(days=2)) == state


def test_freeze_bridges_a_single_missed_day() -> None:
    state = StreakState(child_id="kid", count=4, last_activity=DAY, freeze_available=True)

    updated = apply_activity(state, DAY + timedelta(days=2))

    assert updated.count == 4
    assert updated.freeze_used_today is True
    assert updated.freeze_available is False
    assert updated.last_activity == DAY + timedelta(days=2)


def test_missed_day_without_freeze_resets() -> None:
    state = StreakState(child_id="kid", count=4, last_activity=DAY)

    updated = apply_activity(state, DAY + timedelta(days=2))

    assert updated.count == 1
    assert updated.freeze_used_today is False


def test_long_gap_resets_and_keeps_freeze() -> None:
    state = StreakState(child_id="kid", count=9, last_activity=DAY, freeze_available=True)

    updated = apply_activity(state, DAY + timedelta(days=3))

    assert updated.count == 1
    assert updated.freeze_available is True


def test_freeze_flag_clears_on_the_next_day() -> None:
    frozen = apply_activity(
        StreakState(child_id="kid", count=4, last_activity=DAY, freeze_available=True),
        DAY + timedelta(days=2),
    )

    assert state_on(frozen, DAY + timedelta(days=2)).freeze_used_today is True
    assert state_on(frozen, DAY + timedelta(days=3)).freeze_used_today is False


def test_bonus_days() -> None:
    assert is_bonus_day(StreakState(child_id="kid", count=3))
    assert is_bonus_day(StreakState(child_id="kid", count=6))
    assert not is_bonus_day(StreakState(child_id="kid", count=4))
    assert not is_bonus_day(StreakState(child_id="kid", count=0))
    assert days_until_bonus(StreakState(child_id="kid", count=4)) == 2


def test_calculator_persists_and_logs_changes() -> None:
    store = InMemoryStreakStore()
    logger = StructuredLogger()
    calculator = StreakCalculator(store, logger=logger)

    calculator.record_activity("kid", DAY)
    calculator.record_activity("kid", DAY)
    state = calculator.record_activity("kid", DAY + timedelta(days=1))

    assert state.count == 2
    assert store.get("kid") == state
    assert len(logger.events("streak_updated")) == 2
    assert StreakCalculator.is_bonus_day(state) is False


def test_grant_freeze_refused_on_the_day_one_was_used() -> None:
    calculator = StreakCalculator()
    calculator.record_activity("kid", DAY)
    calculator.grant_freeze("kid", on=DAY)
    used_on = DAY + timedelta(days=2)
    state = calculator.record_activity("kid", used_on)
    assert state.freeze_used_today is True

    with pytest.raises(ValueError):
        calculator.grant_freeze("kid", on=used_on)

    rearmed = calculator.grant_freeze("kid", on=used_on + timedelta(days=1))
    assert rearmed.freeze_available is True
    assert calculator.current("kid", on=used_on + timedelta(days=1)).freeze_used_today is False
