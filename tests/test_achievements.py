from datetime import datetime, timedelta

import pytest

from wonderwhiz.achievements import (
    DEFAULT_ACHIEVEMENTS,
    AchievementDefinition,
    AchievementTracker,
    CelebrationDebouncer,
    InMemoryAchievementStore,
    evaluate,
)
from wonderwhiz.models import Metrics
from wonderwhiz.notifications import NotificationCenter, NotificationType


def test_evaluate_reports_newly_earned_once() -> None:
    metrics = Metrics(balance=60, streak_days=2, explorations_count=1)

    first = evaluate(None, metrics)
    second = evaluate(first.all, metrics)

    assert {item.achievement_id for item in first.newly_earned} == {"first-exploration", "sparks-50"}
    assert second.newly_earned == ()
    assert second.all.earned_ids() == first.all.earned_ids()
    assert len(first.all) == len(DEFAULT_ACHIEVEMENTS)


def test_progress_is_clamped_to_threshold() -> None:
    result = evaluate(None, Metrics(balance=60))

    assert result.all.get("sparks-100").progress == pytest.approx(0.6)
    assert result.all.get("sparks-50").progress == 1
    assert result.all.get("streak-7").progress == 0


def test_crossing_a_new_threshold_is_reported() -> None:
    tracker = AchievementTracker()
    tracker.update("kid", Metrics(balance=60, explorations_count=1))

    evaluation = tracker.update("kid", Metrics(balance=120, explorations_count=1))

    assert [item.achievement_id for item in evaluation.newly_earned] == ["sparks-100"]
    assert tracker.snapshot("kid") == evaluation.all


def test_primed_snapshot_suppresses_old_badges() -> None:
    tracker = AchievementTracker()
    tracker.prime("kid", evaluate(None, Metrics(balance=300)).all)

    evaluation = tracker.update("kid", Metrics(balance=300))

    assert evaluation.newly_earned == ()


def test_definitions_are_validated() -> None:
    with pytest.raises(ValueError):
        AchievementDefinition("odd", "Odd", "height", 3)
    with pytest.raises(ValueError):
        AchievementDefinition("zero", "Zero", "balance", 0)


def test_celebrations_are_debounced() -> None:
    notifications = NotificationCenter()
    debouncer = CelebrationDebouncer(cooldown=timedelta(seconds=5), notifications=notifications)
    start = datetime(2024, 1, 1, 12, 0, 0)
    first_batch = evaluate(None, Metrics(balance=50)).newly_earned
    second_batch = evaluate(None, Metrics(balance=100)).all.earned()

    fired = debouncer.offer("kid", first_batch, at=start)
    suppressed = debouncer.offer("kid", second_batch, at=start + timedelta(seconds=1))

    assert fired is not None
    assert fired.labels == ("Spark Collector",)
    assert suppressed is None
    assert [item.achievement_id for item in debouncer.pending("kid")] == ["sparks-50", "sparks-100"]
    assert debouncer.flush(at=start + timedelta(seconds=3)) == ()

    released = debouncer.flush(at=start + timedelta(seconds=6))

    assert len(released) == 1
    assert released[0].labels == ("Spark Collector", "Rising Star")
    assert debouncer.pending("kid") == ()
    unlocked = notifications.pending(notification_type=NotificationType.ACHIEVEMENT_UNLOCKED)
    assert len(unlocked) == 2


def test_shared_store_stops_a_second_tracker_from_refiring() -> None:
    store = InMemoryAchievementStore()
    first = AchievementTracker(store=store)
    second = AchievementTracker(store=store)

    announced = first.update("kid", Metrics(balance=60, explorations_count=1))
    again = second.update("kid", Metrics(balance=60, explorations_count=1))
    later = second.update("kid", Metrics(balance=110, explorations_count=1))

    assert {item.achievement_id for item in announced.newly_earned} == {"first-exploration", "sparks-50"}
    assert again.newly_earned == ()
    assert [item.achievement_id for item in later.newly_earned] == ["sparks-100"]
    assert store.earned("kid") == frozenset({"first-exploration", "sparks-50", "sparks-100"})


def test_badge_lost_and_regained_fires_again() -> None:
    tracker = AchievementTracker(store=InMemoryAchievementStore())
    tracker.update("kid", Metrics(balance=60))

    dropped = tracker.update("kid", Metrics(balance=40))
    regained = tracker.update("kid", Metrics(balance=55))

    assert dropped.newly_earned == ()
    assert [item.achievement_id for item in regained.newly_earned] == ["sparks-50"]
