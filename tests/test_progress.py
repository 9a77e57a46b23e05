import pytest

from wonderwhiz.exceptions import SequenceViolation
from wonderwhiz.models import ProgressState, SectionOutline, Topic
from wonderwhiz.progress import InMemoryProgressStore, ProgressTracker


def make_topic() -> Topic:
    return Topic(
        title="Space",
        sections=tuple(SectionOutline(index, title) for index, title in enumerate(["Stars", "Planets", "Moons"])),
        child_age=10,
    )


def test_full_progression_through_certificate() -> None:
    tracker = ProgressTracker()
    topic = make_topic()

    assert tracker.state("kid", topic) is ProgressState.NOT_STARTED
    assert tracker.available_sections("kid", topic) == (0,)

    tracker.complete_section("kid", topic, 0)
    assert tracker.state("kid", topic) is ProgressState.IN_PROGRESS
    assert tracker.available_sections("kid", topic) == (0, 1)

    tracker.complete_section("kid", topic, 1)
    completion = tracker.complete_section("kid", topic, 2)
    assert completion.newly_completed is True
    assert completion.record.state is ProgressState.QUIZ_READY

    assert tracker.complete_quiz("kid", topic).state is ProgressState.QUIZ_DONE
    assert tracker.issue_certificate("kid", topic).state is ProgressState.CERTIFICATE_ISSUED

    with pytest.raises(SequenceViolation):
        tracker.complete_quiz("kid", topic)
    with pytest.raises(SequenceViolation):
        tracker.issue_certificate("kid", topic)


def test_skipping_a_section_is_rejected() -> None:
    tracker = ProgressTracker()
    topic = make_topic()
    tracker.complete_section("kid", topic, 0)

    with pytest.raises(SequenceViolation):
        tracker.complete_section("kid", topic, 2)

    assert tracker.get("kid", topic).completed_sections == frozenset({0})
    assert not tracker.can_enter("kid", topic, 2)


def test_review_of_completed_section_is_a_no_op() -> None:
    tracker = ProgressTracker()
    topic = make_topic()
    first = tracker.complete_section("kid", topic, 0)

    again = tracker.complete_section("kid", topic, 0)

    assert first.newly_completed is True
    assert again.newly_completed is False
    assert again.record == first.record


def test_quiz_requires_all_sections() -> None:
    tracker = ProgressTracker()
    topic = make_topic()
    tracker.complete_section("kid", topic, 0)

    with pytest.raises(SequenceViolation):
        tracker.complete_quiz("kid", topic)
    with pytest.raises(SequenceViolation):
        tracker.issue_certificate("kid", topic)


def test_out_of_range_index_is_rejected() -> None:
    tracker = ProgressTracker()
    topic = make_topic()

    with pytest.raises(ValueError):
        tracker.complete_section("kid", topic, 3)
    with pytest.raises(ValueError):
        tracker.can_enter("kid", topic, -1)


def test_store_unions_completions_from_two_sessions() -> None:
    store = InMemoryProgressStore()

    record, newly = store.add_completed_section("kid", "topic", 3, 0)
    record_again, newly_again = store.add_completed_section("kid", "topic", 3, 0)
    merged, _ = store.add_completed_section("kid", "topic", 3, 1)

    assert newly is True
    assert newly_again is False
    assert record_again == record
    assert merged.completed_sections == frozenset({0, 1})
    assert store.list_for_child("kid") == (merged,)


def test_progress_is_tracked_per_child() -> None:
    tracker = ProgressTracker()
    topic = make_topic()
    tracker.complete_section("ava", topic, 0)

    assert tracker.state("ben", topic) is ProgressState.NOT_STARTED
    assert tracker.get("ava", topic).progress() == pytest.approx(1 / 3)
