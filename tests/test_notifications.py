from datetime import datetime, timedelta

import pytest

from wonderwhiz.notifications import Notification, NotificationCenter, NotificationChannel, NotificationType


def make_notice(recipient: str, kind: NotificationType, minutes: int = 0) -> Notification:
    return Notification(
        recipient=recipient,
        channel=NotificationChannel.IN_APP,
        type=kind,
        subject="Hooray",
        body="Something good happened.",
        metadata={"topic_id": "space"},
        created_at=datetime(2024, 2, 1, 9, 0) + timedelta(minutes=minutes),
    )


def test_pending_filters_by_child_and_type() -> None:
    center = NotificationCenter()
    center.queue(make_notice("ava", NotificationType.STREAK_BONUS, minutes=2))
    center.queue(make_notice("ava", NotificationType.CERTIFICATE_ISSUED, minutes=1))
    center.queue(make_notice("ben", NotificationType.STREAK_BONUS))

    ava = center.pending(recipient="ava")
    bonuses = center.pending(notification_type=NotificationType.STREAK_BONUS)

    assert [item.type for item in ava] == [NotificationType.CERTIFICATE_ISSUED, NotificationType.STREAK_BONUS]
    assert sorted(item.recipient for item in bonuses) == ["ava", "ben"]


def test_deliver_moves_notices_to_history() -> None:
    center = NotificationCenter(history_size=2)
    for minute in range(3):
        center.queue(make_notice("ava", NotificationType.ACHIEVEMENT_UNLOCKED, minutes=minute))

    delivered = center.deliver("ava")

    assert len(delivered) == 3
    assert center.pending(recipient="ava") == ()
    assert len(center.history("ava")) == 2
    assert center.deliver("ava") == ()
    with pytest.raises(ValueError):
        NotificationCenter(history_size=0)


def test_as_dict_keeps_metadata_nested() -> None:
    payload = make_notice("ava", NotificationType.CERTIFICATE_ISSUED).as_dict()

    assert payload["type"] == "certificate_issued"
    assert payload["channel"] == "in_app"
    assert payload["metadata"] == {"topic_id": "space"}
    assert payload["created_at"] == "2024-02-01T09:00:00"
