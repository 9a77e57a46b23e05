import pytest

from wonderwhiz.ops import StructuredLogger
from wonderwhiz.sync import SyncHub, SyncInbox, SyncKind, SyncMessage


def test_inbox_applies_each_message_once() -> None:
    applied = []
    inbox = SyncInbox(applied.append)
    message = SyncMessage(child_id="kid", kind=SyncKind.TRANSACTION, payload={"amount": 10}, message_id="tx-1")

    inbox(message)
    inbox(message)
    inbox(SyncMessage(child_id="kid", kind=SyncKind.TRANSACTION, payload={"amount": 5}, message_id="tx-2"))

    assert [item.message_id for item in applied] == ["tx-1", "tx-2"]
    assert inbox.duplicates == 1


def test_inbox_forgets_oldest_ids_beyond_capacity() -> None:
    applied = []
    inbox = SyncInbox(applied.append, capacity=2)
    for message_id in ("a", "b", "c", "a"):
        inbox(SyncMessage(child_id="kid", kind=SyncKind.PROGRESS, payload=None, message_id=message_id))

    assert [item.message_id for item in applied] == ["a", "b", "c", "a"]

    with pytest.raises(ValueError):
        SyncInbox(applied.append, capacity=0)


def test_hub_delivers_only_to_the_child_subscribers() -> None:
    hub = SyncHub()
    ava, ben = [], []
    hub.subscribe("ava", ava.append)
    hub.subscribe("ben", ben.append)

    message = hub.publish("ava", SyncKind.PROGRESS, {"section": 1}, message_id="progress-1")

    assert ava == [message]
    assert ben == []
    assert message.message_id == "progress-1"


def test_cancelled_subscription_stops_delivery() -> None:
    hub = SyncHub()
    received = []
    subscription = hub.subscribe("kid", received.append)
    hub.publish("kid", SyncKind.TRANSACTION, {"amount": 1})

    subscription.cancel()
    subscription.cancel()
    hub.publish("kid", SyncKind.TRANSACTION, {"amount": 2})

    assert len(received) == 1
    assert hub.subscriber_count("kid") == 0


def test_two_sessions_converge_through_inboxes() -> None:
    hub = SyncHub()
    tablet, laptop = [], []
    hub.subscribe("kid", SyncInbox(tablet.append))
    hub.subscribe("kid", SyncInbox(laptop.append))

    hub.publish("kid", SyncKind.TRANSACTION, {"amount": 10}, message_id="tx-1")
    hub.publish("kid", SyncKind.TRANSACTION, {"amount": 10}, message_id="tx-1")

    assert len(tablet) == len(laptop) == 1


def test_failing_listener_is_logged_and_others_still_receive() -> None:
    logger = StructuredLogger()
    hub = SyncHub(logger=logger)
    received = []

    def broken(message: SyncMessage) -> None:
        raise RuntimeError("tab closed")

    hub.subscribe("kid", broken)
    hub.subscribe("kid", received.append)

    message = hub.publish("kid", SyncKind.TRANSACTION, {"amount": 10}, message_id="tx-9")

    assert received == [message]
    failures = logger.events("sync_listener_failed")
    assert len(failures) == 1
    assert failures[0]["message_id"] == "tx-9"
    assert failures[0]["error"] == "RuntimeError: tab closed"
