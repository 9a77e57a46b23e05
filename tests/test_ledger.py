import threading
from datetime import datetime, timedelta

import pytest

from wonderwhiz.ledger import InMemoryLedgerStore, Ledger
from wonderwhiz.models import LedgerTransaction
from wonderwhiz.ops import StructuredLogger
from wonderwhiz.sparks import SPARK_REWARDS, SparkTrigger, format_sparks, reward_for
from wonderwhiz.sync import SyncHub, SyncKind


def test_balance_is_sum_of_transactions() -> None:
    ledger = Ledger()

    ledger.append_transaction("kid", 10, "Completed section: Stars")
    ledger.append_transaction("kid", 5, "Quiz")
    ledger.append_transaction("kid", -3, "Spent on avatar")

    assert ledger.get_balance("kid") == 12
    assert [item.amount for item in ledger.history("kid")] == [10, 5, -3]
    assert ledger.get_balance("someone-else") == 0


def test_concurrent_appends_lose_nothing() -> None:
    ledger = Ledger()

    def worker() -> None:
        for _ in range(25):
            ledger.append_transaction("kid", 1, "Reading a news card")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert ledger.get_balance("kid") == 200
    assert len(ledger.history("kid")) == 200


def test_invalid_transactions_are_rejected() -> None:
    ledger = Ledger()

    with pytest.raises(ValueError):
        ledger.append_transaction("kid", 0, "Nothing")
    with pytest.raises(ValueError):
        ledger.append_transaction("kid", True, "Sneaky bool")
    with pytest.raises(ValueError):
        ledger.append_transaction("kid", 1.5, "Half a spark")  # type: ignore[arg-type]
    with pytest.raises(ValueError):
        ledger.append_transaction("kid", 5, "   ")
    with pytest.raises(ValueError):
        ledger.append_transaction("", 5, "No child")

    assert ledger.history("kid") == ()


def test_balance_may_go_negative() -> None:
    ledger = Ledger()

    ledger.append_transaction("kid", -4, "Correction")

    assert ledger.get_balance("kid") == -4


def test_reconcile_repairs_cached_balance() -> None:
    store = InMemoryLedgerStore()
    logger = StructuredLogger()
    ledger = Ledger(store, logger=logger)
    ledger.append_transaction("kid", 10, "Completed section: Stars")
    assert ledger.cached_balance("kid") == 10

    store.append(LedgerTransaction(child_id="kid", amount=7, reason="Imported from another device"))
    assert ledger.cached_balance("kid") == 10

    assert ledger.reconcile("kid") == 17
    assert ledger.cached_balance("kid") == 17
    drift = logger.events("balance_drift")
    assert len(drift) == 1
    assert drift[0]["cached"] == 10
    assert drift[0]["actual"] == 17


def test_history_window_and_limit() -> None:
    store = InMemoryLedgerStore()
    ledger = Ledger(store)
    base = datetime(2024, 5, 1, 9, 0)
    for offset in range(4):
        store.append(
            LedgerTransaction(child_id="kid", amount=offset + 1, reason=f"Entry {offset}", created_at=base + timedelta(days=offset))
        )

    recent = ledger.history("kid", limit=2)
    windowed = ledger.history("kid", start=base + timedelta(days=1), end=base + timedelta(days=2))

    assert [item.amount for item in recent] == [3, 4]
    assert [item.amount for item in windowed] == [2, 3]
    with pytest.raises(ValueError):
        ledger.history("kid", limit=-1)


def test_transactions_are_published_with_their_id() -> None:
    hub = SyncHub()
    received = []
    hub.subscribe("kid", received.append)
    ledger = Ledger(sync=hub)

    transaction = ledger.append_transaction("kid", 10, "Completed section: Stars", topic_id="space")

    assert len(received) == 1
    assert received[0].kind is SyncKind.TRANSACTION
    assert received[0].message_id == transaction.transaction_id
    assert received[0].payload == transaction


def test_reward_table() -> None:
    assert reward_for(SparkTrigger.TASK_COMPLETION).amount == 7
    assert reward_for("quiz_correct").amount == 5
    assert reward_for("mood_check").amount == 3
    assert SPARK_REWARDS[SparkTrigger.SECTION_COMPLETE].amount == 10
    assert format_sparks(1) == "+1 spark"
    assert format_sparks(-10) == "-10 sparks"
    with pytest.raises(ValueError):
        reward_for("lottery")
