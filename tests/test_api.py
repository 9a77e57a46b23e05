import json
from datetime import date

from wonderwhiz.api import ApiExporter
from wonderwhiz.ledger import Ledger
from wonderwhiz.models import ProgressRecord, SectionOutline, StreakState, Topic
from wonderwhiz.ops import HealthMonitor, StructuredLogger
from wonderwhiz.sync import SyncHub, SyncKind


def test_topic_and_progress_export() -> None:
    exporter = ApiExporter()
    topic = Topic(title="Bees", sections=(SectionOutline(0, "Hives"), SectionOutline(1, "Honey")), child_age=6)
    record = ProgressRecord(child_id="kid", topic_id=topic.topic_id, total_sections=2, completed_sections={1, 0})

    topic_payload = exporter.topic(topic)
    progress_payload = exporter.progress(record)

    assert topic_payload["total_sections"] == 2
    assert topic_payload["table_of_contents"][1]["title"] == "Honey"
    assert progress_payload["completed_sections"] == [0, 1]
    assert progress_payload["state"] == "quiz_ready"


def test_streak_export_includes_bonus_countdown() -> None:
    payload = ApiExporter().streak(StreakState(child_id="kid", count=5, last_activity=date(2024, 1, 5)))

    assert payload["streak_days"] == 5
    assert payload["bonus_day"] is False
    assert payload["days_until_bonus"] == 1
    assert payload["last_activity"] == "2024-01-05"


def test_sync_messages_serialise_their_payload() -> None:
    exporter = ApiExporter()
    hub = SyncHub()
    messages = []
    hub.subscribe("kid", messages.append)
    transaction = Ledger(sync=hub).append_transaction("kid", 10, "Completed section: Hives")

    payload = exporter.sync_message(messages[0])
    decoded = json.loads(exporter.to_json(payload))

    assert decoded["kind"] == SyncKind.TRANSACTION.value
    assert decoded["id"] == transaction.transaction_id
    assert decoded["payload"]["amount"] == 10
    assert decoded["payload"]["label"] == "+10 sparks"


def test_structured_logger_writes_json_lines(tmp_path) -> None:
    path = tmp_path / "logs" / "events.jsonl"
    logger = StructuredLogger(path=path)

    logger.log("section_cache_hit", topic="bees", section=0)
    logger.log("transaction_appended", child="kid", amount=10)

    lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [line["event"] for line in lines] == ["section_cache_hit", "transaction_appended"]
    assert logger.tail(1)[0]["amount"] == 10
    assert len(logger.events("section_cache_hit")) == 1


def test_health_monitor_tracks_store_availability() -> None:
    health = HealthMonitor()

    health.record_store_failure()
    down = health.status()
    health.record_store_success()

    assert down["store"] == "down"
    assert down["store_failures"] == 1
    assert health.status()["store"] == "ok"
