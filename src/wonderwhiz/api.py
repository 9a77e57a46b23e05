"""Convert WonderWhiz data structures to JSON friendly dictionaries."""

from __future__ import annotations

import json
from typing import Dict, Optional

from .models import (
    Achievement,
    AchievementSet,
    LedgerTransaction,
    ProgressRecord,
    SectionContent,
    StreakState,
    Topic,
)
from .sparks import format_sparks
from .streaks import days_until_bonus, is_bonus_day
from .sync import SyncMessage


class ApiExporter:
    def topic(self, topic: Topic) -> Dict[str, object]:
        return {
            "id": topic.topic_id,
            "title": topic.title,
            "description": topic.description,
            "child_age": topic.child_age,
            "status": topic.status.value,
            "current_section": topic.current_section,
            "total_sections": topic.total_sections,
            "table_of_contents": [
                {
                    "index": outline.index,
                    "title": outline.title,
                    "description": outline.description,
                    "estimated_reading_time": outline.estimated_reading_time,
                }
                for outline in topic.sections
            ],
        }

    def section(self, content: SectionContent) -> Dict[str, object]:
        return {
            "topic_id": content.topic_id,
            "section_index": content.section_index,
            "title": content.title,
            "content": content.content,
            "facts": list(content.facts),
            "image_ref": content.image_ref,
            "story_mode_content": content.story_mode_content,
            "word_count": content.word_count,
            "generated_at": content.generated_at.isoformat(),
            "is_fallback": content.is_fallback,
        }

    def progress(self, record: ProgressRecord) -> Dict[str, object]:
        return {
            "child_id": record.child_id,
            "topic_id": record.topic_id,
            "state": record.state.value,
            "completed_sections": sorted(record.completed_sections),
            "total_sections": record.total_sections,
            "quiz_completed": record.quiz_completed,
            "certificate_issued": record.certificate_issued,
        }

    def transaction(self, transaction: LedgerTransaction) -> Dict[str, object]:
        return {
            "id": transaction.transaction_id,
            "child_id": transaction.child_id,
            "amount": transaction.amount,
            "label": format_sparks(transaction.amount),
            "reason": transaction.reason,
            "topic_id": transaction.topic_id,
            "created_at": transaction.created_at.isoformat(),
        }

    def streak(self, state: StreakState) -> Dict[str, object]:
        return {
            "child_id": state.child_id,
            "streak_days": state.count,
            "last_activity": state.last_activity.isoformat() if state.last_activity else None,
            "freeze_available": state.freeze_available,
            "freeze_used_today": state.freeze_used_today,
            "bonus_day": is_bonus_day(state),
            "days_until_bonus": days_until_bonus(state),
        }

    def achievement(self, achievement: Achievement) -> Dict[str, object]:
        return {
            "id": achievement.achievement_id,
            "label": achievement.label,
            "description": achievement.description,
            "earned": achievement.earned,
            "progress": achievement.progress,
            "progress_numerator": achievement.progress_numerator,
            "progress_denominator": achievement.progress_denominator,
        }

    def achievements(self, achievements: Optional[AchievementSet]) -> list[Dict[str, object]]:
        return [self.achievement(item) for item in (achievements or AchievementSet())]

    def sync_message(self, message: SyncMessage) -> Dict[str, object]:
        payload = message.payload
        if isinstance(payload, LedgerTransaction):
            body: object = self.transaction(payload)
        elif isinstance(payload, ProgressRecord):
            body = self.progress(payload)
        else:
            body = payload
        return {
            "id": message.message_id,
            "child_id": message.child_id,
            "kind": message.kind.value,
            "payload": body,
            "published_at": message.published_at.isoformat(),
        }

    def to_json(self, payload: object) -> str:
        return json.dumps(payload, sort_keys=True)


__all__ = ["ApiExporter"]
