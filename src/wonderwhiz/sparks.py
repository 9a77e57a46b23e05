"""Spark amounts and the reward table used across WonderWhiz."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict


class SparkTrigger(str, Enum):
    """Events that earn sparks."""

    TASK_COMPLETION = "task_completion"
    QUIZ_CORRECT = "quiz_correct"
    CREATIVE_UPLOAD = "creative_upload"
    NEWS_READ = "news_read"
    NEW_CURIO = "new_curio"
    RABBIT_HOLE = "rabbit_hole"
    MOOD_CHECK = "mood_check"
    STREAK = "streak"
    SECTION_COMPLETE = "section_complete"
    TOPIC_COMPLETE = "topic_complete"


@dataclass(frozen=True, slots=True)
class SparkReward:
    amount: int
    reason: str


SPARK_REWARDS: Dict[SparkTrigger, SparkReward] = {
    SparkTrigger.TASK_COMPLETION: SparkReward(7, "Completing a task"),
    SparkTrigger.QUIZ_CORRECT: SparkReward(5, "Answering quiz correctly"),
    SparkTrigger.CREATIVE_UPLOAD: SparkReward(10, "Uploading creative content"),
    SparkTrigger.NEWS_READ: SparkReward(3, "Reading a news card"),
    SparkTrigger.NEW_CURIO: SparkReward(1, "Starting new Curio"),
    SparkTrigger.RABBIT_HOLE: SparkReward(2, "Following a rabbit hole"),
    SparkTrigger.MOOD_CHECK: SparkReward(3, "Completing mood check-in"),
    SparkTrigger.STREAK: SparkReward(10, "3-day streak bonus"),
    SparkTrigger.SECTION_COMPLETE: SparkReward(10, "Completed a section"),
    SparkTrigger.TOPIC_COMPLETE: SparkReward(10, "Completed a topic"),
}


def reward_for(trigger: SparkTrigger | str) -> SparkReward:
    """Return the reward configured for ``trigger``."""

    try:
        return SPARK_REWARDS[SparkTrigger(trigger)]
    except ValueError as exc:
        raise ValueError(f"Unknown spark trigger: {trigger}") from exc


def require_amount(amount: int) -> int:
    """Ensure ``amount`` is a non-zero integer spark amount."""

    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValueError(f"Spark amounts must be integers, got {amount!r}.")
    if amount == 0:
        raise ValueError("Spark amount must not be zero.")
    return amount


def require_reason(reason: str) -> str:
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValueError("A reason is required for every spark transaction.")
    return cleaned


def format_sparks(amount: int) -> str:
    """Return ``amount`` as a signed label such as ``+10 sparks``."""

    unit = "spark" if abs(amount) == 1 else "sparks"
    return f"{amount:+d} {unit}"


__all__ = [
    "SPARK_REWARDS",
    "SparkReward",
    "SparkTrigger",
    "format_sparks",
    "require_amount",
    "require_reason",
    "reward_for",
]
