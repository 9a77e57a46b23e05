"""Domain models used by the WonderWhiz package."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from fractions import Fraction
from typing import Dict, FrozenSet, Iterator, Optional, Sequence, Tuple
from uuid import uuid4

from .exceptions import SequenceViolation


class TopicStatus(str, Enum):
    """Lifecycle of a topic; only ever moves forward."""

    PLANNING = "planning"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)


_STATUS_ORDER = (TopicStatus.PLANNING, TopicStatus.IN_PROGRESS, TopicStatus.COMPLETED)


@dataclass(frozen=True, slots=True)
class SectionOutline:
    """Table of contents entry fixed when a topic is planned."""

    index: int
    title: str
    description: str = ""
    estimated_reading_time: int = 5

    def __post_init__(self) -> None:
        if self.index < 0:
            raise ValueError("Section index must be zero or greater.")
        if not self.title.strip():
            raise ValueError("Section title must not be empty.")


@dataclass(slots=True)
class Topic:
    """An encyclopedia topic made of sequential sections."""

    title: str
    sections: Tuple[SectionOutline, ...]
    child_age: int
    description: str = ""
    child_id: Optional[str] = None
    topic_id: str = field(default_factory=lambda: str(uuid4()))
    status: TopicStatus = TopicStatus.PLANNING
    current_section: int = 0
    created_at: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self) -> None:
        sections = tuple(self.sections)
        if not sections:
            raise ValueError("A topic needs at least one section.")
        for expected, outline in enumerate(sections):
            if outline.index != expected:
                raise ValueError("Section indices must be 0-based and contiguous.")
        self.sections = sections
        self.status = TopicStatus(self.status)
        if not 0 <= self.current_section <= len(sections):
            raise ValueError("current_section must lie between 0 and total_sections.")

    @property
    def total_sections(self) -> int:
        return len(self.sections)

    def section(self, index: int) -> SectionOutline:
        if not 0 <= index < len(self.sections):
            raise ValueError(f"Topic '{self.title}' has no section {index}.")
        return self.sections[index]

    def advance_status(self, status: TopicStatus) -> bool:
        """Move the status forward; returns ``True`` when it changed."""

        target = TopicStatus(status)
        if target.rank < self.status.rank:
            raise SequenceViolation(
                f"Topic '{self.title}' cannot move from {self.status.value} back to {target.value}."
            )
        changed = target is not self.status
        self.status = target
        return changed

    def set_current_section(self, value: int) -> None:
        self.current_section = max(self.current_section, min(value, self.total_sections))


@dataclass(frozen=True, slots=True)
class SectionContent:
    """Generated prose attached lazily to a :class:`SectionOutline`."""

    topic_id: str
    section_index: int
    title: str
    content: str
    facts: Tuple[str, ...] = ()
    image_ref: Optional[str] = None
    story_mode_content: Optional[str] = None
    word_count: int = 0
    generated_at: datetime = field(default_factory=datetime.utcnow)
    is_fallback: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "facts", tuple(self.facts))
        if not self.word_count:
            object.__setattr__(self, "word_count", len(self.content.split()))


@dataclass(frozen=True, slots=True)
class GeneratedContent:
    """Raw payload returned by a content generator."""

    content: str
    facts: Tuple[str, ...] = ()
    image_ref: Optional[str] = None
    story_mode_content: Optional[str] = None
    word_count: int = 0


class ProgressState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    QUIZ_READY = "quiz_ready"
    QUIZ_DONE = "quiz_done"
    CERTIFICATE_ISSUED = "certificate_issued"


class ProgressAction(str, Enum):
    COMPLETE_SECTION = "complete_section"
    COMPLETE_QUIZ = "complete_quiz"
    ISSUE_CERTIFICATE = "issue_certificate"


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    """Progress of one child through one topic."""

    child_id: str
    topic_id: str
    total_sections: int
    completed_sections: FrozenSet[int] = frozenset()
    quiz_completed: bool = False
    certificate_issued: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "completed_sections", frozenset(self.completed_sections))

    @property
    def state(self) -> ProgressState:
        if self.certificate_issued:
            return ProgressState.CERTIFICATE_ISSUED
        if self.quiz_completed:
            return ProgressState.QUIZ_DONE
        if not self.completed_sections:
            return ProgressState.NOT_STARTED
        if len(self.completed_sections) >= self.total_sections:
            return ProgressState.QUIZ_READY
        return ProgressState.IN_PROGRESS

    def is_completed(self, index: int) -> bool:
        return index in self.completed_sections

    def progress(self) -> Fraction:
        return Fraction(len(self.completed_sections), self.total_sections)


@dataclass(frozen=True, slots=True)
class SectionCompletion:
    """Result of ``complete_section``; ``newly_completed`` is false on review."""

    record: ProgressRecord
    section_index: int
    newly_completed: bool


@dataclass(frozen=True, slots=True)
class LedgerTransaction:
    """Immutable spark ledger entry."""

    child_id: str
    amount: int
    reason: str
    transaction_id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)
    topic_id: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict, compare=False)


@dataclass(frozen=True, slots=True)
class StreakState:
    """Consecutive-day engagement for a child."""

    child_id: str
    count: int = 0
    last_activity: Optional[date] = None
    freeze_available: bool = False
    freeze_used_today: bool = False
    freeze_used_on: Optional[date] = None


@dataclass(frozen=True, slots=True)
class Metrics:
    """Inputs of the achievement evaluator."""

    balance: int = 0
    streak_days: int = 0
    explorations_count: int = 0

    def value(self, metric: str) -> int:
        return int(getattr(self, metric))


@dataclass(frozen=True, slots=True)
class Achievement:
    """Evaluated badge with a progress fraction."""

    achievement_id: str
    label: str
    earned: bool
    progress_numerator: int
    progress_denominator: int
    description: str = ""

    @property
    def progress(self) -> float:
        return self.progress_numerator / self.progress_denominator


@dataclass(frozen=True, slots=True)
class AchievementSet:
    """Immutable snapshot of one evaluation."""

    achievements: Tuple[Achievement, ...] = ()

    def __iter__(self) -> Iterator[Achievement]:
        return iter(self.achievements)

    def __len__(self) -> int:
        return len(self.achievements)

    def get(self, achievement_id: str) -> Optional[Achievement]:
        for achievement in self.achievements:
            if achievement.achievement_id == achievement_id:
                return achievement
        return None

    def earned_ids(self) -> FrozenSet[str]:
        return frozenset(item.achievement_id for item in self.achievements if item.earned)

    def earned(self) -> Tuple[Achievement, ...]:
        return tuple(item for item in self.achievements if item.earned)


@dataclass(frozen=True, slots=True)
class Evaluation:
    all: AchievementSet
    newly_earned: Tuple[Achievement, ...] = ()


@dataclass(frozen=True, slots=True)
class Celebration:
    """A visible celebration covering one or more unlocked achievements."""

    child_id: str
    achievements: Tuple[Achievement, ...]
    fired_at: datetime

    @property
    def labels(self) -> Sequence[str]:
        return tuple(item.label for item in self.achievements)


@dataclass(frozen=True, slots=True)
class FeatureFlag:
    key: str
    enabled: bool
    description: str = ""


__all__ = [
    "Achievement",
    "AchievementSet",
    "Celebration",
    "Evaluation",
    "FeatureFlag",
    "GeneratedContent",
    "LedgerTransaction",
    "Metrics",
    "ProgressAction",
    "ProgressRecord",
    "ProgressState",
    "SectionCompletion",
    "SectionContent",
    "SectionOutline",
    "StreakState",
    "Topic",
    "TopicStatus",
]
