"""High level service coordinating topics, progress, sparks and achievements."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Sequence, Tuple

from .achievements import (
    DEFAULT_ACHIEVEMENTS,
    DEFAULT_CELEBRATION_COOLDOWN,
    AchievementDefinition,
    AchievementStore,
    AchievementTracker,
    CelebrationDebouncer,
    evaluate,
)
from .content import (
    DEFAULT_GENERATION_TIMEOUT,
    ContentGenerator,
    ContentStore,
    ImageGenerator,
    InMemoryContentStore,
    SectionCacheResolver,
)
from .exceptions import DuplicateRewardAttempt, SequenceViolation, TopicNotFoundError
from .flags import FeatureFlagRegistry
from .generator import StaticContentGenerator
from .ledger import Ledger, LedgerStore
from .models import (
    AchievementSet,
    Celebration,
    Evaluation,
    LedgerTransaction,
    Metrics,
    ProgressRecord,
    SectionCompletion,
    SectionContent,
    StreakState,
    Topic,
    TopicStatus,
)
from .notifications import Notification, NotificationCenter, NotificationChannel, NotificationType
from .ops import HealthMonitor, StructuredLogger
from .progress import ProgressStore, ProgressTracker
from .sparks import SparkTrigger, reward_for
from .streaks import StreakCalculator, StreakStore, is_bonus_day
from .sync import Listener, Subscription, SyncHub, SyncKind
from .topics import InMemoryTopicStore, OutlineLike, TopicStore, build_outline


@dataclass(frozen=True, slots=True)
class SectionOutcome:
    """What happened when a child finished a section."""

    completion: SectionCompletion
    transaction: Optional[LedgerTransaction]
    streak: Optional["StreakUpdate"]
    evaluation: Optional[Evaluation]

    @property
    def rewarded(self) -> bool:
        return self.transaction is not None


@dataclass(frozen=True, slots=True)
class StreakUpdate:
    state: StreakState
    bonus: Optional[LedgerTransaction] = None


class WonderWhiz:
    """Manage topics, sequential progress, the spark ledger, streaks and badges."""

    __slots__ = (
        "_topics",
        "_resolver",
        "_tracker",
        "_ledger",
        "_streaks",
        "_achievements",
        "_celebrations",
        "_notifications",
        "_sync",
        "_flags",
        "_logger",
        "_health",
        "_clock",
    )

    def __init__(
        self,
        *,
        generator: ContentGenerator | None = None,
        image_generator: ImageGenerator | None = None,
        topic_store: TopicStore | None = None,
        content_store: ContentStore | None = None,
        progress_store: ProgressStore | None = None,
        ledger_store: LedgerStore | None = None,
        streak_store: StreakStore | None = None,
        achievement_store: AchievementStore | None = None,
        generation_timeout: float = DEFAULT_GENERATION_TIMEOUT,
        celebration_cooldown: timedelta = DEFAULT_CELEBRATION_COOLDOWN,
        achievements: Sequence[AchievementDefinition] = DEFAULT_ACHIEVEMENTS,
        flags: FeatureFlagRegistry | None = None,
        logger: StructuredLogger | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self._logger = logger or StructuredLogger()
        self._health = HealthMonitor()
        self._flags = flags or FeatureFlagRegistry()
        self._clock = clock
        self._sync = SyncHub(logger=self._logger)
        self._notifications = NotificationCenter()
        self._topics = topic_store if topic_store is not None else InMemoryTopicStore()
        self._resolver = SectionCacheResolver(
            content_store if content_store is not None else InMemoryContentStore(),
            generator if generator is not None else StaticContentGenerator(),
            image_generator=image_generator,
            timeout_seconds=generation_timeout,
            logger=self._logger,
            health=self._health,
            flags=self._flags,
        )
        self._tracker = ProgressTracker(progress_store)
        self._ledger = Ledger(ledger_store, sync=self._sync, logger=self._logger)
        self._streaks = StreakCalculator(streak_store, logger=self._logger)
        self._achievements = AchievementTracker(achievements, store=achievement_store)
        self._celebrations = CelebrationDebouncer(
            cooldown=celebration_cooldown,
            notifications=self._notifications,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Topics and section content
    # ------------------------------------------------------------------
    def create_topic(
        self,
        title: str,
        sections: Sequence[OutlineLike],
        *,
        child_age: int,
        description: str = "",
        child_id: str | None = None,
    ) -> Topic:
        if not title.strip():
            raise ValueError("Topic title must not be empty.")
        topic = Topic(
            title=title.strip(),
            sections=build_outline(sections),
            child_age=child_age,
            description=description,
            child_id=child_id,
        )
        self._topics.add(topic)
        self._logger.log("topic_created", topic=topic.topic_id, title=topic.title, sections=topic.total_sections)
        return topic

    def get_topic(self, topic_id: str) -> Topic:
        topic = self._topics.get(topic_id)
        if topic is None:
            raise TopicNotFoundError(f"Topic '{topic_id}' does not exist.")
        return topic

    def topics(self, *, child_id: str | None = None) -> Tuple[Topic, ...]:
        return self._topics.list(child_id=child_id)

    def resolve_section(
        self,
        topic_id: str,
        section_index: int,
        child_age: int | None = None,
        *,
        refresh: bool = False,
    ) -> SectionContent:
        return self._resolver.resolve_section(self.get_topic(topic_id), section_index, child_age, refresh=refresh)

    def open_section(self, child_id: str, topic_id: str, section_index: int) -> SectionContent:
        """Resolve a section for a child, rejecting sections that are still locked."""

        topic = self.get_topic(topic_id)
        if not self._tracker.can_enter(child_id, topic, section_index):
            raise SequenceViolation(f"Section {section_index} of '{topic.title}' is still locked.")
        return self._resolver.resolve_section(topic, section_index)

    def retry_section(self, topic_id: str, section_index: int, child_age: int | None = None) -> SectionContent:
        return self._resolver.retry_section(self.get_topic(topic_id), section_index, child_age)

    def invalidate_section(self, topic_id: str, section_index: int) -> bool:
        return self._resolver.invalidate_section(self.get_topic(topic_id), section_index)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------
    def progress(self, child_id: str, topic_id: str) -> ProgressRecord:
        return self._tracker.get(child_id, self.get_topic(topic_id))

    def available_sections(self, child_id: str, topic_id: str) -> Tuple[int, ...]:
        return self._tracker.available_sections(child_id, self.get_topic(topic_id))

    def complete_section(self, child_id: str, topic_id: str, section_index: int) -> SectionOutcome:
        """Commit progress first, then issue the reward exactly once."""

        topic = self.get_topic(topic_id)
        completion = self._tracker.complete_section(child_id, topic, section_index)
        try:
            transaction = self._reward_section(child_id, topic, completion)
        except DuplicateRewardAttempt as exc:
            self._logger.log(
                "duplicate_reward_absorbed", child=child_id, topic=topic_id, section=section_index, detail=str(exc)
            )
            return SectionOutcome(completion=completion, transaction=None, streak=None, evaluation=None)
        self._logger.log("section_completed", child=child_id, topic=topic_id, section=section_index)
        streak = self.record_activity(child_id)
        evaluation = self.refresh_achievements(child_id)
        return SectionOutcome(completion=completion, transaction=transaction, streak=streak, evaluation=evaluation)

    def _reward_section(self, child_id: str, topic: Topic, completion: SectionCompletion) -> LedgerTransaction:
        if not completion.newly_completed:
            raise DuplicateRewardAttempt(
                f"Section {completion.section_index} of '{topic.title}' was already rewarded."
            )
        record = completion.record
        if self._owns(topic, child_id):
            topic.advance_status(TopicStatus.IN_PROGRESS)
            topic.set_current_section(len(record.completed_sections))
            self._topics.update(topic)

        reward = reward_for(SparkTrigger.SECTION_COMPLETE)
        transaction = self._ledger.append_transaction(
            child_id,
            reward.amount,
            f"Completed section: {topic.section(completion.section_index).title}",
            topic_id=topic.topic_id,
            metadata={"section": str(completion.section_index)},
        )
        self._publish_progress(record)
        return transaction

    def complete_quiz(self, child_id: str, topic_id: str, *, correct_answers: int = 0) -> ProgressRecord:
        if correct_answers < 0:
            raise ValueError("correct_answers must not be negative")
        topic = self.get_topic(topic_id)
        record = self._tracker.complete_quiz(child_id, topic)
        if correct_answers:
            reward = reward_for(SparkTrigger.QUIZ_CORRECT)
            self._ledger.append_transaction(
                child_id,
                reward.amount * correct_answers,
                f"Quiz on {topic.title}: {correct_answers} correct",
                topic_id=topic_id,
            )
            self.refresh_achievements(child_id)
        self._publish_progress(record)
        self._logger.log("quiz_completed", child=child_id, topic=topic_id, correct=correct_answers)
        return record

    def issue_certificate(self, child_id: str, topic_id: str) -> ProgressRecord:
        topic = self.get_topic(topic_id)
        record = self._tracker.issue_certificate(child_id, topic)
        if self._owns(topic, child_id):
            topic.advance_status(TopicStatus.COMPLETED)
            self._topics.update(topic)
        reward = reward_for(SparkTrigger.TOPIC_COMPLETE)
        self._ledger.append_transaction(child_id, reward.amount, f"Completed topic: {topic.title}", topic_id=topic_id)
        self._publish_progress(record)
        self._notifications.queue(
            Notification(
                recipient=child_id,
                channel=NotificationChannel.IN_APP,
                type=NotificationType.CERTIFICATE_ISSUED,
                subject="Certificate earned!",
                body=f"You finished '{topic.title}'.",
                metadata={"topic_id": topic_id},
            )
        )
        self._logger.log("certificate_issued", child=child_id, topic=topic_id)
        self.refresh_achievements(child_id)
        return record

    def explorations_count(self, child_id: str) -> int:
        return sum(1 for record in self._tracker.records_for(child_id) if record.completed_sections)

    # ------------------------------------------------------------------
    # Sparks ledger
    # ------------------------------------------------------------------
    @property
    def ledger(self) -> Ledger:
        return self._ledger

    def award_sparks(
        self,
        child_id: str,
        trigger: SparkTrigger | str,
        *,
        reason: str | None = None,
        topic_id: str | None = None,
    ) -> LedgerTransaction:
        reward = reward_for(trigger)
        transaction = self._ledger.append_transaction(
            child_id,
            reward.amount,
            reason or reward.reason,
            topic_id=topic_id,
            metadata={"trigger": SparkTrigger(trigger).value},
        )
        self.refresh_achievements(child_id)
        return transaction

    def balance(self, child_id: str) -> int:
        return self._ledger.get_balance(child_id)

    def history(self, child_id: str, *, limit: int | None = None) -> Tuple[LedgerTransaction, ...]:
        return self._ledger.history(child_id, limit=limit)

    def reconcile_balance(self, child_id: str) -> int:
        return self._ledger.reconcile(child_id)

    # ------------------------------------------------------------------
    # Streaks
    # ------------------------------------------------------------------
    def streak(self, child_id: str) -> StreakState:
        return self._streaks.current(child_id, on=self._clock())

    def record_activity(self, child_id: str, on: date | datetime | None = None) -> StreakUpdate:
        moment = on or self._clock()
        previous = self._streaks.current(child_id, on=moment)
        state = self._streaks.record_activity(child_id, moment)
        bonus = None
        if (
            state.count > previous.count
            and is_bonus_day(state)
            and self._flags.is_enabled("streak_bonus")
        ):
            reward = reward_for(SparkTrigger.STREAK)
            bonus = self._ledger.append_transaction(
                child_id,
                reward.amount,
                f"{state.count}-day streak bonus",
                metadata={"trigger": SparkTrigger.STREAK.value},
            )
            self._notifications.queue(
                Notification(
                    recipient=child_id,
                    channel=NotificationChannel.IN_APP,
                    type=NotificationType.STREAK_BONUS,
                    subject=f"{state.count}-day streak!",
                    body=f"You earned {reward.amount} bonus sparks!",
                )
            )
            self.refresh_achievements(child_id)
        return StreakUpdate(state=state, bonus=bonus)

    def grant_streak_freeze(self, child_id: str) -> StreakState:
        return self._streaks.grant_freeze(child_id, on=self._clock())

    # ------------------------------------------------------------------
    # Achievements and celebrations
    # ------------------------------------------------------------------
    def metrics(self, child_id: str) -> Metrics:
        return Metrics(
            balance=self.balance(child_id),
            streak_days=self.streak(child_id).count,
            explorations_count=self.explorations_count(child_id),
        )

    def achievements(self, child_id: str) -> AchievementSet:
        return evaluate(None, self.metrics(child_id), self._achievements.definitions).all

    def refresh_achievements(self, child_id: str) -> Optional[Evaluation]:
        if not self._flags.is_enabled("achievements"):
            return None
        self._celebrations.flush(at=self._clock())
        evaluation = self._achievements.update(child_id, self.metrics(child_id))
        for achievement in evaluation.newly_earned:
            self._logger.log("achievement_unlocked", child=child_id, achievement=achievement.achievement_id)
        if evaluation.newly_earned:
            self._celebrations.offer(child_id, evaluation.newly_earned)
        return evaluation

    def flush_celebrations(self, *, at: datetime | None = None) -> Tuple[Celebration, ...]:
        return self._celebrations.flush(at=at or self._clock())

    # ------------------------------------------------------------------
    # Sync, notifications and operations
    # ------------------------------------------------------------------
    def subscribe(self, child_id: str, listener: Listener) -> Subscription:
        return self._sync.subscribe(child_id, listener)

    @property
    def notifications(self) -> NotificationCenter:
        return self._notifications

    def pending_notifications(self, child_id: str) -> Tuple[Notification, ...]:
        """Release celebrations whose cooldown has passed, then list the inbox."""

        self.flush_celebrations()
        return tuple(self._notifications.pending(recipient=child_id))

    def deliver_notifications(self, child_id: str) -> Tuple[Notification, ...]:
        self.flush_celebrations()
        return tuple(self._notifications.deliver(child_id))

    @property
    def flags(self) -> FeatureFlagRegistry:
        return self._flags

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def health(self) -> HealthMonitor:
        return self._health

    @property
    def resolver(self) -> SectionCacheResolver:
        return self._resolver

    def close(self) -> None:
        self._resolver.close()

    @staticmethod
    def _owns(topic: Topic, child_id: str) -> bool:
        return topic.child_id == child_id

    def _publish_progress(self, record: ProgressRecord) -> None:
        message_id = ":".join(
            [
                "progress",
                record.child_id,
                record.topic_id,
                ",".join(str(index) for index in sorted(record.completed_sections)),
                record.state.value,
            ]
        )
        self._sync.publish(record.child_id, SyncKind.PROGRESS, record, message_id=message_id)


__all__ = ["SectionOutcome", "StreakUpdate", "WonderWhiz"]
