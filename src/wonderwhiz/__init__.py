"""WonderWhiz package: progressive topic unlocking and spark rewards for children."""

from .achievements import (
    AchievementDefinition,
    AchievementTracker,
    CelebrationDebouncer,
    DEFAULT_ACHIEVEMENTS,
    InMemoryAchievementStore,
    evaluate,
)
from .api import ApiExporter
from .content import InMemoryContentStore, SectionCacheResolver, build_fallback_content
from .exceptions import (
    DuplicateRewardAttempt,
    GenerationFailure,
    PersistenceFailure,
    SequenceViolation,
    TopicNotFoundError,
    WonderWhizError,
)
from .flags import FeatureFlagRegistry
from .generator import HttpContentGenerator, HttpImageGenerator, StaticContentGenerator
from .ledger import InMemoryLedgerStore, Ledger
from .models import (
    Achievement,
    AchievementSet,
    Celebration,
    Evaluation,
    GeneratedContent,
    LedgerTransaction,
    Metrics,
    ProgressRecord,
    ProgressState,
    SectionCompletion,
    SectionContent,
    SectionOutline,
    StreakState,
    Topic,
    TopicStatus,
)
from .notifications import Notification, NotificationCenter, NotificationChannel, NotificationType
from .ops import HealthMonitor, StructuredLogger
from .progress import InMemoryProgressStore, ProgressTracker
from .service import SectionOutcome, StreakUpdate, WonderWhiz
from .sparks import SPARK_REWARDS, SparkTrigger
from .streaks import InMemoryStreakStore, StreakCalculator
from .sync import SyncHub, SyncInbox, SyncKind, SyncMessage
from .topics import InMemoryTopicStore

__all__ = [
    "Achievement",
    "AchievementDefinition",
    "AchievementSet",
    "AchievementTracker",
    "ApiExporter",
    "Celebration",
    "CelebrationDebouncer",
    "DEFAULT_ACHIEVEMENTS",
    "DuplicateRewardAttempt",
    "Evaluation",
    "FeatureFlagRegistry",
    "GeneratedContent",
    "GenerationFailure",
    "HealthMonitor",
    "HttpContentGenerator",
    "HttpImageGenerator",
    "InMemoryAchievementStore",
    "InMemoryContentStore",
    "InMemoryLedgerStore",
    "InMemoryProgressStore",
    "InMemoryStreakStore",
    "InMemoryTopicStore",
    "Ledger",
    "LedgerTransaction",
    "Metrics",
    "Notification",
    "NotificationCenter",
    "NotificationChannel",
    "NotificationType",
    "PersistenceFailure",
    "ProgressRecord",
    "ProgressState",
    "ProgressTracker",
    "SPARK_REWARDS",
    "SectionCacheResolver",
    "SectionCompletion",
    "SectionContent",
    "SectionOutcome",
    "SectionOutline",
    "SequenceViolation",
    "SparkTrigger",
    "StaticContentGenerator",
    "StreakCalculator",
    "StreakState",
    "StreakUpdate",
    "StructuredLogger",
    "SyncHub",
    "SyncInbox",
    "SyncKind",
    "SyncMessage",
    "Topic",
    "TopicNotFoundError",
    "TopicStatus",
    "WonderWhiz",
    "WonderWhizError",
    "build_fallback_content",
    "evaluate",
]
