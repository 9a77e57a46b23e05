"""Persistence and SQLModel definitions for the WonderWhiz web service."""
from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import date, datetime
from typing import FrozenSet, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import UniqueConstraint, desc, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, Session, SQLModel, create_engine, select

from ..exceptions import PersistenceFailure
from ..models import (
    LedgerTransaction,
    ProgressRecord,
    SectionContent,
    SectionOutline,
    StreakState,
    Topic,
    TopicStatus,
)
from .config import DATABASE_URL


# ---------------------------------------------------------------------------
# Database models
# ---------------------------------------------------------------------------
class TopicRow(SQLModel, table=True):
    __tablename__ = "topic"

    id: str = Field(primary_key=True)
    child_id: Optional[str] = Field(default=None, index=True)
    title: str
    description: str = ""
    child_age: int
    status: str = TopicStatus.PLANNING.value  # planning|in_progress|completed
    current_section: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)


class SectionOutlineRow(SQLModel, table=True):
    __tablename__ = "section_outline"
    __table_args__ = (UniqueConstraint("topic_id", "section_index"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    topic_id: str = Field(index=True)
    section_index: int
    title: str
    description: str = ""
    estimated_reading_time: int = 5


class SectionContentRow(SQLModel, table=True):
    __tablename__ = "section_content"
    __table_args__ = (UniqueConstraint("topic_id", "section_index"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    topic_id: str = Field(index=True)
    section_index: int
    title: str
    content: str
    facts_json: str = "[]"
    image_ref: Optional[str] = None
    story_mode_content: Optional[str] = None
    word_count: int = 0
    generated_at: datetime = Field(default_factory=datetime.utcnow)


class SectionCompletionRow(SQLModel, table=True):
    __tablename__ = "section_completion"
    __table_args__ = (UniqueConstraint("child_id", "topic_id", "section_index"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: str = Field(index=True)
    topic_id: str
    section_index: int
    completed_at: datetime = Field(default_factory=datetime.utcnow)


class ProgressRow(SQLModel, table=True):
    __tablename__ = "progress"
    __table_args__ = (UniqueConstraint("child_id", "topic_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: str = Field(index=True)
    topic_id: str
    total_sections: int
    quiz_completed: bool = False
    certificate_issued: bool = False


class LedgerEntry(SQLModel, table=True):
    __tablename__ = "ledger_entry"

    id: Optional[int] = Field(default=None, primary_key=True)
    transaction_id: str = Field(unique=True)
    child_id: str = Field(index=True)
    amount: int
    reason: str
    topic_id: Optional[str] = None
    meta_json: str = "{}"
    created_at: datetime = Field(default_factory=datetime.utcnow)


class StreakRow(SQLModel, table=True):
    __tablename__ = "streak"

    child_id: str = Field(primary_key=True)
    count: int = 0
    last_activity: Optional[date] = None
    freeze_available: bool = False
    freeze_used_today: bool = False
    freeze_used_on: Optional[date] = None


class AchievementRow(SQLModel, table=True):
    __tablename__ = "achievement"
    __table_args__ = (UniqueConstraint("child_id", "achievement_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: str = Field(index=True)
    achievement_id: str


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------
def create_engine_for(url: str) -> Engine:
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(url, echo=False, connect_args=connect_args, poolclass=StaticPool)
    return create_engine(url, echo=False, connect_args=connect_args)


engine = create_engine_for(DATABASE_URL)


def create_db_and_tables(bind: Engine | None = None) -> None:
    try:
        SQLModel.metadata.create_all(bind or engine)
    except SQLAlchemyError as exc:
        raise PersistenceFailure(f"Could not initialise the database: {exc}") from exc


@contextmanager
def _session(bind: Engine) -> Iterator[Session]:
    try:
        with Session(bind, expire_on_commit=False) as session:
            yield session
    except PersistenceFailure:
        raise
    except SQLAlchemyError as exc:
        raise PersistenceFailure(f"Database unavailable: {exc}") from exc


# ---------------------------------------------------------------------------
# Store implementations
# ---------------------------------------------------------------------------
class SqlTopicStore:
    def __init__(self, bind: Engine | None = None) -> None:
        self._engine = bind or engine

    def get(self, topic_id: str) -> Optional[Topic]:
        with _session(self._engine) as session:
            row = session.get(TopicRow, topic_id)
            if row is None:
                return None
            return self._to_topic(session, row)

    def add(self, topic: Topic) -> Topic:
        with _session(self._engine) as session:
            session.add(
                TopicRow(
                    id=topic.topic_id,
                    child_id=topic.child_id,
                    title=topic.title,
                    description=topic.description,
                    child_age=topic.child_age,
                    status=topic.status.value,
                    current_section=topic.current_section,
                    created_at=topic.created_at,
                )
            )
            for outline in topic.sections:
                session.add(
                    SectionOutlineRow(
                        topic_id=topic.topic_id,
                        section_index=outline.index,
                        title=outline.title,
                        description=outline.description,
                        estimated_reading_time=outline.estimated_reading_time,
                    )
                )
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ValueError(f"Topic '{topic.topic_id}' already exists.") from exc
        return topic

    def update(self, topic: Topic) -> Topic:
        with _session(self._engine) as session:
            row = session.get(TopicRow, topic.topic_id)
            if row is None:
                raise PersistenceFailure(f"Topic '{topic.topic_id}' is missing from the store.")
            row.status = topic.status.value
            row.current_section = topic.current_section
            session.add(row)
            session.commit()
        return topic

    def list(self, *, child_id: str | None = None) -> Tuple[Topic, ...]:
        with _session(self._engine) as session:
            query = select(TopicRow).order_by(TopicRow.created_at)
            if child_id is not None:
                query = query.where(TopicRow.child_id == child_id)
            return tuple(self._to_topic(session, row) for row in session.exec(query).all())

    def _to_topic(self, session: Session, row: TopicRow) -> Topic:
        outlines = session.exec(
            select(SectionOutlineRow)
            .where(SectionOutlineRow.topic_id == row.id)
            .order_by(SectionOutlineRow.section_index)
        ).all()
        return Topic(
            title=row.title,
            sections=tuple(
                SectionOutline(
                    index=item.section_index,
                    title=item.title,
                    description=item.description,
                    estimated_reading_time=item.estimated_reading_time,
                )
                for item in outlines
            ),
            child_age=row.child_age,
            description=row.description,
            child_id=row.child_id,
            topic_id=row.id,
            status=TopicStatus(row.status),
            current_section=row.current_section,
            created_at=row.created_at,
        )


class SqlContentStore:
    """Put-if-absent storage enforced by a unique (topic, section) constraint."""

    def __init__(self, bind: Engine | None = None) -> None:
        self._engine = bind or engine

    def get(self, topic_id: str, section_index: int) -> Optional[SectionContent]:
        with _session(self._engine) as session:
            row = self._find(session, topic_id, section_index)
            return self._to_content(row) if row else None

    def put_if_absent(self, content: SectionContent) -> SectionContent:
        with _session(self._engine) as session:
            session.add(
                SectionContentRow(
                    topic_id=content.topic_id,
                    section_index=content.section_index,
                    title=content.title,
                    content=content.content,
                    facts_json=json.dumps(list(content.facts)),
                    image_ref=content.image_ref,
                    story_mode_content=content.story_mode_content,
                    word_count=content.word_count,
                    generated_at=content.generated_at,
                )
            )
            try:
                session.commit()
                return content
            except IntegrityError:
                session.rollback()
            row = self._find(session, content.topic_id, content.section_index)
            if row is None:
                raise PersistenceFailure("Section content conflicted but could not be read back.")
            return self._to_content(row)

    def delete(self, topic_id: str, section_index: int) -> bool:
        with _session(self._engine) as session:
            row = self._find(session, topic_id, section_index)
            if row is None:
                return False
            session.delete(row)
            session.commit()
            return True

    def attach_image(self, topic_id: str, section_index: int, image_ref: str) -> Optional[SectionContent]:
        with _session(self._engine) as session:
            row = self._find(session, topic_id, section_index)
            if row is None:
                return None
            row.image_ref = image_ref
            session.add(row)
            session.commit()
            return self._to_content(row)

    @staticmethod
    def _find(session: Session, topic_id: str, section_index: int) -> Optional[SectionContentRow]:
        return session.exec(
            select(SectionContentRow).where(
                SectionContentRow.topic_id == topic_id,
                SectionContentRow.section_index == section_index,
            )
        ).first()

    @staticmethod
    def _to_content(row: SectionContentRow) -> SectionContent:
        return SectionContent(
            topic_id=row.topic_id,
            section_index=row.section_index,
            title=row.title,
            content=row.content,
            facts=tuple(json.loads(row.facts_json or "[]")),
            image_ref=row.image_ref,
            story_mode_content=row.story_mode_content,
            word_count=row.word_count,
            generated_at=row.generated_at,
        )


class SqlProgressStore:
    """Completed sections are rows, so concurrent completions merge as a set union."""

    def __init__(self, bind: Engine | None = None) -> None:
        self._engine = bind or engine

    def get(self, child_id: str, topic_id: str) -> Optional[ProgressRecord]:
        with _session(self._engine) as session:
            row = self._find(session, child_id, topic_id)
            return self._load(session, row) if row else None

    def add_completed_section(
        self, child_id: str, topic_id: str, total_sections: int, section_index: int
    ) -> Tuple[ProgressRecord, bool]:
        with _session(self._engine) as session:
            row = self._ensure(session, child_id, topic_id, total_sections)
            session.add(SectionCompletionRow(child_id=child_id, topic_id=topic_id, section_index=section_index))
            try:
                session.commit()
                newly = True
            except IntegrityError:
                session.rollback()
                newly = False
            return self._load(session, row), newly

    def set_flags(
        self,
        child_id: str,
        topic_id: str,
        *,
        quiz_completed: bool | None = None,
        certificate_issued: bool | None = None,
    ) -> ProgressRecord:
        with _session(self._engine) as session:
            row = self._find(session, child_id, topic_id)
            if row is None:
                raise PersistenceFailure(f"No progress stored for {child_id}/{topic_id}.")
            row.quiz_completed = row.quiz_completed or bool(quiz_completed)
            row.certificate_issued = row.certificate_issued or bool(certificate_issued)
            session.add(row)
            session.commit()
            return self._load(session, row)

    def list_for_child(self, child_id: str) -> Tuple[ProgressRecord, ...]:
        with _session(self._engine) as session:
            rows = session.exec(select(ProgressRow).where(ProgressRow.child_id == child_id)).all()
            return tuple(self._load(session, row) for row in rows)

    def _ensure(self, session: Session, child_id: str, topic_id: str, total_sections: int) -> ProgressRow:
        row = self._find(session, child_id, topic_id)
        if row is not None:
            return row
        row = ProgressRow(child_id=child_id, topic_id=topic_id, total_sections=total_sections)
        session.add(row)
        try:
            session.commit()
            return row
        except IntegrityError:
            session.rollback()
        existing = self._find(session, child_id, topic_id)
        if existing is None:
            raise PersistenceFailure(f"Progress row for {child_id}/{topic_id} could not be created.")
        return existing

    @staticmethod
    def _find(session: Session, child_id: str, topic_id: str) -> Optional[ProgressRow]:
        return session.exec(
            select(ProgressRow).where(ProgressRow.child_id == child_id, ProgressRow.topic_id == topic_id)
        ).first()

    @staticmethod
    def _load(session: Session, row: ProgressRow) -> ProgressRecord:
        indices = session.exec(
            select(SectionCompletionRow.section_index).where(
                SectionCompletionRow.child_id == row.child_id,
                SectionCompletionRow.topic_id == row.topic_id,
            )
        ).all()
        return ProgressRecord(
            child_id=row.child_id,
            topic_id=row.topic_id,
            total_sections=row.total_sections,
            completed_sections=frozenset(indices),
            quiz_completed=row.quiz_completed,
            certificate_issued=row.certificate_issued,
        )


class SqlLedgerStore:
    """Append-only inserts; the balance is an aggregate over the child's rows."""

    def __init__(self, bind: Engine | None = None) -> None:
        self._engine = bind or engine

    def append(self, transaction: LedgerTransaction) -> LedgerTransaction:
        with _session(self._engine) as session:
            session.add(
                LedgerEntry(
                    transaction_id=transaction.transaction_id,
                    child_id=transaction.child_id,
                    amount=transaction.amount,
                    reason=transaction.reason,
                    topic_id=transaction.topic_id,
                    meta_json=json.dumps(transaction.metadata, sort_keys=True),
                    created_at=transaction.created_at,
                )
            )
            session.commit()
        return transaction

    def sum_for(self, child_id: str) -> int:
        with _session(self._engine) as session:
            total = session.exec(
                select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(LedgerEntry.child_id == child_id)
            ).one()
            return int(total)

    def list_for(
        self,
        child_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> Tuple[LedgerTransaction, ...]:
        if limit is not None and limit < 0:
            raise ValueError("limit must not be negative")
        with _session(self._engine) as session:
            query = select(LedgerEntry).where(LedgerEntry.child_id == child_id)
            if start is not None:
                query = query.where(LedgerEntry.created_at >= start)
            if end is not None:
                query = query.where(LedgerEntry.created_at <= end)
            query = query.order_by(desc(LedgerEntry.created_at), desc(LedgerEntry.id))
            if limit is not None:
                query = query.limit(limit)
            rows: List[LedgerEntry] = list(session.exec(query).all())
        rows.reverse()
        return tuple(
            LedgerTransaction(
                child_id=row.child_id,
                amount=row.amount,
                reason=row.reason,
                transaction_id=row.transaction_id,
                created_at=row.created_at,
                topic_id=row.topic_id,
                metadata=json.loads(row.meta_json or "{}"),
            )
            for row in rows
        )


class SqlStreakStore:
    def __init__(self, bind: Engine | None = None) -> None:
        self._engine = bind or engine

    def get(self, child_id: str) -> Optional[StreakState]:
        with _session(self._engine) as session:
            row = session.get(StreakRow, child_id)
            if row is None:
                return None
            return StreakState(
                child_id=row.child_id,
                count=row.count,
                last_activity=row.last_activity,
                freeze_available=row.freeze_available,
                freeze_used_today=row.freeze_used_today,
                freeze_used_on=row.freeze_used_on,
            )

    def save(self, state: StreakState) -> StreakState:
        with _session(self._engine) as session:
            row = session.get(StreakRow, state.child_id) or StreakRow(child_id=state.child_id)
            row.count = state.count
            row.last_activity = state.last_activity
            row.freeze_available = state.freeze_available
            row.freeze_used_today = state.freeze_used_today
            row.freeze_used_on = state.freeze_used_on
            session.add(row)
            session.commit()
        return state


class SqlAchievementStore:
    """Earned ids as rows; the unique constraint decides which process announces a badge."""

    def __init__(self, bind: Engine | None = None) -> None:
        self._engine = bind or engine

    def earned(self, child_id: str) -> FrozenSet[str]:
        with _session(self._engine) as session:
            ids = session.exec(
                select(AchievementRow.achievement_id).where(AchievementRow.child_id == child_id)
            ).all()
            return frozenset(ids)

    def record(self, child_id: str, earned: Iterable[str]) -> FrozenSet[str]:
        current = frozenset(earned)
        added = set()
        with _session(self._engine) as session:
            rows = session.exec(select(AchievementRow).where(AchievementRow.child_id == child_id)).all()
            stored = {row.achievement_id for row in rows}
            for row in rows:
                if row.achievement_id not in current:
                    session.delete(row)
            session.commit()
            for achievement_id in sorted(current - stored):
                session.add(AchievementRow(child_id=child_id, achievement_id=achievement_id))
                try:
                    session.commit()
                    added.add(achievement_id)
                except IntegrityError:
                    session.rollback()
        return frozenset(added)


__all__ = [
    "AchievementRow",
    "LedgerEntry",
    "ProgressRow",
    "SectionCompletionRow",
    "SectionContentRow",
    "SectionOutlineRow",
    "SqlAchievementStore",
    "SqlContentStore",
    "SqlLedgerStore",
    "SqlProgressStore",
    "SqlStreakStore",
    "SqlTopicStore",
    "StreakRow",
    "TopicRow",
    "create_db_and_tables",
    "create_engine_for",
    "engine",
]
