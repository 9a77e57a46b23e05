"""Sequential section unlocking as an explicit finite-state machine."""

from __future__ import annotations

from dataclasses import replace
from threading import Lock
from typing import Dict, FrozenSet, Mapping, Optional, Protocol, Tuple

from .exceptions import SequenceViolation
from .models import ProgressAction, ProgressRecord, ProgressState, SectionCompletion, Topic

# Every legal (state, action) pair and the state it may lead to. Anything not
# listed here is rejected with SequenceViolation.
TRANSITIONS: Mapping[Tuple[ProgressState, ProgressAction], FrozenSet[ProgressState]] = {
    (ProgressState.NOT_STARTED, ProgressAction.COMPLETE_SECTION): frozenset(
        {ProgressState.IN_PROGRESS, ProgressState.QUIZ_READY}
    ),
    (ProgressState.IN_PROGRESS, ProgressAction.COMPLETE_SECTION): frozenset(
        {ProgressState.IN_PROGRESS, ProgressState.QUIZ_READY}
    ),
    (ProgressState.QUIZ_READY, ProgressAction.COMPLETE_QUIZ): frozenset({ProgressState.QUIZ_DONE}),
    (ProgressState.QUIZ_DONE, ProgressAction.ISSUE_CERTIFICATE): frozenset({ProgressState.CERTIFICATE_ISSUED}),
}


def check_transition(current: ProgressState, action: ProgressAction, target: ProgressState) -> None:
    allowed = TRANSITIONS.get((current, action))
    if not allowed or target not in allowed:
        raise SequenceViolation(f"Cannot {action.value.replace('_', ' ')} while {current.value}.")


class ProgressStore(Protocol):
    def get(self, child_id: str, topic_id: str) -> Optional[ProgressRecord]: ...

    def add_completed_section(
        self, child_id: str, topic_id: str, total_sections: int, section_index: int
    ) -> Tuple[ProgressRecord, bool]:
        """Union ``section_index`` into the completed set; report whether it was new."""
        ...

    def set_flags(
        self,
        child_id: str,
        topic_id: str,
        *,
        quiz_completed: bool | None = None,
        certificate_issued: bool | None = None,
    ) -> ProgressRecord: ...

    def list_for_child(self, child_id: str) -> Tuple[ProgressRecord, ...]: ...


class InMemoryProgressStore:
    def __init__(self) -> None:
        self._records: Dict[Tuple[str, str], ProgressRecord] = {}
        self._lock = Lock()

    def get(self, child_id: str, topic_id: str) -> Optional[ProgressRecord]:
        with self._lock:
            return self._records.get((child_id, topic_id))

    def add_completed_section(
        self, child_id: str, topic_id: str, total_sections: int, section_index: int
    ) -> Tuple[ProgressRecord, bool]:
        key = (child_id, topic_id)
        with self._lock:
            record = self._records.get(key) or ProgressRecord(child_id, topic_id, total_sections)
            if section_index in record.completed_sections:
                return record, False
            record = replace(record, completed_sections=record.completed_sections | {section_index})
            self._records[key] = record
            return record, True

    def set_flags(
        self,
        child_id: str,
        topic_id: str,
        *,
        quiz_completed: bool | None = None,
        certificate_issued: bool | None = None,
    ) -> ProgressRecord:
        key = (child_id, topic_id)
        with self._lock:
            record = self._records[key]
            record = replace(
                record,
                quiz_completed=record.quiz_completed or bool(quiz_completed),
                certificate_issued=record.certificate_issued or bool(certificate_issued),
            )
            self._records[key] = record
            return record

    def list_for_child(self, child_id: str) -> Tuple[ProgressRecord, ...]:
        with self._lock:
            return tuple(record for (child, _), record in self._records.items() if child == child_id)


class ProgressTracker:
    """Enforce sequential section availability per (child, topic)."""

    def __init__(self, store: ProgressStore | None = None) -> None:
        self._store = store if store is not None else InMemoryProgressStore()

    def get(self, child_id: str, topic: Topic) -> ProgressRecord:
        record = self._store.get(child_id, topic.topic_id)
        return record or ProgressRecord(child_id, topic.topic_id, topic.total_sections)

    def state(self, child_id: str, topic: Topic) -> ProgressState:
        return self.get(child_id, topic).state

    def can_enter(self, child_id: str, topic: Topic, section_index: int) -> bool:
        """Sections are enterable once their predecessor is complete; reviews always are."""

        topic.section(section_index)
        record = self.get(child_id, topic)
        return (
            section_index == 0
            or section_index in record.completed_sections
            or (section_index - 1) in record.completed_sections
        )

    def available_sections(self, child_id: str, topic: Topic) -> Tuple[int, ...]:
        return tuple(index for index in range(topic.total_sections) if self.can_enter(child_id, topic, index))

    def complete_section(self, child_id: str, topic: Topic, section_index: int) -> SectionCompletion:
        topic.section(section_index)
        record = self.get(child_id, topic)
        if section_index in record.completed_sections:
            return SectionCompletion(record=record, section_index=section_index, newly_completed=False)
        if section_index != 0 and (section_index - 1) not in record.completed_sections:
            raise SequenceViolation(
                f"Section {section_index} of '{topic.title}' is locked until section {section_index - 1} is complete."
            )
        projected = replace(record, completed_sections=record.completed_sections | {section_index})
        check_transition(record.state, ProgressAction.COMPLETE_SECTION, projected.state)
        updated, newly = self._store.add_completed_section(
            child_id, topic.topic_id, topic.total_sections, section_index
        )
        return SectionCompletion(record=updated, section_index=section_index, newly_completed=newly)

    def complete_quiz(self, child_id: str, topic: Topic) -> ProgressRecord:
        record = self.get(child_id, topic)
        check_transition(record.state, ProgressAction.COMPLETE_QUIZ, ProgressState.QUIZ_DONE)
        return self._store.set_flags(child_id, topic.topic_id, quiz_completed=True)

    def issue_certificate(self, child_id: str, topic: Topic) -> ProgressRecord:
        record = self.get(child_id, topic)
        check_transition(record.state, ProgressAction.ISSUE_CERTIFICATE, ProgressState.CERTIFICATE_ISSUED)
        return self._store.set_flags(child_id, topic.topic_id, certificate_issued=True)

    def records_for(self, child_id: str) -> Tuple[ProgressRecord, ...]:
        return self._store.list_for_child(child_id)


__all__ = [
    "InMemoryProgressStore",
    "ProgressStore",
    "ProgressTracker",
    "TRANSITIONS",
    "check_transition",
]
