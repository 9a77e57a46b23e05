"""Topic planning helpers and topic storage."""

from __future__ import annotations

from threading import Lock
from typing import Dict, Mapping, Optional, Protocol, Sequence, Tuple, Union

from .models import SectionOutline, Topic

OutlineLike = Union[SectionOutline, Mapping[str, object], str]


class TopicStore(Protocol):
    def get(self, topic_id: str) -> Optional[Topic]: ...

    def add(self, topic: Topic) -> Topic: ...

    def update(self, topic: Topic) -> Topic:
        """Persist status and current_section changes of an existing topic."""
        ...

    def list(self, *, child_id: str | None = None) -> Tuple[Topic, ...]: ...


class InMemoryTopicStore:
    def __init__(self) -> None:
        self._topics: Dict[str, Topic] = {}
        self._lock = Lock()

    def get(self, topic_id: str) -> Optional[Topic]:
        with self._lock:
            return self._topics.get(topic_id)

    def add(self, topic: Topic) -> Topic:
        with self._lock:
            if topic.topic_id in self._topics:
                raise ValueError(f"Topic '{topic.topic_id}' already exists.")
            self._topics[topic.topic_id] = topic
        return topic

    def update(self, topic: Topic) -> Topic:
        with self._lock:
            self._topics[topic.topic_id] = topic
        return topic

    def list(self, *, child_id: str | None = None) -> Tuple[Topic, ...]:
        with self._lock:
            topics = list(self._topics.values())
        if child_id is not None:
            topics = [topic for topic in topics if topic.child_id == child_id]
        return tuple(sorted(topics, key=lambda topic: topic.created_at))


def build_outline(sections: Sequence[OutlineLike]) -> Tuple[SectionOutline, ...]:
    """Normalise outline entries given as objects, mappings or bare titles."""

    outline = []
    for index, entry in enumerate(sections):
        if isinstance(entry, SectionOutline):
            if entry.index != index:
                raise ValueError("Section indices must be 0-based and contiguous.")
            outline.append(entry)
        elif isinstance(entry, str):
            outline.append(SectionOutline(index=index, title=entry))
        else:
            outline.append(
                SectionOutline(
                    index=index,
                    title=str(entry.get("title", "")),
                    description=str(entry.get("description", "") or ""),
                    estimated_reading_time=int(entry.get("estimated_reading_time", 5) or 5),
                )
            )
    return tuple(outline)


__all__ = ["InMemoryTopicStore", "TopicStore", "build_outline"]
