"""Section content caching, generation and fallback synthesis."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeout, wait
from dataclasses import replace
from threading import Lock
from typing import Dict, Optional, Protocol, Set, Tuple

from .exceptions import GenerationFailure, PersistenceFailure
from .flags import FeatureFlagRegistry
from .models import GeneratedContent, SectionContent, SectionOutline, Topic
from .ops import HealthMonitor, StructuredLogger

SectionKey = Tuple[str, int]

DEFAULT_GENERATION_TIMEOUT = 20.0
IMAGE_EXCERPT_CHARS = 500


class ContentGenerator(Protocol):
    def generate(
        self,
        section_title: str,
        section_description: str,
        topic_title: str,
        child_age: int,
    ) -> GeneratedContent: ...


class ImageGenerator(Protocol):
    def generate_image(self, section_title: str, content_excerpt: str, child_age: int) -> str: ...


class ContentStore(Protocol):
    """Key-value persistence of generated sections keyed by (topic, index)."""

    def get(self, topic_id: str, section_index: int) -> Optional[SectionContent]: ...

    def put_if_absent(self, content: SectionContent) -> SectionContent:
        """Persist ``content`` unless a record exists; return the surviving record."""
        ...

    def delete(self, topic_id: str, section_index: int) -> bool: ...

    def attach_image(self, topic_id: str, section_index: int, image_ref: str) -> Optional[SectionContent]: ...


class InMemoryContentStore:
    """Thread-safe dictionary backed :class:`ContentStore`."""

    def __init__(self) -> None:
        self._items: Dict[SectionKey, SectionContent] = {}
        self._lock = Lock()

    def get(self, topic_id: str, section_index: int) -> Optional[SectionContent]:
        with self._lock:
            return self._items.get((topic_id, section_index))

    def put_if_absent(self, content: SectionContent) -> SectionContent:
        with self._lock:
            return self._items.setdefault((content.topic_id, content.section_index), content)

    def delete(self, topic_id: str, section_index: int) -> bool:
        with self._lock:
            return self._items.pop((topic_id, section_index), None) is not None

    def attach_image(self, topic_id: str, section_index: int, image_ref: str) -> Optional[SectionContent]:
        with self._lock:
            existing = self._items.get((topic_id, section_index))
            if existing is None:
                return None
            updated = replace(existing, image_ref=image_ref)
            self._items[(topic_id, section_index)] = updated
            return updated

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def build_fallback_content(topic: Topic, outline: SectionOutline, child_age: int) -> SectionContent:
    """Return a deterministic placeholder built only from outline fields."""

    description = outline.description.strip() or "This section explores the amazing world of this topic."
    if child_age <= 8:
        closing = "Keep asking questions and exploring!"
        facts = (
            "Scientists love learning about this topic too!",
            "This connects to so many other cool things!",
            "You can find examples of this everywhere!",
        )
    elif child_age <= 12:
        closing = "Remember, every expert was once a beginner. Keep learning!"
        facts = (
            "This topic has been studied for many years by scientists",
            "New discoveries are made about this subject regularly",
            "This knowledge helps us solve real-world problems",
        )
    else:
        closing = "Continue your journey of discovery and never stop questioning the world around you."
        facts = (
            "This field of study continues to evolve with new research",
            "Understanding this topic provides insights into broader scientific principles",
            "This knowledge has practical applications across multiple disciplines",
        )
    body = "\n\n".join(
        [
            f"{outline.title} is a fascinating part of {topic.title}!",
            description,
            "There are so many incredible things to discover about this subject. Scientists and "
            "researchers keep making new discoveries that help us understand how our world works.",
            closing,
        ]
    )
    return SectionContent(
        topic_id=topic.topic_id,
        section_index=outline.index,
        title=outline.title,
        content=body,
        facts=facts,
        is_fallback=True,
    )


def validate_generated(payload: object) -> GeneratedContent:
    """Reject malformed generator payloads with :class:`GenerationFailure`."""

    if not isinstance(payload, GeneratedContent):
        raise GenerationFailure(f"Generator returned {type(payload).__name__}, expected GeneratedContent.")
    if not isinstance(payload.content, str) or not payload.content.strip():
        raise GenerationFailure("Generator returned empty content.")
    if not all(isinstance(fact, str) for fact in payload.facts):
        raise GenerationFailure("Generator returned non-text facts.")
    return payload


class SectionCacheResolver:
    """Return cached section content, generating and persisting it on a miss.

    Generation failures never reach the caller: a fallback payload is
    synthesised from the outline, memoised for this resolver and never
    written to the store, so a later :meth:`retry_section` can still produce
    real content. Store errors are not masked.
    """

    def __init__(
        self,
        store: ContentStore,
        generator: ContentGenerator,
        *,
        image_generator: ImageGenerator | None = None,
        timeout_seconds: float = DEFAULT_GENERATION_TIMEOUT,
        logger: StructuredLogger | None = None,
        health: HealthMonitor | None = None,
        flags: FeatureFlagRegistry | None = None,
        max_workers: int = 4,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be greater than zero.")
        self._store = store
        self._generator = generator
        self._image_generator = image_generator
        self._timeout = timeout_seconds
        self._logger = logger or StructuredLogger()
        self._health = health or HealthMonitor()
        self._flags = flags or FeatureFlagRegistry()
        self._generation_pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="wonderwhiz-gen")
        self._enrichment_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="wonderwhiz-img")
        self._fallbacks: Dict[SectionKey, SectionContent] = {}
        self._enrichments: Set[Future] = set()
        self._lock = Lock()

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def resolve_section(
        self,
        topic: Topic,
        section_index: int,
        child_age: int | None = None,
        *,
        refresh: bool = False,
    ) -> SectionContent:
        outline = topic.section(section_index)
        age = topic.child_age if child_age is None else child_age
        key = (topic.topic_id, section_index)
        if refresh:
            with self._lock:
                self._fallbacks.pop(key, None)

        cached = self._read(key)
        if cached is not None:
            self._health.record_cache_hit()
            self._logger.log("section_cache_hit", topic=topic.topic_id, section=section_index)
            return cached

        with self._lock:
            remembered = self._fallbacks.get(key)
        if remembered is not None:
            return remembered

        try:
            generated = self._generate(topic, outline, age)
        except GenerationFailure as exc:
            self._health.record_generation(succeeded=False)
            self._logger.log(
                "generation_failed",
                topic=topic.topic_id,
                section=section_index,
                error=str(exc),
            )
            fallback = build_fallback_content(topic, outline, age)
            with self._lock:
                fallback = self._fallbacks.setdefault(key, fallback)
            return fallback

        self._health.record_generation(succeeded=True)
        content = SectionContent(
            topic_id=topic.topic_id,
            section_index=section_index,
            title=outline.title,
            content=generated.content,
            facts=generated.facts,
            image_ref=generated.image_ref,
            story_mode_content=generated.story_mode_content,
            word_count=generated.word_count,
        )
        stored = self._store.put_if_absent(content)
        with self._lock:
            self._fallbacks.pop(key, None)
        self._logger.log(
            "section_generated",
            topic=topic.topic_id,
            section=section_index,
            word_count=stored.word_count,
        )
        self._schedule_enrichment(stored, age)
        return stored

    def retry_section(self, topic: Topic, section_index: int, child_age: int | None = None) -> SectionContent:
        """Drop a remembered fallback and run the miss path again."""

        return self.resolve_section(topic, section_index, child_age, refresh=True)

    def invalidate_section(self, topic: Topic, section_index: int) -> bool:
        """Delete persisted content so the next resolve regenerates it."""

        topic.section(section_index)
        with self._lock:
            self._fallbacks.pop((topic.topic_id, section_index), None)
        removed = self._store.delete(topic.topic_id, section_index)
        self._logger.log("section_invalidated", topic=topic.topic_id, section=section_index, removed=removed)
        return removed

    def has_fallback(self, topic_id: str, section_index: int) -> bool:
        with self._lock:
            return (topic_id, section_index) in self._fallbacks

    def pending_enrichments(self) -> int:
        with self._lock:
            return len(self._enrichments)

    def wait_for_enrichments(self, timeout: float | None = None) -> int:
        """Block until scheduled image enrichments finish; returns how many are still running."""

        with self._lock:
            pending = list(self._enrichments)
        if not pending:
            return 0
        _, running = wait(pending, timeout=timeout)
        return len(running)

    def close(self) -> None:
        self._generation_pool.shutdown(wait=False, cancel_futures=True)
        self._enrichment_pool.shutdown(wait=True)

    def _read(self, key: SectionKey) -> Optional[SectionContent]:
        try:
            cached = self._store.get(*key)
        except PersistenceFailure:
            self._health.record_store_failure()
            raise
        self._health.record_store_success()
        return cached

    def _generate(self, topic: Topic, outline: SectionOutline, child_age: int) -> GeneratedContent:
        future = self._generation_pool.submit(
            self._generator.generate,
            outline.title,
            outline.description,
            topic.title,
            child_age,
        )
        try:
            payload = future.result(timeout=self._timeout)
        except FuturesTimeout as exc:
            future.cancel()
            raise GenerationFailure(f"Content generation timed out after {self._timeout:g}s.") from exc
        except GenerationFailure:
            raise
        except Exception as exc:
            raise GenerationFailure(f"Content generator raised {type(exc).__name__}: {exc}") from exc
        return validate_generated(payload)

    def _schedule_enrichment(self, content: SectionContent, child_age: int) -> None:
        if self._image_generator is None or content.image_ref or content.is_fallback:
            return
        if not self._flags.is_enabled("image_enrichment"):
            return
        future = self._enrichment_pool.submit(self._enrich, content, child_age)
        with self._lock:
            self._enrichments.add(future)
        future.add_done_callback(self._forget_enrichment)

    def _forget_enrichment(self, future: Future) -> None:
        with self._lock:
            self._enrichments.discard(future)

    def _enrich(self, content: SectionContent, child_age: int) -> Optional[str]:
        assert self._image_generator is not None
        try:
            image_ref = self._image_generator.generate_image(
                content.title,
                content.content[:IMAGE_EXCERPT_CHARS],
                child_age,
            )
            if not image_ref:
                raise GenerationFailure("Image generator returned no reference.")
            self._store.attach_image(content.topic_id, content.section_index, image_ref)
        except Exception as exc:
            # Enrichment is best effort; the text content has already been served.
            self._logger.log(
                "image_enrichment_failed",
                topic=content.topic_id,
                section=content.section_index,
                error=str(exc),
            )
            return None
        self._logger.log("image_enriched", topic=content.topic_id, section=content.section_index)
        return image_ref


__all__ = [
    "ContentGenerator",
    "ContentStore",
    "DEFAULT_GENERATION_TIMEOUT",
    "ImageGenerator",
    "InMemoryContentStore",
    "SectionCacheResolver",
    "build_fallback_content",
    "validate_generated",
]
