"""FastAPI frontend for the WonderWhiz learning service.

The web application exposes topics, sequential section unlocking, the sparks
ledger, login streaks and achievements as a small JSON API.  Persistence lives
in :mod:`wonderwhiz.webapp.persistence` and settings in
:mod:`wonderwhiz.webapp.config`, so ``uvicorn wonderwhiz.webapp:app`` works
without further wiring.
"""

from __future__ import annotations

from threading import Lock
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..api import ApiExporter
from ..exceptions import (
    GenerationFailure,
    PersistenceFailure,
    SequenceViolation,
    TopicNotFoundError,
)
from ..flags import FeatureFlagRegistry, parse_overrides
from ..generator import HttpContentGenerator, HttpImageGenerator
from ..ops import StructuredLogger
from ..service import WonderWhiz
from .config import (
    CELEBRATION_COOLDOWN,
    FEATURE_FLAGS,
    GENERATION_TIMEOUT_SECONDS,
    GENERATOR_MODEL,
    GENERATOR_URL,
    GROQ_API_KEY,
    IMAGE_GENERATOR_URL,
    LOG_PATH,
)
from .persistence import (
    SqlAchievementStore,
    SqlContentStore,
    SqlLedgerStore,
    SqlProgressStore,
    SqlStreakStore,
    SqlTopicStore,
    create_db_and_tables,
    engine,
)


# ---------------------------------------------------------------------------
# FastAPI application setup
# ---------------------------------------------------------------------------
app = FastAPI(title="WonderWhiz")

_exporter = ApiExporter()
_service: Optional[WonderWhiz] = None
_service_lock = Lock()


def build_service(bind=None) -> WonderWhiz:
    """Wire a :class:`WonderWhiz` against the SQL stores and HTTP generators."""

    bind = bind or engine
    create_db_and_tables(bind)
    return WonderWhiz(
        generator=HttpContentGenerator(api_key=GROQ_API_KEY, url=GENERATOR_URL, model=GENERATOR_MODEL),
        image_generator=HttpImageGenerator(url=IMAGE_GENERATOR_URL) if IMAGE_GENERATOR_URL else None,
        topic_store=SqlTopicStore(bind),
        content_store=SqlContentStore(bind),
        progress_store=SqlProgressStore(bind),
        ledger_store=SqlLedgerStore(bind),
        streak_store=SqlStreakStore(bind),
        achievement_store=SqlAchievementStore(bind),
        generation_timeout=GENERATION_TIMEOUT_SECONDS,
        celebration_cooldown=CELEBRATION_COOLDOWN,
        flags=FeatureFlagRegistry(parse_overrides(FEATURE_FLAGS)),
        logger=StructuredLogger(path=LOG_PATH or None),
    )


def get_service() -> WonderWhiz:
    global _service
    with _service_lock:
        if _service is None:
            _service = build_service()
        return _service


def set_service(service: Optional[WonderWhiz]) -> None:
    """Swap the active service; ``None`` rebuilds it on the next request."""

    global _service
    with _service_lock:
        previous, _service = _service, service
    if previous is not None and previous is not service:
        previous.close()


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class SectionIn(BaseModel):
    title: str
    description: str = ""
    estimated_reading_time: int = 5


class TopicIn(BaseModel):
    title: str
    child_age: int = Field(ge=1, le=18)
    description: str = ""
    child_id: Optional[str] = None
    sections: List[SectionIn]


class QuizIn(BaseModel):
    correct_answers: int = Field(default=0, ge=0)


class SparksIn(BaseModel):
    trigger: str
    reason: Optional[str] = None
    topic_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": type(exc).__name__, "detail": str(exc)})


@app.exception_handler(TopicNotFoundError)
async def _topic_not_found(request: Request, exc: TopicNotFoundError) -> JSONResponse:
    return _error(404, exc)


@app.exception_handler(SequenceViolation)
async def _sequence_violation(request: Request, exc: SequenceViolation) -> JSONResponse:
    return _error(409, exc)


@app.exception_handler(GenerationFailure)
async def _generation_failure(request: Request, exc: GenerationFailure) -> JSONResponse:
    return _error(502, exc)


@app.exception_handler(PersistenceFailure)
async def _persistence_failure(request: Request, exc: PersistenceFailure) -> JSONResponse:
    return _error(503, exc)


@app.exception_handler(ValueError)
async def _bad_request(request: Request, exc: ValueError) -> JSONResponse:
    return _error(400, exc)


# ---------------------------------------------------------------------------
# Topics and sections
# ---------------------------------------------------------------------------
@app.get("/health")
def health() -> Dict[str, Any]:
    service = get_service()
    return {**service.health.status(), "flags": service.flags.as_dict()}


@app.post("/topics", status_code=201)
def create_topic(body: TopicIn) -> Dict[str, Any]:
    topic = get_service().create_topic(
        body.title,
        [section.model_dump() for section in body.sections],
        child_age=body.child_age,
        description=body.description,
        child_id=body.child_id,
    )
    return _exporter.topic(topic)


@app.get("/topics")
def list_topics(child_id: Optional[str] = Query(default=None)) -> List[Dict[str, Any]]:
    return [_exporter.topic(topic) for topic in get_service().topics(child_id=child_id)]


@app.get("/topics/{topic_id}")
def get_topic(topic_id: str) -> Dict[str, Any]:
    return _exporter.topic(get_service().get_topic(topic_id))


@app.get("/topics/{topic_id}/sections/{section_index}")
def read_section(
    topic_id: str,
    section_index: int,
    child_id: Optional[str] = Query(default=None),
    child_age: Optional[int] = Query(default=None),
) -> Dict[str, Any]:
    service = get_service()
    if child_id is not None:
        content = service.open_section(child_id, topic_id, section_index)
    else:
        content = service.resolve_section(topic_id, section_index, child_age)
    return _exporter.section(content)


@app.post("/topics/{topic_id}/sections/{section_index}/retry")
def retry_section(topic_id: str, section_index: int, child_age: Optional[int] = Query(default=None)) -> Dict[str, Any]:
    return _exporter.section(get_service().retry_section(topic_id, section_index, child_age))


@app.delete("/topics/{topic_id}/sections/{section_index}")
def invalidate_section(topic_id: str, section_index: int) -> Dict[str, Any]:
    return {"invalidated": get_service().invalidate_section(topic_id, section_index)}


# ---------------------------------------------------------------------------
# Child progress
# ---------------------------------------------------------------------------
@app.get("/children/{child_id}/topics/{topic_id}/progress")
def read_progress(child_id: str, topic_id: str) -> Dict[str, Any]:
    service = get_service()
    payload = _exporter.progress(service.progress(child_id, topic_id))
    payload["available_sections"] = list(service.available_sections(child_id, topic_id))
    return payload


@app.post("/children/{child_id}/topics/{topic_id}/sections/{section_index}/complete")
def complete_section(child_id: str, topic_id: str, section_index: int) -> Dict[str, Any]:
    outcome = get_service().complete_section(child_id, topic_id, section_index)
    return {
        "progress": _exporter.progress(outcome.completion.record),
        "newly_completed": outcome.completion.newly_completed,
        "transaction": _exporter.transaction(outcome.transaction) if outcome.transaction else None,
        "streak": _exporter.streak(outcome.streak.state) if outcome.streak else None,
        "newly_earned": [
            _exporter.achievement(item) for item in (outcome.evaluation.newly_earned if outcome.evaluation else ())
        ],
    }


@app.post("/children/{child_id}/topics/{topic_id}/quiz")
def complete_quiz(child_id: str, topic_id: str, body: QuizIn) -> Dict[str, Any]:
    record = get_service().complete_quiz(child_id, topic_id, correct_answers=body.correct_answers)
    return _exporter.progress(record)


@app.post("/children/{child_id}/topics/{topic_id}/certificate")
def issue_certificate(child_id: str, topic_id: str) -> Dict[str, Any]:
    return _exporter.progress(get_service().issue_certificate(child_id, topic_id))


# ---------------------------------------------------------------------------
# Sparks, streaks and achievements
# ---------------------------------------------------------------------------
@app.get("/children/{child_id}/sparks")
def read_sparks(child_id: str, limit: Optional[int] = Query(default=None, ge=0)) -> Dict[str, Any]:
    service = get_service()
    return {
        "child_id": child_id,
        "balance": service.balance(child_id),
        "history": [_exporter.transaction(item) for item in service.history(child_id, limit=limit)],
    }


@app.post("/children/{child_id}/sparks", status_code=201)
def award_sparks(child_id: str, body: SparksIn) -> Dict[str, Any]:
    service = get_service()
    transaction = service.award_sparks(child_id, body.trigger, reason=body.reason, topic_id=body.topic_id)
    return {"transaction": _exporter.transaction(transaction), "balance": service.balance(child_id)}


@app.post("/children/{child_id}/streak")
def track_streak(child_id: str) -> Dict[str, Any]:
    update = get_service().record_activity(child_id)
    return {
        "streak": _exporter.streak(update.state),
        "bonus": _exporter.transaction(update.bonus) if update.bonus else None,
    }


@app.get("/children/{child_id}/streak")
def read_streak(child_id: str) -> Dict[str, Any]:
    return _exporter.streak(get_service().streak(child_id))


@app.post("/children/{child_id}/streak/freeze")
def grant_freeze(child_id: str) -> Dict[str, Any]:
    return _exporter.streak(get_service().grant_streak_freeze(child_id))


@app.get("/children/{child_id}/achievements")
def read_achievements(child_id: str) -> List[Dict[str, Any]]:
    return _exporter.achievements(get_service().achievements(child_id))


@app.get("/children/{child_id}/notifications")
def read_notifications(child_id: str) -> List[Dict[str, Any]]:
    return [item.as_dict() for item in get_service().pending_notifications(child_id)]


@app.post("/children/{child_id}/notifications/deliver")
def deliver_notifications(child_id: str) -> List[Dict[str, Any]]:
    return [item.as_dict() for item in get_service().deliver_notifications(child_id)]


__all__ = ["app", "build_service", "get_service", "set_service"]
