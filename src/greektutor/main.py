import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import settings
from .errors import (
    GenerationError,
    GreekTutorError,
    NotFoundError,
    OwnershipError,
    StoreError,
    ValidationError,
)
from .gateway import GeminiGateway
from .models import (
    BiblicalPassage,
    GenerationConfig,
    InsightFilters,
    PassageWord,
    QuizQuestion,
    SessionFilters,
    SessionStatus,
    TrainingUnit,
    UnitPreview,
    UnitProgress,
)
from .quiz import QuizServiceFactory
from .redis_session import close_redis, get_redis
from .repository import MemorySessionRepository, RedisSessionRepository, SessionRepository
from .tutor import GreekTutor

logger = logging.getLogger(__name__)


# --- Logging Setup ---
def setup_logging() -> None:
    package_logger = logging.getLogger("greektutor")
    package_logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    if package_logger.handlers:
        return

    if settings.LOG_TO_FILE:
        if not os.path.exists(settings.LOG_DIR):
            os.makedirs(settings.LOG_DIR)
        log_path = os.path.join(settings.LOG_DIR, settings.LOG_FILE)
        handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3)
    else:
        handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
    package_logger.addHandler(handler)


setup_logging()

_tutor: Optional[GreekTutor] = None


def build_repository() -> SessionRepository:
    if settings.STORE_BACKEND == "memory":
        return MemorySessionRepository()
    return RedisSessionRepository(get_redis())


# --- Dependencies ---
def get_tutor() -> GreekTutor:
    global _tutor
    if _tutor is None:
        repository = build_repository()
        gateway = GeminiGateway()
        quiz_service = QuizServiceFactory.create(settings.QUIZ_MODE, gateway, repository)
        _tutor = GreekTutor(gateway, repository, quiz_service=quiz_service)
        logger.info(f"Tutor ready [store: {settings.STORE_BACKEND}, quiz: {settings.QUIZ_MODE}]")
    return _tutor


# --- Lifecycle ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    if settings.STORE_BACKEND != "memory":
        await close_redis()


app = FastAPI(
    title=settings.PROJECT_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

ERROR_STATUS = {
    ValidationError: 400,
    OwnershipError: 403,
    NotFoundError: 404,
    GenerationError: 502,
    StoreError: 503,
}


@app.exception_handler(GreekTutorError)
async def tutor_error_handler(request: Request, exc: GreekTutorError):
    status_code = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse({"error": str(exc)}, status_code=status_code)


# --- Request bodies ---
class StartRequest(BaseModel):
    user_id: str
    passage: str


class GenerateUnitsRequest(BaseModel):
    user_id: str
    passage: str
    store_id: Optional[str] = None
    config: Optional[GenerationConfig] = None
    language: Optional[str] = None


class IdentifyWordRequest(BaseModel):
    word: PassageWord
    full_context: str
    store_id: Optional[str] = None
    language: str = settings.DEFAULT_LANGUAGE


class AddWordRequest(BaseModel):
    preview: UnitPreview
    word: PassageWord
    full_passage: str
    store_id: Optional[str] = None
    language: str = settings.DEFAULT_LANGUAGE


class SyntaxRequest(BaseModel):
    passage: BiblicalPassage
    store_id: Optional[str] = None
    language: str = settings.DEFAULT_LANGUAGE


class MorphologyRequest(BaseModel):
    word: str
    passage: str
    session_id: str
    unit_id: str
    store_id: Optional[str] = None
    language: Optional[str] = None


class QuizRequest(BaseModel):
    unit: TrainingUnit
    count: int = settings.DEFAULT_QUIZ_COUNT
    store_id: Optional[str] = None
    language: str = settings.DEFAULT_LANGUAGE


class AnswerRequest(BaseModel):
    session_id: str
    unit_id: str
    question: QuizQuestion
    user_answer: str
    current_progress: Optional[UnitProgress] = None


class SectionViewRequest(BaseModel):
    session_id: str
    unit_id: str
    section: str
    current_progress: Optional[UnitProgress] = None


class ResponseRequest(BaseModel):
    unit: TrainingUnit
    user_answer: str
    store_id: Optional[str] = None
    language: Optional[str] = None


class FreeQuestionRequest(BaseModel):
    question: str
    unit: Optional[TrainingUnit] = None
    passage: str = ""
    store_id: Optional[str] = None
    language: str = settings.DEFAULT_LANGUAGE
    coaching: str = "auto"


class InsightRequest(BaseModel):
    user_id: str
    session_id: str = ""
    content: str
    title: Optional[str] = None
    question: Optional[str] = None
    unit_id: Optional[str] = None
    tags: List[str] = []
    passage: Optional[str] = None
    greek_word: Optional[str] = None


class InsightUpdateRequest(BaseModel):
    user_id: str
    title: Optional[str] = None
    tags: Optional[List[str]] = None


# --- Routes: sessions ---
@app.post("/api/sessions/start")
async def start_training(body: StartRequest, tutor: GreekTutor = Depends(get_tutor)):
    return tutor.start_greek_training(body.user_id, body.passage)


@app.post("/api/sessions/units")
async def generate_units(body: GenerateUnitsRequest, tutor: GreekTutor = Depends(get_tutor)):
    return await tutor.generate_training_units(
        body.passage, body.store_id, body.user_id, body.config, body.language
    )


@app.get("/api/sessions")
async def list_sessions(
    user_id: str,
    status: Optional[SessionStatus] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    passage_contains: Optional[str] = None,
    last_days: Optional[int] = None,
    tutor: GreekTutor = Depends(get_tutor),
):
    filters = SessionFilters(
        status=status,
        from_date=from_date,
        to_date=to_date,
        passage_contains=passage_contains,
        last_days=last_days,
    )
    return await tutor.get_user_sessions(user_id, filters)


@app.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str, user_id: str, tutor: GreekTutor = Depends(get_tutor)):
    await tutor.delete_session(session_id, user_id)
    return {"deleted": session_id}


@app.get("/api/sessions/{session_id}/progress")
async def session_progress(session_id: str, tutor: GreekTutor = Depends(get_tutor)):
    return await tutor.get_session_progress(session_id)


@app.post("/api/sessions/{session_id}/words")
async def add_word(session_id: str, body: AddWordRequest, tutor: GreekTutor = Depends(get_tutor)):
    return await tutor.add_passage_word_to_units(
        session_id, body.preview, body.word, body.full_passage, body.store_id, body.language
    )


# --- Routes: passages & words ---
@app.get("/api/passages")
async def get_passage(
    reference: str,
    store_id: Optional[str] = None,
    language: str = settings.DEFAULT_LANGUAGE,
    tutor: GreekTutor = Depends(get_tutor),
):
    return await tutor.get_passage_text(reference, store_id, language)


@app.post("/api/words/identify")
async def identify_word(body: IdentifyWordRequest, tutor: GreekTutor = Depends(get_tutor)):
    return await tutor.identify_passage_word(
        body.word, body.full_context, body.store_id, body.language
    )


@app.post("/api/syntax")
async def analyze_syntax(body: SyntaxRequest, tutor: GreekTutor = Depends(get_tutor)):
    return await tutor.analyze_passage_syntax(body.passage, body.store_id, body.language)


@app.post("/api/morphology")
async def explain_morphology(body: MorphologyRequest, tutor: GreekTutor = Depends(get_tutor)):
    return await tutor.explain_morphology(
        body.word, body.passage, body.session_id, body.unit_id, body.store_id, body.language
    )


# --- Routes: quizzes & progress ---
@app.post("/api/quiz")
async def generate_quiz(body: QuizRequest, tutor: GreekTutor = Depends(get_tutor)):
    return await tutor.generate_quiz(body.unit, body.count, body.store_id, body.language)


@app.post("/api/quiz/answer")
async def submit_answer(body: AnswerRequest, tutor: GreekTutor = Depends(get_tutor)):
    return await tutor.submit_quiz_answer(
        body.session_id, body.unit_id, body.question, body.user_answer, body.current_progress
    )


@app.post("/api/progress/view")
async def track_view(body: SectionViewRequest, tutor: GreekTutor = Depends(get_tutor)):
    return await tutor.track_section_view(
        body.session_id, body.unit_id, body.section, body.current_progress
    )


# --- Routes: responses & questions ---
@app.post("/api/responses")
async def evaluate_response(body: ResponseRequest, tutor: GreekTutor = Depends(get_tutor)):
    return await tutor.evaluate_user_response(
        body.unit, body.user_answer, body.store_id, body.language
    )


@app.post("/api/questions")
async def ask_question(body: FreeQuestionRequest, tutor: GreekTutor = Depends(get_tutor)):
    answer = await tutor.ask_free_question(
        body.question, body.unit, body.passage, body.store_id, body.language, body.coaching
    )
    return {"answer": answer}


@app.get("/api/coaching/styles")
async def coaching_styles(tutor: GreekTutor = Depends(get_tutor)):
    """Styles accepted by the ``coaching`` field of /api/questions, besides "auto"."""
    return [
        {"style": strategy.style.value, "instructions": strategy.build_system_prompt_additions()}
        for strategy in tutor.selector.get_all_strategies()
    ]


# --- Routes: insights ---
@app.post("/api/insights")
async def save_insight(body: InsightRequest, tutor: GreekTutor = Depends(get_tutor)):
    return await tutor.save_insight(
        body.user_id,
        body.session_id,
        body.content,
        title=body.title,
        question=body.question,
        unit_id=body.unit_id,
        tags=body.tags,
        passage=body.passage,
        greek_word=body.greek_word,
    )


@app.get("/api/insights")
async def list_insights(
    user_id: str,
    passage: Optional[str] = None,
    greek_word: Optional[str] = None,
    tags: List[str] = Query(default=[]),
    search_term: Optional[str] = None,
    tutor: GreekTutor = Depends(get_tutor),
):
    filters = InsightFilters(
        passage=passage, greek_word=greek_word, tags=tags, search_term=search_term
    )
    return await tutor.get_user_insights(user_id, filters)


@app.patch("/api/insights/{insight_id}")
async def update_insight(
    insight_id: str, body: InsightUpdateRequest, tutor: GreekTutor = Depends(get_tutor)
):
    return await tutor.update_insight(body.user_id, insight_id, body.title, body.tags)


@app.delete("/api/insights/{insight_id}")
async def delete_insight(insight_id: str, user_id: str, tutor: GreekTutor = Depends(get_tutor)):
    await tutor.delete_insight(user_id, insight_id)
    return {"deleted": insight_id}


if __name__ == "__main__":
    uvicorn.run("greektutor.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
