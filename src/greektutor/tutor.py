import logging
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from .builder import TrainingUnitBuilder
from .cache import PassageCache, SingleFlight, SyntaxCache, WordCache
from .coaching import AUTO, CoachingStyle, StrategySelector
from .config import settings
from .errors import (
    GenerationError,
    NotFoundError,
    OwnershipError,
    ValidationError,
    describe,
)
from .gateway import GenerationGateway
from .models import (
    BiblicalPassage,
    ExegeticalInsight,
    GenerationConfig,
    GreekForm,
    InsightFilters,
    MorphologyBreakdown,
    PassageSyntaxAnalysis,
    PassageWord,
    ProgressUpdate,
    QuestionContext,
    QuizFeedback,
    QuizQuestion,
    SessionFilters,
    SessionProgress,
    StudySession,
    TrainingUnit,
    UnitPreview,
    UnitProgress,
    UserResponse,
    WordCacheEntry,
)
from .progress import create_attempt, record_attempt, record_section_view, summarize_session
from .quiz import HybridQuizService, QuizService
from .repository import SessionRepository
from .syntax import check_word_coverage

logger = logging.getLogger(__name__)


def _require(value: Optional[str], name: str) -> str:
    if not value or not value.strip():
        raise ValidationError(f"{name} is required")
    return value


def sanitize_tags(tags: List[str]) -> List[str]:
    """Trims and lower-cases tags, drops empties and duplicates, caps the count."""
    cleaned = [tag.strip().lower() for tag in tags]
    return list(dict.fromkeys(tag for tag in cleaned if tag))[: settings.MAX_INSIGHT_TAGS]


def generate_insight_title(
    question: Optional[str], greek_word: Optional[str], passage: Optional[str]
) -> str:
    limit = settings.INSIGHT_TITLE_MAX
    if question and question.strip():
        first_line = question.strip().splitlines()[0].strip()
        if len(first_line) > limit:
            return first_line[: limit - 3] + "..."
        return first_line
    if greek_word and passage:
        return f"{greek_word} en {passage}"
    if greek_word:
        return f"Estudio de {greek_word}"
    if passage:
        return f"Insight de {passage}"
    return "Insight del Tutor"


def _preview_from_entry(word: PassageWord, entry: WordCacheEntry) -> Optional[UnitPreview]:
    if not entry.identification:
        return None
    return UnitPreview(
        greek_form=GreekForm(
            text=word.greek,
            transliteration=word.transliteration,
            lemma=entry.lemma,
            morphology=entry.morphology or "",
            gloss=entry.gloss,
            grammatical_category=entry.grammatical_category,
        ),
        identification=entry.identification,
        recognition_guidance=entry.recognition_guidance,
    )


def _entry_from_preview(lemma: str, language: str, preview: UnitPreview) -> WordCacheEntry:
    form = preview.greek_form
    return WordCacheEntry(
        lemma=lemma,
        language=language,
        gloss=form.gloss,
        grammatical_category=form.grammatical_category,
        morphology=form.morphology or None,
        identification=preview.identification,
        recognition_guidance=preview.recognition_guidance,
    )


class GreekTutor:
    """Entry point for the word-study use cases.

    Holds the gateway, the repository and the process-wide caches; each
    public coroutine is one operation exposed to the application.
    """

    def __init__(
        self,
        gateway: GenerationGateway,
        repository: SessionRepository,
        quiz_service: Optional[QuizService] = None,
        selector: Optional[StrategySelector] = None,
    ):
        self.gateway = gateway
        self.repository = repository
        self.quiz_service = quiz_service or HybridQuizService(gateway, repository)
        self.selector = selector or StrategySelector()
        self.builder = TrainingUnitBuilder(gateway, repository)
        flights = SingleFlight()
        self.passage_cache = PassageCache(repository, flights)
        self.word_cache = WordCache(repository, flights)
        self.syntax_cache = SyntaxCache(repository, flights)

    # --- Sessions ---
    def start_greek_training(self, user_id: str, passage: str) -> StudySession:
        _require(user_id, "user_id")
        _require(passage, "passage")
        return StudySession(id=str(uuid.uuid4()), user_id=user_id, passage=passage)

    async def generate_training_units(
        self,
        passage: str,
        store_id: Optional[str],
        user_id: str,
        config: Optional[GenerationConfig] = None,
        language: Optional[str] = None,
    ) -> List[TrainingUnit]:
        _require(passage, "passage")
        _require(user_id, "user_id")
        return await self.builder.generate_training_units(
            passage, store_id, user_id, config, language
        )

    async def delete_session(self, session_id: str, user_id: str) -> None:
        _require(session_id, "session_id")
        _require(user_id, "user_id")
        session = await self.repository.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        if session.user_id != user_id:
            raise OwnershipError(f"Session {session_id} does not belong to user {user_id}")
        await self.repository.delete_session(session_id)
        logger.info(f"Deleted session {session_id}")

    async def get_user_sessions(
        self, user_id: str, filters: Optional[SessionFilters] = None
    ) -> List[StudySession]:
        _require(user_id, "user_id")
        filters = filters or SessionFilters()
        if filters.from_date and filters.to_date and filters.from_date > filters.to_date:
            raise ValidationError("from_date must not be after to_date")
        if filters.last_days is not None and filters.last_days < 1:
            raise ValidationError("last_days must be at least 1")

        sessions = await self.repository.get_all_sessions(user_id)

        if filters.status:
            sessions = [s for s in sessions if s.status == filters.status]
        if filters.from_date:
            sessions = [s for s in sessions if s.created_at >= filters.from_date]
        if filters.to_date:
            sessions = [s for s in sessions if s.created_at <= filters.to_date]
        if filters.last_days is not None:
            since = datetime.now() - timedelta(days=filters.last_days)
            sessions = [s for s in sessions if s.created_at >= since]
        if filters.passage_contains:
            needle = filters.passage_contains.lower()
            sessions = [s for s in sessions if needle in s.passage.lower()]

        return sorted(sessions, key=lambda s: s.updated_at, reverse=True)

    async def get_session_progress(self, session_id: str) -> SessionProgress:
        _require(session_id, "session_id")
        session = await self.repository.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        progress = await self.repository.get_session_unit_progress(session_id)
        return summarize_session([unit.id for unit in session.units], progress)

    # --- Passages & words ---
    async def get_passage_text(
        self,
        reference: str,
        store_id: Optional[str] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> BiblicalPassage:
        _require(reference, "reference")
        try:
            result = await self.passage_cache.get_or_generate(
                reference, lambda: self.gateway.get_passage_text(reference, store_id, language)
            )
        except Exception as e:
            raise GenerationError(f"Failed to fetch passage {reference}: {describe(e)}") from e
        return result.value

    async def identify_passage_word(
        self,
        word: PassageWord,
        full_context: str,
        store_id: Optional[str] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> UnitPreview:
        """Builds the preview for a tapped word, from the word cache when possible."""

        async def identify() -> UnitPreview:
            return await self.gateway.identify_word_for_unit(word, full_context, store_id, language)

        try:
            if word.lemma:
                lemma = word.lemma

                async def identify_entry() -> WordCacheEntry:
                    return _entry_from_preview(lemma, language, await identify())

                # Concurrent taps on forms of one lemma share a flight, so each
                # caller rebuilds its preview from the shared entry.
                result = await self.word_cache.get_or_generate(
                    lemma,
                    language,
                    identify_entry,
                    usable=lambda entry: bool(entry.identification),
                )
                preview = _preview_from_entry(word, result.value)
                if preview is None:
                    raise ValueError(f"no identification for lemma {lemma}")
                return preview

            preview = await identify()
        except Exception as e:
            raise GenerationError(f"Failed to identify word {word.greek}: {describe(e)}") from e

        if preview.greek_form.lemma:
            await self.word_cache.set(
                _entry_from_preview(preview.greek_form.lemma, language, preview)
            )
        return preview

    async def analyze_passage_syntax(
        self,
        passage: BiblicalPassage,
        store_id: Optional[str] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> PassageSyntaxAnalysis:
        """Clause structure of a passage, served from the syntax cache when possible.

        A generated analysis is only returned, and cached, when every word of
        the passage falls in exactly one clause.
        """
        _require(passage.reference, "reference")
        if not passage.words:
            raise ValidationError(f"Passage {passage.reference} has no words to analyze")

        async def analyze() -> PassageSyntaxAnalysis:
            analysis = await self.gateway.analyze_passage_syntax(passage, store_id, language)
            check_word_coverage(analysis, passage)
            logger.info(
                f"Syntax of {passage.reference}: {len(analysis.clauses)} clauses "
                f"covering {len(passage.words)} words"
            )
            return analysis

        try:
            result = await self.syntax_cache.get_or_generate(passage.reference, language, analyze)
        except Exception as e:
            raise GenerationError(
                f"Failed to analyze syntax of {passage.reference}: {describe(e)}"
            ) from e
        return result.value

    async def add_passage_word_to_units(
        self,
        session_id: str,
        preview: UnitPreview,
        word: PassageWord,
        full_passage: str,
        store_id: Optional[str] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> TrainingUnit:
        _require(session_id, "session_id")
        logger.info(f"Creating unit for word {word.greek} ({preview.identification})")
        try:
            unit = await self.gateway.create_training_unit(
                word.greek, full_passage, store_id, None, language
            )
        except Exception as e:
            raise GenerationError(f"Failed to add word {word.greek} to units: {describe(e)}") from e

        unit = unit.attach_to(session_id)
        if not await self.repository.add_unit(session_id, unit):
            logger.warning(f"Session {session_id} not found; unit {unit.id} was not stored")
        return unit

    async def explain_morphology(
        self,
        word: str,
        passage: str,
        session_id: str,
        unit_id: str,
        store_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> MorphologyBreakdown:
        _require(word, "word")
        language = language or settings.DEFAULT_LANGUAGE
        try:
            morphology = await self.gateway.explain_morphology(word, passage, store_id, language)
        except Exception as e:
            raise GenerationError(f"Failed to explain morphology of {word}: {describe(e)}") from e

        try:
            await self.repository.update_unit_morphology(session_id, unit_id, morphology)
        except Exception as e:
            logger.error(f"Failed to persist morphology for unit {unit_id}: {e}")
        return morphology

    # --- Quizzes & progress ---
    async def _stored_progress(self, session_id: str, unit_id: str) -> UnitProgress:
        progress = await self.repository.get_unit_progress(session_id, unit_id)
        return progress or UnitProgress()

    async def generate_quiz(
        self,
        unit: TrainingUnit,
        count: int = settings.DEFAULT_QUIZ_COUNT,
        store_id: Optional[str] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> List[QuizQuestion]:
        if count < 1:
            raise ValidationError("count must be at least 1")
        try:
            return await self.quiz_service.generate_quiz_questions(unit, count, store_id, language)
        except Exception as e:
            raise GenerationError(
                f"Failed to generate quiz for {unit.greek_form.text}: {describe(e)}"
            ) from e

    async def submit_quiz_answer(
        self,
        session_id: str,
        unit_id: str,
        question: QuizQuestion,
        user_answer: str,
        current_progress: Optional[UnitProgress] = None,
    ) -> QuizFeedback:
        _require(session_id, "session_id")
        _require(unit_id, "unit_id")
        _require(user_answer, "user_answer")
        attempt = create_attempt(unit_id, question, user_answer)
        if current_progress is None:
            current_progress = await self._stored_progress(session_id, unit_id)
        updated = record_attempt(current_progress, attempt)

        persisted = True
        try:
            await self.repository.save_quiz_attempt(session_id, attempt)
            await self.repository.update_unit_progress(session_id, unit_id, updated)
        except Exception as e:
            persisted = False
            logger.error(f"Failed to persist quiz attempt for unit {unit_id}: {e}")

        return QuizFeedback(
            is_correct=attempt.is_correct,
            explanation=question.explanation,
            updated_progress=updated,
            persisted=persisted,
        )

    async def track_section_view(
        self,
        session_id: str,
        unit_id: str,
        section: str,
        current_progress: Optional[UnitProgress] = None,
    ) -> ProgressUpdate:
        _require(section, "section")
        if current_progress is None:
            current_progress = await self._stored_progress(session_id, unit_id)
        updated = record_section_view(current_progress, section)

        persisted = True
        try:
            await self.repository.update_unit_progress(session_id, unit_id, updated)
        except Exception as e:
            persisted = False
            logger.warning(f"Failed to persist section view for unit {unit_id}: {e}")
        return ProgressUpdate(progress=updated, persisted=persisted)

    # --- Responses & questions ---
    async def evaluate_user_response(
        self,
        unit: TrainingUnit,
        user_answer: str,
        store_id: Optional[str] = None,
        language: Optional[str] = None,
    ) -> UserResponse:
        _require(user_answer, "user_answer")
        language = language or settings.DEFAULT_LANGUAGE
        try:
            evaluation = await self.gateway.evaluate_response(unit, user_answer, store_id, language)
        except Exception as e:
            raise GenerationError(
                f"Failed to evaluate answer for {unit.greek_form.text}: {describe(e)}"
            ) from e

        response = UserResponse(
            id=str(uuid.uuid4()),
            unit_id=unit.id,
            user_answer=user_answer,
            feedback=evaluation.feedback,
            is_correct=evaluation.is_correct,
        )

        if unit.session_id:
            session = await self.repository.get_session(unit.session_id)
            if session is None:
                logger.warning(
                    f"Session {unit.session_id} not found; response {response.id} not stored"
                )
            else:
                await self.repository.save_response(unit.session_id, response)
        return response

    async def ask_free_question(
        self,
        question: str,
        unit: Optional[TrainingUnit] = None,
        passage: str = "",
        store_id: Optional[str] = None,
        language: str = settings.DEFAULT_LANGUAGE,
        coaching: str = AUTO,
    ) -> str:
        _require(question, "question")
        if coaching != AUTO and coaching not in {s.value for s in CoachingStyle}:
            raise ValidationError(f"Unknown coaching style: {coaching}")

        strategy = self.selector.select_strategy(question, preference=coaching)
        if unit is not None:
            form = unit.greek_form
            context = QuestionContext(
                greek_word=form.text,
                transliteration=form.transliteration,
                gloss=form.gloss,
                identification=unit.identification,
                function_in_context=unit.function_in_context,
                significance=unit.significance,
                passage=passage,
            )
        else:
            context = QuestionContext(greek_word="", passage=passage)
        context = context.model_copy(
            update={"coaching_instructions": strategy.build_system_prompt_additions()}
        )

        try:
            return await self.gateway.answer_free_question(question, context, store_id, language)
        except Exception as e:
            raise GenerationError(f"Failed to answer question: {describe(e)}") from e

    # --- Insights ---
    async def save_insight(
        self,
        user_id: str,
        session_id: str,
        content: str,
        title: Optional[str] = None,
        question: Optional[str] = None,
        unit_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        passage: Optional[str] = None,
        greek_word: Optional[str] = None,
    ) -> ExegeticalInsight:
        _require(user_id, "user_id")
        _require(content, "content")

        title = (title or "").strip() or generate_insight_title(question, greek_word, passage)
        insight = ExegeticalInsight(
            id=str(uuid.uuid4()),
            session_id=session_id,
            unit_id=unit_id,
            user_id=user_id,
            title=title,
            content=content.strip(),
            question=question,
            tags=sanitize_tags(tags or []),
            passage=passage,
            greek_word=greek_word,
        )
        await self.repository.save_insight(insight)
        logger.info(f"Saved insight {insight.id} for user {user_id}")
        return insight

    async def _owned_insight(self, user_id: str, insight_id: str) -> ExegeticalInsight:
        _require(user_id, "user_id")
        _require(insight_id, "insight_id")
        insight = await self.repository.get_insight(insight_id)
        if insight is None:
            raise NotFoundError(f"Insight {insight_id} not found")
        if insight.user_id != user_id:
            raise OwnershipError(f"Insight {insight_id} does not belong to user {user_id}")
        return insight

    async def update_insight(
        self,
        user_id: str,
        insight_id: str,
        title: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> ExegeticalInsight:
        updates = {}
        if title is not None:
            if not title.strip():
                raise ValidationError("title cannot be empty")
            updates["title"] = title.strip()
        if tags is not None:
            updates["tags"] = sanitize_tags(tags)

        insight = await self._owned_insight(user_id, insight_id)
        updates["updated_at"] = datetime.now()
        insight = insight.model_copy(update=updates)
        await self.repository.save_insight(insight)
        return insight

    async def delete_insight(self, user_id: str, insight_id: str) -> None:
        await self._owned_insight(user_id, insight_id)
        await self.repository.delete_insight(user_id, insight_id)
        logger.info(f"Deleted insight {insight_id}")

    async def get_user_insights(
        self, user_id: str, filters: Optional[InsightFilters] = None
    ) -> List[ExegeticalInsight]:
        _require(user_id, "user_id")
        insights = await self.repository.get_user_insights(user_id)
        if filters is None:
            return insights

        if filters.passage:
            needle = filters.passage.lower()
            insights = [i for i in insights if i.passage and needle in i.passage.lower()]
        if filters.greek_word:
            needle = filters.greek_word.lower()
            insights = [i for i in insights if i.greek_word and needle in i.greek_word.lower()]
        if filters.tags:
            wanted = {t.lower() for t in filters.tags}
            insights = [i for i in insights if wanted & {t.lower() for t in i.tags}]
        if filters.search_term:
            needle = filters.search_term.lower()
            insights = [
                i
                for i in insights
                if needle in i.title.lower()
                or needle in i.content.lower()
                or (i.question and needle in i.question.lower())
            ]
        return insights
