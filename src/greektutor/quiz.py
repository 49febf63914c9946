import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from .config import settings
from .gateway import GenerationGateway
from .models import QuizQuestion, TrainingUnit
from .repository import SessionRepository

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    "es": "Spanish",
    "en": "English",
    "es-es": "Spanish",
    "en-us": "English",
}


def language_name(language: str) -> str:
    """Maps a locale code to the language name used in prompts."""
    return LANGUAGE_NAMES.get(language.lower(), language)


def quiz_cache_key(unit: TrainingUnit, language: str) -> str:
    form = unit.greek_form
    return f"quiz_{form.lemma}_{form.grammatical_category}_{language}".lower()


# --- Strategy Pattern: Quiz Services ---
class QuizService(ABC):
    """Abstract Base Class for quiz question sources."""

    @abstractmethod
    async def generate_quiz_questions(
        self,
        unit: TrainingUnit,
        count: int,
        store_id: Optional[str] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> List[QuizQuestion]:
        pass


class GeneratedQuizService(QuizService):
    """Always asks the gateway for fresh questions."""

    def __init__(self, gateway: GenerationGateway):
        self.gateway = gateway

    async def generate_quiz_questions(self, unit, count, store_id=None, language=settings.DEFAULT_LANGUAGE):
        return await self.gateway.generate_quiz_questions(unit, count, language_name(language))


class HybridQuizService(QuizService):
    """Shares questions across units with the same lemma and category.

    Questions are cached under the lemma, grammatical category and language.
    A cached list with at least ``count`` questions is reused, re-pointed to
    the requesting unit; otherwise new questions are generated and cached.
    """

    def __init__(self, gateway: GenerationGateway, store: SessionRepository):
        self.gateway = gateway
        self.store = store

    async def _get_cached(self, key: str) -> List[QuizQuestion]:
        try:
            return await self.store.get_cached_quiz(key)
        except Exception as e:
            logger.warning(f"Quiz cache lookup failed for '{key}': {e}")
            return []

    async def _store(self, key: str, questions: List[QuizQuestion]) -> bool:
        tagged = [q.model_copy(update={"cache_key": key, "usage_count": 1}) for q in questions]
        try:
            await self.store.cache_quiz(key, tagged)
        except Exception as e:
            logger.error(f"Failed to cache quiz questions for '{key}': {e}")
            return False
        logger.info(f"Cached {len(questions)} questions for key: {key}")
        return True

    async def generate_quiz_questions(self, unit, count, store_id=None, language=settings.DEFAULT_LANGUAGE):
        key = quiz_cache_key(unit, language)

        cached = await self._get_cached(key)
        if len(cached) >= count:
            logger.info(f"Quiz cache HIT: {key}")
            return [
                q.model_copy(update={"unit_id": unit.id, "usage_count": q.usage_count + 1})
                for q in cached[:count]
            ]

        logger.info(f"Quiz cache MISS: {key}")
        questions = await self.gateway.generate_quiz_questions(unit, count, language_name(language))
        await self._store(key, questions)
        return questions


class QuizServiceFactory:
    """Factory to create the appropriate quiz service."""

    @staticmethod
    def create(
        mode: str, gateway: GenerationGateway, store: Optional[SessionRepository] = None
    ) -> QuizService:
        if mode == "hybrid":
            if store is None:
                raise ValueError("The hybrid quiz service needs a store")
            return HybridQuizService(gateway, store)
        if mode == "generated":
            return GeneratedQuizService(gateway)
        raise ValueError(f"Unknown quiz mode: {mode}")
