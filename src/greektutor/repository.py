import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional

from pydantic import TypeAdapter
from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError

from .config import settings
from .errors import StoreError
from .models import (
    BiblicalPassage,
    ExegeticalInsight,
    MorphologyBreakdown,
    PassageSyntaxAnalysis,
    QuizAttempt,
    QuizQuestion,
    StudySession,
    TrainingUnit,
    UnitProgress,
    UserResponse,
    WordCacheEntry,
)

logger = logging.getLogger(__name__)

_questions_adapter = TypeAdapter(List[QuizQuestion])


def _append_unit(session: StudySession, unit: TrainingUnit) -> bool:
    session.units.append(unit)
    return True


def _replace_unit_morphology(
    session: StudySession, unit_id: str, morphology: MorphologyBreakdown
) -> bool:
    for index, unit in enumerate(session.units):
        if unit.id == unit_id:
            session.units[index] = unit.model_copy(update={"morphology_breakdown": morphology})
            return True
    return False


# --- Store contract ---
class SessionRepository(ABC):
    """Durable storage for sessions, insights, progress and the global caches.

    Cache methods take keys already built by ``greektutor.cache``.
    """

    # Sessions
    @abstractmethod
    async def create_session(self, session: StudySession) -> None:
        pass

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[StudySession]:
        pass

    @abstractmethod
    async def get_all_sessions(self, user_id: str) -> List[StudySession]:
        pass

    @abstractmethod
    async def add_unit(self, session_id: str, unit: TrainingUnit) -> bool:
        """Appends a unit to a stored session; False when the session is gone."""

    @abstractmethod
    async def save_response(self, session_id: str, response: UserResponse) -> None:
        pass

    @abstractmethod
    async def delete_session(self, session_id: str) -> None:
        pass

    @abstractmethod
    async def update_unit_morphology(
        self, session_id: str, unit_id: str, morphology: MorphologyBreakdown
    ) -> bool:
        pass

    # Insights
    @abstractmethod
    async def save_insight(self, insight: ExegeticalInsight) -> None:
        pass

    @abstractmethod
    async def get_insight(self, insight_id: str) -> Optional[ExegeticalInsight]:
        pass

    @abstractmethod
    async def get_user_insights(self, user_id: str) -> List[ExegeticalInsight]:
        pass

    @abstractmethod
    async def delete_insight(self, user_id: str, insight_id: str) -> None:
        pass

    # Progress
    @abstractmethod
    async def get_unit_progress(self, session_id: str, unit_id: str) -> Optional[UnitProgress]:
        pass

    @abstractmethod
    async def get_session_unit_progress(self, session_id: str) -> Dict[str, UnitProgress]:
        pass

    @abstractmethod
    async def update_unit_progress(
        self, session_id: str, unit_id: str, progress: UnitProgress
    ) -> None:
        pass

    @abstractmethod
    async def save_quiz_attempt(self, session_id: str, attempt: QuizAttempt) -> None:
        pass

    @abstractmethod
    async def get_quiz_attempts(self, session_id: str) -> List[QuizAttempt]:
        pass

    # Global caches
    @abstractmethod
    async def get_cached_passage(self, key: str) -> Optional[BiblicalPassage]:
        pass

    @abstractmethod
    async def cache_passage(self, key: str, passage: BiblicalPassage) -> None:
        pass

    @abstractmethod
    async def get_cached_word(self, key: str) -> Optional[WordCacheEntry]:
        pass

    @abstractmethod
    async def cache_word(self, key: str, entry: WordCacheEntry) -> None:
        pass

    @abstractmethod
    async def get_cached_quiz(self, key: str) -> List[QuizQuestion]:
        pass

    @abstractmethod
    async def cache_quiz(self, key: str, questions: List[QuizQuestion]) -> None:
        pass

    @abstractmethod
    async def get_cached_syntax(self, key: str) -> Optional[PassageSyntaxAnalysis]:
        pass

    @abstractmethod
    async def cache_syntax(self, key: str, analysis: PassageSyntaxAnalysis) -> None:
        pass


# --- In-process backend ---
class MemorySessionRepository(SessionRepository):
    """Keeps serialized documents in dicts, one process, no durability."""

    def __init__(self):
        self.sessions: Dict[str, str] = {}
        self.responses: Dict[str, Dict[str, str]] = {}
        self.progress: Dict[str, Dict[str, str]] = {}
        self.attempts: Dict[str, List[str]] = {}
        self.insights: Dict[str, str] = {}
        self.passages: Dict[str, str] = {}
        self.words: Dict[str, str] = {}
        self.quizzes: Dict[str, str] = {}
        self.syntax: Dict[str, str] = {}

    def _load(self, session_id: str) -> Optional[StudySession]:
        raw = self.sessions.get(session_id)
        return StudySession.model_validate_json(raw) if raw else None

    def _mutate(self, session_id: str, change: Callable[[StudySession], bool]) -> bool:
        session = self._load(session_id)
        if session is None or not change(session):
            return False
        session.updated_at = datetime.now()
        self.sessions[session_id] = session.model_dump_json()
        return True

    async def create_session(self, session: StudySession) -> None:
        self.sessions[session.id] = session.model_dump_json()

    async def get_session(self, session_id: str) -> Optional[StudySession]:
        session = self._load(session_id)
        if session is None:
            return None
        for response_id, raw in self.responses.get(session_id, {}).items():
            session.responses[response_id] = UserResponse.model_validate_json(raw)
        return session

    async def get_all_sessions(self, user_id: str) -> List[StudySession]:
        sessions = []
        for session_id in list(self.sessions):
            session = await self.get_session(session_id)
            if session is not None and session.user_id == user_id:
                sessions.append(session)
        return sessions

    async def add_unit(self, session_id: str, unit: TrainingUnit) -> bool:
        return self._mutate(session_id, lambda s: _append_unit(s, unit))

    async def save_response(self, session_id: str, response: UserResponse) -> None:
        self.responses.setdefault(session_id, {})[response.id] = response.model_dump_json()

    async def delete_session(self, session_id: str) -> None:
        for collection in (self.sessions, self.responses, self.progress, self.attempts):
            collection.pop(session_id, None)

    async def update_unit_morphology(
        self, session_id: str, unit_id: str, morphology: MorphologyBreakdown
    ) -> bool:
        return self._mutate(
            session_id, lambda s: _replace_unit_morphology(s, unit_id, morphology)
        )

    async def save_insight(self, insight: ExegeticalInsight) -> None:
        self.insights[insight.id] = insight.model_dump_json()

    async def get_insight(self, insight_id: str) -> Optional[ExegeticalInsight]:
        raw = self.insights.get(insight_id)
        return ExegeticalInsight.model_validate_json(raw) if raw else None

    async def get_user_insights(self, user_id: str) -> List[ExegeticalInsight]:
        insights = [ExegeticalInsight.model_validate_json(raw) for raw in self.insights.values()]
        return [i for i in insights if i.user_id == user_id]

    async def delete_insight(self, user_id: str, insight_id: str) -> None:
        self.insights.pop(insight_id, None)

    async def get_unit_progress(self, session_id: str, unit_id: str) -> Optional[UnitProgress]:
        raw = self.progress.get(session_id, {}).get(unit_id)
        return UnitProgress.model_validate_json(raw) if raw else None

    async def get_session_unit_progress(self, session_id: str) -> Dict[str, UnitProgress]:
        return {
            unit_id: UnitProgress.model_validate_json(raw)
            for unit_id, raw in self.progress.get(session_id, {}).items()
        }

    async def update_unit_progress(
        self, session_id: str, unit_id: str, progress: UnitProgress
    ) -> None:
        self.progress.setdefault(session_id, {})[unit_id] = progress.model_dump_json()

    async def save_quiz_attempt(self, session_id: str, attempt: QuizAttempt) -> None:
        self.attempts.setdefault(session_id, []).append(attempt.model_dump_json())

    async def get_quiz_attempts(self, session_id: str) -> List[QuizAttempt]:
        return [QuizAttempt.model_validate_json(raw) for raw in self.attempts.get(session_id, [])]

    async def get_cached_passage(self, key: str) -> Optional[BiblicalPassage]:
        raw = self.passages.get(key)
        return BiblicalPassage.model_validate_json(raw) if raw else None

    async def cache_passage(self, key: str, passage: BiblicalPassage) -> None:
        self.passages[key] = passage.model_dump_json()

    async def get_cached_word(self, key: str) -> Optional[WordCacheEntry]:
        raw = self.words.get(key)
        return WordCacheEntry.model_validate_json(raw) if raw else None

    async def cache_word(self, key: str, entry: WordCacheEntry) -> None:
        self.words[key] = entry.model_dump_json()

    async def get_cached_quiz(self, key: str) -> List[QuizQuestion]:
        raw = self.quizzes.get(key)
        return _questions_adapter.validate_json(raw) if raw else []

    async def cache_quiz(self, key: str, questions: List[QuizQuestion]) -> None:
        self.quizzes[key] = _questions_adapter.dump_json(questions).decode()

    async def get_cached_syntax(self, key: str) -> Optional[PassageSyntaxAnalysis]:
        raw = self.syntax.get(key)
        return PassageSyntaxAnalysis.model_validate_json(raw) if raw else None

    async def cache_syntax(self, key: str, analysis: PassageSyntaxAnalysis) -> None:
        self.syntax[key] = analysis.model_dump_json()


# --- Redis backend ---
@asynccontextmanager
async def _redis_errors(action: str):
    try:
        yield
    except RedisError as e:
        raise StoreError(f"Redis {action} failed: {e}") from e


class RedisSessionRepository(SessionRepository):
    """Stores every document as pydantic JSON under ``{prefix}:...`` keys.

    Responses and unit progress live in per-session hashes, so writers
    touching different responses never rewrite the session document.
    Session-document edits go through WATCH/MULTI and retry on conflict.
    """

    def __init__(self, client: Redis, prefix: str = settings.KEY_PREFIX):
        self.redis = client
        self.prefix = prefix

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix, *parts))

    async def _mutate(self, session_id: str, change: Callable[[StudySession], bool]) -> bool:
        key = self._key("session", session_id)
        async with _redis_errors("session update"):
            async with self.redis.pipeline(transaction=True) as pipe:
                while True:
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        if raw is None:
                            return False
                        session = StudySession.model_validate_json(raw)
                        if not change(session):
                            return False
                        session.updated_at = datetime.now()
                        pipe.multi()
                        pipe.set(key, session.model_dump_json())
                        await pipe.execute()
                        return True
                    except WatchError:
                        logger.info(f"Session {session_id} changed concurrently, retrying")
                        continue

    async def create_session(self, session: StudySession) -> None:
        async with _redis_errors("create_session"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self._key("session", session.id), session.model_dump_json())
                pipe.sadd(self._key("user_sessions", session.user_id), session.id)
                await pipe.execute()

    async def get_session(self, session_id: str) -> Optional[StudySession]:
        async with _redis_errors("get_session"):
            raw = await self.redis.get(self._key("session", session_id))
            if raw is None:
                return None
            responses = await self.redis.hgetall(self._key("responses", session_id))
        session = StudySession.model_validate_json(raw)
        for response_id, raw_response in responses.items():
            session.responses[response_id] = UserResponse.model_validate_json(raw_response)
        return session

    async def get_all_sessions(self, user_id: str) -> List[StudySession]:
        async with _redis_errors("get_all_sessions"):
            session_ids = await self.redis.smembers(self._key("user_sessions", user_id))
        sessions = []
        for session_id in session_ids:
            session = await self.get_session(session_id)
            if session is not None:
                sessions.append(session)
        return sessions

    async def add_unit(self, session_id: str, unit: TrainingUnit) -> bool:
        return await self._mutate(session_id, lambda s: _append_unit(s, unit))

    async def save_response(self, session_id: str, response: UserResponse) -> None:
        async with _redis_errors("save_response"):
            await self.redis.hset(
                self._key("responses", session_id), response.id, response.model_dump_json()
            )

    async def delete_session(self, session_id: str) -> None:
        async with _redis_errors("delete_session"):
            raw = await self.redis.get(self._key("session", session_id))
            async with self.redis.pipeline(transaction=True) as pipe:
                if raw is not None:
                    user_id = StudySession.model_validate_json(raw).user_id
                    pipe.srem(self._key("user_sessions", user_id), session_id)
                pipe.delete(
                    self._key("session", session_id),
                    self._key("responses", session_id),
                    self._key("progress", session_id),
                    self._key("attempts", session_id),
                )
                await pipe.execute()

    async def update_unit_morphology(
        self, session_id: str, unit_id: str, morphology: MorphologyBreakdown
    ) -> bool:
        return await self._mutate(
            session_id, lambda s: _replace_unit_morphology(s, unit_id, morphology)
        )

    async def save_insight(self, insight: ExegeticalInsight) -> None:
        async with _redis_errors("save_insight"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(self._key("insight", insight.id), insight.model_dump_json())
                pipe.sadd(self._key("user_insights", insight.user_id), insight.id)
                await pipe.execute()

    async def get_insight(self, insight_id: str) -> Optional[ExegeticalInsight]:
        async with _redis_errors("get_insight"):
            raw = await self.redis.get(self._key("insight", insight_id))
        return ExegeticalInsight.model_validate_json(raw) if raw else None

    async def get_user_insights(self, user_id: str) -> List[ExegeticalInsight]:
        async with _redis_errors("get_user_insights"):
            insight_ids = await self.redis.smembers(self._key("user_insights", user_id))
            if not insight_ids:
                return []
            raws = await self.redis.mget([self._key("insight", i) for i in insight_ids])
        return [ExegeticalInsight.model_validate_json(raw) for raw in raws if raw]

    async def delete_insight(self, user_id: str, insight_id: str) -> None:
        async with _redis_errors("delete_insight"):
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._key("insight", insight_id))
                pipe.srem(self._key("user_insights", user_id), insight_id)
                await pipe.execute()

    async def get_unit_progress(self, session_id: str, unit_id: str) -> Optional[UnitProgress]:
        async with _redis_errors("get_unit_progress"):
            raw = await self.redis.hget(self._key("progress", session_id), unit_id)
        return UnitProgress.model_validate_json(raw) if raw else None

    async def get_session_unit_progress(self, session_id: str) -> Dict[str, UnitProgress]:
        async with _redis_errors("get_session_unit_progress"):
            raws = await self.redis.hgetall(self._key("progress", session_id))
        return {unit_id: UnitProgress.model_validate_json(raw) for unit_id, raw in raws.items()}

    async def update_unit_progress(
        self, session_id: str, unit_id: str, progress: UnitProgress
    ) -> None:
        async with _redis_errors("update_unit_progress"):
            await self.redis.hset(
                self._key("progress", session_id), unit_id, progress.model_dump_json()
            )

    async def save_quiz_attempt(self, session_id: str, attempt: QuizAttempt) -> None:
        async with _redis_errors("save_quiz_attempt"):
            await self.redis.rpush(self._key("attempts", session_id), attempt.model_dump_json())

    async def get_quiz_attempts(self, session_id: str) -> List[QuizAttempt]:
        async with _redis_errors("get_quiz_attempts"):
            raws = await self.redis.lrange(self._key("attempts", session_id), 0, -1)
        return [QuizAttempt.model_validate_json(raw) for raw in raws]

    async def get_cached_passage(self, key: str) -> Optional[BiblicalPassage]:
        async with _redis_errors("get_cached_passage"):
            raw = await self.redis.get(self._key("passage", key))
        return BiblicalPassage.model_validate_json(raw) if raw else None

    async def cache_passage(self, key: str, passage: BiblicalPassage) -> None:
        async with _redis_errors("cache_passage"):
            await self.redis.set(self._key("passage", key), passage.model_dump_json())

    async def get_cached_word(self, key: str) -> Optional[WordCacheEntry]:
        async with _redis_errors("get_cached_word"):
            raw = await self.redis.get(self._key("word", key))
        return WordCacheEntry.model_validate_json(raw) if raw else None

    async def cache_word(self, key: str, entry: WordCacheEntry) -> None:
        async with _redis_errors("cache_word"):
            await self.redis.set(self._key("word", key), entry.model_dump_json())

    async def get_cached_quiz(self, key: str) -> List[QuizQuestion]:
        async with _redis_errors("get_cached_quiz"):
            raw = await self.redis.get(self._key("quiz", key))
        return _questions_adapter.validate_json(raw) if raw else []

    async def cache_quiz(self, key: str, questions: List[QuizQuestion]) -> None:
        async with _redis_errors("cache_quiz"):
            await self.redis.set(
                self._key("quiz", key), _questions_adapter.dump_json(questions).decode()
            )

    async def get_cached_syntax(self, key: str) -> Optional[PassageSyntaxAnalysis]:
        async with _redis_errors("get_cached_syntax"):
            raw = await self.redis.get(self._key("syntax", key))
        return PassageSyntaxAnalysis.model_validate_json(raw) if raw else None

    async def cache_syntax(self, key: str, analysis: PassageSyntaxAnalysis) -> None:
        async with _redis_errors("cache_syntax"):
            await self.redis.set(self._key("syntax", key), analysis.model_dump_json())
