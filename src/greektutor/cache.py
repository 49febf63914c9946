"""Global content caches shared by every user.

The caches are a cost optimization on top of the generation gateway, so a
failing store never breaks a lookup: read errors count as a miss and write
errors come back as ``False``. ``get_or_generate`` runs lookup, generation
and write-back inside a single flight per key, so concurrent misses for the
same key trigger one generation between them.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Optional, TypeVar

from .models import BiblicalPassage, PassageSyntaxAnalysis, WordCacheEntry
from .repository import SessionRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

_WHITESPACE = re.compile(r"\s+")


def passage_key(reference: str) -> str:
    return _WHITESPACE.sub(" ", reference.strip())


def word_key(lemma: str, language: str) -> str:
    return f"{lemma.strip()}_{language}"


def syntax_key(reference: str, language: str) -> str:
    return f"{passage_key(reference)}_{language}"


@dataclass
class CacheResult(Generic[T]):
    value: T
    hit: bool
    stored: bool = False


class SingleFlight:
    """Deduplicates concurrent calls that share a key.

    The first caller starts the work as a task; later callers for the same
    key await that task until it finishes. Waiters are shielded, so a
    cancelled caller does not cancel the work the others are waiting on.
    """

    def __init__(self):
        self._inflight: Dict[str, asyncio.Task] = {}

    async def do(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._forget(key, task))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Marks the exception as retrieved when every waiter went away.
            task.exception()


class PassageCache:
    def __init__(self, store: SessionRepository, flights: Optional[SingleFlight] = None):
        self.store = store
        self.flights = flights or SingleFlight()

    async def get(self, reference: str) -> Optional[BiblicalPassage]:
        key = passage_key(reference)
        try:
            passage = await self.store.get_cached_passage(key)
        except Exception as e:
            logger.warning(f"Passage cache read failed for '{key}': {e}")
            return None
        logger.info(f"Passage cache {'HIT' if passage else 'MISS'}: {key}")
        return passage

    async def set(self, reference: str, passage: BiblicalPassage) -> bool:
        key = passage_key(reference)
        try:
            await self.store.cache_passage(key, passage)
        except Exception as e:
            logger.warning(f"Passage cache write failed for '{key}': {e}")
            return False
        return True

    async def get_or_generate(
        self, reference: str, generate: Callable[[], Awaitable[BiblicalPassage]]
    ) -> CacheResult[BiblicalPassage]:
        async def lookup_or_generate() -> CacheResult[BiblicalPassage]:
            cached = await self.get(reference)
            if cached is not None:
                return CacheResult(cached, hit=True)
            passage = await generate()
            stored = await self.set(reference, passage)
            return CacheResult(passage, hit=False, stored=stored)

        return await self.flights.do(passage_key(reference), lookup_or_generate)


class SyntaxCache:
    """Clause analyses keyed by normalized reference plus output language."""

    def __init__(self, store: SessionRepository, flights: Optional[SingleFlight] = None):
        self.store = store
        self.flights = flights or SingleFlight()

    async def get(self, reference: str, language: str) -> Optional[PassageSyntaxAnalysis]:
        key = syntax_key(reference, language)
        try:
            analysis = await self.store.get_cached_syntax(key)
        except Exception as e:
            logger.warning(f"Syntax cache read failed for '{key}': {e}")
            return None
        logger.info(f"Syntax cache {'HIT' if analysis else 'MISS'}: {key}")
        return analysis

    async def set(self, reference: str, language: str, analysis: PassageSyntaxAnalysis) -> bool:
        key = syntax_key(reference, language)
        try:
            await self.store.cache_syntax(key, analysis)
        except Exception as e:
            logger.warning(f"Syntax cache write failed for '{key}': {e}")
            return False
        return True

    async def get_or_generate(
        self,
        reference: str,
        language: str,
        generate: Callable[[], Awaitable[PassageSyntaxAnalysis]],
    ) -> CacheResult[PassageSyntaxAnalysis]:
        async def lookup_or_generate() -> CacheResult[PassageSyntaxAnalysis]:
            cached = await self.get(reference, language)
            if cached is not None:
                return CacheResult(cached, hit=True)
            analysis = await generate()
            stored = await self.set(reference, language, analysis)
            return CacheResult(analysis, hit=False, stored=stored)

        return await self.flights.do(f"syntax:{syntax_key(reference, language)}", lookup_or_generate)


class WordCache:
    """Lexical cache keyed by trimmed lemma plus output language."""

    def __init__(self, store: SessionRepository, flights: Optional[SingleFlight] = None):
        self.store = store
        self.flights = flights or SingleFlight()

    async def get(self, lemma: str, language: str) -> Optional[WordCacheEntry]:
        key = word_key(lemma, language)
        try:
            entry = await self.store.get_cached_word(key)
        except Exception as e:
            logger.warning(f"Word cache read failed for '{key}': {e}")
            return None
        logger.info(f"Word cache {'HIT' if entry else 'MISS'}: {key}")
        return entry

    async def set(self, entry: WordCacheEntry) -> bool:
        key = word_key(entry.lemma, entry.language)
        try:
            await self.store.cache_word(key, entry)
        except Exception as e:
            logger.warning(f"Word cache write failed for '{key}': {e}")
            return False
        return True

    async def get_or_generate(
        self,
        lemma: str,
        language: str,
        generate: Callable[[], Awaitable[WordCacheEntry]],
        usable: Callable[[WordCacheEntry], bool] = lambda entry: True,
    ) -> CacheResult[WordCacheEntry]:
        """Single-flight lookup for a lexical entry.

        A cached entry that ``usable`` rejects counts as a miss and is
        replaced by the generated one. Every caller in the flight gets the
        same entry back and derives its own value from it.
        """

        async def lookup_or_generate() -> CacheResult[WordCacheEntry]:
            cached = await self.get(lemma, language)
            if cached is not None and usable(cached):
                return CacheResult(cached, hit=True)
            entry = await generate()
            stored = await self.set(entry)
            return CacheResult(entry, hit=False, stored=stored)

        return await self.flights.do(word_key(lemma, language), lookup_or_generate)
