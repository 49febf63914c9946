import asyncio
import uuid
from collections import Counter
from typing import Awaitable, Callable, Dict, List, Optional

import pytest
from redis.exceptions import WatchError

from greektutor.errors import StoreError
from greektutor.gateway import GenerationGateway
from greektutor.models import (
    BiblicalPassage,
    Clause,
    GreekForm,
    MorphemeComponent,
    MorphologyBreakdown,
    PassageSyntaxAnalysis,
    PassageWord,
    QuizQuestion,
    ResponseEvaluation,
    TrainingUnit,
    UnitPreview,
)
from greektutor.repository import MemorySessionRepository
from greektutor.syntax import link_child_clauses


class FakeGateway(GenerationGateway):
    """Scripted gateway that counts calls per operation."""

    def __init__(self, forms: Optional[List[str]] = None, delay: float = 0.0):
        self.forms = forms if forms is not None else ["παρακαλῶ", "παραστῆσαι", "μεταμορφοῦσθε"]
        self.delay = delay
        self.calls = Counter()
        self.fail_on: Dict[str, Exception] = {}
        self.fail_forms: Dict[str, Exception] = {}
        self.last_context = None
        self.syntax: Optional[PassageSyntaxAnalysis] = None

    async def _step(self, name: str) -> None:
        self.calls[name] += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if name in self.fail_on:
            raise self.fail_on[name]

    async def identify_forms(self, passage, store_id=None, config=None, language="Spanish"):
        await self._step("identify_forms")
        return list(self.forms)

    async def create_training_unit(self, form, passage, store_id=None, config=None, language="Spanish"):
        await self._step("create_training_unit")
        if form in self.fail_forms:
            raise self.fail_forms[form]
        return make_unit(form)

    async def identify_word_for_unit(self, word, context, store_id=None, language="Spanish"):
        await self._step("identify_word_for_unit")
        return UnitPreview(
            greek_form=GreekForm(
                text=word.greek,
                lemma=word.lemma or "παρακαλέω",
                morphology="V-PAI-1S",
                gloss="exhortar",
                grammatical_category="Verb",
            ),
            identification="Presente Activo Indicativo 1S",
            recognition_guidance="Contracto en -έω",
        )

    async def explain_morphology(self, word, passage, store_id=None, language="Spanish"):
        await self._step("explain_morphology")
        return MorphologyBreakdown(
            word=word,
            components=[MorphemeComponent(part="παρα-", type="prefix", meaning="junto a")],
            summary="Presente activo",
        )

    async def evaluate_response(self, unit, user_answer, store_id=None, language="Spanish"):
        await self._step("evaluate_response")
        return ResponseEvaluation(feedback="Bien visto", is_correct=True)

    async def answer_free_question(self, question, context, store_id=None, language="Spanish"):
        await self._step("answer_free_question")
        self.last_context = context
        return f"Respuesta: {question}"

    async def get_passage_text(self, reference, store_id=None, language="Spanish"):
        await self._step("get_passage_text")
        return BiblicalPassage(
            reference=reference,
            rv60_text="Así que, hermanos, os ruego...",
            greek_text="Παρακαλῶ οὖν ὑμᾶς",
            words=[PassageWord(id="w1", greek="Παρακαλῶ", lemma="παρακαλέω")],
        )

    async def analyze_passage_syntax(self, passage, store_id=None, language="Spanish"):
        await self._step("analyze_passage_syntax")
        if self.syntax is not None:
            return self.syntax
        indices = list(range(len(passage.words)))
        split = max(1, len(indices) // 2)
        clauses = [Clause(id="clause_1", type="MAIN", word_indices=indices[:split], main_verb_index=0)]
        if indices[split:]:
            clauses.append(
                Clause(
                    id="clause_2",
                    type="SUBORDINATE_PURPOSE",
                    word_indices=indices[split:],
                    parent_clause_id="clause_1",
                )
            )
        return PassageSyntaxAnalysis(
            passage_reference=passage.reference,
            clauses=link_child_clauses(clauses),
            root_clause_id="clause_1",
            structure_description="Exhortación con cláusula de propósito",
        )

    async def generate_quiz_questions(self, unit, count, language="Spanish"):
        await self._step("generate_quiz_questions")
        return [make_question(unit.id, f"Pregunta {i}") for i in range(count)]


def make_unit(form: str = "παρακαλῶ", session_id: str = "", lemma: str = "παρακαλέω") -> TrainingUnit:
    return TrainingUnit(
        id=str(uuid.uuid4()),
        session_id=session_id,
        greek_form=GreekForm(text=form, lemma=lemma, gloss="exhortar", grammatical_category="Verb"),
        identification="Presente Activo Indicativo",
        function_in_context="Verbo principal",
        significance="Exhortación apostólica",
        reflective_question="¿Por qué exhorta Pablo?",
    )


def make_question(
    unit_id: str = "u1", text: str = "¿Qué tiempo es?", type: str = "multiple-choice", answer: str = "Presente"
) -> QuizQuestion:
    return QuizQuestion(
        id=str(uuid.uuid4()),
        unit_id=unit_id,
        type=type,
        question=text,
        options=["Presente", "Aoristo", "Futuro", "Perfecto"],
        correct_answer=answer,
        explanation="La desinencia -ῶ marca presente.",
    )


def make_passage(reference: str = "Romanos 12:1") -> BiblicalPassage:
    words = ["Παρακαλῶ", "οὖν", "ὑμᾶς", "ἀδελφοί", "παραστῆσαι", "τὰ", "σώματα"]
    return BiblicalPassage(
        reference=reference,
        greek_text=" ".join(words),
        words=[PassageWord(id=f"w{i + 1}", greek=w, position=i) for i, w in enumerate(words)],
    )


class FailingRepository(MemorySessionRepository):
    """Memory repository whose writes to progress and caches always fail."""

    async def update_unit_progress(self, session_id, unit_id, progress):
        raise StoreError("store unavailable")

    async def save_quiz_attempt(self, session_id, attempt):
        raise StoreError("store unavailable")

    async def get_cached_passage(self, key):
        raise StoreError("store unavailable")

    async def cache_passage(self, key, passage):
        raise StoreError("store unavailable")

    async def cache_word(self, key, entry):
        raise StoreError("store unavailable")

    async def cache_syntax(self, key, analysis):
        raise StoreError("store unavailable")

    async def update_unit_morphology(self, session_id, unit_id, morphology):
        raise StoreError("store unavailable")


class FakeRedisPipeline:
    """Pipeline double: immediate reads after WATCH, buffered writes after MULTI."""

    def __init__(self, client: "FakeRedis"):
        self.client = client
        self._reset()

    def _reset(self):
        self.commands = []
        self.watched: Dict[str, int] = {}
        self.immediate = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        self._reset()

    async def watch(self, *keys):
        self.client._check()
        for key in keys:
            self.watched[key] = self.client.versions[key]
        self.immediate = True

    def multi(self):
        self.immediate = False

    def _command(self, name, *args):
        if self.immediate:
            return getattr(self.client, name)(*args)
        self.commands.append((name, args))
        return self

    def get(self, key):
        return self._command("get", key)

    def set(self, key, value):
        return self._command("set", key, value)

    def sadd(self, key, *members):
        return self._command("sadd", key, *members)

    def srem(self, key, *members):
        return self._command("srem", key, *members)

    def delete(self, *keys):
        return self._command("delete", *keys)

    async def execute(self):
        if self.watched:
            while self.client.interleave:
                await self.client.interleave.pop(0)()
        self.client._check()
        changed = any(self.client.versions[k] != v for k, v in self.watched.items())
        commands = self.commands
        self._reset()
        if changed:
            raise WatchError("Watched variable changed.")
        return [await getattr(self.client, name)(*args) for name, args in commands]


class FakeRedis:
    """In-memory double for the subset of redis.asyncio.Redis the repository uses.

    Values are kept as decoded strings, matching ``decode_responses=True``.
    Coroutines queued in ``interleave`` run just before a watched pipeline
    executes, standing in for a concurrent writer.
    """

    def __init__(self):
        self.data: Dict[str, object] = {}
        self.versions: Counter = Counter()
        self.interleave: List[Callable[[], Awaitable[object]]] = []
        self.fail_with: Optional[Exception] = None

    def _check(self):
        if self.fail_with is not None:
            raise self.fail_with

    def _touch(self, key):
        self.versions[key] += 1

    def pipeline(self, transaction=True):
        return FakeRedisPipeline(self)

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value):
        self._check()
        self.data[key] = value
        self._touch(key)
        return True

    async def mget(self, keys):
        self._check()
        return [self.data.get(key) for key in keys]

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
                self._touch(key)
        return removed

    async def hset(self, key, field, value):
        self._check()
        self.data.setdefault(key, {})[field] = value
        self._touch(key)
        return 1

    async def hget(self, key, field):
        self._check()
        return self.data.get(key, {}).get(field)

    async def hgetall(self, key):
        self._check()
        return dict(self.data.get(key, {}))

    async def sadd(self, key, *members):
        self._check()
        self.data.setdefault(key, set()).update(members)
        self._touch(key)
        return len(members)

    async def srem(self, key, *members):
        self._check()
        current = self.data.get(key, set())
        current.difference_update(members)
        if not current:
            self.data.pop(key, None)
        self._touch(key)
        return len(members)

    async def smembers(self, key):
        self._check()
        return set(self.data.get(key, set()))

    async def rpush(self, key, *values):
        self._check()
        items = self.data.setdefault(key, [])
        items.extend(values)
        self._touch(key)
        return len(items)

    async def lrange(self, key, start, end):
        self._check()
        items = self.data.get(key, [])
        return items[start:] if end == -1 else items[start : end + 1]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def repository():
    return MemorySessionRepository()


@pytest.fixture
def failing_repository():
    return FailingRepository()


@pytest.fixture
def fake_redis():
    return FakeRedis()
