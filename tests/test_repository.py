import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from greektutor.errors import StoreError
from greektutor.models import (
    BiblicalPassage,
    Clause,
    ExegeticalInsight,
    MorphologyBreakdown,
    PassageSyntaxAnalysis,
    QuizAttempt,
    StudySession,
    UnitProgress,
    UserResponse,
    WordCacheEntry,
)
from greektutor.repository import MemorySessionRepository, RedisSessionRepository

from conftest import make_question, make_unit

PREFIX = "greektutor-test"


@pytest.fixture(params=["memory", "redis"])
def backend(request, fake_redis):
    if request.param == "memory":
        return MemorySessionRepository()
    return RedisSessionRepository(fake_redis, prefix=PREFIX)


@pytest.fixture
def redis_repository(fake_redis):
    return RedisSessionRepository(fake_redis, prefix=PREFIX)


def _session(session_id="s1", user_id="user-1"):
    return StudySession(id=session_id, user_id=user_id, passage="Romanos 12:1-2", units=[make_unit()])


def _response(response_id="r1"):
    return UserResponse(id=response_id, unit_id="u1", user_answer="Presente", feedback="Bien", is_correct=True)


def _insight(insight_id="i1", user_id="user-1"):
    return ExegeticalInsight(id=insight_id, session_id="s1", user_id=user_id, content="Nota")


def test_session_round_trip_merges_responses(backend):
    async def scenario():
        await backend.create_session(_session())
        await backend.save_response("s1", _response("r1"))
        await backend.save_response("s1", _response("r2"))
        return await backend.get_session("s1"), await backend.get_all_sessions("user-1")

    session, listed = asyncio.run(scenario())

    assert set(session.responses) == {"r1", "r2"}
    assert session.responses["r1"].feedback == "Bien"
    assert [s.id for s in listed] == ["s1"]
    assert asyncio.run(backend.get_all_sessions("user-2")) == []


def test_add_unit_and_morphology(backend):
    unit = make_unit("παραστῆσαι")
    morphology = MorphologyBreakdown(word="παραστῆσαι", summary="Aoristo infinitivo")

    async def scenario():
        await backend.create_session(_session())
        added = await backend.add_unit("s1", unit)
        replaced = await backend.update_unit_morphology("s1", unit.id, morphology)
        missing_unit = await backend.update_unit_morphology("s1", "nope", morphology)
        missing_session = await backend.add_unit("nope", unit)
        return added, replaced, missing_unit, missing_session, await backend.get_session("s1")

    added, replaced, missing_unit, missing_session, session = asyncio.run(scenario())

    assert added and replaced
    assert not missing_unit and not missing_session
    assert [u.greek_form.text for u in session.units] == ["παρακαλῶ", "παραστῆσαι"]
    assert session.units[1].morphology_breakdown.summary == "Aoristo infinitivo"


def test_delete_session_drops_sub_collections(backend):
    attempt = QuizAttempt(id="a1", unit_id="u1", question_id="q1", user_answer="x", is_correct=False)

    async def scenario():
        await backend.create_session(_session())
        await backend.save_response("s1", _response())
        await backend.update_unit_progress("s1", "u1", UnitProgress(mastery_level=1))
        await backend.save_quiz_attempt("s1", attempt)
        await backend.delete_session("s1")
        return (
            await backend.get_session("s1"),
            await backend.get_all_sessions("user-1"),
            await backend.get_unit_progress("s1", "u1"),
            await backend.get_quiz_attempts("s1"),
        )

    session, listed, progress, attempts = asyncio.run(scenario())

    assert session is None
    assert listed == []
    assert progress is None
    assert attempts == []


def test_progress_and_attempts(backend):
    first = QuizAttempt(id="a1", unit_id="u1", question_id="q1", user_answer="x", is_correct=True)
    second = QuizAttempt(id="a2", unit_id="u2", question_id="q2", user_answer="y", is_correct=False)

    async def scenario():
        await backend.update_unit_progress("s1", "u1", UnitProgress(viewed_sections=["identification"]))
        await backend.update_unit_progress("s1", "u2", UnitProgress(mastery_level=2))
        await backend.save_quiz_attempt("s1", first)
        await backend.save_quiz_attempt("s1", second)
        return (
            await backend.get_unit_progress("s1", "u1"),
            await backend.get_session_unit_progress("s1"),
            await backend.get_quiz_attempts("s1"),
        )

    progress, by_unit, attempts = asyncio.run(scenario())

    assert progress.viewed_sections == ["identification"]
    assert by_unit["u2"].mastery_level == 2
    assert [a.id for a in attempts] == ["a1", "a2"]


def test_insights_by_user(backend):
    async def scenario():
        await backend.save_insight(_insight("i1"))
        await backend.save_insight(_insight("i2"))
        await backend.save_insight(_insight("i3", user_id="user-2"))
        await backend.delete_insight("user-1", "i2")
        return (
            await backend.get_user_insights("user-1"),
            await backend.get_insight("i2"),
            await backend.get_user_insights("nobody"),
        )

    mine, deleted, nobody = asyncio.run(scenario())

    assert [i.id for i in mine] == ["i1"]
    assert deleted is None
    assert nobody == []


def test_global_caches(backend):
    passage = BiblicalPassage(reference="Juan 1:1", greek_text="Ἐν ἀρχῇ ἦν ὁ λόγος")
    entry = WordCacheEntry(lemma="λόγος", language="Spanish", gloss="palabra")
    questions = [make_question("u1", "¿Caso?"), make_question("u1", "¿Número?")]
    analysis = PassageSyntaxAnalysis(
        passage_reference="Juan 1:1",
        clauses=[Clause(id="clause_1", type="MAIN", word_indices=[0, 1, 2, 3, 4], main_verb_index=2)],
        root_clause_id="clause_1",
        structure_description="Una cláusula principal",
    )

    async def scenario():
        misses = (
            await backend.get_cached_passage("Juan 1:1"),
            await backend.get_cached_word("λόγος_Spanish"),
            await backend.get_cached_quiz("quiz_λόγος"),
            await backend.get_cached_syntax("Juan 1:1_Spanish"),
        )
        await backend.cache_passage("Juan 1:1", passage)
        await backend.cache_word("λόγος_Spanish", entry)
        await backend.cache_quiz("quiz_λόγος", questions)
        await backend.cache_syntax("Juan 1:1_Spanish", analysis)
        hits = (
            await backend.get_cached_passage("Juan 1:1"),
            await backend.get_cached_word("λόγος_Spanish"),
            await backend.get_cached_quiz("quiz_λόγος"),
            await backend.get_cached_syntax("Juan 1:1_Spanish"),
        )
        return misses, hits

    misses, (cached_passage, cached_word, cached_quiz, cached_syntax) = asyncio.run(scenario())

    assert misses == (None, None, [], None)
    assert cached_passage.greek_text == passage.greek_text
    assert cached_word.gloss == "palabra"
    assert [q.question for q in cached_quiz] == ["¿Caso?", "¿Número?"]
    assert cached_syntax.clauses[0].main_verb_index == 2


def test_redis_add_unit_retries_after_concurrent_write(redis_repository, fake_redis):
    other = RedisSessionRepository(fake_redis, prefix=PREFIX)
    theirs = make_unit("μεταμορφοῦσθε")
    ours = make_unit("παραστῆσαι")

    async def scenario():
        await redis_repository.create_session(_session())
        fake_redis.interleave.append(lambda: other.add_unit("s1", theirs))
        added = await redis_repository.add_unit("s1", ours)
        return added, await redis_repository.get_session("s1")

    added, session = asyncio.run(scenario())

    assert added
    assert [u.id for u in session.units[1:]] == [theirs.id, ours.id]


def test_redis_key_layout(redis_repository, fake_redis):
    async def scenario():
        await redis_repository.create_session(_session())
        await redis_repository.save_response("s1", _response())
        await redis_repository.save_insight(_insight())

    asyncio.run(scenario())

    assert f"{PREFIX}:session:s1" in fake_redis.data
    assert fake_redis.data[f"{PREFIX}:user_sessions:user-1"] == {"s1"}
    assert set(fake_redis.data[f"{PREFIX}:responses:s1"]) == {"r1"}
    assert fake_redis.data[f"{PREFIX}:user_insights:user-1"] == {"i1"}


def test_redis_delete_session_leaves_no_keys(redis_repository, fake_redis):
    async def scenario():
        await redis_repository.create_session(_session())
        await redis_repository.save_response("s1", _response())
        await redis_repository.update_unit_progress("s1", "u1", UnitProgress())
        await redis_repository.delete_session("s1")

    asyncio.run(scenario())

    assert not any("s1" in key for key in fake_redis.data)
    assert f"{PREFIX}:user_sessions:user-1" not in fake_redis.data


def test_redis_user_insights_skip_dangling_ids(redis_repository, fake_redis):
    async def scenario():
        await redis_repository.save_insight(_insight("i1"))
        await fake_redis.sadd(f"{PREFIX}:user_insights:user-1", "gone")
        return await redis_repository.get_user_insights("user-1")

    insights = asyncio.run(scenario())
    assert [i.id for i in insights] == ["i1"]


def test_redis_errors_become_store_errors(redis_repository, fake_redis):
    fake_redis.fail_with = RedisConnectionError("connection refused")

    with pytest.raises(StoreError, match="Redis get_session failed: connection refused"):
        asyncio.run(redis_repository.get_session("s1"))
    with pytest.raises(StoreError, match="session update"):
        asyncio.run(redis_repository.add_unit("s1", make_unit()))
    with pytest.raises(StoreError, match="cache_syntax"):
        asyncio.run(
            redis_repository.cache_syntax(
                "k",
                PassageSyntaxAnalysis(
                    passage_reference="Juan 1:1",
                    clauses=[Clause(id="c1", type="MAIN", word_indices=[0])],
                    root_clause_id="c1",
                    structure_description="...",
                ),
            )
        )
