import asyncio

import pytest
from pydantic import ValidationError as ModelError

from greektutor.errors import GenerationError, ValidationError
from greektutor.models import BiblicalPassage, Clause, PassageSyntaxAnalysis
from greektutor.syntax import check_word_coverage, link_child_clauses
from greektutor.tutor import GreekTutor

from conftest import FakeGateway, make_passage


def _analysis(*index_groups):
    clauses = [
        Clause(
            id=f"clause_{n}",
            type="MAIN" if n == 1 else "PARTICIPIAL",
            word_indices=list(group),
            parent_clause_id=None if n == 1 else "clause_1",
        )
        for n, group in enumerate(index_groups, start=1)
    ]
    return PassageSyntaxAnalysis(
        passage_reference="Romanos 12:1",
        clauses=clauses,
        root_clause_id="clause_1",
        structure_description="Exhortación principal",
    )


def test_link_child_clauses():
    clauses = link_child_clauses(_analysis([0, 1], [2], [3]).clauses)
    assert clauses[0].child_clause_ids == ["clause_2", "clause_3"]
    assert clauses[1].child_clause_ids == []


def test_full_coverage_passes():
    check_word_coverage(_analysis([0, 1, 2, 3], [4, 5, 6]), make_passage())


@pytest.mark.parametrize(
    "groups, message",
    [
        (([0, 1, 2], [4, 5, 6]), "ἀδελφοί"),
        (([0, 1, 2, 3], [3, 4, 5, 6]), "multiple clauses"),
        (([0, 1, 2, 3], [4, 5, 6, 7]), "invalid word index 7"),
        (([0, 1, 2, 3], [-1, 4, 5, 6]), "invalid word index -1"),
    ],
)
def test_coverage_violations(groups, message):
    with pytest.raises(ValueError, match=message):
        check_word_coverage(_analysis(*groups), make_passage())


def test_clause_needs_words_and_verb_inside():
    with pytest.raises(ModelError):
        Clause(id="c", type="MAIN", word_indices=[])
    with pytest.raises(ModelError):
        Clause(id="c", type="MAIN", word_indices=[0, 1], main_verb_index=4)
    with pytest.raises(ModelError):
        Clause(id="c", type="NOMINAL", word_indices=[0])


def test_analysis_needs_existing_root():
    with pytest.raises(ModelError, match="clause_9"):
        PassageSyntaxAnalysis(
            passage_reference="Juan 1:1",
            clauses=[Clause(id="clause_1", type="MAIN", word_indices=[0])],
            root_clause_id="clause_9",
            structure_description="...",
        )


@pytest.fixture
def tutor(gateway, repository):
    return GreekTutor(gateway, repository)


def test_second_analysis_comes_from_cache(tutor, gateway, repository):
    passage = make_passage()

    async def scenario():
        first = await tutor.analyze_passage_syntax(passage)
        second = await tutor.analyze_passage_syntax(passage)
        return first, second

    first, second = asyncio.run(scenario())

    assert gateway.calls["analyze_passage_syntax"] == 1
    assert second.clauses == first.clauses
    assert first.clauses[0].child_clause_ids == ["clause_2"]
    assert "Romanos 12:1_Spanish" in repository.syntax


def test_cache_is_per_language(tutor, gateway):
    passage = make_passage()

    async def scenario():
        await tutor.analyze_passage_syntax(passage, language="Spanish")
        await tutor.analyze_passage_syntax(passage, language="English")

    asyncio.run(scenario())
    assert gateway.calls["analyze_passage_syntax"] == 2


def test_incomplete_analysis_is_rejected_and_not_cached(tutor, gateway, repository):
    gateway.syntax = _analysis([0, 1, 2], [4, 5, 6])

    with pytest.raises(GenerationError, match="Failed to analyze syntax of Romanos 12:1"):
        asyncio.run(tutor.analyze_passage_syntax(make_passage()))
    assert repository.syntax == {}


def test_passage_without_words_is_rejected(tutor, gateway):
    with pytest.raises(ValidationError):
        asyncio.run(tutor.analyze_passage_syntax(BiblicalPassage(reference="Juan 1:1")))
    assert gateway.calls["analyze_passage_syntax"] == 0


def test_analysis_survives_cache_failure(gateway, failing_repository):
    tutor = GreekTutor(gateway, failing_repository)
    analysis = asyncio.run(tutor.analyze_passage_syntax(make_passage()))
    assert analysis.root_clause_id == "clause_1"


def test_concurrent_analyses_share_one_generation(repository):
    gateway = FakeGateway(delay=0.01)
    tutor = GreekTutor(gateway, repository)

    async def scenario():
        return await asyncio.gather(*[tutor.analyze_passage_syntax(make_passage()) for _ in range(3)])

    results = asyncio.run(scenario())

    assert gateway.calls["analyze_passage_syntax"] == 1
    assert len(results) == 3
