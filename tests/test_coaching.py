import pytest

from greektutor.coaching import CoachingStyle, StrategySelector, is_vague


@pytest.fixture
def selector():
    return StrategySelector()


@pytest.mark.parametrize(
    "query, style",
    [
        ("¿Qué significa παρακαλῶ en este versículo?", CoachingStyle.DIDACTIC),
        ("Dame 5 títulos para una serie sobre Romanos", CoachingStyle.DIRECT),
        ("¿Qué opciones tengo para predicar este texto?", CoachingStyle.EXPLORATORY),
        ("Quiero hacer una serie de Navidad", CoachingStyle.SOCRATIC),
        ("Explícame la diferencia entre aoristo y perfecto", CoachingStyle.DIDACTIC),
    ],
)
def test_pattern_selection(selector, query, style):
    assert selector.select_strategy(query).style is style


def test_didactic_outranks_direct(selector):
    query = "Dame 3 ejemplos y explícame cómo funciona el aoristo"
    assert selector.select_strategy(query).style is CoachingStyle.DIDACTIC


def test_word_count_fallback(selector):
    short = "hábleme del griego"
    long = " ".join(["palabra"] * 30)
    medium = " ".join(["palabra"] * 15)

    assert selector.select_strategy(short).style is CoachingStyle.SOCRATIC
    assert selector.select_strategy(long).style is CoachingStyle.DIRECT
    assert selector.select_strategy(medium).style is CoachingStyle.SOCRATIC


def test_explicit_preference_wins(selector):
    strategy = selector.select_strategy("Dame 5 títulos", preference="exploratory")
    assert strategy.style is CoachingStyle.EXPLORATORY


def test_all_styles_available(selector):
    styles = {s.style for s in selector.get_all_strategies()}
    assert styles == set(CoachingStyle)
    assert selector.get_strategy_by_style(CoachingStyle.DIRECT).style is CoachingStyle.DIRECT


def test_socratic_analysis_of_vague_query(selector):
    strategy = selector.get_strategy_by_style(CoachingStyle.SOCRATIC)
    analysis = strategy.analyze("quiero algo sobre la gracia")

    assert analysis.is_vague
    assert analysis.suggested_approach == "ask_first"
    assert analysis.intent == "ideas"
    assert analysis.detected_topics == ["Gracia"]
    assert analysis.confidence == pytest.approx(0.7)


def test_specific_query_is_not_vague():
    query = "¿Qué dice Wallace sobre el aoristo ingresivo y su uso en Romanos 12:1 cuando Pablo exhorta?"
    assert not is_vague(query)


def test_guiding_questions_only_for_socratic(selector):
    socratic = selector.get_strategy_by_style(CoachingStyle.SOCRATIC)
    direct = selector.get_strategy_by_style(CoachingStyle.DIRECT)

    questions = socratic.generate_guiding_questions("serie sobre la resurrección")
    assert len(questions) == 4
    assert "Resurrección" in questions[0]
    assert direct.generate_guiding_questions("serie sobre la resurrección") == []


def test_fe_topic_needs_whole_word(selector):
    strategy = selector.get_strategy_by_style(CoachingStyle.DIRECT)
    assert strategy.analyze("la fe de Abraham").detected_topics == ["Fe"]
    assert strategy.analyze("el café del pastor").detected_topics == []


def test_prompt_additions_differ_by_style(selector):
    additions = {s.build_system_prompt_additions() for s in selector.get_all_strategies()}
    assert len(additions) == 4
