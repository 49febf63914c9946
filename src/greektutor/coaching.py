"""Coaching styles for free-form questions.

A style shapes how the tutor answers: Socratic asks before answering,
direct goes straight to the point, exploratory lays out alternatives and
didactic teaches step by step. ``StrategySelector`` picks one from the wording
of the question unless the student asked for a specific style. Everything
here is pure text analysis.
"""

import logging
import re
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class CoachingStyle(str, Enum):
    SOCRATIC = "socratic"
    DIRECT = "direct"
    EXPLORATORY = "exploratory"
    DIDACTIC = "didactic"


AUTO = "auto"


class QueryAnalysis(BaseModel):
    is_vague: bool
    intent: str
    suggested_approach: str
    detected_topics: List[str] = Field(default_factory=list)
    confidence: float


def _compile(*patterns: str) -> List[re.Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


def _word_count(query: str) -> int:
    return len(query.split())


def _matches(patterns: List[re.Pattern], query: str) -> bool:
    return any(p.search(query) for p in patterns)


# --- Topic tables ---
_TOPICS: Dict[CoachingStyle, List[Tuple[re.Pattern, str]]] = {
    CoachingStyle.SOCRATIC: [
        (re.compile(r"navidad|nacimiento\s+de\s+(jesús|cristo)", re.I), "Navidad"),
        (re.compile(r"encarnación", re.I), "Encarnación"),
        (re.compile(r"resurrección", re.I), "Resurrección"),
        (re.compile(r"salvación|soteriología", re.I), "Salvación"),
        (re.compile(r"gracia", re.I), "Gracia"),
        (re.compile(r"\bfe\b", re.I), "Fe"),
        (re.compile(r"espíritu\s+santo|pneumatología", re.I), "Espíritu Santo"),
        (re.compile(r"cristología|persona\s+de\s+cristo", re.I), "Cristología"),
        (re.compile(r"trinidad", re.I), "Trinidad"),
        (re.compile(r"escatología|fin\s+de\s+los\s+tiempos", re.I), "Escatología"),
    ],
    CoachingStyle.DIRECT: [
        (re.compile(r"navidad", re.I), "Navidad"),
        (re.compile(r"resurrección", re.I), "Resurrección"),
        (re.compile(r"salvación", re.I), "Salvación"),
        (re.compile(r"gracia", re.I), "Gracia"),
        (re.compile(r"\bfe\b", re.I), "Fe"),
    ],
    CoachingStyle.EXPLORATORY: [
        (re.compile(r"navidad", re.I), "Navidad"),
        (re.compile(r"gracia", re.I), "Gracia"),
        (re.compile(r"\bfe\b", re.I), "Fe"),
        (re.compile(r"amor", re.I), "Amor"),
        (re.compile(r"esperanza", re.I), "Esperanza"),
    ],
    CoachingStyle.DIDACTIC: [
        (re.compile(r"unión\s+hipostática", re.I), "Cristología"),
        (re.compile(r"trinidad", re.I), "Trinidad"),
        (re.compile(r"encarnación", re.I), "Encarnación"),
        (re.compile(r"justificación", re.I), "Soteriología"),
        (re.compile(r"santificación", re.I), "Santificación"),
        (re.compile(r"expiación", re.I), "Expiación"),
        (re.compile(r"hermenéutica", re.I), "Hermenéutica"),
    ],
}


def extract_topics(style: CoachingStyle, query: str) -> List[str]:
    return [topic for pattern, topic in _TOPICS[style] if pattern.search(query)]


# --- Socratic analysis ---
_VAGUE = _compile(
    r"^quiero\s+(hacer|crear|preparar|diseñar)",
    r"^me\s+gustaría",
    r"^necesito\s+(ayuda|ideas)",
    r"^cómo\s+puedo",
    r"serie\s+de\s+\w+$",
    r"algo\s+sobre",
    r"tema\s+de",
    r"^ayúdame\s+con",
)
_SPECIFIC = _compile(
    r"¿qué\s+dice\s+\w+\s+sobre",
    r"según\s+\w+",
    r"en\s+\w+\s+\d+:\d+",
    r"comparar",
    r"diferencia\s+entre",
    r"explica(r|me)?\s+el\s+concepto",
)
_SOCRATIC_INTENTS = [
    (_compile(r"¿qué\s+dice|según|cita|menciona"), "specific_info"),
    (_compile(r"validar|revisar|está\s+bien|qué\s+opinas"), "validation"),
    (_compile(r"explica|qué\s+significa|qué\s+es"), "clarification"),
    (_compile(r"opciones|alternativas|diferentes\s+enfoques"), "exploration"),
    (_compile(r"quiero|me\s+gustaría|necesito|ayuda"), "ideas"),
]
_DIRECT_INTENTS = [
    (_compile(r"dame|necesito|quiero\s+\d+|lista"), "ideas"),
    (_compile(r"qué\s+es|significa|explica"), "clarification"),
    (_compile(r"qué\s+dice|según"), "specific_info"),
]


def _first_intent(table, query: str, default: str) -> str:
    for patterns, intent in table:
        if _matches(patterns, query):
            return intent
    return default


def is_vague(query: str) -> bool:
    words = _word_count(query)
    if words < 10:
        return True
    if _matches(_VAGUE, query):
        return True
    if _matches(_SPECIFIC, query):
        return False
    return words < 20


def _socratic_confidence(query: str, vague: bool, intent: str) -> float:
    words = _word_count(query)
    confidence = 0.5
    if words > 20:
        confidence += 0.2
    if words > 40:
        confidence += 0.1
    if intent == "specific_info":
        confidence += 0.2
    if intent == "validation":
        confidence += 0.15
    if words < 8 and vague:
        confidence += 0.2
    return min(confidence, 1.0)


def _analyze_socratic(query: str) -> QueryAnalysis:
    vague = is_vague(query)
    intent = _first_intent(_SOCRATIC_INTENTS, query, "general_topic")
    if vague:
        approach = "ask_first"
    elif intent == "specific_info":
        approach = "direct_answer"
    else:
        approach = "answer_with_questions"
    return QueryAnalysis(
        is_vague=vague,
        intent=intent,
        suggested_approach=approach,
        detected_topics=extract_topics(CoachingStyle.SOCRATIC, query),
        confidence=_socratic_confidence(query, vague, intent),
    )


def _analyze_direct(query: str) -> QueryAnalysis:
    return QueryAnalysis(
        is_vague=False,
        intent=_first_intent(_DIRECT_INTENTS, query, "general_topic"),
        suggested_approach="direct_answer",
        detected_topics=extract_topics(CoachingStyle.DIRECT, query),
        confidence=0.8,
    )


def _analyze_exploratory(query: str) -> QueryAnalysis:
    return QueryAnalysis(
        is_vague=False,
        intent="exploration",
        suggested_approach="answer_with_questions",
        detected_topics=extract_topics(CoachingStyle.EXPLORATORY, query),
        confidence=0.75,
    )


def _analyze_didactic(query: str) -> QueryAnalysis:
    return QueryAnalysis(
        is_vague=False,
        intent="clarification",
        suggested_approach="answer_with_questions",
        detected_topics=extract_topics(CoachingStyle.DIDACTIC, query),
        confidence=0.8,
    )


_ANALYZERS: Dict[CoachingStyle, Callable[[str], QueryAnalysis]] = {
    CoachingStyle.SOCRATIC: _analyze_socratic,
    CoachingStyle.DIRECT: _analyze_direct,
    CoachingStyle.EXPLORATORY: _analyze_exploratory,
    CoachingStyle.DIDACTIC: _analyze_didactic,
}

# --- Prompt additions ---
_PROMPT_ADDITIONS: Dict[CoachingStyle, str] = {
    CoachingStyle.SOCRATIC: """## ESTILO DE COACHING: SOCRÁTICO

Guía al estudiante a pensar en lugar de darle solo respuestas.
- Ante preguntas vagas: valida la idea en 1-2 oraciones y presenta de 3 a 5
  preguntas orientadoras (pastoral, teológica, práctica, de enfoque) antes de
  responder.
- Ante preguntas específicas: responde directamente, cita las fuentes y
  termina con UNA pregunta de reflexión.
- Fuerza siempre la reflexión teológica, exegética y homilética.""",
    CoachingStyle.DIRECT: """## ESTILO DE COACHING: DIRECTO

Responde de forma rápida, concisa y accionable.
- Ve al grano sin preguntas orientadoras previas.
- Estructura: respuesta principal (1-2 párrafos), puntos clave en lista y
  una acción sugerida.
- Cita fuentes brevemente y prioriza la aplicación práctica.""",
    CoachingStyle.EXPLORATORY: """## ESTILO DE COACHING: EXPLORATORIO

Presenta múltiples enfoques para fomentar la creatividad.
- Ofrece al menos 3 opciones distintas y viables, cada una con sus pros y
  sus contras.
- Cierra con una recomendación razonada.
- Usa giros como "¿Has considerado...?" u "Otra posibilidad es...".""",
    CoachingStyle.DIDACTIC: """## ESTILO DE COACHING: DIDÁCTICO

Enseña el concepto paso a paso hasta asegurar la comprensión.
- Estructura: contexto, concepto base, desarrollo, ejemplo práctico y una
  pregunta de verificación.
- Define los términos técnicos y usa analogías cotidianas.
- Conecta la doctrina con la práctica pastoral.""",
}


def _socratic_questions(query: str) -> List[str]:
    topics = extract_topics(CoachingStyle.SOCRATIC, query)
    topic = ", ".join(topics) if topics else "este tema"
    return [
        f"¿Cuál es la necesidad espiritual más apremiante de tu congregación en esta temporada que {topic} podría abordar?",
        "¿Cuántas semanas/sermones tienes disponibles para esta serie? Esto nos ayudará a determinar la profundidad.",
        f'¿Hay algún pasaje bíblico, personaje o "ángulo" específico de {topic} que sientas que necesita más atención?',
        "¿Qué quieres que tu congregación ENTIENDA, SIENTA y HAGA al concluir esta serie?",
    ]


class CoachingStrategy:
    """One coaching style; behaviour is looked up in the style tables."""

    def __init__(self, style: CoachingStyle):
        self.style = style

    def analyze(self, query: str, context: Optional[dict] = None) -> QueryAnalysis:
        return _ANALYZERS[self.style](query)

    def build_system_prompt_additions(self) -> str:
        return _PROMPT_ADDITIONS[self.style]

    def generate_guiding_questions(self, query: str, context: Optional[dict] = None) -> List[str]:
        if self.style is CoachingStyle.SOCRATIC:
            return _socratic_questions(query)
        return []


# --- Selection ---
_SELECTION_PATTERNS: List[Tuple[CoachingStyle, int, List[re.Pattern]]] = [
    (
        CoachingStyle.DIRECT,
        3,
        _compile(
            r"dame\s+\d+",
            r"necesito\s+rápido",
            r"lista\s+de",
            r"sugiere\s+\d+",
            r"títulos?\s+para",
            r"sin\s+explicar",
        ),
    ),
    (
        CoachingStyle.DIDACTIC,
        4,
        _compile(
            r"qué\s+es\s+(la|el|un|una)",
            r"qué\s+significa",
            r"explícame",
            r"enséñame",
            r"cómo\s+funciona",
            r"ayúdame\s+a\s+entender",
            r"en\s+qué\s+consiste",
            r"diferencia\s+entre",
            r"unión\s+hipostática",
            r"hermenéutica",
            r"exégesis",
        ),
    ),
    (
        CoachingStyle.EXPLORATORY,
        3,
        _compile(
            r"opciones",
            r"alternativas",
            r"diferentes\s+(enfoques|formas|maneras)",
            r"qué\s+puedo",
            r"cuáles\s+son\s+las\s+formas",
            r"varias\s+ideas",
            r"múltiples",
            r"comparar",
        ),
    ),
    (
        CoachingStyle.SOCRATIC,
        2,
        _compile(
            r"^quiero\s+(hacer|crear|preparar)",
            r"^me\s+gustaría",
            r"^estoy\s+pensando",
            r"^tengo\s+la\s+idea",
            r"serie\s+de\s+\w+$",
            r"algo\s+sobre",
        ),
    ),
]


class StrategySelector:
    def __init__(self):
        self._strategies: Dict[CoachingStyle, CoachingStrategy] = {
            style: CoachingStrategy(style) for style in CoachingStyle
        }

    def get_all_strategies(self) -> List[CoachingStrategy]:
        return list(self._strategies.values())

    def get_strategy_by_style(self, style: CoachingStyle) -> CoachingStrategy:
        return self._strategies[CoachingStyle(style)]

    def select_strategy(
        self, query: str, context: Optional[dict] = None, preference: str = AUTO
    ) -> CoachingStrategy:
        """Returns the strategy for an explicit preference, or picks one.

        Each pattern group counts once; the highest-priority match wins, with
        ties going to the group listed first. Without a match, short questions
        get the Socratic style and long ones the direct style.
        """
        if preference and preference != AUTO:
            strategy = self.get_strategy_by_style(CoachingStyle(preference))
            logger.info(f"Using preferred coaching style: {strategy.style.value}")
            return strategy

        style = self._select_style(query)
        logger.info(f"Auto-selected coaching style {style.value} for: {query[:40]!r}")
        return self._strategies[style]

    def _select_style(self, query: str) -> CoachingStyle:
        matched = [
            (priority, style)
            for style, priority, patterns in _SELECTION_PATTERNS
            if _matches(patterns, query)
        ]
        if matched:
            return max(matched, key=lambda m: m[0])[1]

        words = _word_count(query)
        if words > 25:
            return CoachingStyle.DIRECT
        return CoachingStyle.SOCRATIC
