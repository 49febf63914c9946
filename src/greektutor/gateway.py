import json
import logging
import re
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from google import genai
from google.genai import types as genai_types

from .config import settings
from .models import (
    BiblicalPassage,
    Clause,
    GenerationConfig,
    GreekForm,
    MorphemeComponent,
    MorphologyBreakdown,
    PassageSyntaxAnalysis,
    PassageWord,
    QuestionContext,
    QuizQuestion,
    ResponseEvaluation,
    TrainingUnit,
    UnitPreview,
)
from .syntax import link_child_clauses
from . import prompts

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*")
_UNDEFINED = re.compile(r":\s*undefined\s*([,}\]])")
_COMPONENT_TYPES = {"prefix", "root", "formative", "ending", "other"}


def parse_json_response(text: str) -> Any:
    """Extracts the JSON payload from a model reply.

    Markdown fences and any prose before the first bracket or after the last
    one are dropped, and bare ``undefined`` values become null.
    """
    cleaned = _UNDEFINED.sub(r": null\1", _FENCE.sub("", text))
    starts = [i for i in (cleaned.find("{"), cleaned.find("[")) if i != -1]
    end = max(cleaned.rfind("}"), cleaned.rfind("]"))
    if not starts or end < min(starts):
        raise ValueError(f"No JSON found in model response: {text[:200]!r}")
    return json.loads(cleaned[min(starts) : end + 1])


def _greek_form(data: Dict[str, Any], fallback_text: str = "") -> GreekForm:
    return GreekForm(
        text=data.get("text") or fallback_text,
        transliteration=data.get("transliteration", ""),
        lemma=data.get("lemma", ""),
        morphology=data.get("morphology", ""),
        gloss=data.get("gloss", ""),
        grammatical_category=data.get("grammaticalCategory", ""),
    )


def _forms_list(data: Any) -> List[str]:
    # Accepts a bare array or an object wrapping one ({"forms": [...]}).
    if isinstance(data, dict):
        data = next((v for v in data.values() if isinstance(v, list)), [])
    if not isinstance(data, list):
        raise ValueError("Form selection did not return a list")
    return [str(item).strip() for item in data if str(item).strip()]


# --- Generation gateway ---
class GenerationGateway(ABC):
    """Everything the engine asks of the language model."""

    @abstractmethod
    async def identify_forms(
        self,
        passage: str,
        store_id: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> List[str]:
        pass

    @abstractmethod
    async def create_training_unit(
        self,
        form: str,
        passage: str,
        store_id: Optional[str] = None,
        config: Optional[GenerationConfig] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> TrainingUnit:
        pass

    @abstractmethod
    async def identify_word_for_unit(
        self,
        word: PassageWord,
        context: str,
        store_id: Optional[str] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> UnitPreview:
        pass

    @abstractmethod
    async def explain_morphology(
        self,
        word: str,
        passage: str,
        store_id: Optional[str] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> MorphologyBreakdown:
        pass

    @abstractmethod
    async def evaluate_response(
        self,
        unit: TrainingUnit,
        user_answer: str,
        store_id: Optional[str] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> ResponseEvaluation:
        pass

    @abstractmethod
    async def answer_free_question(
        self,
        question: str,
        context: QuestionContext,
        store_id: Optional[str] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> str:
        pass

    @abstractmethod
    async def get_passage_text(
        self,
        reference: str,
        store_id: Optional[str] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> BiblicalPassage:
        pass

    @abstractmethod
    async def analyze_passage_syntax(
        self,
        passage: BiblicalPassage,
        store_id: Optional[str] = None,
        language: str = settings.DEFAULT_LANGUAGE,
    ) -> PassageSyntaxAnalysis:
        pass

    @abstractmethod
    async def generate_quiz_questions(
        self, unit: TrainingUnit, count: int, language: str = settings.DEFAULT_LANGUAGE
    ) -> List[QuizQuestion]:
        pass


class GeminiGateway(GenerationGateway):
    """Gemini-backed gateway.

    When a file-search store id is given, the request carries the file-search
    tool and JSON mode is switched off, since the API rejects both together.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = settings.GEMINI_MODEL,
        temperature: float = settings.GEMINI_TEMPERATURE,
    ):
        self.api_key = api_key or settings.GEMINI_API_KEY
        if not self.api_key:
            raise ValueError("GEMINI_API_KEY not set. Check your .env file.")
        self.client = genai.Client(api_key=self.api_key)
        self.model_name = model
        self.temperature = temperature

    async def _generate(
        self,
        system_prompt: str,
        prompt: str,
        store_id: Optional[str] = None,
        json_output: bool = True,
        temperature: Optional[float] = None,
    ) -> str:
        config: Dict[str, Any] = {
            "system_instruction": system_prompt,
            "temperature": self.temperature if temperature is None else temperature,
        }
        if store_id:
            config["tools"] = [
                genai_types.Tool(
                    file_search=genai_types.FileSearch(file_search_store_names=[store_id])
                )
            ]
        elif json_output:
            config["response_mime_type"] = "application/json"

        response = await self.client.aio.models.generate_content(
            model=self.model_name,
            contents=prompt,
            config=genai_types.GenerateContentConfig(**config),
        )
        if not response.text:
            raise ValueError("Empty response from Gemini")
        return response.text

    async def _generate_json(self, system_prompt: str, prompt: str, **kwargs) -> Any:
        return parse_json_response(await self._generate(system_prompt, prompt, **kwargs))

    async def identify_forms(self, passage, store_id=None, config=None, language=settings.DEFAULT_LANGUAGE):
        data = await self._generate_json(
            prompts.FORM_SELECTION_SYSTEM_PROMPT,
            prompts.build_form_selection_prompt(passage, language, config),
            store_id=store_id,
        )
        forms = _forms_list(data)
        logger.info(f"Identified {len(forms)} forms in passage")
        return forms

    async def create_training_unit(self, form, passage, store_id=None, config=None, language=settings.DEFAULT_LANGUAGE):
        data = await self._generate_json(
            prompts.TRAINING_UNIT_SYSTEM_PROMPT,
            prompts.build_training_unit_prompt(form, passage, language, config),
            store_id=store_id,
        )
        return TrainingUnit(
            id=str(uuid.uuid4()),
            greek_form=_greek_form(data.get("greekForm") or {}, fallback_text=form),
            identification=data.get("identification", ""),
            recognition_guidance=data.get("recognitionGuidance") or None,
            function_in_context=data.get("functionInContext", ""),
            significance=data.get("significance", ""),
            reflective_question=data.get("reflectiveQuestion", ""),
        )

    async def identify_word_for_unit(self, word, context, store_id=None, language=settings.DEFAULT_LANGUAGE):
        data = await self._generate_json(
            prompts.WORD_IDENTIFICATION_SYSTEM_PROMPT,
            prompts.build_word_identification_prompt(word, context, language),
            store_id=store_id,
        )
        return UnitPreview(
            greek_form=_greek_form(data.get("greekForm") or {}, fallback_text=word.greek),
            identification=data.get("identification", ""),
            recognition_guidance=data.get("recognitionGuidance") or None,
        )

    async def explain_morphology(self, word, passage, store_id=None, language=settings.DEFAULT_LANGUAGE):
        data = await self._generate_json(
            prompts.MORPHOLOGY_SYSTEM_PROMPT,
            prompts.build_morphology_prompt(word, passage, language),
            store_id=store_id,
        )
        components = [
            MorphemeComponent(
                part=c.get("part", ""),
                type=c.get("type") if c.get("type") in _COMPONENT_TYPES else "other",
                meaning=c.get("meaning", ""),
            )
            for c in data.get("components") or []
        ]
        return MorphologyBreakdown(
            word=data.get("word") or word, components=components, summary=data.get("summary", "")
        )

    async def evaluate_response(self, unit, user_answer, store_id=None, language=settings.DEFAULT_LANGUAGE):
        data = await self._generate_json(
            prompts.FEEDBACK_SYSTEM_PROMPT,
            prompts.build_feedback_prompt(unit, user_answer, language),
            store_id=store_id,
        )
        return ResponseEvaluation(
            feedback=data.get("feedback", ""), is_correct=bool(data.get("isCorrect", False))
        )

    async def answer_free_question(self, question, context, store_id=None, language=settings.DEFAULT_LANGUAGE):
        general = not context.greek_word and not context.passage
        return await self._generate(
            prompts.build_free_question_system_prompt(language, general),
            prompts.build_free_question_prompt(question, context),
            store_id=store_id,
            json_output=False,
            temperature=settings.QUIZ_TEMPERATURE,
        )

    async def get_passage_text(self, reference, store_id=None, language=settings.DEFAULT_LANGUAGE):
        data = await self._generate_json(
            prompts.PASSAGE_TEXT_SYSTEM_PROMPT,
            prompts.build_passage_text_prompt(reference, language),
            store_id=store_id,
        )
        words = [
            PassageWord(
                id=w.get("id") or f"w{i + 1}",
                greek=w.get("greek", ""),
                transliteration=w.get("transliteration", ""),
                spanish=w.get("spanish", ""),
                position=w.get("position", i),
                lemma=w.get("lemma") or None,
            )
            for i, w in enumerate(data.get("words") or [])
        ]
        logger.info(f"Fetched passage {reference} with {len(words)} words")
        return BiblicalPassage(
            reference=data.get("reference") or reference,
            rv60_text=data.get("rv60Text", ""),
            greek_text=data.get("greekText", ""),
            transliteration=data.get("transliteration", ""),
            words=words,
        )

    async def generate_quiz_questions(self, unit, count, language=settings.DEFAULT_LANGUAGE):
        data = await self._generate_json(
            prompts.QUIZ_SYSTEM_PROMPT,
            prompts.build_quiz_prompt(unit, count, language),
            temperature=settings.QUIZ_TEMPERATURE,
        )
        items = data.get("questions", []) if isinstance(data, dict) else data
        return [
            QuizQuestion(
                id=str(uuid.uuid4()),
                unit_id=unit.id,
                type=q.get("type", "multiple-choice"),
                question=q.get("question", ""),
                options=q.get("options") or [],
                correct_answer=str(q.get("correctAnswer", "")),
                explanation=q.get("explanation", ""),
            )
            for q in items
        ]

    async def analyze_passage_syntax(self, passage, store_id=None, language=settings.DEFAULT_LANGUAGE):
        data = await self._generate_json(
            prompts.SYNTAX_SYSTEM_PROMPT,
            prompts.build_syntax_prompt(passage, language),
            store_id=store_id,
        )
        if not isinstance(data, dict):
            raise ValueError("Syntax analysis is not a JSON object")
        for field in ("clauses", "rootClauseId", "structureDescription"):
            if not data.get(field):
                raise ValueError(f'Syntax analysis is missing "{field}"')
        clauses = [
            Clause(
                id=c.get("id", ""),
                type=c.get("type", ""),
                word_indices=c.get("wordIndices") or [],
                main_verb_index=c.get("mainVerbIndex"),
                parent_clause_id=c.get("parentClauseId") or None,
                conjunction=c.get("conjunction") or None,
                greek_text=c.get("greekText", ""),
                translation=c.get("translation") or None,
                syntactic_function=c.get("syntacticFunction") or None,
            )
            for c in data["clauses"]
        ]
        logger.info(f"Analyzed syntax of {passage.reference}: {len(clauses)} clauses")
        return PassageSyntaxAnalysis(
            passage_reference=passage.reference,
            clauses=link_child_clauses(clauses),
            root_clause_id=data["rootClauseId"],
            structure_description=data["structureDescription"],
        )
