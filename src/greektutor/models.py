from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _now() -> datetime:
    return datetime.now()


# --- Enums ---
class SessionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ABANDONED = "ABANDONED"


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    FILL_BLANK = "fill-blank"


MasteryLevel = Literal[0, 1, 2, 3]


# --- Lexical content ---
class GreekForm(BaseModel):
    text: str
    transliteration: str = ""
    lemma: str = ""
    morphology: str = ""
    gloss: str = ""
    grammatical_category: str = ""


class MorphemeComponent(BaseModel):
    part: str
    type: Literal["prefix", "root", "formative", "ending", "other"] = "other"
    meaning: str = ""


class MorphologyBreakdown(BaseModel):
    word: str
    components: List[MorphemeComponent] = Field(default_factory=list)
    summary: str = ""


class TrainingUnit(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str = ""
    greek_form: GreekForm
    identification: str
    recognition_guidance: Optional[str] = None
    function_in_context: str
    significance: str
    reflective_question: str = ""
    morphology_breakdown: Optional[MorphologyBreakdown] = None

    def attach_to(self, session_id: str) -> "TrainingUnit":
        return self.model_copy(update={"session_id": session_id})


class UnitPreview(BaseModel):
    greek_form: GreekForm
    identification: str
    recognition_guidance: Optional[str] = None


class PassageWord(BaseModel):
    id: str
    greek: str
    transliteration: str = ""
    spanish: str = ""
    position: int = 0
    lemma: Optional[str] = None
    is_in_units: bool = False


class BiblicalPassage(BaseModel):
    reference: str
    rv60_text: str = ""
    greek_text: str = ""
    transliteration: str = ""
    words: List[PassageWord] = Field(default_factory=list)


class GenerationConfig(BaseModel):
    base_prompt: Optional[str] = None
    user_prompts: List[str] = Field(default_factory=list)


# --- Syntax ---
class ClauseType(str, Enum):
    MAIN = "MAIN"
    SUBORDINATE_PURPOSE = "SUBORDINATE_PURPOSE"
    SUBORDINATE_RESULT = "SUBORDINATE_RESULT"
    SUBORDINATE_CAUSAL = "SUBORDINATE_CAUSAL"
    SUBORDINATE_CONDITIONAL = "SUBORDINATE_CONDITIONAL"
    SUBORDINATE_TEMPORAL = "SUBORDINATE_TEMPORAL"
    SUBORDINATE_INDIRECT_QUESTION = "SUBORDINATE_INDIRECT_QUESTION"
    PARTICIPIAL = "PARTICIPIAL"
    INFINITIVAL = "INFINITIVAL"
    RELATIVE = "RELATIVE"


class Clause(BaseModel):
    """A clause of a passage; word indices point into ``BiblicalPassage.words``."""

    id: str
    type: ClauseType
    word_indices: List[int] = Field(min_length=1)
    main_verb_index: Optional[int] = None
    parent_clause_id: Optional[str] = None
    child_clause_ids: List[str] = Field(default_factory=list)
    conjunction: Optional[str] = None
    greek_text: str = ""
    translation: Optional[str] = None
    syntactic_function: Optional[str] = None

    @model_validator(mode="after")
    def _verb_inside_clause(self) -> "Clause":
        if self.main_verb_index is not None and self.main_verb_index not in self.word_indices:
            raise ValueError(f"main verb index {self.main_verb_index} is outside clause {self.id}")
        return self


class PassageSyntaxAnalysis(BaseModel):
    passage_reference: str
    clauses: List[Clause] = Field(min_length=1)
    root_clause_id: str
    structure_description: str
    analyzed_at: datetime = Field(default_factory=_now)

    @model_validator(mode="after")
    def _root_exists(self) -> "PassageSyntaxAnalysis":
        if not any(clause.id == self.root_clause_id for clause in self.clauses):
            raise ValueError(f"root clause {self.root_clause_id} not found in clauses")
        return self


# --- Quiz & progress ---
class QuizQuestion(BaseModel):
    id: str
    unit_id: str = ""
    type: str
    question: str
    options: List[str] = Field(default_factory=list)
    correct_answer: str
    explanation: str = ""
    created_at: datetime = Field(default_factory=_now)
    cache_key: Optional[str] = None
    usage_count: int = 0


class QuizAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    unit_id: str
    question_id: str
    user_answer: str
    is_correct: bool
    attempted_at: datetime = Field(default_factory=_now)


class UnitProgress(BaseModel):
    viewed_sections: List[str] = Field(default_factory=list)
    quiz_attempts: List[QuizAttempt] = Field(default_factory=list)
    mastery_level: MasteryLevel = 0
    last_viewed_at: Optional[datetime] = None

    @field_validator("viewed_sections")
    @classmethod
    def _dedupe_sections(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))


class SessionProgress(BaseModel):
    unit_count: int = 0
    units_started: int = 0
    units_completed: int = 0
    units_mastered: int = 0
    quiz_attempts: int = 0
    quiz_accuracy: float = 0.0
    last_activity_at: Optional[datetime] = None


# --- Sessions ---
class UserResponse(BaseModel):
    id: str
    unit_id: str
    user_answer: str
    feedback: str
    is_correct: bool
    created_at: datetime = Field(default_factory=_now)


class StudySession(BaseModel):
    id: str
    user_id: str
    passage: str
    status: SessionStatus = SessionStatus.ACTIVE
    units: List[TrainingUnit] = Field(default_factory=list)
    responses: Dict[str, UserResponse] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class SessionFilters(BaseModel):
    status: Optional[SessionStatus] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    passage_contains: Optional[str] = None
    last_days: Optional[int] = None


# --- Caches ---
class WordCacheEntry(BaseModel):
    lemma: str
    language: str
    gloss: str = ""
    grammatical_category: str = ""
    morphology: Optional[str] = None
    identification: Optional[str] = None
    recognition_guidance: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


# --- Insights ---
class ExegeticalInsight(BaseModel):
    id: str
    session_id: str
    unit_id: Optional[str] = None
    user_id: str
    title: str = ""
    content: str
    question: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    passage: Optional[str] = None
    greek_word: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class InsightFilters(BaseModel):
    passage: Optional[str] = None
    greek_word: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    search_term: Optional[str] = None


# --- Free questions ---
class QuestionContext(BaseModel):
    greek_word: str
    transliteration: str = ""
    gloss: str = ""
    identification: str = ""
    function_in_context: str = ""
    significance: str = ""
    passage: str = ""
    coaching_instructions: str = ""


class ResponseEvaluation(BaseModel):
    feedback: str
    is_correct: bool


# --- Use-case results ---
class QuizFeedback(BaseModel):
    is_correct: bool
    explanation: str
    updated_progress: UnitProgress
    persisted: bool


class ProgressUpdate(BaseModel):
    progress: UnitProgress
    persisted: bool
