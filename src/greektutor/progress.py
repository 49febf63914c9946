"""Pure progress computations: answer validation, mastery and section views.

Nothing in this module performs I/O; the use cases in ``greektutor.tutor``
persist what these functions return.
"""

import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from .models import (
    MasteryLevel,
    QuestionType,
    QuizAttempt,
    QuizQuestion,
    SessionProgress,
    UnitProgress,
)

MASTERED_ACCURACY = 0.8
MASTERED_MIN_ATTEMPTS = 3
PRACTICED_ACCURACY = 0.5


def _normalize(text: str) -> str:
    return text.strip().casefold()


def validate_answer(user_answer: str, correct_answer: str, question_type: str) -> bool:
    """Checks an answer the way its question type requires.

    Multiple-choice and true-false need an exact match once both sides are
    trimmed and case-folded. Fill-blank accepts either string containing the
    other. Unknown types are never correct.
    """
    user = _normalize(user_answer)
    correct = _normalize(correct_answer)

    if question_type in (QuestionType.MULTIPLE_CHOICE.value, QuestionType.TRUE_FALSE.value):
        return user == correct
    if question_type == QuestionType.FILL_BLANK.value:
        return user in correct or correct in user
    return False


def calculate_mastery_level(attempts: Sequence[QuizAttempt]) -> MasteryLevel:
    total = len(attempts)
    if total == 0:
        return 1

    accuracy = sum(1 for a in attempts if a.is_correct) / total
    if accuracy >= MASTERED_ACCURACY and total >= MASTERED_MIN_ATTEMPTS:
        return 3
    if accuracy >= PRACTICED_ACCURACY:
        return 2
    return 1


def create_attempt(unit_id: str, question: QuizQuestion, user_answer: str) -> QuizAttempt:
    return QuizAttempt(
        id=str(uuid.uuid4()),
        unit_id=unit_id,
        question_id=question.id,
        user_answer=user_answer,
        is_correct=validate_answer(user_answer, question.correct_answer, question.type),
    )


def record_attempt(progress: UnitProgress, attempt: QuizAttempt) -> UnitProgress:
    # The prior progress is left untouched so callers can still compare.
    attempts = [*progress.quiz_attempts, attempt]
    return progress.model_copy(
        update={
            "quiz_attempts": attempts,
            "mastery_level": calculate_mastery_level(attempts),
            "last_viewed_at": attempt.attempted_at,
        }
    )


def record_section_view(
    progress: UnitProgress, section: str, viewed_at: Optional[datetime] = None
) -> UnitProgress:
    sections = list(dict.fromkeys([*progress.viewed_sections, section]))
    return progress.model_copy(
        update={
            "viewed_sections": sections,
            "mastery_level": max(progress.mastery_level, 1),
            "last_viewed_at": viewed_at or datetime.now(),
        }
    )


def summarize_session(
    unit_ids: Iterable[str], progress_by_unit: Dict[str, UnitProgress]
) -> SessionProgress:
    """Aggregates per-unit progress into session-level figures.

    A unit counts as completed from mastery level 2 and as mastered at 3.
    Accuracy is a percentage over every attempt in the session.
    """
    unit_ids = list(unit_ids)
    progresses: List[UnitProgress] = [
        progress_by_unit[uid] for uid in unit_ids if uid in progress_by_unit
    ]
    attempts = [a for p in progresses for a in p.quiz_attempts]
    correct = sum(1 for a in attempts if a.is_correct)

    activity = [p.last_viewed_at for p in progresses if p.last_viewed_at is not None]
    activity += [a.attempted_at for a in attempts]

    return SessionProgress(
        unit_count=len(unit_ids),
        units_started=sum(1 for p in progresses if p.mastery_level >= 1),
        units_completed=sum(1 for p in progresses if p.mastery_level >= 2),
        units_mastered=sum(1 for p in progresses if p.mastery_level == 3),
        quiz_attempts=len(attempts),
        quiz_accuracy=round(correct / len(attempts) * 100, 1) if attempts else 0.0,
        last_activity_at=max(activity) if activity else None,
    )
