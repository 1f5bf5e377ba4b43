"""Mission quiz validation and scoring."""

from __future__ import annotations

from typing import Optional

from pydantic import ValidationError as SchemaError

from errors import ValidationError
from models import QuizQuestion, RawQuiz


def validate_quiz(raw: RawQuiz | dict | list, length: int = 4) -> list[QuizQuestion]:
    """
    Accept a generated quiz only if it has exactly ``length`` questions, each
    with four unique options and an answer that is one of them.
    """
    if isinstance(raw, list):
        raw = {"questions": raw}
    try:
        parsed = raw if isinstance(raw, RawQuiz) else RawQuiz.model_validate(raw)
    except SchemaError as e:
        raise ValidationError(f"Quiz is missing required fields: {e.error_count()} error(s)") from e

    if len(parsed.questions) != length:
        raise ValidationError(f"Quiz must have {length} questions, got {len(parsed.questions)}")

    questions = []
    for i, q in enumerate(parsed.questions, 1):
        try:
            questions.append(QuizQuestion.model_validate(q.model_dump()))
        except SchemaError as e:
            msg = e.errors()[0]["msg"]
            raise ValidationError(f"Question {i} is invalid: {msg}") from e
    return questions


def score_quiz(quiz: list[QuizQuestion], answers: list[Optional[str]]) -> int:
    """Count answers matching the correct option. Unanswered counts as wrong."""
    if len(answers) != len(quiz):
        raise ValidationError(f"Expected {len(quiz)} answers, got {len(answers)}")
    return sum(1 for q, a in zip(quiz, answers) if a == q.correct_answer)
