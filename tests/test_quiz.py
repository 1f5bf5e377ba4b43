"""Tests for quiz validation and scoring."""

from __future__ import annotations

import pytest

from conftest import QUIZ
from errors import ValidationError
from quiz import score_quiz, validate_quiz


def _raw(n=4, options=None, answer="B"):
    return [
        {"question": f"Q{i}?", "options": options or ["A", "B", "C", "D"], "correct_answer": answer}
        for i in range(n)
    ]


def test_valid_quiz_accepted():
    questions = validate_quiz(_raw())
    assert len(questions) == 4
    assert questions[0].correct_answer == "B"


def test_wrapped_payload_accepted():
    assert len(validate_quiz({"questions": _raw()})) == 4


def test_wrong_question_count_rejected():
    with pytest.raises(ValidationError):
        validate_quiz(_raw(n=3))


def test_three_options_rejected():
    with pytest.raises(ValidationError, match="Question 1"):
        validate_quiz(_raw(options=["A", "B", "C"]))


def test_duplicate_options_rejected():
    with pytest.raises(ValidationError):
        validate_quiz(_raw(options=["A", "B", "B", "D"]))


def test_answer_not_in_options_rejected():
    with pytest.raises(ValidationError):
        validate_quiz(_raw(answer="E"))


def test_missing_fields_rejected():
    with pytest.raises(ValidationError):
        validate_quiz([{"question": "Q?"}] * 4)


def test_score_counts_correct_answers():
    assert score_quiz(QUIZ, ["B", "B", "B", "B"]) == 4
    assert score_quiz(QUIZ, ["B", "A", None, "B"]) == 2


def test_score_requires_one_answer_per_question():
    with pytest.raises(ValidationError):
        score_quiz(QUIZ, ["B"])
