"""
AI gateway — every call the quest makes to Gemini.

  1. extract_topics()   — syllabus document → SyllabusTopic list
  2. synthesize_plan()  — topics + horizon + pace → day-by-day plan JSON
  3. generate_aid()     — notes / summary / mnemonics / story for a topic
  4. generate_quiz()    — four multiple-choice questions for a topic

The module itself is the default gateway handed to QuestSession; tests pass
any object exposing the same four coroutines. All failures surface as
GatewayError.
"""

from __future__ import annotations

import json
import logging

from langchain_core.messages import HumanMessage, SystemMessage

from config import QuestConfig
from errors import GatewayError, ValidationError
from llm import content_text, invoke_with_fallback
from models import QuizQuestion, RawQuiz, RawStudyPlan, SyllabusTopic
from quiz import validate_quiz
from study_plan import flatten_topics
from syllabus_extractor import extract_topics

logger = logging.getLogger(__name__)

__all__ = ["extract_topics", "synthesize_plan", "generate_aid", "generate_quiz"]

TEXT_AIDS = ("notes", "summary", "mnemonics", "story")


# ──────────────────────────────────────────────────────────────
# 2. Plan synthesis
# ──────────────────────────────────────────────────────────────

PLANNER_SYSTEM_PROMPT = """\
You are an expert study planner designing a gamified study quest.

Instructions:
  1. Create a balanced, day-by-day study plan.
  2. Each topic is a 'mission'. Every single topic must be included exactly once,
     with its subject and topic text copied verbatim.
  3. Adjust the daily mission load based on the study pace:
       - 'Chill': fewer missions per day, more relaxed pace.
       - 'Normal': a moderate, balanced number of missions per day.
       - 'Speedrun': more missions per day for an intense session.
  4. Mix subjects daily to keep it engaging. Prioritize harder topics earlier if possible.
  5. Number days from 1 and never exceed the number of days given.
  6. Return valid JSON: {"days": [{"day": 1, "missions": [{"subject": ..., "topic": ...}]}]}
"""


def build_plan_prompt(topics: list[SyllabusTopic], days: int, pace: str) -> str:
    pairs = [{"subject": s, "topic": t} for s, t in flatten_topics(topics)]
    return (
        f"Topics list: {json.dumps(pairs)}\n"
        f"Days to prepare: {days}\n"
        f"Student's preferred pace: '{pace}'\n"
    )


async def synthesize_plan(
    topics: list[SyllabusTopic],
    days: int,
    pace: str,
    cfg: QuestConfig | None = None,
) -> RawStudyPlan:
    """Ask Gemini to spread the topics over ``days``. Output is unvalidated."""
    if cfg is None:
        cfg = QuestConfig()
    try:
        return await invoke_with_fallback(
            [
                SystemMessage(content=PLANNER_SYSTEM_PROMPT),
                HumanMessage(content=build_plan_prompt(topics, days, pace)),
            ],
            schema=RawStudyPlan,
            models=cfg.planner_model_chain,
            cfg=cfg,
        )
    except Exception as e:
        logger.error(f"Plan synthesis failed: {e}")
        raise GatewayError("Failed to create a study plan. The AI might be busy. Please try again.") from e


# ──────────────────────────────────────────────────────────────
# 3. Study aids
# ──────────────────────────────────────────────────────────────

AID_PROMPTS = {
    "notes": (
        'Generate comprehensive but easy-to-understand notes for the topic "{topic}" '
        'in the subject "{subject}". Use Markdown for formatting. Structure the notes '
        "with headings and bullet points for clarity."
    ),
    "summary": (
        'Provide a short, one-paragraph summary of the key concepts for the topic "{topic}" '
        'in the subject "{subject}".'
    ),
    "mnemonics": (
        'Create clever and memorable mnemonics for the key concepts in the topic "{topic}" '
        'under the subject "{subject}". Format the response using Markdown, with headings '
        "for different concepts and lists for the mnemonics themselves."
    ),
    "story": (
        'I am studying the subject "{subject}". My current topic is "{topic}". Turn this '
        "topic into a game-like story - with characters, storylines, and challenges - so it "
        "feels like I'm leveling up instead of memorizing facts. Use Markdown for formatting."
    ),
}


async def generate_aid(
    topic: str,
    subject: str,
    kind: str,
    cfg: QuestConfig | None = None,
) -> str:
    """Markdown study material of the given kind."""
    if kind not in AID_PROMPTS:
        raise ValidationError(f"Unknown study aid {kind!r}. Use one of {', '.join(TEXT_AIDS)}.")
    if cfg is None:
        cfg = QuestConfig()

    prompt = AID_PROMPTS[kind].format(topic=topic, subject=subject)
    try:
        result = await invoke_with_fallback([HumanMessage(content=prompt)], cfg=cfg)
    except Exception as e:
        logger.error(f"Generating {kind} for {subject}/{topic} failed: {e}")
        raise GatewayError(f"Failed to generate {kind}. Please try again.") from e

    text = content_text(result).strip()
    if not text:
        raise GatewayError(f"Gemini returned empty {kind}.")
    return text


# ──────────────────────────────────────────────────────────────
# 4. Quiz
# ──────────────────────────────────────────────────────────────

QUIZ_PROMPT = (
    'Create a quiz with {n} multiple-choice questions for the topic "{topic}" in the '
    'subject "{subject}". Each question must have exactly 4 distinct options. Ensure one '
    "option is clearly the correct answer and copy it verbatim into correct_answer. "
    "The goal is to test a student's understanding."
)


async def generate_quiz(
    topic: str,
    subject: str,
    cfg: QuestConfig | None = None,
) -> list[QuizQuestion]:
    """Exactly ``cfg.quiz_length`` validated questions."""
    if cfg is None:
        cfg = QuestConfig()

    prompt = QUIZ_PROMPT.format(n=cfg.quiz_length, topic=topic, subject=subject)
    try:
        raw: RawQuiz = await invoke_with_fallback([HumanMessage(content=prompt)], schema=RawQuiz, cfg=cfg)
    except Exception as e:
        logger.error(f"Quiz generation for {subject}/{topic} failed: {e}")
        raise GatewayError("Failed to generate quiz. Please try again.") from e

    try:
        return validate_quiz(raw, cfg.quiz_length)
    except ValidationError as e:
        logger.warning(f"Rejected quiz for {subject}/{topic}: {e}")
        raise GatewayError("Quiz generation failed to produce valid questions.") from e
