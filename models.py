"""
Pydantic schemas for StudyQuest.

Three groups:
  A. Quest data (SyllabusTopic, Mission, StudyPlan, UserProfile, Badge, ...)
  B. Gamification events and API I/O
  C. Gemini structured-output schemas (TopicList, RawStudyPlan, RawQuiz)
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

OPTIONS_PER_QUESTION = 4

Pace = Literal["Chill", "Normal", "Speedrun"]
MissionStatus = Literal["pending", "completed"]
AidKind = Literal["notes", "summary", "mnemonics", "story", "quiz"]
Phase = Literal["uploading", "planning", "studying"]


# ──────────────────────────────────────────────────────────────
# A. Quest data
# ──────────────────────────────────────────────────────────────


class SyllabusTopic(BaseModel):
    """One subject and its ordered topics, as read from a syllabus."""

    subject: str
    topics: list[str] = Field(default_factory=list)


class Mission(BaseModel):
    id: str
    subject: str
    topic: str
    status: MissionStatus = "pending"


class DailyPlan(BaseModel):
    day: int = Field(..., ge=1)
    missions: list[Mission] = Field(default_factory=list)


class StudyPlan(BaseModel):
    days: list[DailyPlan] = Field(default_factory=list)

    def missions(self) -> list[Mission]:
        return [m for d in self.days for m in d.missions]


class BadgeKind(str, Enum):
    PLANNER_PRO = "planner_pro"
    FIRST_STEP = "first_step"
    QUIZ_WHIZ = "quiz_whiz"
    SUBJECT_ADEPT = "subject_adept"
    CUSTOM = "custom"


class Badge(BaseModel):
    """An earned badge. Identity is the display name."""

    kind: BadgeKind = BadgeKind.CUSTOM
    name: str
    description: str = ""


class Identity(BaseModel):
    """Signed-in user as reported by the identity provider."""

    id: str
    name: str = ""
    picture_url: str = ""


class UserProfile(BaseModel):
    level: int = Field(default=1, ge=1)
    xp: int = Field(default=0, ge=0)
    badges: list[Badge] = Field(default_factory=list)
    missions_completed: int = Field(default=0, ge=0)
    identity: Optional[Identity] = None

    def has_badge(self, name: str) -> bool:
        return any(b.name == name for b in self.badges)


class QuizQuestion(BaseModel):
    question: str
    options: list[str]
    correct_answer: str

    @field_validator("options")
    @classmethod
    def _four_unique_options(cls, v: list[str]) -> list[str]:
        if len(v) != OPTIONS_PER_QUESTION:
            raise ValueError(f"expected {OPTIONS_PER_QUESTION} options, got {len(v)}")
        if len(set(v)) != len(v):
            raise ValueError("options must be unique")
        return v

    @model_validator(mode="after")
    def _answer_is_an_option(self) -> "QuizQuestion":
        if self.correct_answer not in self.options:
            raise ValueError("correct_answer must be one of the options")
        return self


class StudyAids(BaseModel):
    """Lazily generated material for one mission. Entries are set once."""

    notes: Optional[str] = None
    summary: Optional[str] = None
    mnemonics: Optional[str] = None
    story: Optional[str] = None
    quiz: Optional[list[QuizQuestion]] = None


# ──────────────────────────────────────────────────────────────
# B. Gamification events & API I/O
# ──────────────────────────────────────────────────────────────


class PlanStarted(BaseModel):
    type: Literal["plan_started"] = "plan_started"


class MissionCompleted(BaseModel):
    type: Literal["mission_completed"] = "mission_completed"
    quiz_score: int = Field(default=0, ge=0)
    subject_completed: Optional[str] = None  # set when this was the subject's last mission


GameEvent = Union[PlanStarted, MissionCompleted]


class GamificationOutcome(BaseModel):
    profile: UserProfile
    level_up: Optional[int] = None
    awarded: list[Badge] = Field(default_factory=list)


class LevelProgress(BaseModel):
    level: int
    xp: int
    current_level_xp: int
    next_level_xp: int
    percent: float = Field(..., ge=0, le=100)
    max_level: bool = False


class PlanRequest(BaseModel):
    """Payload for POST /plan. Bounds are checked by the session."""

    days: int
    pace: Pace = "Normal"


class QuizSubmission(BaseModel):
    answers: list[Optional[str]]


class CompletionRequest(BaseModel):
    quiz_score: int = Field(default=0, ge=0)


class CompletionResponse(BaseModel):
    completed: bool
    mission: Optional[Mission] = None
    quiz_score: Optional[int] = None
    xp_gained: int = 0
    level_up: Optional[int] = None
    awarded: list[Badge] = Field(default_factory=list)
    profile: UserProfile


# ──────────────────────────────────────────────────────────────
# C. Gemini structured-output schemas
# ──────────────────────────────────────────────────────────────


class TopicList(BaseModel):
    """What Gemini returns for syllabus extraction."""

    subjects: list[SyllabusTopic]


class RawMission(BaseModel):
    subject: str
    topic: str


class RawDailyPlan(BaseModel):
    day: int
    missions: list[RawMission]


class RawStudyPlan(BaseModel):
    """What Gemini returns for plan synthesis (no ids, no status yet)."""

    days: list[RawDailyPlan]


class RawQuizQuestion(BaseModel):
    question: str
    options: list[str]
    correct_answer: str


class RawQuiz(BaseModel):
    """What Gemini returns for quiz generation, before core validation."""

    questions: list[RawQuizQuestion]
