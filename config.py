"""
QuestConfig — every tunable constant for the study quest.

XP and level thresholds set the game balance; AI settings
control the Gemini fallback chain and how long a call may hang before it is
treated as a failure.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields


@dataclass
class QuestConfig:
    # ── XP & levels ────────────────────────────────────────
    xp_per_mission: int = 50
    level_thresholds: list = field(
        default_factory=lambda: [0, 100, 250, 500, 1000, 2000, 4000, 8000]
    )

    # ── Quiz ───────────────────────────────────────────────
    quiz_length: int = 4           # questions per mission quiz
    perfect_score: int = 4         # score that earns "Quiz Whiz"

    # ── Plan horizon ───────────────────────────────────────
    min_days: int = 1
    max_days: int = 365
    plan_retry_attempts: int = 1   # re-ask Gemini when the plan is malformed

    # ── AI gateway ─────────────────────────────────────────
    ai_timeout_seconds: float = 120.0
    temperature: float = 0.2
    model_chain: list = field(
        default_factory=lambda: ["gemini-2.5-flash", "gemini-2.0-flash", "gemma-3-27b-it"]
    )
    planner_model_chain: list = field(
        default_factory=lambda: ["gemini-2.5-pro", "gemini-2.5-flash", "gemini-2.0-flash"]
    )

    # ── Uploads ────────────────────────────────────────────
    max_upload_bytes: int = 10 * 1024 * 1024
    max_pdf_pages: int = 50

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items()}

    @classmethod
    def from_dict(cls, data: dict) -> "QuestConfig":
        """Build from a (possibly partial) dict, ignoring unknown keys."""
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})
