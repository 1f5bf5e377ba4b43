"""
Study plan model — turns Gemini's day/mission JSON into a quest.

The Gateway is untrusted: ``build_plan`` is the single validation boundary
between its response and the rest of the system. Every topic extracted from
the syllabus must appear as exactly one mission, no more and no less.
"""

from __future__ import annotations

import uuid
import logging
from collections import Counter
from typing import Callable, NamedTuple, Optional

from pydantic import ValidationError as SchemaError

from config import QuestConfig
from errors import MalformedPlanError, ValidationError
from models import (
    DailyPlan,
    Mission,
    RawStudyPlan,
    StudyPlan,
    SyllabusTopic,
)

logger = logging.getLogger(__name__)

PACES = ("Chill", "Normal", "Speedrun")


class MissionCompletion(NamedTuple):
    plan: StudyPlan
    mission: Mission
    subject_completed: Optional[str]  # subject whose last pending mission this was


def new_mission_id() -> str:
    return uuid.uuid4().hex


# ──────────────────────────────────────────────────────────────
# Input validation
# ──────────────────────────────────────────────────────────────

def flatten_topics(topics: list[SyllabusTopic]) -> list[tuple[str, str]]:
    """(subject, topic) pairs in syllabus order."""
    return [(t.subject, topic) for t in topics for topic in t.topics]


def validate_plan_request(
    topics: list[SyllabusTopic],
    day_count: int,
    pace: str,
    cfg: QuestConfig | None = None,
) -> None:
    """Reject a plan request before anything is sent to Gemini."""
    if cfg is None:
        cfg = QuestConfig()
    if not flatten_topics(topics):
        raise ValidationError("No topics to plan. Upload a syllabus first.")
    if isinstance(day_count, bool) or not isinstance(day_count, int):
        raise ValidationError(f"Day count must be an integer, got {day_count!r}")
    if not cfg.min_days <= day_count <= cfg.max_days:
        raise ValidationError(
            f"Day count must be between {cfg.min_days} and {cfg.max_days}, got {day_count}"
        )
    if pace not in PACES:
        raise ValidationError(f"Unknown pace {pace!r}. Use one of {', '.join(PACES)}.")


# ──────────────────────────────────────────────────────────────
# Build
# ──────────────────────────────────────────────────────────────

def build_plan(
    topics: list[SyllabusTopic],
    day_count: int,
    pace: str,
    raw_plan: dict | RawStudyPlan,
    cfg: QuestConfig | None = None,
    id_factory: Callable[[], str] = new_mission_id,
) -> StudyPlan:
    """
    Validate the Gateway's plan and materialize it.

    The pace only shaped how Gemini spread the missions; it is checked here
    but imposes no ordering. Days Gemini left out inside ``1..day_count``
    become empty rest days so the plan always spans the full horizon.

    Raises:
        ValidationError: bad request (no topics, day count out of range, pace)
        MalformedPlanError: the plan is missing fields or does not cover
            every topic exactly once
    """
    validate_plan_request(topics, day_count, pace, cfg)

    if isinstance(raw_plan, RawStudyPlan):
        raw = raw_plan
    else:
        try:
            raw = RawStudyPlan.model_validate(raw_plan)
        except SchemaError as e:
            problems = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            raise MalformedPlanError("Plan response is missing required fields", problems) from e

    problems: list[str] = []

    seen_days: set[int] = set()
    for d in raw.days:
        if d.day < 1 or d.day > day_count:
            problems.append(f"day {d.day} is outside 1..{day_count}")
        if d.day in seen_days:
            problems.append(f"day {d.day} appears more than once")
        seen_days.add(d.day)

    expected = Counter(flatten_topics(topics))
    actual = Counter((m.subject, m.topic) for d in raw.days for m in d.missions)
    for (subject, topic), n in (expected - actual).items():
        problems.append(f"missing {n}x {subject} / {topic}")
    for (subject, topic), n in (actual - expected).items():
        problems.append(f"unexpected {n}x {subject} / {topic}")

    if problems:
        logger.warning(f"Rejected plan from gateway: {problems}")
        raise MalformedPlanError("Plan does not cover the syllabus exactly once", problems)

    by_day = {d.day: d for d in raw.days}
    used_ids: set[str] = set()
    days: list[DailyPlan] = []
    for n in range(1, day_count + 1):
        missions = []
        raw_day = by_day.get(n)
        for m in raw_day.missions if raw_day else []:
            mission_id = id_factory()
            if mission_id in used_ids:
                raise ValueError(f"Mission id factory produced a duplicate id: {mission_id}")
            used_ids.add(mission_id)
            missions.append(Mission(id=mission_id, subject=m.subject, topic=m.topic))
        days.append(DailyPlan(day=n, missions=missions))

    return StudyPlan(days=days)


# ──────────────────────────────────────────────────────────────
# Completion
# ──────────────────────────────────────────────────────────────

def find_mission(plan: StudyPlan, mission_id: str) -> Mission | None:
    for m in plan.missions():
        if m.id == mission_id:
            return m
    return None


def complete_mission(plan: StudyPlan, mission_id: str) -> MissionCompletion | None:
    """
    Flip one pending mission to completed, returning a new plan.

    Returns None for an unknown id or an already completed mission, in
    which case no gamification event should fire.
    """
    for di, day in enumerate(plan.days):
        for mi, mission in enumerate(day.missions):
            if mission.id != mission_id:
                continue
            if mission.status == "completed":
                return None

            done = mission.model_copy(update={"status": "completed"})
            missions = list(day.missions)
            missions[mi] = done
            days = list(plan.days)
            days[di] = day.model_copy(update={"missions": missions})
            new_plan = plan.model_copy(update={"days": days})

            subject_done = all(
                m.status == "completed" for m in new_plan.missions() if m.subject == done.subject
            )
            return MissionCompletion(new_plan, done, done.subject if subject_done else None)
    return None


def plan_progress(plan: StudyPlan) -> dict:
    """Completed / total missions overall and per subject."""
    by_subject: dict[str, dict[str, int]] = {}
    completed = 0
    missions = plan.missions()
    for m in missions:
        entry = by_subject.setdefault(m.subject, {"completed": 0, "total": 0})
        entry["total"] += 1
        if m.status == "completed":
            entry["completed"] += 1
            completed += 1

    total = len(missions)
    return {
        "completed": completed,
        "total": total,
        "percent": round(completed / total * 100, 1) if total else 0.0,
        "by_subject": by_subject,
    }
