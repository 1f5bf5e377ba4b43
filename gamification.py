"""
Gamification engine — quest mechanics.

Mechanics:
  - XP per completed mission: 50 (quiz score does not change XP)
  - Levels: thresholds [0, 100, 250, 500, 1000, 2000, 4000, 8000], index = level - 1
  - Badges: "Planner Pro", "First Step", "Quiz Whiz", "<Subject> Adept"

Everything here is a pure function of (profile, event, config): no clock,
no randomness, no I/O.
"""

from __future__ import annotations

from models import (
    Badge,
    BadgeKind,
    GameEvent,
    GamificationOutcome,
    LevelProgress,
    MissionCompleted,
    PlanStarted,
    UserProfile,
)
from config import QuestConfig


# ── Badge catalogue ───────────────────────────────────────────

PLANNER_PRO = Badge(
    kind=BadgeKind.PLANNER_PRO,
    name="Planner Pro",
    description="Generated your first study plan.",
)
FIRST_STEP = Badge(
    kind=BadgeKind.FIRST_STEP,
    name="First Step",
    description="Completed your first mission!",
)
QUIZ_WHIZ = Badge(
    kind=BadgeKind.QUIZ_WHIZ,
    name="Quiz Whiz",
    description="Scored 100% on a quiz.",
)

CANONICAL_BADGES: dict[BadgeKind, Badge] = {
    BadgeKind.PLANNER_PRO: PLANNER_PRO,
    BadgeKind.FIRST_STEP: FIRST_STEP,
    BadgeKind.QUIZ_WHIZ: QUIZ_WHIZ,
}


def subject_adept(subject: str) -> Badge:
    return Badge(
        kind=BadgeKind.SUBJECT_ADEPT,
        name=f"{subject} Adept",
        description=f"Completed all {subject} missions!",
    )


# ── Level thresholds ──────────────────────────────────────────

def level_for_xp(xp: int, level: int, thresholds: list[int]) -> int:
    """Advance ``level`` while the next threshold is reached. Never goes down."""
    while level < len(thresholds) and thresholds[level] <= xp:
        level += 1
    return level


def level_progress(profile: UserProfile, cfg: QuestConfig | None = None) -> LevelProgress:
    """XP bar for the profile menu: progress from this level's threshold to the next."""
    if cfg is None:
        cfg = QuestConfig()
    thresholds = cfg.level_thresholds

    idx = min(profile.level, len(thresholds)) - 1
    current = thresholds[idx]
    at_cap = profile.level >= len(thresholds)
    nxt = thresholds[-1] if at_cap else thresholds[profile.level]

    span = nxt - current
    if at_cap or span <= 0:
        percent = 100.0
    else:
        percent = max(0.0, min(100.0, (profile.xp - current) / span * 100))

    return LevelProgress(
        level=profile.level,
        xp=profile.xp,
        current_level_xp=current,
        next_level_xp=nxt,
        percent=round(percent, 1),
        max_level=at_cap,
    )


# ── Main gamification function ────────────────────────────────

def apply_event(
    profile: UserProfile,
    event: GameEvent,
    cfg: QuestConfig | None = None,
) -> GamificationOutcome:
    """
    Map (profile, event) to a new profile.

    Badge rules run in a fixed order and each one is skipped when a badge
    with the same name is already held. ``level_up`` carries the new level
    whenever the level rose.
    """
    if cfg is None:
        cfg = QuestConfig()

    badges = list(profile.badges)
    awarded: list[Badge] = []

    def award(badge: Badge) -> None:
        if any(b.name == badge.name for b in badges):
            return
        fresh = badge.model_copy()
        badges.append(fresh)
        awarded.append(fresh)

    xp = profile.xp
    completed = profile.missions_completed

    if isinstance(event, PlanStarted):
        award(PLANNER_PRO)
    elif isinstance(event, MissionCompleted):
        xp += cfg.xp_per_mission
        if completed == 0:
            award(FIRST_STEP)
        if event.quiz_score == cfg.perfect_score:
            award(QUIZ_WHIZ)
        if event.subject_completed:
            award(subject_adept(event.subject_completed))
        completed += 1
    else:
        raise TypeError(f"Unknown gamification event: {event!r}")

    level = level_for_xp(xp, profile.level, cfg.level_thresholds)

    new_profile = profile.model_copy(
        update={
            "xp": xp,
            "level": level,
            "badges": badges,
            "missions_completed": completed,
        }
    )
    return GamificationOutcome(
        profile=new_profile,
        level_up=level if level > profile.level else None,
        awarded=awarded,
    )
