"""
Session persistence — one {plan, profile} document per signed-in identity.

Stored layout (schema_version 2):

    {
      "schema_version": 2,
      "plan": {"days": [{"day": 1, "missions": [...]}, ...]} | null,
      "profile": {"level": 3, "xp": 260, "missions_completed": 5,
                  "badges": [{"name": "...", "description": "..."}]}
    }

Documents written before versioning (no ``schema_version``) are read as
version 1. Badge records are rehydrated on load through LEGACY_BADGE_NAMES.
Saving is best-effort: backend failures are logged, never raised.
"""

from __future__ import annotations

import os
import re
import json
import hashlib
import logging
from typing import NamedTuple, Optional, Protocol

from config import QuestConfig
from errors import PersistenceError
from gamification import CANONICAL_BADGES, level_for_xp, subject_adept
from models import Badge, BadgeKind, Identity, StudyPlan, UserProfile

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
KEY_PREFIX = "studyquest:"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class SavedSession(NamedTuple):
    plan: Optional[StudyPlan]
    profile: UserProfile


# ──────────────────────────────────────────────────────────────
# Backends
# ──────────────────────────────────────────────────────────────

class MemoryStore:
    """Dict-backed store, used in tests and when nothing else is configured."""

    def __init__(self):
        self.data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value


class FileStore:
    """One JSON file per key in a local directory."""

    def __init__(self, directory: str):
        self.directory = directory

    def _path(self, key: str) -> str:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:10]
        return os.path.join(self.directory, f"{safe}-{digest}.json")

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return f.read()
        except OSError as e:
            raise PersistenceError(f"Could not read {path}: {e}") from e

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path + ".tmp"
        try:
            os.makedirs(self.directory, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(f"Could not write {path}: {e}") from e


# ──────────────────────────────────────────────────────────────
# Badge migration
# ──────────────────────────────────────────────────────────────

# Deprecated display names, keyed by the badge they now resolve to.
LEGACY_BADGE_NAMES: dict[BadgeKind, tuple[str, ...]] = {
    BadgeKind.PLANNER_PRO: ("Plan Started", "Quest Planner"),
    BadgeKind.FIRST_STEP: ("First Mission", "First Mission Complete"),
    BadgeKind.QUIZ_WHIZ: ("Perfect Quiz", "Quiz Master"),
    BadgeKind.SUBJECT_ADEPT: (r"^(?P<subject>.+) Master$", r"^Master of (?P<subject>.+)$"),
}

_ADEPT_NAME = re.compile(r"^(?P<subject>.+) Adept$")


def rehydrate_badge(name: str, description: str = "") -> Badge:
    """Resolve a stored badge record to its current canonical definition."""
    for kind, badge in CANONICAL_BADGES.items():
        if name == badge.name or name in LEGACY_BADGE_NAMES.get(kind, ()):
            return badge.model_copy()

    match = _ADEPT_NAME.match(name)
    if match:
        return subject_adept(match.group("subject"))
    for pattern in LEGACY_BADGE_NAMES[BadgeKind.SUBJECT_ADEPT]:
        match = re.match(pattern, name)
        if match:
            return subject_adept(match.group("subject"))

    return Badge(kind=BadgeKind.CUSTOM, name=name, description=description)


def rehydrate_badges(records: list[dict]) -> list[Badge]:
    badges: list[Badge] = []
    seen: set[str] = set()
    if not isinstance(records, list):
        raise ValueError("Badge records must be a list")
    for rec in records:
        if not isinstance(rec, dict):
            raise ValueError(f"Badge record must be an object, got {type(rec).__name__}")
        badge = rehydrate_badge(rec["name"], rec.get("description", ""))
        if badge.name in seen:
            continue
        seen.add(badge.name)
        badges.append(badge)
    return badges


# ──────────────────────────────────────────────────────────────
# (De)serialization
# ──────────────────────────────────────────────────────────────

def serialize_session(plan: Optional[StudyPlan], profile: UserProfile) -> dict:
    return {
        "schema_version": SCHEMA_VERSION,
        "plan": plan.model_dump(mode="json") if plan is not None else None,
        "profile": {
            "level": profile.level,
            "xp": profile.xp,
            "missions_completed": profile.missions_completed,
            "badges": [{"name": b.name, "description": b.description} for b in profile.badges],
        },
    }


def deserialize_session(doc: dict, cfg: QuestConfig | None = None) -> SavedSession:
    if cfg is None:
        cfg = QuestConfig()
    if not isinstance(doc, dict):
        raise ValueError(f"Session document must be an object, got {type(doc).__name__}")

    version = doc.get("schema_version", 1)
    if version > SCHEMA_VERSION:
        logger.warning(f"Session document has newer schema_version {version}; reading as {SCHEMA_VERSION}")

    raw_plan = doc.get("plan")
    if raw_plan is not None and not isinstance(raw_plan, dict):
        raise ValueError(f"Session plan must be an object, got {type(raw_plan).__name__}")
    plan = StudyPlan.model_validate(raw_plan) if raw_plan else None

    prof = doc.get("profile") or {}
    if not isinstance(prof, dict):
        raise ValueError(f"Session profile must be an object, got {type(prof).__name__}")
    if version >= 2 and "missions_completed" in prof:
        missions_completed = prof["missions_completed"]
    else:
        missions_completed = sum(1 for m in plan.missions() if m.status == "completed") if plan else 0

    xp = prof.get("xp", 0)
    thresholds = cfg.level_thresholds
    stored_level = min(max(1, prof.get("level", 1)), len(thresholds))
    level = level_for_xp(xp, stored_level, thresholds)

    profile = UserProfile(
        level=level,
        xp=xp,
        badges=rehydrate_badges(prof.get("badges", [])),
        missions_completed=missions_completed,
    )
    return SavedSession(plan=plan, profile=profile)


# ──────────────────────────────────────────────────────────────
# Store
# ──────────────────────────────────────────────────────────────

class SessionStore:
    """Save/load quest state per identity over an injected key-value backend."""

    def __init__(self, backend: KeyValueStore, cfg: QuestConfig | None = None):
        self.backend = backend
        self.cfg = cfg or QuestConfig()

    @staticmethod
    def key_for(identity: Identity) -> str:
        return f"{KEY_PREFIX}{identity.id}"

    def save(self, identity: Identity, plan: Optional[StudyPlan], profile: UserProfile) -> bool:
        """Persist the session. Returns False (and logs) on any failure."""
        try:
            payload = json.dumps(serialize_session(plan, profile))
            self.backend.set(self.key_for(identity), payload)
            return True
        except Exception as e:
            logger.error(f"Saving session for {identity.id} failed: {e}")
            return False

    def load(self, identity: Identity) -> SavedSession | None:
        """Previously saved session, or None when absent or unreadable."""
        try:
            raw = self.backend.get(self.key_for(identity))
        except Exception as e:
            logger.error(f"Loading session for {identity.id} failed: {e}")
            return None
        if raw is None:
            return None

        try:
            return deserialize_session(json.loads(raw), self.cfg)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning(f"Discarding malformed session for {identity.id}: {e}")
            return None
