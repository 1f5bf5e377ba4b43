"""Tests for session persistence and badge migration."""

from __future__ import annotations

import json

import pytest

from conftest import sequential_ids
from errors import PersistenceError
from gamification import FIRST_STEP, PLANNER_PRO, QUIZ_WHIZ, subject_adept
from models import BadgeKind, Identity, UserProfile
from session_store import (
    SCHEMA_VERSION,
    FileStore,
    MemoryStore,
    SessionStore,
    rehydrate_badge,
    serialize_session,
)
from study_plan import build_plan, complete_mission


class BrokenStore:
    def get(self, key):
        raise PersistenceError("disk on fire")

    def set(self, key, value):
        raise PersistenceError("quota exceeded")


def _plan(topics, raw_plan):
    plan = build_plan(topics, 2, "Normal", raw_plan, id_factory=sequential_ids())
    return complete_mission(plan, "m1").plan


def test_round_trip(store, identity, topics, raw_plan):
    plan = _plan(topics, raw_plan)
    profile = UserProfile(
        level=2, xp=150, badges=[PLANNER_PRO, FIRST_STEP, subject_adept("Physics")], missions_completed=3
    )
    assert store.save(identity, plan, profile) is True

    saved = store.load(identity)
    assert saved.plan == plan
    assert saved.profile.level == 2
    assert saved.profile.xp == 150
    assert saved.profile.missions_completed == 3
    assert [b.name for b in saved.profile.badges] == ["Planner Pro", "First Step", "Physics Adept"]
    assert saved.profile.badges[2].kind == BadgeKind.SUBJECT_ADEPT


def test_persisted_layout(identity, topics, raw_plan):
    backend = MemoryStore()
    store = SessionStore(backend)
    store.save(identity, _plan(topics, raw_plan), UserProfile(badges=[QUIZ_WHIZ], identity=identity))

    doc = json.loads(backend.data["studyquest:google-123"])
    assert doc["schema_version"] == SCHEMA_VERSION
    assert doc["profile"]["badges"] == [{"name": "Quiz Whiz", "description": "Scored 100% on a quiz."}]
    assert "identity" not in doc["profile"]
    assert doc["plan"]["days"][0]["missions"][0]["status"] == "completed"


def test_absent_session(store):
    assert store.load(Identity(id="nobody")) is None


def test_malformed_json_is_absent(identity):
    backend = MemoryStore()
    backend.data["studyquest:google-123"] = "{not json"
    assert SessionStore(backend).load(identity) is None


def test_wrong_shape_is_absent(identity):
    backend = MemoryStore()
    backend.data["studyquest:google-123"] = json.dumps({"plan": {"days": "nope"}, "profile": {}})
    assert SessionStore(backend).load(identity) is None

    backend.data["studyquest:google-123"] = json.dumps([1, 2, 3])
    assert SessionStore(backend).load(identity) is None


@pytest.mark.parametrize("doc", [
    {"schema_version": 2, "plan": None, "profile": "oops"},
    {"profile": [1, 2]},
    {"plan": "not a plan", "profile": {}},
    {"plan": [1], "profile": {}},
    {"profile": {"xp": 0, "badges": ["Quiz Whiz"]}},
    {"profile": {"xp": 0, "badges": {"name": "Quiz Whiz"}}},
])
def test_non_object_parts_are_absent(identity, doc):
    backend = MemoryStore()
    backend.data["studyquest:google-123"] = json.dumps(doc)
    assert SessionStore(backend).load(identity) is None


def test_stored_level_capped_at_table_end(identity):
    backend = MemoryStore()
    backend.data["studyquest:google-123"] = json.dumps(
        {"schema_version": 2, "plan": None, "profile": {"level": 99, "xp": 0, "badges": []}}
    )
    saved = SessionStore(backend).load(identity)
    assert saved.profile.level == 8


def test_backend_failures_do_not_raise(identity):
    store = SessionStore(BrokenStore())
    assert store.save(identity, None, UserProfile()) is False
    assert store.load(identity) is None


def test_legacy_v1_document_migrates(identity, topics, raw_plan):
    plan = _plan(topics, raw_plan)
    legacy = {
        "plan": plan.model_dump(mode="json"),
        "profile": {
            "level": 1,
            "xp": 120,
            "badges": [
                {"name": "Plan Started", "description": "old"},
                {"name": "First Mission", "description": "old"},
                {"name": "Physics Master", "description": "old"},
                {"name": "Night Owl", "description": "custom thing"},
            ],
        },
    }
    backend = MemoryStore()
    backend.data["studyquest:google-123"] = json.dumps(legacy)

    saved = SessionStore(backend).load(identity)
    names = [b.name for b in saved.profile.badges]
    assert names == ["Planner Pro", "First Step", "Physics Adept", "Night Owl"]
    assert saved.profile.badges[0].description == PLANNER_PRO.description
    assert saved.profile.badges[3].kind == BadgeKind.CUSTOM
    assert saved.profile.badges[3].description == "custom thing"
    # Derived from the plan: one completed mission
    assert saved.profile.missions_completed == 1
    # Level healed from XP
    assert saved.profile.level == 2


def test_legacy_and_canonical_names_deduplicate():
    backend = MemoryStore()
    backend.data["studyquest:x"] = json.dumps({
        "schema_version": 2,
        "plan": None,
        "profile": {"level": 1, "xp": 0, "missions_completed": 0, "badges": [
            {"name": "Quiz Whiz", "description": ""},
            {"name": "Perfect Quiz", "description": ""},
        ]},
    })
    saved = SessionStore(backend).load(Identity(id="x"))
    assert [b.name for b in saved.profile.badges] == ["Quiz Whiz"]
    assert saved.plan is None


def test_rehydrate_patterns():
    assert rehydrate_badge("Master of Chemistry").name == "Chemistry Adept"
    assert rehydrate_badge("Quiz Master").kind == BadgeKind.QUIZ_WHIZ
    assert rehydrate_badge("Biology Adept").description == "Completed all Biology missions!"


def test_serialize_without_plan():
    doc = serialize_session(None, UserProfile())
    assert doc["plan"] is None
    assert doc["profile"]["level"] == 1


def test_file_store_round_trip(tmp_path, identity):
    store = SessionStore(FileStore(str(tmp_path / "sessions")))
    profile = UserProfile(xp=50, missions_completed=1, badges=[FIRST_STEP])
    assert store.save(identity, None, profile)
    saved = store.load(identity)
    assert saved.profile.xp == 50
    assert [b.name for b in saved.profile.badges] == ["First Step"]


def test_file_store_keys_do_not_collide(tmp_path):
    fs = FileStore(str(tmp_path))
    fs.set("studyquest:a/b", "1")
    fs.set("studyquest:a_b", "2")
    assert fs.get("studyquest:a/b") == "1"
    assert fs.get("studyquest:a_b") == "2"
    assert fs.get("studyquest:missing") is None
