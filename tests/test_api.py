"""HTTP-level tests for the FastAPI app."""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from conftest import FakeGateway, sequential_ids
from config import QuestConfig
from models import Identity
from quest import QuestSession
from session_store import MemoryStore, SessionStore
import google_auth
import main


@pytest.fixture
def api(monkeypatch):
    cfg = QuestConfig()
    gateway = FakeGateway()
    session = QuestSession(
        gateway=gateway,
        store=SessionStore(MemoryStore(), cfg),
        cfg=cfg,
        id_factory=sequential_ids(),
    )
    monkeypatch.setattr(main, "_config", cfg)
    monkeypatch.setattr(main, "_session", session)
    monkeypatch.setattr(main, "_current_session", None)
    client = TestClient(main.app)
    client.gateway = gateway
    return client


def _start_quest(api):
    r = api.post("/syllabus", files={"file": ("syllabus.png", b"\x89PNG", "image/png")})
    assert r.status_code == 200
    r = api.post("/plan", json={"days": 2, "pace": "Normal"})
    assert r.status_code == 200
    return r.json()


def test_health(api):
    assert api.get("/health").json()["status"] == "healthy"


def test_upload_returns_topics(api):
    r = api.post("/syllabus", files={"file": ("syllabus.png", b"\x89PNG", "image/png")})
    body = r.json()
    assert body["phase"] == "planning"
    assert body["topics"][0] == {"subject": "Physics", "topics": ["Kinematics", "Optics"]}


def test_empty_upload_is_400(api):
    r = api.post("/syllabus", files={"file": ("empty.png", b"", "image/png")})
    assert r.status_code == 400


def test_plan_flow(api):
    body = _start_quest(api)
    assert body["progress"]["total"] == 3
    assert [b["name"] for b in body["awarded"]] == ["Planner Pro"]

    r = api.get("/plan")
    assert r.status_code == 200
    assert r.json()["plan"]["days"][0]["missions"][0]["id"] == "m1"


def test_plan_before_upload_is_400(api):
    r = api.post("/plan", json={"days": 2, "pace": "Normal"})
    assert r.status_code == 400


def test_get_plan_without_quest_is_404(api):
    assert api.get("/plan").status_code == 404


def test_bad_request_body_is_422(api):
    r = api.post("/plan", json={"days": "soon"})
    assert r.status_code == 422


def test_malformed_plan_is_502(api):
    api.gateway.plans = [{"days": []}]
    api.post("/syllabus", files={"file": ("syllabus.png", b"\x89PNG", "image/png")})
    r = api.post("/plan", json={"days": 2, "pace": "Normal"})
    assert r.status_code == 502


def test_aid_and_quiz_endpoints(api):
    _start_quest(api)
    r = api.get("/missions/m1/aids/notes")
    assert r.json() == {"kind": "notes", "content": "# notes for Kinematics"}

    quiz = api.get("/missions/m1/aids/quiz").json()["quiz"]
    assert len(quiz) == 4

    r = api.post("/missions/m1/quiz", json={"answers": ["B", "B", "B", "B"]})
    body = r.json()
    assert body["completed"] is True
    assert body["quiz_score"] == 4
    assert body["xp_gained"] == 50
    assert [b["name"] for b in body["awarded"]] == ["First Step", "Quiz Whiz"]


def test_unknown_aid_kind_is_400(api):
    _start_quest(api)
    assert api.get("/missions/m1/aids/poem").status_code == 400


def test_missing_mission_is_404(api):
    _start_quest(api)
    assert api.post("/missions/nope/select").status_code == 404
    assert api.post("/missions/nope/complete", json={"quiz_score": 2}).status_code == 404


def test_complete_twice(api):
    _start_quest(api)
    first = api.post("/missions/m2/complete", json={"quiz_score": 1}).json()
    second = api.post("/missions/m2/complete", json={"quiz_score": 1}).json()
    assert first["completed"] and not second["completed"]
    assert api.get("/profile").json()["profile"]["xp"] == 50


def test_state(api):
    _start_quest(api)
    api.post("/missions/m3/select")
    state = api.get("/state").json()
    assert state["phase"] == "studying"
    assert state["active_mission_id"] == "m3"


def test_config_update(api):
    r = api.put("/config", json={"xp_per_mission": 75})
    assert r.json()["xp_per_mission"] == 75
    assert api.put("/config", json={"nonsense": 1}).status_code == 400


def test_google_callback_signs_in(api, monkeypatch):
    identity = Identity(id="g-1", name="Sam", picture_url="https://example.com/s.png")
    monkeypatch.setattr(google_auth, "exchange_code", lambda code, state: identity)

    r = api.get("/auth/google/callback", params={"code": "c", "state": "s1"}, follow_redirects=False)
    assert r.status_code in (302, 307)
    query = parse_qs(urlparse(r.headers["location"]).query)
    assert query["auth_success"] == ["true"]
    assert query["restored"] == ["false"]

    me = api.get("/auth/me").json()
    assert me["authenticated"] is True
    assert me["id"] == "g-1"
    assert me["session_id"] == "s1"

    assert api.post("/auth/logout").json() == {"status": "logged_out"}
    assert api.get("/auth/me").json() == {"authenticated": False}


def test_google_callback_failure_redirects(api, monkeypatch):
    def boom(code, state):
        raise ValueError("bad code")

    monkeypatch.setattr(google_auth, "exchange_code", boom)
    r = api.get("/auth/google/callback", params={"code": "c", "state": "s1"}, follow_redirects=False)
    assert "auth_error=exchange_failed" in r.headers["location"]


def test_config_rejects_method_names(api):
    assert api.put("/config", json={"to_dict": 1}).status_code == 400
    assert api.get("/config").json()["xp_per_mission"] == 50
    assert api.post("/syllabus", files={"file": ("s.png", b"\x89PNG", "image/png")}).status_code == 200
    assert api.post("/plan", json={"days": 2, "pace": "Normal"}).status_code == 200


def test_second_sign_in_forgets_previous_session(api, monkeypatch):
    monkeypatch.setattr(google_auth, "_sessions", {})

    def exchange(code, state):
        identity = Identity(id=f"g-{code}", name=code)
        google_auth._sessions[state] = identity
        return identity

    monkeypatch.setattr(google_auth, "exchange_code", exchange)

    api.get("/auth/google/callback", params={"code": "a", "state": "s1"}, follow_redirects=False)
    api.get("/auth/google/callback", params={"code": "b", "state": "s2"}, follow_redirects=False)

    assert google_auth.get_identity("s1") is None
    assert google_auth.get_identity("s2").id == "g-b"
    assert api.get("/auth/me").json()["session_id"] == "s2"
