"""
FastAPI server for StudyQuest.

Endpoints:
  POST /syllabus                      — Upload a syllabus (PDF / image) → topics
  POST /plan                          — Topics + days + pace → quest (LangGraph)
  GET  /plan                          — Current quest and progress
  GET  /profile                       — Level, XP, badges
  POST /missions/{id}/select          — Open a mission
  GET  /missions/{id}/aids/{kind}     — Notes / summary / mnemonics / story / quiz
  POST /missions/{id}/quiz            — Submit quiz answers → XP, level, badges
  POST /missions/{id}/complete        — Complete with a known score
  GET  /state                         — Everything the dashboard renders
  GET / PUT /config                   — QuestConfig
"""

from __future__ import annotations

import os
import uuid
import logging
from dataclasses import fields
from contextlib import asynccontextmanager
from urllib.parse import urlencode

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, UploadFile, File
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from config import QuestConfig
from errors import (
    GatewayError,
    MissionNotFoundError,
    QuestError,
    RequestInFlightError,
    ValidationError,
)
from gamification import level_progress
from models import CompletionRequest, CompletionResponse, PlanRequest, QuizSubmission
from quest import QuestSession
from session_store import FileStore, SessionStore
from study_plan import plan_progress
import google_auth
import supabase_client as supa

load_dotenv()

logger = logging.getLogger(__name__)

DATA_DIR = os.getenv("STUDYQUEST_DATA_DIR", ".studyquest")
CONFIG_KEYS = {f.name for f in fields(QuestConfig)}


def build_store(cfg: QuestConfig) -> SessionStore:
    """Supabase when configured, local JSON files otherwise."""
    if supa.is_configured():
        store = supa.SupabaseStore()
        if store.client is not None:
            return SessionStore(store, cfg)
    logger.info(f"Saving sessions under {DATA_DIR}")
    return SessionStore(FileStore(DATA_DIR), cfg)


# ── Global state (single user, like the browser app it serves) ──

_config = QuestConfig()
_session = QuestSession(store=build_store(_config), cfg=_config)
_current_session: str | None = None  # active Google session ID


# ── Lifespan ──────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("StudyQuest starting…")
    yield
    logger.info("Shutting down.")


# ── App ───────────────────────────────────────────────────────

app = FastAPI(
    title="StudyQuest",
    description="Gamified study planner: syllabus in, quest out",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Helpers ───────────────────────────────────────────────────

def _to_http(e: QuestError) -> HTTPException:
    """Map core errors onto status codes."""
    if isinstance(e, MissionNotFoundError):
        return HTTPException(404, str(e))
    if isinstance(e, ValidationError):
        return HTTPException(400, str(e))
    if isinstance(e, RequestInFlightError):
        return HTTPException(409, str(e))
    if isinstance(e, GatewayError):
        return HTTPException(502, str(e))
    return HTTPException(500, str(e))


def _superseded() -> HTTPException:
    return HTTPException(409, "The session changed while this request was running. Please retry.")


# ──────────────────────────────────────────────────────────────
# Health & config
# ──────────────────────────────────────────────────────────────

@app.get("/health")
async def health():
    return {"status": "healthy", "service": "studyquest"}


@app.get("/config")
async def get_config():
    """Return the current quest configuration."""
    return _config.to_dict()


@app.put("/config")
async def update_config(updates: dict):
    """Update specific configuration parameters."""
    for key, value in updates.items():
        if key not in CONFIG_KEYS:
            raise HTTPException(400, f"Unknown config key: {key}")
        setattr(_config, key, value)
    return _config.to_dict()


# ──────────────────────────────────────────────────────────────
# Quest state
# ──────────────────────────────────────────────────────────────

@app.get("/state")
async def get_state():
    return _session.snapshot()


@app.get("/profile")
async def get_profile():
    return {
        "profile": _session.profile.model_dump(mode="json"),
        "level_progress": level_progress(_session.profile, _config).model_dump(),
    }


@app.get("/plan")
async def get_plan():
    if _session.plan is None:
        raise HTTPException(404, "No study plan yet. Upload a syllabus and create one.")
    return {
        "plan": _session.plan.model_dump(),
        "progress": plan_progress(_session.plan),
    }


# ──────────────────────────────────────────────────────────────
# POST /syllabus: document → topics
# ──────────────────────────────────────────────────────────────

@app.post("/syllabus")
async def upload_syllabus_endpoint(file: UploadFile = File(...)):
    """
    Upload a syllabus (PDF or image, e.g. a phone photo).
    Uses Gemini to extract subjects and topics.
    """
    content_type = file.content_type or ""
    file_bytes = await file.read()

    try:
        topics = await _session.upload_syllabus(file_bytes, content_type)
    except QuestError as e:
        logger.error(f"Syllabus extraction failed: {e}")
        raise _to_http(e)

    if topics is None:
        raise _superseded()
    return {"phase": _session.phase, "topics": [t.model_dump() for t in topics]}


# ──────────────────────────────────────────────────────────────
# POST /plan: topics → quest
# ──────────────────────────────────────────────────────────────

@app.post("/plan")
async def create_plan_endpoint(req: PlanRequest):
    try:
        result = await _session.create_plan(req.days, req.pace)
    except QuestError as e:
        logger.error(f"Plan creation failed: {e}")
        raise _to_http(e)

    if result is None:
        raise _superseded()
    return {
        "plan": result.plan.model_dump(),
        "progress": plan_progress(result.plan),
        "awarded": [b.model_dump(mode="json") for b in result.outcome.awarded],
        "profile": _session.profile.model_dump(mode="json"),
    }


# ──────────────────────────────────────────────────────────────
# Missions
# ──────────────────────────────────────────────────────────────

@app.post("/missions/{mission_id}/select")
async def select_mission(mission_id: str):
    try:
        mission = _session.select_mission(mission_id)
    except QuestError as e:
        raise _to_http(e)
    return mission.model_dump()


@app.get("/missions/{mission_id}/aids/{kind}")
async def get_study_aid(mission_id: str, kind: str):
    """Generate (once) and return a study aid for the mission."""
    try:
        content = await _session.fetch_aid(mission_id, kind)
    except QuestError as e:
        logger.error(f"Study aid {kind} for {mission_id} failed: {e}")
        raise _to_http(e)

    if content is None:
        raise _superseded()
    if kind == "quiz":
        return {"kind": kind, "quiz": [q.model_dump() for q in content]}
    return {"kind": kind, "content": content}


@app.post("/missions/{mission_id}/quiz", response_model=CompletionResponse)
async def submit_quiz(mission_id: str, submission: QuizSubmission):
    try:
        return _session.submit_quiz(mission_id, submission.answers)
    except QuestError as e:
        raise _to_http(e)


@app.post("/missions/{mission_id}/complete", response_model=CompletionResponse)
async def complete_mission_endpoint(mission_id: str, req: CompletionRequest):
    try:
        _session.require_mission(mission_id)
        return _session.complete_mission(mission_id, req.quiz_score)
    except QuestError as e:
        raise _to_http(e)


# ──────────────────────────────────────────────────────────────
# Google OAuth2 flow
# ──────────────────────────────────────────────────────────────

@app.get("/auth/google")
async def google_login():
    """Return the Google consent screen URL."""
    if not google_auth.is_configured():
        raise HTTPException(501, "Google OAuth not configured — set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET in .env")
    session_id = str(uuid.uuid4())
    auth_url = google_auth.get_auth_url(session_id)
    return {"auth_url": auth_url, "session_id": session_id}


@app.get("/auth/google/callback")
async def google_callback(code: str, state: str):
    """Handle Google OAuth callback, sign in and restore the saved quest."""
    global _current_session

    try:
        identity = google_auth.exchange_code(code, state)
    except Exception as e:
        logger.error(f"Google OAuth exchange failed: {e}")
        return RedirectResponse(f"{google_auth.FRONTEND_URL}?auth_error=exchange_failed")

    if _current_session and _current_session != state:
        google_auth.forget(_current_session)
    _current_session = state
    restored = _session.sign_in(identity)

    query = urlencode({
        "auth_success": "true",
        "session_id": state,
        "name": identity.name,
        "avatar": identity.picture_url,
        "restored": str(restored).lower(),
    })
    return RedirectResponse(f"{google_auth.FRONTEND_URL}?{query}")


@app.get("/auth/me")
async def auth_me():
    """Return current signed-in user info."""
    if _session.identity is None:
        return {"authenticated": False}
    return {
        "authenticated": True,
        **_session.identity.model_dump(),
        "session_id": _current_session,
    }


@app.post("/auth/logout")
async def auth_logout():
    """Clear the in-memory quest. The saved copy stays for the next sign-in."""
    global _current_session
    if _current_session:
        google_auth.forget(_current_session)
    _current_session = None
    _session.sign_out()
    return {"status": "logged_out"}
