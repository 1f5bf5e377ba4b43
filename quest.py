"""
QuestSession — the single profile/plan pair and every transition on it.

Phases mirror the app screens:

    uploading ──extract──▶ planning ──create plan──▶ studying
        ▲                                               │
        └──────────────── sign out / new upload ────────┘

All state changes are whole-value replacements committed after the awaited
AI call returns. Each awaited call captures the session epoch first; sign-in
and sign-out bump the epoch, so a response that lands afterwards is dropped
instead of overwriting the new session.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from typing import Optional

import ai_gateway
from config import QuestConfig
from errors import GatewayError, MissionNotFoundError, RequestInFlightError, ValidationError
from gamification import apply_event, level_progress
from models import (
    CompletionResponse,
    Identity,
    Mission,
    MissionCompleted,
    PlanStarted,
    StudyAids,
    StudyPlan,
    SyllabusTopic,
    UserProfile,
)
from plan_graph import PlanResult, build_plan_graph, run_plan_pipeline
from quiz import score_quiz, validate_quiz
from session_store import SessionStore
from study_plan import complete_mission, find_mission, new_mission_id, plan_progress, validate_plan_request

logger = logging.getLogger(__name__)

AID_KINDS = ("notes", "summary", "mnemonics", "story", "quiz")


class QuestSession:
    def __init__(
        self,
        gateway=ai_gateway,
        store: SessionStore | None = None,
        cfg: QuestConfig | None = None,
        id_factory=new_mission_id,
    ):
        self.gateway = gateway
        self.store = store
        self.cfg = cfg or QuestConfig()
        self.plan_graph = build_plan_graph(gateway, id_factory)

        self._epoch = 0
        self._in_flight: set[tuple] = set()
        self.reset()

    # ── Lifecycle ─────────────────────────────────────────

    def reset(self) -> None:
        """Back to the initial, signed-out state. Persisted data is untouched."""
        self.phase = "uploading"
        self.topics: list[SyllabusTopic] = []
        self.plan: Optional[StudyPlan] = None
        self.profile = UserProfile()
        self.aids: dict[str, StudyAids] = {}
        self.active_mission_id: Optional[str] = None
        self.last_level_up: Optional[int] = None

    @property
    def identity(self) -> Optional[Identity]:
        return self.profile.identity

    def sign_in(self, identity: Identity) -> bool:
        """Switch to ``identity`` and restore its saved quest. True if one was found."""
        self._epoch += 1
        self.reset()
        self.profile = UserProfile(identity=identity)

        saved = self.store.load(identity) if self.store else None
        if saved is None:
            logger.info(f"No saved session for {identity.id}")
            return False

        self.plan = saved.plan
        self.profile = saved.profile.model_copy(update={"identity": identity})
        self.phase = "studying" if saved.plan is not None else "uploading"
        logger.info(f"Restored session for {identity.id} (level {self.profile.level}, {self.profile.xp} XP)")
        return True

    def sign_out(self) -> None:
        self._epoch += 1
        self.reset()

    # ── Helpers ───────────────────────────────────────────

    @contextmanager
    def _exclusive(self, *action):
        key = (self._epoch, *action)
        if key in self._in_flight:
            raise RequestInFlightError(":".join(str(a) for a in action))
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)

    async def _call_ai(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.cfg.ai_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise GatewayError(f"The AI did not answer within {self.cfg.ai_timeout_seconds:.0f}s.") from e

    def _persist(self) -> None:
        if self.store is None or self.identity is None:
            return
        self.store.save(self.identity, self.plan, self.profile)

    def require_mission(self, mission_id: str) -> Mission:
        mission = find_mission(self.plan, mission_id) if self.plan else None
        if mission is None:
            raise MissionNotFoundError(mission_id)
        return mission

    # ── Syllabus → topics ─────────────────────────────────

    async def upload_syllabus(self, file_bytes: bytes, mime_type: str) -> list[SyllabusTopic] | None:
        """
        Extract topics and move to the planning phase.

        Returns None when the session changed while Gemini was working.
        On failure the phase falls back to ``uploading``.
        """
        if not file_bytes:
            raise ValidationError("The uploaded file is empty.")
        if len(file_bytes) > self.cfg.max_upload_bytes:
            raise ValidationError(f"File too large. Maximum {self.cfg.max_upload_bytes // (1024 * 1024)}MB.")

        with self._exclusive("extract"):
            epoch = self._epoch
            try:
                topics = await self._call_ai(self.gateway.extract_topics(file_bytes, mime_type, self.cfg))
            except GatewayError:
                if epoch == self._epoch:
                    self.phase = "uploading"
                raise

            if epoch != self._epoch:
                logger.info("Discarding syllabus extraction that finished after the session changed")
                return None

            self.topics = list(topics)
            self.phase = "planning"
            return self.topics

    # ── Topics → plan ─────────────────────────────────────

    async def create_plan(self, days: int, pace: str) -> PlanResult | None:
        """Synthesize, validate and start a new quest, replacing the old plan."""
        validate_plan_request(self.topics, days, pace, self.cfg)

        with self._exclusive("plan"):
            epoch = self._epoch
            before = self.profile
            result = await self._call_ai(
                run_plan_pipeline(self.plan_graph, self.topics, days, pace, before, self.cfg)
            )

            if epoch != self._epoch:
                logger.info("Discarding plan that finished after the session changed")
                return None

            outcome = result.outcome
            if self.profile is not before:
                outcome = apply_event(self.profile, PlanStarted(), self.cfg)

            self.plan = result.plan
            self.profile = outcome.profile
            self.aids = {}
            self.active_mission_id = None
            self.last_level_up = outcome.level_up
            self.phase = "studying"
            self._persist()

            logger.info(
                f"Quest started: {len(result.plan.missions())} missions over {days} days "
                f"({pace}, {result.attempts} attempt(s))"
            )
            return PlanResult(result.plan, outcome, result.attempts)

    # ── Missions ──────────────────────────────────────────

    def select_mission(self, mission_id: str) -> Mission:
        mission = self.require_mission(mission_id)
        self.active_mission_id = mission_id
        return mission

    def close_mission(self) -> None:
        self.active_mission_id = None

    async def fetch_aid(self, mission_id: str, kind: str):
        """
        Study aid for a mission, generated on first request and cached.

        Returns None if the mission left the plan (new quest, sign-out)
        while Gemini was generating; the result is then not cached.
        """
        if kind not in AID_KINDS:
            raise ValidationError(f"Unknown study aid {kind!r}. Use one of {', '.join(AID_KINDS)}.")
        mission = self.require_mission(mission_id)

        cached = getattr(self.aids.get(mission_id, StudyAids()), kind)
        if cached is not None:
            return cached

        with self._exclusive("aid", mission_id, kind):
            epoch = self._epoch
            if kind == "quiz":
                content = await self._call_ai(self.gateway.generate_quiz(mission.topic, mission.subject, self.cfg))
                try:
                    content = validate_quiz([q.model_dump() for q in content], self.cfg.quiz_length)
                except ValidationError as e:
                    raise GatewayError(f"Quiz generation failed to produce valid questions: {e}") from e
            else:
                content = await self._call_ai(
                    self.gateway.generate_aid(mission.topic, mission.subject, kind, self.cfg)
                )

            if epoch != self._epoch or self.plan is None or find_mission(self.plan, mission_id) is None:
                logger.info(f"Discarding {kind} for mission {mission_id}: no longer in the active plan")
                return None

            aids = self.aids.get(mission_id, StudyAids())
            if getattr(aids, kind) is None:
                self.aids = {**self.aids, mission_id: aids.model_copy(update={kind: content})}
            return getattr(self.aids[mission_id], kind)

    def submit_quiz(self, mission_id: str, answers: list[Optional[str]]) -> CompletionResponse:
        """Score the cached quiz and complete the mission with that score."""
        self.require_mission(mission_id)
        quiz = self.aids.get(mission_id, StudyAids()).quiz
        if quiz is None:
            raise ValidationError("This mission's quiz has not been generated yet.")
        return self.complete_mission(mission_id, score_quiz(quiz, answers))

    def complete_mission(self, mission_id: str, quiz_score: int) -> CompletionResponse:
        """
        Complete a mission exactly once.

        A repeat (or unknown id) is a no-op: ``completed`` is False and no
        XP or badges are granted.
        """
        if isinstance(quiz_score, bool) or not isinstance(quiz_score, int):
            raise ValidationError(f"Quiz score must be an integer, got {quiz_score!r}")
        if not 0 <= quiz_score <= self.cfg.quiz_length:
            raise ValidationError(f"Quiz score must be between 0 and {self.cfg.quiz_length}")

        completion = complete_mission(self.plan, mission_id) if self.plan else None
        if completion is None:
            return CompletionResponse(completed=False, quiz_score=quiz_score, profile=self.profile)

        before = self.profile
        outcome = apply_event(
            before,
            MissionCompleted(quiz_score=quiz_score, subject_completed=completion.subject_completed),
            self.cfg,
        )

        self.plan = completion.plan
        self.profile = outcome.profile
        self.last_level_up = outcome.level_up
        self._persist()

        if outcome.level_up:
            logger.info(f"Level up! Now level {outcome.level_up}")

        return CompletionResponse(
            completed=True,
            mission=completion.mission,
            quiz_score=quiz_score,
            xp_gained=outcome.profile.xp - before.xp,
            level_up=outcome.level_up,
            awarded=outcome.awarded,
            profile=outcome.profile,
        )

    # ── Views ─────────────────────────────────────────────

    def snapshot(self) -> dict:
        return {
            "phase": self.phase,
            "topics": [t.model_dump() for t in self.topics],
            "plan": self.plan.model_dump() if self.plan else None,
            "progress": plan_progress(self.plan) if self.plan else None,
            "profile": self.profile.model_dump(mode="json"),
            "level_progress": level_progress(self.profile, self.cfg).model_dump(),
            "active_mission_id": self.active_mission_id,
        }
