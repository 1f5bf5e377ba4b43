"""
Test fixtures for StudyQuest.

Gemini is never called: a FakeGateway exposing the same four coroutines as
``ai_gateway`` is injected into QuestSession, and sessions persist to a
MemoryStore.
"""

from __future__ import annotations

import asyncio
import itertools
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from config import QuestConfig  # noqa: E402
from models import Identity, QuizQuestion, SyllabusTopic  # noqa: E402
from quest import QuestSession  # noqa: E402
from session_store import MemoryStore, SessionStore  # noqa: E402


TOPICS = [
    SyllabusTopic(subject="Physics", topics=["Kinematics", "Optics"]),
    SyllabusTopic(subject="Chemistry", topics=["Bonding"]),
]

RAW_PLAN = {
    "days": [
        {
            "day": 1,
            "missions": [
                {"subject": "Physics", "topic": "Kinematics"},
                {"subject": "Chemistry", "topic": "Bonding"},
            ],
        },
        {"day": 2, "missions": [{"subject": "Physics", "topic": "Optics"}]},
    ]
}

QUIZ = [
    QuizQuestion(
        question=f"Question {i}?",
        options=["A", "B", "C", "D"],
        correct_answer="B",
    )
    for i in range(1, 5)
]


class FakeGateway:
    """Stand-in for ai_gateway. ``gate`` (an asyncio.Event) holds every call open."""

    def __init__(self, topics=None, plans=None, quiz=None):
        self.topics = topics if topics is not None else TOPICS
        self.plans = list(plans) if plans is not None else [RAW_PLAN]
        self.quiz = quiz if quiz is not None else QUIZ
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple] = []

    async def _wait(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

    async def extract_topics(self, file_bytes, mime_type, cfg=None):
        self.calls.append(("extract", mime_type))
        await self._wait()
        return self.topics

    async def synthesize_plan(self, topics, days, pace, cfg=None):
        self.calls.append(("plan", days, pace))
        await self._wait()
        return self.plans.pop(0) if len(self.plans) > 1 else self.plans[0]

    async def generate_aid(self, topic, subject, kind, cfg=None):
        self.calls.append(("aid", topic, kind))
        await self._wait()
        return f"# {kind} for {topic}"

    async def generate_quiz(self, topic, subject, cfg=None):
        self.calls.append(("quiz", topic))
        await self._wait()
        return self.quiz


def sequential_ids():
    counter = itertools.count(1)
    return lambda: f"m{next(counter)}"


@pytest.fixture
def cfg():
    return QuestConfig()


@pytest.fixture
def topics():
    return [t.model_copy(deep=True) for t in TOPICS]


@pytest.fixture
def raw_plan():
    return {"days": [dict(d, missions=[dict(m) for m in d["missions"]]) for d in RAW_PLAN["days"]]}


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def store(cfg):
    return SessionStore(MemoryStore(), cfg)


@pytest.fixture
def identity():
    return Identity(id="google-123", name="Ada", picture_url="https://example.com/ada.png")


@pytest.fixture
def session(gateway, store, cfg):
    return QuestSession(gateway=gateway, store=store, cfg=cfg, id_factory=sequential_ids())


@pytest.fixture
def studying_session(session, identity):
    """A signed-in session with the three-mission plan m1..m3 already started."""
    session.sign_in(identity)
    asyncio.run(session.upload_syllabus(b"png-bytes", "image/png"))
    asyncio.run(session.create_plan(2, "Normal"))
    return session
