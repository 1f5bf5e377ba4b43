"""
LangGraph pipeline that turns extracted topics into a started quest.

3 nodes:
  1. synthesize — Gemini spreads the topics over the horizon   (LLM)
  2. build      — validate the plan, assign mission ids         (deterministic)
  3. finalize   — award the PlanStarted event                   (deterministic)

Graph wiring:
  START → synthesize → build
  build → [malformed? and attempts left → synthesize]
  build → [valid → finalize → END]
  build → [malformed, no attempts left → END]   (caller raises MalformedPlanError)

Nothing here touches session state: the caller commits the returned plan
and profile together, or not at all.
"""

from __future__ import annotations

from typing import Any, Callable, NamedTuple, Optional, TypedDict

from langgraph.graph import StateGraph, END
from pydantic import BaseModel

from config import QuestConfig
from errors import MalformedPlanError
from gamification import apply_event
from models import GamificationOutcome, PlanStarted, StudyPlan, SyllabusTopic, UserProfile
from study_plan import build_plan, new_mission_id


# ──────────────────────────────────────────────────────────────
# Pipeline state
# ──────────────────────────────────────────────────────────────

class PlanState(TypedDict, total=False):
    # Inputs
    topics: list            # list[SyllabusTopic] as dicts
    days: int
    pace: str
    profile: dict           # UserProfile as dict
    config: dict            # serialized QuestConfig

    # Node outputs
    raw_plan: Any           # unvalidated gateway response
    attempts: int
    plan: Optional[dict]    # StudyPlan as dict once valid
    problems: list          # list[str] from the last rejection
    outcome: dict           # GamificationOutcome as dict


class PlanResult(NamedTuple):
    plan: StudyPlan
    outcome: GamificationOutcome
    attempts: int


def build_plan_graph(gateway, id_factory: Callable[[], str] = new_mission_id):
    """Construct and compile the plan graph around ``gateway``."""

    async def synthesize_node(state: PlanState) -> dict:
        cfg = QuestConfig.from_dict(state.get("config", {}))
        topics = [SyllabusTopic(**t) for t in state["topics"]]
        raw = await gateway.synthesize_plan(topics, state["days"], state["pace"], cfg)
        return {
            "raw_plan": raw.model_dump() if isinstance(raw, BaseModel) else raw,
            "attempts": state.get("attempts", 0) + 1,
        }

    async def build_node(state: PlanState) -> dict:
        cfg = QuestConfig.from_dict(state.get("config", {}))
        topics = [SyllabusTopic(**t) for t in state["topics"]]
        try:
            plan = build_plan(
                topics, state["days"], state["pace"], state["raw_plan"], cfg, id_factory=id_factory
            )
        except MalformedPlanError as e:
            return {"plan": None, "problems": e.problems or [str(e)]}
        return {"plan": plan.model_dump(), "problems": []}

    async def finalize_node(state: PlanState) -> dict:
        cfg = QuestConfig.from_dict(state.get("config", {}))
        outcome = apply_event(UserProfile(**state["profile"]), PlanStarted(), cfg)
        return {"outcome": outcome.model_dump()}

    def after_build(state: PlanState) -> str:
        """Route after the build node."""
        if state.get("plan"):
            return "finalize"
        cfg = QuestConfig.from_dict(state.get("config", {}))
        if state.get("attempts", 0) <= cfg.plan_retry_attempts:
            return "synthesize"
        return "give_up"

    graph = StateGraph(PlanState)

    graph.add_node("synthesize", synthesize_node)
    graph.add_node("build", build_node)
    graph.add_node("finalize", finalize_node)

    graph.set_entry_point("synthesize")
    graph.add_edge("synthesize", "build")
    graph.add_conditional_edges(
        "build",
        after_build,
        {
            "finalize": "finalize",
            "synthesize": "synthesize",
            "give_up": END,
        },
    )
    graph.add_edge("finalize", END)

    return graph.compile()


async def run_plan_pipeline(
    graph,
    topics: list[SyllabusTopic],
    days: int,
    pace: str,
    profile: UserProfile,
    cfg: QuestConfig | None = None,
) -> PlanResult:
    """
    Run the compiled graph and unpack its result.

    Raises:
        MalformedPlanError: every attempt produced an invalid plan
        GatewayError: a synthesize call failed outright
    """
    if cfg is None:
        cfg = QuestConfig()

    result = await graph.ainvoke({
        "topics": [t.model_dump() for t in topics],
        "days": days,
        "pace": pace,
        "profile": profile.model_dump(),
        "config": cfg.to_dict(),
        "attempts": 0,
    })

    if not result.get("plan"):
        raise MalformedPlanError(
            f"Gemini returned an invalid plan after {result.get('attempts', 0)} attempt(s)",
            result.get("problems", []),
        )

    return PlanResult(
        plan=StudyPlan(**result["plan"]),
        outcome=GamificationOutcome(**result["outcome"]),
        attempts=result.get("attempts", 0),
    )
