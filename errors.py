"""
Error taxonomy for the study quest core.

  GatewayError          — Gemini / document extraction failed or was unusable
  MalformedPlanError    — plan JSON broke the required shape or topic coverage
  PersistenceError      — key-value backend read/write failed
  ValidationError       — bad input rejected before any call or mutation
  MissionNotFoundError  — mission id is not part of the current plan
  RequestInFlightError  — the same logical action is already pending
"""

from __future__ import annotations


class QuestError(Exception):
    """Base class for every error raised by the quest core."""


class GatewayError(QuestError):
    pass


class MalformedPlanError(GatewayError):
    def __init__(self, message: str, problems: list[str] | None = None):
        super().__init__(message)
        self.problems = problems or []


class PersistenceError(QuestError):
    pass


class ValidationError(QuestError):
    pass


class RequestInFlightError(QuestError):
    def __init__(self, action: str):
        super().__init__(f"A '{action}' request is already in progress")
        self.action = action


class MissionNotFoundError(ValidationError):
    def __init__(self, mission_id: str):
        super().__init__(f"No mission with id {mission_id!r} in the current plan")
        self.mission_id = mission_id
