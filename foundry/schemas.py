"""Pydantic request/response schemas for the Foundry API."""
from __future__ import annotations

from typing import Any, Generic, TypeVar

from pydantic import BaseModel, StrictBool, StrictInt

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    data: T


class VentureCreate(BaseModel):
    name: str | None = None


class ArtifactCreate(BaseModel):
    phase_number: StrictInt
    type: str
    content: dict[str, Any]


class ArtifactUpdate(BaseModel):
    content: dict[str, Any]


class GateFlagUpdate(BaseModel):
    satisfied: StrictBool


class ChatRequest(BaseModel):
    message: str
    phase_number: StrictInt | None = None
    conversation_id: str | None = None


class GenerateRequest(BaseModel):
    phase_number: StrictInt
    type: str


class TrialChatRequest(BaseModel):
    session_token: str
    message: str


class TrialClaimRequest(BaseModel):
    session_token: str


class PhaseCriterionOut(BaseModel):
    key: str
    label: str
    gate_type: str
    satisfied: bool


class PhaseOut(BaseModel):
    phase_number: int
    name: str
    description: str
    core_deliverable: str
    status: str
    gate_criteria: list[PhaseCriterionOut]
    gate_satisfied: bool
    started_at: str | None = None
    cycle_complete: bool = False


class QuotaOut(BaseModel):
    messages_used: int
    messages_limit: int
    remaining_today: int
    resets_at: str


class StatsOut(BaseModel):
    ventures: int
    users: int
    by_current_phase: dict[str, int]
    artifacts_by_type: dict[str, int]
    active_shares: int
    trial_sessions: int
    trial_sessions_claimed: int
